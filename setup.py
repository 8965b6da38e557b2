from setuptools import setup, find_packages

setup(
    name="throttleproxy",
    version="0.1.0",
    packages=find_packages(include=["relay", "relay.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn>=0.29",
        "httpx>=0.27",
        "pydantic>=2.6",
        "pydantic-settings>=2.2",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.24",
            "respx>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "throttleproxy=relay.app.main:run",
        ],
    },
)
