"""Rewrites upstream chat-completion responses before they reach the caller.

Reasoning models wrap their chain of thought in a delimited block at the
start of the message content. The first such block is removed from
``choices[0].message.content``; anything else passes through untouched.
"""

import json
import re
from typing import Any, Optional

from relay.app.core.logging import get_logger
from relay.app.exceptions import MalformedResponseBodyError

logger = get_logger(__name__)

JSON_CONTENT_TYPE = "application/json"


def is_json_content_type(content_type: Optional[str]) -> bool:
    return bool(content_type) and JSON_CONTENT_TYPE in content_type.lower()


class ReasoningStripper:
    """Removes the first ``start ... end`` block plus trailing whitespace."""

    def __init__(self, start_marker: str = "<think>", end_marker: str = "</think>"):
        self.start_marker = start_marker
        self.end_marker = end_marker
        self._pattern = re.compile(
            re.escape(start_marker) + r".*?" + re.escape(end_marker) + r"\s*",
            re.DOTALL,
        )

    def strip(self, content: str) -> str:
        return self._pattern.sub("", content, count=1).strip()

    def process_payload(self, payload: Any) -> bool:
        """Strip reasoning from a decoded chat completion in place.

        Returns:
            True if the payload had a first-choice string content to rewrite
        """
        if not isinstance(payload, dict):
            return False
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            return False
        first = choices[0]
        if not isinstance(first, dict):
            return False
        message = first.get("message")
        if not isinstance(message, dict):
            return False
        content = message.get("content")
        if not isinstance(content, str) or not content:
            return False

        message["content"] = self.strip(content)
        return True

    def process_body(self, content_type: Optional[str], body: bytes) -> bytes:
        """Return the body to send to the caller.

        Non-JSON content, JSON without a chat-completion shape and bodies
        that fail to decode are returned unchanged.
        """
        if not is_json_content_type(content_type):
            return body
        try:
            payload = _decode(body)
        except MalformedResponseBodyError as e:
            logger.warning(f"Passing through upstream body unmodified: {e.message}")
            return body

        if not self.process_payload(payload):
            return body
        return json.dumps(payload, ensure_ascii=False).encode("utf-8")


def _decode(body: bytes) -> Any:
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError, RecursionError) as e:
        raise MalformedResponseBodyError(f"Upstream JSON body could not be decoded: {e}") from e
