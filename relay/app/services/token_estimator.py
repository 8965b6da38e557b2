"""Approximate token cost of chat-style request payloads.

No tokenizer is involved: the default strategy charges a fixed fraction of
a token per character of message content, which is close enough for
budgeting against a per-minute ceiling.
"""

import json
from abc import ABC, abstractmethod
from typing import Any

from relay.app.exceptions import MalformedRequestBodyError

# Roughly four characters per sub-word token
DEFAULT_TOKENS_PER_CHAR = 0.25


def decode_payload(body: bytes) -> Any:
    """Decode a buffered request body as JSON.

    Raises:
        MalformedRequestBodyError: If the body is empty or not valid JSON
    """
    if not body:
        raise MalformedRequestBodyError("Request body is empty")
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError, RecursionError) as e:
        raise MalformedRequestBodyError(f"Request body is not valid JSON: {e}") from e


class TokenEstimator(ABC):
    """Strategy for estimating the token cost of a decoded payload.

    Implementations must not raise; anything they cannot interpret
    costs 0.
    """

    @abstractmethod
    def estimate(self, payload: Any) -> float:
        pass


class CharacterRatioEstimator(TokenEstimator):
    """Charges ``ratio`` tokens per character of each message's content."""

    def __init__(self, ratio: float = DEFAULT_TOKENS_PER_CHAR):
        self.ratio = ratio

    def estimate(self, payload: Any) -> float:
        if not isinstance(payload, dict):
            return 0
        messages = payload.get("messages")
        if not isinstance(messages, list):
            return 0

        total = 0.0
        for message in messages:
            if not isinstance(message, dict):
                continue
            content = message.get("content")
            if isinstance(content, str):
                total += len(content) * self.ratio
        return total


def estimate_tokens(payload: Any, ratio: float = DEFAULT_TOKENS_PER_CHAR) -> float:
    """Estimate tokens for ``payload`` with the character-ratio heuristic."""
    return CharacterRatioEstimator(ratio).estimate(payload)
