"""Read-side collapse of assistant answers that were stored twice."""

import re
from datetime import timedelta
from typing import Iterable

from chatstore.models.enums import Role
from chatstore.models.message import ChatMessage

ASSISTANT_DUPLICATE_WINDOW = timedelta(seconds=10)

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def is_assistant_duplicate(previous: ChatMessage, current: ChatMessage, window: timedelta) -> bool:
    if previous.role is not Role.ASSISTANT or current.role is not Role.ASSISTANT:
        return False
    previous_text = normalize_text(previous.text)
    if not previous_text or previous_text != normalize_text(current.text):
        return False
    return abs(current.created_at - previous.created_at) <= window


def dedupe_assistant_messages(
    messages: Iterable[ChatMessage],
    window: timedelta = ASSISTANT_DUPLICATE_WINDOW,
) -> list[ChatMessage]:
    """Drop assistant messages repeating the previous kept message within ``window``.

    Args:
        messages: Messages in chronological order.
        window: Maximum distance between the two ``created_at`` values.

    Returns:
        The messages that survive, in their original order.
    """
    kept: list[ChatMessage] = []
    for message in messages:
        if kept and is_assistant_duplicate(kept[-1], message, window):
            continue
        kept.append(message)
    return kept
