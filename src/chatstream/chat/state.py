"""Per-conversation state: histories and provider customizations."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from .messages import Message


@dataclass
class ConversationState:
    """State owned by one conversation.

    Histories are keyed by the provider's history key so switching providers
    does not mix wire formats. Turns for one state must be serialized by the
    caller; :class:`ConversationStore` hands out a lock for that.
    """

    conversation_id: str
    histories: dict[str, list[Message]] = field(default_factory=dict)
    custom_parameters: dict[str, dict[str, Any]] = field(default_factory=dict)
    custom_headers: dict[str, dict[str, str]] = field(default_factory=dict)

    def get_history(self, key: str) -> list[Message]:
        return self.histories.setdefault(key, [])

    def add_history(self, key: str, *messages: Message) -> None:
        self.get_history(key).extend(messages)

    def parameters_for(self, key: str) -> dict[str, Any]:
        return dict(self.custom_parameters.get(key) or {})

    def headers_for(self, key: str) -> dict[str, str]:
        return dict(self.custom_headers.get(key) or {})


class ConversationStore:
    """In-process registry of conversation states with per-conversation locks."""

    def __init__(self) -> None:
        self._states: dict[str, ConversationState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, conversation_id: str) -> ConversationState:
        state = self._states.get(conversation_id)
        if state is None:
            state = ConversationState(conversation_id=conversation_id)
            self._states[conversation_id] = state
        return state

    def lock(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock


__all__ = ["ConversationState", "ConversationStore"]
