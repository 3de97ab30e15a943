"""Map completed function-calling sessions to skill topics."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum

from ..streaming.session import StreamingSession
from ..streaming.types import ResponseType

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "llm_content"


class Priority(IntEnum):
    LOWEST = 0
    LOW = 25
    NORMAL = 50
    HIGH = 75
    HIGHEST = 100


@dataclass(frozen=True)
class Intent:
    topic: str
    priority: Priority = Priority.NORMAL
    is_adhoc: bool = False


class FunctionRouter:
    """Resolve function names emitted by the model to registered topics."""

    def __init__(self, default_topic: str = DEFAULT_TOPIC) -> None:
        self.default_topic = default_topic
        self._topics: dict[str, str] = {}

    def register(self, function_name: str, topic: str) -> None:
        if function_name in self._topics and self._topics[function_name] != topic:
            raise ValueError(f"Function {function_name!r} is already registered")
        self._topics[function_name] = topic

    def resolve(self, function_name: str | None) -> str | None:
        if not function_name:
            return None
        return self._topics.get(function_name)

    @property
    def registrations(self) -> dict[str, str]:
        return dict(self._topics)

    def extract_intent(self, session: StreamingSession) -> Intent:
        if session.response_type is ResponseType.FUNCTION_CALLING:
            topic = self.resolve(session.function_name)
            if topic is not None:
                return Intent(topic, Priority.HIGHEST, is_adhoc=True)
            logger.warning(
                "No skill registered for function %s; using %s",
                session.function_name,
                self.default_topic,
            )
        return Intent(self.default_topic, Priority.NORMAL)


__all__ = ["DEFAULT_TOPIC", "FunctionRouter", "Intent", "Priority"]
