"""Shared streaming-provider contract and SSE chunk parsing."""

from __future__ import annotations

import codecs
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from ..chat.messages import Message, history_window
from ..chat.state import ConversationState
from ..config import StreamingOptions
from ..streaming.types import Delta, Done, Ignorable

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Wrap transport or API failures when communicating with a provider."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


@dataclass
class ProviderRequest:
    """A fully built outbound streaming request."""

    url: str
    headers: dict[str, str]
    payload: dict[str, Any]
    timeout: float = 30.0


@dataclass
class FunctionSpec:
    """JSON-schema description of a callable function offered to the model."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def asdict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


class ChunkParser(ABC):
    """Turn raw chunks into normalized deltas.

    Chunks are reassembled through a running text accumulator and only complete
    lines are interpreted, so any re-chunking of the same byte stream yields
    the same deltas. Undecodable or unparsable segments are logged and skipped.
    """

    data_prefix = "data:"

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""
        self._finished = False

    def feed(self, chunk: bytes | str) -> list[Delta]:
        if self._finished:
            return []
        if isinstance(chunk, bytes):
            text = self._decoder.decode(chunk)
        else:
            text = chunk
        if not text:
            return []

        self._pending += text
        *lines, self._pending = self._pending.split("\n")
        return self._parse_lines(lines)

    def close(self) -> list[Delta]:
        """Flush whatever remains once the connection closes."""

        if self._finished:
            return []
        tail = self._decoder.decode(b"", final=True)
        remaining = self._pending + tail
        self._pending = ""
        return self._parse_lines(remaining.split("\n"))

    @property
    def finished(self) -> bool:
        return self._finished

    def _parse_lines(self, lines: Sequence[str]) -> list[Delta]:
        deltas: list[Delta] = []
        for raw_line in lines:
            if self._finished:
                break
            line = raw_line.strip()
            if not line or line.startswith(":"):
                continue
            if not line.startswith(self.data_prefix):
                # event:/id: framing lines carry nothing we need
                continue
            data = line[len(self.data_prefix) :].strip()
            if not data:
                continue
            for delta in self.parse_data(data):
                if isinstance(delta, Ignorable):
                    continue
                deltas.append(delta)
                if isinstance(delta, Done):
                    self._finished = True
                    break
        return deltas

    def parse_data(self, data: str) -> list[Delta]:
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            logger.error("Deserialize error: %s", data)
            return []
        if not isinstance(payload, dict):
            logger.error("Unexpected stream payload: %s", data)
            return []
        return self.parse_event(payload)

    @abstractmethod
    def parse_event(self, payload: dict[str, Any]) -> list[Delta]:
        """Map one decoded JSON event to deltas."""


class StreamingProvider(ABC):
    """One LLM provider: prompt assembly, request building and parsing."""

    name: str = "provider"
    history_key: str = "Histories"
    custom_parameter_key: str = "Parameters"
    custom_header_key: str = "Headers"
    system_in_messages: bool = True

    def __init__(
        self,
        *,
        options: StreamingOptions | None = None,
        system_prompt: Optional[str] = None,
        history_turns: int = 10,
    ) -> None:
        self.options = options or StreamingOptions()
        self.system_prompt = system_prompt
        self.history_turns = history_turns
        self.functions: list[FunctionSpec] = []

    @property
    def supports_functions(self) -> bool:
        return False

    def add_function(self, spec: FunctionSpec) -> None:
        if not self.supports_functions:
            raise ValueError(f"{self.name} does not support function calling")
        self.functions.append(spec)

    def make_prompt(
        self,
        state: ConversationState,
        text: str,
        *,
        image: bytes | None = None,
    ) -> list[Message]:
        """Return the context list for a new turn: history window plus input."""

        messages: list[Message] = []
        if self.system_prompt and self.system_in_messages:
            messages.append(Message.create("system", self.system_prompt))
        messages.extend(
            history_window(state.get_history(self.history_key), self.history_turns)
        )
        messages.append(Message.create("user", text, image=image))
        return messages

    @abstractmethod
    def build_request(
        self,
        contexts: Sequence[Message],
        state: ConversationState,
        *,
        use_functions: bool = True,
    ) -> ProviderRequest:
        """Serialize contexts to the provider's wire payload."""

    @abstractmethod
    def create_parser(self) -> ChunkParser:
        """Return a fresh parser for one attempt."""

    def custom_parameters(self, state: ConversationState) -> dict[str, Any]:
        return state.parameters_for(self.custom_parameter_key)

    def custom_headers(self, state: ConversationState) -> dict[str, str]:
        return state.headers_for(self.custom_header_key)


__all__ = [
    "ChunkParser",
    "FunctionSpec",
    "ProviderError",
    "ProviderRequest",
    "StreamingProvider",
]
