"""Mutable per-turn streaming record observed by the driver."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from ..chat.messages import Message
from .types import (
    ContentFragment,
    Delta,
    Done,
    ErrorKind,
    FunctionCallFragment,
    ResponseType,
)


@dataclass
class StreamingSession:
    """Buffers and classification for one logical turn.

    ``stream_buffer`` accumulates across every leg of the turn while
    ``current_stream_buffer`` holds only the leg in flight, so tags emitted by
    an earlier leg are never seen twice.
    """

    contexts: list[Message]
    stream_buffer: str = ""
    current_stream_buffer: str = ""
    response_type: ResponseType = ResponseType.NONE
    function_name: Optional[str] = None
    is_continuation_available: bool = True
    is_response_done: bool = False
    error_kind: Optional[ErrorKind] = None
    attempts: int = 0
    legs: int = 0
    bytes_received: int = 0
    fragments_received: int = 0
    done_signalled: bool = False
    transport_error: Optional[BaseException] = field(default=None, repr=False)

    def begin_attempt(self) -> None:
        self.attempts += 1
        self.current_stream_buffer = ""
        self.response_type = ResponseType.NONE
        self.error_kind = None
        self.bytes_received = 0
        self.fragments_received = 0
        self.done_signalled = False
        self.transport_error = None

    def begin_leg(self) -> None:
        self.legs += 1

    def apply(self, delta: Delta) -> str | None:
        """Fold a parsed delta into the session.

        Returns the appended text, if any. The first content-bearing delta fixes
        the response type for the attempt; later deltas of the other kind are
        still buffered but never reclassify.
        """

        if isinstance(delta, Done):
            self.done_signalled = True
            return None

        if isinstance(delta, ContentFragment):
            if self.response_type is ResponseType.NONE:
                self.response_type = ResponseType.CONTENT
            text = delta.text
        elif isinstance(delta, FunctionCallFragment):
            if self.response_type is ResponseType.NONE:
                self.response_type = ResponseType.FUNCTION_CALLING
            if delta.name and not self.function_name:
                self.function_name = delta.name
            text = delta.arguments
        else:
            return None

        self.fragments_received += 1
        if text:
            self.stream_buffer += text
            self.current_stream_buffer += text
        return text

    def fail(self, kind: ErrorKind) -> None:
        self.error_kind = kind
        if kind is ErrorKind.NO_DATA_TIMEOUT:
            self.response_type = ResponseType.TIMEOUT
        else:
            self.response_type = ResponseType.ERROR

    @property
    def function_arguments(self) -> str | None:
        if self.response_type is not ResponseType.FUNCTION_CALLING:
            return None
        return self.stream_buffer


__all__ = ["StreamingSession"]
