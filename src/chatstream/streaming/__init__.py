"""Streaming session engine package."""

from .session import StreamingSession
from .types import (
    ContentFragment,
    Delta,
    Done,
    ErrorKind,
    FunctionCallFragment,
    Ignorable,
    ResponseType,
)

__all__ = [
    "ContentFragment",
    "Delta",
    "Done",
    "ErrorKind",
    "FunctionCallFragment",
    "Ignorable",
    "ResponseType",
    "StreamingSession",
]
