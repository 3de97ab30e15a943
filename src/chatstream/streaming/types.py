"""Type definitions for the streaming session subsystem."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class ResponseType(str, Enum):
    NONE = "none"
    CONTENT = "content"
    FUNCTION_CALLING = "function_calling"
    TIMEOUT = "timeout"
    ERROR = "error"

    @property
    def is_success(self) -> bool:
        return self in (ResponseType.CONTENT, ResponseType.FUNCTION_CALLING)


class ErrorKind(str, Enum):
    NO_DATA_TIMEOUT = "no_data_timeout"
    RESPONSE_TIMEOUT = "response_timeout"
    TRANSPORT = "transport"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ContentFragment:
    text: str


@dataclass(frozen=True)
class FunctionCallFragment:
    arguments: str
    name: Optional[str] = None


@dataclass(frozen=True)
class Done:
    pass


@dataclass(frozen=True)
class Ignorable:
    reason: str = ""


Delta = Union[ContentFragment, FunctionCallFragment, Done, Ignorable]


__all__ = [
    "ContentFragment",
    "Delta",
    "Done",
    "ErrorKind",
    "FunctionCallFragment",
    "Ignorable",
    "ResponseType",
]
