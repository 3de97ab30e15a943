"""Provider-neutral conversation messages and history helpers."""

from __future__ import annotations

import base64
from typing import Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["system", "user", "assistant", "function"]


class ContentPart(BaseModel):
    """A single text or image fragment of a message."""

    type: Literal["text", "image"]
    text: Optional[str] = None
    media_type: Optional[str] = None
    data: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def from_text(cls, text: str) -> "ContentPart":
        return cls(type="text", text=text)

    @classmethod
    def from_image(cls, image: bytes, media_type: str = "image/jpeg") -> "ContentPart":
        return cls(
            type="image",
            media_type=media_type,
            data=base64.b64encode(image).decode("ascii"),
        )

    @property
    def data_url(self) -> str | None:
        if self.type != "image" or not self.data:
            return None
        return f"data:{self.media_type or 'image/jpeg'};base64,{self.data}"


class FunctionCall(BaseModel):
    name: str
    arguments: str = ""


class Message(BaseModel):
    """Represents a single chat message."""

    role: Role
    content: list[ContentPart] = Field(default_factory=list)
    name: Optional[str] = None
    function_call: Optional[FunctionCall] = None

    @classmethod
    def create(
        cls,
        role: Role,
        text: str | None = None,
        *,
        image: bytes | None = None,
        media_type: str = "image/jpeg",
        name: str | None = None,
        function_call: FunctionCall | None = None,
    ) -> "Message":
        """Build a message from optional text and image bytes.

        Empty text is dropped, mirroring how providers reject empty text blocks.
        """

        parts: list[ContentPart] = []
        if text:
            parts.append(ContentPart.from_text(text))
        if image:
            parts.append(ContentPart.from_image(image, media_type))
        return cls(role=role, content=parts, name=name, function_call=function_call)

    @property
    def text(self) -> str:
        return "".join(part.text or "" for part in self.content if part.type == "text")

    @property
    def has_images(self) -> bool:
        return any(part.type == "image" for part in self.content)

    def strip_images(self) -> bool:
        """Remove image parts in place. Returns ``True`` when anything was removed."""

        kept = [part for part in self.content if part.type != "image"]
        removed = len(kept) != len(self.content)
        self.content = kept
        return removed


def history_window(history: Sequence[Message], turns: int) -> list[Message]:
    """Return the messages of the last ``turns`` user/assistant exchanges."""

    if turns <= 0:
        return []
    return list(history[-turns * 2 :])


def last_user_message(messages: Sequence[Message]) -> Message | None:
    for message in reversed(messages):
        if message.role == "user":
            return message
    return None


__all__ = [
    "ContentPart",
    "FunctionCall",
    "Message",
    "Role",
    "history_window",
    "last_user_message",
]
