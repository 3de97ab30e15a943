"""Pydantic models for chat requests and responses."""

from __future__ import annotations

import base64
import binascii
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ChatTurnRequest(BaseModel):
    """Incoming request for one conversation turn."""

    conversation_id: str = Field(default="default", alias="conversation_id")
    text: str
    image_base64: Optional[str] = Field(default=None, alias="image")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("image_base64")
    @classmethod
    def _validate_image(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        if value.startswith("data:"):
            _, _, value = value.partition(",")
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("image must be base64 encoded") from exc
        return value

    def image_bytes(self) -> Optional[bytes]:
        if not self.image_base64:
            return None
        return base64.b64decode(self.image_base64)


class ChatTurnResponse(BaseModel):
    conversation_id: str
    text: str
    display_text: str
    response_type: str
    topic: str
    priority: int
    function_name: Optional[str] = None
    function_arguments: Optional[str] = None
    attempts: int = 0
    legs: int = 0
    error_kind: Optional[str] = None
    error_detail: Optional[str] = None


class SkillRegistration(BaseModel):
    function_name: str
    topic: str


__all__ = ["ChatTurnRequest", "ChatTurnResponse", "SkillRegistration"]
