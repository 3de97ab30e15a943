"""Tag-triggered continuation of a logical turn."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, Protocol

from ..chat.messages import Message, last_user_message
from .session import StreamingSession
from .tags import find_tags

logger = logging.getLogger(__name__)

CaptureImage = Callable[[str], Awaitable[Optional[bytes]]]

CAPTURE_FAILED_PROMPT = (
    "Please inform the user that an error occurred while capturing the image."
)


class ContinuationHandler(Protocol):
    async def __call__(
        self, value: str, session: StreamingSession
    ) -> list[Message]:
        """Return messages to append before the next leg starts."""
        ...


class VisionContinuation:
    """Capture an image for ``<vision>target</vision>`` and ask again with it."""

    def __init__(self, capture: CaptureImage, *, media_type: str = "image/jpeg") -> None:
        self._capture = capture
        self._media_type = media_type

    async def __call__(
        self, value: str, session: StreamingSession
    ) -> list[Message]:
        try:
            image = await self._capture(value)
        except Exception:
            logger.exception("Image capture for %r failed", value)
            image = None

        if not image:
            logger.warning("Image capture for %r returned nothing", value)
            return [Message.create("user", CAPTURE_FAILED_PROMPT)]

        request_message = last_user_message(session.contexts)
        request_text = request_message.text if request_message is not None else ""
        # Image first, then the text: better accuracy on most models
        with_image = Message.create("user", image=image, media_type=self._media_type)
        if request_text:
            with_image.content.extend(Message.create("user", request_text).content)
        return [
            Message.create("assistant", session.stream_buffer),
            with_image,
        ]


class ContinuationController:
    """Decide whether a finished leg triggers another leg.

    Handlers are registered per tag name. A logical turn gets one continuation
    at most: the permission on the session is consumed before the handler
    runs, so even a failing handler cannot trigger a second one.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ContinuationHandler] = {}

    def register(self, tag: str, handler: ContinuationHandler) -> None:
        self._handlers[tag] = handler

    def unregister(self, tag: str) -> None:
        self._handlers.pop(tag, None)

    async def continue_turn(self, session: StreamingSession) -> bool:
        """Append follow-up contexts and return ``True`` if a new leg should run."""

        if not self._handlers or not session.is_continuation_available:
            return False

        for tag in find_tags(session.current_stream_buffer):
            handler = self._handlers.get(tag.name)
            if handler is None:
                continue
            session.is_continuation_available = False
            logger.info("Continuation triggered by <%s>%s</%s>", tag.name, tag.value, tag.name)
            messages = await handler(tag.value, session)
            if not messages:
                return False
            session.contexts.extend(messages)
            return True
        return False


__all__ = [
    "CAPTURE_FAILED_PROMPT",
    "CaptureImage",
    "ContinuationController",
    "ContinuationHandler",
    "VisionContinuation",
]
