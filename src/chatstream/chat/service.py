"""High-level coordination of conversation turns."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Optional

from ..providers.base import ProviderError, StreamingProvider
from ..streaming.continuation import (
    CaptureImage,
    ContinuationController,
    VisionContinuation,
)
from ..streaming.driver import FragmentCallback, SessionDriver
from ..streaming.session import StreamingSession
from ..streaming.tags import strip_tags
from ..streaming.types import ErrorKind, ResponseType
from .router import FunctionRouter, Intent
from .skills import FunctionSkill
from .state import ConversationStore

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    conversation_id: str
    text: str
    display_text: str
    response_type: ResponseType
    intent: Intent
    function_name: Optional[str] = None
    function_arguments: Optional[str] = None
    attempts: int = 0
    legs: int = 0
    error_kind: Optional[ErrorKind] = None
    error_detail: Optional[str] = None


class ChatService:
    """Run turns for many conversations against one provider."""

    def __init__(
        self,
        provider: StreamingProvider,
        driver: SessionDriver | None = None,
        *,
        store: ConversationStore | None = None,
        router: FunctionRouter | None = None,
    ) -> None:
        self.provider = provider
        self.driver = driver or SessionDriver(provider, continuation=ContinuationController())
        if self.driver.continuation is None:
            self.driver.continuation = ContinuationController()
        self.store = store or ConversationStore()
        self.router = router or FunctionRouter()
        self._skills: dict[str, FunctionSkill] = {}

    def register_skill(self, skill: FunctionSkill) -> None:
        spec = skill.function_spec()
        self.provider.add_function(spec)
        self.router.register(spec.name, skill.topic_name)
        self._skills[skill.topic_name] = skill
        logger.info("Registered skill %s for function %s", skill.topic_name, spec.name)

    def set_capture(self, capture: CaptureImage | None, tag: str = "vision") -> None:
        controller = self.driver.continuation
        if controller is None:
            controller = self.driver.continuation = ContinuationController()
        if capture is None:
            controller.unregister(tag)
        else:
            controller.register(tag, VisionContinuation(capture))

    async def process(
        self,
        conversation_id: str,
        text: str,
        *,
        image: bytes | None = None,
        cancel: Optional[asyncio.Event] = None,
        on_fragment: Optional[FragmentCallback] = None,
    ) -> TurnResult:
        async with self.store.lock(conversation_id):
            state = self.store.get(conversation_id)
            contexts = self.provider.make_prompt(state, text, image=image)
            session = await self.driver.run(
                contexts, state, cancel=cancel, on_fragment=on_fragment
            )
            intent = self.router.extract_intent(session)
            final = session
            skill = self._skills.get(intent.topic) if intent.is_adhoc else None
            if skill is not None:
                final = await skill.process(
                    session,
                    state,
                    self.driver,
                    cancel=cancel,
                    on_fragment=on_fragment,
                )

        return TurnResult(
            conversation_id=conversation_id,
            text=final.stream_buffer,
            display_text=strip_tags(final.stream_buffer)
            if final.response_type is not ResponseType.FUNCTION_CALLING
            else "",
            response_type=final.response_type,
            intent=intent,
            function_name=session.function_name,
            function_arguments=session.function_arguments,
            attempts=session.attempts + (final.attempts if final is not session else 0),
            legs=session.legs,
            error_kind=final.error_kind,
            error_detail=_error_detail(final),
        )


def _error_detail(session: StreamingSession) -> str | None:
    error = session.transport_error
    if error is None:
        return None
    if isinstance(error, ProviderError):
        detail = error.detail
        return detail if isinstance(detail, str) else json.dumps(detail)
    return str(error)


__all__ = ["ChatService", "TurnResult"]
