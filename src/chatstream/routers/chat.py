"""Chat API routes."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress

from fastapi import APIRouter, HTTPException, Request
from sse_starlette.sse import EventSourceResponse

from ..chat.service import ChatService, TurnResult
from ..providers.base import ProviderError
from ..schemas.chat import ChatTurnRequest, ChatTurnResponse, SkillRegistration

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def _to_response(result: TurnResult) -> ChatTurnResponse:
    return ChatTurnResponse(
        conversation_id=result.conversation_id,
        text=result.text,
        display_text=result.display_text,
        response_type=result.response_type.value,
        topic=result.intent.topic,
        priority=int(result.intent.priority),
        function_name=result.function_name,
        function_arguments=result.function_arguments,
        attempts=result.attempts,
        legs=result.legs,
        error_kind=result.error_kind.value if result.error_kind else None,
        error_detail=result.error_detail,
    )


def _error_event(detail: str, **extra: object) -> dict[str, str]:
    return {"event": "error", "data": json.dumps({"detail": detail, **extra})}


@router.post("/chat", response_model=ChatTurnResponse)
async def chat_turn(payload: ChatTurnRequest, request: Request) -> ChatTurnResponse:
    """Run one turn and return the finished answer."""

    service = get_chat_service(request)
    try:
        result = await service.process(
            payload.conversation_id,
            payload.text,
            image=payload.image_bytes(),
        )
    except ProviderError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
    return _to_response(result)


@router.post("/chat/stream", response_model=None)
async def stream_chat_turn(
    payload: ChatTurnRequest, request: Request
) -> EventSourceResponse:
    """Run one turn, streaming fragments as Server-Sent Events."""

    service = get_chat_service(request)
    fragments: asyncio.Queue[str] = asyncio.Queue()
    cancel = asyncio.Event()

    async def event_publisher():
        task = asyncio.create_task(
            service.process(
                payload.conversation_id,
                payload.text,
                image=payload.image_bytes(),
                cancel=cancel,
                on_fragment=fragments.put_nowait,
            )
        )
        try:
            while not task.done() or not fragments.empty():
                getter = asyncio.ensure_future(fragments.get())
                await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
                if getter.done():
                    yield {"event": "message", "data": json.dumps({"delta": getter.result()})}
                else:
                    getter.cancel()
                    with suppress(asyncio.CancelledError):
                        await getter
            result = task.result()
            if result.error_kind is not None:
                yield _error_event(
                    result.error_detail or result.text,
                    kind=result.error_kind.value,
                )
            yield {
                "event": "result",
                "data": _to_response(result).model_dump_json(),
            }
        except ProviderError as exc:
            detail = (
                exc.detail if isinstance(exc.detail, str) else json.dumps(exc.detail)
            )
            yield _error_event(detail, status_code=exc.status_code)
        except Exception as exc:
            logger.exception("Chat turn for %s failed", payload.conversation_id)
            yield _error_event(str(exc))
        finally:
            if not task.done():
                cancel.set()
                with suppress(asyncio.CancelledError):
                    await task

    return EventSourceResponse(event_publisher())


@router.get("/skills", response_model=list[SkillRegistration])
async def list_skills(request: Request) -> list[SkillRegistration]:
    service = get_chat_service(request)
    return [
        SkillRegistration(function_name=name, topic=topic)
        for name, topic in sorted(service.router.registrations.items())
    ]


__all__ = ["router", "get_chat_service"]
