"""Drive a logical turn: attempts, supervision, retries and continuation legs."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress
from typing import Callable, Optional, Sequence

from ..chat.messages import FunctionCall, Message, last_user_message
from ..chat.state import ConversationState
from ..config import DEFAULT_ERROR_MESSAGE, StreamingOptions
from ..providers.base import ChunkParser, StreamingProvider
from ..transport import (
    Chunk,
    ChunkInbox,
    HttpStreamTransport,
    StreamClosed,
    StreamTransport,
)
from .continuation import ContinuationController
from .session import StreamingSession
from .types import ErrorKind, ResponseType

logger = logging.getLogger(__name__)

TransportFactory = Callable[[], StreamTransport]
FragmentCallback = Callable[[str], None]


class SessionDriver:
    """Run one logical turn against a provider and return its session.

    Attempt-level failures never escape ``run``: a no-data timeout is retried
    while the budget lasts, then the turn ends as ``ERROR`` with the canned
    error message in place of the answer. Transport failures end the turn
    immediately; cancellation aborts the transport and ends it as ``ERROR``
    without retry or continuation. History is written only after a turn ends
    in success.
    """

    def __init__(
        self,
        provider: StreamingProvider,
        *,
        transport_factory: TransportFactory = HttpStreamTransport,
        continuation: Optional[ContinuationController] = None,
        error_message: str = DEFAULT_ERROR_MESSAGE,
        options: Optional[StreamingOptions] = None,
        debug: bool = False,
    ) -> None:
        self.provider = provider
        self.continuation = continuation
        self.error_message = error_message
        self.debug = debug
        self._transport_factory = transport_factory
        self._options = options

    @property
    def options(self) -> StreamingOptions:
        return self._options or self.provider.options

    async def run(
        self,
        contexts: Sequence[Message],
        state: ConversationState,
        *,
        use_functions: bool = True,
        record_history: bool = True,
        cancel: Optional[asyncio.Event] = None,
        on_fragment: Optional[FragmentCallback] = None,
    ) -> StreamingSession:
        session = StreamingSession(contexts=list(contexts))
        request_message = last_user_message(session.contexts)
        retries_left = self.options.retry_limit

        session.begin_leg()
        while True:
            await self._attempt(session, state, use_functions, cancel, on_fragment)

            if session.response_type is ResponseType.TIMEOUT:
                if retries_left > 0:
                    retries_left -= 1
                    logger.warning(
                        "%s timeouts with no response data. Retrying ...",
                        self.provider.name,
                    )
                    continue
                logger.error("%s timeouts with no response data.", self.provider.name)
                session.response_type = ResponseType.ERROR
                session.stream_buffer = self.error_message
                break

            if session.response_type is ResponseType.ERROR:
                if session.error_kind is not ErrorKind.CANCELLED:
                    session.stream_buffer = self.error_message
                logger.warning(
                    "Messages are not added to histories for response type is not success: %s",
                    session.error_kind.value if session.error_kind else "error",
                )
                break

            if (
                session.response_type is ResponseType.CONTENT
                and self.continuation is not None
                and await self.continuation.continue_turn(session)
            ):
                if cancel is not None and cancel.is_set():
                    logger.info("Continuation canceled before the next leg.")
                    session.fail(ErrorKind.CANCELLED)
                    break
                session.begin_leg()
                continue

            if record_history:
                self._commit_history(session, state, request_message)
            break

        session.is_response_done = True
        if self.debug:
            logger.debug(
                "Response from %s: %s",
                self.provider.name,
                json.dumps(session.stream_buffer, ensure_ascii=False),
            )
        return session

    async def _attempt(
        self,
        session: StreamingSession,
        state: ConversationState,
        use_functions: bool,
        cancel: Optional[asyncio.Event],
        on_fragment: Optional[FragmentCallback],
    ) -> None:
        session.begin_attempt()
        request = self.provider.build_request(
            session.contexts, state, use_functions=use_functions
        )
        if self.debug:
            logger.debug(
                "Request to %s: %s",
                self.provider.name,
                json.dumps(request.payload, ensure_ascii=False),
            )

        loop = asyncio.get_running_loop()
        inbox = ChunkInbox(loop)
        activity = asyncio.Event()
        parser = self.provider.create_parser()
        feeder = loop.create_task(
            self._feed(session, parser, inbox, activity, on_fragment)
        )
        transport = self._transport_factory()
        started = loop.time()
        try:
            transport.start(request, inbox)
            await self._supervise(session, transport, activity, cancel, started)
        finally:
            transport.abort()
            if not feeder.done():
                feeder.cancel()
            with suppress(asyncio.CancelledError):
                await feeder

    async def _feed(
        self,
        session: StreamingSession,
        parser: ChunkParser,
        inbox: ChunkInbox,
        activity: asyncio.Event,
        on_fragment: Optional[FragmentCallback],
    ) -> None:
        try:
            async for item in inbox:
                if isinstance(item, Chunk):
                    session.bytes_received += len(item.data)
                    deltas = parser.feed(item.data)
                elif isinstance(item, StreamClosed):
                    deltas = parser.close()
                else:
                    session.transport_error = item.error
                    return

                for delta in deltas:
                    text = session.apply(delta)
                    if text and on_fragment is not None:
                        on_fragment(text)
                if isinstance(item, StreamClosed):
                    session.done_signalled = True
                activity.set()
        except Exception as exc:
            logger.exception("Consuming %s stream failed", self.provider.name)
            session.transport_error = exc
        finally:
            activity.set()

    async def _supervise(
        self,
        session: StreamingSession,
        transport: StreamTransport,
        activity: asyncio.Event,
        cancel: Optional[asyncio.Event],
        started: float,
    ) -> None:
        options = self.options
        loop = asyncio.get_running_loop()
        no_data_deadline = started + options.no_data_timeout
        response_deadline = started + options.response_timeout
        name = self.provider.name

        while True:
            if session.transport_error is not None:
                logger.error("%s ends with error: %s", name, session.transport_error)
                session.fail(ErrorKind.TRANSPORT)
                return

            if session.done_signalled:
                if session.fragments_received > 0:
                    return
                logger.error("%s stream ended without any content", name)
                session.fail(ErrorKind.TRANSPORT)
                return

            if cancel is not None and cancel.is_set():
                logger.info("Preprocessing response from %s canceled.", name)
                transport.abort()
                session.fail(ErrorKind.CANCELLED)
                return

            now = loop.time()
            if session.bytes_received == 0 and now >= no_data_deadline:
                transport.abort()
                session.fail(ErrorKind.NO_DATA_TIMEOUT)
                return
            if now >= response_deadline:
                logger.error("%s response timed out", name)
                transport.abort()
                session.fail(ErrorKind.RESPONSE_TIMEOUT)
                return

            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(activity.wait(), timeout=options.polling_interval)
            activity.clear()

    def _commit_history(
        self,
        session: StreamingSession,
        state: ConversationState,
        request_message: Message | None,
    ) -> None:
        # The latest user message and the one recorded in history lose their images
        for message in (last_user_message(session.contexts), request_message):
            if message is not None:
                message.strip_images()
        if request_message is None:
            return

        if session.response_type is ResponseType.FUNCTION_CALLING:
            reply = Message(
                role="assistant",
                function_call=FunctionCall(
                    name=session.function_name or "",
                    arguments=session.stream_buffer,
                ),
            )
        else:
            reply = Message.create("assistant", session.stream_buffer)

        state.add_history(self.provider.history_key, request_message, reply)


__all__ = ["FragmentCallback", "SessionDriver", "TransportFactory"]
