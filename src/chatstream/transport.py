"""Chunked HTTP streaming transport and the thread-safe chunk handoff."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol, Union

import httpx
from fastapi import status

from .providers.base import ProviderError, ProviderRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Chunk:
    data: bytes


@dataclass(frozen=True)
class StreamClosed:
    pass


@dataclass(frozen=True)
class StreamFailed:
    error: BaseException


InboxItem = Union[Chunk, StreamClosed, StreamFailed]


class ChunkInbox:
    """Hand chunks from a transport into the consuming event loop.

    ``deliver``, ``finish`` and ``fail`` may be called from any thread; items
    are queued on the owning loop with ``call_soon_threadsafe`` and consumed in
    delivery order. Anything delivered after the stream ended is dropped.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._queue: asyncio.Queue[InboxItem] = asyncio.Queue()
        self._closed = False

    def deliver(self, data: bytes) -> None:
        if data:
            self._put(Chunk(data))

    def finish(self) -> None:
        self._put(StreamClosed())

    def fail(self, error: BaseException) -> None:
        self._put(StreamFailed(error))

    def _put(self, item: InboxItem) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._enqueue(item)
        else:
            self._loop.call_soon_threadsafe(self._enqueue, item)

    def _enqueue(self, item: InboxItem) -> None:
        if self._closed:
            return
        if not isinstance(item, Chunk):
            self._closed = True
        self._queue.put_nowait(item)

    async def __aiter__(self) -> AsyncIterator[InboxItem]:
        while True:
            item = await self._queue.get()
            yield item
            if not isinstance(item, Chunk):
                return


class StreamTransport(Protocol):
    def start(self, request: ProviderRequest, inbox: ChunkInbox) -> None:
        ...

    def abort(self) -> None:
        ...


class HttpStreamTransport:
    """Stream a POST response body into a :class:`ChunkInbox` using httpx."""

    _client_pool: dict[float, httpx.AsyncClient] = {}

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client
        self._task: asyncio.Task[None] | None = None

    def _get_http_client(self, timeout: float) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        client = self.__class__._client_pool.get(timeout)
        if client is None:
            client = httpx.AsyncClient(
                timeout=httpx.Timeout(timeout, connect=10.0),
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
            )
            self.__class__._client_pool[timeout] = client
        return client

    def start(self, request: ProviderRequest, inbox: ChunkInbox) -> None:
        if self._task is not None:
            raise RuntimeError("Transport already started")
        self._task = asyncio.get_running_loop().create_task(
            self._run(request, inbox)
        )

    async def _run(self, request: ProviderRequest, inbox: ChunkInbox) -> None:
        try:
            client = self._get_http_client(request.timeout)
            async with client.stream(
                "POST",
                request.url,
                headers=request.headers,
                json=request.payload,
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    inbox.fail(
                        ProviderError(response.status_code, extract_error_detail(body))
                    )
                    return
                async for data in response.aiter_bytes():
                    inbox.deliver(data)
        except asyncio.CancelledError:
            inbox.finish()
            raise
        except httpx.HTTPError as exc:
            inbox.fail(ProviderError(status.HTTP_502_BAD_GATEWAY, str(exc)))
            return
        except Exception as exc:
            logger.exception("Streaming request to %s failed", request.url)
            inbox.fail(ProviderError(status.HTTP_502_BAD_GATEWAY, str(exc)))
            return
        inbox.finish()

    def abort(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    @classmethod
    async def aclose_shared(cls) -> None:
        clients = list(cls._client_pool.values())
        cls._client_pool.clear()
        for client in clients:
            try:
                await client.aclose()
            except Exception:  # pragma: no cover - best effort cleanup
                pass


def extract_error_detail(raw: bytes) -> object:
    if not raw:
        return "Provider returned an empty error response."
    text = raw.decode("utf-8", errors="ignore")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return text
    if isinstance(payload, dict):
        return payload.get("error") or payload
    return payload


__all__ = [
    "Chunk",
    "ChunkInbox",
    "HttpStreamTransport",
    "StreamClosed",
    "StreamFailed",
    "StreamTransport",
    "extract_error_detail",
]
