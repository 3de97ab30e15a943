"""Tests for the streaming session driver state machine."""

from __future__ import annotations

import asyncio

import pytest
from fastapi import status

from chatstream.chat.messages import Message
from chatstream.chat.state import ConversationState
from chatstream.config import StreamingOptions
from chatstream.providers.base import ProviderError
from chatstream.streaming.continuation import (
    CAPTURE_FAILED_PROMPT,
    ContinuationController,
    VisionContinuation,
)
from chatstream.streaming.driver import SessionDriver
from chatstream.streaming.types import ErrorKind, ResponseType
from fakes import (
    FAST_OPTIONS,
    ScriptedTransport,
    ThreadedTransport,
    TransportSequence,
    content_event,
    content_stream,
    function_event,
    openai_provider,
    silent_transport,
    DONE_EVENT,
)

ERROR_TEXT = "Something went wrong."


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def make_driver(transports, *, capture=None, options=None):
    provider = openai_provider()
    factory = TransportSequence(transports)
    continuation = ContinuationController()
    if capture is not None:
        continuation.register("vision", VisionContinuation(capture))
    driver = SessionDriver(
        provider,
        transport_factory=factory,
        continuation=continuation,
        error_message=ERROR_TEXT,
        options=options,
    )
    return driver, factory


def start_turn(driver: SessionDriver, state: ConversationState, text: str, image=None):
    return driver.provider.make_prompt(state, text, image=image)


class CaptureRecorder:
    def __init__(self, result: bytes | None = b"\xff\xd8jpeg", error: Exception | None = None):
        self.result = result
        self.error = error
        self.targets: list[str] = []

    async def __call__(self, target: str) -> bytes | None:
        self.targets.append(target)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.mark.anyio
async def test_successful_content_turn_records_history() -> None:
    driver, factory = make_driver([ScriptedTransport(content_stream("Hello", " world"))])
    state = ConversationState("c1")

    session = await driver.run(start_turn(driver, state, "Hi"), state)

    assert session.response_type is ResponseType.CONTENT
    assert session.stream_buffer == "Hello world"
    assert session.is_response_done
    assert session.attempts == 1
    history = state.get_history(driver.provider.history_key)
    assert [(m.role, m.text) for m in history] == [("user", "Hi"), ("assistant", "Hello world")]
    assert factory.payloads[0]["stream"] is True


@pytest.mark.anyio
async def test_no_data_timeout_retries_until_budget_is_spent() -> None:
    transports = [silent_transport(), silent_transport()]
    driver, factory = make_driver(transports)
    state = ConversationState("c1")

    session = await driver.run(start_turn(driver, state, "Hello?"), state)

    assert len(factory.used) == 2
    assert session.attempts == 2
    assert session.response_type is ResponseType.ERROR
    assert session.error_kind is ErrorKind.NO_DATA_TIMEOUT
    assert session.stream_buffer == ERROR_TEXT
    assert state.get_history(driver.provider.history_key) == []
    assert all(transport.abort_calls >= 1 for transport in transports)


@pytest.mark.anyio
@pytest.mark.parametrize("retry_limit", [0, 2, 3])
async def test_exactly_retry_limit_retries(retry_limit: int) -> None:
    options = FAST_OPTIONS.model_copy(update={"retry_limit": retry_limit})
    transports = [silent_transport() for _ in range(retry_limit + 1)]
    driver, factory = make_driver(transports, options=options)
    state = ConversationState("c1")

    session = await driver.run(start_turn(driver, state, "Hello?"), state)

    assert len(factory.used) == retry_limit + 1
    assert session.response_type is ResponseType.ERROR


@pytest.mark.anyio
async def test_failed_attempts_then_success_adds_one_pair() -> None:
    driver, factory = make_driver(
        [silent_transport(), ScriptedTransport(content_stream("Finally"))]
    )
    state = ConversationState("c1")
    history = state.get_history(driver.provider.history_key)
    history.extend([Message.create("user", "old"), Message.create("assistant", "reply")])

    session = await driver.run(start_turn(driver, state, "Now"), state)

    assert session.response_type is ResponseType.CONTENT
    assert session.attempts == 2
    assert len(history) == 4
    assert [m.text for m in history[-2:]] == ["Now", "Finally"]
    # the retry re-sends the same context
    assert factory.payloads[0]["messages"] == factory.payloads[1]["messages"]


@pytest.mark.anyio
async def test_transport_error_is_not_retried() -> None:
    error = ProviderError(status.HTTP_500_INTERNAL_SERVER_ERROR, "boom")
    driver, factory = make_driver([ScriptedTransport(error=error), ScriptedTransport()])
    state = ConversationState("c1")

    session = await driver.run(start_turn(driver, state, "Hi"), state)

    assert len(factory.used) == 1
    assert session.response_type is ResponseType.ERROR
    assert session.error_kind is ErrorKind.TRANSPORT
    assert session.stream_buffer == ERROR_TEXT
    assert state.get_history(driver.provider.history_key) == []


@pytest.mark.anyio
async def test_stream_closed_without_content_is_an_error() -> None:
    driver, _ = make_driver([ScriptedTransport([DONE_EVENT])])
    state = ConversationState("c1")

    session = await driver.run(start_turn(driver, state, "Hi"), state)

    assert session.response_type is ResponseType.ERROR
    assert session.error_kind is ErrorKind.TRANSPORT


@pytest.mark.anyio
async def test_cancellation_aborts_transport_without_retry() -> None:
    transport = ScriptedTransport([content_event("partial")], finish=False)
    driver, factory = make_driver([transport, ScriptedTransport()])
    state = ConversationState("c1")
    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, cancel.set)

    session = await driver.run(start_turn(driver, state, "Hi"), state, cancel=cancel)

    assert len(factory.used) == 1
    assert transport.abort_calls >= 1
    assert session.response_type is ResponseType.ERROR
    assert session.error_kind is ErrorKind.CANCELLED
    assert session.stream_buffer == "partial"
    assert state.get_history(driver.provider.history_key) == []


@pytest.mark.anyio
async def test_response_timeout_after_first_byte() -> None:
    options = StreamingOptions(
        no_data_timeout_ms=50, response_timeout_ms=80, retry_limit=3, polling_interval_ms=5
    )
    transport = ScriptedTransport([content_event("slow")], finish=False)
    driver, factory = make_driver([transport], options=options)
    state = ConversationState("c1")

    session = await driver.run(start_turn(driver, state, "Hi"), state)

    assert len(factory.used) == 1
    assert session.error_kind is ErrorKind.RESPONSE_TIMEOUT
    assert session.response_type is ResponseType.ERROR


@pytest.mark.anyio
async def test_images_are_sent_then_stripped_from_history() -> None:
    driver, factory = make_driver([ScriptedTransport(content_stream("A red ball."))])
    state = ConversationState("c1")

    session = await driver.run(
        start_turn(driver, state, "What is this?", image=b"\x89PNGdata"), state
    )

    sent = factory.payloads[0]["messages"][-1]["content"]
    assert [part["type"] for part in sent] == ["text", "image_url"]
    assert sent[1]["image_url"]["url"].startswith("data:image/jpeg;base64,")
    assert session.response_type is ResponseType.CONTENT
    user_message = state.get_history(driver.provider.history_key)[0]
    assert not user_message.has_images
    assert user_message.text == "What is this?"


@pytest.mark.anyio
async def test_images_survive_a_failed_turn_for_retry() -> None:
    driver, factory = make_driver(
        [silent_transport(), ScriptedTransport(content_stream("Seen."))]
    )
    state = ConversationState("c1")

    await driver.run(start_turn(driver, state, "Look", image=b"img"), state)

    for payload in factory.payloads:
        assert payload["messages"][-1]["content"][1]["type"] == "image_url"


@pytest.mark.anyio
async def test_vision_continuation_scenario() -> None:
    capture = CaptureRecorder()
    driver, factory = make_driver(
        [
            ScriptedTransport(content_stream("<vision>camera</vision>", "I need to see.")),
            ScriptedTransport(content_stream("A cup of coffee.")),
        ],
        capture=capture,
    )
    state = ConversationState("c1")
    contexts = start_turn(driver, state, "What's in front of me?")

    session = await driver.run(contexts, state)

    assert capture.targets == ["camera"]
    assert len(factory.used) == 2
    assert session.legs == 2
    assert len(session.contexts) == len(contexts) + 2
    assistant_partial, user_with_image = session.contexts[-2:]
    assert assistant_partial.role == "assistant"
    assert assistant_partial.text == "<vision>camera</vision>I need to see."
    assert user_with_image.role == "user"
    assert user_with_image.text == "What's in front of me?"

    second_request = factory.payloads[1]["messages"]
    assert second_request[-1]["content"][0]["type"] == "image_url"
    assert second_request[-1]["content"][1] == {
        "type": "text",
        "text": "What's in front of me?",
    }

    assert session.response_type is ResponseType.CONTENT
    assert session.current_stream_buffer == "A cup of coffee."
    assert session.stream_buffer == "<vision>camera</vision>I need to see.A cup of coffee."
    assert not any(m.has_images for m in session.contexts)

    history = state.get_history(driver.provider.history_key)
    assert [m.role for m in history] == ["user", "assistant"]
    assert history[1].text == session.stream_buffer


@pytest.mark.anyio
async def test_continuation_fires_at_most_once_per_turn() -> None:
    capture = CaptureRecorder()
    driver, factory = make_driver(
        [
            ScriptedTransport(content_stream("<vision>camera</vision>Looking.")),
            ScriptedTransport(content_stream("<vision>camera</vision>Again?")),
            ScriptedTransport(content_stream("never used")),
        ],
        capture=capture,
    )
    state = ConversationState("c1")

    session = await driver.run(start_turn(driver, state, "Look"), state)

    assert capture.targets == ["camera"]
    assert len(factory.used) == 2
    assert session.legs == 2
    assert session.is_continuation_available is False


@pytest.mark.anyio
@pytest.mark.parametrize(
    "capture",
    [CaptureRecorder(result=None), CaptureRecorder(error=RuntimeError("no camera"))],
)
async def test_capture_failure_asks_model_to_inform_user(capture: CaptureRecorder) -> None:
    driver, factory = make_driver(
        [
            ScriptedTransport(content_stream("<vision>camera</vision>One moment.")),
            ScriptedTransport(content_stream("Sorry, I could not see anything.")),
        ],
        capture=capture,
    )
    state = ConversationState("c1")

    session = await driver.run(start_turn(driver, state, "Look"), state)

    assert capture.targets == ["camera"]
    assert len(factory.used) == 2
    assert session.contexts[-1].role == "user"
    assert session.contexts[-1].text == CAPTURE_FAILED_PROMPT
    assert session.response_type is ResponseType.CONTENT


@pytest.mark.anyio
async def test_no_continuation_without_capability() -> None:
    driver, factory = make_driver(
        [ScriptedTransport(content_stream("<vision>camera</vision>I need to see."))]
    )
    state = ConversationState("c1")

    session = await driver.run(start_turn(driver, state, "Look"), state)

    assert len(factory.used) == 1
    assert session.legs == 1
    assert session.is_continuation_available is True


@pytest.mark.anyio
async def test_failed_continuation_leg_records_no_history() -> None:
    capture = CaptureRecorder()
    driver, _ = make_driver(
        [
            ScriptedTransport(content_stream("<vision>camera</vision>Wait.")),
            ScriptedTransport(error=ProviderError(502, "bad gateway")),
        ],
        capture=capture,
    )
    state = ConversationState("c1")

    session = await driver.run(start_turn(driver, state, "Look"), state)

    assert session.response_type is ResponseType.ERROR
    assert state.get_history(driver.provider.history_key) == []


@pytest.mark.anyio
async def test_function_call_turn() -> None:
    driver, _ = make_driver(
        [
            ScriptedTransport(
                [
                    function_event("", name="get_weather"),
                    function_event('{"city":"'),
                    function_event('Tokyo"}'),
                    DONE_EVENT,
                ]
            )
        ]
    )
    state = ConversationState("c1")

    session = await driver.run(start_turn(driver, state, "Weather in Tokyo?"), state)

    assert session.response_type is ResponseType.FUNCTION_CALLING
    assert session.function_name == "get_weather"
    assert session.function_arguments == '{"city":"Tokyo"}'
    reply = state.get_history(driver.provider.history_key)[-1]
    assert reply.function_call is not None
    assert reply.function_call.name == "get_weather"


@pytest.mark.anyio
async def test_fragments_are_reported_in_order() -> None:
    driver, _ = make_driver([ScriptedTransport(content_stream("a", "b", "c"))])
    state = ConversationState("c1")
    seen: list[str] = []

    await driver.run(start_turn(driver, state, "abc"), state, on_fragment=seen.append)

    assert seen == ["a", "b", "c"]


@pytest.mark.anyio
async def test_chunks_delivered_from_another_thread() -> None:
    transport = ThreadedTransport(content_stream("from ", "a ", "thread"))
    driver, _ = make_driver([transport])
    state = ConversationState("c1")

    session = await driver.run(start_turn(driver, state, "Hi"), state)

    assert session.response_type is ResponseType.CONTENT
    assert session.stream_buffer == "from a thread"


@pytest.mark.anyio
async def test_failing_fragment_consumer_ends_the_turn_promptly() -> None:
    driver, factory = make_driver([ScriptedTransport(content_stream("a", "b"))])
    state = ConversationState("c1")

    def consumer(text: str) -> None:
        raise ValueError("consumer broke")

    loop = asyncio.get_running_loop()
    started = loop.time()
    session = await driver.run(start_turn(driver, state, "Hi"), state, on_fragment=consumer)

    assert loop.time() - started < 1.0
    assert len(factory.used) == 1
    assert session.response_type is ResponseType.ERROR
    assert session.error_kind is ErrorKind.TRANSPORT
    assert isinstance(session.transport_error, ValueError)
    assert session.stream_buffer == ERROR_TEXT
    assert state.get_history(driver.provider.history_key) == []
