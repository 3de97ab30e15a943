"""Function-calling skills executed after the model selects a function."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..providers.base import FunctionSpec
from ..streaming.driver import FragmentCallback, SessionDriver
from ..streaming.session import StreamingSession
from .messages import FunctionCall, Message, history_window
from .state import ConversationState

logger = logging.getLogger(__name__)


class FunctionSkill(ABC):
    """A skill backed by one function offered to the model."""

    topic: str = ""

    @abstractmethod
    def function_spec(self) -> FunctionSpec:
        ...

    @abstractmethod
    async def execute(self, arguments: str) -> str:
        """Run the function with the raw JSON argument text and return its result."""

    @property
    def topic_name(self) -> str:
        return self.topic or self.function_spec().name

    async def process(
        self,
        session: StreamingSession,
        state: ConversationState,
        driver: SessionDriver,
        *,
        cancel: Optional[asyncio.Event] = None,
        on_fragment: Optional[FragmentCallback] = None,
    ) -> StreamingSession:
        """Execute the call and ask the model for a human-friendly answer.

        The driver has already recorded the user message and the function
        call. The function result and the final answer are recorded here, only
        when the follow-up completes.
        """

        name = self.function_spec().name
        arguments = session.function_arguments or ""
        result = await self.execute(arguments)

        history_key = driver.provider.history_key
        history = state.get_history(history_key)
        contexts: list[Message] = []
        system_prompt = driver.provider.system_prompt
        if system_prompt and driver.provider.system_in_messages:
            contexts.append(Message.create("system", system_prompt))
        contexts.extend(history_window(history, driver.provider.history_turns))
        if not contexts or contexts[-1].function_call is None:
            contexts.append(
                Message(
                    role="assistant",
                    function_call=FunctionCall(name=name, arguments=arguments),
                )
            )
        function_message = Message.create("function", result, name=name)
        contexts.append(function_message)

        followup = await driver.run(
            contexts,
            state,
            use_functions=False,
            record_history=False,
            cancel=cancel,
            on_fragment=on_fragment,
        )
        if followup.response_type.is_success:
            state.add_history(
                history_key,
                function_message,
                Message.create("assistant", followup.stream_buffer),
            )
        else:
            logger.warning("Follow-up after function %s did not succeed", name)
        return followup


__all__ = ["FunctionSkill"]
