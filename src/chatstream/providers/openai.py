"""OpenAI-compatible chat completion streaming."""

from __future__ import annotations

import json
import logging
from typing import Any, Sequence

from ..chat.messages import Message
from ..chat.state import ConversationState
from ..config import OpenAIProviderConfig
from ..streaming.types import (
    ContentFragment,
    Delta,
    Done,
    FunctionCallFragment,
    Ignorable,
)
from .base import ChunkParser, ProviderRequest, StreamingProvider

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class OpenAIChunkParser(ChunkParser):
    """Parse `data:` frames of the chat completions stream."""

    def parse_data(self, data: str) -> list[Delta]:
        if data == DONE_SENTINEL:
            return [Done()]
        return super().parse_data(data)

    def parse_event(self, payload: dict[str, Any]) -> list[Delta]:
        choices = payload.get("choices")
        if not isinstance(choices, list):
            logger.error("Empty choices error: %s", json.dumps(payload))
            return []
        if not choices:
            # Azure sends prompt_filter_results with no choices first
            return [Ignorable("no choices")]

        choice = choices[0]
        if not isinstance(choice, dict):
            return []
        delta = choice.get("delta") or {}
        if not isinstance(delta, dict):
            return []

        function_call = delta.get("function_call")
        if not isinstance(function_call, dict):
            tool_calls = delta.get("tool_calls")
            if isinstance(tool_calls, list) and tool_calls:
                first = tool_calls[0]
                if isinstance(first, dict) and isinstance(first.get("function"), dict):
                    function_call = first["function"]

        if isinstance(function_call, dict):
            name = function_call.get("name")
            arguments = function_call.get("arguments")
            return [
                FunctionCallFragment(
                    arguments=arguments if isinstance(arguments, str) else "",
                    name=name if isinstance(name, str) and name else None,
                )
            ]

        content = delta.get("content")
        if isinstance(content, str) and content:
            return [ContentFragment(content)]
        return [Ignorable("empty delta")]


class OpenAIProvider(StreamingProvider):
    name = "openai"
    history_key = "ChatGPTHistories"
    custom_parameter_key = "ChatGPTParameters"
    custom_header_key = "ChatGPTHeaders"

    def __init__(self, config: OpenAIProviderConfig) -> None:
        super().__init__(
            options=config.options,
            system_prompt=config.system_prompt,
            history_turns=config.history_turns,
        )
        self.config = config

    @property
    def supports_functions(self) -> bool:
        return True

    def build_request(
        self,
        contexts: Sequence[Message],
        state: ConversationState,
        *,
        use_functions: bool = True,
    ) -> ProviderRequest:
        payload: dict[str, Any] = {
            "model": self.config.model,
            "temperature": self.config.temperature,
            "messages": [serialize_message(message) for message in contexts],
            "stream": True,
        }
        if self.config.max_tokens > 0:
            payload["max_tokens"] = self.config.max_tokens
        if self.config.stop_sequences:
            payload["stop"] = list(self.config.stop_sequences)
        if use_functions and self.functions:
            payload["functions"] = [spec.asdict() for spec in self.functions]
        payload.update(self.custom_parameters(state))

        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        headers.update(self.custom_headers(state))

        return ProviderRequest(
            url=self.config.url,
            headers=headers,
            payload=payload,
            timeout=self.options.response_timeout,
        )

    def create_parser(self) -> ChunkParser:
        return OpenAIChunkParser()


def serialize_message(message: Message) -> dict[str, Any]:
    """Render a message in the chat completions wire format."""

    result: dict[str, Any] = {"role": message.role}
    if message.has_images:
        parts: list[dict[str, Any]] = []
        for part in message.content:
            if part.type == "text" and part.text:
                parts.append({"type": "text", "text": part.text})
            elif part.type == "image" and part.data_url:
                parts.append({"type": "image_url", "image_url": {"url": part.data_url}})
        result["content"] = parts
    else:
        result["content"] = message.text if message.content else None
    if message.name:
        result["name"] = message.name
    if message.function_call is not None:
        result["function_call"] = {
            "name": message.function_call.name,
            "arguments": message.function_call.arguments,
        }
    return result


__all__ = ["DONE_SENTINEL", "OpenAIChunkParser", "OpenAIProvider", "serialize_message"]
