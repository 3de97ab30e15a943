"""Anthropic messages API streaming."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from ..chat.messages import Message
from ..chat.state import ConversationState
from ..config import ClaudeProviderConfig
from ..streaming.types import ContentFragment, Delta, Done, Ignorable
from .base import ChunkParser, ProviderRequest, StreamingProvider

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class ClaudeChunkParser(ChunkParser):
    """Parse `content_block_delta` events; `message_stop` ends the stream."""

    def parse_event(self, payload: dict[str, Any]) -> list[Delta]:
        event_type = payload.get("type")
        if event_type == "message_stop":
            return [Done()]
        if event_type == "error":
            logger.error("Claude stream reported error: %s", payload.get("error"))
            return []
        delta = payload.get("delta")
        if not isinstance(delta, dict):
            return [Ignorable(str(event_type))]
        text = delta.get("text")
        if isinstance(text, str) and text:
            return [ContentFragment(text)]
        return [Ignorable(str(event_type))]


class ClaudeProvider(StreamingProvider):
    name = "claude"
    history_key = "ClaudeHistories"
    custom_parameter_key = "ClaudeParameters"
    custom_header_key = "ClaudeHeaders"
    # Claude takes the system prompt outside of the message list
    system_in_messages = False

    def __init__(self, config: ClaudeProviderConfig) -> None:
        super().__init__(
            options=config.options,
            system_prompt=config.system_prompt,
            history_turns=config.history_turns,
        )
        self.config = config

    def build_request(
        self,
        contexts: Sequence[Message],
        state: ConversationState,
        *,
        use_functions: bool = True,
    ) -> ProviderRequest:
        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": [
                serialize_message(message)
                for message in contexts
                if message.role in ("user", "assistant")
            ],
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "stream": True,
        }
        if self.system_prompt:
            payload["system"] = self.system_prompt
        if self.config.stop_sequences:
            payload["stop_sequences"] = list(self.config.stop_sequences)
        if self.config.top_k > 0:
            payload["top_k"] = self.config.top_k
        payload.update(self.custom_parameters(state))

        headers = {
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
            "x-api-key": self.config.api_key,
        }
        headers.update(self.custom_headers(state))

        return ProviderRequest(
            url=self.config.url,
            headers=headers,
            payload=payload,
            timeout=self.options.response_timeout,
        )

    def create_parser(self) -> ChunkParser:
        return ClaudeChunkParser()


def serialize_message(message: Message) -> dict[str, Any]:
    content: list[dict[str, Any]] = []
    for part in message.content:
        if part.type == "text" and part.text:
            content.append({"type": "text", "text": part.text})
        elif part.type == "image" and part.data:
            content.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": part.media_type or "image/jpeg",
                        "data": part.data,
                    },
                }
            )
    return {"role": message.role, "content": content}


__all__ = ["ANTHROPIC_VERSION", "ClaudeChunkParser", "ClaudeProvider", "serialize_message"]
