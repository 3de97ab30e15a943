"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, BaseModel, ConfigDict, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

DEFAULT_ERROR_MESSAGE = "Sorry, an error occurred while generating the response."


class StreamingOptions(BaseModel):
    """Timing and retry knobs for one streaming attempt."""

    model_config = ConfigDict(populate_by_name=True)

    no_data_timeout_ms: int = Field(default=5000, ge=1, alias="noDataTimeoutMs")
    response_timeout_ms: int = Field(default=30000, ge=1, alias="responseTimeoutMs")
    retry_limit: int = Field(default=1, ge=0, alias="retryLimit")
    polling_interval_ms: int = Field(default=10, ge=1, alias="pollingIntervalMs")

    @property
    def no_data_timeout(self) -> float:
        return self.no_data_timeout_ms / 1000

    @property
    def response_timeout(self) -> float:
        return self.response_timeout_ms / 1000

    @property
    def polling_interval(self) -> float:
        return self.polling_interval_ms / 1000


class OpenAIProviderConfig(BaseModel):
    api_key: str = ""
    url: str = "https://api.openai.com/v1/chat/completions"
    model: str = "gpt-4o-mini"
    temperature: float = 0.5
    max_tokens: int = 0
    stop_sequences: list[str] = Field(default_factory=list)
    system_prompt: Optional[str] = None
    history_turns: int = 10
    options: StreamingOptions = Field(default_factory=StreamingOptions)


class ClaudeProviderConfig(BaseModel):
    api_key: str = ""
    url: str = "https://api.anthropic.com/v1/messages"
    model: str = "claude-3-haiku-20240307"
    temperature: float = 0.5
    max_tokens: int = 500
    top_k: int = 0
    stop_sequences: list[str] = Field(default_factory=list)
    system_prompt: Optional[str] = None
    history_turns: int = 10
    options: StreamingOptions = Field(default_factory=StreamingOptions)


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    provider: str = Field(
        default="openai",
        validation_alias=AliasChoices("LLM_PROVIDER", "provider"),
    )

    openai_api_key: SecretStr = Field(
        default=SecretStr(""),
        validation_alias=AliasChoices("OPENAI_API_KEY", "openai_api_key"),
    )
    openai_chat_completion_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://api.openai.com/v1/chat/completions"),
        validation_alias=AliasChoices(
            "OPENAI_CHAT_COMPLETION_URL", "chat_completion_url"
        ),
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        validation_alias=AliasChoices("OPENAI_MODEL", "openai_model"),
    )

    anthropic_api_key: SecretStr = Field(
        default=SecretStr(""),
        validation_alias=AliasChoices("ANTHROPIC_API_KEY", "anthropic_api_key"),
    )
    claude_messages_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://api.anthropic.com/v1/messages"),
        validation_alias=AliasChoices("CLAUDE_MESSAGES_URL", "create_message_url"),
    )
    claude_model: str = Field(
        default="claude-3-haiku-20240307",
        validation_alias=AliasChoices("CLAUDE_MODEL", "claude_model"),
    )
    claude_top_k: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("CLAUDE_TOP_K", "top_k"),
    )

    temperature: float = Field(
        default=0.5,
        ge=0,
        le=2,
        validation_alias=AliasChoices("LLM_TEMPERATURE", "temperature"),
    )
    max_tokens: int = Field(
        default=500,
        ge=0,
        validation_alias=AliasChoices("LLM_MAX_TOKENS", "max_tokens"),
    )
    stop_sequences: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("LLM_STOP_SEQUENCES", "stop_sequences"),
    )
    system_prompt: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("LLM_SYSTEM_PROMPT", "system_prompt"),
    )
    error_message: str = Field(
        default=DEFAULT_ERROR_MESSAGE,
        validation_alias=AliasChoices("LLM_ERROR_MESSAGE", "error_message"),
    )

    response_timeout_ms: int = Field(
        default=30000,
        ge=1,
        validation_alias=AliasChoices(
            "RESPONSE_TIMEOUT_MS", "responseTimeoutMs", "response_timeout_ms"
        ),
    )
    no_data_timeout_ms: int = Field(
        default=5000,
        ge=1,
        validation_alias=AliasChoices(
            "NO_DATA_TIMEOUT_MS", "noDataTimeoutMs", "no_data_timeout_ms"
        ),
    )
    retry_limit: int = Field(
        default=1,
        ge=0,
        validation_alias=AliasChoices("RETRY_LIMIT", "retryLimit", "retry_limit"),
    )
    polling_interval_ms: int = Field(
        default=10,
        ge=1,
        validation_alias=AliasChoices(
            "POLLING_INTERVAL_MS", "pollingIntervalMs", "polling_interval_ms"
        ),
    )
    history_turns: int = Field(
        default=10,
        ge=0,
        validation_alias=AliasChoices("HISTORY_TURNS", "historyTurns", "history_turns"),
    )

    debug_mode: bool = Field(
        default=False,
        validation_alias=AliasChoices("DEBUG_MODE", "debug_mode"),
    )
    logging_settings_path: Path = Field(
        default_factory=lambda: Path("logging_settings.conf"),
        validation_alias=AliasChoices("LOGGING_SETTINGS_PATH", "logging_settings_path"),
    )

    def streaming_options(self) -> StreamingOptions:
        return StreamingOptions(
            no_data_timeout_ms=self.no_data_timeout_ms,
            response_timeout_ms=self.response_timeout_ms,
            retry_limit=self.retry_limit,
            polling_interval_ms=self.polling_interval_ms,
        )

    def openai_config(self) -> OpenAIProviderConfig:
        return OpenAIProviderConfig(
            api_key=self.openai_api_key.get_secret_value(),
            url=str(self.openai_chat_completion_url),
            model=self.openai_model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            stop_sequences=list(self.stop_sequences),
            system_prompt=self.system_prompt,
            history_turns=self.history_turns,
            options=self.streaming_options(),
        )

    def claude_config(self) -> ClaudeProviderConfig:
        return ClaudeProviderConfig(
            api_key=self.anthropic_api_key.get_secret_value(),
            url=str(self.claude_messages_url),
            model=self.claude_model,
            temperature=self.temperature,
            max_tokens=self.max_tokens or 500,
            top_k=self.claude_top_k,
            stop_sequences=list(self.stop_sequences),
            system_prompt=self.system_prompt,
            history_turns=self.history_turns,
            options=self.streaming_options(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = [
    "ClaudeProviderConfig",
    "DEFAULT_ERROR_MESSAGE",
    "OpenAIProviderConfig",
    "Settings",
    "StreamingOptions",
    "get_settings",
]
