"""Application factory for the FastAPI service."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .chat.service import ChatService
from .config import PROJECT_ROOT, Settings, get_settings
from .logging_settings import apply_logging_settings, parse_logging_settings
from .providers import create_provider
from .routers.chat import router as chat_router
from .streaming.continuation import ContinuationController
from .streaming.driver import SessionDriver
from .transport import HttpStreamTransport


def _configure_logging(settings: Settings) -> None:
    """Configure logging based on LOG_LEVEL and the logging settings file."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = []
    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    settings_path = settings.logging_settings_path
    if not settings_path.is_absolute():
        settings_path = PROJECT_ROOT / settings_path
    apply_logging_settings(
        parse_logging_settings(settings_path), debug_mode=settings.debug_mode
    )

    # Optionally quiet down noisy third-party libraries
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_chat_service(settings: Settings) -> ChatService:
    provider = create_provider(settings)
    driver = SessionDriver(
        provider,
        transport_factory=HttpStreamTransport,
        continuation=ContinuationController(),
        error_message=settings.error_message,
        debug=settings.debug_mode,
    )
    return ChatService(provider, driver)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    _configure_logging(settings)

    chat_service = create_chat_service(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            await HttpStreamTransport.aclose_shared()

    app = FastAPI(
        title="Streaming Chat Session Engine",
        version="0.1.0",
        description="Conversational turns over streaming LLM completions.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.chat_service = chat_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(chat_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok", "provider": chat_service.provider.name}

    return app


__all__ = ["create_app", "create_chat_service"]
