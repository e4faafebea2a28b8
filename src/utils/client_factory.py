"""
OpenAI client factory utilities.
Centralizes AsyncOpenAI client creation for the generation backend.
"""

from __future__ import annotations

from typing import Any

import httpx

from openai import AsyncOpenAI

from core.constants import Settings
from utils.logger import logger

# Streaming reads are bounded per call by the generation client's own
# deadline; the transport read timeout only catches dead sockets.
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_READ_TIMEOUT = 300.0
DEFAULT_WRITE_TIMEOUT = 30.0
DEFAULT_POOL_TIMEOUT = 30.0

SENSITIVE_HEADERS = ("authorization", "api-key", "x-api-key")


def _sanitize_headers(headers: httpx.Headers) -> dict[str, str]:
    """Mask credentials, keeping the last 4 characters."""
    sanitized = {}
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS:
            value = f"***{value[-4:]}" if len(value) > 4 else "***"
        sanitized[key] = value
    return sanitized


async def _log_request(request: httpx.Request) -> None:
    # Bodies carry patient messages; only metadata is logged
    logger.debug(
        f"HTTP Request: {request.method} {request.url}",
        http_request=True,
        headers=_sanitize_headers(request.headers),
        body_bytes=len(request.content) if request.content else 0,
    )


async def _log_response(response: httpx.Response) -> None:
    logger.debug(
        f"HTTP Response: {response.status_code} {response.request.method} {response.request.url}",
        http_response=True,
        status_code=response.status_code,
    )


def create_http_client(
    enable_logging: bool = False,
    read_timeout: float | None = None,
) -> httpx.AsyncClient:
    """Create HTTP client with timeouts suitable for streaming.

    Args:
        enable_logging: Log request/response metadata through the app logger
        read_timeout: Read timeout in seconds

    Returns:
        Configured httpx.AsyncClient
    """
    timeout = httpx.Timeout(
        connect=DEFAULT_CONNECT_TIMEOUT,
        read=read_timeout if read_timeout is not None else DEFAULT_READ_TIMEOUT,
        write=DEFAULT_WRITE_TIMEOUT,
        pool=DEFAULT_POOL_TIMEOUT,
    )

    if enable_logging:
        event_hooks: dict[str, list[Any]] = {"request": [_log_request], "response": [_log_response]}
        return httpx.AsyncClient(timeout=timeout, event_hooks=event_hooks)

    return httpx.AsyncClient(timeout=timeout)


def create_openai_client(
    api_key: str,
    base_url: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncOpenAI:
    """Create AsyncOpenAI client.

    Retries are disabled at this layer; the generation client owns the retry
    policy so a retry never repeats text the user has already seen.
    """
    kwargs: dict[str, Any] = {"api_key": api_key, "http_client": http_client, "max_retries": 0}
    if base_url:
        kwargs["base_url"] = base_url
    return AsyncOpenAI(**kwargs)


def create_generation_client_from_settings(settings: Settings) -> AsyncOpenAI:
    """AsyncOpenAI client for the configured OpenAI compatible backend."""
    http_client = create_http_client(
        enable_logging=settings.http_request_logging,
        read_timeout=settings.generation_timeout_seconds,
    )
    return create_openai_client(
        api_key=settings.llm_api_key,
        base_url=settings.llm_base_url,
        http_client=http_client,
    )
