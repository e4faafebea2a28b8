"""
Logging setup for Ward Assist Relay using Python's standard logging
with JSON formatting for structured logs.

Log destinations:
- Console (stderr): Human-readable format for debugging
- logs/conversations.jsonl: JSON format, one record per relayed exchange and action
- logs/errors.jsonl: JSON format for error tracking

Patient text is never written unless ENABLE_CONTENT_LOGGING is set, and even
then it is passed through the PII redaction patterns below.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import uuid

from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, cast

from pythonjsonlogger import json as jsonlogger

from api.middleware.request_context import get_request_context
from core.constants import (
    LOG_BACKUP_COUNT_CONVERSATIONS,
    LOG_BACKUP_COUNT_ERRORS,
    LOG_MAX_SIZE,
    LOG_PREVIEW_LENGTH,
    PROJECT_ROOT,
    SESSION_ID_LENGTH,
    get_settings,
)

HIDDEN = "[HIDDEN]"

# Applied in order; cards before phones so a card number is not half-matched
REDACTION_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b"), "[EMAIL]"),
    (re.compile(r"\b(?:\d{4}[- ]?){3}\d{4}\b"), "[CARD]"),
    (re.compile(r"\b\+?\d[\d -]{8,}\d\b"), "[PHONE]"),
    (re.compile(r"\b(sk-|pk-|api[-_]?key[-_]?)[A-Za-z0-9]{20,}\b"), "[API_KEY]"),
    (re.compile(r"\b(password|secret|token)\s*[:=]\s*\S+"), "[REDACTED]"),
]


@dataclass
class ConversationTurn:
    """One relayed exchange as it is written to the conversation log."""

    user_input: str
    response: str
    function_calls: list[str] = field(default_factory=list)
    duration_ms: float | None = None
    fragments: int | None = None
    finish_reason: str = "stop"
    session_id: str = ""
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def summary(self, user_text: str, response_text: str) -> str:
        parts = [f"User: {user_text} → AI: {response_text}"]
        if self.function_calls:
            parts.append(f"[{len(self.function_calls)} functions]")
        if self.duration_ms:
            parts.append(f"[{self.duration_ms:.0f}ms]")
        if self.fragments is not None:
            parts.append(f"[{self.fragments} fragments]")
        if self.finish_reason != "stop":
            parts.append(f"[{self.finish_reason}]")
        return " ".join(parts)


class _MinLevelFilter(logging.Filter):
    min_level = logging.NOTSET

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= self.min_level


class ConversationFilter(_MinLevelFilter):
    """INFO and above go to the conversation log."""

    min_level = logging.INFO


class ErrorFilter(_MinLevelFilter):
    """Only ERROR and CRITICAL go to the error log."""

    min_level = logging.ERROR


class ColoredConsoleFormatter(logging.Formatter):
    """
    Console format: HH:MM:SS [LEVEL] logger_name - message
    with the level coloured, and uvicorn access lines reassembled.
    """

    GREY = "\x1b[38;20m"
    GREEN = "\x1b[32;20m"
    YELLOW = "\x1b[33;20m"
    RED = "\x1b[31;20m"
    BOLD_RED = "\x1b[31;1m"
    BOLD = "\x1b[1m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def _paint(self, text: str, color: str) -> str:
        return f"{color}{text}{self.RESET}" if color else text

    def _status_color(self, status_code: int) -> str:
        if status_code < 400:
            return self.GREEN
        return self.YELLOW if status_code < 500 else self.RED

    def format(self, record: logging.LogRecord) -> str:
        level = self._paint(f"[{record.levelname}]", self.LEVEL_COLORS.get(record.levelno, ""))
        record.asctime = self.formatTime(record, "%H:%M:%S")

        # uvicorn access records: (client_addr, method, full_path, http_version, status_code)
        if record.name == "uvicorn.access" and record.args and len(record.args) == 5:
            client_addr, method, full_path, http_version, status_code = record.args
            status = self._paint(str(status_code), self._status_color(int(cast(Any, status_code))))
            message = f'{client_addr} - "{self._paint(str(method), self.BOLD)} {full_path} HTTP/{http_version}" {status}'
        else:
            message = record.getMessage()
            if record.exc_info:
                message = f"{message}\n{self.formatException(record.exc_info)}"

        return f"{record.asctime} {level} {record.name} - {message}"


def configure_uvicorn_logging() -> None:
    """Route uvicorn's access and error loggers through the console format."""
    logging.getLogger("uvicorn").handlers = []
    logging.getLogger("uvicorn").setLevel(logging.INFO)

    for name in ("uvicorn.access", "uvicorn.error"):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(ColoredConsoleFormatter())
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = [handler]
        uv_logger.setLevel(logging.INFO)
        uv_logger.propagate = False


def _json_file_handler(
    path: Path,
    level: int,
    backup_count: int,
    log_filter: logging.Filter,
    fields: str,
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=LOG_MAX_SIZE,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.addFilter(log_filter)
    handler.setFormatter(jsonlogger.JsonFormatter(fields, timestamp=True))
    return handler


def setup_logging(name: str = "ward-assist", debug: bool | None = None) -> logging.Logger:
    """
    Set up logging with console and JSON file handlers.

    Args:
        name: Logger name
        debug: Enable debug output on the console (overrides DEBUG env var)

    Returns:
        Configured logger instance
    """
    if debug is None:
        debug = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")

    log_dir = PROJECT_ROOT / "logs"
    log_dir.mkdir(exist_ok=True)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    console_handler.setFormatter(ColoredConsoleFormatter())

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)  # Handlers decide what is kept
    logger.handlers = [
        console_handler,
        _json_file_handler(
            log_dir / "conversations.jsonl",
            logging.INFO,
            LOG_BACKUP_COUNT_CONVERSATIONS,
            ConversationFilter(),
            "%(timestamp)s %(levelname)s %(message)s %(session_id)s %(request_id)s %(func)s",
        ),
        _json_file_handler(
            log_dir / "errors.jsonl",
            logging.ERROR,
            LOG_BACKUP_COUNT_ERRORS,
            ErrorFilter(),
            "%(timestamp)s %(levelname)s %(name)s %(message)s %(session_id)s %(request_id)s",
        ),
    ]
    return logger


class RelayLogger:
    """
    Logging interface for the relay.

    Every record gets the process log id, overridden by the session and
    request ids of the current request context when there is one.
    """

    def __init__(self, name: str = "ward-assist"):
        self.logger = setup_logging(name)
        self.session_id = str(uuid.uuid4())[:SESSION_ID_LENGTH]

    def _enrich_context(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        kwargs.setdefault("session_id", self.session_id)
        ctx = get_request_context()
        if ctx is not None:
            kwargs.update(ctx.to_log_context())
        return kwargs

    def debug(self, message: str, **kwargs: Any) -> None:
        self.logger.debug(message, extra=self._enrich_context(kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, extra=self._enrich_context(kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self.logger.warning(message, extra=self._enrich_context(kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        self.logger.error(message, extra=self._enrich_context(kwargs), exc_info=exc_info)

    def _should_log_content(self) -> bool:
        try:
            return bool(get_settings().enable_content_logging)
        except Exception:
            # Settings can be invalid before startup has reported why
            return False

    def _redact_content(self, text: str) -> str:
        for pattern, replacement in REDACTION_PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def _preview(self, text: str) -> str:
        preview = self._redact_content(text[:LOG_PREVIEW_LENGTH].replace("\n", " "))
        return f"{preview}..." if len(text) > LOG_PREVIEW_LENGTH else preview

    def log_conversation_turn(
        self,
        user_input: str,
        response: str,
        function_calls: list[str] | None = None,
        duration_ms: float | None = None,
        fragments: int | None = None,
        finish_reason: str = "stop",
        session_id: str | None = None,
    ) -> None:
        """Write one relayed exchange to the conversation log.

        Only sizes, counts and the finish reason are recorded unless content
        logging is enabled.
        """
        turn = ConversationTurn(
            user_input=user_input,
            response=response,
            function_calls=function_calls or [],
            duration_ms=duration_ms,
            fragments=fragments,
            finish_reason=finish_reason,
            session_id=session_id or self.session_id,
        )

        show_content = self._should_log_content()
        if show_content:
            message = turn.summary(self._preview(turn.user_input), self._preview(turn.response))
        else:
            message = turn.summary(HIDDEN, HIDDEN)

        extra: dict[str, Any] = {
            "conversation_turn": True,
            "timestamp": turn.timestamp,
            "chars_input": len(turn.user_input),
            "chars_response": len(turn.response),
            "functions": len(turn.function_calls),
            "finish_reason": turn.finish_reason,
            "content_logging": show_content,
        }
        if turn.function_calls:
            extra["tool_names"] = turn.function_calls
        if turn.duration_ms is not None:
            extra["ms"] = int(turn.duration_ms)

        extra = self._enrich_context(extra)
        # The relay's session id wins over whatever the context carries
        extra["session_id"] = turn.session_id
        self.logger.info(message, extra=extra)

    def log_function_call(self, function_name: str, args: dict[str, Any], result: Any) -> None:
        """Record an executed action; arguments and result follow the content logging switch."""
        show_content = self._should_log_content()

        if show_content:
            shown_args = self._redact_content(str(args))
            shown_result = self._redact_content(str(result))
            console_msg = f"Function call: {function_name}({shown_args}) -> {shown_result[:50]}..."
            file_msg = f"Func: {function_name}({shown_args[:50]}...) -> {shown_result[:20]}..."
        else:
            console_msg = f"Function call: {function_name}(...) -> {HIDDEN}"
            file_msg = f"Func: {function_name} -> {HIDDEN}"

        self.info(console_msg, file_message=file_msg, func=function_name, content_logging=show_content)


# Global logger instance
logger = RelayLogger()
