"""
Streaming client for the generation backend.

Wraps an AsyncOpenAI chat-completions stream (Ollama's /v1 API by default) in
an async generator of StreamFragment and ToolCallPayload items. Retries are
only attempted before anything has been yielded; once text is out, failures
surface as StreamError or StreamTimeout carrying the partial text.
"""

from __future__ import annotations

import asyncio

from collections.abc import AsyncGenerator, Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from openai import (
    APIConnectionError,
    APIStatusError,
    AsyncOpenAI,
    InternalServerError,
    OpenAIError,
    RateLimitError,
)

from core.constants import (
    DEFAULT_LLM_TEMPERATURE,
    GENERATION_RETRY_BASE_DELAY,
    GENERATION_RETRY_MAX_DELAY,
    Settings,
)
from core.errors import BackendUnavailable, StreamError, StreamTimeout
from models.action_models import ToolCallPayload
from models.session_models import StreamFragment, Turn
from utils.logger import logger


class _EmptyResponse(Exception):
    """The backend closed the stream without producing anything."""


# Failures before the first fragment that are worth another attempt
RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    TimeoutError,
    APIConnectionError,
    RateLimitError,
    InternalServerError,
    httpx.TransportError,
    _EmptyResponse,
)


@dataclass
class _ToolCallBuffer:
    """Tool-call deltas for one index, concatenated as they arrive."""

    name: str = ""
    arguments: list[str] = field(default_factory=list)
    call_id: str | None = None

    def to_payload(self) -> ToolCallPayload:
        return ToolCallPayload(name=self.name, arguments="".join(self.arguments), call_id=self.call_id)


@dataclass
class _Attempt:
    """One opened backend stream."""

    stream: Any = None
    iterator: Any = None
    first_text: str = ""
    first_finish: str | None = None
    tool_calls: dict[int, _ToolCallBuffer] = field(default_factory=dict)

    def absorb(self, chunk: Any) -> tuple[str, str | None]:
        """Fold one chunk in. Returns its text content and finish_reason."""
        if not getattr(chunk, "choices", None):
            return "", None

        choice = chunk.choices[0]
        delta = choice.delta
        for tool_call in getattr(delta, "tool_calls", None) or []:
            index = tool_call.index if tool_call.index is not None else len(self.tool_calls)
            buffer = self.tool_calls.setdefault(index, _ToolCallBuffer())
            if tool_call.id:
                buffer.call_id = tool_call.id
            if tool_call.function is not None:
                if tool_call.function.name:
                    buffer.name += tool_call.function.name
                if tool_call.function.arguments:
                    buffer.arguments.append(tool_call.function.arguments)

        return getattr(delta, "content", None) or "", choice.finish_reason

    def drain_tool_calls(self) -> list[ToolCallPayload]:
        payloads = [self.tool_calls[index].to_payload() for index in sorted(self.tool_calls)]
        self.tool_calls.clear()
        return [payload for payload in payloads if payload.name]

    async def close(self) -> None:
        if self.stream is None:
            return
        stream, self.stream = self.stream, None
        try:
            await stream.close()
        except (OpenAIError, httpx.HTTPError) as e:
            logger.debug(f"Error while closing backend stream: {e}")


class GenerationClient:
    """Streams completions from an OpenAI compatible backend.

    Holds no per-session state; one instance serves every connection.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        *,
        model: str,
        temperature: float = DEFAULT_LLM_TEMPERATURE,
        timeout_seconds: float = 120.0,
        first_token_timeout_seconds: float = 30.0,
        max_retries: int = 3,
        max_history_turns: int = 20,
        retry_base_delay: float = GENERATION_RETRY_BASE_DELAY,
        retry_max_delay: float = GENERATION_RETRY_MAX_DELAY,
    ) -> None:
        self._client = client
        self.model = model
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds
        self.first_token_timeout_seconds = first_token_timeout_seconds
        self.max_retries = max(1, max_retries)
        self.max_history_turns = max_history_turns
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay

    @classmethod
    def from_settings(cls, client: AsyncOpenAI, settings: Settings) -> GenerationClient:
        return cls(
            client,
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            timeout_seconds=settings.generation_timeout_seconds,
            first_token_timeout_seconds=settings.first_token_timeout_seconds,
            max_retries=settings.generation_max_retries,
            max_history_turns=settings.max_history_turns,
        )

    def build_messages(
        self,
        system_prompt: str,
        history: Sequence[Turn],
        user_message: str,
    ) -> list[dict[str, str]]:
        """System prompt, the most recent committed turns, then the new user message."""
        turns = list(history)[-self.max_history_turns :] if self.max_history_turns else []
        return [
            {"role": "system", "content": system_prompt},
            *(turn.to_message() for turn in turns),
            {"role": "user", "content": user_message},
        ]

    async def stream_completion(
        self,
        system_prompt: str,
        history: Sequence[Turn],
        user_message: str,
        *,
        session_id: str,
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncGenerator[StreamFragment | ToolCallPayload, None]:
        """Stream one completion.

        Yields StreamFragment items in arrival order (seq from 0), then any
        structured tool calls once the backend has finished them.

        Raises:
            BackendUnavailable: Nothing was produced after all attempts
            StreamError: The backend failed after text was yielded
            StreamTimeout: The per-call deadline expired mid-stream
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds
        messages = self.build_messages(system_prompt, history, user_message)

        attempt = await self._start(messages, tools, deadline, session_id)
        seq = 0
        partial: list[str] = []

        try:
            text = attempt.first_text
            finish_reason = attempt.first_finish
            while True:
                if text:
                    partial.append(text)
                    yield StreamFragment(session_id=session_id, seq=seq, text=text)
                    seq += 1
                if finish_reason == "tool_calls":
                    for payload in attempt.drain_tool_calls():
                        yield payload

                remaining = deadline - loop.time()
                try:
                    if remaining <= 0:
                        raise TimeoutError
                    chunk = await asyncio.wait_for(anext(attempt.iterator), timeout=remaining)
                except StopAsyncIteration:
                    break
                except TimeoutError as e:
                    logger.warning(
                        f"Generation deadline of {self.timeout_seconds}s exceeded",
                        fragments=seq,
                    )
                    await attempt.close()
                    raise StreamTimeout(
                        f"Generation exceeded {self.timeout_seconds}s",
                        partial_text="".join(partial),
                    ) from e
                except (OpenAIError, httpx.HTTPError) as e:
                    logger.error(f"Backend stream failed after {seq} fragments: {e}")
                    raise StreamError(f"Backend stream failed: {e}", partial_text="".join(partial)) from e

                text, finish_reason = attempt.absorb(chunk)

            for payload in attempt.drain_tool_calls():
                yield payload
        finally:
            await attempt.close()

    async def _start(
        self,
        messages: list[dict[str, str]],
        tools: list[dict[str, Any]] | None,
        deadline: float,
        session_id: str,
    ) -> _Attempt:
        """Open the stream and read up to the first content or tool-call delta, retrying transient failures."""
        loop = asyncio.get_running_loop()
        last_error: BaseException | None = None

        for attempt_no in range(1, self.max_retries + 1):
            remaining = deadline - loop.time()
            if remaining <= 0:
                break

            attempt = _Attempt()
            try:
                await asyncio.wait_for(
                    self._open(attempt, messages, tools),
                    timeout=min(self.first_token_timeout_seconds, remaining),
                )
                if attempt_no > 1:
                    logger.info(f"Generation backend recovered on attempt {attempt_no}")
                return attempt
            except RETRYABLE_ERRORS as e:
                await attempt.close()
                last_error = e
            except APIStatusError as e:
                await attempt.close()
                logger.error(f"Generation backend rejected the request: {e.status_code} {e}")
                raise BackendUnavailable(f"Backend rejected the request: {e}") from e
            except (OpenAIError, httpx.HTTPError) as e:
                await attempt.close()
                logger.error(f"Generation backend failed before producing output: {e}")
                raise BackendUnavailable(f"Backend failed before producing output: {e}") from e
            except asyncio.CancelledError:
                await attempt.close()
                raise

            if attempt_no == self.max_retries:
                break
            delay = min(self.retry_base_delay * (2 ** (attempt_no - 1)), self.retry_max_delay)
            if loop.time() + delay >= deadline:
                break
            logger.warning(
                f"Generation backend attempt {attempt_no}/{self.max_retries} failed, "
                f"retrying in {delay:.1f}s: {type(last_error).__name__}: {last_error}",
                session_id=session_id,
            )
            await asyncio.sleep(delay)

        logger.error(
            f"Generation backend unavailable: {type(last_error).__name__ if last_error else 'deadline'}: {last_error}",
            session_id=session_id,
        )
        raise BackendUnavailable(f"Backend produced no output: {last_error or 'deadline expired'}") from last_error

    async def _open(
        self,
        attempt: _Attempt,
        messages: list[dict[str, str]],
        tools: list[dict[str, Any]] | None,
    ) -> None:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "stream": True,
        }
        if tools:
            kwargs["tools"] = tools

        attempt.stream = await self._client.chat.completions.create(**kwargs)
        attempt.iterator = attempt.stream.__aiter__()

        while True:
            try:
                chunk = await anext(attempt.iterator)
            except StopAsyncIteration:
                raise _EmptyResponse("stream ended without content") from None

            # Text or a tool-call delta both count as the first token
            text, finish_reason = attempt.absorb(chunk)
            if text or attempt.tool_calls:
                attempt.first_text = text
                attempt.first_finish = finish_reason
                return
