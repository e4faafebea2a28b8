"""Stream relay.

Turns one inbound user message into one framed outbound response:

    start, token*, end

Generated fragments are forwarded as they arrive. Function calls, whether
structured tool calls or JSON embedded in the text, are executed and replaced
by a single synthetic token carrying the result. Every failure below this
layer becomes one "[ERROR] ..." token followed by the end marker; the session
survives. A disconnect cancels the worker task and nothing more is sent.
"""

from __future__ import annotations

import asyncio
import time

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from api.websocket.task_manager import CancellationToken
from core.call_parser import CallDetector, parse_tool_payload
from core.constants import (
    ERROR_TOKEN_PREFIX,
    ERROR_UNEXPECTED,
    FINISH_ERROR,
    FINISH_INTERRUPTED,
    FINISH_STOP,
)
from core.errors import RelayError, StreamError, StreamTimeout, UnknownSession
from core.interpreter import FunctionCallInterpreter
from core.prompts import build_system_prompt
from core.session_registry import SessionRegistry
from integrations.generation_client import GenerationClient
from models.action_models import ParseResult, PlainText, ToolCallPayload
from models.event_models import EndFrame, StartFrame, TokenFrame
from models.session_models import SessionContext, Turn
from tools.registry import TOOLS
from utils.logger import logger

Sender = Callable[[dict[str, Any]], Awaitable[Any]]


class RelayState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    RESOLVING = "resolving"
    ERROR = "error"


@dataclass
class RelayOutcome:
    """What one handled message produced."""

    finish_reason: str = FINISH_STOP
    parts: list[str] = field(default_factory=list)
    function_calls: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def text(self) -> str:
        return "".join(self.parts)

    @property
    def tokens(self) -> int:
        return len(self.parts)


class StreamRelay:
    """Per-connection relay between the client and the generation backend.

    One instance serves one session; messages are handled one at a time.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        generation_client: GenerationClient,
        interpreter: FunctionCallInterpreter,
        send: Sender,
        *,
        lookahead_chars: int = 4096,
        tools: list[dict[str, Any]] | None = TOOLS,
    ) -> None:
        self.registry = registry
        self.generation_client = generation_client
        self.interpreter = interpreter
        self._send = send
        self.lookahead_chars = lookahead_chars
        self.tools = tools
        self.state = RelayState.IDLE

    async def handle_message(
        self,
        session_id: str,
        text: str,
        token: CancellationToken | None = None,
    ) -> RelayOutcome:
        """Relay one user message and return what was sent.

        Raises:
            asyncio.CancelledError: If the calling task is cancelled (disconnect).
                No end marker is sent and nothing is committed.
        """
        if self.state is not RelayState.IDLE:
            raise RuntimeError(f"Relay for {session_id} is busy ({self.state.value})")

        started = time.monotonic()
        outcome = RelayOutcome()
        history = await self.registry.history(session_id)
        context = await self.registry.context(session_id)

        await self._send(StartFrame(session_id=session_id).to_dict())
        self.state = RelayState.STREAMING

        pump = asyncio.create_task(self._pump(session_id, text, history, context, outcome))

        def interrupt() -> None:
            pump.cancel()

        if token is not None:
            token.on_cancel(interrupt)

        try:
            await pump
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if (current is not None and current.cancelling()) or token is None or not token.is_cancelled:
                logger.info(f"Response cancelled for session {session_id}", tokens=outcome.tokens)
                raise
            outcome.finish_reason = FINISH_INTERRUPTED
            logger.info(
                f"Response interrupted for session {session_id}: {token.cancel_reason}",
                tokens=outcome.tokens,
            )
        except RelayError as e:
            await self._fail(session_id, outcome, e, e.user_message)
        except Exception as e:
            logger.error(f"Unexpected relay failure for session {session_id}: {e}", exc_info=True)
            await self._fail(session_id, outcome, e, ERROR_UNEXPECTED)
        else:
            await self._commit(session_id, text, outcome)
        finally:
            if token is not None:
                token.remove_callback(interrupt)
            self.state = RelayState.IDLE

        await self._send(EndFrame(finish_reason=outcome.finish_reason).to_dict())

        logger.log_conversation_turn(
            user_input=text,
            response=outcome.text,
            function_calls=outcome.function_calls,
            duration_ms=(time.monotonic() - started) * 1000,
            fragments=outcome.tokens,
            finish_reason=outcome.finish_reason,
            session_id=session_id,
        )
        return outcome

    async def _pump(
        self,
        session_id: str,
        user_text: str,
        history: tuple[Turn, ...],
        context: SessionContext,
        outcome: RelayOutcome,
    ) -> None:
        detector = CallDetector(self.lookahead_chars)
        stream = self.generation_client.stream_completion(
            build_system_prompt(context),
            history,
            user_text,
            session_id=session_id,
            tools=self.tools,
        )

        try:
            async for item in stream:
                if isinstance(item, ToolCallPayload):
                    # Held text was produced before the call
                    for result in detector.flush():
                        await self._deliver(session_id, result, outcome)
                    await self._deliver(session_id, parse_tool_payload(item), outcome)
                    continue

                for result in detector.feed(item.text):
                    await self._deliver(session_id, result, outcome)

            for result in detector.flush():
                await self._deliver(session_id, result, outcome)
        except (StreamError, StreamTimeout):
            # Text already generated is never withheld, even on failure
            for result in detector.flush():
                if isinstance(result, PlainText) and result.text:
                    await self._emit_text(session_id, result.text, outcome)
            raise
        finally:
            await stream.aclose()

    async def _deliver(self, session_id: str, result: ParseResult, outcome: RelayOutcome) -> None:
        if isinstance(result, PlainText):
            if result.text:
                await self._emit_text(session_id, result.text, outcome)
            return

        self.state = RelayState.RESOLVING
        context = await self.registry.context(session_id)
        text = await self.interpreter.resolve(result, context)
        outcome.function_calls.append(result.call.name)
        self.state = RelayState.STREAMING

        if text:
            await self._emit_text(session_id, text, outcome)

    async def _emit_text(self, session_id: str, text: str, outcome: RelayOutcome) -> None:
        seq = await self.registry.next_seq(session_id)
        await self._send(TokenFrame(content=text, seq=seq).to_dict())
        outcome.parts.append(text)

    async def _fail(self, session_id: str, outcome: RelayOutcome, error: Exception, user_message: str) -> None:
        self.state = RelayState.ERROR
        outcome.finish_reason = FINISH_ERROR
        outcome.error = type(error).__name__
        logger.warning(
            f"Response failed for session {session_id}: {type(error).__name__}: {error}",
            tokens=outcome.tokens,
        )

        seq = await self.registry.next_seq(session_id)
        await self._send(TokenFrame(content=f"{ERROR_TOKEN_PREFIX} {user_message}", seq=seq).to_dict())

    async def _commit(self, session_id: str, user_text: str, outcome: RelayOutcome) -> None:
        try:
            await self.registry.commit_exchange(session_id, user_text, outcome.text)
        except UnknownSession:
            logger.debug(f"Session {session_id} closed before its exchange could be committed")
