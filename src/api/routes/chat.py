from __future__ import annotations

import asyncio
import contextlib
import functools
import uuid

from dataclasses import dataclass

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from api.middleware.request_context import (
    create_websocket_context,
    get_request_id,
    note_message,
    note_ward_context,
)
from api.websocket.errors import WebSocketErrorHandler, close_with_error
from api.websocket.manager import WebSocketManager
from api.websocket.task_manager import CancellationToken
from core.constants import MSG_TYPE_PING, Settings, get_settings
from core.relay import StreamRelay
from core.session_registry import SessionRegistry
from models.error_models import ErrorCode
from models.event_models import (
    ContextFrame,
    FrameError,
    InterruptFrame,
    MessageFrame,
    SessionFrame,
    parse_inbound_frame,
)
from models.session_models import SessionContext
from utils.logger import logger

router = APIRouter()

KEEPALIVE_INTERVAL_SECONDS = 30.0


@dataclass
class _PendingMessage:
    text: str
    token: CancellationToken


class ChatConnection:
    """Inbound queue and relay worker for one WebSocket connection.

    Messages are handled FIFO, one at a time. An interrupt only affects the
    message currently being streamed.
    """

    def __init__(self, session_id: str, relay: StreamRelay, errors: WebSocketErrorHandler) -> None:
        self.session_id = session_id
        self.relay = relay
        self.errors = errors
        self.queue: asyncio.Queue[_PendingMessage] = asyncio.Queue()
        self.active: _PendingMessage | None = None

    def submit(self, text: str) -> None:
        self.queue.put_nowait(_PendingMessage(text=text, token=CancellationToken()))

    async def interrupt(self) -> bool:
        """Interrupt the in-flight response, if any."""
        if self.active is None:
            return False
        return await self.active.token.cancel("client interrupt")

    async def run(self) -> None:
        """Worker loop. Runs until cancelled."""
        while True:
            pending = await self.queue.get()
            self.active = pending
            try:
                await self.relay.handle_message(self.session_id, pending.text, pending.token)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Chat processing error: {e}",
                    session_id=self.session_id,
                    request_id=get_request_id(),
                    exc_info=True,
                )
                await self.errors.report(ErrorCode.INTERNAL_ERROR, f"Chat processing failed: {type(e).__name__}")
            finally:
                self.active = None
                self.queue.task_done()


@router.websocket("/chat")
async def chat_websocket(
    websocket: WebSocket,
    patient_id: str | None = Query(default=None),
    room: str | None = Query(default=None),
) -> None:
    """WebSocket endpoint for streaming chat.

    The server assigns the session id and announces it in the first frame.
    """
    app_state = websocket.app.state
    registry: SessionRegistry = app_state.session_registry
    ws_manager: WebSocketManager = app_state.ws_manager
    settings: Settings = get_settings()

    session_id = uuid.uuid4().hex
    client_ip = websocket.client.host if websocket.client else None
    create_websocket_context(session_id, client_ip=client_ip, room=room)

    if not await ws_manager.connect(websocket, session_id):
        # Error frames and close codes only reach an accepted socket
        await websocket.accept()
        await close_with_error(websocket, code=ErrorCode.WS_CAPACITY, message="Server at capacity", session_id=session_id)
        return

    await registry.open(session_id, SessionContext(patient_id=patient_id, room=room))

    relay = StreamRelay(
        registry,
        app_state.generation_client,
        app_state.interpreter,
        functools.partial(ws_manager.send, session_id),
        lookahead_chars=settings.call_lookahead_chars,
    )
    errors = WebSocketErrorHandler(websocket, session_id=session_id, send_lock=ws_manager.send_lock(session_id))
    connection = ChatConnection(session_id, relay, errors)

    worker = asyncio.create_task(connection.run())
    keepalive_task = asyncio.create_task(_keepalive(ws_manager, connection))

    try:
        await ws_manager.send(session_id, SessionFrame(session_id=session_id).to_dict())

        async for raw in websocket.iter_text():
            await ws_manager.touch(session_id)

            if len(raw) > settings.max_message_length:
                if not await errors.reject_frame(
                    ErrorCode.WS_MESSAGE_TOO_LARGE,
                    f"Message exceeds {settings.max_message_length} characters",
                ):
                    break
                continue

            try:
                frame = parse_inbound_frame(raw)
            except FrameError as e:
                if not await errors.reject_frame(ErrorCode.WS_MESSAGE_INVALID, str(e)):
                    break
                continue

            if isinstance(frame, MessageFrame):
                note_message()
                connection.submit(frame.content)
            elif isinstance(frame, InterruptFrame):
                interrupted = await connection.interrupt()
                logger.info(
                    f"Interrupt received for session {session_id}"
                    + ("" if interrupted else " (nothing in flight)")
                )
            elif isinstance(frame, ContextFrame):
                await registry.update_context(session_id, patient_id=frame.patient_id, room=frame.room)
                note_ward_context(frame.room)
    except WebSocketDisconnect:
        pass  # Normal client disconnect
    except RuntimeError as e:
        # "WebSocket is not connected" once the peer is gone
        if "not connected" not in str(e).lower():
            raise
    finally:
        keepalive_task.cancel()
        await _stop_worker(worker, session_id, settings)
        await registry.close(session_id)
        await ws_manager.disconnect(session_id)


async def _stop_worker(worker: asyncio.Task[None], session_id: str, settings: Settings) -> None:
    """Cancel the relay worker and wait for it to unwind, bounded by the grace period."""
    worker.cancel()
    done, _ = await asyncio.wait({worker}, timeout=settings.cancel_grace_seconds)
    if not done:
        logger.warning(
            f"Relay worker for session {session_id} did not stop within {settings.cancel_grace_seconds}s"
        )
        return
    with contextlib.suppress(asyncio.CancelledError):
        worker.result()


async def _keepalive(ws_manager: WebSocketManager, connection: ChatConnection) -> None:
    """Send periodic ping frames until the connection goes away.

    No ping is sent while a response is streaming.
    """
    while True:
        await asyncio.sleep(KEEPALIVE_INTERVAL_SECONDS)
        if connection.active is not None:
            continue
        if not await ws_manager.send(connection.session_id, {"type": MSG_TYPE_PING}):
            break
