from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from api.websocket.manager import WebSocketManager
from core.session_registry import SessionRegistry
from integrations.record_store import AssistanceRequestStore


async def get_record_store(request: Request) -> AssistanceRequestStore:
    """Get the assistance request store from application state."""
    return request.app.state.record_store


async def get_session_registry(request: Request) -> SessionRegistry:
    """Get the session registry from application state."""
    return request.app.state.session_registry


async def get_ws_manager(request: Request) -> WebSocketManager:
    """Get the WebSocket connection manager from application state."""
    return request.app.state.ws_manager


# Type aliases for cleaner route signatures
Store = Annotated[AssistanceRequestStore, Depends(get_record_store)]
Registry = Annotated[SessionRegistry, Depends(get_session_registry)]
WSManager = Annotated[WebSocketManager, Depends(get_ws_manager)]
