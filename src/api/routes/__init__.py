"""Route modules for the Ward Assist Relay API.

HTTP health routes live under /api, the chat WebSocket under /ws.
"""

from __future__ import annotations

from . import chat, health

__all__ = ["chat", "health"]
