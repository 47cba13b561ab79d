"""
WebSocket endpoint.

- WS /ws: one connection per client; the first useful frame is
  ``{"type": "authenticate", "token": ...}``. See ``core.session``.
"""

from __future__ import annotations

from fastapi import APIRouter, WebSocket

from runbook_chat.core.session import ChannelSession

router = APIRouter()


@router.websocket("/ws")
async def chat_websocket(websocket: WebSocket):
    await websocket.accept()
    session = ChannelSession(websocket, websocket.app.state.runtime)
    await session.run()
