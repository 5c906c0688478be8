"""
WebSocket endpoint for the realtime gateway.

WS /api/v1/ws?token=<jwt>  (or ``Authorization: Bearer <jwt>``)

The credential is checked before the socket is accepted; failures close
with code 4001.
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import APIRouter, Query, WebSocket

from app.core.auth import extract_bearer
from app.core.chat import CLOSE_AUTH_FAILED, RealtimeGateway
from app.core.errors import ChatError

log = structlog.get_logger()
router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
):
    gateway: RealtimeGateway = websocket.app.state.gateway
    credential = token or extract_bearer(websocket.headers.get("authorization"))

    try:
        auth = await gateway.authenticate(credential)
    except ChatError as exc:
        log.info("ws.auth_failed", code=exc.code)
        await websocket.close(code=CLOSE_AUTH_FAILED, reason="authentication_failed")
        return

    await gateway.serve(websocket, auth)
