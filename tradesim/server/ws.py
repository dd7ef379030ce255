"""WebSocket endpoint: streams market snapshots, new notices and one followed account.

Client messages:
    {"type": "ping"}                     -> {"type": "pong"}
    {"type": "account", "key": "<id>"}   follow a ledger (null to stop); unknown keys get {"type": "error"}
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass

from fastapi import WebSocket, WebSocketDisconnect

from tradesim.server.state import TradeSimState

logger = logging.getLogger(__name__)

PUSH_INTERVAL_SECONDS = 0.5


class ConnectionManager:
    def __init__(self) -> None:
        self.active: list[WebSocket] = []

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        self.active.append(ws)
        logger.info("WebSocket client connected (%d active)", len(self.active))

    def disconnect(self, ws: WebSocket) -> None:
        if ws in self.active:
            self.active.remove(ws)
        logger.info("WebSocket client disconnected (%d active)", len(self.active))


manager = ConnectionManager()


@dataclass
class _Subscription:
    last_seq: int = 0
    account_key: str | None = None


async def _handle_message(ws: WebSocket, raw: str, sub: _Subscription) -> None:
    msg = json.loads(raw)
    kind = msg.get("type")
    if kind == "ping":
        await ws.send_json({"type": "pong"})
    elif kind == "account":
        sub.account_key = msg.get("key")


async def _push_updates(ws: WebSocket, state: TradeSimState, sub: _Subscription) -> None:
    engine = state.engine
    if engine is None:
        return
    await ws.send_json({"type": "market", "data": engine.market_snapshot()})

    notices = state.notices_since(sub.last_seq)
    if notices:
        sub.last_seq = notices[-1]["seq"]
        await ws.send_json({"type": "notices", "data": notices})

    if sub.account_key:
        try:
            account = state.snapshot_account(sub.account_key)
        except KeyError:
            await ws.send_json({"type": "error", "detail": f"Unknown account {sub.account_key}"})
            sub.account_key = None
        else:
            await ws.send_json({"type": "account", "data": account})


async def websocket_endpoint(ws: WebSocket) -> None:
    await manager.connect(ws)
    state = TradeSimState()
    sub = _Subscription()

    try:
        while True:
            try:
                raw = await asyncio.wait_for(ws.receive_text(), timeout=PUSH_INTERVAL_SECONDS)
            except asyncio.TimeoutError:
                pass
            else:
                await _handle_message(ws, raw, sub)
            await _push_updates(ws, state, sub)

    except WebSocketDisconnect:
        manager.disconnect(ws)
    except Exception as e:
        logger.error("WebSocket error: %s", e)
        manager.disconnect(ws)
