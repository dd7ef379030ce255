"""Trader endpoints — account views, order placement and cancellation."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from tradesim.core.data_types import OrderRequest, Trader
from tradesim.core.types import OrderType, TradeType
from tradesim.persistence.ledger_store import resolve_ledger_key
from tradesim.server.routes.market import _engine
from tradesim.server.state import TradeSimState, order_view

router = APIRouter(prefix="/api", tags=["orders"])


class PlaceOrderRequest(BaseModel):
    trader_id: str
    trader_name: str
    symbol: str
    quantity: int = Field(gt=0)
    trade_type: TradeType
    order_type: OrderType = OrderType.MARKET
    limit_price: float | None = None
    trail_percent: float | None = None


@router.get("/ledger-key")
def get_ledger_key(trader_id: str, team_id: str | None = None):
    state = TradeSimState()
    return {"key": resolve_ledger_key(trader_id, team_id, state.teams)}


def _read(key: str, view):
    _engine()
    try:
        return view(key)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown account {key}")


@router.get("/accounts/{key}")
def get_account(key: str):
    return _read(key, TradeSimState().snapshot_account)


@router.get("/accounts/{key}/orders")
def get_orders(key: str):
    return _read(key, TradeSimState().snapshot_orders)


@router.get("/accounts/{key}/history")
def get_history(key: str):
    return _read(key, TradeSimState().snapshot_history)


@router.get("/accounts/{key}/performance")
def get_performance(key: str):
    return _read(key, TradeSimState().snapshot_performance)


@router.post("/accounts/{key}/orders")
def place_order(key: str, req: PlaceOrderRequest):
    engine = _engine()
    result = engine.place_order(
        key,
        Trader(trader_id=req.trader_id, name=req.trader_name),
        OrderRequest(
            symbol=req.symbol.upper(),
            quantity=req.quantity,
            trade_type=req.trade_type,
            order_type=req.order_type,
            limit_price=req.limit_price,
            trail_percent=req.trail_percent,
        ),
    )
    if not result.accepted:
        raise HTTPException(status_code=409, detail=result.reason)
    return order_view(result.order)


@router.delete("/accounts/{key}/orders/{order_id}")
def cancel_order(key: str, order_id: str):
    result = _engine().cancel_order(key, order_id)
    if not result.accepted:
        raise HTTPException(status_code=404, detail=result.reason)
    return {"order_id": order_id, "status": result.order.status.value}


@router.delete("/accounts/{key}")
def detach_account(key: str):
    """Stop simulating a ledger. It is saved first and reloaded on next access."""
    _engine().detach_account(key)
    return {"key": key, "attached": False}
