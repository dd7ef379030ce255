"""Admin endpoints — session control, market events, settings and ledgers."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from tradesim.config.config_manager import ConfigManager
from tradesim.config.settings import SimulationSettings
from tradesim.core.types import SettlementCycle, SimulationSpeed
from tradesim.server.routes.market import _engine
from tradesim.server.state import TradeSimState

router = APIRouter(prefix="/api/admin", tags=["admin"])


class TriggerEventRequest(BaseModel):
    name: str


class SettingsUpdate(BaseModel):
    starting_capital: float | None = None
    settlement_cycle: SettlementCycle | None = None
    base_drift: float | None = None
    base_volatility: float | None = None
    event_frequency: float | None = None
    market_duration_minutes: float | None = None
    circuit_breaker_enabled: bool | None = None
    circuit_breaker_threshold: float | None = None
    circuit_breaker_halt_seconds: float | None = None
    simulation_speed: SimulationSpeed | None = None
    interest_rate: float | None = None
    commission_fee: float | None = None


class AdjustCashRequest(BaseModel):
    amount: float


class TeamRequest(BaseModel):
    leader_id: str


@router.post("/open")
def open_market():
    engine = _engine()
    if not engine.open_session_admin():
        raise HTTPException(status_code=409, detail=f"Market is {engine.status.value}; cannot open.")
    return {"status": engine.status.value}


@router.post("/close")
def close_market():
    engine = _engine()
    if not engine.close_session_admin():
        raise HTTPException(status_code=409, detail=f"Market is {engine.status.value}; cannot close.")
    return {"status": engine.status.value}


@router.post("/events")
def trigger_event(req: TriggerEventRequest):
    if not _engine().trigger_event_admin(req.name):
        raise HTTPException(status_code=404, detail=f"Unknown market event: {req.name}")
    return {"requested": req.name}


@router.get("/settings")
def get_settings():
    engine = _engine()
    pending = engine.pending_settings
    return {
        "active": engine.settings.to_dict(),
        "pending": pending.to_dict() if pending is not None else None,
    }


@router.put("/settings")
def update_settings(req: SettingsUpdate):
    changes = req.model_dump(exclude_none=True)
    try:
        staged = _engine().update_settings(**changes)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"pending": staged.to_dict()}


@router.post("/config/reload")
def reload_config():
    """Re-read the TOML files and stage the result for the next open."""
    config = ConfigManager()
    try:
        config.reload()
        settings = SimulationSettings.from_config(config)
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    staged = _engine().update_settings(**settings.to_dict())
    return {"pending": staged.to_dict(), "sources": [str(p) for p in config.sources]}


@router.get("/leaderboard")
def get_leaderboard():
    return _engine().leaderboard()


@router.get("/summary")
def get_summary():
    return _engine().admin_summary()


@router.post("/accounts/{key}/adjust-cash")
def adjust_cash(key: str, req: AdjustCashRequest):
    balance = _engine().adjust_cash(key, req.amount)
    return {"key": key, "cash": balance}


@router.post("/accounts/{key}/reset")
def reset_account(key: str):
    account = _engine().reset_ledger(key)
    return {"key": key, "cash": account.ledger.cash}


@router.put("/teams/{team_id}")
def set_team(team_id: str, req: TeamRequest):
    TradeSimState().teams[team_id] = req.leader_id
    return {"team_id": team_id, "leader_id": req.leader_id}
