"""Market REST endpoints — read-only snapshots of the simulated exchange."""

from fastapi import APIRouter, HTTPException, Query

from tradesim.server.state import TradeSimState

router = APIRouter(prefix="/api", tags=["market"])


def _engine():
    engine = TradeSimState().engine
    if engine is None:
        raise HTTPException(status_code=409, detail="No market engine running.")
    return engine


@router.get("/market")
def get_market():
    return _engine().market_snapshot()


@router.get("/instruments")
def get_instruments():
    return _engine().instrument_views()


@router.get("/instruments/{symbol}")
def get_instrument(symbol: str):
    data = _engine().instrument_detail(symbol.upper())
    if data is None:
        raise HTTPException(status_code=404, detail=f"Unknown symbol: {symbol}")
    return data


@router.get("/movers")
def get_movers(count: int = Query(5, ge=1, le=50)):
    return _engine().market_movers(count)


@router.get("/events")
def get_event_templates():
    injector = _engine().injector
    return [
        {
            "title": t.title,
            "description": t.description,
            "drift_modifier": t.drift_modifier,
            "volatility_modifier": t.volatility_modifier,
        }
        for t in injector.templates
    ]


@router.get("/notices")
def get_notices(since: int = 0):
    return TradeSimState().notices_since(since)
