"""Instrument Catalog — the static list of listed stocks.

Loads a JSON catalog when one is supplied, with a built-in GSE fallback.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from tradesim.market.instrument import CatalogEntry, Instrument

logger = logging.getLogger(__name__)


def load_catalog(path: str | Path | None = None) -> list[CatalogEntry]:
    """Load catalog entries from JSON, or the built-in list when no file is given.

    Expected format:
    [
        {"symbol": "MTNGH", "name": "MTN Ghana", "price": 1.55, "volatility": 0.02, "trend": 0.0005},
        ...
    ]
    """
    if path is None:
        return list(BUILTIN_CATALOG)

    path = Path(path)
    if not path.exists():
        logger.warning("Catalog file not found: %s — using built-in catalog", path)
        return list(BUILTIN_CATALOG)

    with open(path) as f:
        rows = json.load(f)

    entries = []
    seen = set()
    for row in rows:
        symbol = str(row["symbol"]).upper()
        if symbol in seen:
            logger.warning("Duplicate catalog symbol %s ignored", symbol)
            continue
        seen.add(symbol)
        entries.append(CatalogEntry(
            symbol=symbol,
            name=row.get("name", symbol),
            price=float(row["price"]),
            volatility=float(row.get("volatility", 0.02)),
            trend=float(row.get("trend", 0.0)),
        ))
    logger.info("Loaded %d instruments from %s", len(entries), path)
    return entries


def build_instruments(entries: list[CatalogEntry], history_capacity: int = 50) -> dict[str, Instrument]:
    """Instruments keyed by symbol, in catalog order."""
    return {
        entry.symbol: Instrument.from_catalog(entry, history_capacity=history_capacity)
        for entry in entries
    }


# Built-in Ghana Stock Exchange listings
BUILTIN_CATALOG = (
    CatalogEntry("MTNGH", "MTN Ghana", 1.55, 0.02, 0.0005),
    CatalogEntry("CAL", "CAL Bank", 0.68, 0.015, 0.0003),
    CatalogEntry("TOTAL", "TotalEnergies Marketing", 9.90, 0.025, 0.0002),
    CatalogEntry("GOIL", "GOIL PLC", 1.60, 0.022, 0.00025),
    CatalogEntry("GCB", "GCB Bank PLC", 4.01, 0.018, 0.0004),
    CatalogEntry("EGL", "Enterprise Group PLC", 3.90, 0.019, 0.0006),
    CatalogEntry("FML", "Fan Milk PLC", 1.80, 0.03, -0.0001),
    CatalogEntry("SOGEGH", "Societe Generale Ghana", 1.25, 0.016, 0.0002),
    CatalogEntry("UNIL", "Unilever Ghana PLC", 19.98, 0.012, 0.0007),
    CatalogEntry("GGBL", "Guinness Ghana Breweries", 3.20, 0.028, 0.0003),
    CatalogEntry("SCB", "Standard Chartered Bank", 20.00, 0.011, 0.0005),
    CatalogEntry("BOPP", "Benso Oil Palm Plantation", 21.00, 0.035, 0.0008),
    CatalogEntry("GSR", "Ghana Stock Exchange", 15.00, 0.008, 0.0001),
    CatalogEntry("ACCESS", "Access Bank Ghana", 4.50, 0.021, 0.00045),
    CatalogEntry("ETI", "Ecobank Transnational", 0.15, 0.04, 0.0001),
)
