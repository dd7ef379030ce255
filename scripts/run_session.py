#!/usr/bin/env python3
"""Run one headless market session on a simulated clock.

Usage:
    python scripts/run_session.py --profile fast --ticks 120 --seed 7 --output results/
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import numpy as np

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from tradesim.config.config_manager import DEFAULT_CONFIG_PATH, ConfigManager
from tradesim.config.settings import NS_PER_SECOND, SimulationSettings
from tradesim.core.data_types import OrderRequest, Trader
from tradesim.core.event_bus import EventBus
from tradesim.core.types import EventType, OrderType, TradeType
from tradesim.engine.market_engine import MarketEngine


def parse_args():
    parser = argparse.ArgumentParser(description="TradeSim headless session runner")
    parser.add_argument("--config", type=str, default=str(DEFAULT_CONFIG_PATH),
                        help="Path to base config TOML")
    parser.add_argument("--profile", type=str, default=None,
                        help="Config profile (fast, volatile)")
    parser.add_argument("--ticks", type=int, default=100,
                        help="Number of price ticks to simulate")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed (overrides system.seed)")
    parser.add_argument("--symbol", type=str, default="MTNGH",
                        help="Symbol the demo trader buys at the open")
    parser.add_argument("--quantity", type=int, default=1000,
                        help="Demo order size in shares")
    parser.add_argument("--trail", type=float, default=0.05,
                        help="Trailing stop percent placed after the buy fills")
    parser.add_argument("--output", type=str, default=None,
                        help="Directory to write session_result.json")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable debug logging")
    return parser.parse_args()


class SimulatedClock:
    """Monotonic nanosecond clock advanced by the runner."""

    def __init__(self, start_ns: int = 0) -> None:
        self.now_ns = start_ns

    def __call__(self) -> int:
        return self.now_ns

    def advance(self, seconds: float) -> int:
        self.now_ns += int(seconds * NS_PER_SECOND)
        return self.now_ns


def run_session(settings: SimulationSettings, args) -> dict:
    clock = SimulatedClock()
    bus = EventBus()
    engine = MarketEngine(
        settings=settings,
        event_bus=bus,
        rng=np.random.default_rng(settings.seed),
        clock=clock,
    )
    trader = Trader(trader_id="demo", name="Demo Trader")
    engine.attach_account(trader.trader_id)

    engine.open_session()
    open_index = engine.index()
    engine.place_order(
        trader.trader_id,
        trader,
        OrderRequest(symbol=args.symbol, quantity=args.quantity, trade_type=TradeType.BUY),
    )

    stop_placed = False
    interval = settings.tick_interval_seconds
    next_scan = settings.event_scan_seconds
    elapsed = 0.0
    fills = []
    index_curve = [(clock.now_ns, open_index)]
    for _ in range(args.ticks):
        elapsed += interval
        # Event scans and timer polls that fall inside this interval
        while next_scan <= elapsed:
            clock.now_ns = int(next_scan * NS_PER_SECOND)
            engine.scan_events()
            engine.poll_timers()
            next_scan += settings.event_scan_seconds
        clock.now_ns = int(elapsed * NS_PER_SECOND)
        engine.poll_timers()
        result = engine.tick()
        if result is not None:
            fills.extend((result.timestamp_ns, f) for f in result.fills)
            index_curve.append((result.timestamp_ns, engine.index()))

        holding = engine.account(trader.trader_id).ledger.holding_quantity(args.symbol)
        if holding and not stop_placed and engine.session.is_open:
            engine.place_order(
                trader.trader_id,
                trader,
                OrderRequest(
                    symbol=args.symbol,
                    quantity=holding,
                    trade_type=TradeType.SELL,
                    order_type=OrderType.TRAILING_STOP,
                    trail_percent=args.trail,
                ),
            )
            stop_placed = True

    close_index = engine.index()
    engine.close_session()
    account = engine.account(trader.trader_id)
    prices = engine.prices()
    counts = bus.published_counts()

    return {
        "ticks": args.ticks,
        "simulated_seconds": elapsed,
        "open_index": open_index,
        "close_index": close_index,
        "index_change_pct": (close_index - open_index) / open_index * 100 if open_index else 0.0,
        "circuit_breaker_triggered": engine.breaker.triggered,
        "circuit_breaker_threshold": settings.circuit_breaker_threshold,
        "fills": [
            {"timestamp": ts, "symbol": f.symbol, "side": f.trade_type.value, "quantity": f.quantity,
             "price": f.price, "commission": f.commission}
            for ts, f in fills
        ],
        "equity_curve": [(e.timestamp_ns, e.portfolio_value) for e in account.recorder.entries()],
        "index_curve": index_curve,
        "symbol": args.symbol,
        "candles": engine.instruments[args.symbol].history.to_records(),
        "notices": counts,
        "account": account.summary(prices),
        "market_events": counts.get(EventType.MARKET_EVENT_STARTED.value, 0),
    }


def main():
    args = parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config_path = Path(args.config)
    if not config_path.exists():
        logging.error("Config file not found: %s", config_path)
        sys.exit(1)

    config = ConfigManager()
    config.load(config_path, profile=args.profile)
    settings = SimulationSettings.from_config(config)
    if args.seed is not None:
        settings = settings.with_updates(seed=args.seed)

    logging.info("TradeSim Session")
    logging.info("  Config: %s", args.config)
    logging.info("  Profile: %s", args.profile or "(base)")
    logging.info("  Speed: %s", settings.simulation_speed.value)
    logging.info("  Ticks: %d", args.ticks)

    result = run_session(settings, args)

    if args.output:
        output_dir = Path(args.output)
        output_dir.mkdir(parents=True, exist_ok=True)
        result_path = output_dir / "session_result.json"
        with open(result_path, "w") as f:
            json.dump(result, f, indent=2)
        logging.info("Results saved to %s", result_path)

    logging.info(
        "Session complete: index %+.2f%%, %d fill(s), %d market event(s), breaker %s, value %.2f",
        result["index_change_pct"],
        len(result["fills"]),
        result["market_events"],
        "TRIPPED" if result["circuit_breaker_triggered"] else "quiet",
        result["account"]["total_value"],
    )


if __name__ == "__main__":
    main()
