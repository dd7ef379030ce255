#!/usr/bin/env python3
"""Plot a headless TradeSim session.

Usage:
    python scripts/run_session.py --ticks 200 --output results/
    python scripts/plot_session.py --results results/session_result.json
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

import numpy as np

sys.path.insert(0, str(Path(__file__).parent.parent))


def parse_args():
    parser = argparse.ArgumentParser(description="Plot TradeSim session results")
    parser.add_argument("--results", type=str, default="results/session_result.json",
                        help="Path to session_result.json")
    parser.add_argument("--output", type=str, default="results/plots",
                        help="Output directory for PNG plots")
    return parser.parse_args()


def _seconds(timestamps_ns, origin_ns: int) -> np.ndarray:
    return (np.asarray(timestamps_ns, dtype=np.float64) - origin_ns) / 1e9


def plot_equity_curve(equity_curve: list, starting_capital: float, output_dir: Path) -> None:
    """1. Portfolio value per tick."""
    import matplotlib.pyplot as plt

    if not equity_curve:
        return

    ts = _seconds([t for t, _ in equity_curve], equity_curve[0][0])
    values = [v for _, v in equity_curve]

    fig, ax = plt.subplots(figsize=(12, 5))
    ax.plot(ts, values, color="#2196F3", linewidth=1.5)
    ax.axhline(y=starting_capital, color="gray", linestyle="--", alpha=0.5, label="Starting Capital")
    ax.set_title("Portfolio Value", fontsize=14, fontweight="bold")
    ax.set_ylabel("Value")
    ax.set_xlabel("Session time (s)")
    ax.grid(True, alpha=0.3)
    ax.legend()
    fig.tight_layout()
    fig.savefig(output_dir / "portfolio_value.png", dpi=150)
    plt.close(fig)


def plot_index(index_curve: list, threshold: float, tripped: bool, output_dir: Path) -> None:
    """2. Equal-weighted index against the circuit-breaker line."""
    import matplotlib.pyplot as plt

    if not index_curve:
        return

    ts = _seconds([t for t, _ in index_curve], index_curve[0][0])
    index = np.array([v for _, v in index_curve])
    open_index = index[0]

    fig, ax = plt.subplots(figsize=(12, 5))
    ax.plot(ts, index, color="#673AB7", linewidth=1.5, label="Index")
    ax.axhline(y=open_index, color="gray", linestyle="--", alpha=0.5, label="Open")
    ax.axhline(
        y=open_index * (1 - threshold),
        color="#F44336",
        linestyle="--",
        alpha=0.7,
        label=f"Breaker (-{threshold * 100:g}%){' TRIPPED' if tripped else ''}",
    )
    ax.set_title("Market Index", fontsize=14, fontweight="bold")
    ax.set_xlabel("Session time (s)")
    ax.grid(True, alpha=0.3)
    ax.legend()
    fig.tight_layout()
    fig.savefig(output_dir / "market_index.png", dpi=150)
    plt.close(fig)


def plot_candles(symbol: str, candles: list, fills: list, output_dir: Path) -> None:
    """3. OHLC bars for the traded symbol with fill markers."""
    import matplotlib.pyplot as plt

    if not candles:
        return

    origin = candles[0]["timestamp_ns"]
    ts = _seconds([c["timestamp_ns"] for c in candles], origin)
    width = float(np.median(np.diff(ts))) * 0.6 if len(ts) > 1 else 1.0

    fig, ax = plt.subplots(figsize=(12, 6))
    for t, c in zip(ts, candles):
        color = "#4CAF50" if c["close"] >= c["open"] else "#F44336"
        ax.plot([t, t], [c["low"], c["high"]], color=color, linewidth=1)
        ax.bar(t, c["close"] - c["open"], bottom=c["open"], width=width, color=color, alpha=0.8)

    for f in (f for f in fills if f["symbol"] == symbol):
        marker = "^" if f["side"] == "BUY" else "v"
        ax.scatter((f["timestamp"] - origin) / 1e9, f["price"], marker=marker, color="#2196F3", s=80, zorder=3)

    ax.set_title(f"{symbol} (last {len(candles)} candles)", fontsize=14, fontweight="bold")
    ax.set_ylabel("Price")
    ax.set_xlabel("Session time (s)")
    ax.grid(True, alpha=0.3)
    fig.tight_layout()
    fig.savefig(output_dir / f"candles_{symbol}.png", dpi=150)
    plt.close(fig)


def plot_notice_counts(notices: dict, output_dir: Path) -> None:
    """4. Notices published during the session, by type."""
    import matplotlib.pyplot as plt

    if not notices:
        return

    kinds = sorted(notices, key=lambda k: notices[k], reverse=True)
    counts = [notices[k] for k in kinds]

    fig, ax = plt.subplots(figsize=(10, 5))
    ax.barh(kinds, counts, color="#9C27B0", alpha=0.7)
    ax.set_title("Session Notices", fontsize=14, fontweight="bold")
    ax.set_xlabel("Count")
    for i, c in enumerate(counts):
        ax.text(c + 0.1, i, str(c), va="center")
    fig.tight_layout()
    fig.savefig(output_dir / "notices.png", dpi=150)
    plt.close(fig)


def main():
    args = parse_args()

    results_path = Path(args.results)
    if not results_path.exists():
        print(f"Results file not found: {results_path}")
        sys.exit(1)

    with open(results_path) as f:
        results = json.load(f)

    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)

    import matplotlib
    matplotlib.use("Agg")  # Non-interactive backend

    account = results.get("account", {})
    starting_capital = account.get("total_value", 0.0) - account.get("profit_loss", 0.0)

    plot_equity_curve(results.get("equity_curve", []), starting_capital, output_dir)
    plot_index(
        results.get("index_curve", []),
        results.get("circuit_breaker_threshold", 0.07),
        results.get("circuit_breaker_triggered", False),
        output_dir,
    )
    plot_candles(results.get("symbol", ""), results.get("candles", []), results.get("fills", []), output_dir)
    plot_notice_counts(results.get("notices", {}), output_dir)

    print(f"Plots saved to {output_dir}/")
    for f in sorted(output_dir.glob("*.png")):
        print(f"  {f.name}")


if __name__ == "__main__":
    main()
