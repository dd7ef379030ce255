#!/usr/bin/env python3
"""Start the TradeSim market server."""

import argparse
import logging

import uvicorn


def main():
    parser = argparse.ArgumentParser(description="TradeSim market server")
    parser.add_argument("--port", type=int, default=8015, help="Server port (default: 8015)")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Server host (default: 127.0.0.1)")
    parser.add_argument("--config", type=str, default=None, help="Path to base TOML config")
    parser.add_argument("--profile", type=str, default=None, help="Config profile (e.g. fast, volatile)")
    parser.add_argument("--store", type=str, default=None, help="Directory for JSON ledger files (default: in-memory)")
    parser.add_argument("--catalog", type=str, default=None, help="JSON instrument catalog (default: built-in GSE list)")
    parser.add_argument("--open", action="store_true", help="Open the market immediately")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    from tradesim.server.app import app
    from tradesim.server.state import TradeSimState

    state = TradeSimState()
    engine = state.build_engine(
        config_path=args.config,
        profile=args.profile,
        store_dir=args.store,
        catalog_path=args.catalog,
    )
    if args.open:
        engine.open_session_admin()

    print(f"\n  TradeSim Market Server")
    print(f"  API:       http://{args.host}:{args.port}")
    print(f"  WebSocket: ws://{args.host}:{args.port}/ws")
    print(f"  Docs:      http://{args.host}:{args.port}/docs\n")

    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
