"""LaunchWatch: CLI entry point.

Usage:
    launchwatch run
    launchwatch status <MINT>
    launchwatch list [--status watching]
    launchwatch safeguards
    launchwatch kill --reason "..."
    launchwatch reset-kill-switch
    launchwatch update-priorities
    launchwatch prune
    launchwatch transition <MINT> <STATUS> --reason "..." [--kind soft|permanent]
    launchwatch record-outcome <MINT> <PNL_SOL>
    launchwatch check-wallet <WALLET> <MINT> [--created-at ISO8601]

Exit codes:
    0 = ok
    1 = operation failed or safeguards BLOCKED
    2 = configuration error
    3 = cycle already running
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from launchwatch.config import ConfigError
from launchwatch.cycle_runner import CycleInProgressError
from launchwatch.engine import EntryNotFoundError, LaunchWatchEngine
from launchwatch.state import SafeguardStateError
from launchwatch.watchlist import InvalidTransitionError


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="launchwatch", description="Token candidate lifecycle engine")
    parser.add_argument("--config", default=None, help="Path to launchwatch.yaml")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Run one discovery/polling cycle")

    p = sub.add_parser("status", help="Show one watchlist entry")
    p.add_argument("mint")

    p = sub.add_parser("list", help="List watchlist entries")
    p.add_argument("--status", default=None)
    p.add_argument("--limit", type=int, default=100)

    sub.add_parser("safeguards", help="Safeguard status")

    p = sub.add_parser("kill", help="Activate the kill switch")
    p.add_argument("--reason", required=True)

    sub.add_parser("reset-kill-switch", help="Clear the kill switch")
    sub.add_parser("update-priorities", help="Recompute pruning priorities")
    sub.add_parser("prune", help="Prune watchdogs over capacity")

    p = sub.add_parser("transition", help="Manual lifecycle transition")
    p.add_argument("mint")
    p.add_argument("status")
    p.add_argument("--reason", required=True)
    p.add_argument("--kind", choices=["soft", "permanent"], default=None)

    p = sub.add_parser("record-outcome", help="Record a resolved trade")
    p.add_argument("mint")
    p.add_argument("pnl_sol", type=float)

    p = sub.add_parser("check-wallet", help="Manual dev-wallet check")
    p.add_argument("wallet")
    p.add_argument("mint")
    p.add_argument("--created-at", default=None, help="Token creation time, ISO 8601")
    return parser


async def _run_cycle(engine: LaunchWatchEngine) -> dict[str, Any]:
    abort = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, abort.set)
        except (NotImplementedError, RuntimeError):
            pass
    summary = await engine.run_cycle(abort)
    return summary.model_dump(mode="json")


async def _dispatch(engine: LaunchWatchEngine, args: argparse.Namespace) -> tuple[dict[str, Any] | list, int]:
    cmd = args.command
    if cmd == "run":
        return await _run_cycle(engine), 0
    if cmd == "status":
        return engine.get_status(args.mint), 0
    if cmd == "list":
        return engine.list_entries(args.status, args.limit), 0
    if cmd == "safeguards":
        result = engine.get_safeguard_status()
        return result, 1 if result["status"] == "BLOCKED" else 0
    if cmd == "kill":
        return engine.activate_kill_switch(args.reason), 0
    if cmd == "reset-kill-switch":
        return engine.reset_kill_switch(), 0
    if cmd == "update-priorities":
        return engine.update_priorities(), 0
    if cmd == "prune":
        return engine.prune_watchdogs(), 0
    if cmd == "transition":
        return engine.manual_transition(args.mint, args.status, args.reason, args.kind), 0
    if cmd == "record-outcome":
        return engine.record_trade_outcome(args.mint, args.pnl_sol), 0
    if cmd == "check-wallet":
        created_at = datetime.fromisoformat(args.created_at) if args.created_at else None
        return await engine.check_dev_wallet(args.wallet, args.mint, created_at), 0
    raise ValueError(f"Unknown command {cmd}")


async def _main_async(args: argparse.Namespace) -> tuple[Any, int]:
    engine = LaunchWatchEngine.from_config(args.config)
    try:
        return await _dispatch(engine, args)
    finally:
        await engine.close()


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    logging.basicConfig(
        level=os.environ.get("LAUNCHWATCH_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    args = _build_parser().parse_args(argv)
    if args.config:
        args.config = Path(args.config)

    try:
        result, code = asyncio.run(_main_async(args))
    except ConfigError as e:
        result, code = {"status": "ERROR", "error": str(e)}, 2
    except CycleInProgressError as e:
        result, code = {"status": "BUSY", "error": str(e)}, 3
    except (EntryNotFoundError, InvalidTransitionError, SafeguardStateError, ValueError) as e:
        result, code = {"status": "ERROR", "error": str(e)}, 1

    print(json.dumps(result, indent=2, default=str))
    sys.exit(code)


if __name__ == "__main__":
    main()
