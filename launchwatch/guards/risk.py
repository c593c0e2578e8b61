"""Risk guard: safeguard status report.

Summarizes the kill switch, daily buy cap, watchdog cap and rolling win
rate into one structured verdict.

Usage:
    python3 -m launchwatch.guards.risk

Exit codes:
    0 = promotions allowed (CLEAR or WARNING)
    1 = promotions or execution blocked

Output:
    JSON with status and limit details.
"""

from __future__ import annotations

import json
import sys
from typing import TYPE_CHECKING

from launchwatch.state import SafeguardStateError

if TYPE_CHECKING:
    from launchwatch.guards.safeguards import SafeguardController


def check_risk(controller: "SafeguardController") -> dict:
    """Check all safeguard limits. Returns structured status."""
    config = controller.config
    kill_switch = controller.kill_switch_active()
    win_rate = controller.refresh_win_rate()

    issues: list[str] = []
    warnings: list[str] = []

    try:
        state = controller.load()
    except SafeguardStateError as e:
        return {
            "status": "BLOCKED",
            "kill_switch_active": kill_switch,
            "rolling_win_rate": win_rate,
            "issues": [f"Safeguard state unavailable: {e}"],
            "warnings": [],
            "message": f"Safeguard state unavailable: {e}",
        }

    if kill_switch:
        issues.append(f"Kill switch ACTIVE: {state.kill_switch_reason or 'no reason recorded'}")

    if state.daily_buys >= config.daily_buy_cap:
        issues.append(
            f"Daily buy cap reached ({state.daily_buys}/{config.daily_buy_cap}). "
            "Qualified tokens will not be executed until the window resets."
        )

    if state.active_watchdog_count > config.max_watchdog_count:
        warnings.append(
            f"Watchdog count {state.active_watchdog_count} over cap {config.max_watchdog_count}. "
            "Pruning pending."
        )

    if (
        state.win_rate_sample_count >= config.win_rate_min_samples
        and win_rate < config.min_rolling_win_rate
    ):
        warnings.append(
            f"Rolling win rate {win_rate:.0%} below {config.min_rolling_win_rate:.0%} "
            f"over {state.win_rate_sample_count} trades."
        )

    status = "BLOCKED" if issues else ("WARNING" if warnings else "CLEAR")

    return {
        "status": status,
        "kill_switch_active": kill_switch,
        "kill_switch_reason": state.kill_switch_reason,
        "daily_buys": state.daily_buys,
        "daily_buy_cap": config.daily_buy_cap,
        "daily_window_started_at": state.daily_window_started_at.isoformat() if state.daily_window_started_at else None,
        "active_watchdog_count": state.active_watchdog_count,
        "max_watchdog_count": config.max_watchdog_count,
        "pruned_total": state.pruned_total,
        "rolling_win_rate": win_rate,
        "win_rate_samples": state.win_rate_sample_count,
        "issues": issues,
        "warnings": warnings,
        "message": "; ".join(issues + warnings) if (issues or warnings) else "All safeguards clear.",
    }


def main() -> None:
    from launchwatch.config import load_engine_config
    from launchwatch.guards.safeguards import SafeguardController

    config = load_engine_config()
    paths = config.paths
    controller = SafeguardController(
        config.safeguards,
        paths.resolve(paths.safeguard_state),
        paths.resolve(paths.killswitch_file),
    )
    result = check_risk(controller)
    print(json.dumps(result, indent=2))
    sys.exit(1 if result["status"] == "BLOCKED" else 0)


if __name__ == "__main__":
    main()
