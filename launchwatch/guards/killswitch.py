"""Killswitch guard: operator file trigger.

Dropping a killswitch.txt into the workspace stops all promotions. The
file's text, if any, becomes the recorded reason. SafeguardController
latches the trigger into persisted state, so deleting the file does not
clear it; only reset_kill_switch does.

Usage:
    python3 -m launchwatch.guards.killswitch

Exit codes:
    0 = no killswitch file
    1 = killswitch file present

Output:
    JSON with status, message and the file checked.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

DEFAULT_REASON = "Operator killswitch file"


def check_killswitch(path: Path) -> dict:
    """Report whether the operator file at ``path`` is present."""
    if not path.exists():
        return {"status": "CLEAR", "message": "No killswitch file.", "file": str(path)}
    reason = path.read_text().strip() or DEFAULT_REASON
    return {
        "status": "ACTIVE",
        "message": f"Killswitch file present: {reason}",
        "reason": reason,
        "file": str(path),
    }


def main() -> None:
    from launchwatch.config import load_engine_config

    paths = load_engine_config().paths
    result = check_killswitch(paths.resolve(paths.killswitch_file))
    print(json.dumps(result, indent=2))
    sys.exit(1 if result["status"] == "ACTIVE" else 0)


if __name__ == "__main__":
    main()
