"""MCP Daylog Configuration - Advanced Python Example

Copy to your project root as daylog_config.py.

Convention:
- CONFIG dict for static configuration (same structure as TOML)
- Functions named hook_* become lifecycle hooks
"""

import json
import logging
from pathlib import Path

from mcp_daylog.lifecycle import PlanAction

log = logging.getLogger("daylog_config")

# =============================================================================
# Static Configuration (same structure as TOML)
# =============================================================================

CONFIG = {
    "project": {
        "name": "my-days",
    },
    "directories": {
        "journal": "data/journal",
    },
    "clock": {
        "timezone": "America/New_York",
    },
    "locking": {
        "timeout": 5,
    },
}


# =============================================================================
# Hooks - Called after engine operations
# =============================================================================

def hook_plan_completed(engine, date, result) -> None:
    """Called after a plan is completed.

    Task plans carry the task reference, so this is where the task list
    gets told that the task is done. An "in-progress" action closes the
    plan but leaves the task open.
    """
    if result.task is None or result.action is not PlanAction.COMPLETE:
        return

    done_file = Path(engine.config.project_root) / "data" / "completed" / f"{date}.json"
    done_file.parent.mkdir(parents=True, exist_ok=True)
    done = json.loads(done_file.read_text()) if done_file.exists() else []
    if result.task.task_id not in done:
        done.append(result.task.task_id)
        done_file.write_text(json.dumps(done, indent=2))


def hook_plan_replanned(engine, date, result) -> None:
    """Called after a plan is rescheduled."""
    log.info("%s: plan %s moved, now %s", date, result.old_plan_id, result.new_plan_id)


def hook_plans_swept(engine, date, document) -> None:
    """Called after a sweep changed a journal (plans normalized or missed)."""
    pass
