"""MCP tool definitions wrapping the daylog engine."""

from __future__ import annotations

from typing import Any

from .engine import (
    DaylogEngine,
    DocumentExistsError,
    DocumentNotFoundError,
    JournalError,
    PlanNotFoundError,
    PlanStateError,
)
from .lifecycle import InvalidActionError, PlanAction
from .locking import LockTimeoutError
from .models import (
    HOURS,
    Content,
    InvalidAddressError,
    InvalidDateError,
    InvalidRangeError,
    ListType,
    MalformedDocumentError,
    PlanStatus,
    TaskContent,
    TextContent,
)

_DATE = {
    "type": "string",
    "description": "Journal date (YYYY-MM-DD)",
}

_SOURCE = {
    "type": "object",
    "description": 'Where the entry sits: {"kind": "hour", "hour"} or {"kind": "range", "start", "end"}',
    "properties": {
        "kind": {"type": "string", "enum": ["hour", "range"]},
        "hour": {"type": "string", "enum": list(HOURS)},
        "start": {"type": "string", "enum": list(HOURS)},
        "end": {"type": "string", "enum": list(HOURS)},
    },
}

_CONTENT_PROPERTIES = {
    "task_id": {
        "type": "string",
        "description": "Task to reference (with list_type); omit for a text entry",
    },
    "list_type": {
        "type": "string",
        "enum": [t.value for t in ListType],
        "description": "List owning the task",
    },
    "text": {
        "type": "string",
        "description": "Free-form text; omit for a task entry",
    },
}


def make_tools(engine: DaylogEngine) -> dict[str, dict]:
    """Create MCP tool definitions for the daylog engine.

    Returns:
        Dict mapping tool names to their definitions.
    """

    tools = {}

    tools["journal_create"] = {
        "name": "journal_create",
        "description": "Create an empty journal for a date (24 hours from 7am to 6am, no ranges).",
        "inputSchema": {
            "type": "object",
            "properties": {"date": _DATE},
            "required": ["date"],
        },
    }

    tools["journal_read"] = {
        "name": "journal_read",
        "description": "Read a day's journal. Overdue active plans are marked missed first.",
        "inputSchema": {
            "type": "object",
            "properties": {"date": _DATE},
            "required": ["date"],
        },
    }

    tools["journal_sweep"] = {
        "name": "journal_sweep",
        "description": "Mark active plans missed once their hour (or range end) plus one hour has passed.",
        "inputSchema": {
            "type": "object",
            "properties": {"date": _DATE},
            "required": ["date"],
        },
    }

    tools["entry_log"] = {
        "name": "entry_log",
        "description": (
            "Log something that actually happened at an hour or range. "
            "Logging a task closes the earliest open plan for that task."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {"date": _DATE, "source": _SOURCE, **_CONTENT_PROPERTIES},
            "required": ["date", "source"],
        },
    }

    tools["entry_plan"] = {
        "name": "entry_plan",
        "description": "Plan a task or text entry at an hour or range.",
        "inputSchema": {
            "type": "object",
            "properties": {"date": _DATE, "source": _SOURCE, **_CONTENT_PROPERTIES},
            "required": ["date", "source"],
        },
    }

    tools["plan_complete"] = {
        "name": "plan_complete",
        "description": (
            "Complete an active or missed plan and log its occurrence once. "
            "Both actions currently complete the plan."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "date": _DATE,
                "plan_id": {"type": "string", "description": "Plan to complete"},
                "source": _SOURCE,
                "action": {
                    "type": "string",
                    "enum": ["in-progress", "complete"],
                    "description": "Requested action (default: complete)",
                },
            },
            "required": ["date", "plan_id", "source"],
        },
    }

    tools["plan_replan"] = {
        "name": "plan_replan",
        "description": (
            "Move an active task plan to another hour or range. The old plan stays "
            "as rescheduled and a linked new plan is created."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "date": _DATE,
                "from_plan_id": {"type": "string", "description": "Plan to reschedule"},
                "to": {
                    "type": "object",
                    "description": 'Destination: {"hour"} or {"start", "end"}',
                    "properties": {
                        "hour": {"type": "string", "enum": list(HOURS)},
                        "start": {"type": "string", "enum": list(HOURS)},
                        "end": {"type": "string", "enum": list(HOURS)},
                    },
                },
            },
            "required": ["date", "from_plan_id", "to"],
        },
    }

    tools["plan_list"] = {
        "name": "plan_list",
        "description": "List the plans in a day's journal with their status and location.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "date": _DATE,
                "status": {
                    "type": "string",
                    "enum": [s.value for s in PlanStatus],
                    "description": "Only plans with this status",
                },
            },
            "required": ["date"],
        },
    }

    tools["plan_history"] = {
        "name": "plan_history",
        "description": "Show the chain of replans a plan belongs to, oldest first.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "date": _DATE,
                "plan_id": {"type": "string", "description": "Any plan in the chain"},
            },
            "required": ["date", "plan_id"],
        },
    }

    return tools


def content_from_arguments(arguments: dict[str, Any]) -> Content:
    """Build task or text content from tool arguments."""
    has_task = "task_id" in arguments
    has_text = "text" in arguments
    if has_task == has_text:
        raise JournalError("Provide either task_id and list_type, or text.")
    if has_text:
        return TextContent(text=arguments["text"])
    try:
        list_type = ListType(arguments.get("list_type"))
    except ValueError:
        raise JournalError(
            f"Invalid list_type {arguments.get('list_type')!r}. "
            f"Use one of: {', '.join(t.value for t in ListType)}"
        ) from None
    return TaskContent(task_id=arguments["task_id"], list_type=list_type)


async def execute_tool(engine: DaylogEngine, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    """Execute a daylog tool and return the result.

    Args:
        engine: DaylogEngine instance
        name: Tool name
        arguments: Tool arguments

    Returns:
        Result dict with success status and data or error
    """
    try:
        if name == "journal_create":
            engine.create_journal(arguments["date"])
            return {
                "success": True,
                "date": arguments["date"],
                "message": f"Journal for {arguments['date']} created",
            }

        elif name == "journal_read":
            document = engine.read_journal(arguments["date"])
            return {
                "success": True,
                "date": document.date,
                "journal": document.to_dict(),
            }

        elif name == "journal_sweep":
            changed = engine.sweep_journal(arguments["date"])
            return {
                "success": True,
                "date": arguments["date"],
                "changed": changed,
            }

        elif name == "entry_log":
            linked = engine.log_entry(
                arguments["date"],
                content_from_arguments(arguments),
                arguments["source"],
            )
            return {
                "success": True,
                "date": arguments["date"],
                "linked_plan": linked,
                "message": "Entry logged and earliest open plan completed" if linked else "Entry logged",
            }

        elif name == "entry_plan":
            entry = engine.plan_entry(
                arguments["date"],
                content_from_arguments(arguments),
                arguments["source"],
            )
            return {
                "success": True,
                "date": arguments["date"],
                "plan_id": entry.plan_id,
                "message": f"Plan {entry.plan_id} added",
            }

        elif name == "plan_complete":
            result = engine.complete_plan(
                arguments["date"],
                arguments["plan_id"],
                arguments["source"],
                arguments.get("action", "complete"),
            )
            if result.action == PlanAction.IN_PROGRESS:
                message = "Plan marked in progress."
            elif result.logged_created:
                message = "Plan marked complete and logged entry created."
            else:
                message = "Plan marked complete."
            return {
                "success": True,
                "date": arguments["date"],
                "plan_id": arguments["plan_id"],
                **result.to_dict(),
                "message": message,
            }

        elif name == "plan_replan":
            result = engine.replan(arguments["date"], arguments["from_plan_id"], arguments["to"])
            return {
                "success": True,
                "date": arguments["date"],
                **result.to_dict(),
                "message": "Plan successfully replanned.",
            }

        elif name == "plan_list":
            plans = engine.list_plans(arguments["date"], arguments.get("status"))
            return {
                "success": True,
                "date": arguments["date"],
                "count": len(plans),
                "plans": plans,
            }

        elif name == "plan_history":
            chain = engine.plan_history(arguments["date"], arguments["plan_id"])
            return {
                "success": True,
                "date": arguments["date"],
                "count": len(chain),
                "plans": chain,
            }

        else:
            return {
                "success": False,
                "error": f"Unknown tool: {name}",
                "error_type": "unknown_tool",
            }

    except KeyError as e:
        return {
            "success": False,
            "error": f"Missing required argument: {e.args[0]}",
            "error_type": "missing_argument",
        }

    except PlanNotFoundError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "not_found",
            "suggestion": "Use plan_list to see the plans and their locations.",
        }

    except PlanStateError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": e.status.value.replace("-", "_"),
        }

    except InvalidRangeError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "invalid_range",
        }

    except InvalidAddressError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "invalid_address",
        }

    except InvalidDateError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "invalid_date",
        }

    except InvalidActionError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "invalid_action",
        }

    except DocumentExistsError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "journal_exists",
        }

    except DocumentNotFoundError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "journal_not_found",
            "suggestion": "Use journal_create first.",
        }

    except MalformedDocumentError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "malformed_journal",
        }

    except LockTimeoutError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "lock_timeout",
        }

    except JournalError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "journal_error",
        }

    except Exception as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "unexpected_error",
        }
