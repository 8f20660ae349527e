"""MCP Daylog Server - Main entry point."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

# MCP imports are optional - only needed when running the server
try:
    from mcp.server import Server  # pragma: no cover
    from mcp.server.stdio import stdio_server  # pragma: no cover
    from mcp.types import Tool, TextContent  # pragma: no cover
    HAS_MCP = True  # pragma: no cover
except ImportError:
    HAS_MCP = False
    Server = None  # type: ignore
    Tool = None  # type: ignore
    TextContent = None  # type: ignore

from .config import DaylogConfig, load_config
from .engine import DaylogEngine
from .tools import execute_tool, make_tools

logger = logging.getLogger(__name__)


def create_server(config: DaylogConfig) -> "Server":
    """Create and configure the MCP server.

    Args:
        config: Project configuration

    Returns:
        Configured MCP Server instance

    Raises:
        ImportError: If MCP package is not installed
    """
    if not HAS_MCP:
        raise ImportError(
            "MCP package not installed. Install with: pip install mcp-daylog[mcp]"
        )

    server = Server("mcp-daylog")
    engine = DaylogEngine(config)
    tool_defs = make_tools(engine)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """Return list of available tools."""
        return [
            Tool(
                name=t["name"],
                description=t["description"],
                inputSchema=t["inputSchema"],
            )
            for t in tool_defs.values()
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Handle tool invocation."""
        result = await execute_tool(engine, name, arguments)
        if not result["success"]:
            logger.warning("Tool %s failed: %s", name, result["error"])
        return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]

    return server


async def run_server(config: DaylogConfig) -> None:
    """Run the MCP server with stdio transport."""
    if not HAS_MCP:
        raise ImportError(
            "MCP package not installed. Install with: pip install mcp-daylog[mcp]"
        )

    server = create_server(config)  # pragma: no cover

    async with stdio_server() as (read_stream, write_stream):  # pragma: no cover
        await server.run(  # pragma: no cover
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )


def configure_logging(level: str) -> None:
    """Send log records to stderr; stdout carries the MCP stdio transport."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="MCP Daylog Server - plan and log a day hour by hour"
    )
    parser.add_argument(
        "--project-root",
        "-p",
        type=Path,
        default=Path.cwd(),
        help="Project root directory (default: current directory)",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        help="Path to config file (default: auto-detect in project root)",
    )
    parser.add_argument(
        "--init",
        action="store_true",
        help="Initialize the journal directory in project root",
    )
    parser.add_argument(
        "--log-level",
        default="warning",
        choices=["debug", "info", "warning", "error"],
        help="Logging level for stderr output (default: warning)",
    )

    maintenance = parser.add_argument_group("maintenance", "Stored journal maintenance")
    maintenance.add_argument(
        "--migrate",
        action="store_true",
        help="Check stored journals for legacy shapes and incomplete plans",
    )
    maintenance.add_argument(
        "--write",
        action="store_true",
        help="With --migrate, rewrite the journals that need it",
    )

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    project_root = args.project_root.resolve()

    try:
        config = load_config(project_root, args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    if args.init:
        DaylogEngine(config)
        print(f"Initialized journal directory in {project_root}")
        print(f"  - {config.journal_dir}/")
        return

    if args.migrate:
        engine = DaylogEngine(config)
        try:
            report = engine.migrate_journals(write=args.write)
        except Exception as e:
            print(f"Error migrating journals: {e}", file=sys.stderr)
            sys.exit(1)
        mode = "write" if args.write else "check"
        print(f"[migrate] mode={mode} files={report['files']} changed={len(report['changed'])}")
        for date_iso in report["changed"]:
            print(f"  {date_iso}")
        if not args.write and report["changed"]:
            sys.exit(2)
        return

    # Check for MCP before running server mode
    if not HAS_MCP:
        print("Error: MCP package not installed.", file=sys.stderr)
        print("Install with: pip install mcp-daylog[mcp]", file=sys.stderr)
        sys.exit(1)

    asyncio.run(run_server(config))


if __name__ == "__main__":  # pragma: no cover
    main()
