"""MCP Daylog - plan and log a day hour by hour."""

__version__ = "0.1.0"
