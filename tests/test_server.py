"""Tests for MCP server module."""

import json
from unittest.mock import patch

import pytest

import mcp_daylog.server as server_module
from mcp_daylog.server import main


# Fixtures temp_project and config are provided by conftest.py


class TestServerImports:
    """Test server module imports and HAS_MCP flag."""

    def test_server_imports_without_mcp(self):
        """Server module is importable regardless of MCP availability."""
        assert hasattr(server_module, "HAS_MCP")
        assert hasattr(server_module, "create_server")
        assert hasattr(server_module, "run_server")
        assert hasattr(server_module, "main")


class TestCreateServer:
    """Tests for create_server function."""

    def test_create_server_without_mcp_raises(self, config):
        with patch.object(server_module, "HAS_MCP", False):
            with pytest.raises(ImportError, match="MCP package not installed"):
                server_module.create_server(config)

    @pytest.mark.skipif(not server_module.HAS_MCP, reason="MCP not installed")
    def test_create_server_with_mcp(self, config):
        assert server_module.create_server(config) is not None


class TestMain:
    """Tests for the command line entry point."""

    def test_init(self, temp_project, capsys):
        main(["--project-root", str(temp_project), "--init"])

        assert (temp_project / "data" / "journal").is_dir()
        assert "Initialized journal directory" in capsys.readouterr().out

    def test_init_with_config_dir(self, temp_project):
        (temp_project / "daylog_config.json").write_text(json.dumps({"directories": {"journal": "days"}}))

        main(["-p", str(temp_project), "--init"])

        assert (temp_project / "days").is_dir()

    def test_bad_config_exits(self, temp_project, capsys):
        (temp_project / "daylog_config.json").write_text(json.dumps({"locking": {"timeout": -1}}))

        with pytest.raises(SystemExit) as exc_info:
            main(["-p", str(temp_project), "--init"])

        assert exc_info.value.code == 1
        assert "Error loading config" in capsys.readouterr().err

    def test_migrate_check_reports_changes(self, temp_project, capsys):
        journal_dir = temp_project / "data" / "journal"
        journal_dir.mkdir(parents=True)
        (journal_dir / "2026-03-10.json").write_text(json.dumps({"9am": "Coffee"}))

        with pytest.raises(SystemExit) as exc_info:
            main(["-p", str(temp_project), "--migrate"])

        assert exc_info.value.code == 2
        out = capsys.readouterr().out
        assert "[migrate] mode=check files=1 changed=1" in out
        assert "2026-03-10" in out

    def test_migrate_write_then_clean(self, temp_project, capsys):
        journal_dir = temp_project / "data" / "journal"
        journal_dir.mkdir(parents=True)
        (journal_dir / "2026-03-10.json").write_text(json.dumps({"9am": "Coffee"}))

        main(["-p", str(temp_project), "--migrate", "--write"])
        main(["-p", str(temp_project), "--migrate"])

        out = capsys.readouterr().out
        assert "[migrate] mode=write files=1 changed=1" in out
        assert "[migrate] mode=check files=1 changed=0" in out

    def test_migrate_malformed_journal_exits(self, temp_project, capsys):
        journal_dir = temp_project / "data" / "journal"
        journal_dir.mkdir(parents=True)
        (journal_dir / "2026-03-10.json").write_text("{broken")

        with pytest.raises(SystemExit) as exc_info:
            main(["-p", str(temp_project), "--migrate"])

        assert exc_info.value.code == 1
        assert "Error migrating journals" in capsys.readouterr().err

    def test_server_mode_without_mcp_exits(self, temp_project, capsys):
        with patch.object(server_module, "HAS_MCP", False):
            with pytest.raises(SystemExit) as exc_info:
                main(["-p", str(temp_project)])

        assert exc_info.value.code == 1
        assert "MCP package not installed" in capsys.readouterr().err
