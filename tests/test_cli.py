"""Unit tests for the command-line interface (serverkit.cli).

Tests cover:
- Argument parsing and config_from_args mapping
- add commands in JSON mode: payload shape and exit codes
- Human output: success summary and error suggestion
- --dry-run leaves the tree unchanged
- SERVERKIT_METADATA_FILE redirects metadata updates
- backups list / restore / remove
- list: JSON entities, status filters, table output, non-project error
- validate: exit codes in default and strict mode, human output
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from serverkit.cli import build_parser, config_from_args, main
from serverkit.engine.snapshot import SnapshotStore
from serverkit.errors import ExitCode


def _json(capsys) -> dict:
    return json.loads(capsys.readouterr().out)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParsing:
    @pytest.mark.unit
    def test_tool_args(self):
        args = build_parser().parse_args(["add", "tool", "weather", "-d", "Weather", "--no-tests"])
        assert config_from_args(args) == {
            "kind": "entity",
            "entity_type": "tool",
            "name": "weather",
            "description": "Weather",
            "generate_tests": False,
            "auto_register": True,
        }

    @pytest.mark.unit
    def test_resource_args(self):
        args = build_parser().parse_args(["add", "resource", "user", "--dynamic"])
        raw = config_from_args(args)
        assert raw["resource_options"] == {"static": False, "dynamic": True, "uri_pattern": None}

    @pytest.mark.unit
    def test_static_and_dynamic_conflict(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["add", "resource", "user", "--static", "--dynamic"])

    @pytest.mark.unit
    def test_binding_args(self):
        args = build_parser().parse_args(["add", "binding", "d1", "--name", "DB", "--database", "main-db"])
        assert config_from_args(args) == {
            "kind": "binding",
            "binding_type": "d1",
            "binding_name": "DB",
            "skip_helper": False,
            "database_name": "main-db",
        }

    @pytest.mark.unit
    def test_auth_args(self):
        args = build_parser().parse_args(["--json", "add", "auth", "workos", "--platform", "vercel", "--force"])
        assert args.json
        assert config_from_args(args) == {
            "kind": "auth",
            "provider": "workos",
            "platform": "vercel",
            "force": True,
            "type_check": False,
        }

    @pytest.mark.unit
    def test_binding_requires_name(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["add", "binding", "kv"])


# ---------------------------------------------------------------------------
# add
# ---------------------------------------------------------------------------


class TestAdd:
    @pytest.mark.unit
    def test_json_success(self, mcp_project: Path, capsys):
        code = main(["--cwd", str(mcp_project), "--json", "add", "tool", "weather"])
        payload = _json(capsys)

        assert code == ExitCode.SUCCESS
        assert payload["success"] is True
        assert payload["dryRun"] is False
        assert payload["name"] == "weather"
        assert "src/tools/weather.ts" in payload["files_created"]

    @pytest.mark.unit
    def test_json_validation_error(self, mcp_project: Path, capsys):
        code = main(["--cwd", str(mcp_project), "--json", "add", "binding", "kv", "--name", "lower"])
        payload = _json(capsys)

        assert code == ExitCode.VALIDATION_ERROR
        assert payload["success"] is False
        assert payload["errorType"] == "ConfigValidationError"
        assert payload["errorCode"] == 1

    @pytest.mark.unit
    def test_json_missing_anchor(self, legacy_project: Path, capsys, tree_hash):
        before = tree_hash(legacy_project)
        code = main(["--cwd", str(legacy_project), "--json", "add", "binding", "kv", "--name", "CACHE"])
        payload = _json(capsys)

        assert code == ExitCode.VALIDATION_ERROR
        assert "anchor" in payload["error"]
        assert "anchor" in payload["suggestion"]
        assert tree_hash(legacy_project) == before

    @pytest.mark.unit
    def test_human_output(self, mcp_project: Path, capsys):
        code = main(["--cwd", str(mcp_project), "add", "binding", "kv", "--name", "MY_CACHE"])
        out = capsys.readouterr().out

        assert code == 0
        assert "Done." in out
        assert "wrangler.jsonc" in out
        assert "Next steps" in out

    @pytest.mark.unit
    def test_human_error(self, mcp_project: Path, capsys):
        code = main(["--cwd", str(mcp_project), "add", "tool", "echo"])
        out = capsys.readouterr().out

        assert code == ExitCode.VALIDATION_ERROR
        assert "Error:" in out
        assert "Suggestion:" in out

    @pytest.mark.unit
    def test_dry_run(self, mcp_project: Path, capsys, tree_hash):
        before = tree_hash(mcp_project)
        code = main(["--cwd", str(mcp_project), "--json", "--dry-run", "add", "prompt", "summarize"])
        payload = _json(capsys)

        assert code == 0
        assert payload["dryRun"] is True
        assert payload["files_created"] == []
        assert tree_hash(mcp_project) == before

    @pytest.mark.unit
    def test_metadata_file_setting(self, mcp_project: Path, capsys):
        (mcp_project / ".mcp-template.json").rename(mcp_project / "project.meta.json")
        with patch.dict(os.environ, {"SERVERKIT_METADATA_FILE": "project.meta.json"}):
            code = main(["--cwd", str(mcp_project), "--json", "add", "tool", "weather"])
        payload = _json(capsys)

        assert code == 0
        assert "project.meta.json" in payload["files_modified"]
        assert not (mcp_project / ".mcp-template.json").exists()
        data = json.loads((mcp_project / "project.meta.json").read_text(encoding="utf-8"))
        assert [tool["name"] for tool in data["tools"]] == ["echo", "weather"]

    @pytest.mark.unit
    def test_json_mode_prints_only_json(self, mcp_project: Path, capsys):
        main(["--cwd", str(mcp_project), "--json", "-v", "add", "auth", "stytch"])
        out = capsys.readouterr().out
        assert out.lstrip().startswith("{")
        assert json.loads(out)["provider"] == "stytch"


# ---------------------------------------------------------------------------
# backups
# ---------------------------------------------------------------------------


class TestBackups:
    @pytest.mark.unit
    def test_list(self, mcp_project: Path, capsys):
        handle = SnapshotStore().create(mcp_project)
        code = main(["--cwd", str(mcp_project), "--json", "backups", "list"])
        payload = _json(capsys)

        assert code == 0
        assert [b["name"] for b in payload["backups"]] == [handle.name]

    @pytest.mark.unit
    def test_list_empty_human(self, mcp_project: Path, capsys):
        assert main(["--cwd", str(mcp_project), "backups", "list"]) == 0
        assert "No backups found" in capsys.readouterr().out

    @pytest.mark.unit
    def test_restore(self, mcp_project: Path, capsys, tree_hash):
        before = tree_hash(mcp_project)
        handle = SnapshotStore().create(mcp_project)
        (mcp_project / "src" / "index.ts").write_text("broken", encoding="utf-8")

        code = main(["--cwd", str(mcp_project), "--json", "backups", "restore", handle.name])
        payload = _json(capsys)

        assert code == 0
        assert payload == {"success": True, "restored": handle.name, "kept": False}
        assert tree_hash(mcp_project) == before

    @pytest.mark.unit
    def test_restore_keep(self, mcp_project: Path, capsys):
        handle = SnapshotStore().create(mcp_project)
        main(["--cwd", str(mcp_project), "--json", "backups", "restore", handle.name, "--keep"])
        assert _json(capsys)["kept"] is True
        assert handle.path.is_dir()

    @pytest.mark.unit
    def test_remove(self, mcp_project: Path, capsys):
        handle = SnapshotStore().create(mcp_project)
        assert main(["--cwd", str(mcp_project), "--json", "backups", "remove", handle.name]) == 0
        assert not handle.path.exists()

    @pytest.mark.unit
    def test_unknown_backup(self, mcp_project: Path, capsys):
        code = main(["--cwd", str(mcp_project), "--json", "backups", "restore", ".backup-scaffold-1"])
        payload = _json(capsys)
        assert code == ExitCode.FILESYSTEM_ERROR
        assert payload["errorType"] == "BackupMissingError"


# ---------------------------------------------------------------------------
# list
# ---------------------------------------------------------------------------


class TestList:
    @pytest.mark.unit
    def test_json(self, mcp_project: Path, capsys):
        code = main(["--cwd", str(mcp_project), "--json", "list", "tools"])
        payload = _json(capsys)

        assert code == 0
        assert payload["type"] == "tool"
        assert payload["entities"] == [
            {
                "type": "tool",
                "name": "echo",
                "file": "src/tools/echo.ts",
                "registered": True,
                "hasUnitTest": False,
                "hasIntegrationTest": False,
                "description": "Echo input",
            }
        ]

    @pytest.mark.unit
    def test_filter(self, mcp_project: Path, capsys):
        main(["--cwd", str(mcp_project), "--json", "add", "tool", "weather", "--no-register"])
        capsys.readouterr()

        main(["--cwd", str(mcp_project), "--json", "list", "tools", "--filter", "unregistered"])
        assert [e["name"] for e in _json(capsys)["entities"]] == ["weather"]
        main(["--cwd", str(mcp_project), "--json", "list", "tools", "-f", "tested"])
        assert [e["name"] for e in _json(capsys)["entities"]] == ["weather"]

    @pytest.mark.unit
    def test_human_table(self, mcp_project: Path, capsys):
        assert main(["--cwd", str(mcp_project), "list", "tools"]) == 0
        out = capsys.readouterr().out
        assert "echo" in out
        assert "Echo input" in out
        assert "1/1 registered" in out

    @pytest.mark.unit
    def test_empty_human(self, mcp_project: Path, capsys):
        assert main(["--cwd", str(mcp_project), "list", "prompts"]) == 0
        assert "No prompts found." in capsys.readouterr().out

    @pytest.mark.unit
    def test_not_a_project(self, tmp_path: Path, capsys):
        code = main(["--cwd", str(tmp_path), "--json", "list", "resources"])
        assert code == ExitCode.VALIDATION_ERROR
        assert _json(capsys)["errorType"] == "ConfigValidationError"

    @pytest.mark.unit
    def test_unknown_plural(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["list", "bindings"])


# ---------------------------------------------------------------------------
# validate
# ---------------------------------------------------------------------------


class TestValidate:
    @pytest.mark.unit
    def test_json_passes(self, mcp_project: Path, capsys):
        code = main(["--cwd", str(mcp_project), "--json", "validate"])
        payload = _json(capsys)

        assert code == 0
        assert payload["success"] is True
        assert payload["passed"] is True
        assert payload["strict"] is False
        assert "registered:tool:echo" in payload["passed_checks"]

    @pytest.mark.unit
    def test_strict_fails(self, mcp_project: Path, capsys):
        code = main(["--cwd", str(mcp_project), "--json", "validate", "--strict"])
        payload = _json(capsys)

        assert code == ExitCode.VALIDATION_ERROR
        assert payload["success"] is False
        assert "unit-test:tool:echo" in payload["failed_checks"]

    @pytest.mark.unit
    def test_broken_project(self, mcp_project: Path, capsys):
        (mcp_project / "src" / "tools" / "echo.ts").unlink()
        code = main(["--cwd", str(mcp_project), "validate"])
        out = capsys.readouterr().out

        assert code == ExitCode.VALIDATION_ERROR
        assert "module-exists:tool:echo" in out
        assert "Validation failed" in out

    @pytest.mark.unit
    def test_human_success(self, mcp_project: Path, capsys):
        assert main(["--cwd", str(mcp_project), "validate"]) == 0
        out = capsys.readouterr().out
        assert "Project is valid" in out
        assert "Advisory check failed" in out
