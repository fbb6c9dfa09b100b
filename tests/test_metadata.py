"""Unit tests for template metadata handling (serverkit.metadata).

Tests cover:
- read_metadata for absent, valid and corrupt files
- append_entry creates sections and replaces same-name entries
- add_entity serialises with camelCase aliases and tab indentation
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from serverkit.metadata import METADATA_FILE, EntityMetadata, add_entity, append_entry, read_metadata


class TestReadMetadata:
    @pytest.mark.unit
    def test_absent(self, tmp_path: Path):
        assert read_metadata(tmp_path) is None

    @pytest.mark.unit
    def test_valid(self, mcp_project: Path):
        data = read_metadata(mcp_project)
        assert data is not None
        assert data["id"] == "cloudflare-remote"

    @pytest.mark.unit
    def test_corrupt_warns(self, tmp_path: Path, capsys):
        (tmp_path / METADATA_FILE).write_text("{ nope", encoding="utf-8")
        assert read_metadata(tmp_path) is None
        assert "Could not read" in capsys.readouterr().out


class TestAppendEntry:
    @pytest.mark.unit
    def test_no_file_is_noop(self, tmp_path: Path):
        assert append_entry(tmp_path, "bindings", {"name": "X"}) is False
        assert not (tmp_path / METADATA_FILE).exists()

    @pytest.mark.unit
    def test_creates_section(self, mcp_project: Path):
        assert append_entry(mcp_project, "bindings", {"name": "CACHE", "type": "kv"})
        data = json.loads((mcp_project / METADATA_FILE).read_text(encoding="utf-8"))
        assert data["bindings"] == [{"name": "CACHE", "type": "kv"}]
        assert data["tools"][0]["name"] == "echo"

    @pytest.mark.unit
    def test_replaces_same_name(self, mcp_project: Path):
        append_entry(mcp_project, "auth", {"name": "stytch", "platform": "cloudflare"})
        append_entry(mcp_project, "auth", {"name": "stytch", "platform": "vercel"})
        data = read_metadata(mcp_project)
        assert data["auth"] == [{"name": "stytch", "platform": "vercel"}]

    @pytest.mark.unit
    def test_tab_indent_and_trailing_newline(self, mcp_project: Path):
        append_entry(mcp_project, "bindings", {"name": "CACHE"})
        text = (mcp_project / METADATA_FILE).read_text(encoding="utf-8")
        assert text.startswith('{\n\t"id"')
        assert text.endswith("}\n")


class TestAddEntity:
    @pytest.mark.unit
    def test_aliases(self, mcp_project: Path):
        entity = EntityMetadata(name="weather", file="src/tools/weather.ts", has_unit_test=True)
        assert add_entity(mcp_project, "tools", entity)

        entry = read_metadata(mcp_project)["tools"][-1]
        assert entry == {
            "name": "weather",
            "file": "src/tools/weather.ts",
            "registered": True,
            "hasUnitTest": True,
            "hasIntegrationTest": False,
        }
