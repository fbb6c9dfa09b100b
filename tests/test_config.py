"""Unit tests for Settings (serverkit.config).

Tests cover:
- Settings defaults and field validation
- save/load JSON round trip
- from_env parsing of SERVERKIT_* variables
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from serverkit.config import DEFAULT_BACKUP_FILES, Settings


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class TestSettingsDefaults:
    @pytest.mark.unit
    def test_defaults(self):
        settings = Settings()
        assert settings.source_dirs == ["src", "app", "test"]
        assert settings.backup_prefix == ".backup"
        assert settings.backup_purpose == "scaffold"
        assert settings.metadata_file == ".mcp-template.json"
        assert settings.command_timeout == 120

    @pytest.mark.unit
    def test_backup_files_cover_platform_configs(self):
        files = Settings().backup_files
        for name in ("package.json", "wrangler.jsonc", "wrangler.toml", "vercel.json", ".env.example"):
            assert name in files

    @pytest.mark.unit
    def test_backup_files_not_shared(self):
        settings = Settings()
        settings.backup_files.append("extra.txt")
        assert "extra.txt" not in DEFAULT_BACKUP_FILES
        assert "extra.txt" not in Settings().backup_files

    @pytest.mark.unit
    @pytest.mark.parametrize("purpose", ["", "Auth", "my-purpose", "1st"])
    def test_invalid_purpose(self, purpose: str):
        with pytest.raises(ValidationError):
            Settings(backup_purpose=purpose)

    @pytest.mark.unit
    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(command_timeout=0)


# ---------------------------------------------------------------------------
# save / load
# ---------------------------------------------------------------------------


class TestSettingsPersistence:
    @pytest.mark.unit
    def test_save_creates_parents(self, tmp_path: Path):
        target = Settings(backup_purpose="auth").save(tmp_path / "nested" / "settings.json")
        assert target.is_file()
        assert json.loads(target.read_text(encoding="utf-8"))["backup_purpose"] == "auth"

    @pytest.mark.unit
    def test_load(self, tmp_path: Path):
        original = Settings(source_dirs=["lib"], command_timeout=30)
        loaded = Settings.load(original.save(tmp_path / "settings.json"))
        assert loaded == original


# ---------------------------------------------------------------------------
# Settings.from_env
# ---------------------------------------------------------------------------


class TestSettingsFromEnv:
    @pytest.mark.unit
    def test_defaults_when_no_env(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env()
        assert settings == Settings()

    @pytest.mark.unit
    def test_lists_are_comma_separated(self):
        env = {"SERVERKIT_SOURCE_DIRS": "src, lib ,", "SERVERKIT_BACKUP_FILES": "package.json,deno.json"}
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()
        assert settings.source_dirs == ["src", "lib"]
        assert settings.backup_files == ["package.json", "deno.json"]

    @pytest.mark.unit
    def test_scalars(self):
        env = {
            "SERVERKIT_BACKUP_PREFIX": ".snap",
            "SERVERKIT_BACKUP_PURPOSE": "auth",
            "SERVERKIT_METADATA_FILE": "meta.json",
            "SERVERKIT_COMMAND_TIMEOUT": "45",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()
        assert settings.backup_prefix == ".snap"
        assert settings.backup_purpose == "auth"
        assert settings.metadata_file == "meta.json"
        assert settings.command_timeout == 45

    @pytest.mark.unit
    def test_invalid_timeout(self):
        with patch.dict(os.environ, {"SERVERKIT_COMMAND_TIMEOUT": "soon"}, clear=True):
            with pytest.raises(ValueError):
                Settings.from_env()
