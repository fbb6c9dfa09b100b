"""serverkit configuration.

Centralised, typed settings for the mutation engine and the CLI. All settings
use Pydantic v2 models so they can be validated at construction time and
serialised to/from JSON or environment variables without boiler-plate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

# Top-level files captured by every snapshot when they exist.
DEFAULT_BACKUP_FILES: list[str] = [
    "package.json",
    "wrangler.toml",
    "wrangler.jsonc",
    "wrangler.json",
    "vercel.json",
    "next.config.js",
    "next.config.mjs",
    "next.config.ts",
    "README.md",
    ".gitignore",
    ".env",
    ".env.local",
    ".env.example",
    ".mcp-template.json",
]


class Settings(BaseModel):
    """Global serverkit settings.

    Instances are typically created once by the CLI entry point and then
    passed to the orchestrator and snapshot store.
    """

    source_dirs: list[str] = Field(
        default=["src", "app", "test"],
        description="Generated-source subtrees captured by snapshots (missing ones skipped)",
    )
    backup_files: list[str] = Field(default_factory=lambda: list(DEFAULT_BACKUP_FILES))
    backup_prefix: str = Field(default=".backup")
    backup_purpose: str = Field(default="scaffold", pattern=r"^[a-z][a-z0-9]*$")
    metadata_file: str = Field(default=".mcp-template.json")
    command_timeout: int = Field(
        default=120, ge=1, description="Timeout in seconds for external check commands"
    )

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the settings to a JSON file and return the path written."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "Settings":
        """Load previously-saved settings from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build ``Settings`` from environment variables.

        Recognised variables (all optional):
            SERVERKIT_SOURCE_DIRS, SERVERKIT_BACKUP_FILES (comma-separated),
            SERVERKIT_BACKUP_PREFIX, SERVERKIT_BACKUP_PURPOSE,
            SERVERKIT_METADATA_FILE, SERVERKIT_COMMAND_TIMEOUT.
        """
        kwargs: dict[str, Any] = {}
        if os.environ.get("SERVERKIT_SOURCE_DIRS"):
            kwargs["source_dirs"] = _split_csv(os.environ["SERVERKIT_SOURCE_DIRS"])
        if os.environ.get("SERVERKIT_BACKUP_FILES"):
            kwargs["backup_files"] = _split_csv(os.environ["SERVERKIT_BACKUP_FILES"])
        if os.environ.get("SERVERKIT_BACKUP_PREFIX"):
            kwargs["backup_prefix"] = os.environ["SERVERKIT_BACKUP_PREFIX"]
        if os.environ.get("SERVERKIT_BACKUP_PURPOSE"):
            kwargs["backup_purpose"] = os.environ["SERVERKIT_BACKUP_PURPOSE"]
        if os.environ.get("SERVERKIT_METADATA_FILE"):
            kwargs["metadata_file"] = os.environ["SERVERKIT_METADATA_FILE"]
        if os.environ.get("SERVERKIT_COMMAND_TIMEOUT"):
            kwargs["command_timeout"] = int(os.environ["SERVERKIT_COMMAND_TIMEOUT"])
        return cls(**kwargs)


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]
