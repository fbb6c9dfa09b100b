"""Template metadata (``.mcp-template.json``) read and update.

The metadata file is optional: projects that do not have one are left
alone, and an unreadable file only produces a warning.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from serverkit.utils import load_json, print_warning, save_json

METADATA_FILE = ".mcp-template.json"


class EntityMetadata(BaseModel):
    """One generated entity as recorded in the metadata file."""

    name: str
    file: str
    registered: bool = True
    has_unit_test: bool = Field(default=False, serialization_alias="hasUnitTest")
    has_integration_test: bool = Field(default=False, serialization_alias="hasIntegrationTest")


def read_metadata(project_root: str | Path, filename: str = METADATA_FILE) -> dict[str, Any] | None:
    """Return the parsed metadata, or ``None`` if absent or unreadable."""
    path = Path(project_root) / filename
    if not path.is_file():
        return None
    try:
        return load_json(path)
    except (OSError, json.JSONDecodeError) as exc:
        print_warning(f"Could not read {filename}: {exc}")
        return None


def append_entry(
    project_root: str | Path,
    section: str,
    entry: dict[str, Any],
    filename: str = METADATA_FILE,
) -> bool:
    """Append *entry* to the list under *section*.

    Entries with the same ``name`` as an existing one replace it. Returns
    ``True`` when the file was written.
    """
    path = Path(project_root) / filename
    metadata = read_metadata(project_root, filename)
    if metadata is None:
        return False

    items = metadata.get(section)
    if not isinstance(items, list):
        items = []
    items = [item for item in items if not (isinstance(item, dict) and item.get("name") == entry.get("name"))]
    items.append(entry)
    metadata[section] = items

    save_json(metadata, path, indent="\t")
    return True


def add_entity(
    project_root: str | Path,
    entity_plural: str,
    entity: EntityMetadata,
    filename: str = METADATA_FILE,
) -> bool:
    """Record a generated tool, prompt or resource."""
    return append_entry(project_root, entity_plural, entity.model_dump(by_alias=True), filename)
