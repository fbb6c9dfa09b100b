"""Entity inventory for an MCP server project.

Scans ``src/<type>s/`` for tool, prompt and resource modules and
cross-references each one against the ``register*`` calls in the entry
point and the generated unit tests and integration specs.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import get_args

from pydantic import BaseModel, Field

from serverkit.errors import ConfigValidationError
from serverkit.strategies.configs import EntityType, integration_spec_path, unit_test_path
from serverkit.strategies.entity import ENTRY_POINT
from serverkit.utils import read_text, to_kebab

ENTITY_TYPES: tuple[str, ...] = get_args(EntityType)
STATUS_FILTERS: tuple[str, ...] = ("all", "registered", "unregistered", "tested", "untested")

_JS_STRING = r'"((?:[^"\\\n]|\\.)*)"'
_DESCRIPTION_RES = {
    "tool": re.compile(rf"""server\.tool\(\s*["'][^"']+["']\s*,\s*{_JS_STRING}"""),
    "prompt": re.compile(rf"""server\.prompt\(\s*["'][^"']+["']\s*,\s*{_JS_STRING}"""),
    "resource": re.compile(rf"description:\s*{_JS_STRING}"),
}
_HEADER_RE = re.compile(r"/\*\*[ \t]*\n[ \t]*\*[ \t]*([^\n*][^\n]*)")


class EntityInfo(BaseModel):
    """One entity module and how far it is wired into the project."""

    entity_type: str = Field(..., serialization_alias="type")
    name: str
    file: str = Field(..., description="Module path relative to the project root")
    registered: bool
    has_unit_test: bool = Field(default=False, serialization_alias="hasUnitTest")
    has_integration_test: bool = Field(default=False, serialization_alias="hasIntegrationTest")
    description: str | None = None

    @property
    def tested(self) -> bool:
        return self.has_unit_test or self.has_integration_test


def registered_names(project_root: str | Path, entity_type: str) -> list[str]:
    """Kebab-case names registered in the entry point, in call order."""
    path = Path(project_root) / ENTRY_POINT
    if not path.is_file():
        return []
    pattern = re.compile(rf"register(\w+){entity_type.capitalize()}\(this\.server\)")
    return [to_kebab(match.group(1)) for match in pattern.finditer(read_text(path))]


def discover_entities(
    project_root: str | Path,
    entity_type: str,
    *,
    include_examples: bool = False,
) -> list[EntityInfo]:
    """List the modules under ``src/<entity_type>s/``, sorted by name.

    A missing type directory means no entities of that type. ``_example*``
    modules are skipped unless *include_examples* is set.

    Raises:
        ConfigValidationError: *project_root* has no ``src/`` directory.
    """
    root = Path(project_root)
    if not (root / "src").is_dir():
        raise ConfigValidationError(
            f"{root} has no src/ directory",
            suggestion="Run this command from an MCP server project root",
        )

    source_dir = root / "src" / f"{entity_type}s"
    if not source_dir.is_dir():
        return []

    registered = set(registered_names(root, entity_type))
    entities: list[EntityInfo] = []
    for path in sorted(source_dir.glob("*.ts")):
        if not path.is_file() or path.name.endswith((".test.ts", ".d.ts")):
            continue
        name = path.stem
        if name.startswith("_example") and not include_examples:
            continue
        entities.append(
            EntityInfo(
                entity_type=entity_type,
                name=name,
                file=path.relative_to(root).as_posix(),
                registered=name in registered,
                has_unit_test=(root / unit_test_path(entity_type, name)).is_file(),
                has_integration_test=(root / integration_spec_path(entity_type, name)).is_file(),
                description=extract_description(read_text(path), entity_type),
            )
        )
    return entities


def filter_entities(entities: list[EntityInfo], status: str = "all") -> list[EntityInfo]:
    """Keep the entities matching *status* (one of :data:`STATUS_FILTERS`)."""
    status = status.lower()
    if status == "registered":
        return [e for e in entities if e.registered]
    if status == "unregistered":
        return [e for e in entities if not e.registered]
    if status == "tested":
        return [e for e in entities if e.tested]
    if status == "untested":
        return [e for e in entities if not e.tested]
    if status == "all":
        return list(entities)
    raise ValueError(f"Unknown status filter '{status}' (expected one of {', '.join(STATUS_FILTERS)})")


def extract_description(source: str, entity_type: str) -> str | None:
    """Description passed to ``server.<type>()``, else the first header comment line."""
    match = _DESCRIPTION_RES[entity_type].search(source)
    if match:
        try:
            return json.loads(f'"{match.group(1)}"')
        except json.JSONDecodeError:
            return match.group(1)
    header = _HEADER_RE.search(source)
    if header:
        return header.group(1).strip()
    return None
