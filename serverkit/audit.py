"""Project validation for MCP server projects.

Turns what is on disk into an ordered list of :class:`ValidationCheck`
objects and runs them through the gate with rollback disabled.

Critical checks (the server would not work):
    entry point and package.json present, every entity module registered,
    every registration backed by a module, integration specs well formed,
    Worker configuration parseable with its required fields.

Advisory checks (the project drifted from what scaffolding produces):
    missing unit tests or integration specs, metadata out of date, Durable
    Object migrations absent.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import tomlkit
import yaml

from serverkit import jsonc, metadata
from serverkit.engine.gate import (
    GateOptions,
    GateResult,
    ValidationCheck,
    ValidationGate,
    file_exists,
    json_parses,
    jsonc_parses,
    toml_parses,
)
from serverkit.inventory import ENTITY_TYPES, EntityInfo, discover_entities, registered_names
from serverkit.strategies.auth import ENTRY_POINTS, detect_platform
from serverkit.strategies.configs import integration_spec_path, unit_test_path
from serverkit.utils import print_debug, read_text, to_pascal

WORKER_CONFIGS = ("wrangler.jsonc", "wrangler.json", "wrangler.toml")
REQUIRED_WORKER_FIELDS = ("name", "main", "compatibility_date")
AGENT_BINDING = "MCP_OBJECT"

# Key naming the target entity in each integration spec type.
_SPEC_TARGET_KEYS = {"tool": "tool", "prompt": "prompt", "resource": "uri"}


def validate_project(
    project_root: str | Path,
    *,
    strict: bool = False,
    metadata_file: str = metadata.METADATA_FILE,
    gate: ValidationGate | None = None,
) -> GateResult:
    """Validate *project_root*; never modifies it.

    With *strict*, advisory failures also fail the result.
    """
    root = Path(project_root)
    checks = project_checks(root, metadata_file=metadata_file)
    print_debug(f"validate: {len(checks)} checks")
    result = (gate or ValidationGate()).quick_validate(checks, GateOptions(project_root=root))
    if strict and result.passed and result.failed_checks:
        result = result.model_copy(update={"passed": False})
    return result


def project_checks(project_root: str | Path, *, metadata_file: str = metadata.METADATA_FILE) -> list[ValidationCheck]:
    root = Path(project_root)
    platform = detect_platform(root) or "cloudflare"
    checks = [
        file_exists("package.json", name="package-json"),
        file_exists(ENTRY_POINTS[platform], name="entry-point"),
    ]

    inventory: dict[str, list[EntityInfo]] = {}
    if platform == "cloudflare":
        checks.extend(_worker_config_checks(root))
        if (root / "src").is_dir():
            for entity_type in ENTITY_TYPES:
                inventory[entity_type] = discover_entities(root, entity_type)
                checks.extend(_entity_checks(root, entity_type, inventory[entity_type]))

    checks.extend(_metadata_checks(root, metadata_file, inventory))
    return checks


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


def _entity_checks(root: Path, entity_type: str, entities: list[EntityInfo]) -> list[ValidationCheck]:
    plural = f"{entity_type}s"
    suffix = entity_type.capitalize()
    checks: list[ValidationCheck] = []

    for entity in entities:
        function_name = f"register{to_pascal(entity.name)}{suffix}"
        checks.append(
            ValidationCheck(
                name=f"registered:{entity_type}:{entity.name}",
                description=f"{entity_type} '{entity.name}' is registered in src/index.ts",
                predicate=lambda r, t=entity_type, n=entity.name: n in registered_names(r, t),
                error_message=(
                    f"{entity.file} is not registered; add "
                    f'import {{ {function_name} }} from "./{plural}/{entity.name}.js" '
                    f"and call {function_name}(this.server) in init()"
                ),
            )
        )
        unit = unit_test_path(entity_type, entity.name)
        spec = integration_spec_path(entity_type, entity.name)
        checks.append(file_exists(unit, critical=False, name=f"unit-test:{entity_type}:{entity.name}"))
        checks.append(file_exists(spec, critical=False, name=f"integration-spec:{entity_type}:{entity.name}"))
        if (root / spec).is_file():
            checks.extend(_spec_checks(entity_type, entity.name, spec))

    known = {entity.name for entity in entities}
    for name in registered_names(root, entity_type):
        if name in known:
            continue
        module = f"src/{plural}/{name}.ts"
        checks.append(
            ValidationCheck(
                name=f"module-exists:{entity_type}:{name}",
                description=f"Registered {entity_type} '{name}' has a module",
                predicate=lambda r, p=plural, n=name: (r / "src" / p / f"{n}.ts").is_file()
                or (r / "src" / p / f"_{n}.ts").is_file(),
                error_message=f"{entity_type} '{name}' is registered in src/index.ts but {module} does not exist",
            )
        )
    return checks


def _spec_checks(entity_type: str, name: str, spec: str) -> list[ValidationCheck]:
    target_key = _SPEC_TARGET_KEYS[entity_type]

    def well_formed(root: Path) -> bool:
        data = yaml.safe_load(read_text(root / spec))
        if not isinstance(data, dict):
            raise ValueError("not a mapping")
        missing = [key for key in ("name", target_key) if not data.get(key)]
        if not isinstance(data.get("assertions"), list):
            missing.append("assertions")
        if missing:
            raise ValueError(f"missing {', '.join(missing)}")
        return True

    checks = [
        ValidationCheck(
            name=f"spec-valid:{entity_type}:{name}",
            description=f"{spec} is a well-formed integration spec",
            predicate=well_formed,
            error_message=f"{spec} needs 'name', '{target_key}' and an 'assertions' list",
        )
    ]
    if entity_type != "resource":
        checks.append(
            ValidationCheck(
                name=f"spec-target:{entity_type}:{name}",
                description=f"{spec} targets {entity_type} '{name}'",
                predicate=lambda r: (yaml.safe_load(read_text(r / spec)) or {}).get(target_key) == name,
                critical=False,
                error_message=f"{spec} '{target_key}' does not match the file name '{name}'",
            )
        )
    return checks


# ---------------------------------------------------------------------------
# Worker configuration
# ---------------------------------------------------------------------------


def _load_worker_config(path: Path) -> dict[str, Any]:
    if path.suffix == ".toml":
        return tomlkit.parse(read_text(path)).unwrap()
    data = jsonc.load(path)
    return data if isinstance(data, dict) else {}


def _worker_config_checks(root: Path) -> list[ValidationCheck]:
    rel = next((name for name in WORKER_CONFIGS if (root / name).is_file()), None)
    if rel is None:
        return [
            ValidationCheck(
                name="worker-config",
                description="A Worker configuration file exists",
                predicate=lambda r: any((r / name).is_file() for name in WORKER_CONFIGS),
                error_message=f"None of {', '.join(WORKER_CONFIGS)} found",
            )
        ]

    def config_check(
        name: str,
        description: str,
        test: Callable[[dict[str, Any], Path], bool],
        error_message: str,
        *,
        critical: bool = True,
    ) -> ValidationCheck:
        return ValidationCheck(
            name=name,
            description=description,
            predicate=lambda r: test(_load_worker_config(r / rel), r),
            critical=critical,
            error_message=error_message,
        )

    parses_check = toml_parses if rel.endswith(".toml") else jsonc_parses
    return [
        parses_check(rel, name="worker-config"),
        config_check(
            "worker-fields",
            f"{rel} declares {', '.join(REQUIRED_WORKER_FIELDS)}",
            lambda config, r: all(config.get(field) for field in REQUIRED_WORKER_FIELDS),
            f"{rel} is missing one of the required fields {', '.join(REQUIRED_WORKER_FIELDS)}",
        ),
        config_check(
            "agent-binding",
            f"{rel} binds {AGENT_BINDING} to the McpAgent class in src/index.ts",
            _agent_binding_ok,
            f'Add {{ "name": "{AGENT_BINDING}", "class_name": "<your McpAgent class>" }} '
            f"to durable_objects.bindings in {rel}",
        ),
        config_check(
            "no-legacy-mcp-field",
            f"{rel} has no legacy 'mcp' field",
            lambda config, r: "mcp" not in config,
            f"Remove the 'mcp' field from {rel}; wrangler does not recognise it",
        ),
        config_check(
            "agent-migration",
            f"{rel} migrations create the agent's SQLite class",
            _agent_migration_ok,
            f'Add a migration such as {{ "tag": "v1", "new_sqlite_classes": ["<your McpAgent class>"] }} to {rel}',
            critical=False,
        ),
    ]


def _agent_class(config: dict[str, Any]) -> str | None:
    bindings = (config.get("durable_objects") or {}).get("bindings")
    if not isinstance(bindings, list):
        return None
    for binding in bindings:
        if isinstance(binding, dict) and binding.get("name") == AGENT_BINDING:
            return binding.get("class_name") or None
    return None


def _agent_binding_ok(config: dict[str, Any], root: Path) -> bool:
    class_name = _agent_class(config)
    if class_name is None:
        return False
    index = read_text(root / ENTRY_POINTS["cloudflare"])
    return f"export class {class_name} extends McpAgent" in index


def _agent_migration_ok(config: dict[str, Any], root: Path) -> bool:
    class_name = _agent_class(config)
    migrations = config.get("migrations")
    if not class_name or not isinstance(migrations, list):
        return False
    return any(
        isinstance(m, dict) and class_name in (m.get("new_sqlite_classes") or [])
        for m in migrations
    )


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


def _recorded(root: Path, metadata_file: str, plural: str) -> dict[str, dict[str, Any]]:
    data = metadata.read_metadata(root, metadata_file) or {}
    entries = data.get(plural)
    if not isinstance(entries, list):
        return {}
    return {e["name"]: e for e in entries if isinstance(e, dict) and isinstance(e.get("name"), str)}


def _metadata_checks(
    root: Path,
    metadata_file: str,
    inventory: dict[str, list[EntityInfo]],
) -> list[ValidationCheck]:
    if not (root / metadata_file).is_file():
        return [file_exists(metadata_file, critical=False, name="metadata")]

    checks = [json_parses(metadata_file, name="metadata")]
    for entity_type, entities in inventory.items():
        plural = f"{entity_type}s"
        recorded = _recorded(root, metadata_file, plural)
        on_disk = {entity.name: entity for entity in entities}

        for name in recorded:
            if name not in on_disk:
                checks.append(
                    ValidationCheck(
                        name=f"metadata-stale:{entity_type}:{name}",
                        description=f"{metadata_file} entry for {entity_type} '{name}' has a module",
                        predicate=lambda r, p=plural, n=name: (r / "src" / p / f"{n}.ts").is_file(),
                        critical=False,
                        error_message=(
                            f"{metadata_file} lists {entity_type} '{name}' "
                            f"but src/{plural}/{name}.ts does not exist"
                        ),
                    )
                )

        for name, entity in on_disk.items():
            if name not in recorded:
                checks.append(
                    ValidationCheck(
                        name=f"metadata-untracked:{entity_type}:{name}",
                        description=f"{entity_type} '{name}' is recorded in {metadata_file}",
                        predicate=lambda r, p=plural, n=name: n in _recorded(r, metadata_file, p),
                        critical=False,
                        error_message=f"{entity.file} is not recorded in {metadata_file}",
                    )
                )
                continue
            checks.append(
                ValidationCheck(
                    name=f"metadata-status:{entity_type}:{name}",
                    description=f"{metadata_file} status for {entity_type} '{name}' matches the project",
                    predicate=lambda r, p=plural, e=entity: _status_matches(
                        _recorded(r, metadata_file, p).get(e.name, {}), e
                    ),
                    critical=False,
                    error_message=(
                        f"{metadata_file} registration or unit-test status "
                        f"for {entity_type} '{name}' is out of date"
                    ),
                )
            )
    return checks


def _status_matches(entry: dict[str, Any], entity: EntityInfo) -> bool:
    return (
        entry.get("registered") == entity.registered
        and entry.get("hasUnitTest") == entity.has_unit_test
    )
