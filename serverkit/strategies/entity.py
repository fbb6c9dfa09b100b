"""Add a tool, prompt or resource to an MCP server project.

Generates ``src/<type>s/<name>.ts`` (plus a vitest unit test and a YAML
integration spec), registers it in ``src/index.ts`` through the entity
anchors and records it in ``.mcp-template.json``.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml

from serverkit import metadata
from serverkit.engine.anchors import Anchor, AnchorResolver, AnchorTable, InsertOutcome
from serverkit.engine.gate import (
    GateOptions,
    ValidationGate,
    contains_all,
    file_exists,
    max_occurrences,
)
from serverkit.engine.orchestrator import ScaffoldContext, ScaffoldResult, ScaffoldStrategy
from serverkit.errors import ConfigValidationError, ExecutionError
from serverkit.strategies.configs import EntityConfig
from serverkit.templates import TemplateRenderer, default_renderer
from serverkit.utils import print_debug, read_text, to_pascal, write_text

ENTRY_POINT = "src/index.ts"

_ENTITY_ORDER = ("tool", "prompt", "resource")


def _import_marker(plural: str) -> str:
    return rf"""^import\s+\{{[^}}]+\}}\s+from\s+["']\./{plural}/[^"']+["'];?"""


def _build_entity_anchors() -> AnchorTable:
    anchors = [
        Anchor(
            category="server:init",
            path=ENTRY_POINT,
            marker=r"async\s+init\s*\(\s*\)\s*(?::\s*[^{]+)?\{",
            nested=True,
            description="Body of the agent's init() method",
        )
    ]
    for index, entity_type in enumerate(_ENTITY_ORDER):
        plural = f"{entity_type}s"
        suffix = entity_type.capitalize()
        earlier = tuple(reversed(_ENTITY_ORDER[:index]))
        anchors.append(
            Anchor(
                category=f"{entity_type}:import",
                path=ENTRY_POINT,
                marker=_import_marker(plural),
                fallbacks=tuple(f"{t}:import" for t in earlier),
                header=f"// {suffix}s",
                import_fallback=True,
                description=f"Imports of ./{plural}/ modules",
            )
        )
        anchors.append(
            Anchor(
                category=f"{entity_type}:register",
                path=ENTRY_POINT,
                marker=rf"^[ \t]*register\w+{suffix}\(this\.server\);",
                fallbacks=tuple(f"{t}:register" for t in earlier) + ("server:init",),
                header=f"// Register all {plural}",
                description=f"register*{suffix}(this.server) calls inside init()",
            )
        )
    return AnchorTable(anchors)


ENTITY_ANCHORS = _build_entity_anchors()


class EntityResult(ScaffoldResult):
    entity_type: str = ""
    name: str = ""
    registered: bool = False
    uri_pattern: str | None = None


class EntityScaffoldStrategy(ScaffoldStrategy[EntityConfig, EntityResult]):
    """Generates and registers one tool, prompt or resource."""

    def __init__(
        self,
        renderer: TemplateRenderer | None = None,
        resolver: AnchorResolver | None = None,
        gate: ValidationGate | None = None,
        metadata_file: str = metadata.METADATA_FILE,
    ) -> None:
        self.renderer = renderer or default_renderer()
        self.resolver = resolver or AnchorResolver(ENTITY_ANCHORS)
        self.gate = gate or ValidationGate()
        self.metadata_file = metadata_file

    def needs_backup(self) -> bool:
        return True

    def create_result(self) -> EntityResult:
        return EntityResult()

    # -- Validation --------------------------------------------------------

    def validate(self, project_root: Path, config: EntityConfig) -> None:
        root = Path(project_root)
        problems: list[str] = []

        if not (root / "package.json").is_file():
            problems.append("package.json not found; run this inside an MCP server project")

        if (root / config.entity_path).exists():
            problems.append(f"{config.entity_type.capitalize()} '{config.name}' already exists at {config.entity_path}")

        if config.auto_register:
            index = root / ENTRY_POINT
            if not index.is_file():
                problems.append(f"{ENTRY_POINT} not found; cannot register the {config.entity_type}")
            elif f"{self._function_name(config)}(" in read_text(index):
                problems.append(f"{self._function_name(config)} is already registered in {ENTRY_POINT}")

        if problems:
            raise ConfigValidationError(
                f"Cannot add {config.entity_type} '{config.name}'",
                problems=problems,
                suggestion="Choose a different name or remove the existing entity first",
            )

    # -- Execution ---------------------------------------------------------

    def execute(self, context: ScaffoldContext[EntityConfig, EntityResult]) -> None:
        config = context.config
        root = context.project_root
        result = context.result
        result.entity_type = config.entity_type
        result.name = config.name

        template_context = self._template_context(config)
        if config.entity_type == "resource":
            result.uri_pattern = template_context["uri_pattern"]

        self.renderer.render_to_file(
            f"entities/{config.entity_type}.ts.j2", root / config.entity_path, template_context
        )
        result.files_created.append(config.entity_path)

        if config.generate_tests:
            result.files_created.extend(self._write_tests(root, config, template_context))

        if config.auto_register:
            self._register(root, config)
            result.registered = True
            result.files_modified.append(ENTRY_POINT)
            self._verify(root, config)

        written = metadata.add_entity(
            root,
            config.plural,
            metadata.EntityMetadata(
                name=config.name,
                file=config.entity_path,
                registered=config.auto_register,
                has_unit_test=config.generate_tests,
                has_integration_test=config.generate_tests,
            ),
            filename=self.metadata_file,
        )
        if written:
            result.files_modified.append(self.metadata_file)

        if not config.auto_register:
            result.next_steps.append(
                f"Register it manually: import {{ {self._function_name(config)} }} from "
                f'"./{config.plural}/{config.name}.js" and call it in init()'
            )
        result.next_steps.append(f"Implement the {config.entity_type} in {config.entity_path}")
        if config.generate_tests:
            result.next_steps.append("Run the unit tests: npm test")

    # -- Internals ---------------------------------------------------------

    @staticmethod
    def _function_name(config: EntityConfig) -> str:
        return f"register{to_pascal(config.name)}{config.entity_type.capitalize()}"

    def _template_context(self, config: EntityConfig) -> dict[str, Any]:
        description = config.description or f"TODO: describe the {config.name} {config.entity_type}"
        context: dict[str, Any] = {
            "name": config.name,
            "pascal_name": to_pascal(config.name),
            "description": description,
            "entity_type": config.entity_type,
            "entity_plural": config.plural,
            "suffix": config.entity_type.capitalize(),
        }
        if config.entity_type == "resource":
            uri_pattern = config.uri_pattern()
            variables = re.findall(r"\{(\w+)\}", uri_pattern)
            context.update(uri_pattern=uri_pattern, has_variables=bool(variables), variables=variables)
        return context

    def _write_tests(self, root: Path, config: EntityConfig, context: dict[str, Any]) -> list[str]:
        unit_path = config.unit_test_path
        self.renderer.render_to_file("tests/unit.test.ts.j2", root / unit_path, context)

        spec_path = config.integration_spec_path
        write_text(root / spec_path, yaml.safe_dump(_integration_spec(config, context), sort_keys=False))
        return [unit_path, spec_path]

    def _register(self, root: Path, config: EntityConfig) -> None:
        function_name = self._function_name(config)
        import_line = f'import {{ {function_name} }} from "./{config.plural}/{config.name}.js";'
        call_line = f"{function_name}(this.server);"

        steps = (
            (f"{config.entity_type}:import", import_line, f'"./{config.plural}/{config.name}.js"'),
            (f"{config.entity_type}:register", call_line, call_line),
        )
        for category, content, identity in steps:
            anchor = ENTITY_ANCHORS.get(category)
            outcome = self.resolver.insert_at(root, anchor, content, identity=identity)
            print_debug(f"{category}: {outcome.value}")
            if outcome is InsertOutcome.ANCHOR_MISSING:
                raise ExecutionError(
                    f"Could not find where to insert '{content}' in {ENTRY_POINT} ({category})",
                    suggestion="Make sure src/index.ts has an import section and an async init() method",
                    details={"anchor": category, "file": ENTRY_POINT},
                )

    def _verify(self, root: Path, config: EntityConfig) -> None:
        function_name = self._function_name(config)
        checks = [
            file_exists(config.entity_path),
            contains_all(ENTRY_POINT, [f"./{config.plural}/{config.name}.js", f"{function_name}(this.server);"]),
            max_occurrences(ENTRY_POINT, f"{function_name}(this.server);", limit=1),
        ]
        result = self.gate.run(checks, GateOptions(project_root=root, rollback_on_failure=False))
        result.raise_for_failure(f"Registration of {config.entity_type} '{config.name}' failed validation")


def _integration_spec(config: EntityConfig, context: dict[str, Any]) -> dict[str, Any]:
    description = config.description or f"Verify that {config.name} {config.entity_type} works correctly"
    spec: dict[str, Any] = {
        "name": f"{config.name.replace('-', ' ')} - basic",
        "description": description,
    }
    if config.entity_type == "tool":
        spec.update(tool=config.name, arguments={"input": "test"})
        spec["assertions"] = [{"type": "success"}, {"type": "response_time_ms", "max": 5000}]
    elif config.entity_type == "prompt":
        spec.update(type="prompt", prompt=config.name, arguments={"topic": "test"})
        spec["assertions"] = [{"type": "success"}]
    else:
        uri = re.sub(r"\{(\w+)\}", "test", context["uri_pattern"])
        spec.update(type="resource", uri=uri)
        spec["assertions"] = [{"type": "success"}, {"type": "contains_text", "text": "test" if context["has_variables"] else config.name}]
    return spec
