"""Add a Cloudflare KV, D1 or R2 binding.

The binding entry goes into the matching anchor block of ``wrangler.jsonc``,
which by convention sits inside the binding array::

    "kv_namespaces": [
        // <mcp-bindings:kv>
        // </mcp-bindings:kv>
    ],

A typed helper class is generated under ``src/utils/bindings/`` and imported
at the ``bindings:imports`` anchor of ``src/index.ts``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from serverkit import jsonc, metadata
from serverkit.engine.anchors import Anchor, AnchorResolver, AnchorTable, InsertOutcome, Position
from serverkit.engine.gate import (
    GateOptions,
    ValidationCheck,
    ValidationGate,
    anchors_present,
    contains_all,
    file_exists,
    jsonc_parses,
)
from serverkit.engine.orchestrator import ScaffoldContext, ScaffoldResult, ScaffoldStrategy
from serverkit.errors import ConfigValidationError, ExecutionError
from serverkit.strategies.configs import BindingConfig
from serverkit.templates import TemplateRenderer, default_renderer
from serverkit.utils import print_debug, to_camel, to_pascal

WRANGLER_CONFIG = "wrangler.jsonc"
ENTRY_POINT = "src/index.ts"

# wrangler.jsonc array holding each binding type.
BINDING_ARRAYS: dict[str, str] = {
    "kv": "kv_namespaces",
    "d1": "d1_databases",
    "r2": "r2_buckets",
}


def _block_anchor(category: str, path: str, tag: str, description: str) -> Anchor:
    return Anchor(
        category=category,
        path=path,
        marker=rf"^[ \t]*// </mcp-bindings:{tag}>",
        start_marker=rf"^[ \t]*// <mcp-bindings:{tag}>",
        position=Position.BEFORE,
        description=description,
    )


BINDING_ANCHORS = AnchorTable(
    [
        _block_anchor("bindings:kv", WRANGLER_CONFIG, "kv", "KV namespace entries"),
        _block_anchor("bindings:d1", WRANGLER_CONFIG, "d1", "D1 database entries"),
        _block_anchor("bindings:r2", WRANGLER_CONFIG, "r2", "R2 bucket entries"),
        _block_anchor("bindings:imports", ENTRY_POINT, "imports", "Binding helper imports"),
    ]
)


class BindingResult(ScaffoldResult):
    binding_type: str = ""
    binding_name: str = ""
    helper_path: str | None = None


def declared_bindings(project_root: Path) -> dict[str, str]:
    """Map every binding name declared in ``wrangler.jsonc`` to its type.

    Raises:
        json.JSONDecodeError: If the file does not parse as JSONC.
    """
    config = jsonc.load(Path(project_root) / WRANGLER_CONFIG)
    found: dict[str, str] = {}
    if not isinstance(config, dict):
        return found
    for binding_type, key in BINDING_ARRAYS.items():
        for entry in config.get(key) or []:
            if isinstance(entry, dict) and isinstance(entry.get("binding"), str):
                found[entry["binding"]] = binding_type
    return found


class BindingScaffoldStrategy(ScaffoldStrategy[BindingConfig, BindingResult]):
    """Declares a binding in wrangler.jsonc and generates its helper."""

    def __init__(
        self,
        renderer: TemplateRenderer | None = None,
        resolver: AnchorResolver | None = None,
        gate: ValidationGate | None = None,
        metadata_file: str = metadata.METADATA_FILE,
    ) -> None:
        self.renderer = renderer or default_renderer()
        self.resolver = resolver or AnchorResolver(BINDING_ANCHORS)
        self.gate = gate or ValidationGate()
        self.metadata_file = metadata_file

    def needs_backup(self) -> bool:
        return True

    def create_result(self) -> BindingResult:
        return BindingResult()

    # -- Validation --------------------------------------------------------

    def validate(self, project_root: Path, config: BindingConfig) -> None:
        root = Path(project_root)
        problems: list[str] = []
        anchors_missing = False

        if not (root / WRANGLER_CONFIG).is_file():
            problems.append(f"{WRANGLER_CONFIG}: not found (bindings require the JSONC wrangler config)")
        if not (root / "package.json").is_file():
            problems.append("package.json: not found")
        if not (root / "src").is_dir():
            problems.append("src: directory not found")

        if (root / WRANGLER_CONFIG).is_file():
            try:
                existing = declared_bindings(root)
            except json.JSONDecodeError as exc:
                problems.append(f"{WRANGLER_CONFIG}: could not be parsed ({exc})")
            else:
                if config.binding_name in existing:
                    problems.append(
                        f"binding_name: '{config.binding_name}' already exists as a "
                        f"{existing[config.binding_name]} binding in {WRANGLER_CONFIG}"
                    )

            block = BINDING_ANCHORS.get(f"bindings:{config.binding_type}")
            if not self.resolver.has_anchor(root / WRANGLER_CONFIG, block):
                anchors_missing = True
                problems.append(
                    f"{WRANGLER_CONFIG}: missing anchor block "
                    f"'// <mcp-bindings:{config.binding_type}>' ... '// </mcp-bindings:{config.binding_type}>' "
                    f"inside \"{BINDING_ARRAYS[config.binding_type]}\""
                )

        if not config.skip_helper:
            imports = BINDING_ANCHORS.get("bindings:imports")
            if not self.resolver.has_anchor(root / ENTRY_POINT, imports):
                anchors_missing = True
                problems.append(
                    f"{ENTRY_POINT}: missing anchor block '// <mcp-bindings:imports>' ... '// </mcp-bindings:imports>'"
                )
            if (root / self._helper_path(config)).exists():
                problems.append(f"{self._helper_path(config)}: helper already exists")

        if problems:
            suggestion = (
                "Add the missing anchor comments (your project may predate binding support)"
                if anchors_missing
                else "Fix the listed problems and retry"
            )
            raise ConfigValidationError(
                f"Cannot add {config.binding_type} binding '{config.binding_name}'",
                problems=problems,
                suggestion=suggestion,
            )

    # -- Execution ---------------------------------------------------------

    def execute(self, context: ScaffoldContext[BindingConfig, BindingResult]) -> None:
        config = context.config
        root = context.project_root
        result = context.result
        result.binding_type = config.binding_type
        result.binding_name = config.binding_name

        if not config.skip_helper:
            helper_path = self._helper_path(config)
            self.renderer.render_to_file(
                f"bindings/{config.binding_type}.ts.j2", root / helper_path, self._template_vars(config)
            )
            result.helper_path = helper_path
            result.files_created.append(helper_path)

        self._insert(
            root,
            f"bindings:{config.binding_type}",
            json.dumps(self._wrangler_entry(config), indent="\t") + ",",
            identity=f'"binding": "{config.binding_name}"',
        )
        result.files_modified.append(WRANGLER_CONFIG)

        if not config.skip_helper:
            vars_ = self._template_vars(config)
            self._insert(
                root,
                "bindings:imports",
                f'import {{ {vars_["helper_class"]} }} from "./utils/bindings/{self._helper_stem(config)}.js";',
            )
            result.files_modified.append(ENTRY_POINT)

        gate_result = self.gate.run(self._checks(config), GateOptions(project_root=root, rollback_on_failure=False))
        gate_result.raise_for_failure(f"Binding '{config.binding_name}' failed post-mutation validation")

        if metadata.append_entry(
            root,
            "bindings",
            {"name": config.binding_name, "type": config.binding_type, "helper": result.helper_path},
            filename=self.metadata_file,
        ):
            result.files_modified.append(self.metadata_file)

        result.next_steps.extend(self._next_steps(config))

    # -- Internals ---------------------------------------------------------

    def _insert(self, root: Path, category: str, content: str, identity: str | None = None) -> None:
        anchor = BINDING_ANCHORS.get(category)
        outcome = self.resolver.insert_at(root, anchor, content, identity=identity)
        print_debug(f"{category}: {outcome.value}")
        if outcome is InsertOutcome.ANCHOR_MISSING:
            raise ExecutionError(
                f"Anchor {category} not found in {anchor.path}",
                details={"anchor": category, "file": anchor.path},
            )

    @staticmethod
    def _helper_stem(config: BindingConfig) -> str:
        return f"{config.kebab_name}-{config.binding_type}"

    def _helper_path(self, config: BindingConfig) -> str:
        return f"src/utils/bindings/{self._helper_stem(config)}.ts"

    @staticmethod
    def _template_vars(config: BindingConfig) -> dict[str, Any]:
        suffix = config.binding_type.upper()
        return {
            "binding_name": config.binding_name,
            "helper_class": f"{to_pascal(config.binding_name)}{suffix}",
            "kebab_name": config.kebab_name,
            "camel_name": to_camel(config.binding_name),
            "type_suffix": suffix,
            "database_name": config.resolved_database_name,
            "bucket_name": config.resolved_bucket_name,
        }

    @staticmethod
    def _wrangler_entry(config: BindingConfig) -> dict[str, str]:
        if config.binding_type == "kv":
            return {
                "binding": config.binding_name,
                "id": f"TODO: Run 'wrangler kv namespace create {config.binding_name}' and add the ID here",
            }
        if config.binding_type == "d1":
            return {
                "binding": config.binding_name,
                "database_name": config.resolved_database_name,
                "database_id": f"TODO: Run 'wrangler d1 create {config.resolved_database_name}' and add the ID here",
            }
        return {"binding": config.binding_name, "bucket_name": config.resolved_bucket_name}

    def _checks(self, config: BindingConfig) -> list[ValidationCheck]:
        name = config.binding_name
        checks = [
            jsonc_parses(WRANGLER_CONFIG),
            ValidationCheck(
                name="binding-declared",
                description=f"{name} declared in {WRANGLER_CONFIG}",
                predicate=lambda root: declared_bindings(root).get(name) == config.binding_type,
                error_message=f"{name} is not declared as a {config.binding_type} binding in {WRANGLER_CONFIG}",
            ),
        ]
        anchors = [BINDING_ANCHORS.get(f"bindings:{config.binding_type}")]
        if not config.skip_helper:
            helper_class = self._template_vars(config)["helper_class"]
            checks.append(file_exists(self._helper_path(config), name="helper-exists"))
            checks.append(contains_all(ENTRY_POINT, [f"{{ {helper_class} }}"], name="helper-imported"))
            anchors.append(BINDING_ANCHORS.get("bindings:imports"))
        checks.append(anchors_present(anchors, critical=False))
        return checks

    def _next_steps(self, config: BindingConfig) -> list[str]:
        helper = self._template_vars(config)["helper_class"]
        usage = f"Use the helper in your tools: new {helper}(env.{config.binding_name})"
        if config.binding_type == "kv":
            steps = [
                f"Create a KV namespace: wrangler kv namespace create {config.binding_name}",
                f"Replace the TODO id in {WRANGLER_CONFIG} with the namespace ID",
            ]
        elif config.binding_type == "d1":
            steps = [
                f"Create a D1 database: wrangler d1 create {config.resolved_database_name}",
                f"Replace the TODO database_id in {WRANGLER_CONFIG} with the database ID",
                f"Create your schema: wrangler d1 execute {config.resolved_database_name} --file=./schema.sql",
            ]
        else:
            steps = [f"Create an R2 bucket: wrangler r2 bucket create {config.resolved_bucket_name}"]
        steps.append("Regenerate binding types: npm run cf-typegen")
        if not config.skip_helper:
            steps.append(usage)
        steps.append("Deploy your changes: npm run deploy")
        return steps
