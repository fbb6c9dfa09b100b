"""Add token authentication (Stytch, Auth0 or WorkOS) to an MCP server.

Generates ``src/auth/`` (types, config and the provider implementation),
wires the provider into the platform entry point through the ``auth:*``
anchors, declares the provider's dependencies in ``package.json`` and its
environment variables in the platform config and ``.env.example``. Nothing
is installed; ``npm install`` stays with the user.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomlkit
from pydantic import Field
from tomlkit.exceptions import TOMLKitError

from serverkit import jsonc, metadata
from serverkit.engine.anchors import Anchor, AnchorResolver, AnchorTable, InsertOutcome, Position
from serverkit.engine.gate import (
    GateOptions,
    ValidationCheck,
    ValidationGate,
    command_succeeds,
    contains_all,
    file_exists,
    json_parses,
    jsonc_parses,
    toml_parses,
)
from serverkit.engine.orchestrator import ScaffoldContext, ScaffoldResult, ScaffoldStrategy
from serverkit.errors import ConfigValidationError, ExecutionError
from serverkit.strategies.configs import AuthConfig
from serverkit.templates import TemplateRenderer, default_renderer
from serverkit.utils import load_json, print_debug, read_text, save_json, write_text

ENTRY_POINTS: dict[str, str] = {
    "cloudflare": "src/index.ts",
    "vercel": "app/api/mcp/route.ts",
}

CLOUDFLARE_MARKERS = ("wrangler.jsonc", "wrangler.json", "wrangler.toml")
VERCEL_MARKERS = ("vercel.json", "next.config.js", "next.config.mjs", "next.config.ts")

AUTH_FILES = ("src/auth/types.ts", "src/auth/config.ts")


@dataclass(frozen=True)
class ProviderSpec:
    title: str
    class_name: str
    dashboard_url: str
    env_samples: dict[str, str]
    dependencies: dict[str, str] = field(default_factory=dict)

    @property
    def env_vars(self) -> list[str]:
        return list(self.env_samples)


PROVIDERS: dict[str, ProviderSpec] = {
    "stytch": ProviderSpec(
        title="Stytch",
        class_name="StytchProvider",
        dashboard_url="https://stytch.com/dashboard/api-keys",
        env_samples={
            "STYTCH_PROJECT_ID": "project-test-00000000-0000-0000-0000-000000000000",
            "STYTCH_SECRET": "secret-test-xxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxx",
            "STYTCH_ENV": "test",
        },
    ),
    "auth0": ProviderSpec(
        title="Auth0",
        class_name="Auth0Provider",
        dashboard_url="https://manage.auth0.com/dashboard",
        env_samples={
            "AUTH0_DOMAIN": "your-tenant.auth0.com",
            "AUTH0_CLIENT_ID": "xxxxxxxxxxxxxxxxxxxx",
            "AUTH0_CLIENT_SECRET": "yyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyy",
            "AUTH0_AUDIENCE": "https://your-api.example.com",
        },
        dependencies={"auth0": "^4.0.0"},
    ),
    "workos": ProviderSpec(
        title="WorkOS",
        class_name="WorkosProvider",
        dashboard_url="https://dashboard.workos.com/",
        env_samples={
            "WORKOS_API_KEY": "sk_test_xxxxxxxxxxxxxxxxxxxx",
            "WORKOS_CLIENT_ID": "client_xxxxxxxxxxxxxxxxxxxx",
        },
        dependencies={"@workos-inc/node": "^7.0.0"},
    ),
}

PLATFORM_DEPENDENCIES: dict[str, dict[str, str]] = {
    "cloudflare": {"@cloudflare/workers-oauth-provider": "^0.0.12"},
    "vercel": {},
}


def _end_marker(category: str, path: str, comment: str, tag: str, **kwargs: Any) -> Anchor:
    return Anchor(
        category=category,
        path=path,
        marker=rf"^[ \t]*{comment} </mcp-auth:{tag}>",
        start_marker=rf"^[ \t]*{comment} <mcp-auth:{tag}>",
        position=Position.BEFORE,
        **kwargs,
    )


AUTH_ANCHORS = AnchorTable(
    [
        _end_marker(
            "auth:imports",
            ENTRY_POINTS["cloudflare"],
            "//",
            "imports",
            header="// Authentication",
            import_fallback=True,
            description="Auth imports",
        ),
        _end_marker(
            "auth:middleware",
            ENTRY_POINTS["cloudflare"],
            "//",
            "middleware",
            fallbacks=("auth:fetch-handler", "auth:post-handler"),
            header="// Validate authentication",
            description="Token validation at the top of the request handler",
        ),
        Anchor(
            category="auth:fetch-handler",
            path=ENTRY_POINTS["cloudflare"],
            marker=r"async\s+fetch\s*\(\s*request[^)]*\)\s*(?::\s*Promise<Response>\s*)?\{",
            nested=True,
            description="Workers fetch handler",
        ),
        Anchor(
            category="auth:post-handler",
            path=ENTRY_POINTS["vercel"],
            marker=r"export\s+async\s+function\s+POST\s*\([^)]*\)\s*(?::\s*[^{]+)?\{",
            nested=True,
            description="Next.js POST route handler",
        ),
        _end_marker("auth:vars", "wrangler.jsonc", "//", "vars", description="Auth vars in wrangler.jsonc"),
        _end_marker("auth:vars-toml", "wrangler.toml", "#", "vars", description="Auth vars in wrangler.toml"),
    ]
)


def detect_platform(project_root: Path) -> str | None:
    """Return ``"cloudflare"``, ``"vercel"`` or ``None`` for *project_root*."""
    root = Path(project_root)
    if any((root / name).is_file() for name in CLOUDFLARE_MARKERS):
        return "cloudflare"
    if any((root / name).is_file() for name in VERCEL_MARKERS):
        return "vercel"

    try:
        pkg = load_json(root / "package.json")
    except (OSError, json.JSONDecodeError):
        return None
    deps = {**(pkg.get("dependencies") or {}), **(pkg.get("devDependencies") or {})}
    if "agents" in deps or "wrangler" in deps:
        return "cloudflare"
    if "next" in deps or "@vercel/mcp-adapter" in deps:
        return "vercel"
    return None


class AuthResult(ScaffoldResult):
    provider: str = ""
    platform: str = ""
    dependencies_added: list[str] = Field(default_factory=list)


class AuthScaffoldStrategy(ScaffoldStrategy[AuthConfig, AuthResult]):
    """Adds provider-backed token validation to the entry point."""

    def __init__(
        self,
        renderer: TemplateRenderer | None = None,
        resolver: AnchorResolver | None = None,
        gate: ValidationGate | None = None,
        command_timeout: int = 120,
        metadata_file: str = metadata.METADATA_FILE,
    ) -> None:
        self.renderer = renderer or default_renderer()
        self.resolver = resolver or AnchorResolver(AUTH_ANCHORS)
        self.gate = gate or ValidationGate()
        self.command_timeout = command_timeout
        self.metadata_file = metadata_file

    def needs_backup(self) -> bool:
        return True

    def create_result(self) -> AuthResult:
        return AuthResult()

    # -- Validation --------------------------------------------------------

    def validate(self, project_root: Path, config: AuthConfig) -> None:
        root = Path(project_root)
        problems: list[str] = []

        if not (root / "package.json").is_file():
            problems.append("package.json not found")
        if not (root / "src").is_dir():
            problems.append("src directory not found")

        platform = config.platform or detect_platform(root)
        if platform is None:
            problems.append("Could not detect the platform (no wrangler config, vercel.json or next.config found)")
        else:
            entry = root / ENTRY_POINTS[platform]
            if not entry.is_file():
                problems.append(f"Entry point not found: {ENTRY_POINTS[platform]} (expected for {platform})")
            elif not config.force and self._has_auth(root, entry):
                problems.append("Authentication is already configured")

        if problems:
            raise ConfigValidationError(
                f"Cannot add {config.provider} authentication",
                problems=problems,
                suggestion="Pass --force to regenerate existing authentication"
                if any("already configured" in p for p in problems)
                else "Run this inside a Cloudflare or Vercel MCP server project",
            )

    @staticmethod
    def _has_auth(root: Path, entry: Path) -> bool:
        return (root / "src/auth/config.ts").exists() or "getAuthProvider" in read_text(entry)

    # -- Execution ---------------------------------------------------------

    def execute(self, context: ScaffoldContext[AuthConfig, AuthResult]) -> None:
        config = context.config
        root = context.project_root
        result = context.result
        platform = config.platform or detect_platform(root)
        if platform is None:
            raise ExecutionError("Platform could not be detected")
        spec = PROVIDERS[config.provider]
        entry_point = ENTRY_POINTS[platform]

        result.provider = config.provider
        result.platform = platform

        self._render_auth_files(root, config, spec, result)
        self._add_dependencies(root, platform, spec, result)
        self._wire_entry_point(root, platform, entry_point)
        result.files_modified.append(entry_point)

        if platform == "cloudflare":
            self._add_wrangler_vars(root, spec, result)
        else:
            self._add_vercel_env(root, spec, result)
        self._update_env_example(root, config, spec, result)

        checks = self._checks(root, platform, entry_point)
        options = GateOptions(project_root=root, rollback_on_failure=False)
        if config.type_check:
            gate_result = self.gate.run(checks, options)
        else:
            gate_result = self.gate.quick_validate(checks, options)
        gate_result.raise_for_failure(f"{spec.title} authentication failed post-mutation validation")

        if metadata.append_entry(
            root, "auth", {"name": config.provider, "platform": platform}, filename=self.metadata_file
        ):
            result.files_modified.append(self.metadata_file)

        result.next_steps.extend(
            [
                "Install the new dependencies: npm install",
                f"Fill in {', '.join(spec.env_vars)} (see .env.example)",
                "Send requests with 'Authorization: Bearer <token>'",
            ]
        )

    # -- Steps -------------------------------------------------------------

    def _render_auth_files(self, root: Path, config: AuthConfig, spec: ProviderSpec, result: AuthResult) -> None:
        context = {
            "provider": config.provider,
            "provider_title": spec.title,
            "provider_class": spec.class_name,
            "env_vars": spec.env_vars,
        }
        outputs = {
            "src/auth/types.ts": "auth/types.ts.j2",
            "src/auth/config.ts": "auth/config.ts.j2",
            f"src/auth/providers/{config.provider}.ts": f"auth/providers/{config.provider}.ts.j2",
        }
        for rel_path, template in outputs.items():
            existed = (root / rel_path).exists()
            self.renderer.render_to_file(template, root / rel_path, context)
            (result.files_modified if existed else result.files_created).append(rel_path)

    def _add_dependencies(self, root: Path, platform: str, spec: ProviderSpec, result: AuthResult) -> None:
        wanted = {**PLATFORM_DEPENDENCIES[platform], **spec.dependencies}
        if not wanted:
            return
        pkg = load_json(root / "package.json")
        deps = dict(pkg.get("dependencies") or {})
        dev_deps = pkg.get("devDependencies") or {}
        added = [name for name in wanted if name not in deps and name not in dev_deps]
        if not added:
            return
        for name in added:
            deps[name] = wanted[name]
        pkg["dependencies"] = deps
        save_json(pkg, root / "package.json", indent=2)
        result.dependencies_added.extend(added)
        result.files_modified.append("package.json")

    def _wire_entry_point(self, root: Path, platform: str, entry_point: str) -> None:
        if platform == "cloudflare":
            imports = (
                'import { getAuthProvider } from "./auth/config.js";\n'
                'import { AuthenticationError } from "./auth/types.js";'
            )
        else:
            imports = (
                'import { getAuthProvider } from "@/auth/config";\n'
                'import { AuthenticationError } from "@/auth/types";'
            )
        middleware = self.renderer.render(f"auth/middleware.{platform}.ts.j2", {}).rstrip("\n")

        for category, content, identity in (
            ("auth:imports", imports, "getAuthProvider }"),
            ("auth:middleware", middleware, "getAuthProvider("),
        ):
            outcome = self.resolver.insert(root / entry_point, AUTH_ANCHORS.get(category), content, identity=identity)
            print_debug(f"{category}: {outcome.value}")
            if outcome is InsertOutcome.ANCHOR_MISSING:
                raise ExecutionError(
                    f"Could not find where to add authentication ({category}) in {entry_point}",
                    suggestion="Add the '<mcp-auth:imports>' and '<mcp-auth:middleware>' anchor comments",
                    details={"anchor": category, "file": entry_point},
                )

    def _add_wrangler_vars(self, root: Path, spec: ProviderSpec, result: AuthResult) -> None:
        if (root / "wrangler.jsonc").is_file():
            config = jsonc.load(root / "wrangler.jsonc")
            existing = (config.get("vars") or {}) if isinstance(config, dict) else {}
            if any(var in existing for var in spec.env_vars):
                return
            content = "\n".join(f'"{var}": "",' for var in spec.env_vars)
            outcome = self.resolver.insert_at(root, AUTH_ANCHORS.get("auth:vars"), content)
            if outcome is InsertOutcome.INSERTED:
                result.files_modified.append("wrangler.jsonc")
            elif outcome is InsertOutcome.ANCHOR_MISSING:
                result.warnings.append(
                    f"wrangler.jsonc has no auth:vars anchor; add {', '.join(spec.env_vars)} to \"vars\" manually"
                )
        elif (root / "wrangler.toml").is_file():
            if self._merge_toml_vars(root, spec):
                result.files_modified.append("wrangler.toml")
        elif (root / "wrangler.json").is_file():
            config = load_json(root / "wrangler.json")
            vars_ = dict(config.get("vars") or {})
            if any(var in vars_ for var in spec.env_vars):
                return
            vars_.update({var: "" for var in spec.env_vars})
            config["vars"] = vars_
            save_json(config, root / "wrangler.json", indent="\t")
            result.files_modified.append("wrangler.json")

    def _merge_toml_vars(self, root: Path, spec: ProviderSpec) -> bool:
        """Declare the provider's variables under ``[vars]`` in wrangler.toml.

        The anchor block is used when present; otherwise the document is
        parsed and the keys are merged into ``[vars]``, creating the table
        if needed. Comments and layout elsewhere survive the round trip.
        """
        path = root / "wrangler.toml"
        try:
            doc = tomlkit.parse(read_text(path))
        except TOMLKitError as exc:
            raise ExecutionError(
                f"wrangler.toml is not valid TOML: {exc}",
                suggestion="Fix wrangler.toml and run the command again",
                details={"file": "wrangler.toml"},
            ) from exc

        vars_ = doc.get("vars")
        if vars_ is not None and any(var in vars_ for var in spec.env_vars):
            return False

        anchor = AUTH_ANCHORS.get("auth:vars-toml")
        if self.resolver.has_anchor(path, anchor):
            content = "\n".join(f'{var} = ""' for var in spec.env_vars)
            return self.resolver.insert_at(root, anchor, content) is InsertOutcome.INSERTED

        if vars_ is None:
            vars_ = tomlkit.table()
            doc["vars"] = vars_
        for var in spec.env_vars:
            vars_[var] = ""
        write_text(path, tomlkit.dumps(doc))
        return True

    def _add_vercel_env(self, root: Path, spec: ProviderSpec, result: AuthResult) -> None:
        path = root / "vercel.json"
        existed = path.is_file()
        config = load_json(path) if existed else {}
        env = dict(config.get("env") or {})
        if any(var in env for var in spec.env_vars):
            return
        env.update({var: f"@{var.lower()}" for var in spec.env_vars})
        config["env"] = env
        save_json(config, path, indent=2)
        (result.files_modified if existed else result.files_created).append("vercel.json")

    def _update_env_example(self, root: Path, config: AuthConfig, spec: ProviderSpec, result: AuthResult) -> None:
        path = root / ".env.example"
        block = self.renderer.render(
            "auth/env.example.j2",
            {"provider_title": spec.title, "dashboard_url": spec.dashboard_url, "env_samples": spec.env_samples},
        )
        if path.is_file():
            existing = read_text(path)
            if any(var in existing for var in spec.env_vars):
                return
            separator = "" if existing.endswith("\n") or not existing else "\n"
            write_text(path, existing + separator + "\n" + block)
            result.files_modified.append(".env.example")
        else:
            write_text(path, block)
            result.files_created.append(".env.example")

    def _checks(self, root: Path, platform: str, entry_point: str) -> list[ValidationCheck]:
        checks: list[ValidationCheck] = [file_exists(path) for path in AUTH_FILES]
        checks.append(contains_all(entry_point, ["getAuthProvider", "AuthenticationError"], name="entry-point-wired"))
        checks.append(json_parses("package.json"))
        if (root / "wrangler.jsonc").is_file():
            checks.append(jsonc_parses("wrangler.jsonc"))
        elif (root / "wrangler.toml").is_file():
            checks.append(toml_parses("wrangler.toml"))
        if platform == "vercel" and (root / "vercel.json").is_file():
            checks.append(json_parses("vercel.json"))
        checks.append(
            command_succeeds(
                ["npx", "tsc", "--noEmit"],
                name="type-check",
                description="TypeScript compiles (tsc --noEmit)",
                timeout=self.command_timeout,
            )
        )
        return checks
