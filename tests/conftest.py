"""Shared pytest fixtures for the serverkit test suite.

Provides reusable fixtures for:
- Fixture MCP server project trees (Cloudflare and Vercel flavours)
- Tree hashing for byte-level before/after comparisons
- Default settings
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Callable

import pytest

from serverkit.config import Settings
from serverkit.utils import set_verbose

# ---------------------------------------------------------------------------
# Fixture file contents
# ---------------------------------------------------------------------------

PACKAGE_JSON = {
    "name": "test-server",
    "version": "1.0.0",
    "private": True,
    "scripts": {"deploy": "wrangler deploy", "test": "vitest run"},
    "dependencies": {
        "@modelcontextprotocol/sdk": "^1.17.0",
        "agents": "^0.0.109",
        "zod": "^3.25.0",
    },
    "devDependencies": {"wrangler": "^4.26.0", "vitest": "^3.2.0"},
}

TEMPLATE_METADATA = {
    "id": "cloudflare-remote",
    "version": "1.0.0",
    "tools": [
        {
            "name": "echo",
            "file": "src/tools/echo.ts",
            "registered": True,
            "hasUnitTest": True,
            "hasIntegrationTest": True,
        }
    ],
}

INDEX_TS = """\
import { McpAgent } from "agents/mcp";
import { McpServer } from "@modelcontextprotocol/sdk/server/mcp.js";
import { registerEchoTool } from "./tools/echo.js";
// <mcp-bindings:imports>
// </mcp-bindings:imports>
// <mcp-auth:imports>
// </mcp-auth:imports>

export class MyMCP extends McpAgent {
\tserver = new McpServer({ name: "test-server", version: "1.0.0" });

\tasync init() {
\t\tregisterEchoTool(this.server);
\t}
}

export default {
\tasync fetch(request: Request, env: Env, ctx: ExecutionContext): Promise<Response> {
\t\t// <mcp-auth:middleware>
\t\t// </mcp-auth:middleware>
\t\tconst url = new URL(request.url);
\t\tif (url.pathname === "/mcp") {
\t\t\treturn MyMCP.serve("/mcp").fetch(request, env, ctx);
\t\t}
\t\treturn new Response("Not found", { status: 404 });
\t},
};
"""

ECHO_TOOL_TS = """\
import type { McpServer } from "@modelcontextprotocol/sdk/server/mcp.js";
import { z } from "zod";

export function registerEchoTool(server: McpServer) {
\tserver.tool("echo", "Echo input", { message: z.string() }, async ({ message }) => ({
\t\tcontent: [{ type: "text" as const, text: message }],
\t}));
}
"""

WRANGLER_JSONC = """\
/**
 * Worker configuration
 */
{
\t"$schema": "node_modules/wrangler/config-schema.json",
\t"name": "test-server",
\t"main": "src/index.ts",
\t"compatibility_date": "2025-03-10",
\t"compatibility_flags": ["nodejs_compat"],
\t"durable_objects": {
\t\t"bindings": [{ "class_name": "MyMCP", "name": "MCP_OBJECT" }],
\t},
\t"kv_namespaces": [
\t\t// <mcp-bindings:kv>
\t\t// </mcp-bindings:kv>
\t],
\t"d1_databases": [
\t\t// <mcp-bindings:d1>
\t\t// </mcp-bindings:d1>
\t],
\t"r2_buckets": [
\t\t// <mcp-bindings:r2>
\t\t// </mcp-bindings:r2>
\t],
\t"vars": {
\t\t// <mcp-auth:vars>
\t\t// </mcp-auth:vars>
\t},
}
"""

LEGACY_WRANGLER_JSONC = """\
{
\t"name": "test-server",
\t"main": "src/index.ts",
\t"compatibility_date": "2025-03-10",
}
"""

VERCEL_ROUTE_TS = """\
import { createMcpHandler } from "@vercel/mcp-adapter";

const handler = createMcpHandler((server) => {
\tserver.tool("echo", "Echo input", {}, async () => ({ content: [] }));
});

export async function POST(request: Request) {
\treturn handler(request);
}

export { handler as GET };
"""


# ---------------------------------------------------------------------------
# Project builders
# ---------------------------------------------------------------------------


def write_cloudflare_project(root: Path, *, anchors: bool = True, metadata: bool = True) -> Path:
    """Write a Cloudflare Workers MCP project under *root*.

    With ``anchors=False`` the binding and auth anchor comments are left out,
    like a project generated before they existed.
    """
    root.mkdir(parents=True, exist_ok=True)
    (root / "package.json").write_text(json.dumps(PACKAGE_JSON, indent=2) + "\n", encoding="utf-8")
    (root / "src" / "tools").mkdir(parents=True)
    (root / "src" / "tools" / "echo.ts").write_text(ECHO_TOOL_TS, encoding="utf-8")

    index = INDEX_TS
    wrangler = WRANGLER_JSONC
    if not anchors:
        index = "\n".join(line for line in INDEX_TS.split("\n") if "<mcp-" not in line and "</mcp-" not in line)
        wrangler = LEGACY_WRANGLER_JSONC
    (root / "src" / "index.ts").write_text(index, encoding="utf-8")
    (root / "wrangler.jsonc").write_text(wrangler, encoding="utf-8")

    if metadata:
        (root / ".mcp-template.json").write_text(json.dumps(TEMPLATE_METADATA, indent="\t"), encoding="utf-8")
    (root / "README.md").write_text("# test-server\n", encoding="utf-8")
    return root


def write_vercel_project(root: Path) -> Path:
    """Write a minimal Next.js / Vercel MCP project under *root*."""
    root.mkdir(parents=True, exist_ok=True)
    package = {
        "name": "vercel-server",
        "version": "1.0.0",
        "dependencies": {"next": "^15.0.0", "@vercel/mcp-adapter": "^1.0.0"},
    }
    (root / "package.json").write_text(json.dumps(package, indent=2) + "\n", encoding="utf-8")
    (root / "next.config.mjs").write_text("export default {};\n", encoding="utf-8")
    (root / "src").mkdir()
    (root / "src" / "lib.ts").write_text("export const version = 1;\n", encoding="utf-8")
    route = root / "app" / "api" / "mcp" / "route.ts"
    route.parent.mkdir(parents=True)
    route.write_text(VERCEL_ROUTE_TS, encoding="utf-8")
    return root


def hash_tree(root: Path) -> dict[str, str]:
    """Map every file under *root* (relative POSIX path) to its SHA-256."""
    digests: dict[str, str] = {}
    for path in sorted(root.rglob("*")):
        if path.is_file():
            digests[path.relative_to(root).as_posix()] = hashlib.sha256(path.read_bytes()).hexdigest()
    return digests


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _quiet_debug():
    """Reset verbose console output between tests."""
    set_verbose(False)
    yield
    set_verbose(False)


@pytest.fixture
def mcp_project(tmp_path: Path) -> Path:
    """Cloudflare MCP project with every anchor in place."""
    return write_cloudflare_project(tmp_path / "mcp-project")


@pytest.fixture
def legacy_project(tmp_path: Path) -> Path:
    """Cloudflare MCP project without binding or auth anchors."""
    return write_cloudflare_project(tmp_path / "legacy-project", anchors=False)


@pytest.fixture
def vercel_project(tmp_path: Path) -> Path:
    """Vercel MCP project with a POST route handler."""
    return write_vercel_project(tmp_path / "vercel-project")


@pytest.fixture
def tree_hash() -> Callable[[Path], dict[str, str]]:
    """The :func:`hash_tree` helper."""
    return hash_tree


@pytest.fixture
def settings() -> Settings:
    """Default settings."""
    return Settings()


@pytest.fixture
def make_project() -> Callable[..., Path]:
    """The :func:`write_cloudflare_project` builder, for custom variants."""
    return write_cloudflare_project
