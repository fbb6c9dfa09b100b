"""Jinja2 template rendering for generated project files.

Provides the TemplateRenderer class which loads Jinja2 templates from the
``serverkit/templates/`` directory and renders them with entity-, binding- or
auth-specific context data. Compiled templates are cached by the Jinja2
environment owned by each renderer and dropped with
:meth:`TemplateRenderer.clear_cache`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

from serverkit.utils import to_camel, to_kebab, to_pascal, write_text

# ---------------------------------------------------------------------------
# Template directory discovery
# ---------------------------------------------------------------------------

_DEFAULT_TEMPLATE_DIR = Path(__file__).parent / "templates"


# ---------------------------------------------------------------------------
# TemplateRenderer
# ---------------------------------------------------------------------------


class TemplateRenderer:
    """Renders Jinja2 templates for scaffolded files.

    One renderer is constructed per process (see :func:`default_renderer`);
    tests that swap template directories construct their own.
    """

    def __init__(self, template_dir: str | Path | None = None) -> None:
        if template_dir is None:
            template_dir = _DEFAULT_TEMPLATE_DIR
        self.template_dir = Path(template_dir)
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape([]),
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=StrictUndefined,
        )
        self.env.filters["kebab_case"] = to_kebab
        self.env.filters["pascal_case"] = to_pascal
        self.env.filters["camel_case"] = to_camel
        self.env.filters["js_string"] = _js_string_filter
        self.env.filters["doc_comment"] = _doc_comment_filter

    # -- Rendering ---------------------------------------------------------

    def render(self, template_path: str, context: dict[str, Any]) -> str:
        """Render a single template with the provided context.

        Args:
            template_path: Path relative to the template directory (e.g.
                ``"entities/tool.ts.j2"``).
            context: Dictionary of variables available inside the template.
        """
        template = self.env.get_template(template_path)
        return template.render(**context)

    def render_to_file(
        self,
        template_path: str,
        output_path: str | Path,
        context: dict[str, Any],
    ) -> Path:
        """Render a template and write the result to *output_path*.

        Parent directories are created automatically.
        """
        content = self.render(template_path, context)
        return write_text(output_path, content)

    def clear_cache(self) -> None:
        """Drop every compiled template held by this renderer."""
        if self.env.cache is not None:
            self.env.cache.clear()


_renderer: TemplateRenderer | None = None


def default_renderer() -> TemplateRenderer:
    """Return the process-wide renderer over the bundled templates."""
    global _renderer
    if _renderer is None:
        _renderer = TemplateRenderer()
    return _renderer


# ---------------------------------------------------------------------------
# Jinja2 custom filters
# ---------------------------------------------------------------------------


def _js_string_filter(value: str) -> str:
    """Escape a value for use inside a double-quoted JS/TS string literal."""
    return (
        str(value)
        .replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )


def _doc_comment_filter(value: str) -> str:
    """Make a value safe as the body of a ``/** ... */`` block comment."""
    lines = str(value).replace("*/", "*\\/").splitlines() or [""]
    return "\n * ".join(line.rstrip() for line in lines)
