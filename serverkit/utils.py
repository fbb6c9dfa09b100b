"""Shared utility functions for serverkit.

Provides command execution for external check tooling, JSON I/O, file-system
helpers, identifier casing, and Rich-based console output. Every public
function is side-effect-free where possible, with clear error messages when
something goes wrong.
"""

from __future__ import annotations

import json
import re
import subprocess
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table

console = Console()

# ---------------------------------------------------------------------------
# Command execution
# ---------------------------------------------------------------------------


def run_command(
    cmd: str | list[str],
    cwd: str | Path | None = None,
    timeout: int = 120,
    env: dict[str, str] | None = None,
) -> tuple[int, str, str]:
    """Run a command synchronously and capture its output.

    Args:
        cmd: Shell command string or list of arguments.
        cwd: Working directory for the child process.
        timeout: Maximum wall-clock seconds before the process is killed.
        env: Optional extra environment variables merged on top of ``os.environ``.

    Returns:
        A ``(returncode, stdout, stderr)`` tuple. A timeout yields ``-1`` and a
        descriptive stderr; a missing executable yields ``127``.
    """
    import os

    merged_env: dict[str, str] | None = None
    if env:
        merged_env = {**os.environ, **env}

    try:
        completed = subprocess.run(
            cmd,
            shell=isinstance(cmd, str),
            cwd=str(cwd) if cwd else None,
            env=merged_env,
            capture_output=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        return (
            -1,
            "",
            f"Command timed out after {timeout}s: {cmd if isinstance(cmd, str) else ' '.join(cmd)}",
        )
    except FileNotFoundError as exc:
        return (127, "", str(exc))

    stdout_str = (completed.stdout or b"").decode("utf-8", errors="replace").strip()
    stderr_str = (completed.stderr or b"").decode("utf-8", errors="replace").strip()
    return (completed.returncode, stdout_str, stderr_str)


# ---------------------------------------------------------------------------
# Identifier helpers
# ---------------------------------------------------------------------------


def to_kebab(name: str) -> str:
    """Convert ``MY_CACHE``, ``myCache`` or ``My Cache`` to ``my-cache``."""
    s1 = re.sub(r"([a-z0-9])([A-Z])", r"\1-\2", name.strip())
    slug = re.sub(r"[^a-zA-Z0-9]+", "-", s1).lower()
    return slug.strip("-")


def to_pascal(name: str) -> str:
    """Convert ``some-thing``, ``some_thing`` or ``SOME_THING`` to ``SomeThing``."""
    parts = re.split(r"[-_\s]+", name)
    return "".join(word[:1].upper() + word[1:].lower() for word in parts if word)


def to_camel(name: str) -> str:
    """Convert ``some-thing`` or ``SOME_THING`` to ``someThing``."""
    pascal = to_pascal(name)
    if pascal:
        return pascal[0].lower() + pascal[1:]
    return ""


# ---------------------------------------------------------------------------
# File-system helpers
# ---------------------------------------------------------------------------


def read_text(path: str | Path) -> str:
    """Read a UTF-8 text file without translating newlines."""
    with open(path, encoding="utf-8", newline="") as fh:
        return fh.read()


def write_text(path: str | Path, content: str) -> Path:
    """Write UTF-8 text verbatim, creating parent directories as needed."""
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    with open(file_path, "w", encoding="utf-8", newline="") as fh:
        fh.write(content)
    return file_path


def load_json(path: str | Path) -> dict[str, Any]:
    """Load and parse a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        return {"_root": data}
    return data


def save_json(data: dict[str, Any] | list[Any], path: str | Path, indent: int | str = 2) -> None:
    """Save data as pretty-printed JSON with a trailing newline."""
    content = json.dumps(data, indent=indent, ensure_ascii=False, default=str)
    write_text(path, content + "\n")


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------


def print_summary_table(data: dict[str, str], title: str = "Summary") -> None:
    """Print a two-column key/value summary table."""
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Item", style="dim", no_wrap=True)
    table.add_column("Value")

    for key, value in data.items():
        table.add_row(key, str(value))

    console.print(table)
    console.print()


def print_success(message: str) -> None:
    """Print a green success message."""
    console.print(f"[bold green]{escape(message)}[/bold green]")


def print_error(message: str) -> None:
    """Print a red error message."""
    console.print(f"[bold red]{escape(message)}[/bold red]")


def print_warning(message: str) -> None:
    """Print a yellow warning message."""
    console.print(f"[bold yellow]{escape(message)}[/bold yellow]")


_verbose = False


def print_debug(message: str) -> None:
    """Print a dim diagnostic line when verbose output is enabled."""
    if _verbose:
        console.print(f"[dim]{escape(message)}[/dim]")


def set_verbose(enabled: bool) -> None:
    """Toggle diagnostic output for :func:`print_debug`."""
    global _verbose
    _verbose = enabled
