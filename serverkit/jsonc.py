"""Minimal JSONC reader for ``wrangler.jsonc``.

Wrangler config files allow ``//`` and ``/* */`` comments and trailing commas.
Both are stripped (string literals are left alone) and the remainder is
handed to :mod:`json`. Parse errors surface as :class:`json.JSONDecodeError`.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from serverkit.utils import read_text


def strip_comments(text: str) -> str:
    """Remove ``//`` and ``/* */`` comments outside string literals.

    Newlines inside removed comments are kept so decode errors still report
    the right line.
    """
    out: list[str] = []
    i = 0
    n = len(text)
    in_string = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            stop = n if end == -1 else end + 2
            out.append("\n" * text.count("\n", i, stop))
            i = stop
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def strip_trailing_commas(text: str) -> str:
    """Drop commas that directly precede ``}`` or ``]`` outside strings."""
    out: list[str] = []
    i = 0
    n = len(text)
    in_string = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
        elif ch == ",":
            j = i + 1
            while j < n and text[j] in " \t\r\n":
                j += 1
            if j < n and text[j] in "}]":
                i += 1
                continue
        out.append(ch)
        i += 1
    return "".join(out)


def loads(text: str) -> Any:
    """Parse a JSONC document."""
    return json.loads(strip_trailing_commas(strip_comments(text)))


def load(path: str | Path) -> Any:
    """Read and parse a JSONC file."""
    return loads(read_text(path))
