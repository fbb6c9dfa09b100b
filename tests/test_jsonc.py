"""Unit tests for the JSONC reader (serverkit.jsonc).

Tests cover:
- Line and block comment stripping outside strings
- Trailing comma removal outside strings
- Line numbers preserved in decode errors
- Full wrangler.jsonc fixture parsing
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from serverkit import jsonc


class TestStripComments:
    @pytest.mark.unit
    def test_line_comments(self):
        assert jsonc.strip_comments('{\n  "a": 1 // one\n}') == '{\n  "a": 1 \n}'

    @pytest.mark.unit
    def test_block_comment_keeps_newlines(self):
        assert jsonc.strip_comments("/* a\nb\n*/{}") == "\n\n{}"

    @pytest.mark.unit
    def test_comment_markers_inside_strings(self):
        text = '{"url": "https://example.com", "glob": "/* x */"}'
        assert jsonc.strip_comments(text) == text

    @pytest.mark.unit
    def test_escaped_quote_in_string(self):
        text = '{"a": "say \\"hi\\" // not a comment"}'
        assert jsonc.strip_comments(text) == text


class TestTrailingCommas:
    @pytest.mark.unit
    def test_objects_and_arrays(self):
        assert jsonc.strip_trailing_commas('{"a": [1, 2,\n],\n}') == '{"a": [1, 2\n]\n}'

    @pytest.mark.unit
    def test_commas_in_strings_untouched(self):
        text = '{"a": ",}"}'
        assert jsonc.strip_trailing_commas(text) == text


class TestLoads:
    @pytest.mark.unit
    def test_wrangler_fixture(self, mcp_project: Path):
        config = jsonc.load(mcp_project / "wrangler.jsonc")
        assert config["name"] == "test-server"
        assert config["kv_namespaces"] == []
        assert config["vars"] == {}
        assert config["durable_objects"]["bindings"][0]["class_name"] == "MyMCP"

    @pytest.mark.unit
    def test_error_line_survives_block_comment(self):
        with pytest.raises(json.JSONDecodeError) as exc_info:
            jsonc.loads('/*\n\n*/\n{\n  "a": \n}')
        assert exc_info.value.lineno == 6
