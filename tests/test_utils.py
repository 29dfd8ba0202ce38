"""Unit tests for shared utilities (scaffold_matrix.utils).

Tests cover:
- sanitize_name and split_csv
- load_json_list / save_json
- ensure_dir / remove_path
- format_duration and preview_lines
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from scaffold_matrix.utils import (
    ensure_dir,
    format_duration,
    load_json_list,
    preview_lines,
    remove_path,
    sanitize_name,
    save_json,
    split_csv,
)


# ---------------------------------------------------------------------------
# Names
# ---------------------------------------------------------------------------


class TestSanitizeName:
    @pytest.mark.unit
    def test_plus_becomes_hyphen(self):
        assert sanitize_name("eslint+prettier") == "eslint-prettier"

    @pytest.mark.unit
    def test_uppercase_lowered(self):
        assert sanitize_name("absoluteAuth") == "absoluteauth"

    @pytest.mark.unit
    def test_separators_collapsed_and_stripped(self):
        assert sanitize_name("  React / SQLite ") == "react-sqlite"

    @pytest.mark.unit
    def test_underscores_and_dots_replaced(self):
        assert sanitize_name("my_app.v2") == "my-app-v2"

    @pytest.mark.unit
    def test_empty_string(self):
        assert sanitize_name("") == ""


class TestSplitCsv:
    @pytest.mark.unit
    def test_flattens_and_strips(self):
        assert split_csv(["react,vue", " svelte ", ""]) == ["react", "vue", "svelte"]

    @pytest.mark.unit
    def test_none(self):
        assert split_csv(None) == []


# ---------------------------------------------------------------------------
# JSON I/O
# ---------------------------------------------------------------------------


class TestJsonIO:
    @pytest.mark.unit
    def test_load_list(self, tmp_path: Path):
        path = tmp_path / "data.json"
        path.write_text('[1, 2, 3]', encoding="utf-8")
        assert load_json_list(path) == [1, 2, 3]

    @pytest.mark.unit
    def test_load_non_list_raises(self, tmp_path: Path):
        path = tmp_path / "data.json"
        path.write_text('{"a": 1}', encoding="utf-8")
        with pytest.raises(ValueError, match="Expected a JSON array"):
            load_json_list(path)

    @pytest.mark.unit
    def test_load_invalid_json(self, tmp_path: Path):
        path = tmp_path / "data.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(json.JSONDecodeError):
            load_json_list(path)

    @pytest.mark.unit
    def test_load_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_json_list(tmp_path / "missing.json")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_save_json_creates_parents_and_pretty_prints(self, tmp_path: Path):
        path = tmp_path / "a" / "b" / "out.json"
        await save_json({"key": "value", "list": [1]}, path)
        text = path.read_text(encoding="utf-8")
        assert text.endswith("\n")
        assert '\n  "key": "value"' in text
        assert json.loads(text) == {"key": "value", "list": [1]}


# ---------------------------------------------------------------------------
# File system
# ---------------------------------------------------------------------------


class TestFileSystem:
    @pytest.mark.unit
    def test_ensure_dir(self, tmp_path: Path):
        path = ensure_dir(tmp_path / "x" / "y")
        assert path.is_dir()
        assert path == (tmp_path / "x" / "y").resolve()
        assert ensure_dir(tmp_path / "x" / "y") == path

    @pytest.mark.unit
    def test_remove_directory_tree(self, tmp_path: Path):
        tree = tmp_path / "tree"
        (tree / "nested").mkdir(parents=True)
        (tree / "nested" / "file.txt").write_text("x")
        assert remove_path(tree) is True
        assert not tree.exists()

    @pytest.mark.unit
    def test_remove_file(self, tmp_path: Path):
        path = tmp_path / "file.txt"
        path.write_text("x")
        assert remove_path(path) is True
        assert not path.exists()

    @pytest.mark.unit
    def test_remove_missing(self, tmp_path: Path):
        assert remove_path(tmp_path / "missing") is False

    @pytest.mark.unit
    def test_remove_symlink_keeps_target(self, tmp_path: Path):
        target = tmp_path / "target"
        target.mkdir()
        link = tmp_path / "link"
        link.symlink_to(target, target_is_directory=True)
        assert remove_path(link) is True
        assert target.is_dir()


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


class TestFormatDuration:
    @pytest.mark.unit
    def test_seconds_only(self):
        assert format_duration(3.7) == "3.7s"

    @pytest.mark.unit
    def test_minutes_and_seconds(self):
        assert format_duration(65.2) == "1m 5s"

    @pytest.mark.unit
    def test_hours(self):
        assert format_duration(3661.0) == "1h 1m 1s"

    @pytest.mark.unit
    def test_negative(self):
        assert format_duration(-5) == "0.0s"


class TestPreviewLines:
    @pytest.mark.unit
    def test_short_text_unchanged(self):
        assert preview_lines("a\n\nb\n", 5) == "a\nb"

    @pytest.mark.unit
    def test_truncates_with_marker(self):
        text = "\n".join(f"line {i}" for i in range(10))
        assert preview_lines(text, 3) == "line 0\nline 1\nline 2\n... (7 more lines)"

    @pytest.mark.unit
    def test_empty(self):
        assert preview_lines("", 3) == ""
