"""Tests for the command-line entry point (scaffold_matrix.cli)."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from scaffold_matrix.cli import build_parser, main
from scaffold_matrix.config import Config
from scaffold_matrix.matrix import matrix_size


@pytest.fixture
def config_file(harness_config: Config, tmp_path: Path) -> Path:
    return harness_config.save(tmp_path / "config.json")


class TestParser:
    @pytest.mark.unit
    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.suite == []
        assert args.limit is None
        assert args.write_matrix is None
        assert args.dry_run is False

    @pytest.mark.unit
    def test_optional_path_flags(self):
        args = build_parser().parse_args(["--write-matrix"])
        assert args.write_matrix == ""
        args = build_parser().parse_args(["--verify-matrix", "m.json"])
        assert args.verify_matrix == "m.json"

    @pytest.mark.unit
    def test_repeatable_filters(self):
        args = build_parser().parse_args(["--framework", "react,vue", "--framework", "html"])
        assert args.framework == ["react,vue", "html"]

    @pytest.mark.unit
    def test_invalid_limit_exits(self, clean_env):
        with pytest.raises(SystemExit) as excinfo:
            main(["--limit", "0"])
        assert excinfo.value.code == 2


class TestMaintenanceCommands:
    @pytest.mark.unit
    def test_list(self, capsys: pytest.CaptureFixture[str]):
        assert main(["--list"]) == 0
        out = capsys.readouterr().out
        assert "functional" in out
        assert "mongodb" in out

    @pytest.mark.unit
    def test_write_then_verify_matrix(self, tmp_path: Path, clean_env):
        path = tmp_path / "test-matrix.json"
        assert main(["--write-matrix", str(path)]) == 0
        assert len(json.loads(path.read_text(encoding="utf-8"))) == matrix_size()
        assert main(["--verify-matrix", str(path)]) == 0

    @pytest.mark.unit
    def test_verify_detects_tampering(self, tmp_path: Path, clean_env):
        path = tmp_path / "test-matrix.json"
        main(["--write-matrix", str(path)])
        records = json.loads(path.read_text(encoding="utf-8"))
        records[0]["skip"] = not records[0]["skip"]
        path.write_text(json.dumps(records), encoding="utf-8")
        assert main(["--verify-matrix", str(path)]) == 1

    @pytest.mark.unit
    def test_verify_missing_file(self, tmp_path: Path, clean_env):
        assert main(["--verify-matrix", str(tmp_path / "missing.json")]) == 1

    @pytest.mark.unit
    def test_clean_removes_only_generated_projects(self, tmp_path: Path, clean_env):
        (tmp_path / "test-matrix-react-none").mkdir()
        (tmp_path / "keep-me").mkdir()
        cache = tmp_path / ".test-dependency-cache" / "abc"
        cache.mkdir(parents=True)

        assert main(["--clean", "--work-dir", str(tmp_path)]) == 0

        assert not (tmp_path / "test-matrix-react-none").exists()
        assert (tmp_path / "keep-me").is_dir()
        assert not (tmp_path / ".test-dependency-cache").exists()

    @pytest.mark.unit
    def test_prune_empty_cache(self, tmp_path: Path, clean_env):
        assert main(["--prune-cache", "7", "--work-dir", str(tmp_path)]) == 0

    @pytest.mark.unit
    def test_invalid_config_file(self, tmp_path: Path, clean_env):
        path = tmp_path / "config.json"
        path.write_text("{broken", encoding="utf-8")
        assert main(["--config", str(path), "--dry-run"]) == 2


class TestRunCommand:
    @pytest.mark.unit
    def test_unknown_suite(self, clean_env):
        assert main(["--suite", "nope"]) == 2

    @pytest.mark.unit
    def test_unknown_framework(self, clean_env):
        assert main(["--framework", "angular"]) == 2

    @pytest.mark.unit
    def test_bad_matrix_file(self, tmp_path: Path, clean_env):
        assert main(["--matrix", str(tmp_path / "missing.json"), "--dry-run"]) == 1

    @pytest.mark.unit
    def test_dry_run_executes_nothing(
        self, config_file: Path, work_dir: Path, install_calls, capsys: pytest.CaptureFixture[str], clean_env
    ):
        assert main(["--config", str(config_file), "--suite", "html", "--limit", "2", "--dry-run"]) == 0
        out = capsys.readouterr().out
        assert "No commands were executed." in out
        assert list(work_dir.iterdir()) == []
        assert install_calls() == 0

    @pytest.mark.unit
    def test_empty_selection_is_not_an_error(self, tmp_path: Path, clean_env):
        path = tmp_path / "empty.json"
        path.write_text("[]", encoding="utf-8")
        assert main(["--matrix", str(path)]) == 0

    @pytest.mark.integration
    def test_passing_run_writes_report(self, config_file: Path, tmp_path: Path, clean_env):
        report = tmp_path / "reports" / "run.json"
        code = main(["--config", str(config_file), "--suite", "functional", "--limit", "1", "--report", str(report)])

        assert code == 0
        data = json.loads(report.read_text(encoding="utf-8"))
        assert data["total"] == 1
        assert data["passed"] == 1
        assert data["results"][0]["states"][-1] == "done"

    @pytest.mark.integration
    def test_failing_run_exit_code(self, config_file: Path, tmp_path: Path, make_entry, clean_env):
        # The fake generator never creates db/database.sqlite.
        matrix = tmp_path / "one-entry.json"
        matrix.write_text(json.dumps([make_entry(database_engine="sqlite").to_record()]), encoding="utf-8")
        assert main(["--config", str(config_file), "--matrix", str(matrix), "--suite", "sqlite"]) == 1

    @pytest.mark.unit
    def test_reports_left_out_skipped_combinations(self, capsys: pytest.CaptureFixture[str], clean_env):
        assert main(["--suite", "mongodb", "--limit", "1", "--dry-run"]) == 0
        assert "skip-annotated combination(s) left out" in capsys.readouterr().out

        assert main(["--suite", "mongodb", "--limit", "1", "--dry-run", "--include-skipped"]) == 0
        assert "left out" not in capsys.readouterr().out
