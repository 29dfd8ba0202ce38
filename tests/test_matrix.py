"""Unit tests for matrix generation and annotation (scaffold_matrix.matrix)."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import pytest
from pydantic import ValidationError

from scaffold_matrix.matrix import (
    AXES,
    Axis,
    Constraint,
    MatrixEntry,
    annotate,
    annotate_all,
    expand,
    generate,
    load_matrix_file,
    matrix_size,
    verify_matrix,
    write_matrix_file,
)


@pytest.fixture(scope="module")
def matrix() -> list[MatrixEntry]:
    return generate()


class TestGenerate:
    @pytest.mark.unit
    def test_count_is_product_of_axis_cardinalities(self, matrix: list[MatrixEntry]):
        expected = 1
        for axis in AXES:
            expected *= len(axis.values)
        assert expected == 5 * 10 * 2 * 4 * 2 * 2 * 2 * 2
        assert len(matrix) == expected == matrix_size()

    @pytest.mark.unit
    def test_no_duplicates(self, matrix: list[MatrixEntry]):
        assert len({entry.axis_values() for entry in matrix}) == len(matrix)

    @pytest.mark.unit
    def test_deterministic(self, matrix: list[MatrixEntry]):
        assert [e.to_record() for e in generate()] == [e.to_record() for e in matrix]

    @pytest.mark.unit
    def test_last_axis_varies_fastest(self, matrix: list[MatrixEntry]):
        assert matrix[0].use_tailwind is True
        assert matrix[1].use_tailwind is False
        assert matrix[0].frontend == "react"
        assert matrix[-1].frontend == "htmx"

    @pytest.mark.unit
    def test_custom_axes(self):
        axes = (Axis("frontend", ("react", "vue")), Axis("use_tailwind", (True, False)))
        combos = expand(axes)
        assert combos == [
            {"frontend": "react", "use_tailwind": True},
            {"frontend": "react", "use_tailwind": False},
            {"frontend": "vue", "use_tailwind": True},
            {"frontend": "vue", "use_tailwind": False},
        ]

    @pytest.mark.unit
    def test_annotation_is_idempotent(self, matrix: list[MatrixEntry]):
        again = annotate_all(matrix)
        assert [e.to_record() for e in again] == [e.to_record() for e in matrix]

    @pytest.mark.unit
    def test_invalid_combinations_are_kept_and_annotated(self, matrix: list[MatrixEntry]):
        skipped = [e for e in matrix if e.skip]
        assert skipped
        assert all(e.skip_reason for e in skipped)
        assert all(e.skip_reason is None for e in matrix if not e.skip)


class TestConstraints:
    @pytest.mark.unit
    def test_drizzle_with_mongodb(self, make_entry: Callable[..., MatrixEntry]):
        entry = make_entry(orm="drizzle", database_engine="mongodb")
        assert entry.skip
        assert entry.skip_reason is not None
        assert "ORM drizzle is incompatible with database engine mongodb" in entry.skip_reason

    @pytest.mark.unit
    @pytest.mark.parametrize("engine", ["gel", "mysql", "postgresql", "sqlite", "singlestore"])
    def test_drizzle_compatible_engines(self, make_entry: Callable[..., MatrixEntry], engine: str):
        assert not make_entry(orm="drizzle", database_engine=engine).skip

    @pytest.mark.unit
    def test_engine_none_requires_host_none(self, make_entry: Callable[..., MatrixEntry]):
        entry = make_entry(database_engine="none", database_host="neon")
        assert entry.skip
        assert "requires a database engine" in (entry.skip_reason or "")

    @pytest.mark.unit
    def test_engine_none_plain_is_valid(self, make_entry: Callable[..., MatrixEntry]):
        assert not make_entry(database_engine="none").skip

    @pytest.mark.unit
    @pytest.mark.parametrize(
        ("host", "engine", "valid"),
        [
            ("neon", "postgresql", True),
            ("neon", "mysql", False),
            ("planetscale", "mysql", True),
            ("planetscale", "postgresql", True),
            ("planetscale", "sqlite", False),
            ("turso", "sqlite", True),
            ("turso", "postgresql", False),
        ],
    )
    def test_host_constraints(
        self, make_entry: Callable[..., MatrixEntry], host: str, engine: str, valid: bool
    ):
        assert make_entry(database_host=host, database_engine=engine).skip is not valid

    @pytest.mark.unit
    def test_auth_requires_supported_engine(self, make_entry: Callable[..., MatrixEntry]):
        assert not make_entry(auth_provider="absoluteAuth", database_engine="sqlite").skip
        assert not make_entry(auth_provider="absoluteAuth", database_engine="mongodb").skip
        entry = make_entry(auth_provider="absoluteAuth", database_engine="postgresql")
        assert entry.skip
        assert "absoluteAuth" in (entry.skip_reason or "")

    @pytest.mark.unit
    def test_multiple_reasons_joined_in_order(self, make_entry: Callable[..., MatrixEntry]):
        entry = make_entry(
            orm="drizzle", database_engine="mongodb", database_host="neon", auth_provider="none"
        )
        reasons = (entry.skip_reason or "").split("; ")
        assert len(reasons) == 2
        assert reasons[0].startswith("ORM drizzle")
        assert reasons[1].startswith("Database host neon")

    @pytest.mark.unit
    def test_cloud_hosts_require_env(self, make_entry: Callable[..., MatrixEntry]):
        assert make_entry(database_host="turso").required_env == ["DATABASE_URL", "TURSO_AUTH_TOKEN"]
        neon = make_entry(database_host="neon", database_engine="postgresql")
        assert neon.required_env == ["DATABASE_URL"]
        assert not neon.skip
        assert make_entry().required_env == []

    @pytest.mark.unit
    def test_annotate_recomputes_from_axes(self, make_entry: Callable[..., MatrixEntry]):
        entry = make_entry().model_copy(update={"skip": True, "skip_reason": "stale"})
        fresh = annotate(entry)
        assert fresh.skip is False
        assert fresh.skip_reason is None

    @pytest.mark.unit
    def test_custom_constraint(self, make_entry: Callable[..., MatrixEntry]):
        class NoVue(Constraint):
            def check(self, entry):
                return "vue disabled" if entry.frontend == "vue" else None

        assert annotate(make_entry(frontend="vue"), [NoVue()]).skip_reason == "vue disabled"
        assert not annotate(make_entry(frontend="react"), [NoVue()]).skip


class TestMatrixEntry:
    @pytest.mark.unit
    def test_rejects_values_outside_axis(self, make_entry: Callable[..., MatrixEntry]):
        with pytest.raises(ValidationError):
            make_entry(frontend="angular")

    @pytest.mark.unit
    def test_record_uses_camel_case(self, make_entry: Callable[..., MatrixEntry]):
        record = make_entry(database_host="turso").to_record()
        assert record["databaseEngine"] == "sqlite"
        assert record["databaseHost"] == "turso"
        assert record["useTailwind"] is False
        assert record["skipReason"] is None
        assert record["requiredEnv"] == ["DATABASE_URL", "TURSO_AUTH_TOKEN"]

    @pytest.mark.unit
    def test_label(self, make_entry: Callable[..., MatrixEntry]):
        entry = make_entry(frontend="react", code_quality_tool="eslint+prettier", use_tailwind=True)
        assert entry.label() == "react/sqlite/none/none/none/eslint+prettier/tailwind"


class TestMatrixFile:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_write_then_load(self, tmp_path: Path, matrix: list[MatrixEntry]):
        path = await write_matrix_file(matrix, tmp_path / "test-matrix.json")
        text = path.read_text(encoding="utf-8")
        assert text.endswith("\n")
        data = json.loads(text)
        assert isinstance(data, list)
        assert len(data) == len(matrix)
        assert "databaseEngine" in data[0]

        loaded = load_matrix_file(path)
        assert verify_matrix(loaded) == []

    @pytest.mark.unit
    def test_load_rejects_non_array(self, tmp_path: Path):
        path = tmp_path / "matrix.json"
        path.write_text('{"frontend": "react"}', encoding="utf-8")
        with pytest.raises(ValueError):
            load_matrix_file(path)

    @pytest.mark.unit
    def test_verify_reports_missing_and_duplicate_entries(self, matrix: list[MatrixEntry]):
        broken = [*matrix[:-1], matrix[0]]
        problems = verify_matrix(broken)
        assert any("duplicate" in p for p in problems)
        # Count still matches: one missing, one duplicated.
        assert not any(p.startswith("expected") for p in problems)

        problems = verify_matrix(matrix[:10])
        assert any(p.startswith(f"expected {len(matrix)} entries") for p in problems)

    @pytest.mark.unit
    def test_verify_reports_stale_annotations(self, matrix: list[MatrixEntry]):
        stale = list(matrix)
        index = next(i for i, e in enumerate(stale) if not e.skip)
        stale[index] = stale[index].model_copy(update={"skip": True, "skip_reason": "manual"})
        problems = verify_matrix(stale)
        assert len(problems) == 1
        assert problems[0].startswith(f"[{index}] stale annotations")
