"""Result models for steps, scenarios and whole runs.

Stage failures are data: every stage produces a :class:`StepOutcome`, every
matrix entry a :class:`ScenarioResult`, and a run a :class:`RunSummary`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, computed_field

from .matrix import MatrixEntry


# ---------------------------------------------------------------------------
# Step / validation outcomes
# ---------------------------------------------------------------------------


class StepOutcome(BaseModel):
    """Outcome of one scenario stage (scaffold, install, checks, ...)."""

    step: str = Field(..., description="Stage name, e.g. 'scaffold' or 'install'")
    success: bool = Field(default=True)
    elapsed: float = Field(default=0.0, ge=0.0, description="Wall-clock seconds")
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    timed_out: bool = Field(default=False)
    detail: str = Field(default="", description="Short note shown on the progress line")

    @classmethod
    def from_messages(
        cls,
        step: str,
        errors: list[str],
        warnings: list[str] | None = None,
        elapsed: float = 0.0,
    ) -> "StepOutcome":
        """Validation-style outcome: successful exactly when *errors* is empty."""
        return cls(
            step=step,
            success=not errors,
            elapsed=elapsed,
            errors=list(errors),
            warnings=list(warnings or []),
        )


class ValidationResult(BaseModel):
    """What a validator reports for one project."""

    passed: bool = Field(default=True)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def from_messages(cls, errors: list[str], warnings: list[str] | None = None) -> "ValidationResult":
        return cls(passed=not errors, errors=list(errors), warnings=list(warnings or []))

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        """Concatenate two results; passes only if both passed."""
        return ValidationResult(
            passed=self.passed and other.passed,
            errors=self.errors + other.errors,
            warnings=self.warnings + other.warnings,
        )


# ---------------------------------------------------------------------------
# Scenario result
# ---------------------------------------------------------------------------


class ScenarioResult(BaseModel):
    """Everything recorded while running one matrix entry."""

    entry: MatrixEntry
    project_name: str = Field(default="")
    passed: bool = Field(default=False)
    skipped: bool = Field(default=False)
    skip_reason: str | None = Field(default=None)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    steps: list[StepOutcome] = Field(default_factory=list)
    states: list[str] = Field(default_factory=list, description="States visited, in order")
    elapsed: float = Field(default=0.0, ge=0.0)

    def record(self, outcome: StepOutcome) -> None:
        """Append a stage outcome and fold its messages into the scenario."""
        self.steps.append(outcome)
        self.errors.extend(outcome.errors)
        self.warnings.extend(outcome.warnings)

    @property
    def all_steps_passed(self) -> bool:
        return all(step.success for step in self.steps)


# ---------------------------------------------------------------------------
# Run summary
# ---------------------------------------------------------------------------


class RunSummary(BaseModel):
    """Aggregate over every scenario of a run."""

    results: list[ScenarioResult] = Field(default_factory=list)
    elapsed: float = Field(default=0.0, ge=0.0)

    @computed_field  # type: ignore[misc]
    @property
    def total(self) -> int:
        return len(self.results)

    @computed_field  # type: ignore[misc]
    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.passed and not r.skipped)

    @computed_field  # type: ignore[misc]
    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    @computed_field  # type: ignore[misc]
    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.passed and not r.skipped)

    @computed_field  # type: ignore[misc]
    @property
    def success_rate(self) -> float:
        """Percentage of executed (non-skipped) scenarios that passed."""
        executed = self.passed + self.failed
        if executed == 0:
            return 0.0
        return round(self.passed / executed * 100, 1)

    @property
    def exit_code(self) -> int:
        return 0 if self.failed == 0 else 1

    def failures(self) -> list[ScenarioResult]:
        return [r for r in self.results if not r.passed and not r.skipped]

    def summary_dict(self) -> dict[str, Any]:
        """Condensed summary suitable for the console table and JSON reports."""
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "success_rate": self.success_rate,
            "elapsed": round(self.elapsed, 2),
        }

    def save(self, path: Path) -> None:
        """Persist the full run to JSON, creating parent directories as needed."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2), encoding="utf-8")
