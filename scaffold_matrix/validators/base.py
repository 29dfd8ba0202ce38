"""Validator interface shared by functional and database checks."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from ..config import MANIFEST_FILENAME
from ..matrix import MatrixEntry
from ..results import ValidationResult


class ManifestError(ValueError):
    """Raised when ``package.json`` is missing or not a JSON object."""


def read_manifest(project_path: str | Path) -> dict[str, Any]:
    """Load ``<project>/package.json``.

    Raises:
        ManifestError: If the file cannot be read or parsed.
    """
    path = Path(project_path) / MANIFEST_FILENAME
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ManifestError(f"{MANIFEST_FILENAME} not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ManifestError(f"Failed to parse {MANIFEST_FILENAME}: {exc}") from exc
    if not isinstance(data, dict):
        raise ManifestError(f"{MANIFEST_FILENAME} must contain a JSON object")
    return data


def manifest_script(manifest: dict[str, Any], name: str) -> str | None:
    scripts = manifest.get("scripts")
    if not isinstance(scripts, dict):
        return None
    value = scripts.get(name)
    return value if isinstance(value, str) and value else None


class Validator:
    """An opaque check over a generated project."""

    name = "validator"

    async def validate(self, project_path: Path, entry: MatrixEntry) -> ValidationResult:
        raise NotImplementedError


class DatabaseValidator(Validator):
    """A validator that may start external services it must later stop."""

    name = "database"

    async def teardown(self) -> list[str]:
        """Stop anything started by :meth:`validate`.

        Returns:
            Warning messages for services that could not be stopped.
        """
        return []
