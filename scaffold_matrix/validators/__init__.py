"""Scaffold matrix -- Validators.

Opaque checks run against a generated project.  Each exposes
``async validate(project_path, entry) -> ValidationResult``; database
validators additionally expose ``async teardown()``.

Public API
----------
.. autoclass:: FunctionalChecks
.. autoclass:: StructureValidator
.. autoclass:: BuildValidator
.. autoclass:: ServerValidator
.. autoclass:: SQLiteValidator
.. autoclass:: DockerDatabaseValidator
"""

from .base import DatabaseValidator, ManifestError, Validator, read_manifest
from .database import (
    ENGINE_SPECS,
    DockerDatabaseValidator,
    EngineSpec,
    SQLiteValidator,
    database_validator_for,
    expected_table,
)
from .functional import (
    BuildValidator,
    FunctionalChecks,
    ServerValidator,
    StructureValidator,
    extract_compiler_errors,
)

__all__ = [
    # Interface
    "Validator",
    "DatabaseValidator",
    "ManifestError",
    "read_manifest",
    # Functional
    "FunctionalChecks",
    "StructureValidator",
    "BuildValidator",
    "ServerValidator",
    "extract_compiler_errors",
    # Database
    "SQLiteValidator",
    "DockerDatabaseValidator",
    "EngineSpec",
    "ENGINE_SPECS",
    "database_validator_for",
    "expected_table",
]
