"""Scaffold matrix -- scaffold, install and validate generated projects.

Runs a project generator across a combinatorial configuration matrix,
caches installed dependency trees by content fingerprint, drives every
child process under a bounded timeout and tears everything down again.

Public API
----------
.. autoclass:: Config
.. autoclass:: MatrixEntry
.. autoclass:: DependencyCache
.. autoclass:: ReadinessPoller
.. autoclass:: ScenarioRunner
.. autofunction:: generate
.. autofunction:: run_process
"""

from .cache import CacheResolution, DependencyCache, DependencyFingerprint, DependencyInstallError
from .config import Config, ReadinessConfig, TimeoutConfig
from .matrix import AXES, CONSTRAINTS, MatrixEntry, annotate, generate
from .process import ProcessResult, run_process
from .readiness import ReadinessPoller
from .results import RunSummary, ScenarioResult, StepOutcome, ValidationResult
from .runner import ScenarioRunner, ScenarioState, build_runner

__version__ = "0.1.0"

__all__ = [
    # Config
    "Config",
    "TimeoutConfig",
    "ReadinessConfig",
    # Matrix
    "AXES",
    "CONSTRAINTS",
    "MatrixEntry",
    "annotate",
    "generate",
    # Processes
    "ProcessResult",
    "run_process",
    "ReadinessPoller",
    # Cache
    "DependencyCache",
    "DependencyFingerprint",
    "DependencyInstallError",
    "CacheResolution",
    # Runner
    "ScenarioRunner",
    "ScenarioState",
    "build_runner",
    "ScenarioResult",
    "StepOutcome",
    "ValidationResult",
    "RunSummary",
]
