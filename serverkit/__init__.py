"""serverkit -- transactional scaffolding for MCP server projects.

Adds tools, prompts, resources, Cloudflare bindings and authentication to an
existing project. Every change is validated, snapshotted, applied and
checked; a failure restores the project to its previous state.
"""

from serverkit.config import Settings
from serverkit.engine import ScaffoldOptions, ScaffoldOrchestrator, ScaffoldResult, run
from serverkit.errors import (
    BackupCreationError,
    BackupMissingError,
    ConfigValidationError,
    ExecutionError,
    ExitCode,
    GateCheckFailure,
    RollbackError,
    ScaffoldError,
)

__version__ = "0.1.0"

__all__ = [
    "BackupCreationError",
    "BackupMissingError",
    "ConfigValidationError",
    "ExecutionError",
    "ExitCode",
    "GateCheckFailure",
    "RollbackError",
    "ScaffoldError",
    "ScaffoldOptions",
    "ScaffoldOrchestrator",
    "ScaffoldResult",
    "Settings",
    "__version__",
    "run",
]
