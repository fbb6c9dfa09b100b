"""Typed error taxonomy for scaffolding operations.

Callers match on the exception class, never on message text. Every error
carries the process exit code the CLI uses and serialises to the JSON error
object printed in ``--json`` mode.
"""

from __future__ import annotations

from enum import IntEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from serverkit.engine.gate import GateResult


class ExitCode(IntEnum):
    """Process exit codes for CLI operations."""
    SUCCESS = 0
    VALIDATION_ERROR = 1
    RUNTIME_ERROR = 2
    FILESYSTEM_ERROR = 3
    ROLLBACK_FAILED = 4


class ScaffoldError(Exception):
    """Base class for every error surfaced by serverkit."""

    exit_code: ExitCode = ExitCode.RUNTIME_ERROR

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.suggestion = suggestion
        self.details = details or {}
        super().__init__(message)

    @property
    def error_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the well-formed error object used in JSON mode."""
        payload: dict[str, Any] = {
            "success": False,
            "error": self.message,
            "errorCode": int(self.exit_code),
            "errorType": self.error_type,
        }
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        if self.details:
            payload["details"] = self.details
        return payload


class ConfigValidationError(ScaffoldError):
    """Pre-condition failed; nothing was mutated and the call can be retried."""

    exit_code = ExitCode.VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        problems: list[str] | None = None,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.problems = list(problems or [])
        if self.problems:
            message = message + "\n" + "\n".join(f"  - {p}" for p in self.problems)
            details = {**(details or {}), "problems": self.problems}
        super().__init__(message, suggestion=suggestion, details=details)


class BackupCreationError(ScaffoldError):
    """Snapshot could not be created; no mutation was attempted."""

    exit_code = ExitCode.FILESYSTEM_ERROR


class BackupMissingError(ScaffoldError):
    """A snapshot directory vanished before it could be restored."""

    exit_code = ExitCode.FILESYSTEM_ERROR

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        super().__init__(
            f"Backup directory not found: {self.path}",
            details={"snapshot": str(self.path)},
        )


class ExecutionError(ScaffoldError):
    """Mutation failed partway; rolled back when a snapshot existed."""

    exit_code = ExitCode.RUNTIME_ERROR


class GateCheckFailure(ExecutionError):
    """Critical post-mutation checks failed."""

    def __init__(self, result: "GateResult", context: str = "Post-mutation validation failed") -> None:
        self.result = result
        super().__init__(
            f"{context}:\n" + "\n".join(f"  - {e}" for e in result.errors),
            suggestion="Inspect the failed checks; the project was not changed if a backup was taken",
            details={
                "failedChecks": list(result.failed_checks),
                "passedChecks": list(result.passed_checks),
            },
        )


class RollbackError(ScaffoldError):
    """Restoring the snapshot failed after an execution error.

    This is the only error that can leave the project mutated. The snapshot
    is left on disk and its location is part of the message.
    """

    exit_code = ExitCode.ROLLBACK_FAILED

    def __init__(
        self,
        original: BaseException,
        rollback_cause: BaseException,
        snapshot_path: Path,
    ) -> None:
        self.original = original
        self.rollback_cause = rollback_cause
        self.snapshot_path = Path(snapshot_path)
        super().__init__(
            f"Original error: {original}\n"
            f"Rollback also failed: {rollback_cause}\n"
            f"Snapshot kept for manual recovery at: {self.snapshot_path}",
            suggestion=(
                f"Restore manually with 'serverkit backups restore {self.snapshot_path.name}' "
                f"or copy the files from {self.snapshot_path}"
            ),
            details={
                "originalError": str(original),
                "originalErrorType": type(original).__name__,
                "rollbackError": str(rollback_cause),
                "snapshot": str(self.snapshot_path),
            },
        )


def error_payload(error: BaseException) -> dict[str, Any]:
    """Return the JSON error object for any exception."""
    if isinstance(error, ScaffoldError):
        return error.to_dict()
    return {
        "success": False,
        "error": str(error),
        "errorCode": int(ExitCode.RUNTIME_ERROR),
        "errorType": "UnknownError",
    }


def exit_code_for(error: BaseException) -> int:
    """Return the process exit code for any exception."""
    if isinstance(error, ScaffoldError):
        return int(error.exit_code)
    return int(ExitCode.RUNTIME_ERROR)
