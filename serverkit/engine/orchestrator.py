"""Scaffold orchestration: validate, snapshot, execute, commit or roll back.

:class:`ScaffoldOrchestrator` is the template method every scaffolding
command runs through. Strategies supply the variable steps (validation,
execution, result shape); the orchestrator owns the snapshot and guarantees
that on every exit path the snapshot is either removed or, if restoring it
failed, left on disk with its location in the raised error.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from serverkit.config import Settings
from serverkit.engine.snapshot import SnapshotHandle, SnapshotStore
from serverkit.errors import (
    BackupCreationError,
    ExecutionError,
    GateCheckFailure,
    RollbackError,
    ScaffoldError,
)
from serverkit.utils import print_debug, print_warning

# ---------------------------------------------------------------------------
# Results and context
# ---------------------------------------------------------------------------


class ScaffoldResult(BaseModel):
    """Base result returned by every strategy."""

    success: bool = True
    files_created: list[str] = Field(default_factory=list)
    files_modified: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)


class ScaffoldState(str, Enum):
    CREATED = "created"
    VALIDATING = "validating"
    REJECTED = "rejected"
    VALIDATED = "validated"
    BACKING_UP = "backing_up"
    EXECUTING = "executing"
    COMMITTED = "committed"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"


ConfigT = TypeVar("ConfigT")
ResultT = TypeVar("ResultT", bound=ScaffoldResult)


@dataclass
class ScaffoldContext(Generic[ConfigT, ResultT]):
    """Per-run state shared between the orchestrator and its strategy."""

    project_root: Path
    config: ConfigT
    result: ResultT
    snapshot: SnapshotHandle | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    state: ScaffoldState = ScaffoldState.CREATED
    transitions: list[ScaffoldState] = field(default_factory=list)

    def transition(self, state: ScaffoldState) -> None:
        print_debug(f"{self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)


@dataclass(frozen=True)
class ScaffoldOptions:
    skip_backup: bool = False
    dry_run: bool = False


# ---------------------------------------------------------------------------
# Strategy contract
# ---------------------------------------------------------------------------


class ScaffoldStrategy(ABC, Generic[ConfigT, ResultT]):
    """Variable steps of a scaffolding operation."""

    @abstractmethod
    def validate(self, project_root: Path, config: ConfigT) -> None:
        """Check pre-conditions; raise :class:`ConfigValidationError` to reject.

        Must not touch the file system beyond reading it.
        """

    @abstractmethod
    def execute(self, context: ScaffoldContext[ConfigT, ResultT]) -> None:
        """Perform the mutation, recording files in ``context.result``."""

    @abstractmethod
    def needs_backup(self) -> bool:
        ...

    @abstractmethod
    def create_result(self) -> ResultT:
        ...


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class ScaffoldOrchestrator:
    """Runs a strategy under snapshot protection."""

    def __init__(self, store: SnapshotStore | None = None, settings: Settings | None = None) -> None:
        self.settings = settings or Settings()
        self.store = store or SnapshotStore(self.settings)

    def run(
        self,
        project_root: str | Path,
        config: ConfigT,
        strategy: ScaffoldStrategy[ConfigT, ResultT],
        options: ScaffoldOptions | None = None,
    ) -> ResultT:
        """Execute *strategy* against *project_root*.

        Raises:
            ConfigValidationError: Validation rejected the config. Nothing
                was touched.
            BackupCreationError: The snapshot could not be taken. Nothing
                was touched.
            ExecutionError: Execution failed (``GateCheckFailure`` when the
                post-mutation checks did). The project was restored when a
                snapshot existed.
            KeyboardInterrupt: Re-raised unchanged once the project is restored.
            RollbackError: Execution failed and restoring also failed. The
                snapshot is kept at the path in the error.
        """
        options = options or ScaffoldOptions()
        root = Path(project_root)
        context: ScaffoldContext[ConfigT, ResultT] = ScaffoldContext(
            project_root=root,
            config=config,
            result=strategy.create_result(),
        )

        context.transition(ScaffoldState.VALIDATING)
        try:
            strategy.validate(root, config)
        except Exception:
            context.transition(ScaffoldState.REJECTED)
            raise
        context.transition(ScaffoldState.VALIDATED)

        if options.dry_run:
            return strategy.create_result()

        if strategy.needs_backup() and not options.skip_backup:
            context.transition(ScaffoldState.BACKING_UP)
            try:
                context.snapshot = self.store.create(root)
            except BackupCreationError:
                raise
            except OSError as exc:
                raise BackupCreationError(f"Failed to create backup: {exc}") from exc

        context.transition(ScaffoldState.EXECUTING)
        try:
            strategy.execute(context)
        except BaseException as exc:
            self._rollback(context, exc)
            if isinstance(exc, ScaffoldError) or not isinstance(exc, Exception):
                raise
            raise ExecutionError(
                f"Scaffolding failed: {exc}",
                details={"errorType": type(exc).__name__},
            ) from exc

        context.transition(ScaffoldState.COMMITTED)
        if context.snapshot is not None:
            try:
                self.store.remove(context.snapshot)
            except OSError as exc:
                print_warning(
                    f"Changes applied, but the backup at {context.snapshot.path} "
                    f"could not be removed: {exc}"
                )
            context.snapshot = None

        return context.result

    def _rollback(self, context: ScaffoldContext[Any, Any], original: BaseException) -> None:
        snapshot = context.snapshot
        if snapshot is None:
            return

        context.transition(ScaffoldState.ROLLING_BACK)
        try:
            already_restored = isinstance(original, GateCheckFailure) and original.result.rolled_back
            if not already_restored:
                self.store.restore(snapshot, context.project_root)
            self.store.remove(snapshot)
        except Exception as cause:
            context.transition(ScaffoldState.ROLLBACK_FAILED)
            raise RollbackError(original, cause, snapshot.path) from original

        context.snapshot = None
        context.transition(ScaffoldState.ROLLED_BACK)


def run(
    project_root: str | Path,
    config: Any,
    strategy: ScaffoldStrategy[Any, ResultT],
    options: ScaffoldOptions | None = None,
    settings: Settings | None = None,
) -> ResultT:
    """Run *strategy* with a default orchestrator."""
    return ScaffoldOrchestrator(settings=settings).run(project_root, config, strategy, options)
