"""Transactional mutation engine: snapshots, anchors, gate and orchestrator."""

from serverkit.engine.anchors import (
    Anchor,
    AnchorResolver,
    AnchorTable,
    InsertOutcome,
    Position,
)
from serverkit.engine.gate import (
    GateOptions,
    GateResult,
    ValidationCheck,
    ValidationGate,
)
from serverkit.engine.orchestrator import (
    ScaffoldContext,
    ScaffoldOptions,
    ScaffoldOrchestrator,
    ScaffoldResult,
    ScaffoldState,
    ScaffoldStrategy,
    run,
)
from serverkit.engine.snapshot import SnapshotHandle, SnapshotStore

__all__ = [
    "Anchor",
    "AnchorResolver",
    "AnchorTable",
    "GateOptions",
    "GateResult",
    "InsertOutcome",
    "Position",
    "ScaffoldContext",
    "ScaffoldOptions",
    "ScaffoldOrchestrator",
    "ScaffoldResult",
    "ScaffoldState",
    "ScaffoldStrategy",
    "SnapshotHandle",
    "SnapshotStore",
    "ValidationCheck",
    "ValidationGate",
    "run",
]
