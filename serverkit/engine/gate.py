"""Post-mutation validation gate.

The gate runs an ordered list of checks against a project root and decides
commit versus rollback. A check that raises counts as failed, critical
failures fail the gate, advisory failures are only recorded. ``run`` never
raises: a failed rollback is reported in the result's ``errors``.
"""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable

import tomlkit
from pydantic import BaseModel, ConfigDict, Field

from serverkit import jsonc
from serverkit.engine.anchors import Anchor, AnchorResolver
from serverkit.engine.snapshot import SnapshotHandle, SnapshotStore
from serverkit.errors import GateCheckFailure
from serverkit.utils import print_debug, print_warning, read_text, run_command

Predicate = Callable[[Path], bool]


@dataclass(frozen=True)
class ValidationCheck:
    """A named predicate over the project root."""

    name: str
    description: str
    predicate: Predicate
    critical: bool = True
    error_message: str = ""
    slow: bool = False  # needs external tooling; skipped by quick_validate


@dataclass(frozen=True)
class GateOptions:
    project_root: Path
    snapshot: SnapshotHandle | None = None
    rollback_on_failure: bool = True


class GateResult(BaseModel):
    """Outcome of one gate run."""

    model_config = ConfigDict(frozen=True)

    passed: bool
    passed_checks: list[str] = Field(default_factory=list)
    failed_checks: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    rolled_back: bool = False

    def raise_for_failure(self, context: str = "Post-mutation validation failed") -> None:
        """Raise :class:`GateCheckFailure` when the gate did not pass."""
        if not self.passed:
            raise GateCheckFailure(self, context=context)


class ValidationGate:
    """Runs checks and, on critical failure, restores the snapshot."""

    def __init__(self, store: SnapshotStore | None = None) -> None:
        self.store = store or SnapshotStore()

    def run(self, checks: Iterable[ValidationCheck], options: GateOptions) -> GateResult:
        root = Path(options.project_root)
        passed = True
        passed_checks: list[str] = []
        failed_checks: list[str] = []
        errors: list[str] = []

        for check in checks:
            reason = check.error_message or check.description
            try:
                ok = bool(check.predicate(root))
            except Exception as exc:  # a crashing check is a failed check
                ok = False
                reason = f"{reason} ({type(exc).__name__}: {exc})"

            if ok:
                passed_checks.append(check.name)
                print_debug(f"check passed: {check.name}")
                continue

            failed_checks.append(check.name)
            if check.critical:
                passed = False
                errors.append(f"{check.name}: {reason}")
            else:
                errors.append(f"{check.name} (advisory): {reason}")
                print_warning(f"Advisory check failed: {check.name}: {reason}")

        rolled_back = False
        if not passed and options.rollback_on_failure and options.snapshot is not None:
            try:
                self.store.restore(options.snapshot, root)
                self.store.remove(options.snapshot)
                rolled_back = True
            except Exception as exc:
                errors.append(f"Rollback failed: {exc}")

        return GateResult(
            passed=passed,
            passed_checks=passed_checks,
            failed_checks=failed_checks,
            errors=errors,
            rolled_back=rolled_back,
        )

    def validate_critical(self, checks: Iterable[ValidationCheck], options: GateOptions) -> GateResult:
        """Run only critical checks; never rolls back."""
        return self.run(
            [c for c in checks if c.critical],
            dataclasses.replace(options, rollback_on_failure=False),
        )

    def quick_validate(self, checks: Iterable[ValidationCheck], options: GateOptions) -> GateResult:
        """Run every check except slow ones; never rolls back."""
        return self.run(
            [c for c in checks if not c.slow],
            dataclasses.replace(options, rollback_on_failure=False),
        )


# ---------------------------------------------------------------------------
# Check builders
# ---------------------------------------------------------------------------


def file_exists(rel_path: str, *, critical: bool = True, name: str | None = None) -> ValidationCheck:
    return ValidationCheck(
        name=name or f"file-exists:{rel_path}",
        description=f"{rel_path} exists",
        predicate=lambda root: (root / rel_path).is_file(),
        critical=critical,
        error_message=f"Expected file not found: {rel_path}",
    )


def contains_all(
    rel_path: str,
    needles: Iterable[str],
    *,
    critical: bool = True,
    name: str | None = None,
) -> ValidationCheck:
    wanted = list(needles)

    def predicate(root: Path) -> bool:
        text = read_text(root / rel_path)
        return all(needle in text for needle in wanted)

    return ValidationCheck(
        name=name or f"contains:{rel_path}",
        description=f"{rel_path} contains {', '.join(wanted)}",
        predicate=predicate,
        critical=critical,
        error_message=f"{rel_path} is missing expected content: {', '.join(wanted)}",
    )


def anchors_present(
    anchors: Iterable[Anchor],
    *,
    critical: bool = False,
    name: str = "anchors-present",
) -> ValidationCheck:
    wanted = list(anchors)
    resolver = AnchorResolver()

    def predicate(root: Path) -> bool:
        return all(resolver.has_anchor(root / a.path, a) for a in wanted)

    return ValidationCheck(
        name=name,
        description="Anchor markers still present: " + ", ".join(a.category for a in wanted),
        predicate=predicate,
        critical=critical,
        error_message="Anchor markers missing after mutation; future additions may fall back",
    )


def max_occurrences(
    rel_path: str,
    needle: str,
    limit: int = 1,
    *,
    critical: bool = True,
    name: str | None = None,
) -> ValidationCheck:
    return ValidationCheck(
        name=name or f"max-occurrences:{rel_path}",
        description=f"'{needle}' appears at most {limit} time(s) in {rel_path}",
        predicate=lambda root: read_text(root / rel_path).count(needle) <= limit,
        critical=critical,
        error_message=f"Duplicate '{needle}' in {rel_path}",
    )


def jsonc_parses(rel_path: str, *, critical: bool = True, name: str | None = None) -> ValidationCheck:
    def predicate(root: Path) -> bool:
        jsonc.load(root / rel_path)
        return True

    return ValidationCheck(
        name=name or f"parses:{rel_path}",
        description=f"{rel_path} parses as JSON/JSONC",
        predicate=predicate,
        critical=critical,
        error_message=f"{rel_path} is no longer valid JSON",
    )


def json_parses(rel_path: str, *, critical: bool = True, name: str | None = None) -> ValidationCheck:
    def predicate(root: Path) -> bool:
        json.loads(read_text(root / rel_path))
        return True

    return ValidationCheck(
        name=name or f"parses:{rel_path}",
        description=f"{rel_path} parses as JSON",
        predicate=predicate,
        critical=critical,
        error_message=f"{rel_path} is no longer valid JSON",
    )


def toml_parses(rel_path: str, *, critical: bool = True, name: str | None = None) -> ValidationCheck:
    def predicate(root: Path) -> bool:
        tomlkit.parse(read_text(root / rel_path))
        return True

    return ValidationCheck(
        name=name or f"parses:{rel_path}",
        description=f"{rel_path} parses as TOML",
        predicate=predicate,
        critical=critical,
        error_message=f"{rel_path} is no longer valid TOML",
    )


def command_succeeds(
    cmd: str | list[str],
    *,
    name: str,
    description: str,
    timeout: int = 120,
    critical: bool = True,
) -> ValidationCheck:
    """Check that an external command exits 0 within *timeout* seconds."""

    def predicate(root: Path) -> bool:
        rc, _stdout, stderr = run_command(cmd, cwd=root, timeout=timeout)
        if rc != 0:
            print_debug(f"{name} exited {rc}: {stderr[:500]}")
        return rc == 0

    return ValidationCheck(
        name=name,
        description=description,
        predicate=predicate,
        critical=critical,
        error_message=f"{description} failed",
        slow=True,
    )
