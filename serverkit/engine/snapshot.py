"""Point-in-time snapshots of a project tree.

A snapshot is a plain directory copy named ``.backup-<purpose>-<epoch-ms>``
at the project root. It holds the generated-source subtrees and an allow-list
of top-level files, plus a small manifest recording which allow-listed
entries did not exist yet, so a restore can also delete what a failed
mutation created. Snapshots are safe to inspect or delete by hand.
"""

from __future__ import annotations

import json
import re
import shutil
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from serverkit.config import Settings
from serverkit.errors import BackupCreationError, BackupMissingError
from serverkit.utils import print_debug

MANIFEST_NAME = ".snapshot.json"


@dataclass(frozen=True)
class SnapshotHandle:
    """Identifies one snapshot directory."""

    path: Path
    purpose: str
    created_ms: int

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def created_at(self) -> str:
        """ISO-8601 UTC timestamp derived from the directory name."""
        return datetime.fromtimestamp(self.created_ms / 1000, tz=timezone.utc).isoformat()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": str(self.path),
            "purpose": self.purpose,
            "createdAt": self.created_at,
        }


class SnapshotStore:
    """Creates, restores, removes and lists project snapshots.

    The store is stateless between calls: everything it needs to restore is
    inside the snapshot directory, so a handle recovered with :meth:`list`
    after a crash restores exactly like a fresh one.
    """

    def __init__(self, settings: Settings | None = None, purpose: str | None = None) -> None:
        settings = settings or Settings()
        self.source_dirs = list(settings.source_dirs)
        self.backup_files = list(settings.backup_files)
        if settings.metadata_file not in self.backup_files:
            self.backup_files.append(settings.metadata_file)
        self.prefix = settings.backup_prefix
        self.purpose = purpose or settings.backup_purpose
        self._name_re = re.compile(rf"^{re.escape(self.prefix)}-([a-z][a-z0-9]*)-(\d+)$")

    # -- Public API --------------------------------------------------------

    def create(self, project_root: str | Path) -> SnapshotHandle:
        """Copy the source subtrees and allow-listed files into a new snapshot.

        Raises:
            BackupCreationError: If the root is missing or any copy fails. A
                partially written snapshot directory is removed first.
        """
        root = Path(project_root)
        if not root.is_dir():
            raise BackupCreationError(
                f"Project root not found: {root}",
                details={"projectRoot": str(root)},
            )

        created_ms = int(time.time() * 1000)
        target = root / self._dir_name(created_ms)
        while target.exists():
            created_ms += 1
            target = root / self._dir_name(created_ms)

        dirs: list[str] = []
        files: list[str] = []
        absent: list[str] = []
        try:
            target.mkdir()
            for name in self.source_dirs:
                source = root / name
                if source.is_dir():
                    shutil.copytree(source, target / name, symlinks=True)
                    dirs.append(name)
                elif not source.exists():
                    absent.append(name)
            for name in self.backup_files:
                source = root / name
                if source.is_file():
                    shutil.copy2(source, target / name)
                    files.append(name)
                elif not source.exists():
                    absent.append(name)
            manifest = {
                "purpose": self.purpose,
                "createdMs": created_ms,
                "dirs": dirs,
                "files": files,
                "absent": absent,
            }
            (target / MANIFEST_NAME).write_text(json.dumps(manifest, indent=2), encoding="utf-8")
        except OSError as exc:
            shutil.rmtree(target, ignore_errors=True)
            raise BackupCreationError(
                f"Failed to create backup at {target}: {exc}",
                suggestion="Check free disk space and write permissions on the project root",
                details={"snapshot": str(target)},
            ) from exc

        print_debug(f"snapshot {target.name}: dirs={dirs} files={files}")
        return SnapshotHandle(path=target, purpose=self.purpose, created_ms=created_ms)

    def restore(self, handle: SnapshotHandle, project_root: str | Path) -> None:
        """Restore the project from *handle*.

        Source subtrees are replaced wholesale (delete, then copy back), so
        anything added to them since the snapshot is gone afterwards.
        Top-level files are overwritten; allow-listed entries that did not
        exist at snapshot time are deleted.

        Raises:
            BackupMissingError: If the snapshot directory no longer exists.
        """
        if not handle.path.is_dir():
            raise BackupMissingError(handle.path)

        root = Path(project_root)
        manifest = self._read_manifest(handle)

        for name in manifest["dirs"]:
            target = root / name
            _delete(target)
            shutil.copytree(handle.path / name, target, symlinks=True)

        for name in manifest["files"]:
            shutil.copy2(handle.path / name, root / name)

        for name in manifest["absent"]:
            _delete(root / name)

        print_debug(f"restored {handle.name} into {root}")

    def remove(self, handle: SnapshotHandle) -> None:
        """Delete the snapshot directory. Removing twice is a no-op."""
        if handle.path.exists():
            shutil.rmtree(handle.path)

    def list(self, project_root: str | Path, purpose: str | None = None) -> list[SnapshotHandle]:
        """Return unresolved snapshots under *project_root*, newest first."""
        root = Path(project_root)
        if not root.is_dir():
            return []

        handles: list[SnapshotHandle] = []
        for entry in root.iterdir():
            handle = self._parse(entry)
            if handle is None:
                continue
            if purpose is not None and handle.purpose != purpose:
                continue
            handles.append(handle)

        return sorted(handles, key=lambda h: (h.created_ms, h.name), reverse=True)

    def find(self, project_root: str | Path, name: str) -> SnapshotHandle:
        """Resolve a snapshot directory name to its handle.

        Raises:
            BackupMissingError: If no snapshot of that name exists.
        """
        candidate = Path(project_root) / name
        handle = self._parse(candidate)
        if handle is None:
            raise BackupMissingError(candidate)
        return handle

    # -- Internals ---------------------------------------------------------

    def _dir_name(self, created_ms: int) -> str:
        return f"{self.prefix}-{self.purpose}-{created_ms}"

    def _parse(self, path: Path) -> SnapshotHandle | None:
        match = self._name_re.match(path.name)
        if match is None or not path.is_dir():
            return None
        return SnapshotHandle(path=path, purpose=match.group(1), created_ms=int(match.group(2)))

    def _read_manifest(self, handle: SnapshotHandle) -> dict[str, list[str]]:
        manifest_path = handle.path / MANIFEST_NAME
        if manifest_path.is_file():
            raw = json.loads(manifest_path.read_text(encoding="utf-8"))
            return {
                "dirs": list(raw.get("dirs", [])),
                "files": list(raw.get("files", [])),
                "absent": list(raw.get("absent", [])),
            }

        # Hand-made or foreign snapshot: restore whatever it contains.
        dirs: list[str] = []
        files: list[str] = []
        for entry in sorted(handle.path.iterdir()):
            if entry.is_dir():
                dirs.append(entry.name)
            elif entry.is_file():
                files.append(entry.name)
        return {"dirs": dirs, "files": files, "absent": []}


def _delete(path: Path) -> None:
    """Remove a file, symlink or directory tree if present."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)
