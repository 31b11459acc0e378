"""Timestamped sibling-directory backups taken before any source or project mutation."""

from __future__ import annotations

import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import structlog

from cami.errors import BackupError, NotFoundError

log = structlog.get_logger()

BACKUP_PREFIX = ".cami-backup-"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
DEFAULT_KEEP_RECENT = 3
CLEANUP_THRESHOLD = 10


@dataclass
class BackupInfo:
    path: Path
    timestamp: datetime
    size_bytes: int
    sequence: int = 0


@dataclass
class ArchiveAnalysis:
    total_backups: int = 0
    total_size_bytes: int = 0
    oldest_backup: datetime | None = None
    newest_backup: datetime | None = None
    backups: list[BackupInfo] = field(default_factory=list)


@dataclass
class CleanupResult:
    removed_count: int = 0
    freed_bytes: int = 0
    kept_backups: list[Path] = field(default_factory=list)


def _prefix_for(target: Path) -> str:
    return f"{BACKUP_PREFIX}{target.name}-"


def _name_pattern(target: Path) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(_prefix_for(target))}(\d{{8}}-\d{{6}})(?:-(\d+))?$")


def create_backup(target_path: Path | str) -> Path:
    """Copy ``target_path`` to ``.cami-backup-<name>-<timestamp>`` next to it.

    Returns the backup directory. A partial copy is removed before the
    error is raised.
    """
    target = Path(target_path).resolve()
    if not target.exists():
        raise NotFoundError(f"backup target does not exist: {target}")
    if not target.is_dir():
        raise BackupError(f"backup target is not a directory: {target}")

    base = f"{_prefix_for(target)}{datetime.now().strftime(TIMESTAMP_FORMAT)}"
    backup_path = target.parent / base
    seq = 1
    while backup_path.exists():
        backup_path = target.parent / f"{base}-{seq}"
        seq += 1

    try:
        shutil.copytree(target, backup_path, symlinks=True)
    except (OSError, shutil.Error) as e:
        shutil.rmtree(backup_path, ignore_errors=True)
        raise BackupError(f"failed to back up {target}: {e}") from e

    log.info("backup_created", target=str(target), backup=str(backup_path))
    return backup_path


def list_backups(target_path: Path | str) -> list[BackupInfo]:
    """Backups of ``target_path``, newest first."""
    target = Path(target_path).resolve()
    parent = target.parent
    if not parent.is_dir():
        raise NotFoundError(f"directory does not exist: {parent}")

    pattern = _name_pattern(target)
    backups: list[BackupInfo] = []
    for entry in parent.iterdir():
        if not entry.is_dir():
            continue
        match = pattern.match(entry.name)
        if not match:
            continue
        try:
            timestamp = datetime.strptime(match.group(1), TIMESTAMP_FORMAT)
        except ValueError:
            timestamp = datetime.fromtimestamp(entry.stat().st_mtime)
        backups.append(
            BackupInfo(
                path=entry,
                timestamp=timestamp,
                size_bytes=_dir_size(entry),
                sequence=int(match.group(2) or 0),
            )
        )

    backups.sort(key=lambda b: (b.timestamp, b.sequence), reverse=True)
    return backups


def analyze_archive(target_path: Path | str) -> ArchiveAnalysis:
    backups = list_backups(target_path)
    if not backups:
        return ArchiveAnalysis()
    return ArchiveAnalysis(
        total_backups=len(backups),
        total_size_bytes=sum(b.size_bytes for b in backups),
        newest_backup=backups[0].timestamp,
        oldest_backup=backups[-1].timestamp,
        backups=backups,
    )


def cleanup_backups(
    target_path: Path | str, keep_recent: int = DEFAULT_KEEP_RECENT
) -> CleanupResult:
    """Delete all but the ``keep_recent`` newest backups of ``target_path``."""
    if keep_recent <= 0:
        keep_recent = DEFAULT_KEEP_RECENT

    backups = list_backups(target_path)
    result = CleanupResult(kept_backups=[b.path for b in backups[:keep_recent]])

    for info in backups[keep_recent:]:
        try:
            shutil.rmtree(info.path)
        except OSError as e:
            raise BackupError(f"failed to remove backup {info.path}: {e}") from e
        result.removed_count += 1
        result.freed_bytes += info.size_bytes
        log.info("backup_removed", backup=str(info.path))

    return result


def restore_backup(backup_path: Path | str, target_path: Path | str) -> None:
    """Replace ``target_path`` with the contents of ``backup_path``."""
    backup = Path(backup_path)
    target = Path(target_path)
    if not backup.exists():
        raise NotFoundError(f"backup does not exist: {backup}")
    if not backup.is_dir():
        raise BackupError(f"backup is not a directory: {backup}")
    if not backup.name.startswith(BACKUP_PREFIX):
        raise BackupError(f"not a valid backup directory: {backup}")

    try:
        if target.exists():
            shutil.rmtree(target)
        shutil.copytree(backup, target, symlinks=True)
    except (OSError, shutil.Error) as e:
        raise BackupError(f"failed to restore {backup} to {target}: {e}") from e

    log.info("backup_restored", backup=str(backup), target=str(target))


def should_suggest_cleanup(target_path: Path | str, threshold: int = CLEANUP_THRESHOLD) -> bool:
    return len(list_backups(target_path)) >= threshold


def _dir_size(path: Path) -> int:
    total = 0
    for item in path.rglob("*"):
        if item.is_file() and not item.is_symlink():
            total += item.stat().st_size
    return total
