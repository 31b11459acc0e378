"""Detect drift between the sources directory and the configured sources."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

import structlog

from cami.agents import count_agents
from cami.config import AgentSource, CamiConfig, ConfigStore, GitConfig
from cami.errors import ConflictError, NotFoundError
from cami.git import GitClient
from cami.models import BatchOutcome, OutcomeStatus

log = structlog.get_logger()


class ReconcileMode(StrEnum):
    CHECK_ONLY = "check-only"
    MANUAL = "manual"
    AUTO_ADD = "auto-add"


@dataclass
class UntrackedSource:
    name: str
    path: str
    agent_count: int = 0
    has_git: bool = False
    git_remote: str = ""


@dataclass
class ReconcileResult:
    total_on_disk: int = 0
    total_in_config: int = 0
    untracked: list[UntrackedSource] = field(default_factory=list)
    orphaned: list[str] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return not self.untracked and not self.orphaned


def reconcile_sources(store: ConfigStore, config: CamiConfig, git: GitClient) -> ReconcileResult:
    """Compare the non-hidden subdirectories of the sources directory with the config.

    A directory is untracked when neither its absolute path nor its name
    matches a configured source. A configured source is orphaned when its
    path no longer exists. Nothing is modified.
    """
    sources_dir = config.resolved_sources_dir()
    if not sources_dir.is_dir():
        raise NotFoundError(f"sources directory does not exist: {sources_dir}")

    configured = store.load().agent_sources
    configured_paths = {_abs(s.path) for s in configured}
    configured_names = {s.name for s in configured}

    result = ReconcileResult(total_in_config=len(configured))

    for entry in sorted(sources_dir.iterdir()):
        if not entry.is_dir() or entry.name.startswith("."):
            continue
        result.total_on_disk += 1

        if _abs(entry) in configured_paths or entry.name in configured_names:
            continue

        remote = git.remote_url(entry)
        result.untracked.append(
            UntrackedSource(
                name=entry.name,
                path=str(entry),
                agent_count=count_agents(entry),
                has_git=(entry / ".git").exists(),
                git_remote=remote,
            )
        )

    for source in configured:
        if not Path(source.path).expanduser().exists():
            result.orphaned.append(source.name)

    log.info(
        "sources_reconciled",
        untracked=len(result.untracked),
        orphaned=len(result.orphaned),
    )
    return result


def add_untracked_sources(
    store: ConfigStore,
    untracked: list[UntrackedSource],
    priority: int = 50,
) -> BatchOutcome:
    """Register untracked directories as sources. Orphans are never removed."""
    doc = store.load()
    outcome = BatchOutcome()

    for item in untracked:
        source = AgentSource(name=item.name, path=item.path, priority=priority)
        if item.has_git and item.git_remote:
            source.git = GitConfig(enabled=True, remote=item.git_remote)
        try:
            doc.add_agent_source(source)
        except ConflictError as e:
            outcome.add(item.name, OutcomeStatus.FAILED, str(e))
            continue
        outcome.add(item.name, OutcomeStatus.OK, f"priority {priority}, {item.agent_count} agents")

    if outcome.succeeded:
        store.save(doc)
    return outcome


def run_reconcile(
    store: ConfigStore,
    config: CamiConfig,
    git: GitClient,
    mode: ReconcileMode | str = ReconcileMode.CHECK_ONLY,
    confirm: Callable[[ReconcileResult], bool] | None = None,
) -> tuple[ReconcileResult, BatchOutcome | None]:
    """Reconcile, then register untracked sources according to ``mode``.

    ``auto-add`` registers every untracked directory. ``manual`` registers
    them only when ``confirm`` returns true for the result, so without a
    callback it behaves like ``check-only``.
    """
    mode = ReconcileMode(mode)
    result = reconcile_sources(store, config, git)
    if mode == ReconcileMode.CHECK_ONLY or not result.untracked:
        return result, None
    if mode == ReconcileMode.MANUAL and (confirm is None or not confirm(result)):
        log.info("reconcile_add_declined", untracked=len(result.untracked))
        return result, None
    return result, add_untracked_sources(store, result.untracked, config.default_source_priority)


def _abs(path: Path | str) -> Path:
    return Path(path).expanduser().resolve()
