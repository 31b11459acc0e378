"""Agent source management: clone, list, pull, status, remove."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import structlog

from cami.agents import count_agents
from cami.config import AgentSource, CamiConfig, ConfigStore, GitConfig
from cami.errors import CamiError, ConflictError, GitError
from cami.git import GitClient
from cami.models import BatchOutcome, OutcomeStatus
from cami.normalize import analyze_source

log = structlog.get_logger()


def derive_name_from_url(url: str) -> str:
    """``git@github.com:org/agents.git`` -> ``agents``."""
    name = url.strip().rstrip("/").removesuffix(".git")
    name = name.rsplit("/", 1)[-1]
    return name.rsplit(":", 1)[-1]


@dataclass
class AddedSource:
    source: AgentSource
    agent_count: int = 0


@dataclass
class SourceSummary:
    name: str
    path: str
    priority: int
    agent_count: int = 0
    git_remote: str = ""
    is_compliant: bool | None = None
    issue_count: int = 0
    error: str = ""


@dataclass
class SourceStatus:
    name: str
    git_enabled: bool = False
    changes: list[str] = field(default_factory=list)
    error: str = ""

    @property
    def clean(self) -> bool:
        return self.git_enabled and not self.error and not self.changes

    def describe(self) -> str:
        if not self.git_enabled:
            return "not git-enabled"
        if self.error:
            return f"error ({self.error})"
        if not self.changes:
            return "clean"
        return f"{len(self.changes)} uncommitted changes"


def add_source(
    store: ConfigStore,
    config: CamiConfig,
    git: GitClient,
    url: str,
    name: str | None = None,
    priority: int | None = None,
) -> AddedSource:
    """Clone ``url`` into the sources directory and register it."""
    name = name or derive_name_from_url(url)
    if not name:
        raise CamiError(f"cannot derive a source name from {url!r}")
    priority = config.default_source_priority if priority is None else priority

    doc = store.load()
    if any(s.name == name for s in doc.agent_sources):
        raise ConflictError(f"source with name {name!r} already exists")

    sources_dir = config.resolved_sources_dir()
    target = sources_dir / name
    if target.exists():
        raise ConflictError(f"directory already exists: {target}")

    sources_dir.mkdir(parents=True, exist_ok=True)
    log.info("source_cloning", url=url, target=str(target))
    git.clone(url, target)

    source = AgentSource(
        name=name,
        path=str(target),
        priority=priority,
        git=GitConfig(enabled=True, remote=url),
    )
    doc.add_agent_source(source)
    store.save(doc)

    agent_count = count_agents(target)
    log.info("source_added", source=name, priority=priority, agents=agent_count)
    return AddedSource(source=source, agent_count=agent_count)


def list_sources(store: ConfigStore) -> list[SourceSummary]:
    """Every configured source with its agent count and compliance summary."""
    summaries = []
    for source in store.load().agent_sources:
        summary = SourceSummary(
            name=source.name,
            path=source.path,
            priority=source.priority,
            git_remote=source.git_remote if source.git_enabled else "",
        )
        try:
            analysis = analyze_source(source.name, source.path)
        except CamiError as e:
            summary.error = str(e)
        else:
            summary.agent_count = analysis.agent_count
            summary.is_compliant = analysis.is_compliant
            summary.issue_count = len(analysis.issues)
        summaries.append(summary)
    return summaries


def update_sources(store: ConfigStore, git: GitClient, name: str | None = None) -> BatchOutcome:
    """``git pull`` every git-enabled source, or only ``name``.

    Non-git sources are skipped. A failed pull is recorded and the loop
    carries on with the next source.
    """
    doc = store.load()
    sources = doc.agent_sources
    if name is not None:
        sources = [doc.get_agent_source(name)]

    outcome = BatchOutcome()
    for source in sources:
        if not source.git_enabled:
            outcome.add(source.name, OutcomeStatus.SKIPPED, "no git remote")
            continue
        try:
            output = git.pull(Path(source.path).expanduser())
        except GitError as e:
            log.warning("source_update_failed", source=source.name, error=str(e))
            outcome.add(source.name, OutcomeStatus.FAILED, str(e))
            continue

        message = "up to date" if git.is_up_to_date(output) else "updated"
        log.info("source_updated", source=source.name, result=message)
        outcome.add(source.name, OutcomeStatus.OK, message)

    return outcome


def source_status(store: ConfigStore, git: GitClient) -> list[SourceStatus]:
    statuses = []
    for source in store.load().agent_sources:
        status = SourceStatus(name=source.name, git_enabled=source.git_enabled)
        if source.git_enabled:
            try:
                status.changes = git.status_porcelain(Path(source.path).expanduser())
            except GitError as e:
                status.error = str(e)
        statuses.append(status)
    return statuses


def remove_source(store: ConfigStore, name: str) -> AgentSource:
    """Unregister a source. Its directory is left on disk."""
    doc = store.load()
    removed = doc.remove_agent_source(name)
    store.save(doc)
    log.info("source_removed", source=name, path=removed.path)
    return removed
