"""Write agent files into a project and record what was deployed."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import structlog

from cami.agents import AggregateResult, load_agents
from cami.config import AgentSource
from cami.errors import CamiError, NotFoundError
from cami.hashing import content_hash_file, metadata_hash_file
from cami.manifest import (
    UNKNOWN_SOURCE,
    DeployedAgent,
    ManifestStore,
    ProjectDeployment,
    ProjectManifest,
    project_agents_dir,
    utcnow,
)
from cami.models import Agent, BatchOutcome, OutcomeStatus, ProjectState

log = structlog.get_logger()

UNRESOLVED_PRIORITY = 999


@dataclass
class DeployResult:
    agent: Agent
    success: bool
    message: str
    conflict: bool = False
    target_file: Path | None = None


def validate_target_path(path: Path | str) -> Path:
    target = Path(path).expanduser()
    if not target.exists():
        raise NotFoundError(f"path does not exist: {target}")
    if not target.is_dir():
        raise CamiError(f"path is not a directory: {target}")
    return target


def check_conflicts(agents: Iterable[Agent], target_path: Path | str) -> set[str]:
    """Names of agents whose file already exists in the project."""
    agents_dir = project_agents_dir(target_path)
    return {a.name for a in agents if (agents_dir / a.file_name).exists()}


def select_agents(index: AggregateResult, names: Iterable[str]) -> tuple[list[Agent], list[str]]:
    """Pick agents by name from an aggregate; returns ``(found, missing)``."""
    found, missing = [], []
    for name in names:
        resolved = index.get(name)
        if resolved is None:
            missing.append(name)
        else:
            found.append(resolved.agent)
    return found, missing


def deploy_agent(agent: Agent, target_path: Path | str, overwrite: bool = False) -> DeployResult:
    """Write one agent to ``<target>/.claude/agents/<file_name>``.

    An existing file is reported as a conflict and left alone unless
    ``overwrite`` is set. Write errors are reported, not raised.
    """
    agents_dir = project_agents_dir(target_path)
    try:
        agents_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        return DeployResult(agent, False, f"Failed to create agents directory: {e}")

    target_file = agents_dir / agent.file_name
    if target_file.exists() and not overwrite:
        return DeployResult(
            agent, False, "File already exists", conflict=True, target_file=target_file
        )

    try:
        target_file.write_text(agent.full_content(), encoding="utf-8")
    except OSError as e:
        return DeployResult(agent, False, f"Failed to write file: {e}", target_file=target_file)

    log.info("agent_deployed", agent=agent.name, target=str(target_file))
    return DeployResult(agent, True, "Deployed successfully", target_file=target_file)


def deploy_agents(
    agents: Iterable[Agent], target_path: Path | str, overwrite: bool = False
) -> list[DeployResult]:
    return [deploy_agent(agent, target_path, overwrite) for agent in agents]


def deployment_outcome(results: Iterable[DeployResult]) -> BatchOutcome:
    outcome = BatchOutcome()
    for r in results:
        if r.success:
            status = OutcomeStatus.OK
        elif r.conflict:
            status = OutcomeStatus.SKIPPED
        else:
            status = OutcomeStatus.FAILED
        outcome.add(r.agent.name, status, r.message)
    return outcome


def resolve_source(agent_file: Path, sources: Iterable[AgentSource]) -> AgentSource | None:
    """The configured source whose directory contains ``agent_file``."""
    path = agent_file.expanduser().resolve()
    best: AgentSource | None = None
    best_depth = -1
    for source in sources:
        root = Path(source.path).expanduser().resolve()
        if path.is_relative_to(root) and len(root.parts) > best_depth:
            best, best_depth = source, len(root.parts)
    return best


def record_deployment(
    manifests: ManifestStore,
    project_path: Path | str,
    results: Iterable[DeployResult],
    sources: Iterable[AgentSource],
) -> ProjectDeployment:
    """Update both manifests after a deployment.

    Entries for successfully deployed agents replace any earlier entry with
    the same name. Earlier entries for agents not in this deployment are
    kept while their file is still in the project. Safe to run again.
    """
    project = Path(project_path).expanduser()
    sources = list(sources)
    now = utcnow()

    fresh: dict[str, DeployedAgent] = {}
    for r in results:
        if not r.success or r.target_file is None:
            continue
        entry = DeployedAgent(
            name=r.agent.name,
            version=r.agent.version,
            source=UNKNOWN_SOURCE,
            source_path=str(r.agent.file_path),
            priority=UNRESOLVED_PRIORITY,
            deployed_at=now,
        )
        try:
            entry.content_hash = content_hash_file(r.target_file)
            entry.metadata_hash = metadata_hash_file(r.target_file)
        except (CamiError, OSError) as e:
            log.warning("agent_hash_failed", agent=r.agent.name, error=str(e))

        source = resolve_source(r.agent.file_path, sources)
        if source is not None:
            entry.source = source.name
            entry.priority = source.priority
        fresh[entry.name] = entry

    agents: list[DeployedAgent] = []
    if manifests.has_project_manifest(project):
        agents_dir = project_agents_dir(project)
        deployed_files = (
            {a.name for a in load_agents(agents_dir)} if agents_dir.is_dir() else set()
        )
        for existing in manifests.read_project(project).agents:
            if existing.name not in fresh and existing.name in deployed_files:
                agents.append(existing)
    agents.extend(fresh.values())

    manifest = ProjectManifest(state=ProjectState.NATIVE, normalized_at=now, agents=agents)
    return manifests.record_deployment(project, manifest)
