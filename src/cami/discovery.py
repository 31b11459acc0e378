"""Compare deployed agents against available ones, and find projects on disk."""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import structlog

from cami.agents import load_agents
from cami.config import DeployLocation
from cami.errors import CamiError, NotFoundError
from cami.manifest import PROJECT_METADATA_DIR, project_agents_dir, utcnow
from cami.models import Agent, BatchOutcome, DeploymentStatus, OutcomeStatus

log = structlog.get_logger()

SKIP_DIRS = frozenset(
    {
        "node_modules",
        ".git",
        "vendor",
        "dist",
        "build",
        ".next",
        ".venv",
        "__pycache__",
        "target",
        ".cache",
    }
)


@dataclass
class AgentStatus:
    name: str
    status: DeploymentStatus
    deployed_version: str = ""
    available_version: str = ""


@dataclass
class LocationStatus:
    location: DeployLocation
    agents: list[AgentStatus] = field(default_factory=list)
    last_scanned: datetime = field(default_factory=utcnow)

    def count(self, status: DeploymentStatus) -> int:
        return sum(1 for a in self.agents if a.status == status)


@dataclass
class ScanReport:
    locations: list[LocationStatus] = field(default_factory=list)
    outcome: BatchOutcome = field(default_factory=BatchOutcome)


def scan_location(location: DeployLocation, available: Iterable[Agent]) -> LocationStatus:
    """Status of every available agent at ``location``, by name and version.

    Agents deployed at the location but not available from any source are
    reported with status ``unknown``.
    """
    root = Path(location.path).expanduser()
    if not root.is_dir():
        raise NotFoundError(f"location {location.name!r} path does not exist: {root}")

    agents_dir = project_agents_dir(root)
    deployed = {a.name: a for a in load_agents(agents_dir)} if agents_dir.is_dir() else {}

    result = LocationStatus(location=location)
    seen = set()
    for agent in available:
        seen.add(agent.name)
        current = deployed.get(agent.name)
        if current is None:
            status = DeploymentStatus.NOT_DEPLOYED
        elif current.version == agent.version:
            status = DeploymentStatus.UP_TO_DATE
        else:
            status = DeploymentStatus.UPDATE_AVAILABLE
        result.agents.append(
            AgentStatus(
                name=agent.name,
                status=status,
                deployed_version=current.version if current else "",
                available_version=agent.version,
            )
        )

    for name, agent in deployed.items():
        if name not in seen:
            result.agents.append(
                AgentStatus(
                    name=name, status=DeploymentStatus.UNKNOWN, deployed_version=agent.version
                )
            )
    return result


def scan_all_locations(
    locations: Iterable[DeployLocation], available: Iterable[Agent]
) -> ScanReport:
    """Scan each location in turn; one failing location does not stop the rest."""
    available = list(available)
    report = ScanReport()
    for location in locations:
        try:
            status = scan_location(location, available)
        except CamiError as e:
            log.warning("location_scan_failed", location=location.name, error=str(e))
            report.outcome.add(location.name, OutcomeStatus.FAILED, str(e))
            continue
        report.locations.append(status)
        report.outcome.add(location.name, OutcomeStatus.OK, f"{len(status.agents)} agents")
    return report


@dataclass
class ProjectInfo:
    path: str
    relative_path: str = ""
    has_agents: bool = False
    agent_names: list[str] = field(default_factory=list)

    @property
    def agent_count(self) -> int:
        return len(self.agent_names)


def discover_projects(
    root_path: Path | str,
    empty_only: bool = False,
    has_agent: str = "",
    max_depth: int = 0,
) -> list[ProjectInfo]:
    """Find directories containing a ``.claude`` directory below ``root_path``.

    ``max_depth`` counts directory levels below the root (0 means no limit).
    ``empty_only`` keeps projects without agents; ``has_agent`` keeps
    projects that have that agent deployed.
    """
    root = Path(root_path).expanduser().resolve()
    if not root.is_dir():
        raise NotFoundError(f"path does not exist: {root}")

    projects: list[ProjectInfo] = []
    for dirpath, dirnames, _ in os.walk(root):
        current = Path(dirpath)
        depth = len(current.relative_to(root).parts)

        if PROJECT_METADATA_DIR in dirnames and (max_depth <= 0 or depth <= max_depth):
            project = _scan_project(current, root)
            if _matches(project, empty_only, has_agent):
                projects.append(project)

        if max_depth > 0 and depth >= max_depth:
            dirnames[:] = []
        else:
            dirnames[:] = sorted(
                d for d in dirnames if d not in SKIP_DIRS and d != PROJECT_METADATA_DIR
            )

    return projects


def _scan_project(project: Path, root: Path) -> ProjectInfo:
    rel = project.relative_to(root)
    info = ProjectInfo(path=str(project), relative_path="" if rel == Path(".") else str(rel))
    agents_dir = project_agents_dir(project)
    if agents_dir.is_dir():
        info.agent_names = [a.name for a in load_agents(agents_dir)]
        info.has_agents = bool(info.agent_names)
    return info


def _matches(project: ProjectInfo, empty_only: bool, has_agent: str) -> bool:
    if empty_only and project.has_agents:
        return False
    if has_agent and has_agent not in project.agent_names:
        return False
    return True
