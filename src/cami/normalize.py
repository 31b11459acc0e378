"""Source compliance analysis, project state analysis, and normalization of both."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from cami.agents import ResolvedAgent, load_agents, load_agents_from_sources
from cami.backup import create_backup
from cami.config import AgentSource
from cami.errors import (
    CamiError,
    NormalizationError,
    NormalizationNotImplementedError,
    NotFoundError,
)
from cami.hashing import content_hash_file, metadata_hash_file
from cami.manifest import (
    UNKNOWN_SOURCE,
    DeployedAgent,
    ManifestStore,
    ProjectManifest,
    project_agents_dir,
    utcnow,
)
from cami.models import NormalizationLevel, ProjectState

log = structlog.get_logger()

IGNORE_FILE = ".camiignore"
DEFAULT_VERSION = "1.0.0"
UNMATCHED_PRIORITY = 999

IGNORE_TEMPLATE = """\
# CAMI Ignore File
# Patterns to exclude from agent loading

# Common patterns
*.draft.md
*.tmp.md
.DS_Store
README.md
CHANGELOG.md

# Directories
examples/
templates/
"""


def description_placeholder(agent_name: str) -> str:
    return f"Description for {agent_name} agent"


# -- Source compliance --


@dataclass
class SourceIssue:
    agent_file: str
    problems: list[str] = field(default_factory=list)


@dataclass
class SourceAnalysis:
    source_name: str
    path: str
    is_compliant: bool = False
    agent_count: int = 0
    issues: list[SourceIssue] = field(default_factory=list)
    missing_ignore_file: bool = False


@dataclass
class SourceNormalizationOptions:
    add_versions: bool = True
    add_descriptions: bool = True
    create_ignore_file: bool = True


@dataclass
class SourceNormalizationResult:
    source_name: str
    backup_path: str
    agents_updated: int = 0
    changes: list[str] = field(default_factory=list)


def analyze_source(source_name: str, source_path: Path | str) -> SourceAnalysis:
    """Report which agents in a source lack a name, version or description.

    A source is compliant when no agent has a problem and the source root
    carries an ignore file. Nothing is modified.
    """
    root = Path(source_path).expanduser()
    if not root.is_dir():
        raise NotFoundError(f"source path does not exist: {root}")

    # Nameless files are loaded here so they can be reported.
    agents = load_agents(root, require_name=False)
    analysis = SourceAnalysis(
        source_name=source_name,
        path=str(root),
        agent_count=len(agents),
        missing_ignore_file=not (root / IGNORE_FILE).exists(),
    )

    for agent in agents:
        problems = []
        if not agent.name:
            problems.append("missing name")
        if not agent.version:
            problems.append("missing version")
        if not agent.description:
            problems.append("missing description")
        if problems:
            rel = agent.file_path.relative_to(root).as_posix()
            analysis.issues.append(SourceIssue(agent_file=rel, problems=problems))

    analysis.is_compliant = not analysis.issues and not analysis.missing_ignore_file
    return analysis


@contextmanager
def _backed_up(target: Path) -> Iterator[str]:
    """Back up ``target`` and yield the backup path.

    Any error raised inside the block is re-raised as a
    ``NormalizationError`` carrying the backup path. The backup is kept.
    """
    backup_path = str(create_backup(target))
    try:
        yield backup_path
    except (CamiError, OSError) as e:
        log.error("normalization_failed", target=str(target), backup=backup_path, error=str(e))
        raise NormalizationError(
            f"normalization of {target} failed: {e} (backup kept at {backup_path})",
            backup_path=backup_path,
        ) from e


def normalize_source(
    source_name: str,
    source_path: Path | str,
    options: SourceNormalizationOptions | None = None,
) -> SourceNormalizationResult:
    """Fill in missing versions and descriptions, and add the ignore file.

    The source directory is backed up before the first write.
    """
    options = options or SourceNormalizationOptions()
    root = Path(source_path).expanduser()
    if not root.is_dir():
        raise NotFoundError(f"source path does not exist: {root}")

    with _backed_up(root) as backup_path:
        result = SourceNormalizationResult(source_name=source_name, backup_path=backup_path)

        for agent in load_agents(root):
            rel = agent.file_path.relative_to(root).as_posix()
            updated = False
            if options.add_versions and not agent.version:
                agent.version = DEFAULT_VERSION
                updated = True
                result.changes.append(f"Added version {DEFAULT_VERSION} to {rel}")
            if options.add_descriptions and not agent.description:
                agent.description = description_placeholder(agent.name)
                updated = True
                result.changes.append(f"Added description placeholder to {rel}")

            if updated:
                agent.file_path.write_text(agent.full_content(), encoding="utf-8")
                result.agents_updated += 1

        ignore_path = root / IGNORE_FILE
        if options.create_ignore_file and not ignore_path.exists():
            ignore_path.write_text(IGNORE_TEMPLATE, encoding="utf-8")
            result.changes.append(f"Created {IGNORE_FILE} file")

    log.info(
        "source_normalized",
        source=source_name,
        agents_updated=result.agents_updated,
        backup=result.backup_path,
    )
    return result


# -- Project state --


@dataclass
class AgentAnalysis:
    name: str
    file_path: str
    version: str = ""
    content_hash: str = ""
    metadata_hash: str = ""
    matched_source: str = ""
    source_path: str = ""
    source_priority: int = 0
    source_version: str = ""
    needs_upgrade: bool = False
    is_tracked: bool = False

    @property
    def has_version(self) -> bool:
        return bool(self.version)

    @property
    def is_matched(self) -> bool:
        return bool(self.matched_source or self.source_path)


@dataclass
class ProjectRecommendations:
    minimal_required: bool = False
    standard_recommended: bool = False


@dataclass
class ProjectAnalysis:
    path: str
    state: ProjectState = ProjectState.NON_CAMI
    has_agents_dir: bool = False
    has_manifest: bool = False
    agent_count: int = 0
    agents: list[AgentAnalysis] = field(default_factory=list)
    recommendations: ProjectRecommendations = field(default_factory=ProjectRecommendations)


@dataclass
class ProjectNormalizationResult:
    path: str
    level: NormalizationLevel
    state_before: ProjectState
    state_after: ProjectState
    backup_path: str
    changes: list[str] = field(default_factory=list)

    @property
    def undo_available(self) -> bool:
        return bool(self.backup_path)


def analyze_project(
    project_path: Path | str,
    sources: Iterable[AgentSource],
    manifests: ManifestStore,
) -> ProjectAnalysis:
    """Classify a project and match its deployed agents against the sources.

    Name conflicts between sources resolve exactly as in
    ``load_agents_from_sources``: the higher priority wins.
    """
    project = Path(project_path).expanduser()
    if not project.is_dir():
        raise NotFoundError(f"project path does not exist: {project}")

    analysis = ProjectAnalysis(path=str(project))
    agents_dir = project_agents_dir(project)
    if not agents_dir.is_dir():
        return analysis
    analysis.has_agents_dir = True

    tracked: set[str] = set()
    if manifests.has_project_manifest(project):
        manifest = manifests.read_project(project)
        analysis.has_manifest = True
        analysis.state = manifest.state
        tracked = {a.name for a in manifest.agents}
    else:
        analysis.state = ProjectState.AWARE

    deployed = load_agents(agents_dir)
    analysis.agent_count = len(deployed)
    index = load_agents_from_sources(sources)

    for agent in deployed:
        entry = AgentAnalysis(
            name=agent.name,
            file_path=str(agent.file_path),
            version=agent.version,
            is_tracked=agent.name in tracked,
        )
        try:
            entry.content_hash = content_hash_file(agent.file_path)
            entry.metadata_hash = metadata_hash_file(agent.file_path)
        except (CamiError, OSError) as e:
            log.warning("agent_hash_failed", path=str(agent.file_path), error=str(e))

        match = index.get(agent.name)
        if match is not None:
            _apply_match(entry, match)
        analysis.agents.append(entry)

    recs = analysis.recommendations
    recs.minimal_required = not analysis.has_manifest
    recs.standard_recommended = any(
        not a.has_version or not a.is_matched for a in analysis.agents
    )
    return analysis


def _apply_match(entry: AgentAnalysis, match: ResolvedAgent) -> None:
    entry.matched_source = match.source_name
    entry.source_path = str(match.agent.file_path)
    entry.source_priority = match.priority
    entry.source_version = match.agent.version
    entry.needs_upgrade = entry.version != match.agent.version


def normalize_project(
    project_path: Path | str,
    level: NormalizationLevel | str,
    sources: Iterable[AgentSource],
    manifests: ManifestStore,
) -> ProjectNormalizationResult:
    """Write a project manifest and record the project centrally.

    ``minimal`` records every deployed agent with an unknown source.
    ``standard`` also links each agent to its winning source; unmatched
    agents get source ``unknown`` and priority 999. ``full`` is not
    implemented and raises before anything is touched.
    """
    level = NormalizationLevel(level)
    if level == NormalizationLevel.FULL:
        raise NormalizationNotImplementedError("full normalization not yet implemented")

    project = Path(project_path).expanduser()
    sources = list(sources)
    analysis = analyze_project(project, sources, manifests)
    if not analysis.has_agents_dir:
        raise NotFoundError(
            f"no agent directory at {project_agents_dir(project)}; deploy agents first"
        )

    with _backed_up(project) as backup_path:
        now = utcnow()
        manifest = ProjectManifest(state=ProjectState.NATIVE, normalized_at=now)
        for entry in analysis.agents:
            deployed = DeployedAgent(
                name=entry.name,
                version=entry.version,
                deployed_at=now,
                content_hash=entry.content_hash,
                metadata_hash=entry.metadata_hash,
            )
            if level == NormalizationLevel.STANDARD:
                if entry.is_matched:
                    deployed.source = entry.matched_source or UNKNOWN_SOURCE
                    deployed.source_path = entry.source_path
                    deployed.priority = entry.source_priority
                    deployed.needs_upgrade = entry.needs_upgrade
                else:
                    deployed.priority = UNMATCHED_PRIORITY
            manifest.agents.append(deployed)

        manifests.record_deployment(project, manifest)

    change = (
        "Created project manifest with source links"
        if level == NormalizationLevel.STANDARD
        else "Created project manifest"
    )
    log.info("project_normalized", project=str(project), level=level.value, backup=backup_path)
    return ProjectNormalizationResult(
        path=str(project),
        level=level,
        state_before=analysis.state,
        state_after=ProjectState.NATIVE,
        backup_path=backup_path,
        changes=[change],
    )
