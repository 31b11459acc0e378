"""Agent files: frontmatter parsing, directory loading, multi-source aggregation."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

from cami.errors import CamiError, NotFoundError, ParseError
from cami.models import UNCATEGORIZED, Agent, BatchOutcome, OutcomeStatus

log = structlog.get_logger()

AGENT_SUFFIX = ".md"
FRONTMATTER_DELIMITER = "---"


# -- Parsing --


def parse_agent_file(path: Path, *, require_name: bool = True) -> Agent:
    """Parse a single agent file.

    The file must open with a ``---`` line, followed by YAML, followed by a
    closing ``---`` line. Everything after the closing line is the body.

    Raises:
        ParseError: empty file, missing opening delimiter, unterminated
            frontmatter, malformed YAML, or (with ``require_name``) no name.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ParseError(f"failed to read {path}: {e}") from e
    return parse_agent_text(text, path, require_name=require_name)


def parse_agent_text(text: str, path: Path, *, require_name: bool = True) -> Agent:
    text = text.removeprefix("\ufeff")
    if not text.strip():
        raise ParseError(f"empty file: {path}")

    lines = text.splitlines(keepends=True)
    if lines[0].strip() != FRONTMATTER_DELIMITER:
        raise ParseError(f"missing frontmatter delimiter '---' on first line: {path}")

    closing = None
    for i in range(1, len(lines)):
        if lines[i].strip() == FRONTMATTER_DELIMITER:
            closing = i
            break
    if closing is None:
        raise ParseError(f"unterminated frontmatter (no closing '---'): {path}")

    meta = _parse_frontmatter("".join(lines[1:closing]), path)
    name = _as_str(meta.get("name"))
    if require_name and not name:
        raise ParseError(f"frontmatter missing required field 'name': {path}")

    return Agent(
        name=name,
        version=_as_str(meta.get("version")),
        description=_as_str(meta.get("description")),
        file_path=path,
        body="".join(lines[closing + 1 :]),
        metadata=meta,
    )


def _parse_frontmatter(frontmatter: str, path: Path) -> dict[str, Any]:
    try:
        result = yaml.safe_load(frontmatter)
    except yaml.YAMLError as e:
        raise ParseError(f"failed to parse frontmatter in {path}: {e}") from e

    if result is None:
        return {}
    if not isinstance(result, dict):
        raise ParseError(
            f"frontmatter must be a mapping, got {type(result).__name__}: {path}"
        )
    return result


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


# -- Loading --


def load_agents(root: Path | str, *, require_name: bool = True) -> list[Agent]:
    """Load every ``*.md`` agent under ``root``, recursively.

    Files that fail to parse are logged and skipped. Files inside hidden
    directories are ignored. ``category`` is the first directory level below
    ``root`` (empty for files directly in ``root``).

    Raises:
        NotFoundError: ``root`` does not exist or is not a directory.
    """
    root = Path(root).expanduser()
    if not root.is_dir():
        raise NotFoundError(f"agent directory does not exist: {root}")

    agents: list[Agent] = []
    for path in sorted(root.rglob(f"*{AGENT_SUFFIX}")):
        if not path.is_file():
            continue
        rel_dirs = path.relative_to(root).parts[:-1]
        if any(part.startswith(".") for part in rel_dirs):
            continue

        try:
            agent = parse_agent_file(path, require_name=require_name)
        except ParseError as e:
            log.warning("agent_parse_failed", path=str(path), error=str(e))
            continue

        agent.category = rel_dirs[0] if rel_dirs else ""
        agents.append(agent)

    return agents


# -- Aggregation --


@dataclass
class SourceRef:
    """Minimal source descriptor accepted by the aggregator."""

    path: str
    priority: int = 0
    name: str = ""


@dataclass
class ResolvedAgent:
    agent: Agent
    source_name: str
    source_path: str
    priority: int


@dataclass
class AggregateResult:
    """Winning agent per name plus a per-source load breakdown."""

    resolved: dict[str, ResolvedAgent] = field(default_factory=dict)
    outcome: BatchOutcome = field(default_factory=BatchOutcome)

    @property
    def agents(self) -> list[Agent]:
        return [r.agent for r in self.resolved.values()]

    def get(self, name: str) -> ResolvedAgent | None:
        return self.resolved.get(name)


def load_agents_from_sources(sources: Iterable[Any]) -> AggregateResult:
    """Load agents from several sources, keeping one agent per name.

    ``sources`` is any iterable of objects with ``path`` and ``priority``
    (``AgentSource`` or ``SourceRef``). On a name conflict the source with
    the strictly greater priority wins; ties keep the first one seen, so
    iteration order matters. A source that fails to load is recorded as
    failed and the remaining sources are still loaded.
    """
    result = AggregateResult()

    for source in sources:
        path = Path(source.path).expanduser()
        label = getattr(source, "name", "") or str(source.path)
        try:
            agents = load_agents(path)
        except CamiError as e:
            log.warning("source_load_failed", source=label, path=str(path), error=str(e))
            result.outcome.add(label, OutcomeStatus.FAILED, str(e))
            continue

        for agent in agents:
            current = result.resolved.get(agent.name)
            if current is None or source.priority > current.priority:
                result.resolved[agent.name] = ResolvedAgent(
                    agent=agent,
                    source_name=getattr(source, "name", ""),
                    source_path=str(path),
                    priority=source.priority,
                )

        result.outcome.add(label, OutcomeStatus.OK, f"{len(agents)} agents")

    return result


def count_agents(path: Path | str) -> int:
    """Number of loadable agents under ``path``; 0 when it cannot be read."""
    try:
        return len(load_agents(path))
    except CamiError:
        return 0


CATEGORY_ORDER = (
    "core",
    "specialized",
    "infrastructure",
    "integration",
    "design",
    "meta",
    UNCATEGORIZED,
)


def group_by_category(agents: Iterable[Agent]) -> list[tuple[str, list[Agent]]]:
    """Agents grouped by display category, known categories first, names sorted."""
    groups: dict[str, list[Agent]] = {}
    for agent in agents:
        groups.setdefault(agent.display_category, []).append(agent)

    known = [c for c in CATEGORY_ORDER if c in groups]
    extra = sorted(c for c in groups if c not in CATEGORY_ORDER)
    return [(c, sorted(groups[c], key=lambda a: a.name)) for c in known + extra]
