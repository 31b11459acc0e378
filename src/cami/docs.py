"""Managed "Deployed Agents" section in a project's CLAUDE.md."""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path

import structlog

from cami.agents import load_agents
from cami.errors import CamiError, NotFoundError
from cami.manifest import project_agents_dir
from cami.models import Agent

log = structlog.get_logger()

CLAUDE_MD = "CLAUDE.md"
DEFAULT_SECTION_NAME = "Deployed Agents"
SECTION_END = "<!-- /CAMI-MANAGED: DEPLOYED-AGENTS -->"

# Matches both the bare start marker and the one stamped with "Last Updated".
_SECTION_START = re.compile(
    r"<!-- CAMI-MANAGED: DEPLOYED-AGENTS(?:\s*\|\s*Last Updated:\s*[^>]+)?\s*-->"
)


def deployed_agents(project_path: Path | str) -> list[Agent]:
    agents_dir = project_agents_dir(project_path)
    if not agents_dir.is_dir():
        raise NotFoundError(f"no agents directory found at {agents_dir}")
    return load_agents(agents_dir)


def render_section(agents: list[Agent], section_name: str = DEFAULT_SECTION_NAME) -> str:
    stamp = datetime.now().astimezone().isoformat(timespec="seconds")
    lines = [
        f"<!-- CAMI-MANAGED: DEPLOYED-AGENTS | Last Updated: {stamp} -->",
        f"## {section_name}",
        "",
        "The following Claude Code agents are available in this project:",
        "",
    ]
    for agent in agents:
        heading = f"### {agent.name}"
        if agent.version:
            heading += f" (v{agent.version})"
        lines.append(heading)
        if agent.description:
            lines.append(agent.description)
        lines.append("")
    lines.append(SECTION_END)
    return "\n".join(lines) + "\n"


def merge_section(existing: str, section: str) -> str:
    """Replace the managed section in ``existing``, or append it."""
    if not existing:
        return section

    start = _SECTION_START.search(existing)
    end = existing.find(SECTION_END)
    if start is None or end == -1 or end < start.start():
        if not existing.endswith("\n"):
            existing += "\n"
        return existing + "\n" + section

    tail = end + len(SECTION_END)
    newline = existing.find("\n", tail)
    tail = newline + 1 if newline != -1 else len(existing)
    return existing[: start.start()] + section + existing[tail:]


def update_claude_md(
    project_path: Path | str,
    section_name: str = DEFAULT_SECTION_NAME,
    dry_run: bool = False,
) -> str:
    """Refresh the deployed-agents section of ``<project>/CLAUDE.md``.

    Returns the resulting document. With ``dry_run`` nothing is written.
    """
    project = Path(project_path).expanduser()
    agents = deployed_agents(project)
    if not agents:
        raise NotFoundError(f"no agents found in {project_agents_dir(project)}")

    claude_path = project / CLAUDE_MD
    try:
        existing = claude_path.read_text(encoding="utf-8") if claude_path.exists() else ""
    except OSError as e:
        raise CamiError(f"failed to read {claude_path}: {e}") from e

    content = merge_section(existing, render_section(agents, section_name or DEFAULT_SECTION_NAME))
    if dry_run:
        return content

    try:
        claude_path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise CamiError(f"failed to write {claude_path}: {e}") from e
    log.info("claude_md_updated", path=str(claude_path), agents=len(agents))
    return content
