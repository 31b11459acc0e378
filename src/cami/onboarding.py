"""Setup state summary and the recommended next step."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from cami.agents import count_agents, load_agents_from_sources
from cami.config import ConfigStore
from cami.manifest import project_agents_dir


@dataclass
class OnboardingState:
    config_exists: bool = False
    source_count: int = 0
    location_count: int = 0
    total_agents: int = 0
    deployed_agents: int = 0
    recommended_next: str = ""


def onboarding_state(store: ConfigStore, project_path: Path | str | None = None) -> OnboardingState:
    """Summarize the workspace setup.

    ``deployed_agents`` counts agents deployed across every configured
    location, plus ``project_path`` when it is not one of them.
    """
    state = OnboardingState(config_exists=store.exists())
    if not state.config_exists:
        state.recommended_next = "Add an agent source"
        return state

    doc = store.load()
    state.source_count = len(doc.agent_sources)
    state.location_count = len(doc.deploy_locations)
    state.total_agents = len(load_agents_from_sources(doc.agent_sources).resolved)

    projects = {Path(loc.path).expanduser().resolve() for loc in doc.deploy_locations}
    if project_path is not None:
        projects.add(Path(project_path).expanduser().resolve())
    state.deployed_agents = sum(
        count_agents(project_agents_dir(p)) for p in projects if project_agents_dir(p).is_dir()
    )

    if state.source_count == 0:
        state.recommended_next = "Add agent sources"
    elif state.total_agents == 0:
        state.recommended_next = "Add agent sources or create agents"
    elif state.deployed_agents == 0:
        state.recommended_next = "Deploy agents to a project"
    else:
        state.recommended_next = "Explore and manage your agents"
    return state
