from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from cami.config import AgentSource, CamiConfig, ConfigStore
from cami.manifest import ManifestStore


def agent_text(
    name: str | None = "agent",
    version: str | None = "1.0.0",
    description: str | None = "Test agent",
    body: str = "# Agent\n\nDoes things.\n",
) -> str:
    lines = ["---"]
    if name is not None:
        lines.append(f"name: {name}")
    if version is not None:
        lines.append(f'version: "{version}"')
    if description is not None:
        lines.append(f"description: {description}")
    lines.append("---")
    return "\n".join(lines) + "\n" + body


@pytest.fixture
def config(tmp_path) -> CamiConfig:
    return CamiConfig(workspace_dir=tmp_path / "workspace", _env_file=None)


@pytest.fixture
def store(config: CamiConfig) -> ConfigStore:
    return ConfigStore.from_config(config)


@pytest.fixture
def manifests(config: CamiConfig) -> ManifestStore:
    return ManifestStore.from_config(config)


@pytest.fixture
def write_agent() -> Callable[..., Path]:
    """Write an agent file: ``write_agent(dir, "x.md", name="x", version=None)``."""

    def _write(directory: Path, filename: str, **fields) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / filename
        fields.setdefault("name", Path(filename).stem)
        path.write_text(agent_text(**fields), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def project(tmp_path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def make_source(tmp_path, write_agent) -> Callable[..., AgentSource]:
    """Create a source directory holding ``agents`` ({name: version}) and describe it."""

    def _make(name: str, agents: dict[str, str], priority: int = 50) -> AgentSource:
        root = tmp_path / "sources" / name
        root.mkdir(parents=True, exist_ok=True)
        for agent_name, version in agents.items():
            write_agent(root, f"{agent_name}.md", name=agent_name, version=version)
        return AgentSource(name=name, path=str(root), priority=priority)

    return _make
