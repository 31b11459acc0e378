"""Runtime settings (Pydantic settings) and the persisted workspace configuration."""

from __future__ import annotations

from pathlib import Path

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from cami.errors import ConfigError, ConflictError, NotFoundError

log = structlog.get_logger()

CONFIG_VERSION = "1"


class CamiConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CAMI_", env_file=".env", extra="ignore")

    # Paths
    workspace_dir: Path = Path("~/cami-workspace")
    sources_dir: Path | None = None
    config_filename: str = "config.yaml"
    central_manifest_filename: str = "deployments.yaml"

    # Sources
    default_source_priority: int = 50

    # Backups
    backup_keep_recent: int = 3
    backup_cleanup_threshold: int = 10

    # Git
    git_executable: str = "git"

    def resolved_workspace_dir(self) -> Path:
        return self.workspace_dir.expanduser()

    def resolved_sources_dir(self) -> Path:
        if self.sources_dir is not None:
            return self.sources_dir.expanduser()
        return self.resolved_workspace_dir() / "sources"

    @property
    def config_path(self) -> Path:
        return self.resolved_workspace_dir() / self.config_filename

    @property
    def central_manifest_path(self) -> Path:
        return self.resolved_workspace_dir() / self.central_manifest_filename


class GitConfig(BaseModel):
    enabled: bool = False
    remote: str = ""


class AgentSource(BaseModel):
    """A directory of agent files registered with a priority.

    On a name conflict between sources the higher priority number wins.
    """

    name: str
    type: str = "local"
    path: str
    priority: int = 50
    git: GitConfig | None = None

    @property
    def git_enabled(self) -> bool:
        return self.git is not None and self.git.enabled

    @property
    def git_remote(self) -> str:
        return self.git.remote if self.git is not None else ""


class DeployLocation(BaseModel):
    name: str
    path: str


class ConfigDocument(BaseModel):
    """The whole ``config.yaml`` document. Mutations are in-memory until saved."""

    version: str = CONFIG_VERSION
    agent_sources: list[AgentSource] = Field(default_factory=list)
    deploy_locations: list[DeployLocation] = Field(default_factory=list)

    # -- Sources --

    def add_agent_source(self, source: AgentSource) -> None:
        if any(s.name == source.name for s in self.agent_sources):
            raise ConflictError(f"source with name {source.name!r} already exists")
        self.agent_sources.append(source)

    def remove_agent_source(self, name: str) -> AgentSource:
        for i, source in enumerate(self.agent_sources):
            if source.name == name:
                return self.agent_sources.pop(i)
        raise NotFoundError(f"source with name {name!r} not found")

    def get_agent_source(self, name: str) -> AgentSource:
        for source in self.agent_sources:
            if source.name == name:
                return source
        raise NotFoundError(f"source with name {name!r} not found")

    # -- Locations --

    def add_deploy_location(self, name: str, path: str | Path) -> DeployLocation:
        target = Path(path).expanduser()
        for loc in self.deploy_locations:
            if loc.name == name:
                raise ConflictError(f"location with name {name!r} already exists")
            if Path(loc.path) == target:
                raise ConflictError(f"location with path {str(target)!r} already exists")

        if not target.exists():
            raise NotFoundError(f"path does not exist: {target}")
        if not target.is_dir():
            raise ConfigError(f"path is not a directory: {target}")

        location = DeployLocation(name=name, path=str(target))
        self.deploy_locations.append(location)
        return location

    def remove_deploy_location(self, name: str) -> DeployLocation:
        for i, loc in enumerate(self.deploy_locations):
            if loc.name == name:
                return self.deploy_locations.pop(i)
        raise NotFoundError(f"location with name {name!r} not found")

    def get_deploy_location(self, name: str) -> DeployLocation:
        for loc in self.deploy_locations:
            if loc.name == name:
                return loc
        raise NotFoundError(f"location with name {name!r} not found")


class ConfigStore:
    """Reads and writes ``config.yaml`` at an explicit path.

    A missing file loads as an empty document; every save is a full overwrite.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @classmethod
    def from_config(cls, config: CamiConfig) -> ConfigStore:
        return cls(config.config_path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def load(self) -> ConfigDocument:
        if not self._path.exists():
            return ConfigDocument()

        try:
            raw = yaml.safe_load(self._path.read_text(encoding="utf-8")) or {}
        except OSError as e:
            raise ConfigError(f"failed to read config file {self._path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"failed to parse config file {self._path}: {e}") from e

        if not isinstance(raw, dict):
            raise ConfigError(f"config file {self._path} must contain a mapping")

        try:
            return ConfigDocument.model_validate(raw)
        except ValidationError as e:
            raise ConfigError(f"invalid config file {self._path}: {e}") from e

    def save(self, document: ConfigDocument) -> None:
        data = document.model_dump(mode="json", exclude_none=True)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"failed to write config file {self._path}: {e}") from e
        log.debug("config_saved", path=str(self._path), sources=len(document.agent_sources))
