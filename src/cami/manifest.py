"""Per-project and central deployment manifests (YAML)."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError

from cami.errors import ManifestError, NotFoundError
from cami.models import ProjectState

if TYPE_CHECKING:
    from cami.config import CamiConfig

log = structlog.get_logger()

MANIFEST_FORMAT_VERSION = 2
MANIFEST_SCHEMA_VERSION = "2"

PROJECT_METADATA_DIR = ".claude"
PROJECT_AGENTS_DIR = Path(PROJECT_METADATA_DIR) / "agents"
PROJECT_MANIFEST_FILE = Path(PROJECT_METADATA_DIR) / "cami-manifest.yaml"

UNKNOWN_SOURCE = "unknown"

_M = TypeVar("_M", bound=BaseModel)


def utcnow() -> datetime:
    return datetime.now(UTC)


class DeployedAgent(BaseModel):
    name: str
    version: str = ""
    source: str = UNKNOWN_SOURCE
    source_path: str = ""
    priority: int = 0
    deployed_at: datetime = Field(default_factory=utcnow)
    content_hash: str = ""
    metadata_hash: str = ""
    custom_override: bool = False
    needs_upgrade: bool = False


class ProjectManifest(BaseModel):
    version: str = MANIFEST_SCHEMA_VERSION
    state: ProjectState = ProjectState.NATIVE
    normalized_at: datetime = Field(default_factory=utcnow)
    agents: list[DeployedAgent] = Field(default_factory=list)


class ProjectDeployment(BaseModel):
    state: ProjectState
    normalized_at: datetime
    last_scanned: datetime = Field(default_factory=utcnow)
    agents: list[DeployedAgent] = Field(default_factory=list)


class CentralManifest(BaseModel):
    version: str = MANIFEST_SCHEMA_VERSION
    last_updated: datetime = Field(default_factory=utcnow)
    manifest_format_version: int = MANIFEST_FORMAT_VERSION
    deployments: dict[str, ProjectDeployment] = Field(default_factory=dict)


def project_agents_dir(project_path: Path | str) -> Path:
    return Path(project_path) / PROJECT_AGENTS_DIR


def project_manifest_path(project_path: Path | str) -> Path:
    return Path(project_path) / PROJECT_MANIFEST_FILE


class ManifestStore:
    """Reads and writes both manifest documents.

    The project manifest lives inside each project; the central manifest
    lives at ``central_path`` (normally ``<workspace>/deployments.yaml``).
    Writes are full overwrites.
    """

    def __init__(self, central_path: Path | str) -> None:
        self._central_path = Path(central_path)

    @classmethod
    def from_config(cls, config: CamiConfig) -> ManifestStore:
        return cls(config.central_manifest_path)

    @property
    def central_path(self) -> Path:
        return self._central_path

    # -- Project manifest --

    def has_project_manifest(self, project_path: Path | str) -> bool:
        return project_manifest_path(project_path).is_file()

    def read_project(self, project_path: Path | str) -> ProjectManifest:
        """Read a project's manifest.

        Raises:
            NotFoundError: the project has no manifest.
            ManifestError: the manifest cannot be read or parsed.
        """
        path = project_manifest_path(project_path)
        if not path.exists():
            raise NotFoundError(f"project manifest not found at {path}")
        return _read_model(path, ProjectManifest)

    def write_project(self, project_path: Path | str, manifest: ProjectManifest) -> Path:
        path = project_manifest_path(project_path)
        _write_model(path, manifest)
        log.info("project_manifest_written", path=str(path), agents=len(manifest.agents))
        return path

    # -- Central manifest --

    def read_central(self) -> CentralManifest:
        """Read the central manifest; an absent file reads as an empty document."""
        if not self._central_path.exists():
            return CentralManifest()
        return _read_model(self._central_path, CentralManifest)

    def write_central(self, manifest: CentralManifest) -> Path:
        manifest.last_updated = utcnow()
        _write_model(self._central_path, manifest)
        log.debug("central_manifest_written", path=str(self._central_path))
        return self._central_path

    # -- Combined --

    def record_deployment(
        self, project_path: Path | str, manifest: ProjectManifest
    ) -> ProjectDeployment:
        """Write the project manifest, then upsert its entry in the central manifest.

        The two writes are not atomic. If the second one fails the project
        manifest is already current; running the same operation again
        overwrites both documents and brings them back in line.
        """
        abs_path = str(Path(project_path).resolve())
        self.write_project(project_path, manifest)

        central = self.read_central()
        entry = ProjectDeployment(
            state=manifest.state,
            normalized_at=manifest.normalized_at,
            last_scanned=utcnow(),
            agents=list(manifest.agents),
        )
        central.deployments[abs_path] = entry
        self.write_central(central)
        log.info("deployment_recorded", project=abs_path, agents=len(manifest.agents))
        return entry


def _read_model(path: Path, model: type[_M]) -> _M:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise ManifestError(f"failed to read manifest {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ManifestError(f"failed to parse manifest {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ManifestError(f"manifest {path} must contain a mapping")
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise ManifestError(f"invalid manifest {path}: {e}") from e


def _write_model(path: Path, document: BaseModel) -> None:
    data = document.model_dump(mode="json")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    except OSError as e:
        raise ManifestError(f"failed to write manifest {path}: {e}") from e
