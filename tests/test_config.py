from __future__ import annotations

from pathlib import Path

import pytest

from cami.config import AgentSource, CamiConfig, ConfigDocument, ConfigStore, GitConfig
from cami.errors import ConfigError, ConflictError, NotFoundError


class TestCamiConfig:
    def test_defaults(self):
        config = CamiConfig(_env_file=None)
        assert config.default_source_priority == 50
        assert config.backup_keep_recent == 3
        assert config.config_filename == "config.yaml"

    def test_paths_derive_from_workspace(self, tmp_path):
        config = CamiConfig(workspace_dir=tmp_path, _env_file=None)
        assert config.config_path == tmp_path / "config.yaml"
        assert config.central_manifest_path == tmp_path / "deployments.yaml"
        assert config.resolved_sources_dir() == tmp_path / "sources"

    def test_explicit_sources_dir(self, tmp_path):
        config = CamiConfig(
            workspace_dir=tmp_path, sources_dir=tmp_path / "elsewhere", _env_file=None
        )
        assert config.resolved_sources_dir() == tmp_path / "elsewhere"

    def test_env_prefix(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CAMI_WORKSPACE_DIR", str(tmp_path))
        monkeypatch.setenv("CAMI_DEFAULT_SOURCE_PRIORITY", "75")
        config = CamiConfig(_env_file=None)
        assert config.resolved_workspace_dir() == tmp_path
        assert config.default_source_priority == 75

    def test_workspace_expands_user(self):
        config = CamiConfig(workspace_dir=Path("~/cami-workspace"), _env_file=None)
        assert config.resolved_workspace_dir() == Path.home() / "cami-workspace"


class TestConfigStore:
    def test_missing_file_loads_empty(self, store):
        doc = store.load()
        assert doc.version == "1"
        assert doc.agent_sources == []
        assert doc.deploy_locations == []
        assert not store.exists()

    def test_round_trip(self, store, tmp_path):
        doc = ConfigDocument()
        doc.add_agent_source(
            AgentSource(
                name="team",
                path=str(tmp_path / "team"),
                priority=100,
                git=GitConfig(enabled=True, remote="git@github.com:org/team.git"),
            )
        )
        doc.add_agent_source(AgentSource(name="local", path=str(tmp_path / "local")))
        doc.add_deploy_location("proj", tmp_path)
        store.save(doc)

        loaded = store.load()
        assert loaded == doc
        assert loaded.get_agent_source("team").git_remote == "git@github.com:org/team.git"
        assert loaded.get_agent_source("local").git is None
        assert "git:" not in store.path.read_text().split("name: local")[1]

    def test_corrupt_file(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("agent_sources: [unclosed")
        with pytest.raises(ConfigError, match="failed to parse"):
            store.load()

    def test_invalid_document(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("agent_sources:\n  - name: x\n")
        with pytest.raises(ConfigError, match="invalid config"):
            store.load()

    def test_non_mapping(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("- a\n")
        with pytest.raises(ConfigError, match="must contain a mapping"):
            store.load()

    def test_explicit_path(self, tmp_path):
        store = ConfigStore(tmp_path / "custom.yaml")
        store.save(ConfigDocument())
        assert store.exists()


class TestSources:
    def test_duplicate_name(self):
        doc = ConfigDocument()
        doc.add_agent_source(AgentSource(name="a", path="/a"))
        with pytest.raises(ConflictError):
            doc.add_agent_source(AgentSource(name="a", path="/b"))

    def test_remove_and_get(self):
        doc = ConfigDocument()
        doc.add_agent_source(AgentSource(name="a", path="/a"))
        assert doc.remove_agent_source("a").path == "/a"
        with pytest.raises(NotFoundError):
            doc.get_agent_source("a")
        with pytest.raises(NotFoundError):
            doc.remove_agent_source("a")

    def test_git_properties_without_git_block(self):
        source = AgentSource(name="a", path="/a")
        assert not source.git_enabled
        assert source.git_remote == ""


class TestLocations:
    def test_add_and_remove(self, tmp_path):
        doc = ConfigDocument()
        loc = doc.add_deploy_location("proj", tmp_path)
        assert loc.path == str(tmp_path)
        assert doc.get_deploy_location("proj") == loc
        doc.remove_deploy_location("proj")
        assert doc.deploy_locations == []

    def test_duplicate_name(self, tmp_path):
        other = tmp_path / "other"
        other.mkdir()
        doc = ConfigDocument()
        doc.add_deploy_location("proj", tmp_path)
        with pytest.raises(ConflictError, match="name"):
            doc.add_deploy_location("proj", other)

    def test_duplicate_path(self, tmp_path):
        doc = ConfigDocument()
        doc.add_deploy_location("one", tmp_path)
        with pytest.raises(ConflictError, match="path"):
            doc.add_deploy_location("two", tmp_path)

    def test_path_must_exist(self, tmp_path):
        with pytest.raises(NotFoundError):
            ConfigDocument().add_deploy_location("gone", tmp_path / "gone")

    def test_path_must_be_directory(self, tmp_path):
        path = tmp_path / "file"
        path.write_text("x")
        with pytest.raises(ConfigError, match="not a directory"):
            ConfigDocument().add_deploy_location("file", path)

    def test_remove_unknown(self):
        with pytest.raises(NotFoundError):
            ConfigDocument().remove_deploy_location("nope")
