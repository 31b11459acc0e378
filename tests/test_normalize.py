from __future__ import annotations

from unittest.mock import patch

import pytest

from cami.agents import parse_agent_file
from cami.backup import list_backups
from cami.errors import (
    ManifestError,
    NormalizationError,
    NormalizationNotImplementedError,
    NotFoundError,
)
from cami.manifest import project_agents_dir
from cami.models import NormalizationLevel, ProjectState
from cami.normalize import (
    IGNORE_FILE,
    IGNORE_TEMPLATE,
    UNMATCHED_PRIORITY,
    SourceNormalizationOptions,
    analyze_project,
    analyze_source,
    normalize_project,
    normalize_source,
)


@pytest.fixture
def messy_source(tmp_path, write_agent):
    root = tmp_path / "messy"
    write_agent(root, "frontend.md", version=None)
    write_agent(root, "backend.md", version="1.0.0", description=None)
    return root


@pytest.fixture
def deployed(project, write_agent):
    """Project with two agents deployed but no manifest."""
    agents_dir = project_agents_dir(project)
    write_agent(agents_dir, "frontend.md", version="1.0.0")
    write_agent(agents_dir, "orphan.md", version=None)
    return project


class TestAnalyzeSource:
    def test_reports_missing_fields(self, messy_source):
        analysis = analyze_source("messy", messy_source)
        assert not analysis.is_compliant
        assert analysis.agent_count == 2
        assert analysis.missing_ignore_file
        issues = {i.agent_file: i.problems for i in analysis.issues}
        assert issues == {
            "frontend.md": ["missing version"],
            "backend.md": ["missing description"],
        }

    def test_reports_missing_name(self, tmp_path, write_agent):
        write_agent(tmp_path / "src", "nameless.md", name=None)
        analysis = analyze_source("src", tmp_path / "src")
        assert analysis.issues[0].problems == ["missing name"]

    def test_problems_listed_name_first(self, tmp_path, write_agent):
        write_agent(tmp_path / "src", "bare.md", name=None, version=None, description=None)
        analysis = analyze_source("src", tmp_path / "src")
        assert analysis.issues[0].problems == [
            "missing name",
            "missing version",
            "missing description",
        ]

    def test_issue_paths_relative_to_source(self, tmp_path, write_agent):
        root = tmp_path / "src"
        write_agent(root / "core", "agent.md", name="architect", version=None)
        write_agent(root / "meta", "agent.md", name="planner", description=None)

        issues = {i.agent_file: i.problems for i in analyze_source("src", root).issues}
        assert issues == {
            "core/agent.md": ["missing version"],
            "meta/agent.md": ["missing description"],
        }

    def test_does_not_modify(self, messy_source):
        before = (messy_source / "frontend.md").read_text()
        analyze_source("messy", messy_source)
        assert (messy_source / "frontend.md").read_text() == before
        assert not (messy_source / IGNORE_FILE).exists()

    def test_missing_path(self, tmp_path):
        with pytest.raises(NotFoundError):
            analyze_source("gone", tmp_path / "gone")


class TestNormalizeSource:
    def test_makes_source_compliant(self, messy_source):
        result = normalize_source("messy", messy_source)

        assert result.agents_updated == 2
        assert "Added version 1.0.0 to frontend.md" in result.changes
        assert "Added description placeholder to backend.md" in result.changes
        assert "Created .camiignore file" in result.changes
        assert analyze_source("messy", messy_source).is_compliant

        backend = parse_agent_file(messy_source / "backend.md")
        assert backend.description == "Description for backend agent"
        assert backend.body == "# Agent\n\nDoes things.\n"
        assert (messy_source / IGNORE_FILE).read_text() == IGNORE_TEMPLATE

    def test_backs_up_first(self, messy_source):
        original = (messy_source / "frontend.md").read_text()
        result = normalize_source("messy", messy_source)

        backups = list_backups(messy_source)
        assert [str(b.path) for b in backups] == [result.backup_path]
        assert (backups[0].path / "frontend.md").read_text() == original

    def test_options_limit_changes(self, messy_source):
        options = SourceNormalizationOptions(
            add_versions=True, add_descriptions=False, create_ignore_file=False
        )
        result = normalize_source("messy", messy_source, options)
        assert result.agents_updated == 1
        assert not (messy_source / IGNORE_FILE).exists()
        assert parse_agent_file(messy_source / "backend.md").description == ""

    def test_second_run_is_a_no_op(self, messy_source):
        normalize_source("messy", messy_source)
        again = normalize_source("messy", messy_source)
        assert again.agents_updated == 0
        assert again.changes == []

    def test_disabled_version_is_not_written(self, tmp_path, write_agent):
        root = tmp_path / "src"
        path = write_agent(root, "bare.md", version=None, description=None)
        options = SourceNormalizationOptions(
            add_versions=False, add_descriptions=True, create_ignore_file=False
        )
        result = normalize_source("src", root, options)

        assert result.changes == ["Added description placeholder to bare.md"]
        assert "version" not in path.read_text()
        agent = parse_agent_file(path)
        assert agent.version == ""
        assert agent.description == "Description for bare agent"

    def test_changes_name_nested_files_by_relative_path(self, tmp_path, write_agent):
        root = tmp_path / "src"
        write_agent(root / "core", "agent.md", name="architect", version=None)
        write_agent(root / "meta", "agent.md", name="planner", version=None)

        result = normalize_source("src", root)
        assert "Added version 1.0.0 to core/agent.md" in result.changes
        assert "Added version 1.0.0 to meta/agent.md" in result.changes


class TestAnalyzeProject:
    def test_non_cami(self, project, manifests):
        analysis = analyze_project(project, [], manifests)
        assert analysis.state == ProjectState.NON_CAMI
        assert not analysis.has_agents_dir

    def test_aware_without_manifest(self, deployed, manifests, make_source):
        source = make_source("team", {"frontend": "2.0.0"}, priority=100)
        analysis = analyze_project(deployed, [source], manifests)

        assert analysis.state == ProjectState.AWARE
        assert analysis.agent_count == 2
        assert analysis.recommendations.minimal_required
        assert analysis.recommendations.standard_recommended

        agents = {a.name: a for a in analysis.agents}
        assert agents["frontend"].matched_source == "team"
        assert agents["frontend"].needs_upgrade
        assert agents["frontend"].content_hash.startswith("sha256:")
        assert not agents["orphan"].is_matched
        assert not agents["orphan"].has_version

    def test_highest_priority_source_is_matched(self, deployed, manifests, make_source):
        low = make_source("low", {"frontend": "1.0.0"}, priority=10)
        high = make_source("high", {"frontend": "3.0.0"}, priority=90)

        analysis = analyze_project(deployed, [low, high], manifests)
        frontend = next(a for a in analysis.agents if a.name == "frontend")
        assert frontend.matched_source == "high"
        assert frontend.source_priority == 90
        assert frontend.source_version == "3.0.0"

    def test_missing_project(self, tmp_path, manifests):
        with pytest.raises(NotFoundError):
            analyze_project(tmp_path / "gone", [], manifests)


class TestNormalizeProject:
    def test_state_transitions_to_native(self, deployed, manifests):
        assert analyze_project(deployed, [], manifests).state == ProjectState.AWARE

        result = normalize_project(deployed, "minimal", [], manifests)
        assert result.state_before == ProjectState.AWARE
        assert result.state_after == ProjectState.NATIVE
        assert result.undo_available
        assert result.changes == ["Created project manifest"]

        after = analyze_project(deployed, [], manifests)
        assert after.state == ProjectState.NATIVE
        assert not after.recommendations.minimal_required
        assert all(a.is_tracked for a in after.agents)

        manifest = manifests.read_project(deployed)
        assert {a.source for a in manifest.agents} == {"unknown"}
        assert str(deployed.resolve()) in manifests.read_central().deployments

    def test_standard_links_sources(self, deployed, manifests, make_source):
        team = make_source("team", {"frontend": "2.0.0"}, priority=100)
        result = normalize_project(deployed, NormalizationLevel.STANDARD, [team], manifests)
        assert result.changes == ["Created project manifest with source links"]

        agents = {a.name: a for a in manifests.read_project(deployed).agents}
        assert agents["frontend"].source == "team"
        assert agents["frontend"].priority == 100
        assert agents["frontend"].needs_upgrade
        assert agents["orphan"].source == "unknown"
        assert agents["orphan"].priority == UNMATCHED_PRIORITY

    def test_full_is_not_implemented(self, deployed, manifests):
        with pytest.raises(NormalizationNotImplementedError):
            normalize_project(deployed, "full", [], manifests)
        assert list_backups(deployed) == []
        assert not manifests.has_project_manifest(deployed)

    def test_requires_agents_dir(self, project, manifests):
        with pytest.raises(NotFoundError, match="deploy agents first"):
            normalize_project(project, "minimal", [], manifests)

    def test_failure_reports_backup(self, deployed, manifests):
        with patch.object(
            manifests, "record_deployment", side_effect=ManifestError("disk full")
        ):
            with pytest.raises(NormalizationError, match="disk full") as exc_info:
                normalize_project(deployed, "minimal", [], manifests)

        backup_path = exc_info.value.backup_path
        assert backup_path
        assert [str(b.path) for b in list_backups(deployed)] == [backup_path]


def test_end_to_end_source_scenario(tmp_path, write_agent):
    root = tmp_path / "team"
    write_agent(root, "frontend.md", version=None, description=None)
    write_agent(root / "core", "backend.md", version="2.1.0")

    before = analyze_source("team", root)
    assert not before.is_compliant
    assert before.issues[0].agent_file == "frontend.md"

    normalize_source("team", root)
    after = analyze_source("team", root)
    assert after.is_compliant
    assert after.agent_count == 2
    assert parse_agent_file(root / "core" / "backend.md").version == "2.1.0"
    assert parse_agent_file(root / "frontend.md").version == "1.0.0"
