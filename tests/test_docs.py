from __future__ import annotations

import pytest

from cami.docs import (
    SECTION_END,
    deployed_agents,
    merge_section,
    render_section,
    update_claude_md,
)
from cami.errors import NotFoundError
from cami.manifest import project_agents_dir


@pytest.fixture
def deployed(project, write_agent):
    agents_dir = project_agents_dir(project)
    write_agent(agents_dir, "frontend.md", version="1.2.0", description="Builds the UI")
    write_agent(agents_dir, "backend.md", version=None, description=None)
    return project


class TestRenderSection:
    def test_lists_agents(self, deployed):
        section = render_section(deployed_agents(deployed))
        assert section.startswith("<!-- CAMI-MANAGED: DEPLOYED-AGENTS | Last Updated: ")
        assert "## Deployed Agents" in section
        assert "### frontend (v1.2.0)\nBuilds the UI" in section
        assert "### backend\n" in section
        assert section.rstrip().endswith(SECTION_END)


class TestMergeSection:
    def test_appends_when_absent(self):
        merged = merge_section("# Project\n\nNotes.", "SECTION\n")
        assert merged == "# Project\n\nNotes.\n\nSECTION\n"

    def test_replaces_existing_section(self):
        existing = (
            "# Project\n\n"
            "<!-- CAMI-MANAGED: DEPLOYED-AGENTS | Last Updated: 2025-01-01T00:00:00+00:00 -->\n"
            "old content\n"
            f"{SECTION_END}\n"
            "## After\n"
        )
        merged = merge_section(existing, "NEW\n")
        assert merged == "# Project\n\nNEW\n## After\n"

    def test_bare_start_marker(self):
        existing = f"<!-- CAMI-MANAGED: DEPLOYED-AGENTS -->\nold\n{SECTION_END}"
        assert merge_section(existing, "NEW\n") == "NEW\n"

    def test_empty_document(self):
        assert merge_section("", "NEW\n") == "NEW\n"


class TestUpdateClaudeMd:
    def test_creates_file(self, deployed):
        content = update_claude_md(deployed)
        assert (deployed / "CLAUDE.md").read_text() == content
        assert "### frontend (v1.2.0)" in content

    def test_preserves_user_content_and_stays_single(self, deployed):
        (deployed / "CLAUDE.md").write_text("# My notes\n")
        update_claude_md(deployed)
        content = update_claude_md(deployed, section_name="Agents")

        assert content.startswith("# My notes\n")
        assert content.count(SECTION_END) == 1
        assert "## Agents" in content
        assert "## Deployed Agents" not in content

    def test_dry_run_writes_nothing(self, deployed):
        content = update_claude_md(deployed, dry_run=True)
        assert "frontend" in content
        assert not (deployed / "CLAUDE.md").exists()

    def test_requires_agents(self, project):
        with pytest.raises(NotFoundError, match="no agents directory"):
            update_claude_md(project)
        project_agents_dir(project).mkdir(parents=True)
        with pytest.raises(NotFoundError, match="no agents found"):
            update_claude_md(project)
