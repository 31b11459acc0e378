from __future__ import annotations

from pathlib import Path

from cami.models import (
    Agent,
    BatchOutcome,
    DeploymentStatus,
    OutcomeStatus,
    ProjectState,
    status_symbol,
)


class TestEnums:
    def test_wire_values(self):
        assert ProjectState.AWARE == "cami-aware"
        assert ProjectState("cami-native") is ProjectState.NATIVE
        assert DeploymentStatus("update-available") is DeploymentStatus.UPDATE_AVAILABLE

    def test_status_symbols(self):
        assert status_symbol(DeploymentStatus.UP_TO_DATE) == "✓"
        assert status_symbol("not-deployed") == "○"
        assert status_symbol("bogus") == "?"


class TestAgent:
    def test_file_name_and_category(self):
        agent = Agent(name="x", file_path=Path("/src/core/x.md"))
        assert agent.file_name == "x.md"
        assert agent.display_category == "uncategorized"
        agent.category = "core"
        assert agent.display_category == "core"


class TestBatchOutcome:
    def test_partitions_items(self):
        outcome = BatchOutcome()
        outcome.add("a", OutcomeStatus.OK)
        outcome.add("b", OutcomeStatus.SKIPPED, "no git remote")
        outcome.add("c", OutcomeStatus.FAILED, "boom")

        assert outcome.succeeded == ["a"]
        assert outcome.skipped == ["b"]
        assert outcome.failed == ["c"]
        assert outcome.has_failures
        assert outcome.summary() == "1 ok, 1 skipped, 1 failed"

    def test_summary_omits_empty_groups(self):
        outcome = BatchOutcome()
        outcome.add("a", OutcomeStatus.OK)
        assert outcome.summary() == "1 ok"
        assert not outcome.has_failures

    def test_to_dict(self):
        outcome = BatchOutcome()
        outcome.add("a", OutcomeStatus.FAILED, "boom")
        assert outcome.to_dict()["items"] == [{"name": "a", "status": "failed", "message": "boom"}]
