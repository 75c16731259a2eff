"""Unit tests for implementation plan parsing.

This module tests the line classifier, the section scan, the targeted
checkbox rewrite and the round trip with the formatter.
"""

from datetime import date

import pytest

from specgen.analyzer import analyze_requirements
from specgen.formatter import count_planned_tasks, format_spec_content
from specgen.plan_parser import (
    LineKind,
    classify_line,
    parse_implementation_plan,
    set_task_status,
    summarize_layers,
)
from specgen.planner import generate_implementation_plan


SAMPLE_BODY = """# SPEC-20250101-sample

## Overview
- [ ] **OUT-001**: Not part of the plan

## Implementation Plan

- [ ] **ORPHAN-1**: Before any layer

#### Database Layer (DAT-XXX)
- [x] **DAT-001**: Create schema [Estimate: 2-3hr]
- [ ] **DAT-002**: Add indexes
Some free text that is ignored

#### Backend Layer (BAC-XXX)
- [ ] **BAC-003**: Handle [optional] flags [Estimate: 1hr]

## Success Metrics
- [ ] **MET-001**: Not part of the plan either
"""


class TestClassifyLine:
    """Test cases for classify_line."""

    def test_layer_header(self):
        parsed = classify_line("#### Security Layer (SEC-XXX)")

        assert parsed.kind is LineKind.LAYER_HEADER
        assert parsed.layer_name == "Security Layer"

    def test_pending_task_with_estimate(self):
        parsed = classify_line("- [ ] **SEC-001**: Implement authentication [Estimate: 2-3hr]")

        assert parsed.kind is LineKind.TASK
        assert parsed.task_id == "SEC-001"
        assert parsed.description == "Implement authentication"
        assert parsed.estimate == "2-3hr"
        assert parsed.completed is False

    def test_completed_task_without_estimate(self):
        parsed = classify_line("- [x] **T-1**: Write docs")

        assert parsed.completed is True
        assert parsed.description == "Write docs"
        assert parsed.estimate is None

    def test_brackets_inside_description(self):
        """Test that only the trailing bracket group is the estimate."""
        parsed = classify_line("- [ ] **API-002**: Support [beta] clients [Estimate: 4hr]")

        assert parsed.description == "Support [beta] clients"
        assert parsed.estimate == "4hr"

    def test_estimate_without_label(self):
        parsed = classify_line("- [ ] **API-003**: Ship it [1d]")

        assert parsed.estimate == "1d"

    @pytest.mark.parametrize("line", [
        "",
        "plain text",
        "### Task Breakdown",
        "- [X] **A-1**: uppercase mark",
        "- [ ] A-1: no bold id",
        "#### Layer without code",
        "* [ ] **A-1**: wrong bullet",
    ])
    def test_other_lines(self, line):
        assert classify_line(line).kind is LineKind.OTHER


class TestParseImplementationPlan:
    """Test cases for parse_implementation_plan."""

    def test_parses_layers_and_tasks(self):
        layers = parse_implementation_plan(SAMPLE_BODY)

        assert [layer.name for layer in layers] == ["Database Layer", "Backend Layer"]
        assert [task.id for task in layers[0].tasks] == ["DAT-001", "DAT-002"]
        assert layers[0].tasks[0].status == "completed"
        assert layers[0].tasks[1].status == "pending"
        assert layers[0].tasks[1].layer == "Database Layer"
        assert layers[1].tasks[0].description == "Handle [optional] flags"
        assert layers[1].tasks[0].estimate == "1hr"

    def test_ignores_tasks_outside_section_and_before_layers(self):
        ids = [task.id for layer in parse_implementation_plan(SAMPLE_BODY) for task in layer.tasks]

        assert "OUT-001" not in ids
        assert "ORPHAN-1" not in ids
        assert "MET-001" not in ids

    def test_heading_is_case_insensitive(self):
        body = "## implementation plan\n#### Core Layer (COR-XXX)\n- [ ] **COR-001**: Do it\n"

        assert len(parse_implementation_plan(body)) == 1

    def test_missing_section(self):
        assert parse_implementation_plan("# Title\n\n#### Layer (L-XXX)\n- [ ] **L-1**: x\n") == []
        assert parse_implementation_plan("") == []

    def test_empty_layer_is_kept(self):
        body = "## Implementation Plan\n#### Empty Layer (EMP-XXX)\n#### Next Layer (NEX-XXX)\n"

        layers = parse_implementation_plan(body)

        assert [layer.name for layer in layers] == ["Empty Layer", "Next Layer"]
        assert layers[0].tasks == []

    def test_duplicate_ids_are_not_rejected(self):
        body = "## Implementation Plan\n#### L (X)\n- [ ] **A-1**: one\n- [ ] **A-1**: two\n"

        tasks = parse_implementation_plan(body)[0].tasks

        assert [task.description for task in tasks] == ["one", "two"]

    def test_crlf_line_endings(self):
        body = "## Implementation Plan\r\n#### Core Layer (COR-XXX)\r\n- [ ] **COR-001**: Do it\r\n"

        layers = parse_implementation_plan(body)

        assert layers[0].tasks[0].description == "Do it"


class TestSetTaskStatus:
    """Test cases for set_task_status."""

    def test_marks_only_target_line(self):
        updated = set_task_status(SAMPLE_BODY, "DAT-002", "completed")

        assert "- [x] **DAT-002**: Add indexes" in updated
        assert updated.replace("- [x] **DAT-002**", "- [ ] **DAT-002**") == SAMPLE_BODY

    def test_can_reopen_task(self):
        updated = set_task_status(SAMPLE_BODY, "DAT-001", "pending")

        assert "- [ ] **DAT-001**: Create schema [Estimate: 2-3hr]" in updated

    def test_id_must_match_exactly(self):
        """Test that IDs sharing a prefix are not touched."""
        body = "- [ ] **A-10**: ten\n- [ ] **A-1**: one\n"

        updated = set_task_status(body, "A-1", "completed")

        assert updated == "- [ ] **A-10**: ten\n- [x] **A-1**: one\n"

    def test_unknown_id_leaves_body_unchanged(self):
        assert set_task_status(SAMPLE_BODY, "NOPE-1", "completed") == SAMPLE_BODY

    def test_preserves_crlf(self):
        body = "- [ ] **A-1**: one\r\n- [ ] **A-2**: two\r\n"

        assert set_task_status(body, "A-2", "completed") == "- [ ] **A-1**: one\r\n- [x] **A-2**: two\r\n"


class TestRoundTrip:
    """Test cases for formatter and parser agreement."""

    @pytest.mark.parametrize("description", [
        "User login with JWT tokens and password reset",
        "Build an analytics dashboard component",
        "Expose an order service endpoint",
        "Sync external webhook events via mcp",
        "Migrate the legacy schema",
        "Rework the reporting system",
        "Small copy change",
    ])
    def test_layers_and_task_counts_match(self, description):
        profile = analyze_requirements(description)
        plan = generate_implementation_plan(profile)
        layers = parse_implementation_plan(format_spec_content(profile, plan, today=date(2025, 1, 1)))

        assert len(layers) == len(plan.layers)
        assert [layer.name for layer in layers] == list(plan.layers)
        assert sum(len(layer.tasks) for layer in layers) == count_planned_tasks(plan)
        assert all(task.status == "pending" for layer in layers for task in layer.tasks)

    def test_toggle_round_trip(self):
        """Test that flipping one task keeps its other fields."""
        profile = analyze_requirements("Expose an order service endpoint")
        body = format_spec_content(profile, generate_implementation_plan(profile), today=date(2025, 1, 1))
        before = parse_implementation_plan(body)[1].tasks[0]

        after = parse_implementation_plan(set_task_status(body, before.id, "completed"))[1].tasks[0]

        assert after.status == "completed"
        assert (after.id, after.description, after.estimate) == (before.id, before.description, before.estimate)


class TestSummarizeLayers:
    """Test cases for summarize_layers."""

    def test_summary(self):
        summary = summarize_layers(parse_implementation_plan(SAMPLE_BODY))

        assert summary["total_tasks"] == 3
        assert summary["completed_tasks"] == 1
        assert summary["remaining_tasks"] == 2
        assert summary["next_task"]["id"] == "DAT-002"
        assert summary["is_complete"] is False
        assert summary["layers"][1] == {
            "name": "Backend Layer",
            "total_tasks": 1,
            "completed_tasks": 0,
            "remaining_tasks": 1,
        }

    def test_empty_plan_is_not_complete(self):
        summary = summarize_layers([])

        assert summary["is_complete"] is False
        assert summary["next_task"] is None
