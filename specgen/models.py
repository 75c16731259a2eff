"""Data models for specgen.

This module contains the core data structures used throughout specgen,
representing requirement profiles, implementation plans, parsed tasks,
relationship suggestions, execution results and stored specifications.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple


FEATURE_GROUPS = ("auth", "ui", "api", "data", "integration", "general")
THEME_CATEGORIES = ("backend", "frontend", "integration", "general")
COMPLEXITY_LEVELS = ("simple", "moderate", "complex")
TASK_STATUSES = ("pending", "completed")
SPEC_STATUSES = ("draft", "todo", "in-progress", "done")
PRIORITIES = ("low", "medium", "high")

# Feature groups name a directory under the specs folder.
_GROUP_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


def utc_timestamp() -> str:
    """Current UTC time as an ISO-8601 string with a trailing Z."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class RequirementProfile:
    """Structured interpretation of a free-text feature request."""

    title: str
    keywords: Tuple[str, ...]
    detected_group: str
    detected_theme: str
    complexity: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "title": self.title,
            "keywords": list(self.keywords),
            "detected_group": self.detected_group,
            "detected_theme": self.detected_theme,
            "complexity": self.complexity,
        }


@dataclass(frozen=True, slots=True)
class ImplementationPlanSpec:
    """Skeleton of an implementation plan derived from a requirement profile."""

    layers: Tuple[str, ...]
    estimated_tasks: int
    recommended_approach: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "layers": list(self.layers),
            "estimated_tasks": self.estimated_tasks,
            "recommended_approach": self.recommended_approach,
        }


@dataclass(slots=True)
class Task:
    """A single checklist entry of an implementation plan."""

    id: str
    description: str
    status: str
    layer: str
    estimate: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.status == "completed"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "description": self.description,
            "status": self.status,
            "layer": self.layer,
            "estimate": self.estimate,
        }


@dataclass(slots=True)
class Layer:
    """A named phase of an implementation plan."""

    name: str
    tasks: List[Task] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "tasks": [task.to_dict() for task in self.tasks],
        }


@dataclass(slots=True)
class RelationshipSuggestion:
    """A scored suggestion that two specifications are related."""

    spec_id: int
    score: float
    reason: str
    relationship_type: str = "related"
    title: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "spec_id": self.spec_id,
            "title": self.title,
            "score": round(self.score, 4),
            "reason": self.reason,
            "relationship_type": self.relationship_type,
        }


@dataclass(slots=True)
class ExecutorOutcome:
    """What a task executor reports back for one task."""

    success: bool
    error: Optional[str] = None


@dataclass(slots=True)
class ExecutionResult:
    """Outcome of running an implementation plan."""

    success: bool
    layers_completed: int
    total_tasks: int
    completed_tasks: int
    execution_time: str
    failed_task_id: Optional[str] = None
    error: Optional[str] = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data: Dict[str, Any] = {
            "success": self.success,
            "layers_completed": self.layers_completed,
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_tasks,
            "execution_time": self.execution_time,
            "message": self.message,
        }
        if self.failed_task_id is not None:
            data["failed_task_id"] = self.failed_task_id
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(slots=True)
class SpecRecord:
    """A stored specification document with its metadata."""

    id: int
    title: str
    body_md: str
    status: str = "draft"
    feature_group: str = "general"
    theme_category: str = "general"
    priority: str = "medium"
    created_at: str = field(default_factory=utc_timestamp)
    updated_at: str = field(default_factory=utc_timestamp)
    created_via: str = "manual"
    related_specs: List[int] = field(default_factory=list)
    parent_spec_id: Optional[int] = None
    tags: List[str] = field(default_factory=list)

    @property
    def spec_url(self) -> str:
        return f"spec://{self.id}"

    def to_dict(self, include_body: bool = True) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "feature_group": self.feature_group,
            "theme_category": self.theme_category,
            "priority": self.priority,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "created_via": self.created_via,
            "related_specs": list(self.related_specs),
            "parent_spec_id": self.parent_spec_id,
            "tags": list(self.tags),
            "spec_url": self.spec_url,
        }
        if include_body:
            data["body_md"] = self.body_md
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SpecRecord":
        """Create from dictionary representation."""
        return cls(
            id=int(data["id"]),
            title=data["title"],
            body_md=data.get("body_md", ""),
            status=data.get("status", "draft"),
            feature_group=data.get("feature_group", "general"),
            theme_category=data.get("theme_category", "general"),
            priority=data.get("priority", "medium"),
            created_at=data.get("created_at", utc_timestamp()),
            updated_at=data.get("updated_at", utc_timestamp()),
            created_via=data.get("created_via", "manual"),
            related_specs=[int(item) for item in data.get("related_specs", [])],
            parent_spec_id=data.get("parent_spec_id"),
            tags=list(data.get("tags", [])),
        )

    def validate(self) -> List[str]:
        """Validate the record and return any issues."""
        issues = []

        if not self.title:
            issues.append("Title is required")
        if self.status not in SPEC_STATUSES:
            issues.append(f"Invalid status: {self.status}")
        if self.priority not in PRIORITIES:
            issues.append(f"Invalid priority: {self.priority}")
        if not _GROUP_NAME_PATTERN.match(self.feature_group or ""):
            issues.append(f"Invalid feature group: {self.feature_group}")
        if self.parent_spec_id is not None and self.parent_spec_id == self.id:
            issues.append("A specification cannot be its own parent")

        return issues


@dataclass(slots=True)
class WorkflowStep:
    """Represents a single step in the specgen workflow."""

    step_number: int
    name: str
    tool_name: str
    description: str
    purpose: str
    prerequisites: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "step": self.step_number,
            "name": self.name,
            "tool": self.tool_name,
            "description": self.description,
            "purpose": self.purpose,
            "prerequisites": list(self.prerequisites),
        }


# Workflow step definitions
WORKFLOW_STEPS = [
    WorkflowStep(
        step_number=1,
        name="Architecture",
        tool_name="architect_spec",
        description="Classify a feature description and store a structured specification",
        purpose="Turn free text into a spec with group, theme, priority and a task plan",
    ),
    WorkflowStep(
        step_number=2,
        name="Relationship Review",
        tool_name="suggest_relationships, suggest_parent_spec, update_spec_relationships",
        description="Review related and parent specification suggestions",
        purpose="Link the new spec to existing work before implementation",
        prerequisites=["Architecture"],
    ),
    WorkflowStep(
        step_number=3,
        name="Engineering",
        tool_name="engineer_spec",
        description="Execute the spec's implementation plan layer by layer",
        purpose="Complete tasks in document order, stopping at the first failure",
        prerequisites=["Architecture"],
    ),
    WorkflowStep(
        step_number=4,
        name="Progress Review",
        tool_name="plan_status",
        description="Inspect completed and remaining tasks per layer",
        purpose="Decide whether to resume execution or fix a failing task",
        prerequisites=["Engineering"],
    ),
]
