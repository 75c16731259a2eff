"""Workflow management for specgen.

This module ties the analyzer, planner, formatter, relationship engine,
plan parser and execution engine to a spec store, and shapes every result
as a JSON friendly dict with guidance on the next step.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from .analyzer import analyze_requirements, determine_priority
from .config import SpecGenConfig
from .engine import ExecutionEngine, TaskExecutor
from .errors import SpecNotFoundError
from .formatter import count_planned_tasks, format_spec_content
from .models import SpecRecord, WORKFLOW_STEPS
from .plan_parser import parse_implementation_plan, summarize_layers
from .planner import generate_implementation_plan
from .relationships import suggest_parent_specs, suggest_related_specs
from .specgen_logging import (
    log_error_with_context,
    log_operation,
    log_spec_created,
    log_spec_deleted,
    log_spec_updated,
)
from .store import FileSpecStore

logger = logging.getLogger("specgen.workflow")

SPEC_URL_PATTERN = re.compile(r"^spec://(\d+)$")
STORED_RELATED_LIMIT = 5
REPORTED_RELATED_LIMIT = 3
UNTITLED_SPEC = "Untitled specification"


class WorkflowManager:
    """Runs the architect and engineer workflows against a file spec store."""

    def __init__(self, root: Path | str, config: Optional[SpecGenConfig] = None):
        self.config = config or SpecGenConfig.from_env()
        self.store = FileSpecStore(root, storage_dir=self.config.storage_dir)

    # ------------------------------------------------------------------
    # Architect
    # ------------------------------------------------------------------

    async def create_spec_from_description(self, description: str) -> Dict[str, Any]:
        """Analyze a feature description and store the resulting spec."""
        try:
            if not description or not description.strip():
                raise ValueError("Feature description cannot be empty")

            with log_operation("architect_spec", description_length=len(description)):
                profile = analyze_requirements(description)
                if not profile.title:
                    profile = replace(profile, title=UNTITLED_SPEC)
                plan = generate_implementation_plan(profile)
                content = format_spec_content(profile, plan)
                title = profile.title

                draft = SpecRecord(id=0, title=title, body_md=content, feature_group=profile.detected_group)
                related = suggest_related_specs(
                    draft,
                    await self.store.list_specs(),
                    min_score=self.config.related_min_score,
                    limit=self.config.related_limit,
                )
                priority = determine_priority(profile)

                record = await self.store.create_spec(
                    title,
                    content,
                    feature_group=profile.detected_group,
                    theme_category=profile.detected_theme,
                    priority=priority,
                    related_specs=[suggestion.spec_id for suggestion in related[:STORED_RELATED_LIMIT]],
                    created_via="architect_spec",
                )

            log_spec_created(record.id, record.title, feature_group=record.feature_group, priority=priority)
            planned = count_planned_tasks(plan)

            return {
                "spec_id": record.id,
                "spec_url": record.spec_url,
                "spec": record.to_dict(include_body=False),
                "requirements": profile.to_dict(),
                "implementation_plan": plan.to_dict(),
                "planned_tasks": planned,
                "related_specs": [suggestion.to_dict() for suggestion in related[:REPORTED_RELATED_LIMIT]],
                "next_suggested_step": "engineer_spec",
                "workflow_tip": f"Next: run engineer_spec with {record.spec_url} to execute the plan",
                "message": (
                    f'Created specification "{record.title}" ({record.spec_url}): '
                    f"{profile.detected_group} specification with {planned} tasks"
                ),
            }

        except Exception as e:
            logger.error(f"Failed to create specification: {e}")
            log_error_with_context(e, {
                "operation": "architect_spec",
                "description_length": len(description) if description else 0,
            })
            return {
                "error": f"Failed to create specification: {e}",
                "suggestion": "Provide a non-empty feature description and check that the project root is writable",
                "next_suggested_step": "architect_spec",
            }

    # ------------------------------------------------------------------
    # Manual management
    # ------------------------------------------------------------------

    async def create_spec(
        self,
        title: str,
        body_md: str,
        feature_group: Optional[str] = None,
        theme_category: Optional[str] = None,
        priority: Optional[str] = None,
        status: str = "draft",
        related_specs: Optional[List[int]] = None,
        parent_spec_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Store a hand-written spec; metadata left out is detected from the text."""
        try:
            record = await self.store.create_spec(
                title,
                body_md or "",
                status=status,
                feature_group=feature_group,
                theme_category=theme_category,
                priority=priority,
                related_specs=related_specs,
                parent_spec_id=parent_spec_id,
                created_via="manual",
            )
            log_spec_created(record.id, record.title, feature_group=record.feature_group, priority=record.priority)
            has_plan = bool(parse_implementation_plan(record.body_md))
            return {
                "spec_id": record.id,
                "spec_url": record.spec_url,
                "spec": record.to_dict(include_body=False),
                "message": f'Created specification "{record.title}" ({record.spec_url})',
                "next_suggested_step": "engineer_spec" if has_plan else "suggest_relationships",
                "workflow_tip": (
                    f"Next: run engineer_spec with {record.spec_url} to execute the plan"
                    if has_plan else "Add an '## Implementation Plan' section before running engineer_spec"
                ),
            }
        except Exception as e:
            return self._error("create spec", e, title)

    async def update_spec(
        self,
        spec_id: int,
        title: Optional[str] = None,
        body_md: Optional[str] = None,
        status: Optional[str] = None,
        feature_group: Optional[str] = None,
        theme_category: Optional[str] = None,
        priority: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Change content or metadata of a stored spec; ``None`` leaves a field as it is."""
        updates = {
            name: value
            for name, value in (
                ("title", title),
                ("body_md", body_md),
                ("status", status),
                ("feature_group", feature_group),
                ("theme_category", theme_category),
                ("priority", priority),
            )
            if value is not None
        }
        try:
            if not updates:
                raise ValueError("No updates provided")
            if "title" in updates and not updates["title"].strip():
                raise ValueError("Spec title cannot be empty")

            record = await self.store.update_spec(spec_id, updates)
            log_spec_updated(record.id, sorted(updates), status=record.status)
            return {
                "spec": record.to_dict(include_body=False),
                "updated_fields": sorted(updates),
                "message": f"Updated {record.spec_url}: {', '.join(sorted(updates))}",
                "next_suggested_step": "plan_status" if record.status == "in-progress" else "get_spec",
                "workflow_tip": f"Current status: {record.status}",
            }
        except Exception as e:
            return self._error("update spec", e, spec_id)

    async def delete_spec(self, spec_id: int) -> Dict[str, Any]:
        try:
            entry = await self.store.delete_spec(spec_id)
            log_spec_deleted(spec_id, title=entry.get("title"))
            return {
                "deleted": True,
                "spec_id": spec_id,
                "title": entry.get("title"),
                "message": f"Deleted spec://{spec_id}",
                "next_suggested_step": "list_specs",
                "workflow_tip": "Specs that referenced this id keep the reference; update them if needed",
            }
        except Exception as e:
            return self._error("delete spec", e, spec_id)

    # ------------------------------------------------------------------
    # Engineer
    # ------------------------------------------------------------------

    async def resolve_spec(self, reference: str | int) -> Optional[SpecRecord]:
        """Find a spec by ``spec://<id>``, a bare id, or the best search hit."""
        if isinstance(reference, int):
            return await self.store.get_spec_by_id(reference)

        text = str(reference or "").strip()
        match = SPEC_URL_PATTERN.match(text)
        if match:
            return await self.store.get_spec_by_id(int(match.group(1)))
        if text.isdigit():
            return await self.store.get_spec_by_id(int(text))
        if not text:
            return None

        hits = await self.store.search_specs(text, limit=1)
        return hits[0][0] if hits else None

    async def execute_spec(self, reference: str | int, executor: Optional[TaskExecutor] = None) -> Dict[str, Any]:
        """Execute the implementation plan of the referenced spec."""
        try:
            spec = await self.resolve_spec(reference)
            if spec is None:
                return {
                    "error": f"No specification found for '{reference}'",
                    "suggestion": "Use architect_spec to create a specification first, then engineer_spec spec://ID",
                    "next_suggested_step": "architect_spec",
                }

            layers = parse_implementation_plan(spec.body_md)
            if not layers:
                return {
                    "error": "No implementation plan found",
                    "suggestion": f"Add an '## Implementation Plan' section with task checklists to {spec.spec_url}",
                    "spec_id": spec.id,
                    "next_suggested_step": "get_spec",
                }

            with log_operation("engineer_spec", spec_id=spec.id, layers=len(layers)):
                engine = ExecutionEngine(self.store, executor)
                result = await engine.run(spec, layers)

            if result.success:
                next_step = "plan_status"
                tip = "All tasks are complete. Run your test suite and review the execution log"
            else:
                next_step = "engineer_spec"
                tip = f"Fix task {result.failed_task_id} and run engineer_spec again to resume"

            return {
                "spec_id": spec.id,
                "spec_url": spec.spec_url,
                "title": spec.title,
                "success": result.success,
                "result": result.to_dict(),
                "run_state": engine.state.value,
                "next_suggested_step": next_step,
                "workflow_tip": tip,
                "message": result.message,
            }

        except Exception as e:
            logger.error(f"Failed to execute specification: {e}")
            log_error_with_context(e, {"operation": "engineer_spec", "reference": str(reference)})
            return {
                "error": f"Failed to execute specification: {e}",
                "suggestion": "Check the spec's Implementation Plan section and the project storage",
                "next_suggested_step": "plan_status",
            }

    async def plan_status(self, spec_id: int) -> Dict[str, Any]:
        """Completed and remaining tasks for a spec's plan."""
        try:
            spec = await self._require_spec(spec_id)
            summary = summarize_layers(parse_implementation_plan(spec.body_md))
            if summary["is_complete"]:
                tip = "Plan complete"
            elif summary["next_task"]:
                tip = f"Next task: {summary['next_task']['id']}"
            else:
                tip = "No tasks found in the Implementation Plan section"
            return {
                "spec_id": spec.id,
                "spec_url": spec.spec_url,
                "title": spec.title,
                **summary,
                "next_suggested_step": "get_spec" if summary["is_complete"] else "engineer_spec",
                "workflow_tip": tip,
            }
        except Exception as e:
            return self._error("get plan status", e, spec_id)

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    async def suggest_relationships(
        self,
        spec_id: int,
        limit: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> Dict[str, Any]:
        try:
            spec = await self._require_spec(spec_id)
            suggestions = suggest_related_specs(
                spec,
                await self.store.list_specs(),
                min_score=self.config.related_min_score if min_score is None else min_score,
                limit=self.config.related_limit if limit is None else limit,
            )
            return {
                "spec_id": spec.id,
                "suggestions": [suggestion.to_dict() for suggestion in suggestions],
                "count": len(suggestions),
                "next_suggested_step": "update_spec_relationships" if suggestions else "engineer_spec",
                "workflow_tip": (
                    "Link the relevant suggestions with update_spec_relationships"
                    if suggestions else "No related specifications above the score threshold"
                ),
            }
        except Exception as e:
            return self._error("suggest relationships", e, spec_id)

    async def suggest_parent(self, spec_id: int, limit: int = 3) -> Dict[str, Any]:
        try:
            spec = await self._require_spec(spec_id)
            suggestions = suggest_parent_specs(
                spec,
                await self.store.list_specs(),
                min_score=self.config.parent_min_score,
                limit=limit,
            )
            return {
                "spec_id": spec.id,
                "suggestions": [suggestion.to_dict() for suggestion in suggestions],
                "count": len(suggestions),
                "next_suggested_step": "update_spec_relationships" if suggestions else "engineer_spec",
                "workflow_tip": (
                    f"Consider spec://{suggestions[0].spec_id} as the parent"
                    if suggestions else "No parent candidate above the score threshold"
                ),
            }
        except Exception as e:
            return self._error("suggest parent", e, spec_id)

    async def update_relationships(
        self,
        spec_id: int,
        related_specs: Optional[List[int]] = None,
        parent_spec_id: Optional[int] = None,
        clear_parent: bool = False,
    ) -> Dict[str, Any]:
        """Replace related ids and set or clear the parent id."""
        try:
            if clear_parent:
                record = await self.store.update_relationships(spec_id, related_specs, parent_spec_id=None)
            elif parent_spec_id is not None:
                record = await self.store.update_relationships(spec_id, related_specs, parent_spec_id=parent_spec_id)
            else:
                record = await self.store.update_relationships(spec_id, related_specs)
            return {
                "spec": record.to_dict(include_body=False),
                "message": f"Updated relationships for {record.spec_url}",
                "next_suggested_step": "engineer_spec",
                "workflow_tip": f"Next: run engineer_spec with {record.spec_url}",
            }
        except Exception as e:
            return self._error("update relationships", e, spec_id)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_spec(self, reference: str | int) -> Dict[str, Any]:
        try:
            spec = await self.resolve_spec(reference)
            if spec is None:
                raise SpecNotFoundError(f"Spec '{reference}' not found")
            return {"spec": spec.to_dict()}
        except Exception as e:
            return self._error("get spec", e, reference)

    async def list_specs(self, feature_group: Optional[str] = None, status: Optional[str] = None) -> Dict[str, Any]:
        try:
            specs = await self.store.list_specs(feature_group=feature_group, status=status)
            return {
                "specs": [spec.to_dict(include_body=False) for spec in specs],
                "count": len(specs),
            }
        except Exception as e:
            return self._error("list specs", e, None)

    async def search_specs(self, query: str, limit: int = 10) -> Dict[str, Any]:
        try:
            hits = await self.store.search_specs(query, limit=limit)
            return {
                "query": query,
                "results": [
                    {**spec.to_dict(include_body=False), "score": round(score, 4)}
                    for spec, score in hits
                ],
                "count": len(hits),
            }
        except Exception as e:
            return self._error("search specs", e, None)

    # ------------------------------------------------------------------
    # Workflow guidance
    # ------------------------------------------------------------------

    @staticmethod
    def get_workflow_guide() -> Dict[str, Any]:
        return {
            "workflow_overview": "Specification workflow in recommended order",
            "steps": [step.to_dict() for step in WORKFLOW_STEPS],
            "tips": [
                "architect_spec stores the spec with related specs already linked",
                "engineer_spec resumes where it stopped: completed tasks are skipped",
                "A failed task halts the run; fix it and run engineer_spec again",
                "Relationship scores are relative to the spec you ask about",
            ],
        }

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _require_spec(self, spec_id: int) -> SpecRecord:
        spec = await self.store.get_spec_by_id(spec_id)
        if spec is None:
            raise SpecNotFoundError(f"Spec {spec_id} not found", spec_id)
        return spec

    def _error(self, action: str, error: Exception, reference: Any) -> Dict[str, Any]:
        log_error_with_context(error, {"operation": action.replace(" ", "_"), "reference": str(reference)})
        if isinstance(error, SpecNotFoundError):
            return {
                "error": str(error),
                "suggestion": "Use list_specs or search_specs to find a valid spec id",
                "next_suggested_step": "list_specs",
            }
        return {
            "error": f"Failed to {action}: {error}",
            "suggestion": "Check your project root and stored specifications",
            "next_suggested_step": "list_specs",
        }
