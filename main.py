"""MCP server exposing the specgen architect and engineer workflows."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from specgen.analyzer import analyze_requirements as _analyze_requirements
from specgen.analyzer import determine_priority
from specgen.config import SpecGenConfig
from specgen.formatter import count_planned_tasks
from specgen.planner import generate_implementation_plan
from specgen.specgen_logging import setup_logging
from specgen.workflow import WorkflowManager

mcp = FastMCP("specgen")

CONFIG = SpecGenConfig.from_env()
SERVER_ROOT = Path(__file__).resolve().parent


def _candidate_bases() -> List[Path]:
    cwd = Path.cwd().resolve()
    bases: List[Path] = [cwd, *cwd.parents]
    for base in (SERVER_ROOT, *SERVER_ROOT.parents):
        if base not in bases:
            bases.append(base)
    return bases


def _locate_workspace_root() -> Optional[Path]:
    for base in _candidate_bases():
        if (base / CONFIG.storage_dir).is_dir():
            return base
    return None


def _resolve_root(root: Optional[str]) -> Path:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    env_root = os.getenv("SPECGEN_PROJECT_ROOT")
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable SPECGEN_PROJECT_ROOT points to '{env_root}', which does not exist."
            )
        return env_path

    detected_root = _locate_workspace_root()
    if detected_root:
        return detected_root

    raise ValueError(
        "Unable to determine project root automatically. Provide the 'root' argument when calling the tool "
        "or set the SPECGEN_PROJECT_ROOT environment variable."
    )


_MANAGERS: Dict[Path, WorkflowManager] = {}


def _manager(root: Optional[str]) -> WorkflowManager:
    """One manager, and so one spec store, per resolved project root."""
    resolved = _resolve_root(root)
    manager = _MANAGERS.get(resolved)
    if manager is None:
        manager = _MANAGERS[resolved] = WorkflowManager(resolved, config=CONFIG)
    return manager


@mcp.tool()
async def architect_spec(description: str, root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 1: Turn a free-text feature description into a stored specification.
    Detects feature group, theme, complexity and priority, renders the full spec
    with an implementation plan, and links related existing specs."""

    return await _manager(root).create_spec_from_description(description)


@mcp.tool()
async def engineer_spec(reference: str, root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 3: Execute a spec's implementation plan layer by layer.
    Accepts spec://ID, a bare id, or search text. Completed tasks are skipped,
    and the run stops at the first failing task."""

    return await _manager(root).execute_spec(reference)


@mcp.tool()
async def get_spec(reference: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Retrieve a specification with its full markdown body."""

    return await _manager(root).get_spec(reference)


@mcp.tool()
async def create_spec(
    title: str,
    body_md: str,
    feature_group: Optional[str] = None,
    theme_category: Optional[str] = None,
    priority: Optional[str] = None,
    status: str = "draft",
    related_specs: Optional[List[int]] = None,
    parent_spec_id: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Store a hand-written specification. Group, theme and priority are
    detected from the title and body when not given."""

    return await _manager(root).create_spec(
        title,
        body_md,
        feature_group=feature_group,
        theme_category=theme_category,
        priority=priority,
        status=status,
        related_specs=related_specs,
        parent_spec_id=parent_spec_id,
    )


@mcp.tool()
async def update_spec(
    spec_id: int,
    title: Optional[str] = None,
    body_md: Optional[str] = None,
    status: Optional[str] = None,
    feature_group: Optional[str] = None,
    theme_category: Optional[str] = None,
    priority: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Update a specification's content or metadata.
    Status is one of draft, todo, in-progress or done; omitted fields are kept."""

    return await _manager(root).update_spec(
        spec_id,
        title=title,
        body_md=body_md,
        status=status,
        feature_group=feature_group,
        theme_category=theme_category,
        priority=priority,
    )


@mcp.tool()
async def delete_spec(spec_id: int, root: Optional[str] = None) -> Dict[str, Any]:
    """Delete a specification file and its index entry."""

    return await _manager(root).delete_spec(spec_id)


@mcp.tool()
async def list_specs(
    feature_group: Optional[str] = None,
    status: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """List stored specifications, optionally filtered by feature group or status."""

    return await _manager(root).list_specs(feature_group=feature_group, status=status)


@mcp.tool()
async def search_specs(query: str, limit: int = 10, root: Optional[str] = None) -> Dict[str, Any]:
    """Find specifications whose title or body share keywords with the query."""

    return await _manager(root).search_specs(query, limit=limit)


@mcp.tool()
async def suggest_relationships(
    spec_id: int,
    limit: Optional[int] = None,
    min_score: Optional[float] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 2: Suggest specifications related to the given one, best first."""

    return await _manager(root).suggest_relationships(spec_id, limit=limit, min_score=min_score)


@mcp.tool()
async def suggest_parent_spec(spec_id: int, limit: int = 3, root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 2: Suggest strongly similar specifications that could act as a parent."""

    return await _manager(root).suggest_parent(spec_id, limit=limit)


@mcp.tool()
async def update_spec_relationships(
    spec_id: int,
    related_specs: Optional[List[int]] = None,
    parent_spec_id: Optional[int] = None,
    clear_parent: bool = False,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 2: Replace a spec's related spec ids and set or clear its parent."""

    return await _manager(root).update_relationships(
        spec_id,
        related_specs=related_specs,
        parent_spec_id=parent_spec_id,
        clear_parent=clear_parent,
    )


@mcp.tool()
async def plan_status(spec_id: int, root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 4: Show completed and remaining tasks per layer of a spec's plan."""

    return await _manager(root).plan_status(spec_id)


@mcp.tool()
def analyze_requirements(description: str) -> Dict[str, Any]:
    """Preview how a description would be classified and planned, without storing anything."""

    profile = _analyze_requirements(description)
    plan = generate_implementation_plan(profile)
    return {
        "requirements": profile.to_dict(),
        "implementation_plan": plan.to_dict(),
        "planned_tasks": count_planned_tasks(plan),
        "priority": determine_priority(profile),
        "next_suggested_step": "architect_spec",
        "workflow_tip": "Run architect_spec with the same description to store it",
    }


@mcp.tool()
def get_workflow_guide() -> Dict[str, Any]:
    """Get guidance on the recommended specgen workflow."""

    return WorkflowManager.get_workflow_guide()


@mcp.resource("specgen://specs")
async def resource_specs() -> str:
    """Resource view listing stored specifications for discovery."""

    try:
        manager = _manager(None)
    except ValueError:
        return "No project root detected. Launch tools with a 'root' argument or set SPECGEN_PROJECT_ROOT."

    listing = await manager.list_specs()
    specs = listing.get("specs", [])
    if not specs:
        return "No specifications have been created yet."

    lines = ["specgen Specifications"]
    for spec in specs:
        lines.append("")
        lines.append(f"- {spec['spec_url']}: {spec['title']}")
        lines.append(f"  Group: {spec['feature_group']} / {spec['theme_category']}")
        lines.append(f"  Status: {spec['status']}, priority {spec['priority']}")

    return "\n".join(lines)


def run() -> None:
    setup_logging(CONFIG.log_level, CONFIG.log_file)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    run()
