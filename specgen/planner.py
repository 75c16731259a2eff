"""Implementation plan skeletons derived from requirement profiles."""

from __future__ import annotations

from typing import Dict, NamedTuple, Tuple

from .models import ImplementationPlanSpec, RequirementProfile


class PlanTemplate(NamedTuple):
    layers: Tuple[str, ...]
    low: int
    high: int
    approach: str


PLAN_TEMPLATES: Dict[str, PlanTemplate] = {
    "ui": PlanTemplate(("Component Layer", "Frontend Layer", "Integration Layer"), 5, 8, "incremental"),
    "api": PlanTemplate(("Database Layer", "Backend Layer", "API Layer", "Testing Layer"), 6, 10, "incremental"),
    "integration": PlanTemplate(("MCP Layer", "Integration Layer", "Testing Layer"), 4, 7, "prototype-first"),
    "data": PlanTemplate(
        ("Database Layer", "Migration Layer", "Service Layer", "Testing Layer"), 5, 9, "schema-first"
    ),
    "auth": PlanTemplate(
        ("Security Layer", "Backend Layer", "Frontend Layer", "Testing Layer"), 7, 12, "security-first"
    ),
    "general": PlanTemplate(("Database Layer", "Backend Layer"), 3, 3, "incremental"),
}

GENERAL_COMPLEX_EXTRA_LAYERS = ("Integration Layer", "Testing Layer")
GENERAL_COMPLEX_TASKS = 8


def generate_implementation_plan(profile: RequirementProfile) -> ImplementationPlanSpec:
    """Map a profile to layers, a task estimate and an approach."""
    template = PLAN_TEMPLATES.get(profile.detected_group, PLAN_TEMPLATES["general"])
    is_complex = profile.complexity == "complex"

    layers = template.layers
    estimated_tasks = template.high if is_complex else template.low
    if template is PLAN_TEMPLATES["general"] and is_complex:
        layers = layers + GENERAL_COMPLEX_EXTRA_LAYERS
        estimated_tasks = GENERAL_COMPLEX_TASKS

    return ImplementationPlanSpec(
        layers=layers,
        estimated_tasks=estimated_tasks,
        recommended_approach=template.approach,
    )
