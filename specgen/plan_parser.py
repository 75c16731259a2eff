"""Parsing of the Implementation Plan section of a spec document.

Lines are classified one at a time into layer headers, task lines or
anything else. Inside the plan section a layer header opens a new layer and
a task line is appended to the open layer; everything else is skipped.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from .models import Layer, Task

PLAN_HEADING_PATTERN = re.compile(r"^##\s+Implementation\s+Plan", re.IGNORECASE)
LEVEL2_HEADING_PATTERN = re.compile(r"^##\s+")
LAYER_HEADER_PATTERN = re.compile(r"^####\s+(.+?)\s*\(([^)]*)\)\s*$")
TASK_LINE_PATTERN = re.compile(r"^-\s+\[( |x)\]\s+\*\*([^*]+)\*\*:\s*(.*)$")
CHECKBOX_PATTERN = re.compile(r"\[( |x)\]")
ESTIMATE_LABEL = "Estimate:"


class LineKind(Enum):
    LAYER_HEADER = "layer_header"
    TASK = "task"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class ParsedLine:
    """Classification of a single markdown line."""

    kind: LineKind
    layer_name: Optional[str] = None
    task_id: Optional[str] = None
    description: Optional[str] = None
    completed: bool = False
    estimate: Optional[str] = None


_OTHER = ParsedLine(LineKind.OTHER)


def _split_estimate(rest: str):
    """Split a trailing ``[...]`` group off a task description.

    Brackets earlier in the description stay part of it.
    """
    stripped = rest.rstrip()
    if not stripped.endswith("]"):
        return stripped.strip(), None

    start = stripped.rfind("[")
    if start == -1:
        return stripped.strip(), None

    estimate = stripped[start + 1:-1].replace(ESTIMATE_LABEL, "", 1).strip()
    return stripped[:start].strip(), estimate


def classify_line(line: str) -> ParsedLine:
    """Classify ``line`` as a layer header, a task line or other text."""
    line = line.rstrip("\r\n")

    header = LAYER_HEADER_PATTERN.match(line)
    if header:
        return ParsedLine(LineKind.LAYER_HEADER, layer_name=header.group(1).strip())

    task = TASK_LINE_PATTERN.match(line)
    if task:
        description, estimate = _split_estimate(task.group(3))
        return ParsedLine(
            LineKind.TASK,
            task_id=task.group(2).strip(),
            description=description,
            completed=task.group(1) == "x",
            estimate=estimate,
        )

    return _OTHER


def parse_implementation_plan(body: str) -> List[Layer]:
    """Extract ordered layers and tasks from a spec body.

    Returns an empty list when the body has no Implementation Plan section.
    Task IDs are taken as written.
    """
    layers: List[Layer] = []
    current: Optional[Layer] = None
    in_plan = False

    for line in (body or "").splitlines():
        if PLAN_HEADING_PATTERN.match(line):
            in_plan = True
            continue
        if not in_plan:
            continue
        if LEVEL2_HEADING_PATTERN.match(line):
            break

        parsed = classify_line(line)
        if parsed.kind is LineKind.LAYER_HEADER:
            if current is not None:
                layers.append(current)
            current = Layer(name=parsed.layer_name)
        elif parsed.kind is LineKind.TASK and current is not None:
            current.tasks.append(Task(
                id=parsed.task_id,
                description=parsed.description,
                status="completed" if parsed.completed else "pending",
                layer=current.name,
                estimate=parsed.estimate,
            ))

    if current is not None:
        layers.append(current)

    return layers


def set_task_status(body: str, task_id: str, status: str) -> str:
    """Rewrite the checkbox of the first task line whose bold ID is ``task_id``.

    Every other character of ``body`` is preserved.
    """
    checkbox = "[x]" if status == "completed" else "[ ]"
    lines = body.splitlines(keepends=True)

    for index, line in enumerate(lines):
        parsed = classify_line(line)
        if parsed.kind is LineKind.TASK and parsed.task_id == task_id:
            lines[index] = CHECKBOX_PATTERN.sub(checkbox, line, count=1)
            break

    return "".join(lines)


def summarize_layers(layers: List[Layer]) -> Dict[str, object]:
    """Completed and remaining task counts, overall and per layer."""
    summary_layers = []
    total = 0
    completed = 0
    next_task = None

    for layer in layers:
        done = sum(1 for task in layer.tasks if task.completed)
        total += len(layer.tasks)
        completed += done
        if next_task is None:
            pending = next((task for task in layer.tasks if not task.completed), None)
            if pending is not None:
                next_task = pending.to_dict()
        summary_layers.append({
            "name": layer.name,
            "total_tasks": len(layer.tasks),
            "completed_tasks": done,
            "remaining_tasks": len(layer.tasks) - done,
        })

    return {
        "layers": summary_layers,
        "total_tasks": total,
        "completed_tasks": completed,
        "remaining_tasks": total - completed,
        "next_task": next_task,
        "is_complete": total > 0 and completed == total,
    }
