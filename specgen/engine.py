"""Sequential execution of a spec's implementation plan.

The engine walks layers and tasks in document order. Completed tasks are
counted without calling the executor, so a run can be resumed after a
failure. Each pending task gets exactly one executor call; the first
failure halts the run. Progress is written back to the store after every
successful task and once more with an execution log on full success. Store
failures are logged and never fail the run.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from .errors import InternalError, SpecGenError
from .models import ExecutionResult, ExecutorOutcome, Layer, SpecRecord, Task
from .plan_parser import parse_implementation_plan, set_task_status
from .specgen_logging import (
    log_execution_completed,
    log_persist_failed,
    log_task_completed,
    log_task_failed,
)

logger = logging.getLogger("specgen.engine")


class SpecStore(Protocol):
    """Storage operations the engine depends on."""

    async def get_spec_by_id(self, spec_id: int) -> Optional[SpecRecord]:
        ...

    async def update_spec(self, spec_id: int, updates: Dict[str, Any]) -> SpecRecord:
        ...


class TaskExecutor(Protocol):
    """Performs the work behind a single task."""

    async def execute(self, task: Task, spec: SpecRecord) -> ExecutorOutcome:
        ...


class RunState(Enum):
    NOT_STARTED = "NotStarted"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class ChecklistExecutor:
    """Default executor: records the task and reports success."""

    async def execute(self, task: Task, spec: SpecRecord) -> ExecutorOutcome:
        logger.info(f"Checked off {task.id} ({task.layer}) for spec {spec.id}: {task.description}")
        return ExecutorOutcome(success=True)


def format_execution_time(seconds: float) -> str:
    """``{m}m {s}s`` from one minute upwards, otherwise ``{s}s``."""
    whole = max(int(seconds), 0)
    minutes, remainder = divmod(whole, 60)
    if minutes > 0:
        return f"{minutes}m {remainder}s"
    return f"{whole}s"


def build_execution_log(
    timestamp: str,
    layers_completed: int,
    completed_tasks: int,
    total_tasks: int,
    execution_time: str,
) -> str:
    return (
        "\n"
        "## Execution Log\n"
        "\n"
        f"### Implementation Completed: {timestamp}\n"
        "- **Status**: Completed\n"
        "- **Command**: engineer_spec\n"
        f"- **Layers Completed**: {layers_completed}\n"
        f"- **Tasks Completed**: {completed_tasks}/{total_tasks}\n"
        f"- **Execution Time**: {execution_time}\n"
        "- **Summary**: All implementation tasks completed successfully. Ready for testing and deployment.\n"
    )


class ExecutionEngine:
    """Runs an implementation plan against a task executor and a spec store."""

    def __init__(
        self,
        store: SpecStore,
        executor: Optional[TaskExecutor] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.executor = executor or ChecklistExecutor()
        self.clock = clock
        self.now = now
        self.state = RunState.NOT_STARTED
        self.failed_task_id: Optional[str] = None

    async def run(self, spec: SpecRecord, layers: Optional[List[Layer]] = None) -> ExecutionResult:
        """Execute ``spec``'s plan and report counts.

        ``layers`` defaults to the plan parsed from ``spec.body_md``. Raises
        :class:`InternalError` only for faults in the engine itself.
        """
        self.state = RunState.RUNNING
        self.failed_task_id = None
        try:
            result = await self._run(spec, layers)
        except SpecGenError:
            self.state = RunState.FAILED
            raise
        except Exception as e:
            self.state = RunState.FAILED
            raise InternalError(f"Execution engine fault: {e}", operation="execute_plan") from e

        self.state = RunState.SUCCEEDED if result.success else RunState.FAILED
        self.failed_task_id = result.failed_task_id
        return result

    async def _run(self, spec: SpecRecord, layers: Optional[List[Layer]]) -> ExecutionResult:
        started = self.clock()
        if layers is None:
            layers = parse_implementation_plan(spec.body_md)

        body = spec.body_md
        total_tasks = sum(len(layer.tasks) for layer in layers)
        completed_tasks = 0
        layers_completed = 0

        logger.info(f"Executing spec {spec.id}: {len(layers)} layers, {total_tasks} tasks")

        for layer in layers:
            logger.info(f"Starting {layer.name}")
            layer_done = 0

            for task in layer.tasks:
                if task.completed:
                    logger.debug(f"{task.id} already completed")
                    completed_tasks += 1
                    layer_done += 1
                    continue

                outcome = await self._execute_task(task, spec)
                if not outcome.success:
                    logger.warning(f"{task.id} failed: {outcome.error}")
                    log_task_failed(spec.id, task.id, outcome.error)
                    return ExecutionResult(
                        success=False,
                        layers_completed=layers_completed,
                        total_tasks=total_tasks,
                        completed_tasks=completed_tasks,
                        execution_time=format_execution_time(self.clock() - started),
                        failed_task_id=task.id,
                        error=outcome.error,
                        message=f"Implementation failed at task {task.id}",
                    )

                body = set_task_status(body, task.id, "completed")
                await self._persist(spec.id, body, task_id=task.id)
                completed_tasks += 1
                layer_done += 1
                log_task_completed(spec.id, task.id, layer=layer.name)

            logger.info(f"{layer.name} completed ({layer_done}/{len(layer.tasks)} tasks)")
            layers_completed += 1

        execution_time = format_execution_time(self.clock() - started)
        body += build_execution_log(
            self.now().strftime("%Y-%m-%d %H:%M:%S"),
            layers_completed,
            completed_tasks,
            total_tasks,
            execution_time,
        )
        await self._persist(spec.id, body, task_id=None)
        log_execution_completed(
            spec.id,
            True,
            layers_completed=layers_completed,
            completed_tasks=completed_tasks,
            total_tasks=total_tasks,
        )

        return ExecutionResult(
            success=True,
            layers_completed=layers_completed,
            total_tasks=total_tasks,
            completed_tasks=completed_tasks,
            execution_time=execution_time,
            message=(
                f'Implementation completed: "{spec.title}" '
                f"({layers_completed} layers, {completed_tasks}/{total_tasks} tasks, {execution_time})"
            ),
        )

    async def _execute_task(self, task: Task, spec: SpecRecord) -> ExecutorOutcome:
        logger.info(f"Executing {task.id}: {task.description}")
        try:
            outcome = await self.executor.execute(task, spec)
        except Exception as e:
            logger.error(f"Executor raised for {task.id}: {e}", exc_info=True)
            return ExecutorOutcome(success=False, error=str(e) or type(e).__name__)
        return outcome

    async def _persist(self, spec_id: int, body: str, task_id: Optional[str]) -> None:
        try:
            await self.store.update_spec(spec_id, {"body_md": body})
        except Exception as e:
            what = f"task progress for {task_id}" if task_id else "execution log"
            logger.warning(f"Failed to persist {what} on spec {spec_id}: {e}")
            log_persist_failed(spec_id, e, task_id=task_id)
