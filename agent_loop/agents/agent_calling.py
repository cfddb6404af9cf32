# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Functions for running tasks as separately awaited asyncio tasks"""

import asyncio
import logging

from datetime import datetime

from ..types.agent_types import TaskInput, TaskMetrics, TaskResult, TaskStatus
from ..types.error_types import AbortError

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


async def await_task(task: asyncio.Task, task_input: TaskInput) -> TaskResult:
    """
    Await a task running ``RoundLoop.execute_task`` and always come back with a
    TaskResult, even if the task was cancelled from outside or blew up.
    """
    started = datetime.now()
    try:
        return await task
    except asyncio.CancelledError:
        logger.info(f"Task {task_input.name} was cancelled.")
        current = asyncio.current_task()
        if current is not None and current.cancelling():
            # We are being cancelled ourselves, not just the awaited task
            raise
        return TaskResult(
            task_id=task_input.task_id,
            name=task_input.name,
            status=TaskStatus.CANCELLED,
            errors=f"Task {task_input.name} was cancelled",
            error_type=AbortError.kind,
            metrics=TaskMetrics(start_time=started, end_time=datetime.now()),
        )
    except Exception as e:
        logger.error(f"Task {task_input.name} failed: {e}")
        return TaskResult(
            task_id=task_input.task_id,
            name=task_input.name,
            status=TaskStatus.ERROR,
            output=f"Task failed: {e}",
            errors=str(e),
            error_type="internal_error",
            metrics=TaskMetrics(start_time=started, end_time=datetime.now()),
        )
