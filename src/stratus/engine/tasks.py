"""Waiting on asynchronous platform tasks."""

import asyncio
import logging
from typing import Awaitable, Optional

from stratus.errors import RemoteTaskFailure, StratusError
from stratus.models.platform import Task, TaskStatus
from stratus.platform.base import PlatformClient


logger = logging.getLogger(__name__)


class TaskWaiter:
    """Submits mutating calls and blocks until their task is terminal.

    A timeout only stops the wait; the remote task is not cancelled and may
    still complete afterwards.
    """

    def __init__(self, platform: PlatformClient, poll_interval: float = 2.0,
                 timeout: Optional[float] = 600.0):
        """Initialize task waiter."""
        self.platform = platform
        self.poll_interval = poll_interval
        self.timeout = timeout

    async def run(self, operation: str, submit: Awaitable[Task]) -> Task:
        """Submit a call and wait for its task.

        Args:
            operation: Description attached to any failure
            submit: Pending platform call returning a Task

        Returns:
            The terminal, successful task
        """
        logger.info(f"→ {operation}")
        try:
            task = await submit
        except StratusError:
            raise
        except Exception as e:
            raise RemoteTaskFailure(operation, f"submission failed: {e}") from e
        return await self.wait(operation, task)

    async def wait(self, operation: str, task: Task) -> Task:
        """Poll a submitted task until it succeeds, fails or times out."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout if self.timeout is not None else None

        while not task.status.is_terminal:
            if deadline is not None and loop.time() >= deadline:
                raise RemoteTaskFailure(
                    operation,
                    f"timed out after {self.timeout}s waiting for task {task.id}",
                    task_id=task.id,
                    owner_id=task.owner_id,
                )
            await asyncio.sleep(self.poll_interval)
            try:
                task = await self.platform.get_task(task.id)
            except StratusError:
                raise
            except Exception as e:
                raise RemoteTaskFailure(
                    operation, f"polling task {task.id} failed: {e}",
                    task_id=task.id, owner_id=task.owner_id,
                ) from e

        if task.status != TaskStatus.SUCCESS:
            message = task.error_message or f"task {task.id} ended {task.status.value}"
            logger.error(f"{operation} failed: {message}")
            raise RemoteTaskFailure(operation, message, task_id=task.id, owner_id=task.owner_id)

        logger.debug(f"✓ {operation} completed (task {task.id})")
        return task
