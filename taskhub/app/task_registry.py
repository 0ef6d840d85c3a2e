"""
TaskRegistry for TaskHub background task lifecycle.

Every long-running asyncio.Task the application starts (the refresh token
sweep today) is registered here so shutdown can cancel it within a bounded
time instead of leaving it to the event loop's teardown.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class TaskMetadata:
    """Metadata for tracked asyncio.Tasks."""

    def __init__(self, task: asyncio.Task[Any], task_name: str, task_type: str = "unknown"):
        self.task = task
        self.task_name = task_name
        self.task_type = task_type
        self.created_at = asyncio.get_running_loop().time()
        self.is_lifecycle = task_type in ("lifecycle", "system", "background")

    def __repr__(self):
        status = "done" if self.task.done() else "pending"
        return f"TaskMetadata({self.task_name}, {self.task_type}, {status})"


class TaskRegistry:
    """
    Tracks asyncio tasks by name and cancels them on shutdown.

    Lifecycle tasks are cancelled first, then everything else; the whole
    shutdown is bounded by a timeout.
    """

    def __init__(self, shutdown_timeout: float = 5.0):
        self._active_tasks: dict[asyncio.Task[Any], TaskMetadata] = {}
        self._task_names: dict[str, asyncio.Task[Any]] = {}
        self._lifecycle_tasks: set[asyncio.Task[Any]] = set()
        self._shutdown_timeout = shutdown_timeout
        self._shutdown_in_progress = False

    def register_task(
        self, coro: Coroutine[Any, Any, Any], task_name: str, task_type: str = "unknown"
    ) -> asyncio.Task[Any]:
        """
        Create and track an asyncio.Task.

        Raises:
            RuntimeError: If called while shutdown is in progress
        """
        if self._shutdown_in_progress:
            coro.close()
            logger.warning("Task registration denied during shutdown", task_name=task_name)
            raise RuntimeError("Task registration denied during shutdown")

        if task_name in self._task_names:
            task_name = f"{task_name}_{asyncio.get_running_loop().time()}"

        task: asyncio.Task[Any] = asyncio.create_task(coro, name=task_name)
        metadata = TaskMetadata(task, task_name, task_type)
        self._active_tasks[task] = metadata
        self._task_names[task_name] = task
        if metadata.is_lifecycle:
            self._lifecycle_tasks.add(task)

        def task_completion_callback(completed_task: asyncio.Task[Any]) -> None:
            self._forget(completed_task)
            logger.debug("Task completed and cleaned up", task_name=task_name)

        task.add_done_callback(task_completion_callback)
        logger.debug("Registered task", task_name=task_name, task_type=task_type)
        return task

    def _forget(self, task: asyncio.Task[Any]) -> bool:
        metadata = self._active_tasks.pop(task, None)
        if metadata is None:
            return False
        self._lifecycle_tasks.discard(task)
        if self._task_names.get(metadata.task_name) is task:
            del self._task_names[metadata.task_name]
        return True

    def unregister_task(self, task: str | asyncio.Task[Any]) -> bool:
        """Stop tracking a task without cancelling it."""
        target = self._task_names.get(task) if isinstance(task, str) else task
        if target is None:
            logger.warning("Task not found in registry", task=str(task))
            return False
        return self._forget(target)

    async def cancel_task(self, task: str | asyncio.Task[Any], wait_timeout: float = 2.0) -> bool:
        """
        Cancel one task and wait for it to finish.

        Returns:
            bool: False if the task was unknown or did not stop within wait_timeout
        """
        target = self._task_names.get(task) if isinstance(task, str) else task
        if target is None or target not in self._active_tasks:
            logger.debug("Cancellation target not found", task=str(task))
            return False
        if target.done():
            return True

        target.cancel()
        try:
            await asyncio.wait_for(target, timeout=wait_timeout)
        except asyncio.CancelledError:
            return True
        except TimeoutError:
            logger.warning("Cancellation timeout reached", task_name=self._active_tasks[target].task_name)
            return False
        return True

    async def shutdown_all(self, timeout: float | None = None) -> bool:
        """
        Cancel every tracked task, lifecycle tasks first.

        Returns:
            bool: True if every task finished within the timeout
        """
        if self._shutdown_in_progress:
            logger.warning("Shutdown already in progress")
            return False
        self._shutdown_in_progress = True
        timeout = self._shutdown_timeout if timeout is None else timeout

        try:
            ordered = list(self._lifecycle_tasks) + [t for t in self._active_tasks if t not in self._lifecycle_tasks]
            for task in ordered:
                if not task.done():
                    task.cancel()
            logger.info("Cancelled active tasks - awaiting completion", cancelled_count=len(ordered))

            pending = [t for t in ordered if not t.done()]
            if pending:
                _, still_pending = await asyncio.wait(pending, timeout=timeout)
                if still_pending:
                    logger.error(
                        "Shutdown timeout - tasks still active",
                        remaining=[self._active_tasks[t].task_name for t in still_pending if t in self._active_tasks],
                    )
                    return False
            return True
        finally:
            for task in list(self._active_tasks):
                if task.done():
                    self._forget(task)
            self._shutdown_in_progress = False

    def list_active_tasks(self) -> list[TaskMetadata]:
        return [m for m in self._active_tasks.values() if not m.task.done()]

    def get_registry_info(self) -> dict[str, Any]:
        active = len(self.list_active_tasks())
        return {
            "active_tasks": active,
            "completed_tasks": len(self._active_tasks) - active,
            "lifecycle_tasks": len(self._lifecycle_tasks),
            "registry_shutdown_in_progress": self._shutdown_in_progress,
        }
