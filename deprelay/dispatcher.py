"""Task dispatcher for pull-request worker executions.

The dispatcher keeps at most one execution in flight per repository. Requests
for a busy repository wait in a FIFO queue and are launched when the running
execution reaches a terminal state, fails to launch, or times out. Launch is
fire-and-forget: a watcher task observes completion so the caller is never
blocked on the worker itself.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Protocol, Set

from .config import DispatchConfig, TargetRepositoryConfig
from .models import (
    DispatchRequest,
    ExecutionCancelled,
    LaunchError,
    ReleaseEvent,
    WorkerResult,
    WorkerTimeoutError,
)

logger = logging.getLogger(__name__)

QUEUED = "queued"
RUNNING = "running"
FINISHED = "finished"


class ExecutionLauncher(Protocol):
    """Starts isolated worker executions."""

    async def launch(self, request: DispatchRequest) -> str: ...

    async def wait(self, execution_id: str) -> WorkerResult: ...

    async def cancel(self, execution_id: str) -> None: ...


@dataclass
class ExecutionHandle:
    """Tracks one dispatch request through the dispatcher."""

    request: DispatchRequest
    state: str = QUEUED
    execution_id: Optional[str] = None
    result: Optional[WorkerResult] = None

    @property
    def repository_name(self) -> str:
        return self.request.repository_name

    @property
    def release_key(self) -> str:
        return self.request.event.release_key


ResultCallback = Callable[[ExecutionHandle, WorkerResult], None]


def request_from_event(event: ReleaseEvent, dispatch: DispatchConfig,
                       repository: TargetRepositoryConfig) -> DispatchRequest:
    """Attach the routing for the configured target repository to an event."""
    return DispatchRequest(
        event=event,
        cluster_ref=dispatch.cluster_ref,
        task_definition_ref=dispatch.task_definition_ref,
        subnet_refs=list(dispatch.subnet_refs),
        container_name=dispatch.container_name,
        repo_url=repository.clone_url,
        repo_region=repository.region,
        base_branch=repository.base_branch,
    )


class TaskDispatcher:
    """Launches one worker execution per request, serialized per repository."""

    def __init__(
        self,
        launcher: ExecutionLauncher,
        max_launch_attempts: int = 5,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 30.0,
        execution_timeout_seconds: float = 900.0,
        on_result: Optional[ResultCallback] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.launcher = launcher
        self.max_launch_attempts = max(1, max_launch_attempts)
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.execution_timeout_seconds = execution_timeout_seconds
        self.on_result = on_result
        self._sleep = sleep
        self._running: Dict[str, ExecutionHandle] = {}
        self._queues: Dict[str, Deque[ExecutionHandle]] = {}
        self._watchers: Set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, launcher: ExecutionLauncher, config: DispatchConfig,
                    on_result: Optional[ResultCallback] = None) -> "TaskDispatcher":
        return cls(
            launcher,
            max_launch_attempts=config.max_launch_attempts,
            backoff_base_seconds=config.backoff_base_seconds,
            backoff_max_seconds=config.backoff_max_seconds,
            execution_timeout_seconds=config.execution_timeout_seconds,
            on_result=on_result,
        )

    @property
    def running(self) -> Dict[str, ExecutionHandle]:
        """Snapshot of the repository -> running execution registry."""
        return dict(self._running)

    def queued(self, repository_name: str) -> List[ExecutionHandle]:
        return list(self._queues.get(repository_name, ()))

    def _find(self, request: DispatchRequest) -> Optional[ExecutionHandle]:
        repo = request.repository_name
        release_key = request.event.release_key
        active = self._running.get(repo)
        if active is not None and active.release_key == release_key:
            return active
        for handle in self._queues.get(repo, ()):
            if handle.release_key == release_key:
                return handle
        return None

    async def dispatch(self, request: DispatchRequest) -> ExecutionHandle:
        """Launch or queue a worker execution for the request.

        Raises LaunchError when the launcher stays unavailable after every
        retry. A redelivered request for a release that is already running or
        queued returns the existing handle.
        """
        repo = request.repository_name
        existing = self._find(request)
        if existing is not None:
            logger.info(f"Ignoring duplicate dispatch of {existing.release_key} ({existing.state})")
            return existing

        handle = ExecutionHandle(request=request)
        if repo in self._running:
            self._queues.setdefault(repo, deque()).append(handle)
            logger.info(f"Queued {handle.release_key} behind running execution on {repo} "
                        f"(queue depth {len(self._queues[repo])})")
            return handle

        # Reserve the repository before suspending on the launcher
        self._running[repo] = handle
        try:
            await self._launch(handle)
        except LaunchError as e:
            self._finish(handle, WorkerResult.failed(e.kind, str(e)))
            self._spawn(self._start_next(repo))
            raise
        return handle

    async def _launch(self, handle: ExecutionHandle) -> None:
        attempt = 1
        while True:
            try:
                execution_id = await self.launcher.launch(handle.request)
                break
            except LaunchError as e:
                if attempt >= self.max_launch_attempts:
                    logger.error(f"Giving up launching {handle.release_key} after {attempt} attempts: {e}")
                    raise
                delay = min(self.backoff_base_seconds * (2 ** (attempt - 1)), self.backoff_max_seconds)
                logger.warning(f"Launch of {handle.release_key} failed (attempt {attempt}/"
                               f"{self.max_launch_attempts}), retrying in {delay:.1f}s: {e}")
                await self._sleep(delay)
                attempt += 1

        handle.execution_id = execution_id
        handle.state = RUNNING
        logger.info(f"Launched execution {execution_id} for {handle.release_key} on {handle.repository_name}")
        self._spawn(self._watch(handle))

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._watchers.add(task)
        task.add_done_callback(self._watchers.discard)

    async def _watch(self, handle: ExecutionHandle) -> None:
        try:
            result = await asyncio.wait_for(self.launcher.wait(handle.execution_id),
                                            timeout=self.execution_timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"Execution {handle.execution_id} for {handle.release_key} timed out "
                         f"after {self.execution_timeout_seconds}s")
            await self._cancel_execution(handle)
            error = WorkerTimeoutError("execution deadline exceeded", f"{self.execution_timeout_seconds}s")
            result = WorkerResult.failed(error.kind, str(error), branch=handle.request.event.branch_name)
        except Exception as e:
            logger.exception(f"Lost track of execution {handle.execution_id}")
            result = WorkerResult.failed(type(e).__name__, str(e))

        self._finish(handle, result)
        await self._start_next(handle.repository_name)

    async def _cancel_execution(self, handle: ExecutionHandle) -> None:
        if handle.execution_id is None:
            return
        try:
            await self.launcher.cancel(handle.execution_id)
        except Exception as e:
            logger.error(f"Failed to cancel execution {handle.execution_id}: {e}")

    def _finish(self, handle: ExecutionHandle, result: WorkerResult) -> None:
        handle.result = result
        handle.state = FINISHED
        if self._running.get(handle.repository_name) is handle:
            del self._running[handle.repository_name]

        if result.succeeded:
            logger.info(f"Execution for {handle.release_key} succeeded: {result.pull_request_url or result.detail}")
        else:
            logger.warning(f"Execution for {handle.release_key} failed with {result.error_kind}: {result.error_detail}")

        if self.on_result is not None:
            self.on_result(handle, result)

    async def _start_next(self, repo: str) -> None:
        queue = self._queues.get(repo)
        while queue and repo not in self._running:
            handle = queue.popleft()
            self._running[repo] = handle
            try:
                await self._launch(handle)
            except LaunchError as e:
                self._finish(handle, WorkerResult.failed(e.kind, str(e)))
        if not queue:
            self._queues.pop(repo, None)

    async def wait_idle(self) -> None:
        """Wait until every running and queued execution has finished."""
        while self._watchers:
            await asyncio.gather(*list(self._watchers), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel running executions and discard queued requests."""
        watchers = list(self._watchers)
        for task in watchers:
            task.cancel()
        await asyncio.gather(*watchers, return_exceptions=True)

        cancelled = ExecutionCancelled("dispatcher shut down")
        for handle in list(self._running.values()):
            await self._cancel_execution(handle)
            self._finish(handle, WorkerResult.failed(cancelled.kind, str(cancelled)))
        for queue in list(self._queues.values()):
            while queue:
                self._finish(queue.popleft(), WorkerResult.failed(cancelled.kind, str(cancelled)))
        self._queues.clear()
        logger.info("Dispatcher shut down")
