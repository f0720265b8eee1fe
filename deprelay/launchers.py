"""Execution launchers used by the task dispatcher."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Dict, Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .config import DispatchConfig
from .models import DispatchRequest, LaunchError, WorkerResult
from .worker.pr_worker import PullRequestWorker

logger = logging.getLogger(__name__)


class InProcessLauncher:
    """Runs workers on threads of the current process.

    Capacity is bounded; a launch beyond it fails with LaunchError so the
    dispatcher backs off exactly as it would for a full cluster. An execution
    counts against capacity until its thread has returned, cancelled or not.
    """

    def __init__(self, worker: PullRequestWorker, max_concurrency: int = 4, cancel_grace_seconds: float = 300.0):
        self.worker = worker
        self.max_concurrency = max_concurrency
        self.cancel_grace_seconds = cancel_grace_seconds
        self._executions: Dict[str, Tuple[asyncio.Task, threading.Event]] = {}

    async def launch(self, request: DispatchRequest) -> str:
        active = sum(1 for task, _ in self._executions.values() if not task.done())
        if active >= self.max_concurrency:
            raise LaunchError("no worker capacity", f"{active}/{self.max_concurrency} executions running")

        execution_id = f"local-{request.request_id}"
        cancel_event = threading.Event()
        task = asyncio.create_task(asyncio.to_thread(self.worker.run, request, cancel_event))
        self._executions[execution_id] = (task, cancel_event)
        return execution_id

    async def wait(self, execution_id: str) -> WorkerResult:
        task, _ = self._executions[execution_id]
        try:
            return await asyncio.shield(task)
        finally:
            if task.done():
                self._executions.pop(execution_id, None)

    async def cancel(self, execution_id: str) -> None:
        """Ask the worker to stop and wait until its thread has returned."""
        entry = self._executions.get(execution_id)
        if entry is None:
            return
        task, cancel_event = entry
        # the worker thread stops at its next state boundary
        cancel_event.set()
        try:
            result = await asyncio.wait_for(asyncio.shield(task), timeout=self.cancel_grace_seconds)
        except asyncio.TimeoutError:
            logger.error(f"Execution {execution_id} still running {self.cancel_grace_seconds}s after cancel")
            task.add_done_callback(lambda _: self._executions.pop(execution_id, None))
            return
        finally:
            if task.done():
                self._executions.pop(execution_id, None)
        logger.info(f"Execution {execution_id} stopped after cancel ({result.error_kind or 'success'})")


class EcsLauncher:
    """Runs each worker as a one-off ECS task."""

    def __init__(self, client=None, region: Optional[str] = None, poll_interval_seconds: float = 10.0,
                 launch_type: str = "FARGATE", assign_public_ip: str = "DISABLED"):
        self.client = client or boto3.client(
            "ecs",
            region_name=region,
            config=Config(retries={"max_attempts": 3, "mode": "standard"}),
        )
        self.poll_interval_seconds = poll_interval_seconds
        self.launch_type = launch_type
        self.assign_public_ip = assign_public_ip
        self._tasks: Dict[str, Tuple[str, str]] = {}

    async def launch(self, request: DispatchRequest) -> str:
        environment = [{"name": k, "value": v} for k, v in sorted(request.to_environment().items())]
        try:
            response = await asyncio.to_thread(
                self.client.run_task,
                cluster=request.cluster_ref,
                taskDefinition=request.task_definition_ref,
                launchType=self.launch_type,
                count=1,
                startedBy="deprelay",
                networkConfiguration={
                    "awsvpcConfiguration": {
                        "subnets": list(request.subnet_refs),
                        "assignPublicIp": self.assign_public_ip,
                    }
                },
                overrides={
                    "containerOverrides": [{"name": request.container_name, "environment": environment}]
                },
            )
        except (BotoCoreError, ClientError) as e:
            raise LaunchError("run_task failed", str(e)) from e

        tasks = response.get("tasks") or []
        failures = response.get("failures") or []
        if failures or not tasks:
            reasons = ", ".join(f.get("reason", "unknown") for f in failures) or "no task started"
            raise LaunchError("cluster could not start worker task", reasons)

        task_arn = tasks[0]["taskArn"]
        self._tasks[task_arn] = (request.cluster_ref, request.container_name)
        return task_arn

    async def wait(self, execution_id: str) -> WorkerResult:
        cluster, container_name = self._tasks[execution_id]
        while True:
            try:
                response = await asyncio.to_thread(self.client.describe_tasks, cluster=cluster,
                                                   tasks=[execution_id])
            except (BotoCoreError, ClientError) as e:
                logger.warning(f"describe_tasks for {execution_id} failed, will retry: {e}")
                response = {}

            for task in response.get("tasks", []):
                if task.get("lastStatus") == "STOPPED":
                    self._tasks.pop(execution_id, None)
                    return self._result(task, container_name)
            await asyncio.sleep(self.poll_interval_seconds)

    @staticmethod
    def _result(task: dict, container_name: str) -> WorkerResult:
        containers = [c for c in task.get("containers", []) if c.get("name") == container_name]
        exit_code = containers[0].get("exitCode") if containers else None
        if exit_code == 0:
            return WorkerResult.success(detail=f"task {task.get('taskArn')} exited 0")
        reason = (containers[0].get("reason") if containers else None) or task.get("stoppedReason", "")
        return WorkerResult.failed("WorkerError", f"exit code {exit_code}: {reason}".strip())

    async def cancel(self, execution_id: str) -> None:
        cluster, _ = self._tasks.pop(execution_id, (None, None))
        if cluster is None:
            return
        try:
            await asyncio.to_thread(self.client.stop_task, cluster=cluster, task=execution_id,
                                    reason="cancelled by deprelay dispatcher")
        except (BotoCoreError, ClientError) as e:
            logger.error(f"stop_task for {execution_id} failed: {e}")


def build_launcher(config: DispatchConfig, worker: Optional[PullRequestWorker] = None, region: Optional[str] = None,
                   max_concurrency: int = 4):
    if config.launcher == "ecs":
        return EcsLauncher(region=region, poll_interval_seconds=config.poll_interval_seconds)
    if worker is None:
        raise ValueError("the local launcher needs a worker")
    return InProcessLauncher(worker, max_concurrency=max_concurrency, cancel_grace_seconds=config.cancel_grace_seconds)
