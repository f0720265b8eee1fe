"""Pull-request worker.

One execution walks a single release through

    cloning -> patching -> committing -> pushing -> opening_pr -> done

and ends in ``failed`` from whichever state raised. Only the dedicated
per-release branch is ever written; the default branch is read-only here.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Callable, List, Optional

from ..common import log_stage_transition
from ..config import TargetRepositoryConfig
from ..models import (
    CloneError,
    DispatchRequest,
    ExecutionCancelled,
    PushConflict,
    PushError,
    ReleaseEvent,
    WorkerError,
    WorkerResult,
    WorkerState,
)
from .git import GitCommandError, GitRepository
from .manifest import patch_manifests
from .scm import PullRequestHost, build_host

logger = logging.getLogger(__name__)

TransitionCallback = Callable[[DispatchRequest, WorkerState], None]


def pull_request_title(event: ReleaseEvent) -> str:
    return f"Update dependency {event.coordinate}"


def pull_request_description(event: ReleaseEvent) -> str:
    lines = [
        f"Version {event.version} of `{event.package_name}` was published"
        + (f" by account {event.source_account}" if event.source_account else "")
        + ".",
        "",
        f"- Format: {event.package_format.value}",
        f"- Registry repository: {event.repository_name or 'n/a'}",
        f"- Published at: {event.published_at.isoformat()}",
    ]
    return "\n".join(lines)


class PullRequestWorker:
    """Applies a released version to the receiver repository."""

    def __init__(
        self,
        host: PullRequestHost,
        workspace_root: Optional[str] = None,
        author_name: str = "deprelay",
        author_email: str = "deprelay@localhost",
        clone: Callable[..., GitRepository] = GitRepository.clone,
        on_transition: Optional[TransitionCallback] = None,
    ):
        self.host = host
        self.workspace_root = workspace_root
        self.author_name = author_name
        self.author_email = author_email
        self._clone = clone
        self.on_transition = on_transition

    @classmethod
    def from_config(cls, config: TargetRepositoryConfig, **kwargs) -> "PullRequestWorker":
        return cls(build_host(config), author_name=config.author_name, author_email=config.author_email, **kwargs)

    def run(self, request: DispatchRequest, cancel_event: Optional[threading.Event] = None) -> WorkerResult:
        """Execute the release once and report the outcome. Never raises WorkerError."""
        execution = _Execution(self, request, cancel_event)
        return execution.run()


class _Execution:
    def __init__(self, worker: PullRequestWorker, request: DispatchRequest,
                 cancel_event: Optional[threading.Event]):
        self.worker = worker
        self.request = request
        self.event = request.event
        self.branch = self.event.branch_name
        self.cancel_event = cancel_event
        self.state: Optional[WorkerState] = None
        self.history: List[WorkerState] = []

    def _enter(self, state: WorkerState, detail: str = "") -> None:
        if self.cancel_event is not None and self.cancel_event.is_set() and not state.is_terminal:
            raise ExecutionCancelled("execution cancelled", f"before {state.value}")
        log_stage_transition(self.event.release_key, self.state.value if self.state else None, state.value, detail)
        self.state = state
        self.history.append(state)
        if self.worker.on_transition is not None:
            self.worker.on_transition(self.request, state)

    def run(self) -> WorkerResult:
        workdir = Path(tempfile.mkdtemp(prefix="deprelay-", dir=self.worker.workspace_root))
        try:
            return self._run(workdir / "repo")
        except WorkerError as e:
            self._enter(WorkerState.FAILED, e.kind)
            return WorkerResult.failed(e.kind, str(e), branch=self.branch)
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    def _run(self, checkout: Path) -> WorkerResult:
        self._enter(WorkerState.CLONING)
        try:
            repo = self.worker._clone(
                self.request.repo_url,
                checkout,
                branch=self.request.base_branch,
                author_name=self.worker.author_name,
                author_email=self.worker.author_email,
            )
            base_branch = self.request.base_branch or repo.current_branch()
        except GitCommandError as e:
            raise CloneError(f"failed to clone {self.request.repo_url}", e.stderr.strip()) from e

        self._enter(WorkerState.PATCHING)
        patch = patch_manifests(repo.path, self.event)
        if not patch.changed:
            self._enter(WorkerState.DONE, "already up to date")
            return WorkerResult.success(detail=f"{base_branch} already uses {self.event.version}")

        self._enter(WorkerState.COMMITTING, self.branch)
        title = pull_request_title(self.event)
        try:
            repo.checkout_new_branch(self.branch)
            repo.commit(patch.changed, title)
        except GitCommandError as e:
            raise WorkerError("failed to commit manifest update", e.stderr.strip()) from e

        self._enter(WorkerState.PUSHING, self.branch)
        self._push(repo, patch.changed)

        self._enter(WorkerState.OPENING_PR)
        url = self.worker.host.find_open_pull_request(self.branch)
        if url is None:
            url = self.worker.host.create_pull_request(
                title, pull_request_description(self.event), self.branch, base_branch
            )
        else:
            logger.info(f"Pull request for {self.branch} already open: {url}")

        self._enter(WorkerState.DONE, url)
        return WorkerResult.success(pull_request_url=url, branch=self.branch)

    def _push(self, repo: GitRepository, changed: List[Path]) -> None:
        try:
            if repo.remote_branch_exists(self.branch):
                remote_head = repo.fetch_branch(self.branch)
                if repo.same_content(remote_head, changed):
                    logger.info(f"Branch {self.branch} already carries this update, not pushing")
                    return
                raise PushConflict(f"branch {self.branch} already exists with different content")
            repo.push(self.branch)
        except GitCommandError as e:
            if "rejected" in e.stderr or "non-fast-forward" in e.stderr:
                raise PushConflict(f"push of {self.branch} was rejected", e.stderr.strip()) from e
            raise PushError(f"failed to push {self.branch}", e.stderr.strip()) from e
