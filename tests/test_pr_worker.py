import shutil
import threading

import pytest

from deprelay.models import WorkerState
from deprelay.worker.git import GitCommandError, GitRepository, run_git
from deprelay.worker.pr_worker import PullRequestWorker, pull_request_title

from fakes import POM, FakeCloner, FakeHost


def make_worker(host, cloner, transitions=None, tmp_path=None):
    def on_transition(request, state):
        if transitions is not None:
            transitions.append(state)

    return PullRequestWorker(host, workspace_root=str(tmp_path) if tmp_path else None,
                             clone=cloner, on_transition=on_transition)


def test_release_opens_one_pull_request(make_request, tmp_path):
    host = FakeHost()
    cloner = FakeCloner()
    transitions = []
    worker = make_worker(host, cloner, transitions, tmp_path)
    request = make_request(artifact="lib", version="2.3.0")

    result = worker.run(request)

    assert result.succeeded
    assert result.pull_request_url == "https://scm.example.com/pr/1"
    assert result.branch == "deprelay/com.acme/lib/2.3.0"
    assert len(host.created) == 1
    assert "com.acme:lib:2.3.0" in host.created[0]["title"]
    assert host.created[0]["base"] == "main"
    assert cloner.repositories[0].pushed == ["deprelay/com.acme/lib/2.3.0"]
    assert transitions == [
        WorkerState.CLONING,
        WorkerState.PATCHING,
        WorkerState.COMMITTING,
        WorkerState.PUSHING,
        WorkerState.OPENING_PR,
        WorkerState.DONE,
    ]
    # the workspace is removed after the execution
    assert list(tmp_path.iterdir()) == []


def test_missing_dependency_fails_without_pull_request(make_request):
    host = FakeHost()
    cloner = FakeCloner()
    transitions = []
    worker = make_worker(host, cloner, transitions)

    result = worker.run(make_request(artifact="unknown-lib", version="2.3.0"))

    assert result.status == "failed"
    assert result.error_kind == "DependencyNotFound"
    assert transitions[-1] == WorkerState.FAILED
    assert host.created == []
    repo = cloner.repositories[0]
    assert repo.commits == []
    assert repo.pushed == []


def test_already_up_to_date_is_success_without_pull_request(make_request):
    host = FakeHost()
    worker = make_worker(host, FakeCloner())

    result = worker.run(make_request(artifact="lib", version="2.2.0"))

    assert result.succeeded
    assert result.pull_request_url is None
    assert host.created == []


def test_existing_pull_request_is_reused(make_request):
    host = FakeHost(existing="https://scm.example.com/pr/7")
    updated = POM.replace("2.2.0", "2.3.0")
    cloner = FakeCloner(remote_branches={"deprelay/com.acme/lib/2.3.0": updated})
    worker = make_worker(host, cloner)

    result = worker.run(make_request(artifact="lib", version="2.3.0"))

    assert result.succeeded
    assert result.pull_request_url == "https://scm.example.com/pr/7"
    assert host.created == []
    assert cloner.repositories[0].pushed == []


def test_diverged_branch_is_a_push_conflict(make_request):
    host = FakeHost()
    cloner = FakeCloner(remote_branches={"deprelay/com.acme/lib/2.3.0": "someone else's change"})
    worker = make_worker(host, cloner)

    result = worker.run(make_request(artifact="lib", version="2.3.0"))

    assert result.error_kind == "PushConflict"
    assert host.created == []


def test_rejected_push_is_a_push_conflict(make_request):
    error = GitCommandError("git push", "! [rejected] (non-fast-forward)", 1)
    worker = make_worker(FakeHost(), FakeCloner(push_error=error))

    result = worker.run(make_request(artifact="lib", version="2.3.0"))

    assert result.error_kind == "PushConflict"


def test_unreachable_remote_is_a_push_error(make_request):
    error = GitCommandError("git push", "fatal: unable to access remote", 128)
    worker = make_worker(FakeHost(), FakeCloner(push_error=error))

    result = worker.run(make_request(artifact="lib", version="2.3.0"))

    assert result.error_kind == "PushError"


def test_clone_failure(make_request):
    cloner = FakeCloner(error=GitCommandError("git clone", "repository not found", 128))
    worker = make_worker(FakeHost(), cloner)

    result = worker.run(make_request(artifact="lib"))

    assert result.error_kind == "CloneError"
    assert "repository not found" in result.error_detail


def test_cancelled_execution_stops_before_next_state(make_request):
    cancel = threading.Event()
    cancel.set()
    host = FakeHost()
    worker = make_worker(host, FakeCloner())

    result = worker.run(make_request(artifact="lib", version="2.3.0"), cancel)

    assert result.error_kind == "ExecutionCancelled"
    assert host.created == []


def test_pull_request_title_references_coordinate(make_event):
    assert pull_request_title(make_event(artifact="lib", version="2.3.0")) == "Update dependency com.acme:lib:2.3.0"


@pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
def test_real_git_round_trip(tmp_path, make_request):
    seed = tmp_path / "seed"
    seed.mkdir()
    run_git(["init", "--quiet"], cwd=seed)
    run_git(["symbolic-ref", "HEAD", "refs/heads/main"], cwd=seed)
    (seed / "pom.xml").write_text(POM)
    run_git(["add", "pom.xml"], cwd=seed)
    run_git(["-c", "user.name=seed", "-c", "user.email=seed@example.com", "commit", "--quiet", "-m", "init"], cwd=seed)
    origin = tmp_path / "origin.git"
    run_git(["clone", "--quiet", "--bare", str(seed), str(origin)])

    host = FakeHost()
    worker = PullRequestWorker(host, workspace_root=str(tmp_path))
    request = make_request(repo_url=str(origin), artifact="lib", version="2.3.0")

    first = worker.run(request)
    assert first.succeeded
    branches = run_git(["branch", "--list"], cwd=origin)
    assert "deprelay/com.acme/lib/2.3.0" in branches

    pom_on_branch = run_git(["show", "deprelay/com.acme/lib/2.3.0:pom.xml"], cwd=origin)
    assert "<version>2.3.0</version>" in pom_on_branch
    pom_on_main = run_git(["show", "main:pom.xml"], cwd=origin)
    assert "<version>2.2.0</version>" in pom_on_main

    # a redelivered release reuses the pushed branch and the open pull request
    host.existing = first.pull_request_url
    second = worker.run(request)
    assert second.succeeded
    assert second.pull_request_url == first.pull_request_url
    assert len(host.created) == 1


def test_git_failure_carries_stderr(tmp_path):
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    with pytest.raises(GitCommandError) as excinfo:
        GitRepository.clone(str(tmp_path / "does-not-exist"), tmp_path / "checkout")
    assert excinfo.value.returncode != 0
    assert excinfo.value.stderr
