"""Thin wrapper around the git command line."""

import logging
import os
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 60
GIT_NETWORK_TIMEOUT_SECONDS = 300


class GitCommandError(Exception):
    """A git invocation exited with a non-zero status."""

    def __init__(self, command: str, stderr: str, returncode: int):
        super().__init__(f"{command} failed ({returncode}): {stderr.strip()}")
        self.command = command
        self.stderr = stderr
        self.returncode = returncode


def run_git(args: Sequence[str], cwd: Optional[Path] = None, timeout: float = GIT_TIMEOUT_SECONDS) -> str:
    cmd = ["git", *args]
    env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            env=env,
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout,
        )
    except subprocess.CalledProcessError as e:
        raise GitCommandError(" ".join(cmd[:3]), e.stderr or "", e.returncode) from e
    except subprocess.TimeoutExpired as e:
        raise GitCommandError(" ".join(cmd[:3]), f"timed out after {timeout}s", -1) from e
    except FileNotFoundError as e:
        raise GitCommandError("git", "git executable not found", 127) from e
    return result.stdout.strip()


class GitRepository:
    """A local working copy with a single 'origin' remote."""

    def __init__(self, path: Path, author_name: str = "deprelay", author_email: str = "deprelay@localhost"):
        self.path = Path(path)
        self.author_name = author_name
        self.author_email = author_email

    @classmethod
    def clone(cls, url: str, path: Path, branch: Optional[str] = None, **kwargs) -> "GitRepository":
        args = ["clone", "--quiet", "--single-branch"]
        if branch:
            args += ["--branch", branch]
        run_git(args + [url, str(path)], timeout=GIT_NETWORK_TIMEOUT_SECONDS)
        return cls(path, **kwargs)

    def git(self, *args: str, timeout: float = GIT_TIMEOUT_SECONDS) -> str:
        return run_git(args, cwd=self.path, timeout=timeout)

    def current_branch(self) -> str:
        return self.git("rev-parse", "--abbrev-ref", "HEAD")

    def checkout_new_branch(self, branch: str) -> None:
        self.git("checkout", "-B", branch)

    def commit(self, paths: List[Path], message: str) -> str:
        """Stage the given files, commit them and return the new commit SHA."""
        self.git("add", "--", *[str(Path(p).relative_to(self.path)) for p in paths])
        self.git(
            "-c", f"user.name={self.author_name}",
            "-c", f"user.email={self.author_email}",
            "commit", "--quiet", "-m", message,
        )
        return self.git("rev-parse", "HEAD")

    def remote_branch_exists(self, branch: str) -> bool:
        output = self.git("ls-remote", "--heads", "origin", branch, timeout=GIT_NETWORK_TIMEOUT_SECONDS)
        return any(line.endswith(f"refs/heads/{branch}") for line in output.splitlines())

    def fetch_branch(self, branch: str) -> str:
        self.git("fetch", "--quiet", "origin", f"refs/heads/{branch}", timeout=GIT_NETWORK_TIMEOUT_SECONDS)
        return self.git("rev-parse", "FETCH_HEAD")

    def same_content(self, ref: str, paths: List[Path]) -> bool:
        """True when the given files are identical in HEAD and ref."""
        relative = [str(Path(p).relative_to(self.path)) for p in paths]
        try:
            self.git("diff", "--quiet", ref, "HEAD", "--", *relative)
        except GitCommandError as e:
            if e.returncode == 1:
                return False
            raise
        return True

    def push(self, branch: str) -> None:
        self.git("push", "--quiet", "origin", f"refs/heads/{branch}:refs/heads/{branch}",
                 timeout=GIT_NETWORK_TIMEOUT_SECONDS)
