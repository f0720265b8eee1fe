"""Test doubles for the source-control host, git working copies and channels."""

from pathlib import Path

POM = """<project>
  <dependencies>
    <dependency>
      <groupId>com.acme</groupId>
      <artifactId>lib</artifactId>
      <version>2.2.0</version>
    </dependency>
  </dependencies>
</project>
"""


class FakeHost:
    def __init__(self, existing=None):
        self.existing = existing
        self.created = []

    def find_open_pull_request(self, branch):
        return self.existing

    def create_pull_request(self, title, description, branch, base_branch):
        self.created.append({"title": title, "description": description, "branch": branch, "base": base_branch})
        return f"https://scm.example.com/pr/{len(self.created)}"


class FakeRepository:
    """In-memory stand-in for a cloned working copy."""

    def __init__(self, path, remote_branches=None, push_error=None):
        self.path = Path(path)
        self.remote_branches = remote_branches or {}
        self.push_error = push_error
        self.branch = "main"
        self.commits = []
        self.pushed = []

    def current_branch(self):
        return self.branch

    def checkout_new_branch(self, branch):
        self.branch = branch

    def commit(self, paths, message):
        self.commits.append((self.branch, [Path(p).name for p in paths], message))
        return "c0ffee"

    def remote_branch_exists(self, branch):
        return branch in self.remote_branches

    def fetch_branch(self, branch):
        return branch

    def same_content(self, ref, paths):
        return self.remote_branches[ref] == (self.path / "pom.xml").read_text()

    def push(self, branch):
        if self.push_error is not None:
            raise self.push_error
        self.pushed.append(branch)


class FakeCloner:
    def __init__(self, manifest=POM, error=None, **repo_kwargs):
        self.manifest = manifest
        self.error = error
        self.repo_kwargs = repo_kwargs
        self.repositories = []

    def __call__(self, url, path, branch=None, **kwargs):
        if self.error is not None:
            raise self.error
        path.mkdir(parents=True)
        (path / "pom.xml").write_text(self.manifest)
        repo = FakeRepository(path, **self.repo_kwargs)
        self.repositories.append(repo)
        return repo


class RecordingChannel:
    def __init__(self, address):
        self.address = address
        self.published = []

    def publish(self, event):
        self.published.append(event)
        return f"{len(self.published)}-0"
