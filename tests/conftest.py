import pytest

from deprelay.models import DispatchRequest, PackageFormat, ReleaseEvent


@pytest.fixture(autouse=True)
def log_dir(tmp_path, monkeypatch):
    """Keep timestamped notification and error files out of the source tree."""
    path = tmp_path / "logs"
    monkeypatch.setenv("DEPRELAY_LOG_DIR", str(path))
    return path


@pytest.fixture
def make_event():
    def _make(version="2.4.0", repository="releases", group="com.acme", artifact="core-lib",
              package_format=PackageFormat.MAVEN, **kwargs):
        return ReleaseEvent(
            source_account="111111111111",
            repository_name=repository,
            group_id=group,
            artifact_id=artifact,
            version=version,
            package_format=package_format,
            **kwargs,
        )
    return _make


@pytest.fixture
def make_request(make_event):
    def _make(repo_url="/srv/git/receiver.git", base_branch=None, **event_kwargs):
        return DispatchRequest(event=make_event(**event_kwargs), repo_url=repo_url, base_branch=base_branch)
    return _make
