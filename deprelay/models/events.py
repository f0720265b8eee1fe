"""Pydantic models for release propagation and build feedback."""

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class PackageFormat(str, Enum):
    """Package formats the worker knows how to patch."""
    MAVEN = "maven"
    GRADLE = "gradle"
    NPM = "npm"


class WorkerState(str, Enum):
    """States of a single pull-request worker execution."""
    CLONING = "cloning"
    PATCHING = "patching"
    COMMITTING = "committing"
    PUSHING = "pushing"
    OPENING_PR = "opening_pr"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkerState.DONE, WorkerState.FAILED)


PUBLISHED = "Published"
BUILD_FAILED = "FAILED"


class ReleaseEvent(BaseModel):
    """A package version published to the sender's registry."""
    model_config = ConfigDict(frozen=True)

    source_account: str = Field("", description="Account that published the package")
    target_domain: str = Field("", description="Registry domain the package lives in")
    repository_name: str = Field("", description="Registry repository holding the package")
    group_id: str = Field("", description="Package namespace (maven group, npm scope)")
    artifact_id: str = Field(..., description="Package name")
    version: str = Field(..., description="Published version")
    package_format: PackageFormat
    package_version_state: str = PUBLISHED
    published_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def release_key(self) -> str:
        """Identity used to deduplicate redelivered events."""
        return f"{self.group_id}:{self.artifact_id}:{self.version}@{self.repository_name}"

    @property
    def package_name(self) -> str:
        """Name as it appears in the manifest."""
        if self.package_format is PackageFormat.NPM and self.group_id:
            scope = self.group_id if self.group_id.startswith("@") else f"@{self.group_id}"
            return f"{scope}/{self.artifact_id}"
        return self.artifact_id

    @property
    def coordinate(self) -> str:
        if self.package_format is PackageFormat.NPM:
            return f"{self.package_name}@{self.version}"
        return f"{self.group_id}:{self.artifact_id}:{self.version}"

    @property
    def branch_name(self) -> str:
        """Deterministic branch for this release, so reruns reuse it."""
        parts = [self.group_id.lstrip("@"), self.artifact_id, self.version]
        safe = [re.sub(r"[^A-Za-z0-9._-]+", "-", p).strip("-.") for p in parts if p]
        return "deprelay/" + "/".join(safe)


class BuildFailedEvent(BaseModel):
    """A receiver build that failed after an update was applied."""
    model_config = ConfigDict(frozen=True)

    account: str
    build_id: str
    status: str = BUILD_FAILED
    cause: str = ""
    project_name: str = ""


class DispatchRequest(BaseModel):
    """A release event enriched with the routing needed to launch a worker."""
    model_config = ConfigDict(frozen=True)

    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    event: ReleaseEvent
    cluster_ref: str = ""
    task_definition_ref: str = ""
    subnet_refs: List[str] = Field(default_factory=list)
    container_name: str = ""
    repo_url: str
    repo_region: str = ""
    base_branch: Optional[str] = None

    @property
    def repository_name(self) -> str:
        """Key used to serialize executions against the same repository."""
        return self.event.repository_name or self.repo_url

    def to_environment(self) -> Dict[str, str]:
        """Environment map handed to an isolated worker execution."""
        env = {
            "DEPRELAY_REQUEST_ID": self.request_id,
            "DEPRELAY_SOURCE_ACCOUNT": self.event.source_account,
            "DEPRELAY_TARGET_DOMAIN": self.event.target_domain,
            "DEPRELAY_REPOSITORY_NAME": self.event.repository_name,
            "DEPRELAY_GROUP_ID": self.event.group_id,
            "DEPRELAY_ARTIFACT_ID": self.event.artifact_id,
            "DEPRELAY_VERSION": self.event.version,
            "DEPRELAY_PACKAGE_FORMAT": self.event.package_format.value,
            "DEPRELAY_PUBLISHED_AT": self.event.published_at.isoformat(),
            "DEPRELAY_REPO_URL": self.repo_url,
            "DEPRELAY_REPO_REGION": self.repo_region,
        }
        if self.base_branch:
            env["DEPRELAY_BASE_BRANCH"] = self.base_branch
        return env

    @classmethod
    def from_environment(cls, env: Dict[str, str]) -> "DispatchRequest":
        event = ReleaseEvent(
            source_account=env.get("DEPRELAY_SOURCE_ACCOUNT", ""),
            target_domain=env.get("DEPRELAY_TARGET_DOMAIN", ""),
            repository_name=env.get("DEPRELAY_REPOSITORY_NAME", ""),
            group_id=env.get("DEPRELAY_GROUP_ID", ""),
            artifact_id=env["DEPRELAY_ARTIFACT_ID"],
            version=env["DEPRELAY_VERSION"],
            package_format=PackageFormat(env["DEPRELAY_PACKAGE_FORMAT"]),
            published_at=env.get("DEPRELAY_PUBLISHED_AT") or datetime.now(timezone.utc),
        )
        return cls(
            request_id=env.get("DEPRELAY_REQUEST_ID") or uuid.uuid4().hex,
            event=event,
            repo_url=env["DEPRELAY_REPO_URL"],
            repo_region=env.get("DEPRELAY_REPO_REGION", ""),
            base_branch=env.get("DEPRELAY_BASE_BRANCH") or None,
        )


class WorkerResult(BaseModel):
    """Outcome of one worker execution."""

    status: Literal["success", "failed"]
    pull_request_url: Optional[str] = None
    branch: Optional[str] = None
    error_kind: Optional[str] = None
    error_detail: Optional[str] = None
    detail: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @classmethod
    def success(cls, pull_request_url: Optional[str] = None, branch: Optional[str] = None,
                detail: Optional[str] = None) -> "WorkerResult":
        return cls(status="success", pull_request_url=pull_request_url, branch=branch, detail=detail)

    @classmethod
    def failed(cls, kind: str, detail: str = "", branch: Optional[str] = None) -> "WorkerResult":
        return cls(status="failed", error_kind=kind, error_detail=detail, branch=branch)
