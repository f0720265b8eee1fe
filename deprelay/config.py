from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml
from dotenv import load_dotenv

from .models import PackageFormat

load_dotenv()


def _load_file(path: str | Path) -> dict:
    with open(path, "r", encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


@dataclass
class RelayConfig:
    """Accounts and filter used to forward release events."""

    sender_account: str
    receiver_account: str
    region: str
    accepted_formats: List[PackageFormat] = field(default_factory=lambda: [PackageFormat.MAVEN])
    domain_owner: Optional[str] = None

    def __post_init__(self) -> None:
        self.sender_account = str(self.sender_account)
        self.receiver_account = str(self.receiver_account)
        self.accepted_formats = [PackageFormat(str(f).lower()) for f in self.accepted_formats]
        if self.domain_owner is not None:
            self.domain_owner = str(self.domain_owner)


@dataclass
class DispatchConfig:
    """Where and how worker executions are launched."""

    launcher: str = "local"  # "local" or "ecs"
    cluster_ref: str = ""
    task_definition_ref: str = ""
    subnet_refs: List[str] = field(default_factory=list)
    container_name: str = "deprelay-worker"
    max_launch_attempts: int = 5
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 30.0
    execution_timeout_seconds: float = 900.0
    cancel_grace_seconds: float = 300.0
    poll_interval_seconds: float = 10.0


@dataclass
class TargetRepositoryConfig:
    """The receiver's source repository that gets the pull requests."""

    name: str
    clone_url: str
    region: str = ""
    base_branch: Optional[str] = None
    host: str = "codecommit"  # "codecommit" or "github"
    github_slug: str = ""
    github_api_url: str = "https://api.github.com"
    token: str = ""
    author_name: str = "deprelay"
    author_email: str = "deprelay@localhost"


@dataclass
class FeedbackConfig:
    """Build failure notification settings."""

    dedup_window_seconds: int = 3600
    sink: str = "log"  # "log", "webhook" or "sns"
    webhook_url: str = ""
    topic_arn: str = ""


@dataclass
class AppConfig:
    """Top level application configuration."""

    relay: RelayConfig
    repository: TargetRepositoryConfig
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    feedback: FeedbackConfig = field(default_factory=FeedbackConfig)

    @staticmethod
    def load(path: str | Path) -> "AppConfig":
        """Load configuration from a YAML file."""

        data = _load_file(path)
        if "relay" not in data or "repository" not in data:
            raise ValueError("Configuration must define 'relay' and 'repository' sections")

        relay = RelayConfig(**data["relay"])

        repo_data = data["repository"].copy()
        # Credentials only ever come from the environment
        repo_data["token"] = os.getenv("DEPRELAY_SCM_TOKEN", "")
        repository = TargetRepositoryConfig(**repo_data)

        dispatch = DispatchConfig(**data.get("dispatch", {}))
        if dispatch.launcher not in ("local", "ecs"):
            raise ValueError(f"Unknown launcher '{dispatch.launcher}'")

        feedback = FeedbackConfig(**data.get("feedback", {}))

        return AppConfig(relay=relay, repository=repository, dispatch=dispatch, feedback=feedback)
