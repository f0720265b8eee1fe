"""Pull request APIs of the supported source-control hosts."""

import logging
from typing import Optional, Protocol

import boto3
import requests
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import TargetRepositoryConfig
from ..models import PullRequestError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30


class PullRequestHost(Protocol):
    def find_open_pull_request(self, branch: str) -> Optional[str]: ...

    def create_pull_request(self, title: str, description: str, branch: str, base_branch: str) -> str: ...


class CodeCommitHost:
    """CodeCommit repository in the receiver account."""

    def __init__(self, repository_name: str, region: str, client=None):
        self.repository_name = repository_name
        self.region = region
        self.client = client or boto3.client(
            "codecommit",
            region_name=region or None,
            config=Config(retries={"max_attempts": 5, "mode": "standard"}),
        )

    def _url(self, pull_request_id: str) -> str:
        return (f"https://{self.region}.console.aws.amazon.com/codesuite/codecommit/repositories/"
                f"{self.repository_name}/pull-requests/{pull_request_id}/details?region={self.region}")

    def find_open_pull_request(self, branch: str) -> Optional[str]:
        refs = {branch, f"refs/heads/{branch}"}
        try:
            paginator = self.client.get_paginator("list_pull_requests")
            for page in paginator.paginate(repositoryName=self.repository_name, pullRequestStatus="OPEN"):
                for pull_request_id in page.get("pullRequestIds", []):
                    pull_request = self.client.get_pull_request(pullRequestId=pull_request_id)["pullRequest"]
                    for target in pull_request.get("pullRequestTargets", []):
                        if target.get("sourceReference") in refs:
                            return self._url(pull_request_id)
        except (BotoCoreError, ClientError) as e:
            raise PullRequestError("failed to list CodeCommit pull requests", str(e)) from e
        return None

    def create_pull_request(self, title: str, description: str, branch: str, base_branch: str) -> str:
        try:
            response = self.client.create_pull_request(
                title=title,
                description=description,
                targets=[{
                    "repositoryName": self.repository_name,
                    "sourceReference": branch,
                    "destinationReference": base_branch,
                }],
            )
        except (BotoCoreError, ClientError) as e:
            raise PullRequestError("failed to create CodeCommit pull request", str(e)) from e
        return self._url(response["pullRequest"]["pullRequestId"])


class GitHubHost:
    """GitHub (or GitHub Enterprise) repository through the REST API."""

    def __init__(self, slug: str, token: str, api_url: str = "https://api.github.com",
                 session: Optional[requests.Session] = None):
        self.slug = slug
        self.owner = slug.split("/", 1)[0]
        self.api_url = api_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token}",
            "X-GitHub-Api-Version": "2022-11-28",
        })

    def find_open_pull_request(self, branch: str) -> Optional[str]:
        try:
            response = self.session.get(
                f"{self.api_url}/repos/{self.slug}/pulls",
                params={"head": f"{self.owner}:{branch}", "state": "open"},
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise PullRequestError("failed to list GitHub pull requests", str(e)) from e
        pulls = response.json()
        return pulls[0]["html_url"] if pulls else None

    def create_pull_request(self, title: str, description: str, branch: str, base_branch: str) -> str:
        try:
            response = self.session.post(
                f"{self.api_url}/repos/{self.slug}/pulls",
                json={"title": title, "body": description, "head": branch, "base": base_branch},
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            raise PullRequestError("failed to create GitHub pull request", str(e)) from e

        if response.status_code == 422:
            # raced with another execution that opened it first
            existing = self.find_open_pull_request(branch)
            if existing:
                return existing
        if response.status_code >= 400:
            raise PullRequestError("failed to create GitHub pull request",
                                   f"HTTP {response.status_code}: {response.text[:200]}")
        return response.json()["html_url"]


def build_host(config: TargetRepositoryConfig) -> PullRequestHost:
    if config.host == "github":
        if not config.github_slug:
            raise ValueError("repository.github_slug is required for the github host")
        return GitHubHost(config.github_slug, config.token, config.github_api_url)
    if config.host == "codecommit":
        return CodeCommitHost(config.name, config.region)
    raise ValueError(f"Unknown source-control host '{config.host}'")
