"""Worker processing module.

This module handles:
- Consuming forwarded events from an account's channel
- Applying released versions to the receiver repository
- Opening pull requests on the configured source-control host

The consumer is imported from ``deprelay.worker.consumer`` directly.
"""

from .config import WorkerConfig
from .pr_worker import PullRequestWorker

__all__ = [
    "PullRequestWorker",
    "WorkerConfig",
]
