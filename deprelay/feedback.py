"""Build feedback channel.

Failed receiver builds are reported to the sender's subscribers. Redeliveries
of the same build inside the deduplication window are suppressed so
subscribers see one notification per build. A delivery failure raises, which
leaves the stream entry pending for a later retry.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Callable, Dict, Optional, Protocol

import boto3
import redis
import requests
from botocore.exceptions import BotoCoreError, ClientError

from .config import FeedbackConfig
from .models import BuildFailedEvent, NotificationError

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def send(self, subject: str, message: Dict[str, str]) -> None: ...


class DedupStore(Protocol):
    def first_seen(self, key: str) -> bool: ...

    def forget(self, key: str) -> None: ...


class DedupWindow:
    """In-process deduplication keyed by build ID."""

    def __init__(self, window_seconds: float = 3600, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self._clock = clock
        self._seen: Dict[str, float] = {}

    def first_seen(self, key: str) -> bool:
        now = self._clock()
        self._seen = {k: t for k, t in self._seen.items() if now - t < self.window_seconds}
        if key in self._seen:
            return False
        self._seen[key] = now
        return True

    def forget(self, key: str) -> None:
        self._seen.pop(key, None)


class RedisDedupWindow:
    """Deduplication shared by every consumer process through Redis."""

    def __init__(self, redis_url: str, window_seconds: int = 3600, prefix: str = "deprelay:build-notified"):
        self.redis = redis.from_url(redis_url, decode_responses=True)
        self.window_seconds = int(window_seconds)
        self.prefix = prefix

    def first_seen(self, key: str) -> bool:
        return bool(self.redis.set(f"{self.prefix}:{key}", "1", nx=True, ex=self.window_seconds))

    def forget(self, key: str) -> None:
        self.redis.delete(f"{self.prefix}:{key}")


class LoggingSink:
    def send(self, subject: str, message: Dict[str, str]) -> None:
        logger.warning(f"{subject}: {json.dumps(message, sort_keys=True)}")


class WebhookSink:
    """Posts notifications to a chat or mail gateway webhook."""

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    def send(self, subject: str, message: Dict[str, str]) -> None:
        lines = [subject] + [f"{k}: {v}" for k, v in message.items() if v]
        response = requests.post(
            self.url,
            json={"text": "\n".join(lines), "subject": subject, "detail": message},
            timeout=self.timeout,
        )
        response.raise_for_status()


class SnsSink:
    """Fans notifications out through an SNS topic."""

    def __init__(self, topic_arn: str, client=None):
        self.topic_arn = topic_arn
        self.client = client or boto3.client("sns")

    def send(self, subject: str, message: Dict[str, str]) -> None:
        self.client.publish(
            TopicArn=self.topic_arn,
            Subject=subject[:100],
            Message=json.dumps(message, indent=2),
        )


def build_sink(config: FeedbackConfig) -> NotificationSink:
    if config.sink == "webhook":
        if not config.webhook_url:
            raise ValueError("feedback.webhook_url is required for the webhook sink")
        return WebhookSink(config.webhook_url)
    if config.sink == "sns":
        if not config.topic_arn:
            raise ValueError("feedback.topic_arn is required for the sns sink")
        return SnsSink(config.topic_arn)
    return LoggingSink()


class BuildFeedbackChannel:
    """Notifies subscribers about failed builds, once per build ID."""

    def __init__(self, sink: NotificationSink, dedup: Optional[DedupStore] = None):
        self.sink = sink
        self.dedup = dedup or DedupWindow()

    def notify(self, event: BuildFailedEvent) -> bool:
        """Send one notification for the build. Returns False for a duplicate.

        Raises NotificationError when the sink cannot deliver it.
        """
        if not self.dedup.first_seen(event.build_id):
            logger.info(f"Build {event.build_id} already reported, skipping duplicate delivery")
            return False

        subject = f"Build {event.project_name or event.build_id} failed in account {event.account}"
        message = {
            "account": event.account,
            "build_id": event.build_id,
            "project": event.project_name,
            "status": event.status,
            "cause": event.cause,
        }
        try:
            self.sink.send(subject, message)
        except (requests.RequestException, BotoCoreError, ClientError) as e:
            logger.error(f"Failed to deliver build failure notification for {event.build_id}: {e}")
            # let a redelivery of this build try again
            self.dedup.forget(event.build_id)
            raise NotificationError(f"failed to deliver notification for build {event.build_id}", str(e)) from e

        logger.info(f"Reported failed build {event.build_id} to subscribers")
        return True
