"""Redis-based event channel between accounts.

Each account/region pair owns one Redis Stream:
- The relay on the other side of the trust boundary appends events to it
- Worker processes in the owning account read it as competing consumers
- Messages are acknowledged once handed to the dispatcher or feedback channel

Delivery is at-least-once, so consumers must tolerate redelivery.
"""

import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

import redis

from .events import BuildFailedEvent, ReleaseEvent

logger = logging.getLogger(__name__)

# Retry configuration
QUEUE_RETRY_COUNT = 3

RELEASE_EVENT = "release"
BUILD_FAILED_EVENT = "build_failed"


@dataclass(frozen=True)
class ChannelAddress:
    """Address of an account's event channel."""

    account: str
    region: str

    @property
    def stream_name(self) -> str:
        return f"deprelay:{self.account}:{self.region}"

    def __str__(self) -> str:
        return f"{self.account}/{self.region}"


class EventChannel:
    """Redis Streams channel addressed by (account, region)."""

    def __init__(self, address: ChannelAddress, redis_url: Optional[str] = None,
                 group_name: str = "deprelay_consumers"):
        self.address = address
        self.redis_url = redis_url or os.getenv("REDIS_URL", "redis://localhost:6379")
        self.stream_name = address.stream_name
        self.group_name = group_name
        self.consumer_name = f"consumer_{os.getpid()}"

        self.redis = redis.from_url(self.redis_url, decode_responses=True)
        self._ensure_consumer_group()

    def _ensure_consumer_group(self) -> None:
        try:
            self.redis.xgroup_create(self.stream_name, self.group_name, id="0", mkstream=True)
            logger.info(f"Created consumer group '{self.group_name}' for stream '{self.stream_name}'")
        except redis.ResponseError as e:
            if "BUSYGROUP" in str(e):
                logger.debug(f"Consumer group '{self.group_name}' already exists")
            else:
                logger.error(f"Error creating consumer group: {e}")
                raise

    def publish(self, event: Union[ReleaseEvent, BuildFailedEvent]) -> str:
        """Append an event to the stream and return its message ID."""
        if isinstance(event, ReleaseEvent):
            event_type, event_id = RELEASE_EVENT, event.release_key
        else:
            event_type, event_id = BUILD_FAILED_EVENT, event.build_id

        for attempt in range(QUEUE_RETRY_COUNT):
            try:
                message_id = self.redis.xadd(
                    self.stream_name,
                    {
                        "event_type": event_type,
                        "event_id": event_id,
                        "event_data": event.model_dump_json(),
                        "created_at": datetime.now(timezone.utc).isoformat(),
                    }
                )
                logger.info(f"Published {event_type} {event_id} to {self.address} as {message_id}")
                return message_id

            except redis.RedisError as e:
                logger.error(f"Failed to publish {event_type} (attempt {attempt + 1}/{QUEUE_RETRY_COUNT}): {e}")
                if attempt == QUEUE_RETRY_COUNT - 1:
                    raise
                time.sleep(0.1 * (attempt + 1))

    def read_messages(self, count: int = 10, block_ms: int = 5000) -> List[Tuple[str, Dict[str, Any]]]:
        """Read new messages for this consumer."""
        try:
            messages = self.redis.xreadgroup(
                self.group_name,
                self.consumer_name,
                {self.stream_name: ">"},
                count=count,
                block=block_ms
            )
        except redis.RedisError as e:
            logger.error(f"Failed to read messages: {e}")
            return []

        result = []
        for _stream, stream_messages in messages or []:
            for message_id, message_data in stream_messages:
                result.append((message_id, message_data))
        return result

    def acknowledge_message(self, message_id: str) -> bool:
        try:
            self.redis.xack(self.stream_name, self.group_name, message_id)
            logger.debug(f"Acknowledged message {message_id}")
            return True
        except redis.RedisError as e:
            logger.error(f"Failed to acknowledge message {message_id}: {e}")
            return False

    def claim_orphaned_messages(self, min_idle_time_ms: int = 60000) -> List[Tuple[str, Dict[str, Any]]]:
        """Claim messages left pending by consumers that died mid-flight."""
        try:
            pending = self.redis.xpending_range(self.stream_name, self.group_name, "-", "+", 100)
            orphaned_ids = [msg["message_id"] for msg in pending if msg["time_since_delivered"] > min_idle_time_ms]
            if not orphaned_ids:
                return []

            claimed = self.redis.xclaim(
                self.stream_name,
                self.group_name,
                self.consumer_name,
                min_idle_time_ms,
                orphaned_ids
            )
        except redis.RedisError as e:
            logger.error(f"Failed to claim orphaned messages: {e}")
            return []

        messages = [(message_id, message_data) for message_id, message_data in claimed if message_data]
        if messages:
            logger.info(f"Claimed {len(messages)} orphaned messages")
        return messages

    def get_queue_stats(self) -> Dict[str, Any]:
        try:
            stream_info = self.redis.xinfo_stream(self.stream_name)
            group_info = self.redis.xinfo_groups(self.stream_name)
            pending = self.redis.xpending(self.stream_name, self.group_name)
        except redis.RedisError as e:
            logger.error(f"Failed to get queue stats: {e}")
            return {}

        return {
            "stream": self.stream_name,
            "stream_length": stream_info.get("length", 0),
            "stream_groups": len(group_info),
            "pending_messages": pending.get("pending", 0),
            "consumers": len(pending.get("consumers", [])),
            "last_generated_id": stream_info.get("last-generated-id", "0-0")
        }


def decode_message(message_data: Dict[str, Any]) -> Union[ReleaseEvent, BuildFailedEvent]:
    """Turn a stream entry back into its event model."""
    event_type = message_data.get("event_type")
    event_data = message_data.get("event_data")
    if not event_data:
        raise ValueError("message has no event_data")
    if event_type == RELEASE_EVENT:
        return ReleaseEvent.model_validate_json(event_data)
    if event_type == BUILD_FAILED_EVENT:
        return BuildFailedEvent.model_validate_json(event_data)
    raise ValueError(f"unknown event_type {event_type!r}")
