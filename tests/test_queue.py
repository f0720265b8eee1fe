from unittest.mock import MagicMock, patch

import pytest
import redis

from deprelay.models import BuildFailedEvent
from deprelay.models.queue import (
    BUILD_FAILED_EVENT,
    RELEASE_EVENT,
    ChannelAddress,
    EventChannel,
    decode_message,
)

ADDRESS = ChannelAddress("222222222222", "eu-west-1")


@pytest.fixture
def redis_client():
    client = MagicMock()
    with patch("deprelay.models.queue.redis.from_url", return_value=client):
        yield client


def test_channel_creates_consumer_group(redis_client):
    channel = EventChannel(ADDRESS, "redis://localhost:6379")

    assert channel.stream_name == "deprelay:222222222222:eu-west-1"
    redis_client.xgroup_create.assert_called_once_with(
        "deprelay:222222222222:eu-west-1", "deprelay_consumers", id="0", mkstream=True)


def test_existing_consumer_group_is_reused(redis_client):
    redis_client.xgroup_create.side_effect = redis.ResponseError("BUSYGROUP Consumer Group name already exists")

    EventChannel(ADDRESS)


def test_publish_release_event(redis_client, make_event):
    redis_client.xadd.return_value = "1700000000000-0"
    channel = EventChannel(ADDRESS)
    event = make_event()

    assert channel.publish(event) == "1700000000000-0"

    stream, fields = redis_client.xadd.call_args.args
    assert stream == "deprelay:222222222222:eu-west-1"
    assert fields["event_type"] == RELEASE_EVENT
    assert fields["event_id"] == event.release_key
    assert decode_message(fields) == event


def test_publish_retries_transient_errors(redis_client):
    redis_client.xadd.side_effect = [redis.ConnectionError("reset"), "2-0"]
    channel = EventChannel(ADDRESS)

    with patch("deprelay.models.queue.time.sleep"):
        message_id = channel.publish(BuildFailedEvent(account="222222222222", build_id="b-1"))

    assert message_id == "2-0"
    assert redis_client.xadd.call_args.args[1]["event_type"] == BUILD_FAILED_EVENT


def test_publish_gives_up_after_retries(redis_client, make_event):
    redis_client.xadd.side_effect = redis.ConnectionError("down")
    channel = EventChannel(ADDRESS)

    with patch("deprelay.models.queue.time.sleep"), pytest.raises(redis.ConnectionError):
        channel.publish(make_event())
    assert redis_client.xadd.call_count == 3


def test_read_messages_flattens_streams(redis_client):
    redis_client.xreadgroup.return_value = [
        ("deprelay:222222222222:eu-west-1", [("1-0", {"event_type": "release"}), ("2-0", {"event_type": "release"})]),
    ]
    channel = EventChannel(ADDRESS)

    assert [message_id for message_id, _ in channel.read_messages(count=5, block_ms=10)] == ["1-0", "2-0"]


def test_claim_orphaned_messages_only_claims_idle(redis_client):
    redis_client.xpending_range.return_value = [
        {"message_id": "1-0", "time_since_delivered": 120000},
        {"message_id": "2-0", "time_since_delivered": 10},
    ]
    redis_client.xclaim.return_value = [("1-0", {"event_type": "release", "event_data": "{}"})]
    channel = EventChannel(ADDRESS)

    claimed = channel.claim_orphaned_messages(min_idle_time_ms=60000)

    assert [message_id for message_id, _ in claimed] == ["1-0"]
    assert redis_client.xclaim.call_args.args[-1] == ["1-0"]


def test_queue_stats(redis_client):
    redis_client.xinfo_stream.return_value = {"length": 4, "last-generated-id": "4-0"}
    redis_client.xinfo_groups.return_value = [{"name": "deprelay_consumers"}]
    redis_client.xpending.return_value = {"pending": 1, "consumers": [{"name": "consumer_1"}]}
    channel = EventChannel(ADDRESS)

    stats = channel.get_queue_stats()

    assert stats["stream_length"] == 4
    assert stats["pending_messages"] == 1
    assert stats["consumers"] == 1


def test_decode_rejects_unknown_entries():
    with pytest.raises(ValueError):
        decode_message({"event_type": "release"})
    with pytest.raises(ValueError):
        decode_message({"event_type": "deployment", "event_data": "{}"})
