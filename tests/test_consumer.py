import asyncio
from unittest.mock import MagicMock, patch

import requests

from deprelay.config import AppConfig, DispatchConfig, RelayConfig, TargetRepositoryConfig
from deprelay.dispatcher import TaskDispatcher
from deprelay.feedback import BuildFeedbackChannel
from deprelay.launchers import InProcessLauncher
from deprelay.models import BuildFailedEvent, DispatchRequest, LaunchError
from deprelay.models.queue import BUILD_FAILED_EVENT, RELEASE_EVENT, ChannelAddress
from deprelay.worker.config import WorkerConfig
from deprelay.worker.consumer import EventConsumer


class FakeChannel:
    def __init__(self, batches=None):
        self.address = ChannelAddress("222222222222", "eu-west-1")
        self.batches = list(batches or [])
        self.acked = []

    def read_messages(self, count=10, block_ms=5000):
        return self.batches.pop(0) if self.batches else []

    def acknowledge_message(self, message_id):
        self.acked.append(message_id)
        return True

    def claim_orphaned_messages(self, min_idle_time_ms=60000):
        return []


class FakeDispatcher:
    def __init__(self, error=None):
        self.error = error
        self.requests = []
        self.shut_down = False

    async def dispatch(self, request):
        if self.error is not None:
            raise self.error
        self.requests.append(request)
        handle = MagicMock()
        handle.state = "running"
        return handle

    async def shutdown(self):
        self.shut_down = True


def release_message(event):
    return {"event_type": RELEASE_EVENT, "event_id": event.release_key, "event_data": event.model_dump_json()}


def to_request(event):
    return DispatchRequest(event=event, repo_url="/srv/git/receiver.git")


def test_release_message_is_dispatched_and_acknowledged(make_event):
    channel = FakeChannel()
    dispatcher = FakeDispatcher()
    consumer = EventConsumer(channel, dispatcher=dispatcher, request_factory=to_request)
    event = make_event()

    handled = asyncio.run(consumer.process_message("1-0", release_message(event)))

    assert handled
    assert channel.acked == ["1-0"]
    assert dispatcher.requests[0].event == event
    assert consumer.processed_count == 1


def test_malformed_message_is_acknowledged_and_dropped():
    channel = FakeChannel()
    dispatcher = FakeDispatcher()
    consumer = EventConsumer(channel, dispatcher=dispatcher, request_factory=to_request)

    handled = asyncio.run(consumer.process_message("1-0", {"event_type": RELEASE_EVENT, "event_data": "{not json"}))

    assert not handled
    assert channel.acked == ["1-0"]
    assert dispatcher.requests == []
    assert consumer.error_count == 1


def test_launch_error_is_reported_and_acknowledged(make_event, log_dir):
    channel = FakeChannel()
    consumer = EventConsumer(channel, dispatcher=FakeDispatcher(LaunchError("cluster busy")),
                             request_factory=to_request)

    handled = asyncio.run(consumer.process_message("1-0", release_message(make_event())))

    assert not handled
    assert channel.acked == ["1-0"]
    assert any(p.name.startswith("error-") for p in log_dir.iterdir())


def test_build_failure_goes_to_feedback_channel():
    channel = FakeChannel()
    feedback = MagicMock()
    consumer = EventConsumer(channel, feedback=feedback)
    event = BuildFailedEvent(account="222222222222", build_id="b-1")
    message = {"event_type": BUILD_FAILED_EVENT, "event_id": "b-1", "event_data": event.model_dump_json()}

    assert asyncio.run(consumer.process_message("5-0", message))
    feedback.notify.assert_called_once_with(event)
    assert channel.acked == ["5-0"]


class DownSink:
    def __init__(self):
        self.attempts = 0

    def send(self, subject, message):
        self.attempts += 1
        if self.attempts == 1:
            raise requests.ConnectionError("gateway down")


def test_undelivered_build_failure_stays_pending(log_dir):
    channel = FakeChannel()
    sink = DownSink()
    consumer = EventConsumer(channel, feedback=BuildFeedbackChannel(sink))
    event = BuildFailedEvent(account="222222222222", build_id="b-1")
    message = {"event_type": BUILD_FAILED_EVENT, "event_id": "b-1", "event_data": event.model_dump_json()}

    assert not asyncio.run(consumer.process_message("5-0", message))
    assert channel.acked == []
    assert consumer.error_count == 1
    assert any(p.name.startswith("error-") for p in log_dir.iterdir())

    # the claimed redelivery goes through
    assert asyncio.run(consumer.process_message("5-0", message))
    assert channel.acked == ["5-0"]
    assert sink.attempts == 2


def test_run_processes_batches_and_shuts_down_dispatcher(make_event):
    first, second = make_event(version="2.4.0"), make_event(version="2.5.0")
    channel = FakeChannel([[("1-0", release_message(first)), ("2-0", release_message(second))]])
    dispatcher = FakeDispatcher()
    consumer = EventConsumer(channel, dispatcher=dispatcher, request_factory=to_request, poll_interval_ms=1)

    asyncio.run(consumer.run(handle_signals=False, max_batches=2))

    assert [r.event.version for r in dispatcher.requests] == ["2.4.0", "2.5.0"]
    assert channel.acked == ["1-0", "2-0"]
    assert dispatcher.shut_down


def app_config(launcher="local"):
    return AppConfig(
        relay=RelayConfig(sender_account="111111111111", receiver_account="222222222222", region="eu-west-1"),
        repository=TargetRepositoryConfig(name="ReceiverRepo", clone_url="/srv/git/receiver.git", base_branch="main"),
        dispatch=DispatchConfig(launcher=launcher),
    )


def test_receiver_wiring_reads_receiver_channel(make_event):
    with patch("deprelay.worker.consumer.EventChannel") as channel_cls, \
            patch("deprelay.worker.consumer.PullRequestWorker"):
        consumer = EventConsumer.from_config(WorkerConfig(role="receiver", max_concurrency=2), app_config())

    assert channel_cls.call_args.args[0] == ChannelAddress("222222222222", "eu-west-1")
    assert isinstance(consumer.dispatcher, TaskDispatcher)
    assert isinstance(consumer.dispatcher.launcher, InProcessLauncher)
    assert consumer.dispatcher.launcher.max_concurrency == 2
    request = consumer.request_factory(make_event())
    assert request.repo_url == "/srv/git/receiver.git"
    assert request.base_branch == "main"


def test_sender_wiring_reads_sender_channel():
    with patch("deprelay.worker.consumer.EventChannel") as channel_cls, \
            patch("deprelay.worker.consumer.RedisDedupWindow"):
        consumer = EventConsumer.from_config(WorkerConfig(role="sender"), app_config())

    assert channel_cls.call_args.args[0] == ChannelAddress("111111111111", "eu-west-1")
    assert consumer.dispatcher is None
    assert consumer.feedback is not None
