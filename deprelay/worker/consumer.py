"""Event consumer for an account's channel.

This module implements a competing consumer that:
- Reads forwarded events from the account's Redis stream
- Hands release events to the task dispatcher (receiver side)
- Hands build failures to the feedback channel (sender side)
- Acknowledges every message it has taken responsibility for
- Leaves build failures whose delivery failed pending, so they are retried
"""

import asyncio
import logging
import os
import signal
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from ..common import log_error
from ..config import AppConfig
from ..dispatcher import ExecutionHandle, TaskDispatcher, request_from_event
from ..feedback import BuildFeedbackChannel, RedisDedupWindow, build_sink
from ..launchers import build_launcher
from ..models import BuildFailedEvent, DispatchRequest, LaunchError, NotificationError, ReleaseEvent, WorkerResult
from ..models.queue import ChannelAddress, EventChannel, decode_message
from .config import WorkerConfig
from .pr_worker import PullRequestWorker

logger = logging.getLogger(__name__)

RequestFactory = Callable[[ReleaseEvent], DispatchRequest]


class EventConsumer:
    """Consumes one account's event channel."""

    def __init__(
        self,
        channel: EventChannel,
        dispatcher: Optional[TaskDispatcher] = None,
        request_factory: Optional[RequestFactory] = None,
        feedback: Optional[BuildFeedbackChannel] = None,
        batch_size: int = 10,
        poll_interval_ms: int = 5000,
    ):
        if dispatcher is not None and request_factory is None:
            raise ValueError("a dispatcher needs a request factory")
        self.channel = channel
        self.dispatcher = dispatcher
        self.request_factory = request_factory
        self.feedback = feedback
        self.batch_size = batch_size
        self.poll_interval_ms = poll_interval_ms
        self.running = False
        self.processed_count = 0
        self.error_count = 0
        self.start_time: Optional[datetime] = None

    @classmethod
    def from_config(cls, worker_config: WorkerConfig, app_config: AppConfig) -> "EventConsumer":
        """Wire the consumer for the configured side of the relay."""
        relay = app_config.relay
        if worker_config.role == "sender":
            channel = EventChannel(ChannelAddress(relay.sender_account, relay.region), worker_config.redis_url)
            dedup = RedisDedupWindow(worker_config.redis_url, app_config.feedback.dedup_window_seconds)
            feedback = BuildFeedbackChannel(build_sink(app_config.feedback), dedup)
            return cls(channel, feedback=feedback, batch_size=worker_config.batch_size,
                       poll_interval_ms=worker_config.poll_interval_ms)

        channel = EventChannel(ChannelAddress(relay.receiver_account, relay.region), worker_config.redis_url)
        worker = None
        if app_config.dispatch.launcher == "local":
            worker = PullRequestWorker.from_config(app_config.repository,
                                                   workspace_root=worker_config.workspace_root)
        launcher = build_launcher(app_config.dispatch, worker, region=relay.region,
                                  max_concurrency=worker_config.max_concurrency)
        dispatcher = TaskDispatcher.from_config(launcher, app_config.dispatch, on_result=report_result)

        def request_factory(event: ReleaseEvent) -> DispatchRequest:
            return request_from_event(event, app_config.dispatch, app_config.repository)

        return cls(channel, dispatcher=dispatcher, request_factory=request_factory,
                   batch_size=worker_config.batch_size, poll_interval_ms=worker_config.poll_interval_ms)

    def stop(self) -> None:
        self.running = False

    async def process_message(self, message_id: str, message_data: Dict[str, Any]) -> bool:
        """Handle one stream entry. Returns True when it was handled successfully."""
        try:
            event = decode_message(message_data)
        except (ValueError, ValidationError) as e:
            # Undecodable entries never become valid, discard them
            log_error(f"Discarding malformed message {message_id}: {e}", str(message_data))
            self.channel.acknowledge_message(message_id)
            self.error_count += 1
            return False

        try:
            if isinstance(event, ReleaseEvent):
                handled = await self._handle_release(event)
            else:
                handled = await self._handle_build_failure(event)
        except NotificationError as e:
            # left pending so the orphan claim redelivers it
            log_error(f"Delivery for message {message_id} failed, leaving it pending: {e}", event.model_dump_json())
            self.error_count += 1
            return False

        self.channel.acknowledge_message(message_id)
        if handled:
            self.processed_count += 1
        else:
            self.error_count += 1
        return handled

    async def _handle_release(self, event: ReleaseEvent) -> bool:
        if self.dispatcher is None:
            logger.warning(f"No dispatcher on this side, ignoring release {event.release_key}")
            return False
        try:
            handle = await self.dispatcher.dispatch(self.request_factory(event))
        except LaunchError as e:
            log_error(f"Could not launch worker for {event.release_key}: {e}", event.model_dump_json())
            return False
        logger.info(f"Release {event.release_key} dispatched ({handle.state})")
        return True

    async def _handle_build_failure(self, event: BuildFailedEvent) -> bool:
        if self.feedback is None:
            logger.warning(f"No feedback channel on this side, ignoring build {event.build_id}")
            return False
        await asyncio.to_thread(self.feedback.notify, event)
        return True

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._signal_handler, signum)
            except (NotImplementedError, RuntimeError):
                # not available on this platform or outside the main thread
                pass

    def _signal_handler(self, signum) -> None:
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        self.running = False

    async def run(self, handle_signals: bool = True, max_batches: Optional[int] = None) -> None:
        """Run the consumer loop until stopped."""
        self.running = True
        self.start_time = datetime.now()
        if handle_signals:
            self._install_signal_handlers()

        logger.info(f"Starting consumer on {self.channel.address} (PID: {os.getpid()})")
        logger.info(f"Batch size: {self.batch_size}, Poll interval: {self.poll_interval_ms}ms")

        batches = 0
        try:
            while self.running and (max_batches is None or batches < max_batches):
                batches += 1
                try:
                    messages = await asyncio.to_thread(
                        self.channel.read_messages, count=self.batch_size, block_ms=self.poll_interval_ms
                    )
                    if batches % 50 == 0:
                        messages += await asyncio.to_thread(self.channel.claim_orphaned_messages)

                    if messages:
                        logger.info(f"Processing batch of {len(messages)} messages")
                        # Tasks start in stream order, which keeps per-repository FIFO
                        results = await asyncio.gather(
                            *(self.process_message(message_id, data) for message_id, data in messages),
                            return_exceptions=True,
                        )
                        successful = sum(1 for r in results if r is True)
                        logger.info(f"Batch completed: {successful} successful, {len(results) - successful} failed")
                        for r in results:
                            if isinstance(r, Exception):
                                logger.error(f"Unhandled error processing message: {r!r}")

                    if batches % 100 == 0:
                        self._log_statistics()

                except Exception as e:
                    logger.error(f"Error in consumer loop: {e}")
                    await asyncio.sleep(1)
        finally:
            if self.dispatcher is not None:
                await self.dispatcher.shutdown()
            self._log_statistics()
            logger.info("Consumer stopped")

    def _log_statistics(self) -> None:
        if self.start_time:
            uptime = datetime.now() - self.start_time
            logger.info(f"Statistics: {self.processed_count} processed, {self.error_count} errors, "
                        f"uptime: {uptime}")


def report_result(handle: ExecutionHandle, result: WorkerResult) -> None:
    """Surface every final worker outcome for operators."""
    if result.succeeded:
        logger.info(f"[RESULT] {handle.release_key}: success {result.pull_request_url or result.detail or ''}")
    else:
        log_error(f"[RESULT] {handle.release_key}: {result.error_kind}", result.error_detail or "")
