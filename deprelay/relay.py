"""Cross-account relay for release and build-failure events.

Routing is a pure predicate so it can be exercised without any messaging
infrastructure. The relay classes combine it with an event channel.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Union

from .common import log_relay_decision
from .config import RelayConfig
from .models import BUILD_FAILED, PUBLISHED, BuildFailedEvent, ReleaseEvent
from .models.queue import ChannelAddress

logger = logging.getLogger(__name__)


class Publisher(Protocol):
    def publish(self, event: Union[ReleaseEvent, BuildFailedEvent]) -> str: ...


@dataclass(frozen=True)
class RoutingDecision:
    """Outcome of matching an event against the relay filter."""

    forward: bool
    reason: str
    destination: Optional[ChannelAddress] = None

    @classmethod
    def drop(cls, reason: str) -> "RoutingDecision":
        return cls(forward=False, reason=reason)


def route(event: ReleaseEvent, config: RelayConfig) -> RoutingDecision:
    """Decide whether a release event crosses to the receiver account."""
    if event.package_version_state != PUBLISHED:
        return RoutingDecision.drop(f"package version state is '{event.package_version_state or 'unknown'}'")
    if event.package_format not in config.accepted_formats:
        return RoutingDecision.drop(f"package format '{event.package_format.value}' not accepted")
    if config.domain_owner and event.source_account and event.source_account != config.domain_owner:
        return RoutingDecision.drop(f"domain owner {event.source_account} does not match {config.domain_owner}")

    return RoutingDecision(
        forward=True,
        reason="matched",
        destination=ChannelAddress(account=config.receiver_account, region=config.region),
    )


def route_build_failure(event: BuildFailedEvent, config: RelayConfig) -> RoutingDecision:
    """Decide whether a build failure is reported back to the sender."""
    if event.status != BUILD_FAILED:
        return RoutingDecision.drop(f"build status is '{event.status}'")
    if event.account != config.receiver_account:
        return RoutingDecision.drop(f"build belongs to account {event.account}")

    return RoutingDecision(
        forward=True,
        reason="matched",
        destination=ChannelAddress(account=config.sender_account, region=config.region),
    )


class _Relay:
    def __init__(self, config: RelayConfig, channel_factory: Callable[[ChannelAddress], Publisher]):
        self.config = config
        self.channel_factory = channel_factory
        self._channels: dict[ChannelAddress, Publisher] = {}

    def _channel(self, address: ChannelAddress) -> Publisher:
        if address not in self._channels:
            self._channels[address] = self.channel_factory(address)
        return self._channels[address]

    def _forward(self, event_id: str, event, decision: RoutingDecision) -> RoutingDecision:
        log_relay_decision(event_id, decision.forward, decision.reason,
                           str(decision.destination) if decision.destination else None)
        if decision.forward:
            self._channel(decision.destination).publish(event)
        return decision


class ReleaseRelay(_Relay):
    """Forwards matching release events to the receiver's channel."""

    def relay(self, event: ReleaseEvent) -> RoutingDecision:
        return self._forward(event.release_key, event, route(event, self.config))


class BuildFailureRelay(_Relay):
    """Forwards the receiver's failed builds back to the sender's channel."""

    def relay(self, event: BuildFailedEvent) -> RoutingDecision:
        return self._forward(f"build {event.build_id}", event, route_build_failure(event, self.config))
