"""Webhook ingestion module.

This module handles:
- Receiving registry publish and build notifications
- Validating webhook signatures
- Normalizing notifications into events
- Relaying matching events to the other account's channel
"""

from .config import IngestConfig
from .server import IngestRuntime, app, create_app

__all__ = [
    "app",
    "create_app",
    "IngestConfig",
    "IngestRuntime",
]
