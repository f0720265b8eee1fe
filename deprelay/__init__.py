"""Deprelay - propagate package releases across accounts as pull requests.

This package provides a modular architecture for release propagation:

- deprelay.ingest: Webhook reception, normalization and relaying
- deprelay.worker: Channel consumption and pull-request executions
- deprelay.models: Shared data models and channel infrastructure
- deprelay.common: Shared utilities and common functionality
"""

__version__ = "1.0.0"

# Import main modules for easy access
from . import common
from . import models
from . import worker

__all__ = [
    "common",
    "models",
    "worker",
]
