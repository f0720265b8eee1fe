"""Configuration for worker processes."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class WorkerConfig:
    """Process-level settings for a channel consumer."""

    # Which side of the trust boundary this process serves
    role: str = "receiver"

    # Queue settings
    redis_url: str = "redis://localhost:6379"
    batch_size: int = 10
    poll_interval_ms: int = 5000

    # Routing, repository and dispatch settings
    config_path: str = "config.yml"

    # Local executions
    workspace_root: Optional[str] = None
    max_concurrency: int = 4

    # Logging
    log_dir: Optional[str] = None

    @classmethod
    def from_env(cls) -> "WorkerConfig":
        """Create configuration from environment variables."""
        return cls(
            role=os.getenv("DEPRELAY_ROLE", "receiver"),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379"),
            batch_size=int(os.getenv("WORKER_BATCH_SIZE", "10")),
            poll_interval_ms=int(os.getenv("WORKER_POLL_INTERVAL_MS", "5000")),
            config_path=os.getenv("DEPRELAY_CONFIG", "config.yml"),
            workspace_root=os.getenv("WORKER_WORKSPACE_ROOT") or None,
            max_concurrency=int(os.getenv("WORKER_MAX_CONCURRENCY", "4")),
            log_dir=os.getenv("DEPRELAY_LOG_DIR", "logs"),
        )
