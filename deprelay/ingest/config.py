"""Configuration for registry and build webhook ingestion."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class IngestConfig:
    """Configuration for the ingest server."""

    # Webhook settings
    webhook_secret: str
    release_endpoint: str = "/webhook/release"
    build_endpoint: str = "/webhook/build"

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8080

    # Logging
    log_dir: Optional[str] = None

    # Queue settings
    redis_url: str = "redis://localhost:6379"

    # Routing settings
    config_path: str = "config.yml"

    @classmethod
    def from_env(cls) -> "IngestConfig":
        """Create configuration from environment variables."""
        return cls(
            webhook_secret=os.getenv("DEPRELAY_WEBHOOK_SECRET", ""),
            release_endpoint=os.getenv("DEPRELAY_RELEASE_ENDPOINT", "/webhook/release"),
            build_endpoint=os.getenv("DEPRELAY_BUILD_ENDPOINT", "/webhook/build"),
            host=os.getenv("DEPRELAY_INGEST_HOST", "0.0.0.0"),
            port=int(os.getenv("DEPRELAY_INGEST_PORT", "8080")),
            log_dir=os.getenv("DEPRELAY_LOG_DIR", "logs"),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379"),
            config_path=os.getenv("DEPRELAY_CONFIG", "config.yml"),
        )
