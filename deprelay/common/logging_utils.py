"""Logging utilities for consistent logging across modules."""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def _log_path(log_dir: Optional[str] = None) -> Path:
    log_path = Path(log_dir or os.getenv("DEPRELAY_LOG_DIR", "logs"))
    log_path.mkdir(parents=True, exist_ok=True)
    return log_path


def setup_logging(log_dir: Optional[str] = None, level: int = logging.INFO) -> None:
    """Setup logging configuration."""
    log_path = _log_path(log_dir)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_path / "deprelay.log"),
            logging.StreamHandler()
        ]
    )


def log_server_message(message: str) -> None:
    """Log server-related messages."""
    logging.info(f"[SERVER] {message}")


def log_stage_transition(release_key: str, previous: Optional[str], current: str, detail: str = "") -> None:
    """Log one worker state change so a release can be audited end to end."""
    suffix = f" ({detail})" if detail else ""
    logging.getLogger("deprelay.audit").info(
        f"[WORKER] {release_key}: {previous or 'start'} -> {current}{suffix}"
    )


def log_relay_decision(event_id: str, forwarded: bool, reason: str, destination: Optional[str] = None) -> None:
    """Log whether the relay forwarded or dropped an event."""
    audit = logging.getLogger("deprelay.audit")
    if forwarded:
        audit.info(f"[RELAY] {event_id}: matched, forwarding to {destination}")
    else:
        audit.info(f"[RELAY] {event_id}: dropped ({reason})")


def log_notification(payload: Dict[str, Any], kind: str = "notification") -> None:
    """Write a received notification to a timestamped file."""
    try:
        log_path = _log_path()
        timestamp = datetime.now().strftime("%Y%m%dT%H%M%S%f")
        notification_file = log_path / f"{kind}-{timestamp}.log"

        with open(notification_file, "w", encoding="utf-8") as f:
            f.write(f"Notification received at: {datetime.now().isoformat()}\n")
            f.write(f"Payload:\n{json.dumps(payload, indent=2, default=str)}\n")

        logging.debug(f"Notification logged to: {notification_file}")

    except OSError as e:
        logging.error(f"Failed to log notification: {e}")


def log_error(error_message: str, error_data: str = "") -> None:
    """Log error messages with optional error data."""
    try:
        log_path = _log_path()
        timestamp = datetime.now().strftime("%Y%m%dT%H%M%S%f")
        error_file = log_path / f"error-{timestamp}.log"

        with open(error_file, "w", encoding="utf-8") as f:
            f.write(f"Error occurred at: {datetime.now().isoformat()}\n")
            f.write(f"Error message: {error_message}\n")
            if error_data:
                f.write(f"Error data:\n{error_data}\n")

        logging.error(f"{error_message} (details in {error_file})")

    except OSError as e:
        logging.error(f"Failed to log error: {e}")
