"""Common utilities and shared functionality."""

from .hmac_utils import (
    compute_hmac_sha256,
    sign_payload,
    verify_hmac_signature,
)

from .logging_utils import (
    setup_logging,
    log_server_message,
    log_stage_transition,
    log_relay_decision,
    log_notification,
    log_error,
)

__all__ = [
    # HMAC utilities
    "compute_hmac_sha256",
    "sign_payload",
    "verify_hmac_signature",
    # Logging utilities
    "setup_logging",
    "log_server_message",
    "log_stage_transition",
    "log_relay_decision",
    "log_notification",
    "log_error",
]
