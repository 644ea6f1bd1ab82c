"""Utility functions for the Webhook Certificate Rotator."""

from .backoff import POLL_BACKOFF, REFRESH_BACKOFF, Backoff, BackoffExhausted, exponential_backoff
from .errors import sanitize_error_message, sanitize_exception
from .events import emit_ca_injected, emit_ca_injection_failed, emit_event, emit_secret_malformed
from .rate_limit import is_rate_limit_error, rate_limit_k8s

__all__ = [
    "Backoff",
    "BackoffExhausted",
    "POLL_BACKOFF",
    "REFRESH_BACKOFF",
    "exponential_backoff",
    "sanitize_error_message",
    "sanitize_exception",
    "emit_event",
    "emit_ca_injected",
    "emit_ca_injection_failed",
    "emit_secret_malformed",
    "rate_limit_k8s",
    "is_rate_limit_error",
]
