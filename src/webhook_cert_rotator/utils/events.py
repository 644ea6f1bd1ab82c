"""Utilities for emitting Kubernetes events."""

from __future__ import annotations

from typing import Any

import kopf

from ..constants import (
    EVENT_REASON_CA_INJECTED,
    EVENT_REASON_CA_INJECTION_FAILED,
    EVENT_REASON_SECRET_MALFORMED,
)


def emit_event(
    body: dict[str, Any],
    reason: str,
    message: str,
    type_: str = "Normal",
) -> None:
    """Emit a Kubernetes event.

    Args:
        body: Resource body (apiVersion, kind and metadata are required)
        reason: Event reason
        message: Event message
        type_: Event type (Normal or Warning)
    """
    kopf.event(
        body,
        reason=reason,
        message=message,
        type=type_,
    )


def emit_ca_injected(body: dict[str, Any], count: int) -> None:
    """Emit CA injected event."""
    emit_event(body, EVENT_REASON_CA_INJECTED, f"CA certificate injected into {count} webhook resources")


def emit_ca_injection_failed(body: dict[str, Any], message: str) -> None:
    """Emit CA injection failed event."""
    emit_event(body, EVENT_REASON_CA_INJECTION_FAILED, message, type_="Warning")


def emit_secret_malformed(body: dict[str, Any], message: str) -> None:
    """Emit secret malformed event."""
    emit_event(body, EVENT_REASON_SECRET_MALFORMED, message, type_="Warning")
