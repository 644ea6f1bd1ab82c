"""Runtime configuration for the Webhook Certificate Rotator."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

from .constants import ROTATION_CHECK_FREQUENCY
from .models import WebhookInfo, WebhookType
from .utils.errors import ConfigurationError

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class RotatorConfig:
    """Settings the rotator and the reconciler are built from."""

    secret_namespace: str
    secret_name: str
    dns_name: str
    cert_dir: str = "/certs"
    ca_name: str = "webhook-ca"
    ca_organization: str = "webhook"
    webhooks: tuple[WebhookInfo, ...] = field(default_factory=tuple)
    restart_on_secret_refresh: bool = False
    check_interval_seconds: float = ROTATION_CHECK_FREQUENCY.total_seconds()
    metrics_port: int = 8080

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "RotatorConfig":
        """Build the configuration from environment variables.

        Raises:
            ConfigurationError: If a required variable is missing or a value is invalid
        """
        env = os.environ if environ is None else environ

        dns_name = env.get("CERT_ROTATOR_DNS_NAME", "").strip()
        if not dns_name:
            raise ConfigurationError("CERT_ROTATOR_DNS_NAME is required")

        return cls(
            secret_namespace=secret_namespace_from_env(env),
            secret_name=env.get("CERT_ROTATOR_SECRET_NAME", "webhook-server-cert"),
            dns_name=dns_name,
            cert_dir=env.get("CERT_ROTATOR_CERT_DIR", "/certs"),
            ca_name=env.get("CERT_ROTATOR_CA_NAME", "webhook-ca"),
            ca_organization=env.get("CERT_ROTATOR_CA_ORGANIZATION", "webhook"),
            webhooks=parse_webhooks(env.get("CERT_ROTATOR_WEBHOOKS", "")),
            restart_on_secret_refresh=_parse_bool(
                "CERT_ROTATOR_RESTART_ON_SECRET_REFRESH",
                env.get("CERT_ROTATOR_RESTART_ON_SECRET_REFRESH", "false"),
            ),
            check_interval_seconds=_parse_positive_float(
                "CERT_ROTATOR_CHECK_INTERVAL_SECONDS",
                env.get("CERT_ROTATOR_CHECK_INTERVAL_SECONDS", str(ROTATION_CHECK_FREQUENCY.total_seconds())),
            ),
            metrics_port=int(_parse_positive_float("METRICS_PORT", env.get("METRICS_PORT", "8080"))),
        )


def parse_webhooks(value: str) -> tuple[WebhookInfo, ...]:
    """Parse a comma separated list of ``type:name`` entries.

    ``type`` is one of ``validating``, ``mutating`` or ``crd``.

    Example:
        ``validating:policy-webhook,crd:configs.example.io``
    """
    webhooks: list[WebhookInfo] = []
    for entry in value.split(","):
        entry = entry.strip()
        if not entry:
            continue
        type_name, sep, name = entry.partition(":")
        if not sep or not name.strip():
            raise ConfigurationError(f"webhook entry {entry!r} must be of the form type:name")
        try:
            webhook_type = WebhookType(type_name.strip().lower())
        except ValueError as e:
            allowed = ", ".join(t.value for t in WebhookType)
            raise ConfigurationError(f"unknown webhook type {type_name!r} (expected one of {allowed})") from e
        info = WebhookInfo(name=name.strip(), type=webhook_type)
        if info not in webhooks:
            webhooks.append(info)
    return tuple(webhooks)


def secret_namespace_from_env(environ: Mapping[str, str] | None = None) -> str:
    """Namespace of the certificate secret, which is also the namespace the operator watches."""
    env = os.environ if environ is None else environ
    return env.get("CERT_ROTATOR_SECRET_NAMESPACE") or env.get("POD_NAMESPACE") or "default"


def reconcile_interval_from_env(environ: Mapping[str, str] | None = None) -> float:
    """Seconds between periodic reconciliations of the secret.

    Read at import time because kopf timers are registered when the handler
    module is loaded.

    Raises:
        ConfigurationError: If the value is not a positive number
    """
    env = os.environ if environ is None else environ
    return _parse_positive_float(
        "CERT_ROTATOR_RECONCILE_INTERVAL_SECONDS", env.get("CERT_ROTATOR_RECONCILE_INTERVAL_SECONDS", "300")
    )


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def _parse_positive_float(name: str, value: str) -> float:
    try:
        parsed = float(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from e
    if parsed <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value!r}")
    return parsed
