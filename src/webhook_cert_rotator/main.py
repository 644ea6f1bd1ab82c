"""Main entry point for the Webhook Certificate Rotator."""

from __future__ import annotations

import logging
import os
import signal
import threading
from typing import Any, Callable

import kopf
from prometheus_client import CollectorRegistry

from . import handlers  # noqa: F401
from . import health
from . import logging as structured_logging
from .config import RotatorConfig
from .handlers.webhooks import configure_handlers
from .metrics import RotatorMetrics
from .reconciler import WebhookReconciler
from .rotator import CertRotator
from .store import build_object_store
from .tracing import initialize_tracing, shutdown_tracing
from .utils.errors import sanitize_exception

logger = logging.getLogger(__name__)

# Running rotator, set on startup
_rotator: CertRotator | None = None


def request_shutdown() -> None:
    """Ask the process to terminate so its supervisor restarts it."""
    os.kill(os.getpid(), signal.SIGTERM)


def restart_after_rotation(shutdown: Callable[[], None] | None = None) -> Callable[[], None]:
    """Hook run after the secret was rewritten.

    Certificates mounted from the secret are only picked up by the webhook
    server after a restart.
    """

    def hook() -> None:
        logger.info("secret updated, restarting to pick up the new certificates")
        (shutdown or request_shutdown)()

    return hook


def run_rotator(rotator: CertRotator, shutdown: Callable[[], None] | None = None) -> None:
    """Run the rotation loop; any terminal error shuts the process down."""
    try:
        rotator.run()
    except Exception as e:
        logger.error(f"cert rotator stopped: {sanitize_exception(e)}")
        (shutdown or request_shutdown)()


def build_rotator(config: RotatorConfig, metrics: RotatorMetrics) -> tuple[CertRotator, WebhookReconciler]:
    """Wire the rotator and the reconciler around one object store."""
    store = build_object_store(metrics)
    rotator = CertRotator(
        store,
        config,
        metrics,
        on_rotation_complete=restart_after_rotation() if config.restart_on_secret_refresh else None,
    )
    reconciler = WebhookReconciler(
        store,
        config.secret_namespace,
        config.secret_name,
        config.webhooks,
        ca_injected=rotator.ca_injected,
        metrics=metrics,
    )
    return rotator, reconciler


@kopf.on.startup(errors=kopf.ErrorsMode.PERMANENT)
def configure(settings: kopf.OperatorSettings, **_: Any) -> None:
    """Configure the operator and start the certificate rotator.

    Any failure here stops the operator: without a valid certificate the
    webhook server must not come up.
    """
    global _rotator

    # Set up structured JSON logging
    structured_logging.setup_structured_logging()
    initialize_tracing()

    settings.posting.level = 0
    settings.networking.request_timeout = 30.0
    settings.execution.max_workers = 4

    try:
        config = RotatorConfig.from_env()
        # Fresh registry per startup, the health server exposes it on /metrics
        metrics = RotatorMetrics(CollectorRegistry())
        rotator, reconciler = build_rotator(config, metrics)
        configure_handlers(reconciler)

        # The webhook server must not start serving before a valid certificate exists
        rotator.bootstrap()
    except Exception as e:
        configure_handlers(None)
        raise kopf.PermanentError(f"startup failed: {sanitize_exception(e)}") from e

    # Start metrics HTTP server with health check endpoints
    health.start_health_server(config.metrics_port, rotator.is_ready, metrics.registry)

    thread = threading.Thread(target=run_rotator, args=(rotator,), name="cert-rotator", daemon=True)
    thread.start()
    _rotator = rotator


@kopf.on.cleanup()
def shutdown(**_: Any) -> None:
    """Stop the certificate rotator."""
    global _rotator

    if _rotator is not None:
        _rotator.stop()
        _rotator.join(timeout=5.0)
        _rotator = None
    configure_handlers(None)
    shutdown_tracing()
