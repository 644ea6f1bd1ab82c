"""Watch handlers that keep consumer resources trusting the current CA."""

from __future__ import annotations

from typing import Any

import kopf

from ..config import reconcile_interval_from_env
from ..constants import ADMISSION_GROUP, ADMISSION_VERSION, APIEXTENSIONS_GROUP, APIEXTENSIONS_VERSION
from ..models import WebhookType
from ..reconciler import (
    OUTCOME_IGNORED,
    OUTCOME_SECRET_MALFORMED,
    ReconcileReport,
    WebhookReconciler,
)
from ..utils.errors import CAInjectionError, sanitize_exception
from ..utils.events import emit_ca_injected, emit_ca_injection_failed, emit_secret_malformed
from .base import BaseHandler

RECONCILE_INTERVAL_SECONDS = reconcile_interval_from_env()


def _secret_body(namespace: str, name: str) -> dict[str, Any]:
    """Minimal body kopf can attach events to."""
    return {"apiVersion": "v1", "kind": "Secret", "metadata": {"namespace": namespace, "name": name}}


class WebhookTriggerHandler(BaseHandler):
    """Maps secret and consumer watch events onto a reconciliation of the secret."""

    def __init__(self):
        """Initialize trigger handler."""
        super().__init__("Secret")
        self.reconciler: WebhookReconciler | None = None

    def configure(self, reconciler: WebhookReconciler | None) -> None:
        self.reconciler = reconciler

    def watches_secret(self, namespace: str | None, name: str | None) -> bool:
        return self.reconciler is not None and self.reconciler.owns(namespace, name)

    def watches_consumer(self, webhook_type: WebhookType, namespace: str | None, name: str | None) -> bool:
        """Whether an event on a consumer resource should trigger a reconciliation.

        Consumers are cluster-scoped, so namespaced objects never match.
        """
        if self.reconciler is None or namespace:
            return False
        return any(w.type is webhook_type and w.name == name for w in self.reconciler.webhooks)

    def trigger(self, meta: dict[str, Any], source: str) -> ReconcileReport:
        """Reconcile the secret on behalf of the object described by ``meta``.

        Raises:
            CAInjectionError: If any consumer could not be updated
        """
        reconciler = self.reconciler
        if reconciler is None:
            return ReconcileReport(OUTCOME_IGNORED)

        secret_body = _secret_body(reconciler.secret_namespace, reconciler.secret_name)
        try:
            report = reconciler.reconcile(reconciler.secret_namespace, reconciler.secret_name)
        except CAInjectionError as e:
            sanitized_error = sanitize_exception(e)
            self.log_error(meta, "CA injection failed", error=e, event="injection", reason="CAInjectionFailed",
                           source=source)
            emit_ca_injection_failed(secret_body, sanitized_error)
            raise

        if report.outcome == OUTCOME_SECRET_MALFORMED:
            emit_secret_malformed(secret_body, "secret does not hold a valid certificate and key pair")
        elif report.updated:
            self.log_info(meta, f"CA injected into {report.updated} webhook resources", event="injection",
                          reason="CAInjected", source=source)
            emit_ca_injected(secret_body, report.updated)
        return report

    def handle_event(self, meta: dict[str, Any], source: str) -> None:
        """Run a reconciliation for a watch event.

        Watch events are not retried, so failures are only logged here; the
        periodic timer on the secret retries them.
        """
        try:
            self.trigger(meta, source)
        except CAInjectionError:
            # logged and reported as an event by trigger()
            return
        except Exception as e:
            self.log_error(meta, "reconciliation failed", error=e, reason="ReconcileFailed", source=source)

    def handle_timer(self, meta: dict[str, Any]) -> None:
        """Run a periodic reconciliation, asking kopf to retry on failure."""
        try:
            self.trigger(meta, "timer")
        except Exception as e:
            raise kopf.TemporaryError(f"reconciliation failed: {sanitize_exception(e)}", delay=30) from e


# Global handler instance
_handler = WebhookTriggerHandler()


def configure_handlers(reconciler: WebhookReconciler | None) -> None:
    """Point the watch handlers at the reconciler built on startup."""
    _handler.configure(reconciler)


def is_rotator_secret(namespace: str | None, name: str | None, **_: Any) -> bool:
    return _handler.watches_secret(namespace, name)


def is_validating_consumer(namespace: str | None, name: str | None, **_: Any) -> bool:
    return _handler.watches_consumer(WebhookType.VALIDATING, namespace, name)


def is_mutating_consumer(namespace: str | None, name: str | None, **_: Any) -> bool:
    return _handler.watches_consumer(WebhookType.MUTATING, namespace, name)


def is_crd_consumer(namespace: str | None, name: str | None, **_: Any) -> bool:
    return _handler.watches_consumer(WebhookType.CRD_CONVERSION, namespace, name)


@kopf.on.event("v1", "secrets", when=is_rotator_secret)
def handle_secret_event(meta: dict[str, Any], **kwargs: Any) -> None:
    """Reconcile consumers whenever the secret changes."""
    _handler.handle_event(meta, "secret")


@kopf.timer("v1", "secrets", interval=RECONCILE_INTERVAL_SECONDS, when=is_rotator_secret)  # Default 5 minutes
def reconcile_secret_periodically(meta: dict[str, Any], **kwargs: Any) -> None:
    """Re-apply the CA periodically so drift and failed passes are repaired."""
    _handler.handle_timer(meta)


@kopf.on.event(f"{ADMISSION_GROUP}/{ADMISSION_VERSION}", "validatingwebhookconfigurations",
               when=is_validating_consumer)
def handle_validating_webhook_event(meta: dict[str, Any], **kwargs: Any) -> None:
    """Reconcile when a watched validating webhook configuration changes."""
    _handler.handle_event(meta, "ValidatingWebhookConfiguration")


@kopf.on.event(f"{ADMISSION_GROUP}/{ADMISSION_VERSION}", "mutatingwebhookconfigurations",
               when=is_mutating_consumer)
def handle_mutating_webhook_event(meta: dict[str, Any], **kwargs: Any) -> None:
    """Reconcile when a watched mutating webhook configuration changes."""
    _handler.handle_event(meta, "MutatingWebhookConfiguration")


@kopf.on.event(f"{APIEXTENSIONS_GROUP}/{APIEXTENSIONS_VERSION}", "customresourcedefinitions",
               when=is_crd_consumer)
def handle_crd_event(meta: dict[str, Any], **kwargs: Any) -> None:
    """Reconcile when a watched custom resource definition changes."""
    _handler.handle_event(meta, "CustomResourceDefinition")
