"""Reconciler keeping the CA bundle of every consumer resource in sync with the secret."""

from __future__ import annotations

import copy
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Iterable

from . import pki
from .injector import inject_ca_bundle
from .logging import log_rotation_event
from .metrics import RotatorMetrics
from .models import InjectionResult, WebhookInfo
from .store import KubernetesObjectStore
from .tracing import trace_span
from .utils.errors import CAInjectionError, MalformedSecretError, NotFoundError, sanitize_exception

COMPONENT = "reconciler"

# Reconcile outcomes
OUTCOME_IGNORED = "ignored"
OUTCOME_SECRET_ABSENT = "secret_absent"
OUTCOME_SECRET_MALFORMED = "secret_malformed"
OUTCOME_INJECTED = "injected"

# Injection statuses
STATUS_UPDATED = "updated"
STATUS_UNCHANGED = "unchanged"
STATUS_NOT_FOUND = "not_found"
STATUS_DELETING = "deleting"
STATUS_FAILED = "failed"


@dataclass
class ReconcileReport:
    """What a reconciliation pass did."""

    outcome: str
    results: list[InjectionResult] = field(default_factory=list)

    @property
    def updated(self) -> int:
        return sum(1 for r in self.results if r.status == STATUS_UPDATED)


class WebhookReconciler:
    """Re-applies the stored CA certificate to every declared consumer resource."""

    def __init__(
        self,
        store: KubernetesObjectStore,
        secret_namespace: str,
        secret_name: str,
        webhooks: Iterable[WebhookInfo],
        ca_injected: threading.Event,
        metrics: RotatorMetrics,
    ):
        self.store = store
        self.secret_namespace = secret_namespace
        self.secret_name = secret_name
        self.webhooks = tuple(webhooks)
        self.ca_injected = ca_injected
        self.metrics = metrics
        self.logger = logging.getLogger(__name__)
        # triggers for the secret are handled one at a time
        self._lock = threading.Lock()

    def owns(self, namespace: str | None, name: str | None) -> bool:
        return namespace == self.secret_namespace and name == self.secret_name

    def reconcile(self, namespace: str | None, name: str | None) -> ReconcileReport:
        """Make sure every consumer carries the CA stored in the secret.

        Args:
            namespace: Namespace of the triggering key
            name: Name of the triggering key

        Returns:
            Report with one of the ``OUTCOME_*`` constants and per-consumer results

        Raises:
            CAInjectionError: If any consumer could not be updated
            Exception: Errors reading the secret propagate so the trigger is retried
        """
        if not self.owns(namespace, name):
            return ReconcileReport(OUTCOME_IGNORED)

        with self._lock, trace_span("reconcile", self.secret_namespace, self.secret_name,
                                    webhooks=len(self.webhooks)) as span:
            start_time = time.time()
            try:
                report = self._reconcile()
                self.metrics.reconcile_total.labels(result=report.outcome).inc()
                if span is not None:
                    span.set_attribute("cert_rotator.outcome", report.outcome)
                return report
            except Exception:
                self.metrics.reconcile_total.labels(result="error").inc()
                raise
            finally:
                self.metrics.reconcile_duration_seconds.observe(time.time() - start_time)

    def _reconcile(self) -> ReconcileReport:
        try:
            secret = self.store.get_secret(self.secret_namespace, self.secret_name)
        except NotFoundError:
            # nothing to propagate until the rotator creates the secret
            return ReconcileReport(OUTCOME_SECRET_ABSENT)

        if secret.deletion_timestamp:
            return ReconcileReport(OUTCOME_SECRET_ABSENT)

        try:
            artifacts = pki.parse_artifacts_from_storage(secret.data)
        except MalformedSecretError as e:
            log_rotation_event(
                self.logger, COMPONENT, "error", "SecretMalformed",
                "secret is not well-formed, cannot update webhook configurations",
                level=logging.ERROR, error=sanitize_exception(e),
            )
            return ReconcileReport(OUTCOME_SECRET_MALFORMED)

        results = self.ensure_certs(artifacts.cert_pem)
        failures = [r for r in results if r.failed]
        if failures:
            last = failures[-1]
            raise CAInjectionError(
                f"could not inject CA into {len(failures)} of {len(results)} webhook resources, "
                f"last error on {last.webhook.kind} {last.webhook.name}: {sanitize_exception(last.error)}",
                last_error=last.error,
                results=results,
            )

        self.ca_injected.set()
        return ReconcileReport(OUTCOME_INJECTED, results)

    def ensure_certs(self, ca_pem: bytes) -> list[InjectionResult]:
        """Inject ``ca_pem`` into every consumer, continuing past failures.

        Every failure is logged; the caller decides what to do with the
        returned per-consumer results.
        """
        results = []
        for webhook in self.webhooks:
            result = self._ensure_cert(webhook, ca_pem)
            self.metrics.injection_total.labels(kind=webhook.kind, result=result.status).inc()
            results.append(result)
        return results

    def _ensure_cert(self, webhook: WebhookInfo, ca_pem: bytes) -> InjectionResult:
        fields = {"name": webhook.name, "kind": webhook.kind}
        try:
            resource = self.store.get_resource(webhook)
        except NotFoundError:
            self.logger.error(f"{webhook.kind} {webhook.name} not found. Unable to update certificate.")
            return InjectionResult(webhook, STATUS_NOT_FOUND)
        except Exception as e:
            log_rotation_event(
                self.logger, COMPONENT, "error", "GetFailed",
                "error getting webhook for certificate update",
                level=logging.ERROR, error=sanitize_exception(e), **fields,
            )
            return InjectionResult(webhook, STATUS_FAILED, e)

        if (resource.get("metadata") or {}).get("deletionTimestamp"):
            self.logger.info(f"{webhook.kind} {webhook.name} is being deleted. Unable to update certificate.")
            return InjectionResult(webhook, STATUS_DELETING)

        try:
            updated = inject_ca_bundle(copy.deepcopy(resource), ca_pem, webhook.type)
            if updated == resource:
                return InjectionResult(webhook, STATUS_UNCHANGED)
            self.logger.info(f"ensuring CA cert on {webhook.kind} {webhook.name}")
            self.store.update_resource(webhook, updated)
        except Exception as e:
            log_rotation_event(
                self.logger, COMPONENT, "error", "InjectionFailed",
                "error updating webhook with certificate",
                level=logging.ERROR, error=sanitize_exception(e), **fields,
            )
            return InjectionResult(webhook, STATUS_FAILED, e)

        return InjectionResult(webhook, STATUS_UPDATED)
