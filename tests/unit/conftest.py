"""Shared fixtures for the unit tests."""

from __future__ import annotations

import copy
import threading
from datetime import datetime, timezone
from typing import Any

import pytest
from prometheus_client import CollectorRegistry

from webhook_cert_rotator import pki
from webhook_cert_rotator.config import RotatorConfig
from webhook_cert_rotator.metrics import RotatorMetrics
from webhook_cert_rotator.models import SecretRecord, WebhookInfo, WebhookType
from webhook_cert_rotator.utils.backoff import Backoff
from webhook_cert_rotator.utils.errors import NotFoundError

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)
DNS_NAME = "webhook-service.system.svc"
CA_NAME = "test-ca"

VALIDATING = WebhookInfo("policy-validating", WebhookType.VALIDATING)
MUTATING = WebhookInfo("policy-mutating", WebhookType.MUTATING)
CRD = WebhookInfo("configs.example.io", WebhookType.CRD_CONVERSION)

NO_WAIT = Backoff(duration=0.0, jitter=0.0, steps=3)


def admission_resource(webhook: WebhookInfo, hooks: int = 2) -> dict[str, Any]:
    return {
        "apiVersion": f"{webhook.group}/{webhook.version}",
        "kind": webhook.kind,
        "metadata": {"name": webhook.name, "resourceVersion": "1"},
        "webhooks": [
            {
                "name": f"hook-{i}.example.io",
                "clientConfig": {"service": {"name": "webhook-service", "namespace": "system"}},
                "rules": [{"operations": ["CREATE"]}],
                "timeoutSeconds": 5,
            }
            for i in range(hooks)
        ],
    }


def crd_resource(webhook: WebhookInfo) -> dict[str, Any]:
    return {
        "apiVersion": f"{webhook.group}/{webhook.version}",
        "kind": webhook.kind,
        "metadata": {"name": webhook.name, "resourceVersion": "1"},
        "spec": {
            "group": "example.io",
            "conversion": {
                "strategy": "Webhook",
                "webhook": {
                    "clientConfig": {"service": {"name": "webhook-service", "namespace": "system"}},
                    "conversionReviewVersions": ["v1"],
                },
            },
        },
    }


class FakeObjectStore:
    """In-memory stand-in for KubernetesObjectStore."""

    def __init__(self):
        self.secrets: dict[tuple[str, str], SecretRecord] = {}
        self.resources: dict[WebhookInfo, dict[str, Any]] = {}
        self.secret_writes = 0
        self.resource_writes: list[WebhookInfo] = []
        # operation name -> number of calls that should still fail
        self.failures: dict[str, int] = {}
        self.failing_resources: set[WebhookInfo] = set()
        self._lock = threading.Lock()

    def _maybe_fail(self, operation: str) -> None:
        remaining = self.failures.get(operation, 0)
        if remaining:
            self.failures[operation] = remaining - 1
            raise RuntimeError(f"{operation} failed")

    def put_secret(self, namespace: str, name: str, data: dict[str, bytes], **kwargs: Any) -> None:
        self.secrets[(namespace, name)] = SecretRecord(namespace, name, dict(data), **kwargs)

    def get_secret(self, namespace: str, name: str) -> SecretRecord:
        with self._lock:
            self._maybe_fail("get_secret")
            record = self.secrets.get((namespace, name))
            if record is None:
                raise NotFoundError(f"secret {namespace}/{name} not found")
            return copy.deepcopy(record)

    def create_secret(self, record: SecretRecord) -> None:
        with self._lock:
            self._maybe_fail("create_secret")
            self.secrets[(record.namespace, record.name)] = copy.deepcopy(record)
            self.secret_writes += 1

    def update_secret(self, record: SecretRecord) -> None:
        with self._lock:
            self._maybe_fail("update_secret")
            self.secrets[(record.namespace, record.name)] = copy.deepcopy(record)
            self.secret_writes += 1

    def get_resource(self, webhook: WebhookInfo) -> dict[str, Any]:
        with self._lock:
            if webhook in self.failing_resources:
                raise RuntimeError(f"get {webhook.name} failed")
            resource = self.resources.get(webhook)
            if resource is None:
                raise NotFoundError(f"{webhook.kind} {webhook.name} not found")
            return copy.deepcopy(resource)

    def update_resource(self, webhook: WebhookInfo, body: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self._maybe_fail("update_resource")
            self.resources[webhook] = copy.deepcopy(body)
            self.resource_writes.append(webhook)
            return body


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def metrics() -> RotatorMetrics:
    return RotatorMetrics(registry=CollectorRegistry())


@pytest.fixture
def config(tmp_path) -> RotatorConfig:
    return RotatorConfig(
        secret_namespace="system",
        secret_name="webhook-server-cert",
        dns_name=DNS_NAME,
        cert_dir=str(tmp_path),
        ca_name=CA_NAME,
        ca_organization="test-org",
        webhooks=(VALIDATING, MUTATING, CRD),
        check_interval_seconds=3600.0,
    )


@pytest.fixture(scope="session")
def ca() -> pki.KeyPairArtifacts:
    return pki.generate_ca(CA_NAME, "test-org", now=NOW)


@pytest.fixture(scope="session")
def leaf(ca) -> tuple[bytes, bytes]:
    return pki.generate_leaf(DNS_NAME, ca, now=NOW)
