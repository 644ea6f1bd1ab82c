"""Kubernetes-backed store for the rotator secret and the consumer resources."""

from __future__ import annotations

import base64
import time
from typing import Any, Callable

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from .constants import FIELD_MANAGER, LABEL_MANAGED_BY
from .metrics import RotatorMetrics
from .models import SecretRecord, WebhookInfo
from .utils.errors import NotFoundError
from .utils.rate_limit import is_rate_limit_error, rate_limit_k8s


def _decode_secret_data(data: dict[str, Any] | None) -> dict[str, bytes]:
    result: dict[str, bytes] = {}
    for key, value in (data or {}).items():
        if isinstance(value, bytes):
            result[key] = value
        else:
            result[key] = base64.b64decode(value)
    return result


def _encode_secret_data(data: dict[str, bytes]) -> dict[str, str]:
    return {k: base64.b64encode(v).decode("utf-8") for k, v in data.items()}


class KubernetesObjectStore:
    """Get/create/update primitives used by the rotator and the reconciler.

    A missing object is reported as ``NotFoundError``; every other API
    failure propagates as ``ApiException`` so callers can retry.
    """

    def __init__(
        self,
        core_api: client.CoreV1Api,
        custom_api: client.CustomObjectsApi,
        metrics: RotatorMetrics,
    ):
        self.core_api = core_api
        self.custom_api = custom_api
        self.metrics = metrics

    def _call(self, operation: str, func: Callable[..., Any], **kwargs: Any) -> Any:
        start_time = time.time()
        try:
            result = rate_limit_k8s(func)(**kwargs)
            self.metrics.api_call_total.labels(operation=operation, result="success").inc()
            return result
        except ApiException as e:
            if e.status == 404:
                self.metrics.api_call_total.labels(operation=operation, result="not_found").inc()
                raise NotFoundError(f"{operation}: {kwargs.get('name')} not found") from e
            if is_rate_limit_error(e):
                self.metrics.api_call_total.labels(operation=operation, result="rate_limited").inc()
            else:
                self.metrics.api_call_total.labels(operation=operation, result="error").inc()
            raise
        finally:
            duration = time.time() - start_time
            self.metrics.api_call_duration_seconds.labels(operation=operation).observe(duration)

    def get_secret(self, namespace: str, name: str) -> SecretRecord:
        """Read a secret and decode its data.

        Raises:
            NotFoundError: If the secret does not exist
        """
        secret = self._call("get_secret", self.core_api.read_namespaced_secret, name=name, namespace=namespace)
        metadata = secret.metadata
        return SecretRecord(
            namespace=namespace,
            name=name,
            data=_decode_secret_data(secret.data),
            resource_version=getattr(metadata, "resource_version", None),
            deletion_timestamp=getattr(metadata, "deletion_timestamp", None),
        )

    def create_secret(self, record: SecretRecord) -> None:
        """Create the secret described by ``record``."""
        secret = client.V1Secret(
            metadata=client.V1ObjectMeta(
                name=record.name,
                namespace=record.namespace,
                labels={LABEL_MANAGED_BY: FIELD_MANAGER},
            ),
            type="Opaque",
            data=_encode_secret_data(record.data),
        )
        self._call(
            "create_secret",
            self.core_api.create_namespaced_secret,
            namespace=record.namespace,
            body=secret,
            field_manager=FIELD_MANAGER,
        )

    def update_secret(self, record: SecretRecord) -> None:
        """Write all entries of ``record`` in a single patch call."""
        body: dict[str, Any] = {"data": _encode_secret_data(record.data)}
        if record.resource_version:
            body["metadata"] = {"resourceVersion": record.resource_version}
        self._call(
            "update_secret",
            self.core_api.patch_namespaced_secret,
            name=record.name,
            namespace=record.namespace,
            body=body,
            field_manager=FIELD_MANAGER,
        )

    def get_resource(self, webhook: WebhookInfo) -> dict[str, Any]:
        """Read a cluster-scoped consumer resource as a plain dict.

        Raises:
            NotFoundError: If the resource does not exist
        """
        return self._call(
            f"get_{webhook.type.value}",
            self.custom_api.get_cluster_custom_object,
            group=webhook.group,
            version=webhook.version,
            plural=webhook.plural,
            name=webhook.name,
        )

    def update_resource(self, webhook: WebhookInfo, body: dict[str, Any]) -> dict[str, Any]:
        """Replace a consumer resource; the body's resourceVersion guards the write."""
        return self._call(
            f"update_{webhook.type.value}",
            self.custom_api.replace_cluster_custom_object,
            group=webhook.group,
            version=webhook.version,
            plural=webhook.plural,
            name=webhook.name,
            body=body,
        )


def build_object_store(metrics: RotatorMetrics) -> KubernetesObjectStore:
    """Load cluster credentials and build the object store.

    Uses the in-cluster service account when available and falls back to
    the local kubeconfig.
    """
    from kubernetes import config

    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()

    return KubernetesObjectStore(client.CoreV1Api(), client.CustomObjectsApi(), metrics)
