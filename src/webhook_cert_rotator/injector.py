"""Trust-bundle injection into webhook configurations and CRD conversion settings."""

from __future__ import annotations

import base64
from typing import Any

from .models import WebhookType
from .utils.errors import InjectionError


def encode_ca_bundle(ca_pem: bytes) -> str:
    """Return the caBundle representation of a PEM encoded CA certificate."""
    return base64.b64encode(ca_pem).decode("ascii")


def inject_ca_bundle(resource: dict[str, Any], ca_pem: bytes, webhook_type: WebhookType) -> dict[str, Any]:
    """Point every trust-bundle field of ``resource`` at ``ca_pem``.

    Only the caBundle fields are written; selectors, rules, timeouts and
    every other field are left as they are. The resource is patched in
    place and returned.

    Raises:
        InjectionError: If the resource has no field to inject into
    """
    if webhook_type in (WebhookType.VALIDATING, WebhookType.MUTATING):
        return _inject_into_webhooks(resource, ca_pem)
    if webhook_type is WebhookType.CRD_CONVERSION:
        return _inject_into_conversion(resource, ca_pem)
    raise InjectionError(f"incorrect webhook type {webhook_type!r}")


def _inject_into_webhooks(resource: dict[str, Any], ca_pem: bytes) -> dict[str, Any]:
    kind = resource.get("kind", "webhook configuration")
    webhooks = resource.get("webhooks")
    if webhooks is None:
        raise InjectionError(f"`webhooks` field not found in {kind}")
    if not isinstance(webhooks, list):
        raise InjectionError(f"`webhooks` field in {kind} is not a list")

    bundle = encode_ca_bundle(ca_pem)
    for i, hook in enumerate(webhooks):
        if not isinstance(hook, dict):
            raise InjectionError(f"webhook {i} is not well-formed")
        client_config = hook.setdefault("clientConfig", {})
        if not isinstance(client_config, dict):
            raise InjectionError(f"webhook {i} has a malformed clientConfig")
        client_config["caBundle"] = bundle
    return resource


def _inject_into_conversion(resource: dict[str, Any], ca_pem: bytes) -> dict[str, Any]:
    conversion = (resource.get("spec") or {}).get("conversion")
    if not isinstance(conversion, dict):
        raise InjectionError("`conversion` field not found in CustomResourceDefinition")

    webhook = conversion.get("webhook")
    if isinstance(webhook, dict) and isinstance(webhook.get("clientConfig"), dict):
        client_config = webhook["clientConfig"]
    elif isinstance(conversion.get("webhookClientConfig"), dict):
        # apiextensions.k8s.io/v1beta1 layout
        client_config = conversion["webhookClientConfig"]
    else:
        raise InjectionError("`webhook.clientConfig` field not found in CustomResourceDefinition")

    client_config["caBundle"] = encode_ca_bundle(ca_pem)
    return resource
