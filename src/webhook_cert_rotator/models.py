"""Models for certificate rotation and trust-bundle distribution."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from .constants import (
    ADMISSION_GROUP,
    ADMISSION_VERSION,
    APIEXTENSIONS_GROUP,
    APIEXTENSIONS_VERSION,
)


class WebhookType(enum.Enum):
    """Kind of resource that carries a trust bundle."""

    VALIDATING = "validating"
    MUTATING = "mutating"
    CRD_CONVERSION = "crd"


# group, version, plural, kind
_RESOURCE_COORDINATES: dict[WebhookType, tuple[str, str, str, str]] = {
    WebhookType.VALIDATING: (
        ADMISSION_GROUP,
        ADMISSION_VERSION,
        "validatingwebhookconfigurations",
        "ValidatingWebhookConfiguration",
    ),
    WebhookType.MUTATING: (
        ADMISSION_GROUP,
        ADMISSION_VERSION,
        "mutatingwebhookconfigurations",
        "MutatingWebhookConfiguration",
    ),
    WebhookType.CRD_CONVERSION: (
        APIEXTENSIONS_GROUP,
        APIEXTENSIONS_VERSION,
        "customresourcedefinitions",
        "CustomResourceDefinition",
    ),
}


@dataclass(frozen=True)
class WebhookInfo:
    """A consumer resource that must trust the webhook server.

    ``name`` is the webhook configuration name for admission webhooks, or
    the CRD name for conversion webhooks.
    """

    name: str
    type: WebhookType

    @property
    def group(self) -> str:
        return _RESOURCE_COORDINATES[self.type][0]

    @property
    def version(self) -> str:
        return _RESOURCE_COORDINATES[self.type][1]

    @property
    def plural(self) -> str:
        return _RESOURCE_COORDINATES[self.type][2]

    @property
    def kind(self) -> str:
        return _RESOURCE_COORDINATES[self.type][3]


@dataclass
class SecretRecord:
    """Decoded view of the Kubernetes secret holding the key pairs."""

    namespace: str
    name: str
    data: dict[str, bytes] = field(default_factory=dict)
    resource_version: str | None = None
    deletion_timestamp: Any = None


@dataclass
class KeyPairArtifacts:
    """A parsed certificate and RSA key together with their PEM encodings."""

    cert: x509.Certificate
    key: RSAPrivateKey
    cert_pem: bytes
    key_pem: bytes


@dataclass
class InjectionResult:
    """Outcome of injecting the trust bundle into one consumer resource."""

    webhook: WebhookInfo
    status: str
    error: Exception | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None
