"""Error types and sanitization utilities to prevent key material leaking into logs."""

from __future__ import annotations

import re
from typing import Any


class CertRotatorError(Exception):
    """Base class for all certificate rotator errors."""


class ConfigurationError(CertRotatorError, ValueError):
    """Raised when the rotator configuration is invalid."""


class KeyGenerationError(CertRotatorError):
    """Raised when an RSA key pair cannot be generated."""


class CertificateCreationError(CertRotatorError):
    """Raised when a certificate cannot be built, signed or encoded."""


class MalformedSecretError(CertRotatorError):
    """Raised when the stored CA entries are missing or cannot be decoded."""


class InjectionError(CertRotatorError):
    """Raised when a consumer resource has no trust-bundle field to patch."""


class NotFoundError(CertRotatorError):
    """Raised by the object store when a record does not exist."""


class RotationError(CertRotatorError):
    """Raised when a certificate refresh did not succeed within its retries."""

    def __init__(self, message: str, last_error: Exception | None = None):
        super().__init__(message)
        self.last_error = last_error


class CAInjectionError(CertRotatorError):
    """Raised when at least one consumer resource could not be updated.

    Only the last error is kept in ``last_error``; ``results`` holds the
    outcome for every consumer that was attempted.
    """

    def __init__(self, message: str, last_error: Exception | None = None, results: list[Any] | None = None):
        super().__init__(message)
        self.last_error = last_error
        self.results = results or []


class CertsNotMountedError(CertRotatorError):
    """Raised when the certificate never appears in the local certificate directory."""


class CAInjectionTimeoutError(CertRotatorError):
    """Raised when the CA was never injected into the consumer resources."""


# PEM armour, including private keys
PEM_BLOCK_PATTERN = re.compile(
    r"-----BEGIN ([A-Z0-9 ]+)-----.*?-----END \1-----",
    flags=re.DOTALL,
)

# Patterns that might expose sensitive information
SENSITIVE_PATTERNS = [
    r"(caBundle)[\"']?[:=\s]+[\"']?[A-Za-z0-9/+=]{64,}",
    r"(tls\.key|ca\.key)[\"']?[:=\s]+[\"']?[A-Za-z0-9/+=]{16,}",
]

# Fields to redact completely
SENSITIVE_FIELDS = {
    "ca.key",
    "tls.key",
    "key_pem",
    "private_key",
    "password",
    "token",
}


def sanitize_error_message(message: str) -> str:
    """Sanitize error message to remove key material.

    Args:
        message: Original error message

    Returns:
        Sanitized error message with PEM blocks and encoded keys redacted
    """
    sanitized = PEM_BLOCK_PATTERN.sub("[REDACTED PEM]", message)

    for pattern in SENSITIVE_PATTERNS:
        sanitized = re.sub(pattern, r"\1: [REDACTED]", sanitized, flags=re.IGNORECASE)

    return sanitized


def sanitize_exception(error: Exception) -> str:
    """Sanitize exception message.

    Args:
        error: Exception object

    Returns:
        Sanitized error message
    """
    return sanitize_error_message(str(error))
