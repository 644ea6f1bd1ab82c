"""PEM/PKI codec: CA and server certificate generation, parsing and validation."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Mapping

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .constants import (
    CA_CERT_NAME,
    CA_KEY_NAME,
    CERT_BACKDATE,
    CERT_VALIDITY_DURATION,
    LOOKAHEAD_INTERVAL,
    RSA_KEY_SIZE,
)
from .models import KeyPairArtifacts
from .utils.errors import CertificateCreationError, KeyGenerationError, MalformedSecretError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def lookahead_time(now: datetime | None = None) -> datetime:
    """Return the instant at which stored certificates must still be valid."""
    return (now or _utcnow()) + LOOKAHEAD_INTERVAL


def _generate_key() -> RSAPrivateKey:
    try:
        return rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE)
    except Exception as e:
        raise KeyGenerationError(f"generating key: {e}") from e


def pem_encode(cert: x509.Certificate, key: RSAPrivateKey) -> tuple[bytes, bytes]:
    """Encode a certificate and its RSA key as CERTIFICATE / RSA PRIVATE KEY blocks."""
    try:
        cert_pem = cert.public_bytes(serialization.Encoding.PEM)
        key_pem = key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        )
    except Exception as e:
        raise CertificateCreationError(f"encoding PEM: {e}") from e
    return cert_pem, key_pem


def generate_ca(
    common_name: str,
    organization: str,
    now: datetime | None = None,
    validity: timedelta = CERT_VALIDITY_DURATION,
) -> KeyPairArtifacts:
    """Create the self-signed CA used to sign the server certificate.

    The certificate is backdated by one hour to absorb clock skew between
    the signer and verifiers.

    Args:
        common_name: Subject common name, also used as the DNS SAN
        organization: Subject organization
        now: Issuance instant (defaults to the current time)
        validity: Lifetime counted from ``now``

    Returns:
        CA key pair artifacts

    Raises:
        KeyGenerationError: If the RSA key cannot be generated
        CertificateCreationError: If the certificate cannot be built or encoded
    """
    now = now or _utcnow()
    key = _generate_key()
    name = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
    ])
    try:
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - CERT_BACKDATE)
            .not_valid_after(now + validity)
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=True,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.SubjectAlternativeName([x509.DNSName(common_name)]), critical=False)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
            .sign(key, hashes.SHA256())
        )
    except Exception as e:
        raise CertificateCreationError(f"creating certificate: {e}") from e

    cert_pem, key_pem = pem_encode(cert, key)
    return KeyPairArtifacts(cert=cert, key=key, cert_pem=cert_pem, key_pem=key_pem)


def generate_leaf(
    dns_name: str,
    ca: KeyPairArtifacts,
    now: datetime | None = None,
    validity: timedelta = CERT_VALIDITY_DURATION,
) -> tuple[bytes, bytes]:
    """Create a server certificate for ``dns_name`` signed by ``ca``.

    Returns:
        Tuple of (certificate PEM, private key PEM)
    """
    now = now or _utcnow()
    key = _generate_key()
    try:
        cert = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, dns_name)]))
            .issuer_name(ca.cert.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - CERT_BACKDATE)
            .not_valid_after(now + validity)
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
            .add_extension(x509.SubjectAlternativeName([x509.DNSName(dns_name)]), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(ca.key.public_key()),
                critical=False,
            )
            .sign(ca.key, hashes.SHA256())
        )
    except Exception as e:
        raise CertificateCreationError(f"creating certificate: {e}") from e

    return pem_encode(cert, key)


def parse_artifacts_from_storage(secret_data: Mapping[str, bytes] | None) -> KeyPairArtifacts:
    """Rebuild the CA artifacts from the secret's ``ca.crt`` and ``ca.key`` entries.

    Raises:
        MalformedSecretError: If either entry is missing or cannot be decoded
    """
    data = secret_data or {}
    ca_pem = data.get(CA_CERT_NAME)
    if not ca_pem:
        raise MalformedSecretError(f"cert secret is not well-formed, missing {CA_CERT_NAME}")
    key_pem = data.get(CA_KEY_NAME)
    if not key_pem:
        raise MalformedSecretError(f"cert secret is not well-formed, missing {CA_KEY_NAME}")

    try:
        cert = x509.load_pem_x509_certificate(ca_pem)
    except ValueError as e:
        raise MalformedSecretError(f"while parsing CA cert: {e}") from e
    try:
        key = serialization.load_pem_private_key(key_pem, password=None)
    except (ValueError, TypeError) as e:
        raise MalformedSecretError(f"while parsing CA key: {e}") from e
    if not isinstance(key, RSAPrivateKey):
        raise MalformedSecretError("CA key is not an RSA private key")

    return KeyPairArtifacts(cert=cert, key=key, cert_pem=ca_pem, key_pem=key_pem)


def _dns_name_matches(pattern: str, dns_name: str) -> bool:
    pattern = pattern.lower().rstrip(".")
    dns_name = dns_name.lower().rstrip(".")
    if pattern == dns_name:
        return True
    if pattern.startswith("*."):
        # a wildcard covers exactly one left-most label
        head, _, rest = dns_name.partition(".")
        return bool(head) and rest == pattern[2:]
    return False


def _check_cert(ca_pem: bytes, cert_pem: bytes, key_pem: bytes, dns_name: str, at: datetime) -> None:
    if not ca_pem or not cert_pem or not key_pem:
        raise ValueError("empty cert")

    ca = x509.load_pem_x509_certificate(ca_pem)
    cert = x509.load_pem_x509_certificate(cert_pem)
    key = serialization.load_pem_private_key(key_pem, password=None)

    if not isinstance(key, RSAPrivateKey):
        raise ValueError("private key is not RSA")
    if key.public_key().public_numbers() != cert.public_key().public_numbers():
        raise ValueError("private key does not match certificate")

    if cert != ca:
        try:
            constraints = ca.extensions.get_extension_for_class(x509.BasicConstraints).value
        except x509.ExtensionNotFound as e:
            raise ValueError("CA cert has no basic constraints") from e
        if not constraints.ca:
            raise ValueError("CA cert is not authorized to sign")

    # checks issuer name and signature
    cert.verify_directly_issued_by(ca)

    for c in (cert, ca):
        if at < c.not_valid_before_utc or at > c.not_valid_after_utc:
            raise ValueError(f"certificate {c.subject.rfc4514_string()} is not valid at {at.isoformat()}")

    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound as e:
        raise ValueError("certificate has no subject alternative names") from e
    if not any(_dns_name_matches(name, dns_name) for name in san.get_values_for_type(x509.DNSName)):
        raise ValueError(f"certificate is not valid for {dns_name}")

    try:
        usages = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
    except x509.ExtensionNotFound:
        usages = None
    if usages is not None and ExtendedKeyUsageOID.SERVER_AUTH not in usages \
            and ExtendedKeyUsageOID.ANY_EXTENDED_KEY_USAGE not in usages:
        raise ValueError("certificate is not valid for server authentication")


def validate_cert(
    ca_pem: bytes | None,
    cert_pem: bytes | None,
    key_pem: bytes | None,
    dns_name: str,
    at: datetime,
) -> bool:
    """Check that a certificate and key are usable for ``dns_name`` at instant ``at``.

    The certificate must be directly issued by the CA, the key must belong
    to the certificate, and both certificates must be valid at ``at``.
    Any decode or verification failure yields False.
    """
    try:
        _check_cert(ca_pem or b"", cert_pem or b"", key_pem or b"", dns_name, at)
    except Exception as e:
        logger.debug(f"certificate for {dns_name} is not valid: {e}")
        return False
    return True
