"""Certificate rotation and readiness coordination."""

from __future__ import annotations

import logging
import os
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable

from cryptography import x509

from . import pki
from .config import RotatorConfig
from .constants import CA_CERT_NAME, CA_KEY_NAME, CERT_NAME, KEY_NAME
from .logging import log_rotation_event
from .metrics import RotatorMetrics
from .models import SecretRecord
from .store import KubernetesObjectStore
from .tracing import trace_span
from .utils.backoff import POLL_BACKOFF, REFRESH_BACKOFF, Backoff, BackoffExhausted, exponential_backoff
from .utils.errors import (
    CAInjectionTimeoutError,
    CertsNotMountedError,
    NotFoundError,
    RotationError,
    sanitize_exception,
)

COMPONENT = "rotator"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CertRotator:
    """Keeps the CA and server certificate in the secret valid and signals readiness.

    Readiness state is a set of one-shot events: ``certs_mounted`` and
    ``certs_not_mounted`` from the mount poller, ``is_ready`` and
    ``ca_not_injected`` from the injection poller. ``ca_injected`` is the
    only value written from outside; the reconciler sets it after a
    complete injection pass.
    """

    def __init__(
        self,
        store: KubernetesObjectStore,
        config: RotatorConfig,
        metrics: RotatorMetrics,
        ca_injected: threading.Event | None = None,
        on_rotation_complete: Callable[[], None] | None = None,
        refresh_backoff: Backoff = REFRESH_BACKOFF,
        poll_backoff: Backoff = POLL_BACKOFF,
        sleep: Callable[[float], Any] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.config = config
        self.metrics = metrics
        self.on_rotation_complete = on_rotation_complete or (lambda: None)
        self.refresh_backoff = refresh_backoff
        self.poll_backoff = poll_backoff
        self.clock = clock
        self.logger = logging.getLogger(__name__)

        self.ca_injected = ca_injected if ca_injected is not None else threading.Event()
        self.certs_mounted = threading.Event()
        self.certs_not_mounted = threading.Event()
        self.ca_not_injected = threading.Event()
        self.is_ready = threading.Event()

        self._stop = threading.Event()
        self._wakeup = threading.Event()
        self._bootstrapped = threading.Event()
        self._sleep = sleep or self._stop.wait
        self._threads: list[threading.Thread] = []

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    def bootstrap(self) -> None:
        """Make sure a valid certificate exists before anything else starts.

        Raises:
            RotationError: If the certificates could not be created
        """
        try:
            self.refresh_cert_if_needed()
        except RotationError as e:
            log_rotation_event(
                self.logger, COMPONENT, "error", "BootstrapFailed",
                "could not refresh cert on startup", level=logging.ERROR,
                error=sanitize_exception(e),
            )
            raise
        self._bootstrapped.set()

    def refresh_cert_if_needed(self) -> None:
        """Regenerate the CA and/or server certificate when they expire within the lookahead window.

        Raises:
            RotationError: If every attempt failed; carries the last error
        """
        wrote: list[str] = []

        def refresh_once() -> bool:
            scope = self._refresh_once()
            if scope is not None:
                wrote.append(scope)
            return True

        start_time = time.time()
        with trace_span("refresh", self.config.secret_namespace, self.config.secret_name):
            try:
                exponential_backoff(
                    refresh_once,
                    self.refresh_backoff,
                    sleep=self._sleep,
                    description="certificate refresh",
                )
            except BackoffExhausted as e:
                self.metrics.refresh_total.labels(scope="check", result="error").inc()
                raise RotationError(f"could not refresh certificates: {e}", e.last_error) from (e.last_error or e)
            finally:
                self.metrics.refresh_duration_seconds.observe(time.time() - start_time)

        if wrote:
            try:
                self.on_rotation_complete()
            except Exception as e:
                self.logger.error(f"rotation complete hook failed: {sanitize_exception(e)}")

    def _refresh_once(self) -> str | None:
        """Run one refresh attempt; return the refreshed scope or None when nothing changed."""
        namespace, name = self.config.secret_namespace, self.config.secret_name
        try:
            secret = self.store.get_secret(namespace, name)
            exists = True
        except NotFoundError:
            self.logger.info(f"secret {namespace}/{name} not found, it will be created")
            secret = SecretRecord(namespace=namespace, name=name)
            exists = False

        data = secret.data
        now = self.clock()
        at = pki.lookahead_time(now)

        if not pki.validate_cert(data.get(CA_CERT_NAME), data.get(CA_CERT_NAME), data.get(CA_KEY_NAME),
                                 self.config.ca_name, at):
            self.logger.info("refreshing CA and server certs")
            self._refresh_certs(True, secret, exists, now)
            return "ca"

        if not pki.validate_cert(data.get(CA_CERT_NAME), data.get(CERT_NAME), data.get(KEY_NAME),
                                 self.config.dns_name, at):
            self.logger.info("refreshing server certs")
            self._refresh_certs(False, secret, exists, now)
            return "server"

        self.logger.info("no cert refresh needed")
        self.metrics.refresh_total.labels(scope="none", result="success").inc()
        self._record_expiry(data)
        return None

    def _refresh_certs(self, refresh_ca: bool, secret: SecretRecord, exists: bool, now: datetime) -> None:
        if refresh_ca:
            ca = pki.generate_ca(self.config.ca_name, self.config.ca_organization, now=now)
        else:
            ca = pki.parse_artifacts_from_storage(secret.data)
        cert_pem, key_pem = pki.generate_leaf(self.config.dns_name, ca, now=now)

        secret.data = {
            **secret.data,
            CA_CERT_NAME: ca.cert_pem,
            CA_KEY_NAME: ca.key_pem,
            CERT_NAME: cert_pem,
            KEY_NAME: key_pem,
        }
        if exists:
            self.store.update_secret(secret)
        else:
            self.store.create_secret(secret)

        scope = "ca" if refresh_ca else "server"
        self.metrics.refresh_total.labels(scope=scope, result="success").inc()
        self._record_expiry(secret.data)
        log_rotation_event(
            self.logger, COMPONENT, "rotated", "CertsRefreshed",
            "server certs refreshed",
            scope=scope,
            secret=f"{secret.namespace}/{secret.name}",
        )

    def _record_expiry(self, data: dict[str, bytes]) -> None:
        for label, key in (("ca", CA_CERT_NAME), ("server", CERT_NAME)):
            try:
                cert = x509.load_pem_x509_certificate(data[key])
            except (KeyError, ValueError):
                continue
            self.metrics.certificate_expiry_timestamp_seconds.labels(certificate=label).set(
                cert.not_valid_after_utc.timestamp()
            )

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def ensure_certs_mounted(self) -> None:
        """Wait for the certificate file to appear in the certificate directory."""
        cert_file = os.path.join(self.config.cert_dir, CERT_NAME)
        try:
            exponential_backoff(
                lambda: self._stop.is_set() or os.path.exists(cert_file),
                self.poll_backoff,
                sleep=self._sleep,
                description=f"{cert_file} to exist",
            )
        except BackoffExhausted:
            self.logger.error("max retries for checking certs existence")
            self.certs_not_mounted.set()
            self._wakeup.set()
            return
        if self._stop.is_set():
            return
        self.logger.info(f"certs are ready in {self.config.cert_dir}")
        self.certs_mounted.set()

    def ensure_ready(self) -> None:
        """Wait for the certificates to be mounted and the CA to be injected, then signal readiness."""
        while not self.certs_mounted.wait(timeout=0.5):
            if self.certs_not_mounted.is_set() or self._stop.is_set():
                return

        try:
            exponential_backoff(
                lambda: self._stop.is_set() or self.ca_injected.is_set(),
                self.poll_backoff,
                sleep=self._sleep,
                description="CA injection",
            )
        except BackoffExhausted:
            self.logger.error("max retries for checking CA injection")
            self.ca_not_injected.set()
            self._wakeup.set()
            return
        if self._stop.is_set():
            return
        log_rotation_event(self.logger, COMPONENT, "ready", "CAInjected", "CA certs are injected to webhooks")
        self.metrics.ready.set(1)
        self.is_ready.set()

    # ------------------------------------------------------------------
    # Control loop
    # ------------------------------------------------------------------

    def _start_background(self, target: Callable[[], None], name: str) -> None:
        thread = threading.Thread(target=target, name=name, daemon=True)
        thread.start()
        self._threads.append(thread)

    def run(self) -> None:
        """Run the rotation loop until ``stop()`` is called.

        Bootstraps the certificates first unless ``bootstrap()`` already
        ran, then starts the mount and injection pollers and re-checks the
        certificates every ``check_interval_seconds``.

        Raises:
            RotationError: If bootstrapping failed
            CertsNotMountedError: If the certificate file never appeared
            CAInjectionTimeoutError: If the CA was never injected
        """
        self.logger.info("starting cert rotator controller")
        try:
            if not self._bootstrapped.is_set():
                self.bootstrap()

            self._start_background(self.ensure_certs_mounted, "cert-rotator-mount")
            self._start_background(self.ensure_ready, "cert-rotator-ready")

            interval = self.config.check_interval_seconds
            next_check = time.monotonic() + interval
            while True:
                self._wakeup.wait(timeout=max(0.0, next_check - time.monotonic()))
                self._wakeup.clear()

                if self.certs_not_mounted.is_set():
                    raise CertsNotMountedError("could not mount certs")
                if self.ca_not_injected.is_set():
                    raise CAInjectionTimeoutError("could not inject certs to webhooks")
                if self._stop.is_set():
                    return

                if time.monotonic() >= next_check:
                    try:
                        self.refresh_cert_if_needed()
                    except RotationError as e:
                        self.logger.error(f"error rotating certs: {sanitize_exception(e)}")
                    next_check = time.monotonic() + interval
        finally:
            self.logger.info("stopping cert rotator controller")

    def stop(self) -> None:
        """Ask the control loop and the pollers to exit."""
        self._stop.set()
        self._wakeup.set()

    def join(self, timeout: float | None = None) -> None:
        """Wait for the background pollers to exit."""
        for thread in self._threads:
            thread.join(timeout)
