"""Tests for certificate rotation and readiness coordination."""

from __future__ import annotations

import dataclasses
import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from conftest import CA_NAME, DNS_NAME, NO_WAIT, NOW
from webhook_cert_rotator import pki
from webhook_cert_rotator.constants import CA_CERT_NAME, CA_KEY_NAME, CERT_NAME, KEY_NAME
from webhook_cert_rotator.rotator import CertRotator
from webhook_cert_rotator.utils.errors import CAInjectionTimeoutError, CertsNotMountedError, RotationError


def make_rotator(store, config, metrics, **kwargs) -> CertRotator:
    kwargs.setdefault("refresh_backoff", NO_WAIT)
    kwargs.setdefault("poll_backoff", NO_WAIT)
    kwargs.setdefault("clock", lambda: NOW)
    return CertRotator(store, config, metrics, **kwargs)


def stored(store, config) -> dict[str, bytes]:
    return store.secrets[(config.secret_namespace, config.secret_name)].data


def assert_valid(data, at=NOW):
    assert pki.validate_cert(data[CA_CERT_NAME], data[CA_CERT_NAME], data[CA_KEY_NAME], CA_NAME, at)
    assert pki.validate_cert(data[CA_CERT_NAME], data[CERT_NAME], data[KEY_NAME], DNS_NAME, at)


class TestRefreshCertIfNeeded:
    """Test cases for refresh_cert_if_needed."""

    def test_bootstrap_creates_secret(self, store, config, metrics):
        """Test that a missing secret is created with a valid CA and leaf."""
        rotator = make_rotator(store, config, metrics)
        rotator.bootstrap()

        data = stored(store, config)
        assert {CA_CERT_NAME, CA_KEY_NAME, CERT_NAME, KEY_NAME} <= set(data)
        assert_valid(data, pki.lookahead_time(NOW))
        assert store.secret_writes == 1

    def test_refresh_is_idempotent(self, store, config, metrics):
        """Test that valid certificates are not rewritten."""
        rotator = make_rotator(store, config, metrics)
        rotator.refresh_cert_if_needed()
        before = dict(stored(store, config))

        rotator.refresh_cert_if_needed()

        assert store.secret_writes == 1
        assert stored(store, config) == before
        assert metrics.registry.get_sample_value(
            "cert_rotator_refresh_total", {"scope": "none", "result": "success"}
        ) == 1.0

    def test_corrupt_ca_regenerates_everything(self, store, config, metrics):
        """Test that an unparsable CA triggers a full refresh."""
        store.put_secret(config.secret_namespace, config.secret_name, {
            CA_CERT_NAME: b"garbage", CA_KEY_NAME: b"garbage", CERT_NAME: b"garbage", KEY_NAME: b"garbage",
        }, resource_version="7")
        rotator = make_rotator(store, config, metrics)

        rotator.refresh_cert_if_needed()

        assert_valid(stored(store, config))
        assert metrics.registry.get_sample_value(
            "cert_rotator_refresh_total", {"scope": "ca", "result": "success"}
        ) == 1.0

    def test_expiring_ca_regenerates_everything(self, store, config, metrics):
        """Test that a CA expiring inside the lookahead window is replaced."""
        short = pki.generate_ca(CA_NAME, "test-org", now=NOW, validity=timedelta(days=30))
        cert_pem, key_pem = pki.generate_leaf(DNS_NAME, short, now=NOW)
        store.put_secret(config.secret_namespace, config.secret_name, {
            CA_CERT_NAME: short.cert_pem, CA_KEY_NAME: short.key_pem, CERT_NAME: cert_pem, KEY_NAME: key_pem,
        })
        rotator = make_rotator(store, config, metrics)

        rotator.refresh_cert_if_needed()

        data = stored(store, config)
        assert data[CA_CERT_NAME] != short.cert_pem
        assert_valid(data, pki.lookahead_time(NOW))

    def test_expiring_leaf_keeps_ca(self, store, config, metrics, ca):
        """Test that only the leaf is replaced when the CA is still valid."""
        cert_pem, key_pem = pki.generate_leaf(DNS_NAME, ca, now=NOW, validity=timedelta(days=30))
        store.put_secret(config.secret_namespace, config.secret_name, {
            CA_CERT_NAME: ca.cert_pem, CA_KEY_NAME: ca.key_pem, CERT_NAME: cert_pem, KEY_NAME: key_pem,
        })
        rotator = make_rotator(store, config, metrics)

        rotator.refresh_cert_if_needed()

        data = stored(store, config)
        assert data[CA_CERT_NAME] == ca.cert_pem
        assert data[CA_KEY_NAME] == ca.key_pem
        assert data[CERT_NAME] != cert_pem
        assert_valid(data, pki.lookahead_time(NOW))
        assert metrics.registry.get_sample_value(
            "cert_rotator_refresh_total", {"scope": "server", "result": "success"}
        ) == 1.0

    def test_leaf_for_other_dns_name_is_replaced(self, store, config, metrics, ca):
        """Test that a leaf issued for another host is replaced under the same CA."""
        cert_pem, key_pem = pki.generate_leaf("other.system.svc", ca, now=NOW)
        store.put_secret(config.secret_namespace, config.secret_name, {
            CA_CERT_NAME: ca.cert_pem, CA_KEY_NAME: ca.key_pem, CERT_NAME: cert_pem, KEY_NAME: key_pem,
        })
        rotator = make_rotator(store, config, metrics)

        rotator.refresh_cert_if_needed()

        data = stored(store, config)
        assert data[CA_CERT_NAME] == ca.cert_pem
        assert_valid(data)

    def test_unrelated_keys_are_preserved(self, store, config, metrics):
        """Test that entries not owned by the rotator survive a refresh."""
        store.put_secret(config.secret_namespace, config.secret_name, {"extra": b"keep-me"})
        rotator = make_rotator(store, config, metrics)

        rotator.refresh_cert_if_needed()

        assert stored(store, config)["extra"] == b"keep-me"

    def test_transient_write_failure_is_retried(self, store, config, metrics):
        """Test that a failed write is retried within the backoff."""
        store.put_secret(config.secret_namespace, config.secret_name, {})
        store.failures["update_secret"] = 1
        rotator = make_rotator(store, config, metrics)

        rotator.refresh_cert_if_needed()

        assert store.secret_writes == 1
        assert_valid(stored(store, config))

    def test_exhausted_retries_raise_rotation_error(self, store, config, metrics):
        """Test that persistent failures surface the last error."""
        store.failures["create_secret"] = NO_WAIT.steps
        rotator = make_rotator(store, config, metrics)

        with pytest.raises(RotationError) as exc_info:
            rotator.refresh_cert_if_needed()

        assert "create_secret failed" in str(exc_info.value.last_error)
        assert store.secret_writes == 0
        assert metrics.registry.get_sample_value(
            "cert_rotator_refresh_total", {"scope": "check", "result": "error"}
        ) == 1.0

    def test_bootstrap_failure_propagates(self, store, config, metrics):
        """Test that bootstrap re-raises the rotation error."""
        store.failures["get_secret"] = NO_WAIT.steps
        rotator = make_rotator(store, config, metrics)

        with pytest.raises(RotationError):
            rotator.bootstrap()

    def test_rotation_hook_called_after_write(self, store, config, metrics):
        """Test that the rotation hook runs once per write and not on no-ops."""
        hook = MagicMock()
        rotator = make_rotator(store, config, metrics, on_rotation_complete=hook)

        rotator.refresh_cert_if_needed()
        rotator.refresh_cert_if_needed()

        hook.assert_called_once_with()

    def test_rotation_hook_failure_is_not_raised(self, store, config, metrics):
        """Test that a failing hook does not fail the refresh."""
        hook = MagicMock(side_effect=RuntimeError("boom"))
        rotator = make_rotator(store, config, metrics, on_rotation_complete=hook)

        rotator.refresh_cert_if_needed()

        assert store.secret_writes == 1

    def test_expiry_gauge(self, store, config, metrics):
        """Test that certificate expiry is exported."""
        rotator = make_rotator(store, config, metrics)
        rotator.refresh_cert_if_needed()

        expected = (NOW + timedelta(days=3650)).timestamp()
        for label in ("ca", "server"):
            assert metrics.registry.get_sample_value(
                "cert_rotator_certificate_expiry_timestamp_seconds", {"certificate": label}
            ) == expected


class TestReadiness:
    """Test cases for the mount and injection pollers."""

    def test_certs_mounted(self, store, config, metrics, tmp_path):
        """Test that the mount poller signals once the certificate exists."""
        (tmp_path / CERT_NAME).write_bytes(b"cert")
        rotator = make_rotator(store, config, metrics)

        rotator.ensure_certs_mounted()

        assert rotator.certs_mounted.is_set()
        assert not rotator.certs_not_mounted.is_set()

    def test_certs_not_mounted(self, store, config, metrics):
        """Test that the mount poller gives up after its retries."""
        rotator = make_rotator(store, config, metrics)

        rotator.ensure_certs_mounted()

        assert rotator.certs_not_mounted.is_set()
        assert not rotator.certs_mounted.is_set()

    def test_ready_after_injection(self, store, config, metrics):
        """Test that readiness follows mount and injection."""
        rotator = make_rotator(store, config, metrics)
        rotator.certs_mounted.set()
        rotator.ca_injected.set()

        rotator.ensure_ready()

        assert rotator.is_ready.is_set()
        assert metrics.registry.get_sample_value("cert_rotator_ready") == 1.0

    def test_not_ready_without_injection(self, store, config, metrics):
        """Test that the injection poller gives up after its retries."""
        rotator = make_rotator(store, config, metrics)
        rotator.certs_mounted.set()

        rotator.ensure_ready()

        assert rotator.ca_not_injected.is_set()
        assert not rotator.is_ready.is_set()

    def test_not_ready_when_mount_failed(self, store, config, metrics):
        """Test that the injection poller exits when certificates never mounted."""
        rotator = make_rotator(store, config, metrics)
        rotator.ca_injected.set()
        rotator.certs_not_mounted.set()

        rotator.ensure_ready()

        assert not rotator.is_ready.is_set()

    def test_shared_injection_flag(self, store, config, metrics):
        """Test that an injected flag owned by someone else is used."""
        flag = threading.Event()
        rotator = make_rotator(store, config, metrics, ca_injected=flag)
        assert rotator.ca_injected is flag


class TestRun:
    """Test cases for the control loop."""

    def test_run_fails_when_certs_never_mount(self, store, config, metrics):
        """Test that a missing certificate file terminates the loop."""
        rotator = make_rotator(store, config, metrics)

        with pytest.raises(CertsNotMountedError):
            rotator.run()

    def test_run_fails_when_ca_never_injected(self, store, config, metrics, tmp_path):
        """Test that a missing injection terminates the loop."""
        (tmp_path / CERT_NAME).write_bytes(b"cert")
        rotator = make_rotator(store, config, metrics)

        with pytest.raises(CAInjectionTimeoutError):
            rotator.run()

    def test_run_fails_when_bootstrap_fails(self, store, config, metrics):
        """Test that bootstrap errors terminate the loop."""
        store.failures["get_secret"] = NO_WAIT.steps
        rotator = make_rotator(store, config, metrics)

        with pytest.raises(RotationError):
            rotator.run()

    def test_run_until_stopped(self, store, config, metrics, tmp_path):
        """Test that the loop becomes ready and exits on stop."""
        (tmp_path / CERT_NAME).write_bytes(b"cert")
        rotator = make_rotator(store, config, metrics)
        rotator.ca_injected.set()
        errors = []

        def target():
            try:
                rotator.run()
            except Exception as e:
                errors.append(e)

        thread = threading.Thread(target=target)
        thread.start()
        assert rotator.is_ready.wait(timeout=10)

        rotator.stop()
        thread.join(timeout=10)
        rotator.join(timeout=10)

        assert not thread.is_alive()
        assert errors == []
        assert store.secret_writes == 1

    def test_run_repairs_secret_periodically(self, store, config, metrics, tmp_path):
        """Test that the periodic check rewrites a corrupted secret."""
        (tmp_path / CERT_NAME).write_bytes(b"cert")
        fast = dataclasses.replace(config, check_interval_seconds=0.05)
        rotator = make_rotator(store, fast, metrics)
        rotator.ca_injected.set()
        thread = threading.Thread(target=rotator.run, daemon=True)
        thread.start()
        try:
            assert rotator.is_ready.wait(timeout=10)
            stored(store, config)[CA_CERT_NAME] = b"garbage"

            deadline = time.monotonic() + 10
            while stored(store, config)[CA_CERT_NAME] == b"garbage" and time.monotonic() < deadline:
                time.sleep(0.02)

            assert_valid(stored(store, config))
            assert store.secret_writes >= 2
        finally:
            rotator.stop()
            thread.join(timeout=10)
