"""Health, readiness and metrics endpoints for the rotator."""

from __future__ import annotations

import threading
from typing import Any

from prometheus_client import REGISTRY, CollectorRegistry, make_wsgi_app
from werkzeug.serving import BaseWSGIServer, make_server
from werkzeug.wrappers import Response


def create_combined_wsgi_app(ready: threading.Event, registry: CollectorRegistry = REGISTRY) -> Any:
    """Create a WSGI app that combines metrics and health check endpoints.

    ``/readyz`` only reports ready once ``ready`` is set, i.e. after the
    certificates are mounted and the CA was injected into the webhooks.

    Args:
        ready: Readiness signal of the certificate rotator
        registry: Registry the metrics endpoint exposes

    Returns:
        Combined WSGI application
    """
    metrics_app = make_wsgi_app(registry)

    def combined_app(environ: dict[str, Any], start_response: Any) -> list[bytes]:
        """WSGI app that routes /healthz and /readyz, delegates /metrics to prometheus."""
        path = environ.get("PATH_INFO", "")

        if path == "/healthz":
            response = Response('{"status":"ok"}', mimetype="application/json", status=200)
            return response(environ, start_response)
        elif path == "/readyz":
            if ready.is_set():
                response = Response('{"status":"ready"}', mimetype="application/json", status=200)
            else:
                response = Response('{"status":"not ready"}', mimetype="application/json", status=503)
            return response(environ, start_response)
        else:
            # Delegate all other paths (including /metrics) to prometheus app
            return metrics_app(environ, start_response)

    return combined_app


def start_health_server(
    port: int,
    ready: threading.Event,
    registry: CollectorRegistry = REGISTRY,
) -> BaseWSGIServer:
    """Serve the combined app from a daemon thread.

    Args:
        port: Port number to listen on
        ready: Readiness signal of the certificate rotator
        registry: Registry the metrics endpoint exposes

    Returns:
        The running server, so callers can shut it down
    """
    server = make_server("", port, create_combined_wsgi_app(ready, registry), threaded=True)
    thread = threading.Thread(target=server.serve_forever, name="health-server", daemon=True)
    thread.start()
    return server
