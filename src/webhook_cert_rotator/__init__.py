"""Webhook certificate rotator: CA bootstrap, rotation and trust-bundle injection."""

__version__ = "0.1.0"
