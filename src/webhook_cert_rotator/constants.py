"""Constants for the Webhook Certificate Rotator."""

from datetime import timedelta

# Secret keys
CERT_NAME = "tls.crt"
KEY_NAME = "tls.key"
CA_CERT_NAME = "ca.crt"
CA_KEY_NAME = "ca.key"

# Durations
ROTATION_CHECK_FREQUENCY = timedelta(hours=12)
CERT_VALIDITY_DURATION = timedelta(days=10 * 365)
CERT_BACKDATE = timedelta(hours=1)
LOOKAHEAD_INTERVAL = timedelta(days=90)
RSA_KEY_SIZE = 2048

# API groups for consumer resources
ADMISSION_GROUP = "admissionregistration.k8s.io"
ADMISSION_VERSION = "v1"
APIEXTENSIONS_GROUP = "apiextensions.k8s.io"
APIEXTENSIONS_VERSION = "v1"

# Labels
LABEL_MANAGED_BY = "cert-rotator.webhooks.io/managed-by"

# Field Manager
FIELD_MANAGER = "webhook-cert-rotator"

# Controller name used in structured logs
CONTROLLER_NAME = "cert-rotation"

# Event Reasons
EVENT_REASON_CA_INJECTED = "CAInjected"
EVENT_REASON_CA_INJECTION_FAILED = "CAInjectionFailed"
EVENT_REASON_SECRET_MALFORMED = "SecretMalformed"
