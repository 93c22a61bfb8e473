"""Global constants for the studio service."""

from __future__ import annotations

SERVICE_NAME = "studio"
REQUEST_ID_HEADER = "X-Request-ID"
REQUEST_ID_CTX_KEY = "request_id"
DEFAULT_ENV_FILE = ".env"
SECRETS_DIR = "/run/secrets"
