import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "edge-relay")
LOG_LEVEL = os.getenv("LOG_LEVEL", "info").lower()

RELAY_HOST = os.environ.get("RELAY_HOST", "0.0.0.0")
RELAY_PORT = int(os.environ.get("RELAY_PORT", "80"))
RELAY_TLS_PORT = int(os.environ.get("RELAY_TLS_PORT", "443"))
# Written by the external certificate provisioning process, mounted read-only
RELAY_TLS_CERTFILE = os.environ.get("RELAY_TLS_CERTFILE", "")
RELAY_TLS_KEYFILE = os.environ.get("RELAY_TLS_KEYFILE", "")

RELAY_API_PREFIX = os.environ.get("RELAY_API_PREFIX", "/api/")
RELAY_UPSTREAM_URL = os.environ.get("RELAY_UPSTREAM_URL", "http://backend:8080").rstrip(
    "/"
)
RELAY_STATIC_ROOT = os.environ.get("RELAY_STATIC_ROOT", "/usr/share/nginx/html")
RELAY_DEFAULT_DOCUMENT = os.environ.get("RELAY_DEFAULT_DOCUMENT", "index.html")

RELAY_CONFIG_FILE = os.environ.get("RELAY_CONFIG_FILE", "")
RELAY_CONFIG_POLL_INTERVAL = float(os.environ.get("RELAY_CONFIG_POLL_INTERVAL", "5"))

RELAY_CONNECT_TIMEOUT = float(os.environ.get("RELAY_CONNECT_TIMEOUT", "5"))
# Idle timeout: maximum gap between two upstream reads, not total duration
RELAY_READ_TIMEOUT = float(os.environ.get("RELAY_READ_TIMEOUT", "300"))
RELAY_WRITE_TIMEOUT = float(os.environ.get("RELAY_WRITE_TIMEOUT", "60"))
RELAY_POOL_TIMEOUT = float(os.environ.get("RELAY_POOL_TIMEOUT", "10"))
RELAY_KEEPALIVE_EXPIRY = float(os.environ.get("RELAY_KEEPALIVE_EXPIRY", "30"))
RELAY_MAX_CONNECTIONS = int(os.environ.get("RELAY_MAX_CONNECTIONS", "512"))

RELAY_ADMIN_PREFIX = "/" + os.environ.get("RELAY_ADMIN_PREFIX", "/_relay").strip("/")

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
