import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "full-url-rewrite-proxy")
HOST = os.environ.get("HOSTNAME", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8000"))

# Rewrite rule
REWRITE_NAME = os.environ.get("REWRITE_NAME", "full-url-rewrite")
REWRITE_REGEX = os.environ.get("REWRITE_REGEX", "")
REWRITE_REPLACEMENT = os.environ.get("REWRITE_REPLACEMENT", "")
# "full" matches //host/path?query, "raw" only /path?query
REWRITE_URL_SOURCE = os.environ.get("REWRITE_URL_SOURCE", "full").lower()
# "clone" forwards a new request, "in_place" mutates the received one
REWRITE_COMMIT_STRATEGY = os.environ.get("REWRITE_COMMIT_STRATEGY", "clone").lower()

# Upstream the rewritten requests are forwarded to
TARGET_SERVER_URL = os.environ.get("TARGET_SERVER_URL", "").rstrip("/")
PROXY_TIMEOUT = int(os.environ.get("PROXY_TIMEOUT", "300"))  # 5 minutes default

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
