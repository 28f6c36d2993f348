"""
Runtime configuration for the embed proxy.
Every value can be overridden through the environment.
"""
import logging
import os
import sys

# --- Server ---
PORT = int(os.environ.get("PORT", 5000))

# --- Upstream ---
UPSTREAM_TIMEOUT = float(os.environ.get("UPSTREAM_TIMEOUT", 30))  # seconds
MAX_REDIRECTS = int(os.environ.get("MAX_REDIRECTS", 5))
CHUNK_SIZE = int(os.environ.get("CHUNK_SIZE", 65536))

# --- Deployment ---
# Only enable behind a proxy that sets X-Forwarded-Host itself; clients can send it too
TRUST_FORWARDED_HEADERS = os.environ.get("TRUST_FORWARDED_HEADERS", "").lower() in ("1", "true", "yes")

# --- Embed sessions ---
EMBED_URL_TEMPLATE = os.environ.get(
    "EMBED_URL_TEMPLATE",
    "https://megacloud.blog/embed-2/v3/e-1/{id}?k={k}&autoPlay={autoPlay}&oa={oa}&asi={asi}",
)
# Used to turn a bare-origin referer into a full embed page URL
EMBED_REFERER_TEMPLATE = os.environ.get("EMBED_REFERER_TEMPLATE", "{origin}/embed-2/v3/e-1/{token}")
EMBED_TOKEN_MIN_LENGTH = int(os.environ.get("EMBED_TOKEN_MIN_LENGTH", 16))

# --- Logging ---
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.environ.get("LOG_FILE")

LOG_FORMAT = '[%(asctime)s] [%(levelname)s] %(message)s'


def configure_logging(level=None, log_file=None):
    """Send log output to the console and, optionally, to a file."""
    level = level or LOG_LEVEL
    log_file = log_file or LOG_FILE
    formatter = logging.Formatter(LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(level)
    # Calling twice must not duplicate output
    for handler in list(root.handlers):
        if getattr(handler, '_embed_proxy', False):
            root.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    console_handler._embed_proxy = True
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        file_handler._embed_proxy = True
        root.addHandler(file_handler)

    return root
