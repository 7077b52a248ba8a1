"""Application entry point for running the Flask app with Waitress."""
import logging
import os

from waitress import serve

from app import app
from log_config import setup_logging


def _get_int_env(var_name: str, default: int) -> int:
    """Safely parse integer environment variables with defaults."""
    value = os.getenv(var_name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


if __name__ == "__main__":
    setup_logging()
    waitress_log_level = os.getenv("WAITRESS_LOG_LEVEL", "info").upper()
    logging.getLogger("waitress").setLevel(waitress_log_level)

    host = os.getenv("WAITRESS_HOST", "127.0.0.1")
    port = _get_int_env("WAITRESS_PORT", 5000)
    threads = _get_int_env("WAITRESS_THREADS", 8)
    # each label call can chain up to seven 30s carrier requests
    channel_timeout = _get_int_env("WAITRESS_CHANNEL_TIMEOUT", 240)

    logging.getLogger(__name__).info(
        "Starting Waitress: host=%s port=%s threads=%s channel_timeout=%s",
        host,
        port,
        threads,
        channel_timeout,
    )

    serve(
        app,
        host=host,
        port=port,
        threads=threads,
        channel_timeout=channel_timeout,
        clear_untrusted_proxy_headers=True,
        expose_tracebacks=app.debug,
    )
