import logging
import os
import sys


def configure_logging() -> None:
    """Configure root logging for the API process.

    Respects DEBUG env var (true/1/yes/on) to enable verbose logs.
    In non-debug mode, only INFO and above are shown and noisy libraries are quieted.
    """
    debug_env = os.getenv("DEBUG", "false").strip().lower()
    debug_enabled = debug_env in ("1", "true", "yes", "on")

    root = logging.getLogger()
    root.handlers.clear()

    stream_handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )
    stream_handler.setFormatter(formatter)

    root.setLevel(logging.DEBUG if debug_enabled else logging.INFO)
    root.addHandler(stream_handler)

    # Quiet noisy third-party loggers in non-debug mode
    if not debug_enabled:
        for noisy in ("uvicorn.access", "sqlalchemy.engine", "stripe", "urllib3"):
            logging.getLogger(noisy).setLevel(logging.WARNING)
