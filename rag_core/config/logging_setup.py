"""Root logger setup for the CLI and HTTP entry points.

Library modules only call ``logging.getLogger(__name__)``; handlers are
installed here, once, by whichever entry point runs first.
"""

from __future__ import annotations

import logging

_configured = False


def configure_logging(
    level: str = "INFO",
    fmt: str = "%(asctime)s %(levelname)s %(name)s: %(message)s",
) -> None:
    """Configure the root logger (idempotent; later calls only adjust the level).

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        fmt: ``logging.Formatter`` format string.
    """
    global _configured
    numeric = getattr(logging, level.upper(), logging.INFO)
    if not _configured:
        logging.basicConfig(level=numeric, format=fmt, datefmt="%H:%M:%S")
        _configured = True
    logging.getLogger().setLevel(numeric)
    # Model libraries are chatty at INFO
    for noisy in ("sentence_transformers", "httpx", "chromadb"):
        logging.getLogger(noisy).setLevel(max(numeric, logging.WARNING))
