import logging
import os

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_LEVEL_ENV = "KLYPPR_LOG_LEVEL"


def configure_logging(level: str | None = None) -> None:
    """Configure process-wide logging once at startup."""

    level = level or os.getenv(LOG_LEVEL_ENV, "INFO")
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=DEFAULT_LOG_FORMAT,
        force=True,
    )
