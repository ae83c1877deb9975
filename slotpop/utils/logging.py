import logging
import sys

from ..config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

def configure_logging(level: str | None = None) -> None:
    root = logging.getLogger("slotpop")
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel((level or settings.LOG_LEVEL).upper())

def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"slotpop.{name}")

configure_logging()

logger = logging.getLogger("slotpop")
