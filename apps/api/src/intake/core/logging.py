"""
Logging Setup

Modules log through ``logging.getLogger(__name__)``; this configures the root
handler once at startup.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(level.upper())

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    # SQLAlchemy echoes every statement at INFO when enabled; keep it quieter
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
