from __future__ import annotations

import logging
import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(level=(level or LOG_LEVEL).upper(), format=LOG_FORMAT)
    # Engine echo is noisy at INFO; keep SQL out of the service log unless asked for.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
