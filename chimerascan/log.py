import logging
from typing import Optional

from .config import load_settings


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging for the server process."""
    effective_level = (level or load_settings().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, effective_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
