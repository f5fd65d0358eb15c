# app/core/logging.py
"""Logging configuration."""
import logging
import sys
from .config import settings

def setup_logging():
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # Engine echo is on in development; keep SQL out of other environments' logs
    if settings.environment != "development":
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    # Audit entries are emitted at INFO and must survive a quieter root level
    logging.getLogger("app.audit").setLevel(logging.INFO)
