"""Root logging setup. Called once on app startup."""
import logging

from optistore.core.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    level_name = (level or settings.LOG_LEVEL).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)
    # Audit trail is always kept at INFO or finer
    audit = logging.getLogger("audit")
    if audit.level == logging.NOTSET or audit.level > logging.INFO:
        audit.setLevel(logging.INFO)
