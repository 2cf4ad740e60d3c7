"""Create all tables. Run on app startup."""
import logging

from sqlalchemy.engine import Engine

from optistore.db.base import Base
from optistore.db.session import engine as default_engine
from optistore.models import prescription, order, customer_history  # noqa: F401 - register models

logger = logging.getLogger(__name__)


def init_db(engine: Engine | None = None) -> None:
    bind = engine or default_engine
    Base.metadata.create_all(bind=bind)
    logger.info(f"Tables ready on {bind.url.render_as_string(hide_password=True)}")
