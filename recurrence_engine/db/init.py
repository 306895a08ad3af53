"""Initialize database tables."""
from sqlmodel import SQLModel
from sqlalchemy.engine import Engine
import logging

# Imported for table registration on SQLModel.metadata
from recurrence_engine.models.task import Task  # noqa: F401
from recurrence_engine.models.recurrence_rule import RecurrenceRule  # noqa: F401

logger = logging.getLogger(__name__)


def init_db(engine: Engine):
    """Create all tables in the database."""
    logger.info("Creating all tables...")
    SQLModel.metadata.create_all(engine)
    logger.info("Tables created successfully.")


if __name__ == "__main__":
    from recurrence_engine.config import get_settings
    from recurrence_engine.db.config import create_db_engine

    init_db(create_db_engine(get_settings().database_url))
