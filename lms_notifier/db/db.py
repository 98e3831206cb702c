from lms_notifier.config.settings import settings
from lms_notifier.db.models import Base
from lms_notifier.db.store import Store
from lms_notifier.utils.logging import get_logger

logger = get_logger()


def create_tables(store: Store):
    Base.metadata.create_all(store.engine)
    logger.info("Created all tables.")


def drop_tables(store: Store):
    Base.metadata.drop_all(store.engine)
    logger.info("Dropped all tables.")


def reset_db():
    logger.info("Resetting database...")
    store = Store(settings.DATABASE_URL).init()
    try:
        drop_tables(store)
        create_tables(store)
    finally:
        store.shutdown()
    logger.info("Database reset complete.")


if __name__ == "__main__":
    reset_db()
