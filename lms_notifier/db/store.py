from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Generic, Iterator, Optional, TypeVar, Union

from sqlalchemy import Engine, Select, create_engine, event, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from lms_notifier.db.models import Base
from lms_notifier.utils.errors import FatalResourceError
from lms_notifier.utils.logging import get_logger

logger = get_logger()

T = TypeVar("T")


@dataclass
class Inserted(Generic[T]):
    record: T


@dataclass
class AlreadyExists(Generic[T]):
    record: T


InsertResult = Union[Inserted[T], AlreadyExists[T]]


def _ping(engine: Engine) -> None:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def _enable_sqlite_savepoints(engine: Engine) -> None:
    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; emit BEGIN explicitly
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class Store:
    """
    Durable record of subjects, activities and notifications.

    Constructed explicitly, initialised once with `init()` and released with
    `shutdown()`. Services receive the Store (or one of its sessions) by
    reference.
    """

    def __init__(self, database_url: str, create_tables: bool = False, **engine_options: Any):
        self.database_url = database_url
        self.create_tables = create_tables
        self.engine_options = engine_options
        self.engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def is_initialized(self) -> bool:
        return self.engine is not None

    def init(self) -> "Store":
        if self.engine is not None:
            return self

        options = dict(self.engine_options)
        is_sqlite = self.database_url.startswith("sqlite")
        if is_sqlite:
            options.setdefault("connect_args", {"check_same_thread": False})
            if ":memory:" in self.database_url or self.database_url == "sqlite://":
                options.setdefault("poolclass", StaticPool)
        else:
            options.setdefault("pool_pre_ping", True)
            options.setdefault("pool_recycle", 3600)

        try:
            engine = create_engine(self.database_url, **options)
            if is_sqlite:
                _enable_sqlite_savepoints(engine)
            _ping(engine)
            if self.create_tables:
                Base.metadata.create_all(engine)
        except SQLAlchemyError as e:
            logger.critical(f"Store is unreachable: {e}")
            raise FatalResourceError(f"Store is unreachable: {e}") from e

        self.engine = engine
        self._session_factory = sessionmaker(
            bind=engine, class_=Session, expire_on_commit=False
        )
        logger.info(f"Store initialised ({engine.url.get_backend_name()})")
        return self

    def shutdown(self) -> None:
        if self.engine is None:
            return
        self.engine.dispose()
        self.engine = None
        self._session_factory = None
        logger.info("Store shut down")

    def ping(self) -> bool:
        """True when the database still answers a trivial query."""
        if self.engine is None:
            return False
        try:
            _ping(self.engine)
        except SQLAlchemyError as e:
            logger.error(f"Store ping failed: {e}")
            return False
        return True

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Open a session; uncommitted work is rolled back on error."""
        if self._session_factory is None:
            raise FatalResourceError("Store used before init()")
        db = self._session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def insert_unique(db: Session, record: T, existing: Select) -> InsertResult:
        """
        Insert `record` unless a row matching `existing` is already present.

        `existing` selects the row that owns the same unique key. The insert
        runs inside a SAVEPOINT so a lost race leaves the outer transaction
        usable; the collision is confirmed by re-reading the row rather than by
        inspecting the driver's error text.
        """
        found = db.scalars(existing).first()
        if found is not None:
            return AlreadyExists(found)

        try:
            with db.begin_nested():
                db.add(record)
                db.flush()
        except IntegrityError:
            found = db.scalars(existing).first()
            if found is None:
                raise
            return AlreadyExists(found)
        return Inserted(record)
