import pytest
import uuid

from sqlalchemy import func, inspect, select
from sqlalchemy.exc import IntegrityError

from lms_notifier.db.db import create_tables, drop_tables
from lms_notifier.db.models import Subject
from lms_notifier.db.store import AlreadyExists, Inserted, Store
from lms_notifier.utils.errors import FatalResourceError


def _subject(identifier: str = "bc220401234") -> Subject:
    return Subject(
        id=uuid.uuid4(),
        identifier=identifier,
        credential_ref=None,
        destination="+92 300 1234567",
    )


class TestStoreLifecycle:
    """Test initialisation and teardown."""

    def test_init_is_idempotent(self, store):
        engine = store.engine

        assert store.init() is store
        assert store.engine is engine

    def test_unreachable_database_is_fatal(self, tmp_path):
        missing = tmp_path / "no" / "such" / "dir" / "lms.db"

        with pytest.raises(FatalResourceError):
            Store(f"sqlite:///{missing}").init()

    def test_session_before_init_is_fatal(self):
        with pytest.raises(FatalResourceError):
            with Store("sqlite://").session():
                pass

    def test_shutdown_is_idempotent(self):
        store = Store("sqlite://").init()

        store.shutdown()
        store.shutdown()

        assert not store.is_initialized

    def test_ping(self):
        store = Store("sqlite://").init()
        assert store.ping() is True

        store.shutdown()
        assert store.ping() is False

    def test_drop_and_create_tables(self, store):
        drop_tables(store)
        assert inspect(store.engine).get_table_names() == []

        create_tables(store)
        assert {"subjects", "activities", "notifications"} <= set(
            inspect(store.engine).get_table_names()
        )


class TestInsertUnique:
    """Test insert-if-absent semantics."""

    def test_insert_then_exists(self, store):
        existing = select(Subject).where(Subject.identifier == "bc220401234")

        with store.session() as db:
            first = Store.insert_unique(db, _subject(), existing)
            db.commit()
            second = Store.insert_unique(db, _subject(), existing)
            db.commit()

        assert isinstance(first, Inserted)
        assert isinstance(second, AlreadyExists)
        assert second.record.id == first.record.id

    def test_lost_race_keeps_outer_transaction_usable(self, store):
        """A unique collision on flush rolls back only the savepoint."""
        with store.session() as db:
            db.add(_subject("bc220400001"))
            db.flush()

            # the pre-check misses, so the insert itself collides
            never_matches = select(Subject).where(Subject.identifier == "nobody")
            with pytest.raises(IntegrityError):
                Store.insert_unique(db, _subject("bc220400001"), never_matches)

        with store.session() as db:
            db.add(_subject("bc220400002"))
            db.flush()
            collision = select(Subject).where(Subject.identifier == "bc220400002")
            racing = _subject("bc220400002")

            # simulate a concurrent writer: the pre-check runs before the row exists
            original_scalars = db.scalars
            calls = []

            def scalars_after_first(statement):
                calls.append(statement)
                if len(calls) == 1:
                    return original_scalars(
                        select(Subject).where(Subject.identifier == "nobody")
                    )
                return original_scalars(statement)

            db.scalars = scalars_after_first
            result = Store.insert_unique(db, racing, collision)
            db.scalars = original_scalars

            assert isinstance(result, AlreadyExists)
            db.add(_subject("bc220400003"))
            db.commit()

        with store.session() as db:
            assert db.scalar(select(func.count(Subject.id))) == 2
