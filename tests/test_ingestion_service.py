import pytest
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from lms_notifier.db.models import Activity, ActivityType
from lms_notifier.db.store import Store
from lms_notifier.schemas.activity_schemas import RawActivity
from lms_notifier.services.ingestion_service import (
    ActivityIngestionService,
    Created,
    Skipped,
    SkipReason,
    compute_identity,
)

from tests.conftest import NOW


def _raw(title: str = "Quiz 1", due_at: datetime = NOW + timedelta(days=3)) -> RawActivity:
    return RawActivity(
        course_code="CS201",
        activity_type=ActivityType.QUIZ,
        title=title,
        due_date=due_at,
        link="https://lms.example.edu/quiz/1",
    )


def _count_activities(store: Store) -> int:
    with store.session() as db:
        return db.scalar(select(func.count(Activity.id)))


class TestContentIdentity:
    """Test content identity derivation."""

    def test_identity_is_deterministic(self):
        """Same subject, course, title and due instant give the same identity."""
        subject_id = uuid.uuid4()
        due = datetime(2025, 12, 10, 23, 59)

        first = compute_identity(subject_id, "CS201", "Quiz 1", due)
        second = compute_identity(subject_id, "CS201", "Quiz 1", due)

        assert first == second
        assert len(first) == 64

    def test_identity_ignores_timezone_representation(self):
        """An aware instant and its naive UTC form share an identity."""
        subject_id = uuid.uuid4()
        naive = datetime(2025, 12, 10, 18, 59)
        aware = datetime(2025, 12, 10, 23, 59, tzinfo=timezone(timedelta(hours=5)))

        assert compute_identity(subject_id, "CS201", "Quiz 1", naive) == compute_identity(
            subject_id, "CS201", "Quiz 1", aware
        )

    def test_identity_differs_per_field(self):
        """Changing any identity field changes the identity."""
        subject_id = uuid.uuid4()
        due = datetime(2025, 12, 10, 23, 59)
        base = compute_identity(subject_id, "CS201", "Quiz 1", due)

        assert compute_identity(uuid.uuid4(), "CS201", "Quiz 1", due) != base
        assert compute_identity(subject_id, "CS301", "Quiz 1", due) != base
        assert compute_identity(subject_id, "CS201", "Quiz 2", due) != base
        assert compute_identity(subject_id, "CS201", "Quiz 1", due + timedelta(minutes=1)) != base


class TestIngest:
    """Test idempotent activity ingestion."""

    @pytest.mark.asyncio
    async def test_new_activity_is_created(self, store: Store, make_subject):
        """A future activity that is not stored yet is inserted."""
        subject = make_subject()

        with store.session() as db:
            result = await ActivityIngestionService(db).ingest(subject.id, _raw(), NOW)
            db.commit()

        assert isinstance(result, Created)
        assert result.activity.id is not None
        assert result.activity.course_code == "CS201"
        assert result.activity.due_at == NOW + timedelta(days=3)
        assert _count_activities(store) == 1

    @pytest.mark.asyncio
    async def test_same_activity_twice_is_duplicate(self, store: Store, make_subject):
        """Ingesting the same observation again returns the stored record."""
        subject = make_subject()

        with store.session() as db:
            service = ActivityIngestionService(db)
            first = await service.ingest(subject.id, _raw(), NOW)
            db.commit()
            second = await service.ingest(subject.id, _raw(), NOW)
            db.commit()

        assert isinstance(first, Created)
        assert isinstance(second, Skipped)
        assert second.reason == SkipReason.DUPLICATE
        assert second.activity.id == first.activity.id
        assert _count_activities(store) == 1

    @pytest.mark.asyncio
    async def test_duplicate_across_sessions(self, store: Store, make_subject):
        """Re-observing in a later session does not add a row."""
        subject = make_subject()

        for _ in range(3):
            with store.session() as db:
                await ActivityIngestionService(db).ingest(subject.id, _raw(), NOW)
                db.commit()

        assert _count_activities(store) == 1

    @pytest.mark.asyncio
    async def test_past_activity_is_skipped(self, store: Store, make_subject):
        """An activity already past due is never stored."""
        subject = make_subject()

        with store.session() as db:
            result = await ActivityIngestionService(db).ingest(
                subject.id, _raw(due_at=NOW - timedelta(minutes=1)), NOW
            )
            db.commit()

        assert isinstance(result, Skipped)
        assert result.reason == SkipReason.PAST
        assert result.activity is None
        assert _count_activities(store) == 0

    @pytest.mark.asyncio
    async def test_activity_due_exactly_now_is_kept(self, store: Store, make_subject):
        """Due equal to now is not past."""
        subject = make_subject()

        with store.session() as db:
            result = await ActivityIngestionService(db).ingest(
                subject.id, _raw(due_at=NOW), NOW
            )
            db.commit()

        assert isinstance(result, Created)

    @pytest.mark.asyncio
    async def test_same_content_for_two_subjects(self, store: Store, make_subject):
        """Identity is per subject, so two subjects each get a record."""
        first_subject = make_subject("bc220401234")
        second_subject = make_subject("bc220409999", destination="+92 300 7654321")

        with store.session() as db:
            service = ActivityIngestionService(db)
            first = await service.ingest(first_subject.id, _raw(), NOW)
            second = await service.ingest(second_subject.id, _raw(), NOW)
            db.commit()

        assert isinstance(first, Created)
        assert isinstance(second, Created)
        assert _count_activities(store) == 2
