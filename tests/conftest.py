import os

# Console-only logging for the test session
os.environ.setdefault("LOGGING_CONFIG", "tests/no-logging-config.json")

import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

import pytest

from lms_notifier.db.models import (
    Activity,
    ActivityType,
    Notification,
    NotificationStatus,
    NotificationType,
    Subject,
)
from lms_notifier.db.store import Store
from lms_notifier.providers.delivery_channel import ChannelStatus, DeliveryChannel
from lms_notifier.schemas.collection_schemas import SubjectTarget
from lms_notifier.services.ingestion_service import compute_identity
from lms_notifier.utils.errors import DeliveryError


# Fixed "now" for deterministic scheduling tests (naive UTC)
NOW = datetime(2025, 11, 20, 9, 0, 0)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store():
    """In-memory SQLite store with all tables created."""
    test_store = Store("sqlite://", create_tables=True).init()
    yield test_store
    test_store.shutdown()


class FakeChannel(DeliveryChannel):
    """Delivery channel double that records sends and can be told to fail."""

    name = "fake"

    def __init__(self, status: ChannelStatus = ChannelStatus.READY):
        self.current_status = status
        self.sent: List[tuple] = []
        self.failing_destinations: Dict[str, Exception] = {}
        self.status_calls = 0
        self.initialized = False
        self.closed = False

    async def init(self) -> None:
        self.initialized = True

    async def shutdown(self) -> None:
        self.closed = True

    async def status(self) -> ChannelStatus:
        self.status_calls += 1
        return self.current_status

    async def send(self, destination: str, text: str) -> None:
        error = self.failing_destinations.get(destination)
        if error is not None:
            raise error
        self.sent.append((destination, text))

    def fail_for(self, destination: str, error: Optional[Exception] = None) -> None:
        self.failing_destinations[destination] = error or DeliveryError(
            f"Could not reach {destination}"
        )


class RecordingSleep:
    """Stands in for asyncio.sleep; records requested delays without waiting."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeExtractionSession:
    def __init__(
        self,
        records: Optional[List[Mapping[str, Any]]] = None,
        fail_stage: Optional[str] = None,
        raise_in_stage: Optional[str] = None,
        close_error: Optional[Exception] = None,
    ):
        self.records = records or []
        self.fail_stage = fail_stage
        self.raise_in_stage = raise_in_stage
        self.close_error = close_error
        self.calls: List[str] = []
        self.closed = False

    async def _stage(self, stage: str) -> bool:
        self.calls.append(stage)
        if self.raise_in_stage == stage:
            raise RuntimeError(f"{stage} blew up")
        return self.fail_stage != stage

    async def authenticate(self) -> bool:
        return await self._stage("authentication")

    async def navigate(self) -> bool:
        return await self._stage("navigation")

    async def extract(self) -> List[Mapping[str, Any]]:
        self.calls.append("extraction")
        if self.raise_in_stage == "extraction":
            raise RuntimeError("extraction blew up")
        return self.records

    async def close(self) -> None:
        self.closed = True
        if self.close_error:
            raise self.close_error


class FakeExtractionProvider:
    """Hands out pre-built sessions keyed by subject identifier."""

    def __init__(self, sessions: Optional[Dict[str, FakeExtractionSession]] = None):
        self.sessions = sessions or {}
        self.opened: List[str] = []

    def open_session(self, subject: SubjectTarget) -> FakeExtractionSession:
        self.opened.append(subject.identifier)
        return self.sessions.setdefault(subject.identifier, FakeExtractionSession())


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


def raw_record(
    course_code: str = "CS201",
    title: str = "Quiz 1",
    due: Optional[datetime] = None,
    start: Optional[datetime] = None,
    activity_type: str = "Quiz",
    link: str = "https://lms.example.edu/quiz/1",
) -> Dict[str, Any]:
    """Raw activity as an extraction session returns it."""
    return {
        "courseCode": course_code,
        "activityType": activity_type,
        "title": title,
        "startDate": start.isoformat() if start else None,
        "dueDate": (due or NOW + timedelta(days=3)).isoformat(),
        "link": link,
    }


# Test data factories
@pytest.fixture
def make_subject(store: Store):
    def _make_subject(
        identifier: str = "bc220401234",
        destination: str = "+92 300 1234567",
        is_active: bool = True,
    ) -> Subject:
        subject = Subject(
            id=uuid.uuid4(),
            identifier=identifier,
            credential_ref=f"vault://{identifier}",
            destination=destination,
            is_active=is_active,
        )
        with store.session() as session:
            session.add(subject)
            session.commit()
        return subject

    return _make_subject


@pytest.fixture
def make_activity(store: Store):
    def _make_activity(
        subject: Subject,
        course_code: str = "CS201",
        title: str = "Assignment 1",
        due_at: datetime = NOW + timedelta(days=5),
        start_at: Optional[datetime] = None,
    ) -> Activity:
        activity = Activity(
            id=uuid.uuid4(),
            subject_id=subject.id,
            course_code=course_code,
            activity_type=ActivityType.ASSIGNMENT,
            title=title,
            start_at=start_at,
            due_at=due_at,
            link=f"https://lms.example.edu/{course_code}/{title}",
            content_identity=compute_identity(subject.id, course_code, title, due_at),
        )
        with store.session() as session:
            session.add(activity)
            session.commit()
        return activity

    return _make_activity


@pytest.fixture
def make_notification(store: Store):
    def _make_notification(
        activity: Activity,
        scheduled_for: datetime = NOW - timedelta(minutes=5),
        notification_type: NotificationType = NotificationType.REMINDER,
        status: NotificationStatus = NotificationStatus.PENDING,
        attempts: int = 0,
    ) -> Notification:
        notification = Notification(
            id=uuid.uuid4(),
            activity_id=activity.id,
            subject_id=activity.subject_id,
            notification_type=notification_type,
            scheduled_for=scheduled_for,
            status=status,
            attempts=attempts,
        )
        with store.session() as session:
            session.add(notification)
            session.commit()
        return notification

    return _make_notification
