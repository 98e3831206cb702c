import pytest
import uuid
from contextlib import asynccontextmanager

import lms_notifier.tasks.background.collection_run as collection_run_module
import lms_notifier.tasks.cron.daily_collection as daily_collection_module
import lms_notifier.tasks.cron.failed_notification_retry as retry_module
from lms_notifier.config.settings import Settings
from lms_notifier.db.models import (
    Activity,
    ActivityType,
    Notification,
    NotificationStatus,
    NotificationType,
    Subject,
)
from lms_notifier.db.store import Store
from lms_notifier.services.orchestrator import CollectionOrchestrator
from lms_notifier.services.runtime import Resources
from lms_notifier.tasks.cron.daily_collection import _get_active_subjects

from tests.conftest import (
    NOW,
    FakeChannel,
    FakeExtractionProvider,
    FakeExtractionSession,
    RecordingSleep,
    raw_record,
)


@pytest.fixture
def task_resources(store, monkeypatch):
    """Points every task module at the test store and a fake channel."""
    channel = FakeChannel()
    provider = FakeExtractionProvider()

    @asynccontextmanager
    async def fake_open_resources(settings):
        yield Resources(store=store, channel=channel)

    def fake_build_orchestrator(settings, store, channel, provider_override=None):
        return CollectionOrchestrator(
            store, channel, provider, sleep=RecordingSleep(), clock=lambda: NOW
        )

    @asynccontextmanager
    async def fake_open_store(settings):
        yield store

    for module in (collection_run_module, daily_collection_module):
        monkeypatch.setattr(module, "open_resources", fake_open_resources)
        monkeypatch.setattr(module, "build_orchestrator", fake_build_orchestrator)
    monkeypatch.setattr(retry_module, "open_store", fake_open_store)

    return channel, provider


class TestActiveSubjects:
    def test_only_active_subjects_in_identifier_order(self, store, make_subject):
        make_subject("bc220400003")
        make_subject("bc220400001")
        make_subject("bc220400002", is_active=False)

        with store.session() as db:
            targets = _get_active_subjects(db)

        assert [t.identifier for t in targets] == ["bc220400001", "bc220400003"]
        assert targets[0].credential_ref == "vault://bc220400001"


class TestCollectionTasks:
    """Test the Celery task bodies, run eagerly in-process."""

    def test_collection_run_task(self, task_resources):
        channel, provider = task_resources
        provider.sessions["bc220401234"] = FakeExtractionSession(records=[raw_record()])

        result = collection_run_module.collection_run_task(
            "req-1",
            [
                {
                    "identifier": "bc220401234",
                    "credentialRef": "vault://bc220401234",
                    "destination": "+92 300 1234567",
                }
            ],
        )

        assert result["success"] is True
        assert result["request_id"] == "req-1"
        assert result["succeeded"] == 1
        assert result["results"][0]["activitiesSaved"] == 1

    def test_daily_collection_without_subjects(self, task_resources):
        result = daily_collection_module.daily_collection_task("daily_collection_cron")

        assert result == {
            "success": True,
            "total": 0,
            "request_id": "daily_collection_cron",
        }

    def test_daily_collection_uses_active_subjects(self, task_resources, make_subject):
        channel, provider = task_resources
        make_subject("bc220400001")
        make_subject("bc220400002", is_active=False)

        result = daily_collection_module.daily_collection_task("daily_collection_cron")

        assert result["total"] == 1
        assert provider.opened == ["bc220400001"]


class TestRetryTask:
    def test_failed_notification_retry_task(
        self, task_resources, make_subject, make_activity, make_notification
    ):
        subject = make_subject()
        make_notification(
            make_activity(subject), status=NotificationStatus.FAILED, attempts=1
        )

        result = retry_module.failed_notification_retry_task(
            "failed_notification_retry_cron"
        )

        assert result == {
            "success": True,
            "retried": 1,
            "request_id": "failed_notification_retry_cron",
        }

    def test_retry_sweep_runs_without_a_delivery_channel(self, tmp_path, monkeypatch):
        """A broken channel configuration does not stop the store-only sweep."""
        database_url = f"sqlite:///{tmp_path / 'lms.db'}"
        monkeypatch.setattr(
            retry_module,
            "settings",
            Settings(
                DATABASE_URL=database_url,
                DATABASE_AUTO_CREATE=True,
                BRIDGE_BASE_URL="not a url",
            ),
        )
        seeded = Store(database_url, create_tables=True).init()
        subject = Subject(
            id=uuid.uuid4(), identifier="bc220401234", destination="+92 300 1234567"
        )
        activity = Activity(
            id=uuid.uuid4(),
            subject_id=subject.id,
            course_code="CS201",
            activity_type=ActivityType.QUIZ,
            title="Quiz 1",
            due_at=NOW,
            link="https://lms.example.edu/quiz/1",
            content_identity="quiz-1",
        )
        notification = Notification(
            id=uuid.uuid4(),
            activity_id=activity.id,
            subject_id=subject.id,
            notification_type=NotificationType.REMINDER,
            scheduled_for=NOW,
            status=NotificationStatus.FAILED,
            attempts=1,
        )
        with seeded.session() as db:
            db.add_all([subject, activity, notification])
            db.commit()

        result = retry_module.failed_notification_retry_task(
            "failed_notification_retry_cron"
        )

        assert result["success"] is True
        assert result["retried"] == 1
        with seeded.session() as db:
            assert db.get(Notification, notification.id).status == NotificationStatus.PENDING
        seeded.shutdown()
