import pytest
import uuid
from types import SimpleNamespace

from fastapi.testclient import TestClient

from lms_notifier.config.settings import Settings
from lms_notifier.db.models import NotificationStatus
from lms_notifier.main import create_application
from lms_notifier.providers.delivery_channel import ChannelStatus
from lms_notifier.routers import collection as collection_module

from tests.conftest import FakeChannel

API = "/api/v1"


@pytest.fixture
def fake_channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def client(store, fake_channel):
    application = create_application(
        settings=Settings(DISPATCH_MESSAGE_DELAY_SECONDS=0),
        store=store,
        channel=fake_channel,
        start_dispatch=False,
    )
    with TestClient(application) as test_client:
        yield test_client


class TestHealthRouter:
    def test_health(self, client):
        response = client.get(f"{API}/health")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["status"] == "healthy"
        assert body["data"]["periodicDispatch"] is False

    def test_request_id_is_echoed(self, client):
        request_id = str(uuid.uuid4())

        response = client.get(f"{API}/health", headers={"X-Request-ID": request_id})

        assert response.headers["X-Request-ID"] == request_id
        assert response.json()["request_id"] == request_id


class TestChannelRouter:
    @pytest.mark.parametrize(
        "status,is_ready",
        [
            (ChannelStatus.READY, True),
            (ChannelStatus.AWAITING_AUTHENTICATION, False),
            (ChannelStatus.DISCONNECTED, False),
        ],
    )
    def test_channel_status(self, client, fake_channel, status, is_ready):
        fake_channel.current_status = status

        response = client.get(f"{API}/channel/status")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == status.value
        assert data["isReady"] is is_ready


class TestNotificationsRouter:
    """Test the dispatch and queue inspection endpoints."""

    def test_process_sends_due_notifications(
        self, client, fake_channel, make_subject, make_activity, make_notification
    ):
        make_notification(make_activity(make_subject()))

        response = client.post(f"{API}/notifications/process")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data == {"processed": 1, "sent": 1, "failed": 0}
        assert len(fake_channel.sent) == 1

    def test_process_with_channel_down(
        self, client, fake_channel, make_subject, make_activity, make_notification
    ):
        fake_channel.current_status = ChannelStatus.DISCONNECTED
        make_notification(make_activity(make_subject()))

        response = client.post(f"{API}/notifications/process")

        assert response.json()["data"] == {"processed": 0, "sent": 0, "failed": 0}

    def test_stats_and_retry(self, client, make_subject, make_activity, make_notification):
        subject = make_subject()
        make_notification(make_activity(subject, title="A"))
        make_notification(
            make_activity(subject, title="B"), status=NotificationStatus.FAILED, attempts=1
        )

        stats = client.get(f"{API}/notifications/stats").json()["data"]
        assert stats == {"pending": 1, "sent": 0, "failed": 1, "total": 2}

        retry = client.post(f"{API}/notifications/retry").json()["data"]
        assert retry == {"retried": 1}

        stats = client.get(f"{API}/notifications/stats").json()["data"]
        assert stats["pending"] == 2

    def test_list_notifications(self, client, make_subject, make_activity, make_notification):
        subject = make_subject()
        notification = make_notification(make_activity(subject))

        response = client.get(f"{API}/notifications", params={"status": "pending"})

        data = response.json()["data"]
        assert [item["id"] for item in data] == [str(notification.id)]
        assert data[0]["notificationType"] == "reminder"
        assert data[0]["scheduledFor"].endswith("Z")

    def test_list_rejects_unknown_status(self, client):
        response = client.get(f"{API}/notifications", params={"status": "lost"})

        assert response.status_code == 422
        assert response.json()["success"] is False


class TestCollectionRouter:
    def test_run_is_queued(self, client, monkeypatch):
        queued = []

        def fake_delay(request_id, subjects):
            queued.append((request_id, subjects))
            return SimpleNamespace(id="task-123")

        monkeypatch.setattr(
            collection_module,
            "collection_run_task",
            SimpleNamespace(delay=fake_delay),
        )

        response = client.post(
            f"{API}/collection/runs",
            json={
                "subjects": [
                    {
                        "identifier": "bc220401234",
                        "credentialRef": "vault://bc220401234",
                        "destination": "+92 300 1234567",
                    }
                ]
            },
        )

        assert response.status_code == 202
        assert response.json()["data"] == {"taskId": "task-123", "subjects": 1}
        request_id, subjects = queued[0]
        assert request_id == response.headers["X-Request-ID"]
        assert subjects[0]["identifier"] == "bc220401234"
        assert subjects[0]["credentialRef"] == "vault://bc220401234"

    def test_empty_run_is_rejected(self, client):
        response = client.post(f"{API}/collection/runs", json={"subjects": []})

        assert response.status_code == 422
