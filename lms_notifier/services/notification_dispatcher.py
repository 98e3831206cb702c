import asyncio
import threading
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.orm import Session

from lms_notifier.db.models import (
    Activity,
    Notification,
    NotificationStatus,
    Subject,
)
from lms_notifier.db.store import Store
from lms_notifier.providers.delivery_channel import DeliveryChannel, channel_is_ready
from lms_notifier.schemas.notification_schemas import (
    DispatchResult,
    NotificationRead,
    QueueStats,
)
from lms_notifier.services.message_formatter import MessageFormatter
from lms_notifier.utils.datetime_utils import naive_utc_now
from lms_notifier.utils.errors import ChannelNotReadyError, DeliveryError
from lms_notifier.utils.logging import get_logger

logger = get_logger()

INACTIVE_SUBJECT_ERROR = "inactive"


class NotificationDispatcher:
    """
    Sends due notifications through the delivery channel and records outcomes.

    Only one dispatch cycle runs at a time per dispatcher; an invocation that
    finds a cycle in progress returns zero counts without touching the queue.
    """

    def __init__(
        self,
        store: Store,
        channel: DeliveryChannel,
        formatter: Optional[MessageFormatter] = None,
        batch_size: int = 50,
        message_delay: float = 2.0,
        max_attempts: int = 3,
        send_timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = naive_utc_now,
    ):
        self.store = store
        self.channel = channel
        self.formatter = formatter or MessageFormatter()
        self.batch_size = batch_size
        self.message_delay = message_delay
        self.max_attempts = max_attempts
        self.send_timeout = send_timeout
        self._sleep = sleep
        self._clock = clock
        self._cycle_lock = threading.Lock()

    @property
    def is_processing(self) -> bool:
        return self._cycle_lock.locked()

    async def process_now(self, now: Optional[datetime] = None) -> DispatchResult:
        """Run one dispatch cycle over notifications due at `now`."""
        if not self._cycle_lock.acquire(blocking=False):
            logger.info("Dispatch cycle already running, skipping")
            return DispatchResult()
        try:
            return await self._run_cycle(now or self._clock())
        finally:
            self._cycle_lock.release()

    async def channel_ready(self) -> bool:
        return await channel_is_ready(self.channel, self.send_timeout)

    def _select_due(self, db: Session, now: datetime):
        return db.execute(
            select(Notification, Activity, Subject)
            .join(Activity, Notification.activity_id == Activity.id)
            .join(Subject, Notification.subject_id == Subject.id)
            .where(
                and_(
                    Notification.status == NotificationStatus.PENDING,
                    Notification.scheduled_for <= now,
                )
            )
            .limit(self.batch_size)
        ).all()

    async def _run_cycle(self, now: datetime) -> DispatchResult:
        with self.store.session() as db:
            due = self._select_due(db, now)
            # release the read transaction; sends can be slow and must not hold a lock
            db.commit()
            if not due:
                logger.debug("No due notifications")
                return DispatchResult()

            logger.info(f"Found {len(due)} due notification(s)")
            if not await self.channel_ready():
                logger.warning(
                    "Delivery channel not ready, leaving due notifications pending"
                )
                return DispatchResult()

            result = DispatchResult()
            for notification, activity, subject in due:
                if not subject.is_active:
                    logger.info(
                        f"Subject {subject.identifier} is inactive, failing notification {notification.id}"
                    )
                    self._mark_failed(notification, INACTIVE_SUBJECT_ERROR)
                    db.commit()
                    result.processed += 1
                    result.failed += 1
                    continue

                text = self.formatter.format_notification(
                    notification.notification_type,
                    activity.course_code,
                    activity.activity_type,
                    activity.title,
                    activity.due_at,
                    activity.link,
                    now=self._clock(),
                )
                try:
                    await asyncio.wait_for(
                        self.channel.send(subject.destination, text),
                        timeout=self.send_timeout,
                    )
                except ChannelNotReadyError as e:
                    logger.warning(
                        f"Delivery channel stopped accepting messages: {e.message}; "
                        "remaining notifications stay pending"
                    )
                    break
                except asyncio.TimeoutError:
                    self._mark_failed(
                        notification, f"Delivery timed out after {self.send_timeout}s"
                    )
                    result.failed += 1
                except DeliveryError as e:
                    self._mark_failed(notification, e.message)
                    result.failed += 1
                except Exception as e:
                    logger.exception(f"Unexpected error delivering {notification.id}")
                    self._mark_failed(notification, str(e) or type(e).__name__)
                    result.failed += 1
                else:
                    notification.status = NotificationStatus.SENT
                    notification.sent_at = self._clock()
                    notification.error = None
                    result.sent += 1
                    logger.info(
                        f"Sent {notification.notification_type.value} notification to {subject.identifier}"
                    )

                db.commit()
                result.processed += 1
                await self._sleep(self.message_delay)

        logger.info(
            f"Dispatch cycle complete: {result.processed} processed, "
            f"{result.sent} sent, {result.failed} failed"
        )
        return result

    @staticmethod
    def _mark_failed(notification: Notification, error: str) -> None:
        notification.status = NotificationStatus.FAILED
        notification.error = error
        notification.attempts = (notification.attempts or 0) + 1
        logger.warning(
            f"Notification {notification.id} failed (attempt {notification.attempts}): {error}"
        )

    async def retry_failed(self, now: Optional[datetime] = None) -> int:
        return retry_failed_notifications(
            self.store, self.max_attempts, now or self._clock()
        )

    async def queue_stats(self) -> QueueStats:
        with self.store.session() as db:
            counts = dict(
                db.execute(
                    select(Notification.status, func.count(Notification.id)).group_by(
                        Notification.status
                    )
                ).all()
            )

        stats = QueueStats(
            pending=counts.get(NotificationStatus.PENDING, 0),
            sent=counts.get(NotificationStatus.SENT, 0),
            failed=counts.get(NotificationStatus.FAILED, 0),
        )
        stats.total = stats.pending + stats.sent + stats.failed
        return stats

    async def list_notifications(
        self, status: Optional[NotificationStatus] = None, limit: int = 50
    ) -> List[NotificationRead]:
        with self.store.session() as db:
            stmt = select(Notification).order_by(Notification.scheduled_for.desc())
            if status is not None:
                stmt = stmt.where(Notification.status == status)
            notifications = db.scalars(stmt.limit(limit)).all()
            return [NotificationRead.model_validate(n) for n in notifications]


def retry_failed_notifications(store: Store, max_attempts: int, now: datetime) -> int:
    """
    Put failed notifications with attempts left back to pending.

    Attempts are left as they are, so a notification that has failed
    `max_attempts` times is never selected again. Only the store is needed;
    the delivery channel plays no part in the sweep.
    """
    with store.session() as db:
        retried = db.execute(
            update(Notification)
            .where(
                and_(
                    Notification.status == NotificationStatus.FAILED,
                    Notification.attempts < max_attempts,
                    Notification.scheduled_for <= now,
                )
            )
            .values(status=NotificationStatus.PENDING)
            .execution_options(synchronize_session=False)
        ).rowcount
        db.commit()

    logger.info(f"Retry sweep reset {retried} failed notification(s) to pending")
    return retried
