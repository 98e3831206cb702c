from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from lms_notifier.db.models import (
    Activity,
    Notification,
    NotificationStatus,
    NotificationType,
)
from lms_notifier.db.store import Inserted, Store
from lms_notifier.utils.datetime_utils import naive_utc_now
from lms_notifier.utils.logging import get_logger

logger = get_logger()

REMINDER_LEAD = timedelta(days=1)


class NotificationScheduler:
    """Derives the start and reminder notifications for a newly stored activity."""

    def __init__(self, db_session: Session, reminder_lead: timedelta = REMINDER_LEAD):
        self.db = db_session
        self.reminder_lead = reminder_lead

    def _candidates(self, activity: Activity, now: datetime):
        if activity.start_at is not None and activity.start_at > now:
            yield NotificationType.START, activity.start_at

        reminder_at = activity.due_at - self.reminder_lead
        if reminder_at > now:
            yield NotificationType.REMINDER, reminder_at

    async def schedule_notifications(
        self, activity: Activity, now: Optional[datetime] = None
    ) -> List[Notification]:
        """
        Insert the notifications due for `activity` and return the ones created.

        A (activity, type) pair that already has a notification is left alone.
        Flushes but does not commit.
        """
        now = now or naive_utc_now()
        created: List[Notification] = []

        for notification_type, scheduled_for in self._candidates(activity, now):
            notification = Notification(
                activity_id=activity.id,
                subject_id=activity.subject_id,
                notification_type=notification_type,
                scheduled_for=scheduled_for,
                status=NotificationStatus.PENDING,
                attempts=0,
            )
            result = Store.insert_unique(
                self.db,
                notification,
                select(Notification).where(
                    and_(
                        Notification.activity_id == activity.id,
                        Notification.notification_type == notification_type,
                    )
                ),
            )
            if isinstance(result, Inserted):
                created.append(result.record)
            else:
                logger.debug(
                    f"{notification_type.value} notification already scheduled for activity {activity.id}"
                )

        if created:
            logger.info(
                f"Scheduled {len(created)} notification(s) for {activity.course_code} '{activity.title}'"
            )
        return created
