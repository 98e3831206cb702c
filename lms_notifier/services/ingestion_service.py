import hashlib
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from lms_notifier.db.models import Activity
from lms_notifier.db.store import Inserted, Store
from lms_notifier.schemas.activity_schemas import RawActivity
from lms_notifier.utils.datetime_utils import naive_utc_now, to_naive_utc
from lms_notifier.utils.logging import get_logger

logger = get_logger()


class SkipReason(str, Enum):
    PAST = "past"
    DUPLICATE = "duplicate"


@dataclass
class Created:
    activity: Activity


@dataclass
class Skipped:
    reason: SkipReason
    activity: Optional[Activity] = None


IngestionResult = Union[Created, Skipped]


def compute_identity(
    subject_id: Union[uuid.UUID, str], course_code: str, title: str, due_at: datetime
) -> str:
    """
    Content identity of an activity: hex SHA-256 over subject, course, title
    and due instant (naive UTC, ISO format) joined by "|".
    """
    payload = "|".join(
        [str(subject_id), course_code, title, to_naive_utc(due_at).isoformat()]
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ActivityIngestionService:
    """Idempotent insert of observed activities, keyed by content identity."""

    def __init__(self, db_session: Session):
        self.db = db_session

    async def ingest(
        self,
        subject_id: uuid.UUID,
        raw_activity: RawActivity,
        now: Optional[datetime] = None,
    ) -> IngestionResult:
        """
        Persist `raw_activity` for the subject unless it is already past due or
        already stored.

        Flushes but does not commit; the caller owns the transaction.
        """
        now = now or naive_utc_now()
        due_at = to_naive_utc(raw_activity.due_date)
        if due_at < now:
            logger.debug(
                f"Skipping past activity {raw_activity.course_code} '{raw_activity.title}' due {due_at}"
            )
            return Skipped(SkipReason.PAST)

        identity = compute_identity(
            subject_id, raw_activity.course_code, raw_activity.title, due_at
        )
        activity = Activity(
            subject_id=subject_id,
            course_code=raw_activity.course_code,
            activity_type=raw_activity.activity_type,
            title=raw_activity.title,
            start_at=(
                to_naive_utc(raw_activity.start_date) if raw_activity.start_date else None
            ),
            due_at=due_at,
            link=raw_activity.link,
            content_identity=identity,
        )

        result = Store.insert_unique(
            self.db,
            activity,
            select(Activity).where(Activity.content_identity == identity),
        )
        if isinstance(result, Inserted):
            logger.debug(f"Saved activity {activity.course_code} '{activity.title}'")
            return Created(result.record)

        logger.debug(
            f"Activity {raw_activity.course_code} '{raw_activity.title}' already stored"
        )
        return Skipped(SkipReason.DUPLICATE, result.record)
