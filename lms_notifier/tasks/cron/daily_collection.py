import asyncio
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from lms_notifier.celery import celery
from lms_notifier.config.settings import settings
from lms_notifier.db.models import Subject
from lms_notifier.schemas.collection_schemas import SubjectTarget
from lms_notifier.services.runtime import build_orchestrator, open_resources
from lms_notifier.utils.context import request_scope
from lms_notifier.utils.errors import FatalResourceError
from lms_notifier.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=300)
def daily_collection_task(self, request_id: str):
    """
    Daily collection pass over every active subject in the store.

    Args:
        request_id: Request ID for tracking purposes (set by the beat schedule)
    """
    try:
        return asyncio.run(_async_daily_collection(request_id))
    except FatalResourceError as e:
        get_logger().bind(request_id=request_id).error(
            f"Daily collection could not start: {e.message}"
        )
        if self.request.retries < self.max_retries:
            raise self.retry(countdown=min(2**self.request.retries * 300, 1800))
        return {"success": False, "error": e.message, "request_id": request_id}


def _get_active_subjects(db_session: Session) -> List[SubjectTarget]:
    subjects = db_session.scalars(
        select(Subject)
        .where(Subject.is_active.is_(True))
        .order_by(Subject.identifier)
    ).all()
    return [
        SubjectTarget(
            identifier=subject.identifier,
            credential_ref=subject.credential_ref,
            destination=subject.destination,
        )
        for subject in subjects
    ]


async def _async_daily_collection(request_id: str):
    with request_scope(request_id):
        logger = get_logger()
        async with open_resources(settings) as resources:
            with resources.store.session() as db_session:
                targets = _get_active_subjects(db_session)

            if not targets:
                logger.info("No active subjects to collect for")
                return {"success": True, "total": 0, "request_id": request_id}

            orchestrator = build_orchestrator(
                settings, resources.store, resources.channel
            )
            result = await orchestrator.run(targets)

        return {
            "success": True,
            "request_id": request_id,
            **result.model_dump(by_alias=True),
        }
