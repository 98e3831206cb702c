import asyncio
from typing import Any, Dict, List

from lms_notifier.celery import celery
from lms_notifier.config.settings import settings
from lms_notifier.schemas.collection_schemas import SubjectTarget
from lms_notifier.services.runtime import build_orchestrator, open_resources
from lms_notifier.utils.context import request_scope
from lms_notifier.utils.errors import FatalResourceError
from lms_notifier.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=300)
def collection_run_task(self, request_id: str, subjects: List[Dict[str, Any]]):
    """
    Run a collection pass over an explicit list of subjects.

    Subjects are processed one after another with the configured cool-down in
    between, so this task runs for minutes per subject.

    Args:
        request_id: The request ID of the HTTP call that queued the run
        subjects: Serialized SubjectTarget entries (identifier, credentialRef, destination)
    """
    try:
        return asyncio.run(_async_collection_run(request_id, subjects))
    except FatalResourceError as e:
        get_logger().bind(request_id=request_id).error(
            f"Collection run could not start: {e.message}"
        )
        if self.request.retries < self.max_retries:
            raise self.retry(countdown=min(2**self.request.retries * 300, 1800))
        return {"success": False, "error": e.message, "request_id": request_id}


async def _async_collection_run(request_id: str, subjects: List[Dict[str, Any]]):
    with request_scope(request_id):
        targets = [SubjectTarget.model_validate(subject) for subject in subjects]
        async with open_resources(settings) as resources:
            orchestrator = build_orchestrator(
                settings, resources.store, resources.channel
            )
            result = await orchestrator.run(targets)

        return {
            "success": True,
            "request_id": request_id,
            **result.model_dump(by_alias=True),
        }
