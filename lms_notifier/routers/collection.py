from fastapi import APIRouter, Request, status

from lms_notifier.schemas.collection_schemas import (
    CollectionRunQueued,
    CollectionRunRequest,
)
from lms_notifier.tasks import collection_run_task
from lms_notifier.utils.logging import get_logger
from lms_notifier.utils.responses import ResponseBuilder

collection_router = APIRouter()
logger = get_logger()


@collection_router.post("/runs")
async def queue_collection_run(request: Request, payload: CollectionRunRequest):
    """Queue a collection run over the given subjects on the Celery worker."""
    subjects = [subject.model_dump(by_alias=True) for subject in payload.subjects]
    task = collection_run_task.delay(request.state.request_id, subjects)  # type: ignore
    logger.info(f"Queued collection run {task.id} for {len(subjects)} subject(s)")

    return ResponseBuilder.success(
        request=request,
        data=CollectionRunQueued(task_id=task.id, subjects=len(subjects)).model_dump(
            by_alias=True
        ),
        message="Collection run queued",
        status_code=status.HTTP_202_ACCEPTED,
    )
