import importlib
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, runtime_checkable

from pydantic import ValidationError as PydanticValidationError

from lms_notifier.db.models import ActivityType
from lms_notifier.schemas.activity_schemas import RawActivity
from lms_notifier.schemas.collection_schemas import SubjectTarget
from lms_notifier.utils.datetime_utils import parse_instant
from lms_notifier.utils.errors import ValidationError
from lms_notifier.utils.logging import get_logger

logger = get_logger()


@runtime_checkable
class ExtractionSession(Protocol):
    """
    One signed-in session against the source system for a single subject.

    `authenticate` and `navigate` report failure by returning False or raising.
    `extract` returns raw activity records as mappings with the keys
    courseCode, activityType, title, startDate, dueDate and link.
    """

    async def authenticate(self) -> bool: ...

    async def navigate(self) -> bool: ...

    async def extract(self) -> List[Mapping[str, Any]]: ...

    async def close(self) -> None: ...


@runtime_checkable
class ExtractionProvider(Protocol):
    """Opens one extraction session per subject."""

    def open_session(self, subject: SubjectTarget) -> ExtractionSession: ...


SOURCE_TYPE_LABELS: Dict[str, ActivityType] = {
    "assignment": ActivityType.ASSIGNMENT,
    "quiz": ActivityType.QUIZ,
    "quiz result": ActivityType.QUIZ_RESULT,
    "gdb": ActivityType.DISCUSSION_BOARD,
    "graded discussion board": ActivityType.DISCUSSION_BOARD,
    "discussion board": ActivityType.DISCUSSION_BOARD,
    "gdb result": ActivityType.DISCUSSION_BOARD_RESULT,
    "discussion board result": ActivityType.DISCUSSION_BOARD_RESULT,
    "pending fee": ActivityType.PENDING_FEE,
    "fee": ActivityType.PENDING_FEE,
    "practical": ActivityType.PRACTICAL,
}


def normalize_activity_type(label: Optional[str]) -> ActivityType:
    """Map a source label ("GDB Result", "quiz-result", ...) onto ActivityType."""
    if not label:
        return ActivityType.UNKNOWN
    key = " ".join(str(label).replace("-", " ").replace("_", " ").lower().split())
    if key in SOURCE_TYPE_LABELS:
        return SOURCE_TYPE_LABELS[key]
    try:
        return ActivityType(key.replace(" ", "-"))
    except ValueError:
        return ActivityType.UNKNOWN


def _field(record: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        value = record.get(name)
        if value not in (None, ""):
            return value
    return None


def validate_activity(record: Mapping[str, Any]) -> RawActivity:
    """
    Turn one raw record into a RawActivity.

    Raises ValidationError when the course code, link or due date is missing or
    unusable. Missing title and type fall back to defaults.
    """
    course_code = _field(record, "courseCode", "course_code")
    link = _field(record, "link")
    if not course_code or not str(course_code).strip():
        raise ValidationError("Activity is missing a course code")
    if not link or not str(link).strip():
        raise ValidationError(f"Activity for {course_code} is missing a link")

    try:
        due_date = parse_instant(_field(record, "dueDate", "due_date"))
        start_date = parse_instant(_field(record, "startDate", "start_date"))
    except ValueError as e:
        raise ValidationError(f"Activity for {course_code} has a bad date: {e}") from e
    if due_date is None:
        raise ValidationError(f"Activity for {course_code} is missing a due date")

    title = _field(record, "title")
    try:
        return RawActivity(
            course_code=str(course_code).strip().upper(),
            activity_type=normalize_activity_type(
                _field(record, "activityType", "activity_type")
            ),
            title=str(title).strip() if title else "Untitled Activity",
            start_date=start_date,
            due_date=due_date,
            link=str(link).strip(),
        )
    except PydanticValidationError as e:
        raise ValidationError(f"Activity for {course_code} is malformed: {e}") from e


def validate_activities(records: Iterable[Mapping[str, Any]]) -> List[RawActivity]:
    """Validate a batch of raw records, dropping (and logging) the invalid ones."""
    valid: List[RawActivity] = []
    dropped = 0
    for record in records or []:
        try:
            valid.append(validate_activity(record))
        except ValidationError as e:
            dropped += 1
            logger.warning(f"Dropped raw activity: {e.message}")

    if dropped:
        logger.info(f"Validated activities: {len(valid)} kept, {dropped} dropped")
    return valid


def load_extraction_provider(dotted_path: Optional[str]) -> ExtractionProvider:
    """
    Import and build the provider named by `module.path:factory`.

    The factory is called without arguments and must return an object with an
    `open_session(subject)` method.
    """
    if not dotted_path:
        raise ValueError("EXTRACTION_PROVIDER is not configured")

    module_name, _, attribute = dotted_path.partition(":")
    if not attribute:
        module_name, _, attribute = dotted_path.rpartition(".")
    if not module_name or not attribute:
        raise ValueError(f"Invalid extraction provider path: {dotted_path}")

    factory = getattr(importlib.import_module(module_name), attribute)
    if isinstance(factory, type) or not isinstance(factory, ExtractionProvider):
        provider = factory()
    else:
        provider = factory
    if not isinstance(provider, ExtractionProvider):
        raise ValueError(f"{dotted_path} did not produce an extraction provider")
    return provider
