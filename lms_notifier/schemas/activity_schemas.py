from datetime import datetime
from typing import Optional

from pydantic import Field

from lms_notifier.db.models import ActivityType
from lms_notifier.schemas.camel_base_model import CamelCaseBaseModel as BaseModel


class RawActivity(BaseModel):
    """One validated activity snapshot as observed by an extraction session."""

    course_code: str = Field(..., min_length=1, description="Course code, e.g. CS201")
    activity_type: ActivityType = Field(
        default=ActivityType.UNKNOWN, description="Normalised activity type"
    )
    title: str = Field(default="Untitled Activity", description="Activity title")
    start_date: Optional[datetime] = Field(
        default=None, description="Opening instant, naive UTC"
    )
    due_date: datetime = Field(..., description="Due instant, naive UTC")
    link: str = Field(..., min_length=1, description="Source link")


class UpcomingActivity(BaseModel):
    course_code: str
    activity_type: ActivityType
    title: str
    due_date: datetime
    link: str
