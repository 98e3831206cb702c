from enum import Enum
from typing import List, Optional

from pydantic import Field

from lms_notifier.schemas.activity_schemas import UpcomingActivity
from lms_notifier.schemas.camel_base_model import CamelCaseBaseModel as BaseModel


class SubjectTarget(BaseModel):
    """A subject to collect for: who, how to sign in, where to deliver."""

    identifier: str = Field(..., min_length=1, description="Student identifier")
    credential_ref: Optional[str] = Field(
        default=None, description="Opaque credential reference handed to the extraction provider"
    )
    destination: str = Field(..., min_length=1, description="Message destination address")


class SubjectRunStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class SubjectResult(BaseModel):
    identifier: str
    destination: str
    status: SubjectRunStatus
    subject_active: bool = True
    error_stage: Optional[str] = None
    error: Optional[str] = None
    activities_seen: int = 0
    activities_saved: int = 0
    notifications_scheduled: int = 0
    past_activities: int = 0
    future_activities: int = 0
    upcoming: List[UpcomingActivity] = Field(default_factory=list)


class DeliveryReport(BaseModel):
    channel_available: bool = True
    attempted: int = 0
    delivered: int = 0
    failed: int = 0


class CollectionRunResult(BaseModel):
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    results: List[SubjectResult] = Field(default_factory=list)
    delivery: DeliveryReport = Field(default_factory=DeliveryReport)


class CollectionRunRequest(BaseModel):
    subjects: List[SubjectTarget] = Field(..., min_length=1)


class CollectionRunQueued(BaseModel):
    task_id: str
    subjects: int
