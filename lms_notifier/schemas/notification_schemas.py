from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import Field

from lms_notifier.db.models import NotificationStatus, NotificationType
from lms_notifier.schemas.camel_base_model import CamelCaseBaseModel as BaseModel


class NotificationRead(BaseModel):
    """Inspection shape of a stored notification."""

    id: UUID = Field(..., description="Notification ID")
    activity_id: UUID = Field(..., description="Owning activity ID")
    subject_id: UUID = Field(..., description="Owning subject ID")
    notification_type: NotificationType = Field(..., description="start or reminder")
    scheduled_for: datetime = Field(..., description="Instant the notification becomes due")
    status: NotificationStatus = Field(..., description="pending, sent or failed")
    sent_at: Optional[datetime] = Field(default=None, description="Delivery instant")
    error: Optional[str] = Field(default=None, description="Last delivery error")
    attempts: int = Field(default=0, description="Failed delivery attempts")


class DispatchResult(BaseModel):
    processed: int = Field(default=0, description="Notifications taken from the queue")
    sent: int = Field(default=0, description="Notifications delivered")
    failed: int = Field(default=0, description="Notifications marked failed")


class QueueStats(BaseModel):
    pending: int = 0
    sent: int = 0
    failed: int = 0
    total: int = 0


class RetryResult(BaseModel):
    retried: int = Field(default=0, description="Failed notifications reset to pending")
