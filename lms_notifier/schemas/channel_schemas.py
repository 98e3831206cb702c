from pydantic import Field

from lms_notifier.providers.delivery_channel import ChannelStatus
from lms_notifier.schemas.camel_base_model import CamelCaseBaseModel as BaseModel


class ChannelStatusRead(BaseModel):
    status: ChannelStatus = Field(..., description="ready, awaiting-authentication or disconnected")
    is_ready: bool = Field(..., description="Whether messages can be sent now")
    message: str = Field(..., description="Human-readable status")
