from datetime import datetime

from pydantic import BaseModel, field_validator
from typing import Optional, Union

class TopicStatusChange(BaseModel):
    status: str
    enabled: bool
    until: Optional[str] = None

class StatusUpdateSchedule(BaseModel):
    status_type: str
    time: Optional[Union[int, str]] = None
    timezone_offset: Optional[int] = None
    based_on_last_post: bool = False
    category_id: Optional[int] = None

    @field_validator("time", mode="before")
    @classmethod
    def _strip_time(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

class ReconcileRun(BaseModel):
    now: Optional[datetime] = None
