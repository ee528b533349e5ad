"""Request bodies for the stream API"""

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, Field


class ScheduleUpdate(BaseModel):
    """New schedule of a stream."""

    schedule_type: str = Field(..., description="once, daily or weekly")
    schedule_time: Optional[datetime] = Field(None, description="Instant of a once-type stream")
    recurring_time: Optional[str] = Field(None, description="HH:MM in the reference timezone")
    schedule_days: Optional[list[Union[int, str]]] = Field(None, description="Weekdays, 0=Sunday")
    recurring_enabled: bool = True
    duration_minutes: Optional[int] = Field(None, ge=0)
