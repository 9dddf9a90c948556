from datetime import datetime, time
from typing import Dict, Literal, Optional

from pydantic import BaseModel


class DayHours(BaseModel):
    start: time
    end: time
    enabled: bool = True


class WorkingHoursCalendar(BaseModel):
    timezone: str
    days: Dict[str, DayHours]


DEFAULT_WORKING_HOURS = WorkingHoursCalendar(
    timezone="Africa/Cairo",
    days={
        "saturday": DayHours(start=time(9, 0), end=time(18, 0), enabled=True),
        "sunday": DayHours(start=time(9, 0), end=time(18, 0), enabled=True),
        "monday": DayHours(start=time(9, 0), end=time(18, 0), enabled=True),
        "tuesday": DayHours(start=time(9, 0), end=time(18, 0), enabled=True),
        "wednesday": DayHours(start=time(9, 0), end=time(18, 0), enabled=True),
        "thursday": DayHours(start=time(9, 0), end=time(18, 0), enabled=True),
        "friday": DayHours(start=time(9, 0), end=time(18, 0), enabled=False),
    },
)


class AvailabilityResponse(BaseModel):
    is_live_chat_available: bool
    is_ai_available: bool
    next_available_time: Optional[datetime] = None
    current_mode: Literal["LIVE", "AI"]
    message: str


class WorkingHoursResponse(BaseModel):
    timezone: str
    schedule: str
