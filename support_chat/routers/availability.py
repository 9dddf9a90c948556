from datetime import datetime, timezone

from fastapi import APIRouter

from support_chat.config import settings
from support_chat.schemas.availability import AvailabilityResponse, WorkingHoursResponse
from support_chat.services.availability_service import format_working_hours, get_chat_availability
from support_chat.services.intent_service import normalize_language

router = APIRouter()


def _now() -> datetime:
    return datetime.now(timezone.utc)


@router.get("/availability", response_model=AvailabilityResponse)
def get_availability(language: str = "en"):
    """Whether live agents are on duty right now, and when they are next."""
    return get_chat_availability(settings.working_hours, _now(), normalize_language(language))


@router.get("/working-hours", response_model=WorkingHoursResponse)
def get_working_hours(language: str = "en"):
    calendar = settings.working_hours
    return WorkingHoursResponse(
        timezone=calendar.timezone,
        schedule=format_working_hours(calendar, normalize_language(language)),
    )
