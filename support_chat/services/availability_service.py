"""Working-hours availability for live agents.

Everything here is a pure function of a calendar and an instant; callers
re-evaluate on their own poll interval.
"""

from datetime import datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from support_chat.schemas.availability import AvailabilityResponse, DayHours, WorkingHoursCalendar

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

# Display order of the storefront week.
DISPLAY_ORDER = ["saturday", "sunday", "monday", "tuesday", "wednesday", "thursday", "friday"]

ARABIC_DAY_NAMES = {
    "saturday": "السبت",
    "sunday": "الأحد",
    "monday": "الاثنين",
    "tuesday": "الثلاثاء",
    "wednesday": "الأربعاء",
    "thursday": "الخميس",
    "friday": "الجمعة",
}

# Today plus one full week, so a calendar with a single enabled day always
# finds its next occurrence.
LOOKAHEAD_DAYS = 8

MSG_LIVE_AVAILABLE = {
    "en": "Our live agents are available now",
    "ar": "وكلاؤنا المباشرون متاحون الآن",
}
MSG_OFFLINE = {
    "en": "Our live agents are currently offline. Please leave a message or chat with our AI Assistant.",
    "ar": "وكلاؤنا المباشرون غير متاحين حالياً. يرجى ترك رسالة أو التحدث مع مساعدنا الذكي.",
}
MSG_OFFLINE_UNTIL = {
    "en": " They will be available {when}",
    "ar": " سيكونون متاحين {when}",
}


def _localize(now: datetime, calendar: WorkingHoursCalendar) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(calendar.timezone))


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def _day_config(calendar: WorkingHoursCalendar, day_name: str) -> Optional[DayHours]:
    return calendar.days.get(day_name)


def day_name(moment: datetime) -> str:
    return WEEKDAYS[moment.weekday()]


def is_available(calendar: WorkingHoursCalendar, now: datetime) -> bool:
    """True when ``now`` falls inside today's window (both ends inclusive)."""
    local = _localize(now, calendar)
    config = _day_config(calendar, day_name(local))
    if config is None or not config.enabled:
        return False

    current = _minutes(local.time())
    return _minutes(config.start) <= current <= _minutes(config.end)


def next_available(calendar: WorkingHoursCalendar, now: datetime) -> Optional[datetime]:
    """When live agents are next on duty.

    Returns ``now`` if today is enabled and its window has not ended yet,
    otherwise the start of the next enabled day in the calendar's zone.
    ``None`` when no day is enabled.
    """
    local = _localize(now, calendar)
    zone = ZoneInfo(calendar.timezone)

    for offset in range(LOOKAHEAD_DAYS):
        check_date = local.date() + timedelta(days=offset)
        config = _day_config(calendar, WEEKDAYS[check_date.weekday()])
        if config is None or not config.enabled:
            continue

        if offset == 0:
            if _minutes(local.time()) < _minutes(config.end):
                return now
            continue

        return datetime.combine(check_date, config.start, tzinfo=zone)

    return None


def _display_day(name: str, language: str) -> str:
    if language == "ar":
        return ARABIC_DAY_NAMES.get(name, name)
    return name.capitalize()


def format_next_available(moment: datetime, calendar: WorkingHoursCalendar, language: str = "en") -> str:
    local = _localize(moment, calendar)
    return f"{_display_day(day_name(local), language)} {local.strftime('%H:%M')}"


def get_chat_availability(
    calendar: WorkingHoursCalendar,
    now: datetime,
    language: str = "en",
) -> AvailabilityResponse:
    """Availability summary for the chat widget. The AI assistant is always on."""
    language = language if language in MSG_OFFLINE else "en"
    live = is_available(calendar, now)
    upcoming = next_available(calendar, now)

    if live:
        message = MSG_LIVE_AVAILABLE[language]
    else:
        message = MSG_OFFLINE[language]
        if upcoming is not None:
            when = format_next_available(upcoming, calendar, language)
            message += MSG_OFFLINE_UNTIL[language].format(when=when)

    return AvailabilityResponse(
        is_live_chat_available=live,
        is_ai_available=True,
        next_available_time=upcoming,
        current_mode="LIVE" if live else "AI",
        message=message,
    )


def format_working_hours(calendar: WorkingHoursCalendar, language: str = "en") -> str:
    """One ``Day: HH:MM - HH:MM`` line per enabled day."""
    lines = []
    for name in DISPLAY_ORDER:
        config = _day_config(calendar, name)
        if config is None or not config.enabled:
            continue
        lines.append(f"{_display_day(name, language)}: {config.start.strftime('%H:%M')} - {config.end.strftime('%H:%M')}")
    return "\n".join(lines)
