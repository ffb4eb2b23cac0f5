from datetime import datetime, time

from pytz import timezone

from sis_app.config import settings


def local_now() -> datetime:
    return datetime.now(timezone(settings.TIMEZONE))


def format_time_window(start: time, end: time) -> str:
    return f"{start.strftime('%H:%M')}-{end.strftime('%H:%M')}"
