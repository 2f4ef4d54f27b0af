from __future__ import annotations

import uuid
from datetime import datetime, time, timedelta, timezone

# (days from now, summary prefix)
REVIEW_SCHEDULE: list[tuple[int, str]] = [(1, "Review 1"), (3, "Review 2"), (7, "Review 3")]
REVIEW_HOUR = 10
REVIEW_DURATION = timedelta(minutes=30)

_UID_NAMESPACE = uuid.UUID("6f1c1f52-3c1e-4c55-9a51-6a1f0d6f8a11")


def _utc_stamp(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def _escape(text: str) -> str:
    return (
        text.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def _review_start(now: datetime, days: int) -> datetime:
    if now.tzinfo is None:
        return datetime.combine(now.date() + timedelta(days=days), time(REVIEW_HOUR)).astimezone()
    return (now + timedelta(days=days)).replace(hour=REVIEW_HOUR, minute=0, second=0, microsecond=0)


def generate_ics(topic: str, now: datetime | None = None) -> str:
    """
    Build a spaced-repetition calendar: three reviews at +1, +3 and +7 days,
    each at 10:00 local time for 30 minutes, with a display alarm 15 minutes
    before. A naive `now` is local wall-clock time, and each review date gets
    the offset in force on that date. An aware `now` keeps its own zone.
    """
    now = now or datetime.now()
    summary_topic = _escape(topic)

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//AI-Lesson-Generator//EN",
        "CALSCALE:GREGORIAN",
    ]
    for days, title in REVIEW_SCHEDULE:
        start = _review_start(now, days)
        end = start + REVIEW_DURATION
        uid = uuid.uuid5(_UID_NAMESPACE, f"{topic}|{_utc_stamp(start)}")
        lines.extend(
            [
                "BEGIN:VEVENT",
                f"UID:{uid}@wikilesson",
                f"DTSTAMP:{_utc_stamp(now)}",
                f"DTSTART:{_utc_stamp(start)}",
                f"DTEND:{_utc_stamp(end)}",
                f"SUMMARY:{title}: {summary_topic}",
                f"DESCRIPTION:Spaced repetition review for optimal retention. Review your notes on: {summary_topic}",
                "BEGIN:VALARM",
                "TRIGGER:-PT15M",
                "ACTION:DISPLAY",
                "DESCRIPTION:Review reminder",
                "END:VALARM",
                "END:VEVENT",
            ]
        )
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"
