"""
Business calendar - measures elapsed time through a professional's open hours.

Weekly availability segments (weekday 0 = Sunday) are interpreted in the
configured calendar timezone; blackout intervals are absolute instants.
A professional without availability rows is treated as always open.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.config import settings
from app.features.service_metrics.domain.models import (
    MINUTES_PER_DAY,
    AvailabilitySegment,
    UnavailabilityInterval,
)
from app.features.service_metrics.domain.normalize import is_number, normalize_timestamp
from app.infrastructure.observability.logging import get_logger

from .repository import CalendarRepository

logger = get_logger(__name__)

_TIME_PATTERN = re.compile(r"^(\d{1,2})(?::(\d{1,2}))?")

DaySegments = tuple[tuple[int, int], ...]


def parse_time_to_minutes(value) -> int | None:
    """Minutes after midnight from a TIME column, interval, integer or 'HH:MM' string."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, time):
        return value.hour * 60 + value.minute
    if isinstance(value, timedelta):
        total = int(value.total_seconds() // 60)
    elif is_number(value):
        total = round(value)
    elif isinstance(value, str):
        match = _TIME_PATTERN.match(value.strip())
        if not match:
            return None
        total = int(match.group(1)) * 60 + int(match.group(2) or 0)
    else:
        return None
    return max(0, min(total, MINUTES_PER_DAY))


def merge_segments(segments: Iterable[tuple[int, int]]) -> DaySegments:
    """Coalesce overlapping or adjacent (start, end) minute ranges."""
    merged: list[list[int]] = []
    for start, end in sorted(segments):
        if merged and start <= merged[-1][1]:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])
    return tuple((start, end) for start, end in merged)


def merge_intervals(intervals: Iterable[UnavailabilityInterval]) -> list[UnavailabilityInterval]:
    merged: list[UnavailabilityInterval] = []
    for interval in sorted(intervals, key=lambda item: item.start):
        if merged and interval.start <= merged[-1].end:
            last = merged[-1]
            if interval.end > last.end:
                merged[-1] = UnavailabilityInterval(start=last.start, end=interval.end)
        else:
            merged.append(interval)
    return merged


def sunday_based_weekday(day: date) -> int:
    return (day.weekday() + 1) % 7


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


ALWAYS_OPEN: tuple[DaySegments, ...] = tuple(((0, MINUTES_PER_DAY),) for _ in range(7))


@dataclass(slots=True)
class BusinessCalendar:
    availability: tuple[DaySegments, ...] = ALWAYS_OPEN
    unavailable: list[UnavailabilityInterval] = field(default_factory=list)
    timezone: tzinfo = UTC
    is_default: bool = True

    @classmethod
    def always_open(cls, timezone: tzinfo = UTC) -> BusinessCalendar:
        return cls(timezone=timezone)

    @classmethod
    def from_segments(
        cls,
        segments: Iterable[AvailabilitySegment],
        unavailable: Iterable[UnavailabilityInterval] = (),
        timezone: tzinfo = UTC,
    ) -> BusinessCalendar:
        per_day: list[list[tuple[int, int]]] = [[] for _ in range(7)]
        for segment in segments:
            per_day[segment.weekday].append((segment.start_minute, segment.end_minute))

        blackouts = merge_intervals(
            UnavailabilityInterval(start=_as_utc(item.start), end=_as_utc(item.end))
            for item in unavailable
        )
        if not any(per_day):
            return cls(unavailable=blackouts, timezone=timezone, is_default=True)

        return cls(
            availability=tuple(merge_segments(day) for day in per_day),
            unavailable=blackouts,
            timezone=timezone,
            is_default=False,
        )

    def elapsed_business_minutes(self, start: datetime, end: datetime) -> float:
        """Minutes of [start, end) that fall inside open hours and outside blackouts."""
        start_utc = _as_utc(start)
        end_utc = _as_utc(end)
        if end_utc <= start_utc:
            return 0.0

        first_day = start_utc.astimezone(self.timezone).date()
        last_day = end_utc.astimezone(self.timezone).date()

        total = 0.0
        day = first_day
        while day <= last_day:
            midnight = datetime.combine(day, time(), tzinfo=self.timezone)
            for start_minute, end_minute in self.availability[sunday_based_weekday(day)]:
                segment_start = (midnight + timedelta(minutes=start_minute)).astimezone(UTC)
                segment_end = (midnight + timedelta(minutes=end_minute)).astimezone(UTC)
                window_start = max(segment_start, start_utc)
                window_end = min(segment_end, end_utc)
                if window_end <= window_start:
                    continue

                minutes = (window_end - window_start).total_seconds() / 60
                for blocked in self.unavailable:
                    overlap_start = max(blocked.start, window_start)
                    overlap_end = min(blocked.end, window_end)
                    if overlap_end > overlap_start:
                        minutes -= (overlap_end - overlap_start).total_seconds() / 60
                if minutes > 0:
                    total += minutes
            day += timedelta(days=1)

        return max(0.0, total)


def elapsed_business_minutes(calendar: BusinessCalendar, start: datetime, end: datetime) -> float:
    return calendar.elapsed_business_minutes(start, end)


def resolve_timezone(name: str | None) -> tzinfo:
    if not name or name.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown calendar timezone, using UTC", timezone=name)
        return UTC


class BusinessCalendarService:
    """Loads calendars; store failures degrade to the always-open default."""

    async def load(self, professional_id) -> BusinessCalendar:
        timezone = resolve_timezone(settings.CALENDAR_TIMEZONE)
        if professional_id is None or professional_id == "":
            return BusinessCalendar.always_open(timezone)

        availability_rows, unavailability_rows = await asyncio.gather(
            self._read(CalendarRepository.fetch_availability_rows, professional_id, "availability"),
            self._read(
                CalendarRepository.fetch_unavailability_rows, professional_id, "unavailability"
            ),
        )

        segments = [
            segment
            for segment in (self._row_to_segment(row) for row in availability_rows)
            if segment is not None
        ]
        blackouts = [
            interval
            for interval in (self._row_to_interval(row) for row in unavailability_rows)
            if interval is not None
        ]
        calendar = BusinessCalendar.from_segments(segments, blackouts, timezone)

        logger.debug(
            "Professional calendar loaded",
            professional_id=professional_id,
            segment_count=len(segments),
            blackout_count=len(calendar.unavailable),
            default_calendar=calendar.is_default,
        )
        return calendar

    async def _read(self, fetch, professional_id, label: str) -> list[dict]:
        try:
            return await fetch(professional_id)
        except Exception as exc:
            logger.warning(
                "Calendar query failed, using default",
                professional_id=professional_id,
                query=label,
                error=str(exc),
            )
            return []

    @staticmethod
    def _row_to_segment(row: dict) -> AvailabilitySegment | None:
        try:
            weekday = int(row.get("day_of_week"))
        except (TypeError, ValueError):
            return None
        start_minute = parse_time_to_minutes(row.get("start_time"))
        end_minute = parse_time_to_minutes(row.get("end_time"))
        if start_minute is None or end_minute is None:
            return None
        if not 0 <= weekday <= 6 or end_minute <= start_minute:
            return None
        return AvailabilitySegment(weekday, start_minute, end_minute)

    @staticmethod
    def _row_to_interval(row: dict) -> UnavailabilityInterval | None:
        start = normalize_timestamp(row.get("start_datetime"))
        end = normalize_timestamp(row.get("end_datetime"))
        if start is None or end is None or end <= start:
            return None
        return UnavailabilityInterval(start=start, end=end)


business_calendar_service = BusinessCalendarService()
