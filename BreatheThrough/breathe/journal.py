"""
This module contains the pain journal logic for the BreatheThrough application.

It covers:
- Upserting entries by calendar day (one entry per date).
- Laying out a month as a Sunday-first, seven-column calendar grid.
- Classifying each day's pain level for the calendar indicators.
- Dashboard metrics: journal adherence and the crisis-free streak.
- Pre-filling the entry form when the patient selects a day.
- Turning entries into a pandas DataFrame for the pain trend chart.

All functions are pure. They take the current list of entries and return new values;
the `AppState` coordinator is responsible for persisting any changed list.
"""
# breathethrough/breathe/journal.py

from __future__ import annotations

import calendar
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Sequence, Union

import pandas as pd

from breathe.models import ActivityContext, JournalEntry

NOT_APPLICABLE = "N/A"

SEVERE = "severe"
MODERATE = "moderate"
WELLNESS = "wellness"
MILD = "mild"

WEEKDAY_HEADERS = ('S', 'M', 'T', 'W', 'T', 'F', 'S')
_WEEKDAY_NAMES = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday')


def date_key(year: int, month: int, day: int) -> str:
    """Formats a calendar day as the YYYY-MM-DD key used by journal entries."""
    return f"{year:04d}-{month:02d}-{day:02d}"


def upsert_entry(entries: Sequence[JournalEntry], entry: JournalEntry) -> List[JournalEntry]:
    """Inserts `entry`, replacing any entry with the same date in place.

    The other entries keep their order. A new date is appended at the end.
    """
    updated = list(entries)
    for idx, existing in enumerate(updated):
        if existing.date == entry.date:
            updated[idx] = entry
            return updated
    updated.append(entry)
    return updated


def entry_for_date(entries: Sequence[JournalEntry], day: str) -> Optional[JournalEntry]:
    return next((entry for entry in entries if entry.date == day), None)


def most_recent_entry(entries: Sequence[JournalEntry]) -> Optional[JournalEntry]:
    """Returns the entry with the latest date. ISO dates sort chronologically as strings."""
    if not entries:
        return None
    return max(entries, key=lambda entry: entry.date)


# Calendar layout

def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def first_weekday_offset(year: int, month: int) -> int:
    """Number of blank cells before the 1st in a grid whose weeks start on Sunday."""
    return (date(year, month, 1).weekday() + 1) % 7


def calendar_days(year: int, month: int) -> List[Optional[int]]:
    """Returns the month as grid cells: leading None placeholders, then day numbers."""
    offset = first_weekday_offset(year, month)
    return [None] * offset + list(range(1, days_in_month(year, month) + 1))


def days_in_current_month(today: Optional[date] = None) -> int:
    today = today or date.today()
    return days_in_month(today.year, today.month)


def current_month_days(today: Optional[date] = None) -> List[Optional[int]]:
    today = today or date.today()
    return calendar_days(today.year, today.month)


def pain_indicator(pain_level: int) -> str:
    """Classifies a pain level for the calendar dot.

    Above 7 is severe, above 4 up to 7 is moderate, exactly 0 is wellness and
    anything else is mild.
    """
    if pain_level > 7:
        return SEVERE
    if pain_level > 4:
        return MODERATE
    if pain_level == 0:
        return WELLNESS
    return MILD


def detail_badge(pain_level: int) -> str:
    """Badge style for the selected day's details panel."""
    if pain_level > 6:
        return "high"
    if pain_level == 0:
        return "zero"
    return "normal"


@dataclass(frozen=True)
class CalendarDay:
    """One populated cell of the month grid."""
    day: int
    date: str
    entry: Optional[JournalEntry] = None

    @property
    def indicator(self) -> Optional[str]:
        return pain_indicator(self.entry.pain_level) if self.entry else None

    @property
    def is_crisis(self) -> bool:
        return bool(self.entry and self.entry.is_crisis)

    @property
    def meds_taken(self) -> bool:
        return bool(self.entry and self.entry.meds_taken)


def month_grid(year: int, month: int, entries: Sequence[JournalEntry]) -> List[Optional[CalendarDay]]:
    """Returns the calendar grid with each day paired to its journal entry."""
    by_date = {entry.date: entry for entry in entries}
    cells: List[Optional[CalendarDay]] = []
    for day in calendar_days(year, month):
        if day is None:
            cells.append(None)
            continue
        key = date_key(year, month, day)
        cells.append(CalendarDay(day=day, date=key, entry=by_date.get(key)))
    return cells


# Dashboard metrics

def compute_adherence(entries: Sequence[JournalEntry]) -> int:
    """Percentage of entries with medication taken, rounded. Zero for an empty journal."""
    if not entries:
        return 0
    taken = sum(1 for entry in entries if entry.meds_taken)
    return round(100 * taken / len(entries))


def adherence_band(percentage: int) -> str:
    if percentage > 80:
        return "good"
    if percentage > 50:
        return "fair"
    return "poor"


def compute_crisis_free_streak(entries: Sequence[JournalEntry],
                               now: Union[date, datetime, None] = None) -> Union[int, str]:
    """Whole days since the latest crisis entry, or `NOT_APPLICABLE` if there is none.

    Entry dates count from midnight. A timezone-aware `now` is compared against UTC
    midnight of the entry date.
    """
    crises = [entry for entry in entries if entry.is_crisis]
    if not crises:
        return NOT_APPLICABLE
    last_crisis = date.fromisoformat(max(crises, key=lambda entry: entry.date).date)

    if now is None:
        now = datetime.now(timezone.utc)
    if isinstance(now, datetime):
        tz = timezone.utc if now.tzinfo is not None else None
        start = datetime.combine(last_crisis, time.min, tzinfo=tz)
        return math.floor((now - start) / timedelta(days=1))
    return (now - last_crisis).days


def streak_label(streak: Union[int, str]) -> str:
    """Formats the crisis-free streak for display. The sentinel is shown without a unit."""
    if streak == NOT_APPLICABLE:
        return NOT_APPLICABLE
    return f"{streak} day" if streak == 1 else f"{streak} days"


def health_status(entries: Sequence[JournalEntry]) -> str:
    """Dashboard status pill: watch closely when the latest entry reports pain above 6."""
    latest = most_recent_entry(entries)
    if latest is not None and latest.pain_level > 6:
        return "MONITOR CLOSELY"
    return "STABLE"


# Day selection

@dataclass
class DayForm:
    """The entry form state for a selected day.

    `show_form` is False when the day already has an entry, whose details are shown
    instead; the fields are still pre-filled so the patient can edit it.
    """
    date: str
    pain_level: int = 0
    notes: str = ''
    activity_context: ActivityContext = ActivityContext.HOME
    is_crisis: bool = False
    meds_taken: bool = False
    show_form: bool = True

    def to_entry(self) -> JournalEntry:
        return JournalEntry(
            date=self.date,
            pain_level=self.pain_level,
            notes=self.notes,
            activity_context=self.activity_context,
            is_crisis=self.is_crisis,
            meds_taken=self.meds_taken,
            triggers=[],
        )


def select_day(entries: Sequence[JournalEntry], day: str) -> DayForm:
    existing = entry_for_date(entries, day)
    if existing is None:
        return DayForm(date=day)
    return DayForm(
        date=day,
        pain_level=existing.pain_level,
        notes=existing.notes,
        activity_context=existing.activity_context,
        is_crisis=existing.is_crisis,
        meds_taken=existing.meds_taken,
        show_form=False,
    )


# Analysis helpers

def weekday_name(day: str) -> str:
    return _WEEKDAY_NAMES[date.fromisoformat(day).weekday()]


def analysis_lines(entries: Sequence[JournalEntry]) -> str:
    """Renders entries one per line for the pattern-analysis prompt."""
    lines = []
    for entry in entries:
        context = entry.activity_context.value if entry.activity_context else 'N/A'
        lines.append(
            f"Date: {entry.date} ({weekday_name(entry.date)}), Context: {context}, "
            f"Pain Level: {entry.pain_level}, Notes: {entry.notes}"
        )
    return "\n".join(lines)


def entries_frame(entries: Sequence[JournalEntry]) -> pd.DataFrame:
    """Returns entries as a date-indexed DataFrame, oldest first, for charts and export."""
    columns = ['date', 'pain_level', 'activity_context', 'is_crisis', 'meds_taken', 'notes']
    rows = [
        {
            'date': entry.date,
            'pain_level': entry.pain_level,
            'activity_context': entry.activity_context.value,
            'is_crisis': entry.is_crisis,
            'meds_taken': entry.meds_taken,
            'notes': entry.notes,
        }
        for entry in entries
    ]
    frame = pd.DataFrame(rows, columns=columns)
    frame['date'] = pd.to_datetime(frame['date'])
    return frame.sort_values('date').set_index('date')
