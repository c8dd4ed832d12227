"""
Habit date and status calculations.

Everything here is a pure function over habits and completion records that
were already fetched from the backend. No I/O happens in this module.
"""

from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence

from pydantic import BaseModel

from schemas import (
    WEEKDAYS,
    Habit,
    HabitCompletion,
    HabitFrequency,
    HabitStatus,
    HabitWithCompletion,
)

DB_DATE_FORMAT = "%Y-%m-%d"


def format_date_for_db(d: date) -> str:
    return d.strftime(DB_DATE_FORMAT)


def parse_db_date(value: str) -> date:
    return datetime.strptime(value, DB_DATE_FORMAT).date()


# -------------------- Recurrence --------------------

def _repeats_on_weekday(habit: Habit, d: date) -> bool:
    return WEEKDAYS[d.weekday()] in habit.repeat_days


def _repeats_on_day_of_month(habit: Habit, d: date) -> bool:
    # A start day of 31 never matches in shorter months
    return d.day == habit.start_date.day


# Daily and weekly currently share the weekday rule. They stay separate
# entries so either can get its own rule without touching the other.
FREQUENCY_RULES: Dict[HabitFrequency, Callable[[Habit, date], bool]] = {
    HabitFrequency.DAILY: _repeats_on_weekday,
    HabitFrequency.WEEKLY: _repeats_on_weekday,
    HabitFrequency.MONTHLY: _repeats_on_day_of_month,
}


def is_active_on_date(habit: Habit, d: date) -> bool:
    """Whether the habit is due on ``d``.

    Archived habits are not checked here, see filter_active_for_date.
    """
    if d < habit.start_date:
        return False
    rule = FREQUENCY_RULES.get(habit.frequency)
    if rule is None:
        return False
    return rule(habit, d)


def filter_active_for_date(habits: Iterable[Habit], d: date) -> List[Habit]:
    return [h for h in habits if not h.archived and is_active_on_date(h, d)]


# -------------------- Completions --------------------

class Streak(BaseModel):
    length: int = 0
    start_date: Optional[date] = None


class StatusTrends(BaseModel):
    # Placeholder sigils: "+N" for a non-zero count, "---" otherwise.
    # Nothing is compared against a previous period.
    success: str = "---"
    failed: str = "---"
    skipped: str = "---"
    total: str = "---"


class HabitStats(BaseModel):
    success_days: int = 0
    failed_days: int = 0
    skipped_days: int = 0
    total_success_events: int = 0
    trends: StatusTrends = StatusTrends()


def current_streak(completions: Iterable[HabitCompletion]) -> Streak:
    """Length and first day of the run of consecutive successes ending at the
    most recent success.

    Records are not deduplicated by date. Two records for the same day break
    the run, so writes must go through the upsert.
    """
    successes = sorted(
        (c for c in completions if c.status == HabitStatus.SUCCESS),
        key=lambda c: c.completion_date,
        reverse=True,
    )
    if not successes:
        return Streak(length=0, start_date=None)

    length = 1
    start = successes[0].completion_date
    for previous, current in zip(successes, successes[1:]):
        if previous.completion_date - timedelta(days=1) != current.completion_date:
            break
        length += 1
        start = current.completion_date
    return Streak(length=length, start_date=start)


def _trend(count: int) -> str:
    return f"+{count}" if count else "---"


def habit_stats(completions: Iterable[HabitCompletion]) -> HabitStats:
    success = failed = skipped = 0
    for c in completions:
        if c.status == HabitStatus.SUCCESS:
            success += 1
        elif c.status == HabitStatus.FAILED:
            failed += 1
        elif c.status == HabitStatus.SKIPPED:
            skipped += 1

    return HabitStats(
        success_days=success,
        failed_days=failed,
        skipped_days=skipped,
        total_success_events=success,
        trends=StatusTrends(
            success=_trend(success),
            failed=_trend(failed),
            skipped=_trend(skipped),
            total=_trend(success),
        ),
    )


class CompletedDates:
    """Success dates of a completion history, re-iterable."""

    def __init__(self, completions: Sequence[HabitCompletion]):
        self._completions = completions

    def __iter__(self) -> Iterator[date]:
        return (
            c.completion_date
            for c in self._completions
            if c.status == HabitStatus.SUCCESS
        )


def completed_dates(completions: Sequence[HabitCompletion]) -> CompletedDates:
    return CompletedDates(completions)


# -------------------- View grouping --------------------

PENDING_STATUSES = {HabitStatus.UNKNOWN, HabitStatus.FAILED}


def merge_completions(
    habits: Iterable[Habit], completions: Iterable[HabitCompletion]
) -> List[HabitWithCompletion]:
    by_habit: Dict[str, HabitCompletion] = {}
    for c in completions:
        by_habit.setdefault(str(c.habit_id), c)

    merged = []
    for h in habits:
        completion = by_habit.get(str(h.id))
        merged.append(
            HabitWithCompletion(
                **h.model_dump(),
                completion=completion,
                status=completion.status if completion else HabitStatus.UNKNOWN,
            )
        )
    return merged


def group_by_status(habits: Iterable[HabitWithCompletion]) -> Dict[str, List[HabitWithCompletion]]:
    """Split a day's habits into pending and completed, keeping input order."""
    groups: Dict[str, List[HabitWithCompletion]] = {"pending": [], "completed": []}
    for h in habits:
        if h.completion is None or h.completion.status in PENDING_STATUSES:
            groups["pending"].append(h)
        else:
            groups["completed"].append(h)
    return groups
