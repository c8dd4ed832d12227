"""
Database Schemas for Habits

Each persisted Pydantic model maps to a Supabase table:
Habit -> "habits", HabitCompletion -> "habit_completions".
These schemas are used for validation and for the /schema endpoint.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, Field

HabitId = Union[int, str]


def today_utc() -> date:
    # Use UTC as default day boundary. Frontend can pass explicit date if needed.
    return datetime.now(timezone.utc).date()


class HabitFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class DayOfWeek(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


# date.weekday() order, Monday first
WEEKDAYS: List[DayOfWeek] = list(DayOfWeek)


class HabitStatus(str, Enum):
    UNKNOWN = "unknown"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


# Core entities
class Habit(BaseModel):
    id: Optional[HabitId] = Field(None, description="Opaque habit id assigned by the backend")
    name: str = Field(..., description="Habit display name")
    user_id: Optional[str] = Field(None, description="Owner (auth user id)")
    created_at: Optional[datetime] = Field(None)
    frequency: HabitFrequency = Field(HabitFrequency.DAILY)
    repeat_days: List[DayOfWeek] = Field(
        default_factory=lambda: list(WEEKDAYS),
        description="Weekdays the habit is due on. Only used by daily/weekly habits.",
    )
    start_date: date = Field(default_factory=today_utc, description="First day the habit can be due")
    time_of_day: str = Field("08:00:00", description="Advisory time, not used for scheduling")
    goal: int = Field(1, ge=1, description="Target count, currently informational")
    archived: bool = Field(False, description="Archived habits are never due")


class HabitCompletion(BaseModel):
    id: Optional[HabitId] = Field(None)
    habit_id: HabitId = Field(..., description="Reference to habits.id")
    user_id: Optional[str] = Field(None)
    completion_date: date = Field(..., description="ISO date YYYY-MM-DD")
    status: HabitStatus = Field(HabitStatus.UNKNOWN)
    completed_at: Optional[datetime] = Field(None, description="Set only for success")
    notes: Optional[str] = Field(None)


class HabitWithCompletion(Habit):
    """Habit merged with its completion for one day.

    Computed per request from the underlying records; never written back.
    """

    completion: Optional[HabitCompletion] = None
    status: HabitStatus = HabitStatus.UNKNOWN


# Statuses a user can set from the UI
class SettableStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


# Export schema metadata for /schema endpoint consumers
SCHEMA_MODELS = {
    "habits": Habit.model_json_schema(),
    "habit_completions": HabitCompletion.model_json_schema(),
}
