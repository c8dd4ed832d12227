"""Shared fixtures: an in-memory stand-in for the Supabase backend."""

# pylint: disable=redefined-outer-name

from datetime import date, datetime, timezone
from itertools import count
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import BackendError, SupabaseBackend
from main import create_app
from schemas import Habit, HabitCompletion, HabitStatus

ALICE_TOKEN = "token-alice"
BOB_TOKEN = "token-bob"


class FakeBackend(SupabaseBackend):
    """Keeps habits and completions in lists, scoped by user id like the real tables."""

    def __init__(self):
        super().__init__(client=None)
        self.habits: List[Habit] = []
        self.completions: List[HabitCompletion] = []
        self.tokens = {ALICE_TOKEN: "alice", BOB_TOKEN: "bob"}
        self.signed_out: List[str] = []
        self.code_verifiers: List[str] = []
        self.fail = False
        self._ids = count(1)

    def _check(self):
        if self.fail:
            raise BackendError("Could not reach backend")

    def add_habit(self, user_id: str, **fields: Any) -> Habit:
        habit = Habit(id=next(self._ids), user_id=user_id, **fields)
        self.habits.append(habit)
        return habit

    def add_completion(self, user_id: str, habit_id, d: date, status: HabitStatus) -> HabitCompletion:
        completion = HabitCompletion(
            id=next(self._ids), habit_id=habit_id, user_id=user_id, completion_date=d, status=status
        )
        self.completions.append(completion)
        return completion

    def list_habits(self, user_id):
        self._check()
        return [h for h in reversed(self.habits) if h.user_id == user_id and not h.archived]

    def get_habit(self, user_id, habit_id):
        self._check()
        for h in self.habits:
            if h.user_id == user_id and str(h.id) == str(habit_id):
                return h
        return None

    def create_habit(self, user_id, payload: Dict[str, Any]):
        self._check()
        return self.add_habit(user_id, **payload)

    def update_habit(self, user_id, habit_id, payload):
        self._check()
        for i, h in enumerate(self.habits):
            if h.user_id == user_id and str(h.id) == str(habit_id):
                self.habits[i] = Habit.model_validate({**h.model_dump(), **payload})
                return self.habits[i]
        return None

    def list_completions_for_date(self, user_id, d, habit_ids):
        self._check()
        ids = {str(i) for i in habit_ids}
        return [
            c
            for c in self.completions
            if c.user_id == user_id and c.completion_date == d and str(c.habit_id) in ids
        ]

    def list_completions_for_habit(self, user_id, habit_id):
        self._check()
        return [c for c in self.completions if c.user_id == user_id and str(c.habit_id) == str(habit_id)]

    def upsert_completion(self, user_id, habit_id, d, status, notes=None):
        self._check()
        completed_at = datetime.now(timezone.utc) if status == HabitStatus.SUCCESS else None
        for c in self.completions:
            if c.user_id == user_id and str(c.habit_id) == str(habit_id) and c.completion_date == d:
                c.status = status
                c.completed_at = completed_at
                if notes is not None:
                    c.notes = notes
                return c
        completion = HabitCompletion(
            id=next(self._ids),
            habit_id=habit_id,
            user_id=user_id,
            completion_date=d,
            status=status,
            completed_at=completed_at,
            notes=notes,
        )
        self.completions.append(completion)
        return completion

    def get_user_id(self, access_token: str) -> Optional[str]:
        self._check()
        return self.tokens.get(access_token)

    def exchange_code_for_session(self, code, code_verifier):
        self._check()
        self.code_verifiers.append(code_verifier)
        return {"access_token": f"access-{code}", "refresh_token": f"refresh-{code}"}

    def sign_out(self, access_token):
        self._check()
        self.signed_out.append(access_token)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        supabase_url="http://supabase.test",
        supabase_key="service-key",
        site_url="http://localhost:3000",
        cors_origins=["http://localhost:3000"],
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def client(backend: FakeBackend, settings: Settings) -> TestClient:
    return TestClient(create_app(backend=backend, settings=settings))


@pytest.fixture
def auth() -> Dict[str, str]:
    return {"Authorization": f"Bearer {ALICE_TOKEN}"}
