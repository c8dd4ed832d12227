"""
Supabase access for habits and completions.

The shared client is built once by create_backend() and handed to the app
factory; nothing in this module holds a client at import time. The shared
client keeps the service key for its whole life and sign-ins run on
short-lived clients. Every query is scoped by the authenticated user's id.
"""

import logging
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import AuthApiError, AuthError, Client, ClientOptions, create_client

from config import Settings
from habit_utils import format_date_for_db
from schemas import Habit, HabitCompletion, HabitId, HabitStatus

logger = logging.getLogger(__name__)

HABITS_TABLE = "habits"
COMPLETIONS_TABLE = "habit_completions"
COMPLETION_CONFLICT_KEY = "habit_id,user_id,completion_date"


class BackendError(Exception):
    """A read or write against Supabase failed."""


@contextmanager
def _backend_call(action: str):
    try:
        yield
    except (APIError, AuthError, httpx.HTTPError) as e:
        logger.error(f"Supabase {action} failed: {e}")
        raise BackendError(f"Could not {action}") from e


class SupabaseBackend:
    def __init__(self, client: Client, new_auth_client: Optional[Callable[[], Client]] = None):
        self.client = client
        self.new_auth_client = new_auth_client

    # -------------------- Habits --------------------

    def list_habits(self, user_id: str) -> List[Habit]:
        with _backend_call("load habits"):
            res = (
                self.client.table(HABITS_TABLE)
                .select("*")
                .eq("user_id", user_id)
                .eq("archived", False)
                .order("created_at", desc=True)
                .execute()
            )
        return [Habit.model_validate(row) for row in res.data or []]

    def get_habit(self, user_id: str, habit_id: HabitId) -> Optional[Habit]:
        with _backend_call("load habit"):
            res = (
                self.client.table(HABITS_TABLE)
                .select("*")
                .eq("user_id", user_id)
                .eq("id", habit_id)
                .limit(1)
                .execute()
            )
        rows = res.data or []
        return Habit.model_validate(rows[0]) if rows else None

    def create_habit(self, user_id: str, payload: Dict[str, Any]) -> Habit:
        row = {**payload, "user_id": user_id}
        with _backend_call("create habit"):
            res = self.client.table(HABITS_TABLE).insert(row).execute()
        return Habit.model_validate(res.data[0])

    def update_habit(self, user_id: str, habit_id: HabitId, payload: Dict[str, Any]) -> Optional[Habit]:
        with _backend_call("update habit"):
            res = (
                self.client.table(HABITS_TABLE)
                .update(payload)
                .eq("id", habit_id)
                .eq("user_id", user_id)
                .execute()
            )
        rows = res.data or []
        return Habit.model_validate(rows[0]) if rows else None

    def archive_habit(self, user_id: str, habit_id: HabitId) -> bool:
        return self.update_habit(user_id, habit_id, {"archived": True}) is not None

    # -------------------- Completions --------------------

    def list_completions_for_date(
        self, user_id: str, d: date, habit_ids: Iterable[HabitId]
    ) -> List[HabitCompletion]:
        ids = list(habit_ids)
        if not ids:
            return []
        with _backend_call("load completions"):
            res = (
                self.client.table(COMPLETIONS_TABLE)
                .select("*")
                .eq("user_id", user_id)
                .eq("completion_date", format_date_for_db(d))
                .in_("habit_id", ids)
                .execute()
            )
        return [HabitCompletion.model_validate(row) for row in res.data or []]

    def list_completions_for_habit(self, user_id: str, habit_id: HabitId) -> List[HabitCompletion]:
        with _backend_call("load completion history"):
            res = (
                self.client.table(COMPLETIONS_TABLE)
                .select("*")
                .eq("user_id", user_id)
                .eq("habit_id", habit_id)
                .execute()
            )
        return [HabitCompletion.model_validate(row) for row in res.data or []]

    def upsert_completion(
        self,
        user_id: str,
        habit_id: HabitId,
        d: date,
        status: HabitStatus,
        notes: Optional[str] = None,
    ) -> HabitCompletion:
        completed_at = datetime.now(timezone.utc).isoformat() if status == HabitStatus.SUCCESS else None
        row = {
            "habit_id": habit_id,
            "user_id": user_id,
            "completion_date": format_date_for_db(d),
            "status": status.value,
            "completed_at": completed_at,
        }
        if notes is not None:
            row["notes"] = notes
        with _backend_call("save habit status"):
            res = (
                self.client.table(COMPLETIONS_TABLE)
                .upsert(row, on_conflict=COMPLETION_CONFLICT_KEY)
                .execute()
            )
        return HabitCompletion.model_validate(res.data[0])

    # -------------------- Auth --------------------

    def get_user_id(self, access_token: str) -> Optional[str]:
        with _backend_call("verify session"):
            try:
                res = self.client.auth.get_user(access_token)
            except AuthApiError as e:
                # outages raise AuthRetryableError and surface as BackendError
                logger.info(f"Session token rejected: {e}")
                return None
        if res is None or res.user is None:
            return None
        return res.user.id

    def exchange_code_for_session(self, code: str, code_verifier: str) -> Dict[str, str]:
        """Finish a PKCE sign-in.

        Runs on a throwaway client: a successful exchange signs that client in
        as the user, which must never happen to the shared service client.
        """
        if self.new_auth_client is None:
            raise RuntimeError("No auth client factory configured")
        auth_client = self.new_auth_client()
        with _backend_call("exchange auth code"):
            res = auth_client.auth.exchange_code_for_session(
                {"auth_code": code, "code_verifier": code_verifier}
            )
        session = res.session
        if session is None:
            raise BackendError("Could not exchange auth code")
        return {"access_token": session.access_token, "refresh_token": session.refresh_token}

    def sign_out(self, access_token: str) -> None:
        with _backend_call("sign out"):
            self.client.auth.admin.sign_out(access_token)


def _stateless_options() -> ClientOptions:
    return ClientOptions(auto_refresh_token=False, persist_session=False)


def create_backend(settings: Settings) -> SupabaseBackend:
    if not settings.supabase_url or not settings.supabase_key:
        raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must be set")

    def new_auth_client() -> Client:
        return create_client(settings.supabase_url, settings.supabase_key, options=_stateless_options())

    logger.info(f"Supabase client initialized with URL: {settings.supabase_url}")
    client = create_client(settings.supabase_url, settings.supabase_key, options=_stateless_options())
    return SupabaseBackend(client, new_auth_client=new_auth_client)
