import json
import logging
from datetime import date
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from fastapi import APIRouter, Cookie, Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, Field

# Import schema metadata for external viewers
import schemas
from config import Settings, get_settings
from database import BackendError, SupabaseBackend, create_backend
from habit_utils import (
    completed_dates,
    current_streak,
    filter_active_for_date,
    format_date_for_db,
    group_by_status,
    habit_stats,
    merge_completions,
    parse_db_date,
)
from schemas import DayOfWeek, HabitFrequency, HabitStatus, WEEKDAYS, today_utc

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"

router = APIRouter()

# -------------------- Utilities --------------------

def parse_day(d: Optional[str]) -> date:
    if not d:
        return today_utc()
    try:
        return parse_db_date(d)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid date")


def get_backend(request: Request) -> SupabaseBackend:
    return request.app.state.backend


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def session_token(
    access_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None),
) -> Optional[str]:
    if access_token:
        return access_token
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


def current_user_id(
    token: Optional[str] = Depends(session_token),
    backend: SupabaseBackend = Depends(get_backend),
) -> str:
    """Resolve the session to a user id, 401 when there is none."""
    credentials_exception = HTTPException(
        status_code=401,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise credentials_exception
    user_id = backend.get_user_id(token)
    if user_id is None:
        raise credentials_exception
    return user_id


def cookie_kwargs(settings: Settings) -> Dict[str, Any]:
    kwargs = {
        "secure": settings.cookie_secure,
        "httponly": True,
        "samesite": settings.cookie_samesite,
    }
    # avoid setting an invalid empty domain
    if settings.cookie_domain:
        kwargs["domain"] = settings.cookie_domain
    return kwargs


# -------------------- Schemas Endpoint --------------------
@router.get("/schema")
def get_schema():
    return schemas.SCHEMA_MODELS


# -------------------- Auth --------------------

def code_verifier_cookie(settings: Settings) -> str:
    """Cookie the browser's Supabase client keeps the PKCE verifier in."""
    project_ref = (urlparse(settings.supabase_url).hostname or "").split(".")[0]
    return f"sb-{project_ref}-auth-token-code-verifier"


def read_code_verifier(request: Request, settings: Settings) -> Optional[str]:
    verifier = request.query_params.get("code_verifier")
    if verifier:
        return verifier
    raw = request.cookies.get(code_verifier_cookie(settings))
    if not raw:
        return None
    # the browser client stores it JSON encoded
    if raw.startswith('"'):
        return json.loads(raw)
    return raw


@router.get("/auth/callback")
def auth_callback(
    request: Request,
    code: Optional[str] = None,
    backend: SupabaseBackend = Depends(get_backend),
    settings: Settings = Depends(get_app_settings),
):
    response = RedirectResponse(url=f"{settings.site_url.rstrip('/')}/", status_code=303)
    if not code:
        logger.info("Auth callback without code, redirecting")
        return response

    code_verifier = read_code_verifier(request, settings)
    if not code_verifier:
        raise HTTPException(status_code=400, detail="Missing code verifier")

    tokens = backend.exchange_code_for_session(code, code_verifier)
    kwargs = cookie_kwargs(settings)
    response.set_cookie(ACCESS_COOKIE, tokens["access_token"], max_age=settings.cookie_max_age_s, **kwargs)
    response.set_cookie(REFRESH_COOKIE, tokens["refresh_token"], max_age=settings.cookie_max_age_s, **kwargs)
    response.delete_cookie(code_verifier_cookie(settings))
    logger.info("Exchanged auth code for session")
    return response


@router.post("/auth/signout")
def sign_out(
    response: Response,
    token: Optional[str] = Depends(session_token),
    backend: SupabaseBackend = Depends(get_backend),
    settings: Settings = Depends(get_app_settings),
):
    if token:
        try:
            backend.sign_out(token)
        except BackendError as e:
            # cookies are cleared either way
            logger.warning(f"Backend sign out failed: {e}")
    kwargs = cookie_kwargs(settings)
    response.delete_cookie(ACCESS_COOKIE, **kwargs)
    response.delete_cookie(REFRESH_COOKIE, **kwargs)
    return {"ok": True}


@router.get("/auth/me")
def me(user_id: str = Depends(current_user_id)):
    return {"user_id": user_id}


# -------------------- Habits --------------------
class HabitIn(BaseModel):
    name: str = Field(..., min_length=1)
    frequency: HabitFrequency = HabitFrequency.DAILY
    repeat_days: List[DayOfWeek] = Field(default_factory=lambda: list(WEEKDAYS))
    start_date: date = Field(default_factory=today_utc)
    time_of_day: str = "08:00:00"
    goal: int = Field(1, ge=1)


def habit_payload(habit: HabitIn) -> Dict[str, Any]:
    return habit.model_dump(mode="json")


@router.get("/api/habits")
def list_habits(
    user_id: str = Depends(current_user_id),
    backend: SupabaseBackend = Depends(get_backend),
):
    return backend.list_habits(user_id)


@router.post("/api/habits")
def create_habit(
    habit: HabitIn,
    user_id: str = Depends(current_user_id),
    backend: SupabaseBackend = Depends(get_backend),
):
    created = backend.create_habit(user_id, habit_payload(habit))
    return {"id": created.id}


@router.put("/api/habits/{habit_id}")
def update_habit(
    habit_id: str,
    habit: HabitIn,
    user_id: str = Depends(current_user_id),
    backend: SupabaseBackend = Depends(get_backend),
):
    if backend.update_habit(user_id, habit_id, habit_payload(habit)) is None:
        raise HTTPException(status_code=404, detail="Habit not found")
    return {"ok": True}


@router.delete("/api/habits/{habit_id}")
def archive_habit(
    habit_id: str,
    user_id: str = Depends(current_user_id),
    backend: SupabaseBackend = Depends(get_backend),
):
    if not backend.archive_habit(user_id, habit_id):
        raise HTTPException(status_code=404, detail="Habit not found")
    return {"ok": True}


@router.get("/api/habits/today")
def habits_for_day(
    d: Optional[str] = Query(default=None),
    user_id: str = Depends(current_user_id),
    backend: SupabaseBackend = Depends(get_backend),
):
    day = parse_day(d)
    active = filter_active_for_date(backend.list_habits(user_id), day)
    completions = backend.list_completions_for_date(user_id, day, [h.id for h in active])
    habits = merge_completions(active, completions)
    groups = group_by_status(habits)
    return {
        "date": format_date_for_db(day),
        "habits": habits,
        "pending": groups["pending"],
        "completed": groups["completed"],
    }


# Set a habit's status for a given date (default today)
class StatusIn(BaseModel):
    status: schemas.SettableStatus
    date: Optional[str] = None
    notes: Optional[str] = None


@router.post("/api/habits/{habit_id}/status")
def set_habit_status(
    habit_id: str,
    body: StatusIn,
    user_id: str = Depends(current_user_id),
    backend: SupabaseBackend = Depends(get_backend),
):
    day = parse_day(body.date)
    habit = backend.get_habit(user_id, habit_id)
    if habit is None:
        raise HTTPException(status_code=404, detail="Habit not found")
    if day < habit.start_date:
        logger.warning(f"Status for habit {habit_id} set on {day}, before its start date {habit.start_date}")

    completion = backend.upsert_completion(
        user_id, habit.id, day, HabitStatus(body.status.value), body.notes
    )
    return completion


@router.get("/api/habits/{habit_id}/detail")
def habit_detail(
    habit_id: str,
    user_id: str = Depends(current_user_id),
    backend: SupabaseBackend = Depends(get_backend),
):
    habit = backend.get_habit(user_id, habit_id)
    if habit is None:
        raise HTTPException(status_code=404, detail="Habit not found")
    completions = backend.list_completions_for_habit(user_id, habit.id)
    return {
        "habit": habit,
        "streak": current_streak(completions),
        "stats": habit_stats(completions),
        "completed_dates": [format_date_for_db(x) for x in completed_dates(completions)],
    }


# -------------------- Health --------------------
@router.get("/")
def read_root(settings: Settings = Depends(get_app_settings)):
    return {"message": f"{settings.app_name} running"}


@router.get("/health")
def health(settings: Settings = Depends(get_app_settings)):
    return {
        "backend": "✅ Running",
        "supabase_url": "✅ Set" if settings.supabase_url else "❌ Not Set",
        "supabase_key": "✅ Set" if settings.supabase_key else "❌ Not Set",
    }


# -------------------- App --------------------

def backend_error_handler(request: Request, exc: BackendError):
    return JSONResponse(status_code=502, content={"detail": str(exc)})


def create_app(
    backend: Optional[SupabaseBackend] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)

    app = FastAPI(title=settings.app_name)
    app.state.settings = settings
    app.state.backend = backend or create_backend(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(BackendError, backend_error_handler)
    app.include_router(router)

    logger.info(f"Starting {settings.app_name}, CORS allow_origins: {settings.cors_origins}")
    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings=settings), host="0.0.0.0", port=settings.port)
