import json
from functools import lru_cache
from typing import Annotated, Any, List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Habits API"

    # Supabase project
    supabase_url: str = ""
    supabase_key: str = ""

    # Where the auth callback sends the browser once the session is set
    site_url: str = "http://localhost:3000"
    cors_origins: Annotated[List[str], NoDecode] = ["http://localhost:3000"]

    # Session cookies
    cookie_domain: Optional[str] = None
    cookie_secure: bool = False
    cookie_samesite: str = "lax"
    cookie_max_age_s: int = 60 * 60 * 24 * 7

    log_level: str = "INFO"
    port: int = 8000

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v: Any) -> Any:
        """Allow CORS_ORIGINS as a JSON array or a comma-separated string."""
        if isinstance(v, str):
            sv = v.strip()
            if not sv:
                return []
            if sv.startswith("["):
                return json.loads(sv)
            return [s.strip() for s in sv.split(",") if s.strip()]
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()
