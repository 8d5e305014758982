from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List
import os

from hospital_api.constants import DEFAULT_TIME_SLOTS


class Settings(BaseSettings):
    """Global app settings loaded from environment.
    - Keep defaults light for dev.
    - Override via .env or real env vars.
    """

    APP_NAME: str = "hospital_api"
    APP_ENV: str = "dev"
    APP_DEBUG: bool = True

    # mongo | memory (memory keeps everything in-process, used by tests and demos)
    STORAGE_BACKEND: str = "mongo"
    MONGODB_URI: str = "mongodb://localhost:27017/hospital_db"

    # Authentication provider (jwt | firebase)
    AUTH_PROVIDER: str = "jwt"
    JWT_SECRET: str = "hospital_dev_secret"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_MINUTES: int = 60

    # Firebase Admin SDK service account
    FIREBASE_CREDENTIALS_FILE: str | None = None

    # Role resolution
    ADMIN_EMAIL: str = "admin@rajana.com"
    # Email-pattern doctor grants are unverified; keep off outside of migrations
    DOCTOR_EMAIL_HEURISTIC_ENABLED: bool = False
    DOCTOR_EMAIL_PATTERN: str = r"^(dr\.|doctor\.)[^@]+@rajana\.com$"

    # Raw comma-separated slot labels; parsed via time_slots property
    APPOINTMENT_TIME_SLOTS: str | None = None

    # Max undelivered deltas per live subscription before it is failed
    LIVE_VIEW_QUEUE_SIZE: int = 1000

    RATE_LIMIT_ENABLED: bool = True
    RESOLVE_RATE_LIMIT: str = "10/minute"

    # Raw CORS string from env (comma-separated); parsed via cors_origins property
    CORS_ORIGINS: str | None = None

    LOG_DIR: str = "logs"
    LOG_TO_FILE: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def cors_origins(self) -> List[str]:
        """Return CORS origins as a list, parsing comma-separated env string."""
        raw = self.CORS_ORIGINS or os.getenv("CORS_ORIGINS", "") or ""
        return [o.strip() for o in raw.split(",") if o.strip()]

    @property
    def time_slots(self) -> List[str]:
        """Bookable slot labels; falls back to the default clinic slots."""
        raw = self.APPOINTMENT_TIME_SLOTS or ""
        slots = [s.strip() for s in raw.split(",") if s.strip()]
        return slots or list(DEFAULT_TIME_SLOTS)


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
