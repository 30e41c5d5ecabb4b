from pydantic_settings import BaseSettings
from typing import List

from formhub.db.enums import UnknownFieldPolicy


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "formhub"
    APP_ENV: str = "development"
    DEBUG: bool = False
    TESTING: bool = False

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./formhub.db"

    # JWT
    JWT_SECRET: str = "your-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_TTL_MINUTES: int = 15
    REFRESH_TOKEN_TTL_DAYS: int = 30

    # CORS for the admin dashboard. Public submission routes use per-form origin lists.
    ADMIN_CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    # Submissions
    UNKNOWN_FIELD_POLICY: UnknownFieldPolicy = UnknownFieldPolicy.ignore

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    class Config:
        env_file = ".env"


settings = Settings()
