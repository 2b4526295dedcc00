from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


_DEFAULT_ACTIVITY_POINTS: dict[str, Decimal] = {
    "resource": Decimal("2"),
    "assign": Decimal("2"),
    "forum": Decimal("2"),
    "page": Decimal("2"),
    "workshop": Decimal("2"),
    "quiz": Decimal("2"),
    "lesson": Decimal("2"),
    "scorm": Decimal("2"),
    "url": Decimal("2"),
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "postgresql://ranking:ranking@db:5432/ranking"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Comma-separated allowed origins, or "*" to allow all.
    # Example: "https://myapp.com,https://api.myapp.com"
    CORS_ORIGINS: str = "*"

    # --- Points ---
    # JSON object in the environment, e.g. ACTIVITY_POINTS='{"quiz": 5}'
    ACTIVITY_POINTS: dict[str, Decimal] = dict(_DEFAULT_ACTIVITY_POINTS)
    DEFAULT_POINTS: Decimal = Decimal("2")
    GRADE_MULTIPLIER: Decimal = Decimal("1.0")
    ENABLE_MULTIPLE_QUIZ_ATTEMPTS: bool = True
    # Opt-in engine-side duplicate guard; ignored while multiple attempts are on.
    ENFORCE_UNIQUE_COMPLETION: bool = False

    # --- Ranking reads ---
    RANKING_SIZE: int = 10
    WEEK_START_DAY: int = 0  # 0 = Monday … 6 = Sunday

    # --- Cache ---
    CACHE_BACKEND: str = "memory"  # "memory" | "redis"
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_TTL_SECONDS: int = 300

    @property
    def cors_origins_list(self) -> list[str]:
        if self.CORS_ORIGINS.strip() == "*":
            return ["*"]
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def unique_completion_enabled(self) -> bool:
        return self.ENFORCE_UNIQUE_COMPLETION and not self.ENABLE_MULTIPLE_QUIZ_ATTEMPTS


settings = Settings()
