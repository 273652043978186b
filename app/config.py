from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Database settings
    DATABASE_URL: str = "postgresql://localhost:5432/weekly_tracker"

    # Battle.net settings
    BLIZZARD_REGION: str = "us"
    BLIZZARD_API_BASE_URL: str | None = None
    BLIZZARD_LOCALE: str = "en_US"
    BLIZZARD_REQUEST_TIMEOUT: float = 15.0

    # =================================================================
    # WEEKLY RESET - Tuesday 10:00 UTC for US realms
    # =================================================================
    RESET_WEEKDAY: int = 1  # Monday=0
    RESET_HOUR_UTC: int = 10
    RESET_MINUTE_UTC: int = 0

    # =================================================================
    # BACKGROUND JOBS
    # =================================================================
    ENABLE_BACKGROUND_JOBS: bool = True
    REFRESH_INTERVAL_MINUTES: int = 30
    REFRESH_BATCH_SIZE: int = 5
    REFRESH_BATCH_DELAY_SECONDS: float = 1.0
    CHARACTER_REFRESH_TIMEOUT_SECONDS: float = 60.0
    RESET_CHECK_INTERVAL_MINUTES: int = 60

    # Optional JSON file replacing the built-in activity catalog
    ACTIVITY_CATALOG_PATH: str | None = None

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def blizzard_api_base_url(self) -> str:
        """Get the regional Game Data/Profile API host with override support."""
        if self.BLIZZARD_API_BASE_URL:
            return self.BLIZZARD_API_BASE_URL.rstrip("/")
        return f"https://{self.BLIZZARD_REGION.lower()}.api.blizzard.com"

    def blizzard_profile_namespace(self) -> str:
        return f"profile-{self.BLIZZARD_REGION.lower()}"

    def reset_schedule(self):
        """Build the weekly reset anchor from the configured weekday and UTC time."""
        # Imported lazily so the config module stays free of feature imports
        from app.features.weekly_tracker.services.reset_clock import ResetSchedule

        return ResetSchedule(
            weekday=self.RESET_WEEKDAY,
            hour=self.RESET_HOUR_UTC,
            minute=self.RESET_MINUTE_UTC,
        )

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update(
                {
                    "min_size": 1,
                    "max_size": 5,
                    "timeout": 15.0,
                }
            )

        return config


settings = Settings()
