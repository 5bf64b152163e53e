from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "PlaceCache"
    DEBUG: bool = False

    # Database (PostgreSQL in production, SQLite for local runs and tests)
    DATABASE_URL: str = "sqlite:///./placecache.db"

    # Geoapify places provider
    GEOAPIFY_API_KEY: str = ""
    GEOAPIFY_BASE_URL: str = "https://api.geoapify.com/v2/places"
    PROVIDER_TIMEOUT_SECONDS: float = 10.0
    PROVIDER_CALL_TIMEOUT_SECONDS: float = 30.0  # Outer bound for any provider adapter
    PROVIDER_RESULT_LIMIT: int = 100

    # Read path
    DEFAULT_RADIUS_METERS: float = 3000
    NEARBY_RESULT_LIMIT: int = 100

    # Freshness / region matching
    DEFAULT_TTL_HOURS: float = 24
    STALE_PLACE_HOURS: float = 24  # Cache hits report places older than this
    REGION_CENTER_TOLERANCE: float = 1.5  # Centre may drift up to 1.5x the radius
    REGION_RADIUS_TOLERANCE: float = 0.2  # Stored radius within +/-20% of the requested one

    # Background refresh
    SCHEDULER_ENABLED: bool = True
    REFRESH_INTERVAL_HOURS: float = 6
    REFRESH_STARTUP_DELAY_SECONDS: int = 300
    REFRESH_BATCH_SIZE: int = 10
    CLEANUP_CRON_HOUR: int = 3  # UTC

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"


settings = Settings()
