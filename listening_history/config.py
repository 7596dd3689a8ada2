from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Evidence source (Spotify Web API)
    SPOTIFY_API_BASE_URL: str = "https://api.spotify.com/v1"
    SPOTIFY_REQUEST_TIMEOUT: float = 30.0
    SPOTIFY_ACCESS_TOKEN: str | None = None
    SPOTIFY_PAGE_SIZE: int = 50
    PLAYLIST_PAGE_SIZE: int = 100
    RECENTLY_PLAYED_LIMIT: int = 50
    MAX_API_PAGES: int = 100
    API_DELAY_MS: int = 50

    # =================================================================
    # RECONSTRUCTION SETTINGS
    # =================================================================
    MATERIALIZE_CHUNK_SIZE: int = 50
    INSERT_CHUNK_SIZE: int = 100
    EXACT_INSERT_CHUNK_SIZE: int = 50
    CHUNK_DELAY_MS: int = 10
    INITIAL_CURATED_LISTS: int = 3
    MAX_CURATED_LISTS: int = 15
    MAX_HISTORY_YEARS: int = 15
    IMPORT_SOURCE: str = "com.spotify.music.import.reconstructed"
    DEFAULT_TRACK_DURATION_MS: int = 180_000
    PENDING_BATCH_AFFINITY: float = 0.5

    # Duplicate tolerances (0 means exact timestamp match)
    EXACT_DUPLICATE_TOLERANCE_SECONDS: float = 60.0
    SYNTHESIZED_DUPLICATE_TOLERANCE_SECONDS: float = 0.0

    # Seeds the production random source when set
    RANDOM_SEED: int | None = None

    # =================================================================
    # STORAGE SETTINGS
    # =================================================================
    DATABASE_URL: str | None = None
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 8
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    REDIS_URL: str | None = None
    REDIS_MAX_CONNECTIONS: int = 10
    PENDING_BATCH_TTL_SECONDS: int = 30 * 24 * 3600
    PENDING_OWNER_KEY: str = "default"

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
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
            config.update({"min_size": 1, "max_size": 4, "timeout": 15.0})

        return config

    def api_delay_seconds(self) -> float:
        return self.API_DELAY_MS / 1000

    def chunk_delay_seconds(self) -> float:
        return self.CHUNK_DELAY_MS / 1000


settings = Settings()
