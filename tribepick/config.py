from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "TribePick"
    debug: bool = False

    database_url: str = "postgresql+asyncpg://localhost:5432/tribepick"

    # JSON snapshot of candidate items (id -> item). Empty catalog when unset.
    item_catalog_path: str | None = None

    # Turn and session inactivity windows
    turn_timeout_seconds: int = 3600
    session_timeout_seconds: int = 86400

    # Default elimination depth (K) and final set size (M)
    default_eliminations_per_participant: int = 2
    default_final_set_size: int = 3

    # When False, an over-sized (K, M) request is refused with suggestions
    # instead of being reduced
    auto_reduce_parameters: bool = True

    # Upper bounds for the (K, M) suggestion grid
    max_suggested_eliminations: int = 5
    max_suggested_final_set_size: int = 5


settings = Settings()


# =============================================================================
# SESSION SAFETY LIMITS
# =============================================================================

# Maximum participants in a decision session (tribe size cap)
MAX_PARTICIPANTS = 8

# Maximum candidate items pulled into one session
MAX_SOURCE_ITEMS = 500
