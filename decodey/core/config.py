from pydantic_settings import BaseSettings


# ═══════════════════════════════════════════════════
# Difficulty → mistake budget
# ═══════════════════════════════════════════════════
MAX_MISTAKES: dict[str, int] = {
    "easy": 8,
    "medium": 5,
    "hard": 3,
}

# Older game ids and servers still say "normal" for medium.
DIFFICULTY_ALIASES: dict[str, str] = {
    "normal": "medium",
}

DEFAULT_MAX_MISTAKES = 8


def normalize_difficulty(difficulty: str | None, default: str = "easy") -> str:
    if not difficulty:
        return default
    value = difficulty.strip().lower()
    value = DIFFICULTY_ALIASES.get(value, value)
    return value if value in MAX_MISTAKES else default


def max_mistakes_for(difficulty: str | None) -> int:
    if not difficulty:
        return DEFAULT_MAX_MISTAKES
    value = DIFFICULTY_ALIASES.get(difficulty.lower(), difficulty.lower())
    return MAX_MISTAKES.get(value, DEFAULT_MAX_MISTAKES)


class Settings(BaseSettings):
    # ═══════════════════════════════════════════════════
    # Backend API
    # ═══════════════════════════════════════════════════
    API_URL: str = "https://uncryptbe.replit.app"
    REQUEST_TIMEOUT: float = 10.0
    CONNECT_TIMEOUT: float = 5.0

    # ═══════════════════════════════════════════════════
    # Local persistence
    # ═══════════════════════════════════════════════════
    STORAGE_PATH: str | None = None  # CLI: ~/.decodey/storage.json; Runtime alone: in-memory

    # ═══════════════════════════════════════════════════
    # Game defaults
    # ═══════════════════════════════════════════════════
    DEFAULT_DIFFICULTY: str = "easy"
    HARDCORE_MODE: bool = False
    LONG_TEXT: bool = False

    # ═══════════════════════════════════════════════════
    # Timing
    # ═══════════════════════════════════════════════════
    INIT_GRACE_SECONDS: float = 0.5  # busy flag stays up this long after init
    REFRESH_COOLDOWN_SECONDS: float = 30.0

    # ═══════════════════════════════════════════════════
    # App
    # ═══════════════════════════════════════════════════
    APP_NAME: str = "decodey"
    VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_prefix = "DECODEY_"
        extra = "ignore"


_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Process-wide Settings instance.

    Components take a Settings in their constructor; this accessor is only
    for entry points that build the runtime.
    """
    global _settings
    if not _settings:
        _settings = Settings()
    return _settings
