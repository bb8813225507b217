"""
schema.py — Server Response Models
===================================
The one place that knows how the backend spells its fields.

The backend answers with a mix of snake_case and camelCase
(`has_won` / `hasWon`, `win_data` / `winData`, `game_complete` /
`gameComplete`). Every response is parsed into one of these models at the
client boundary; game logic only ever sees the normalized attribute names.
"""

from datetime import datetime

from pydantic import AliasChoices, BaseModel, Field


def _aliases(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class _Response(BaseModel):
    class Config:
        extra = "ignore"
        populate_by_name = True


# ═══════════════════════════════════════════════════
# GAME PAYLOADS — start / longstart / continue / daily
# ═══════════════════════════════════════════════════

class GameData(_Response):
    """
    A full puzzle snapshot.

    Example:
        {
            "encrypted_paragraph": "QEB NRFZH",
            "display": "███ █████",
            "mistakes": 0,
            "correctly_guessed": [],
            "game_id": "easy-custom-4f1c…"
        }
    """
    game_id: str | None = Field(default=None, validation_alias=_aliases("game_id", "gameId"))
    encrypted_paragraph: str = Field(default="", validation_alias=_aliases("encrypted_paragraph", "encrypted"))
    display: str = ""
    mistakes: int = 0
    correctly_guessed: list[str] = Field(
        default_factory=list, validation_alias=_aliases("correctly_guessed", "correctlyGuessed"))
    letter_frequency: dict[str, int] | None = Field(
        default=None, validation_alias=_aliases("letter_frequency", "letterFrequency"))
    original_letters: list[str] = Field(
        default_factory=list, validation_alias=_aliases("original_letters", "originalLetters"))
    difficulty: str | None = None
    max_mistakes: int | None = Field(default=None, validation_alias=_aliases("max_mistakes", "maxMistakes"))
    hardcore_mode: bool | None = Field(default=None, validation_alias=_aliases("hardcore_mode", "hardcoreMode"))
    guessed_mappings: dict[str, str] | None = Field(
        default=None, validation_alias=_aliases("guessed_mappings", "guessedMappings"))
    reverse_mapping: dict[str, str] | None = Field(
        default=None, validation_alias=_aliases("reverse_mapping", "reverseMapping"))
    time_spent: int = Field(default=0, validation_alias=_aliases("time_spent", "timeSpent"))
    daily_date: str | None = Field(default=None, validation_alias=_aliases("daily_date", "dailyDate", "date"))


class MoveResponse(_Response):
    """Answer to POST /api/guess and POST /api/hint."""
    display: str | None = None
    mistakes: int | None = None
    correctly_guessed: list[str] | None = Field(
        default=None, validation_alias=_aliases("correctly_guessed", "correctlyGuessed"))
    game_complete: bool = Field(default=False, validation_alias=_aliases("game_complete", "gameComplete"))
    has_won: bool = Field(default=False, validation_alias=_aliases("has_won", "hasWon"))
    is_correct: bool | None = Field(default=None, validation_alias=_aliases("is_correct", "isCorrect"))
    max_mistakes: int | None = Field(default=None, validation_alias=_aliases("max_mistakes", "maxMistakes"))
    win_data: dict | None = Field(default=None, validation_alias=_aliases("win_data", "winData"))
    error: str | None = None

    @property
    def reports_win(self) -> bool:
        return self.has_won or self.game_complete


# ═══════════════════════════════════════════════════
# COMPLETION / WIN DATA
# ═══════════════════════════════════════════════════

class Attribution(_Response):
    major_attribution: str = Field(
        default="", validation_alias=_aliases("major_attribution", "majorAttribution", "author"))
    minor_attribution: str = Field(
        default="", validation_alias=_aliases("minor_attribution", "minorAttribution"))


class WinData(_Response):
    """The one winData shape the rest of the client uses."""
    score: int = 0
    rating: str | None = None
    mistakes: int | None = None
    max_mistakes: int | None = Field(default=None, validation_alias=_aliases("max_mistakes", "maxMistakes"))
    game_time_seconds: int | None = Field(
        default=None, validation_alias=_aliases("game_time_seconds", "gameTimeSeconds", "time_taken"))
    attribution: Attribution | None = None
    streak_bonus: int | None = Field(default=None, validation_alias=_aliases("streak_bonus", "streakBonus"))
    current_daily_streak: int | None = Field(
        default=None, validation_alias=_aliases("current_daily_streak", "currentDailyStreak"))
    difficulty: str | None = None


class GameStatus(_Response):
    """Answer to GET /api/game-status."""
    has_active_game: bool = Field(default=False, validation_alias=_aliases("has_active_game", "hasActiveGame"))
    game_complete: bool = Field(default=False, validation_alias=_aliases("game_complete", "gameComplete"))
    has_won: bool = Field(default=False, validation_alias=_aliases("has_won", "hasWon"))
    mistakes: int | None = None
    max_mistakes: int | None = Field(default=None, validation_alias=_aliases("max_mistakes", "maxMistakes"))
    win_data: WinData | None = Field(default=None, validation_alias=_aliases("win_data", "winData"))


class DailyCompletion(_Response):
    is_completed: bool = Field(default=False, validation_alias=_aliases("is_completed", "isCompleted"))
    completion_data: dict | None = Field(
        default=None, validation_alias=_aliases("completion_data", "completionData"))


# ═══════════════════════════════════════════════════
# ACTIVE GAME CHECK
# ═══════════════════════════════════════════════════

class ActiveGameStats(_Response):
    difficulty: str | None = None
    mistakes: int = 0
    completion_percentage: float = Field(
        default=0.0, validation_alias=_aliases("completion_percentage", "completionPercentage"))
    time_spent: int = Field(default=0, validation_alias=_aliases("time_spent", "timeSpent"))
    max_mistakes: int | None = Field(default=None, validation_alias=_aliases("max_mistakes", "maxMistakes"))
    start_time: datetime | None = Field(default=None, validation_alias=_aliases("start_time", "startTime"))


class ActiveGameResponse(_Response):
    has_active_game: bool = Field(default=False, validation_alias=_aliases("has_active_game", "hasActiveGame"))
    has_active_daily_game: bool = Field(
        default=False, validation_alias=_aliases("has_active_daily_game", "hasActiveDailyGame"))
    game_stats: ActiveGameStats | None = Field(default=None, validation_alias=_aliases("game_stats", "gameStats"))
    daily_stats: ActiveGameStats | None = Field(
        default=None, validation_alias=_aliases("daily_stats", "dailyStats"))


# ═══════════════════════════════════════════════════
# ACCOUNT / SCORES / LEADERBOARD
# ═══════════════════════════════════════════════════

class LoginResponse(_Response):
    access_token: str
    refresh_token: str | None = None
    user_id: str | None = None
    username: str | None = None


class ScoreReceipt(_Response):
    success: bool = False
    score_id: str | int | None = Field(default=None, validation_alias=_aliases("score_id", "scoreId"))
    message: str | None = None

    @property
    def accepted(self) -> bool:
        return self.success or self.score_id is not None


class LeaderboardEntry(_Response):
    rank: int
    username: str
    score: int = Field(default=0, validation_alias=_aliases("score", "total_score"))
    games_played: int | None = Field(default=None, validation_alias=_aliases("games_played", "gamesPlayed"))
    is_current_user: bool = Field(
        default=False, validation_alias=_aliases("is_current_user", "isCurrentUser"))


class LeaderboardPage(_Response):
    entries: list[LeaderboardEntry] = Field(
        default_factory=list, validation_alias=_aliases("entries", "leaderboard"))
    current_user_entry: LeaderboardEntry | None = Field(
        default=None, validation_alias=_aliases("current_user_entry", "currentUserEntry"))
    page: int = 1
    total_pages: int = Field(default=1, validation_alias=_aliases("total_pages", "totalPages"))
