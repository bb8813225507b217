"""Request/result shapes for session initialization."""

from dataclasses import dataclass

from pydantic import BaseModel, Field

from decodey.apps.game.schema import ActiveGameStats, GameData
from decodey.core.errors import GameError


class InitOptions(BaseModel):
    """
    What the caller asked for.

    Example:
        InitOptions(custom_game_requested=True, difficulty="hard")
    """
    daily: bool = Field(default=False, description="Start today's daily challenge")
    custom_game_requested: bool = Field(
        default=False, description="Start a fresh non-daily game, ignoring saved games")
    long_text: bool | None = Field(default=None, description="Use /longstart; None → settings")
    hardcore_mode: bool | None = Field(default=None, description="Strip punctuation; None → settings")
    difficulty: str | None = Field(default=None, description="easy | medium | hard; None → settings")


@dataclass
class InitResult:
    success: bool
    game_data: GameData | None = None
    reason: str | None = None  # already-initializing | anonymous-user | no-active-game
    error: GameError | None = None

    daily: bool = False
    resumed: bool = False
    new_game: bool = False
    is_custom_game: bool = False

    active_game_found: bool = False
    game_stats: ActiveGameStats | None = None
    daily_stats: ActiveGameStats | None = None

    already_completed: bool = False
    completion_data: dict | None = None


@dataclass
class LoginResult:
    success: bool
    username: str | None = None
    active_game_found: bool = False
    game_stats: ActiveGameStats | None = None
    daily_stats: ActiveGameStats | None = None
    error: GameError | None = None
