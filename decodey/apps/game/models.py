"""
Game models — one live puzzle attempt and its helpers.
"""

from __future__ import annotations

import enum
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import date

from decodey.core.config import max_mistakes_for, normalize_difficulty
from decodey.core.events import Phase

BLOCK = "█"

_NOT_LETTER = re.compile(r"[^A-Z]")
_NOT_LETTER_OR_BLOCK = re.compile(rf"[^A-Z{BLOCK}]")
_DAILY_DATE = re.compile(r"-daily-(\d{4}-\d{2}-\d{2})")


def hardcore_filter(encrypted: str, display: str) -> tuple[str, str]:
    """Strip spaces and punctuation, keeping only letters (and blocks in the display)."""
    return _NOT_LETTER.sub("", encrypted), _NOT_LETTER_OR_BLOCK.sub("", display)


def letter_frequency(text: str) -> dict[str, int]:
    return dict(Counter(c for c in text if "A" <= c <= "Z"))


class Outcome(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    WON = "won"
    LOST = "lost"


@dataclass(frozen=True)
class GameId:
    """
    Parsed form of `{difficulty}-{daily|custom}-{uuid}`.

    Daily ids may carry the challenge date right after `daily-`
    (`easy-daily-2026-10-15-…`). Anything unparseable falls back to a
    custom game at the given default difficulty.
    """
    raw: str
    difficulty: str
    is_daily: bool
    daily_date: date | None = None

    @classmethod
    def parse(cls, raw: str, default_difficulty: str = "easy") -> "GameId":
        head = raw.split("-", 1)[0] if raw else ""
        difficulty = normalize_difficulty(head, default_difficulty)
        is_daily = "-daily-" in raw
        daily_date = None
        if is_daily:
            match = _DAILY_DATE.search(raw)
            if match:
                try:
                    daily_date = date.fromisoformat(match.group(1))
                except ValueError:
                    daily_date = None
        return cls(raw=raw, difficulty=difficulty, is_daily=is_daily, daily_date=daily_date)


@dataclass
class Session:
    game_id: str | None = None
    encrypted: str = ""
    raw_encrypted: str = ""  # as sent by the server, before hardcore filtering
    display: str = ""
    mistakes: int = 0
    pending_hints: int = 0
    difficulty: str = "easy"
    max_mistakes: int = 8
    correctly_guessed: set[str] = field(default_factory=set)
    guessed_mappings: dict[str, str] = field(default_factory=dict)
    letter_frequency: dict[str, int] = field(default_factory=dict)
    original_letters: list[str] = field(default_factory=list)
    hardcore_mode: bool = False
    is_daily_challenge: bool = False
    daily_date: date | None = None
    selected_encrypted: str | None = None
    last_correct_guess: str | None = None
    started_at: float | None = None
    completed_at: float | None = None

    # Two-phase outcome: a client-side guess of the result stays TENTATIVE
    # until the server has answered for it.
    outcome: Outcome = Outcome.IN_PROGRESS
    phase: Phase = Phase.CONFIRMED
    win_data: dict | None = None

    @classmethod
    def blank(cls, difficulty: str = "easy", hardcore_mode: bool = False) -> "Session":
        difficulty = normalize_difficulty(difficulty)
        return cls(difficulty=difficulty, max_mistakes=max_mistakes_for(difficulty), hardcore_mode=hardcore_mode)

    # ── Derived flags ────────────────────────────────

    @property
    def has_started(self) -> bool:
        return self.game_id is not None

    @property
    def has_won(self) -> bool:
        return self.outcome is Outcome.WON

    @property
    def has_lost(self) -> bool:
        return self.outcome is Outcome.LOST

    @property
    def is_over(self) -> bool:
        return self.outcome is not Outcome.IN_PROGRESS

    @property
    def win_confirmed(self) -> bool:
        return self.has_won and self.phase is Phase.CONFIRMED

    @property
    def time_spent(self) -> int:
        if self.started_at is None:
            return 0
        end = self.completed_at or time.time()
        return max(0, int(end - self.started_at))

    @property
    def hints_available(self) -> bool:
        return self.mistakes + self.pending_hints + 1 < self.max_mistakes

    # ── Outcome transitions ──────────────────────────

    def mark_won(self, phase: Phase, win_data: dict | None = None) -> None:
        self.outcome = Outcome.WON
        self.phase = phase
        self.win_data = win_data if phase is Phase.CONFIRMED else None
        self.completed_at = self.completed_at or time.time()

    def mark_lost(self, phase: Phase = Phase.CONFIRMED) -> None:
        self.outcome = Outcome.LOST
        self.phase = phase
        self.win_data = None
        self.completed_at = self.completed_at or time.time()

    def snapshot(self) -> dict:
        """Plain-dict view for UIs and score payloads."""
        return {
            "game_id": self.game_id,
            "encrypted": self.encrypted,
            "display": self.display,
            "mistakes": self.mistakes,
            "max_mistakes": self.max_mistakes,
            "pending_hints": self.pending_hints,
            "difficulty": self.difficulty,
            "correctly_guessed": sorted(self.correctly_guessed),
            "guessed_mappings": dict(self.guessed_mappings),
            "hardcore_mode": self.hardcore_mode,
            "is_daily_challenge": self.is_daily_challenge,
            "daily_date": self.daily_date.isoformat() if self.daily_date else None,
            "has_won": self.has_won,
            "has_lost": self.has_lost,
            "phase": self.phase.value,
            "win_data": self.win_data,
            "time_spent": self.time_spent,
        }
