"""
events.py — Typed Publish/Subscribe
====================================
Every event is a frozen dataclass; subscribers register for an event class
and receive instances of it (subclasses included).

KULLANIM:
---------
    bus = EventBus()
    unsubscribe = bus.subscribe(GameWon, on_win)

    bus.publish(GameWon(game_id="easy-custom-…", phase=Phase.TENTATIVE))

    unsubscribe()

Subscribers may be plain functions or coroutine functions. Coroutines are
scheduled on the running loop; `drain()` waits for them.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")


class Phase(str, enum.Enum):
    """Optimistic client state vs. state the server has confirmed."""
    TENTATIVE = "tentative"
    CONFIRMED = "confirmed"


# ═══════════════════════════════════════════════════
# EVENT PAYLOADS
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class Event:
    pass


@dataclass(frozen=True)
class GameStarted(Event):
    game_id: str
    is_daily: bool = False
    resumed: bool = False


@dataclass(frozen=True)
class GameStateChanged(Event):
    game_id: str | None
    source: str  # guess | hint | verify | select


@dataclass(frozen=True)
class GameWon(Event):
    game_id: str
    phase: Phase
    win_data: dict | None = None


@dataclass(frozen=True)
class GameLost(Event):
    game_id: str
    mistakes: int
    max_mistakes: int
    phase: Phase = Phase.CONFIRMED


@dataclass(frozen=True)
class GameReset(Event):
    previous_game_id: str | None = None


@dataclass(frozen=True)
class GameAbandoned(Event):
    game_id: str | None
    server_confirmed: bool = False


@dataclass(frozen=True)
class ActiveGameFound(Event):
    game_stats: dict | None = None
    daily_stats: dict | None = None


@dataclass(frozen=True)
class DailyAlreadyCompleted(Event):
    challenge_date: date
    completion_data: dict | None = None


@dataclass(frozen=True)
class LoggedIn(Event):
    username: str


@dataclass(frozen=True)
class LoggedOut(Event):
    server_confirmed: bool = False


@dataclass(frozen=True)
class ScoreQueued(Event):
    game_id: str | None
    pending_count: int
    auth_required: bool = False


@dataclass(frozen=True)
class ScoresFlushed(Event):
    submitted: int
    remaining: int


# ═══════════════════════════════════════════════════
# BUS
# ═══════════════════════════════════════════════════

class EventBus:
    def __init__(self):
        # event class → subscribers, in registration order
        self._subscribers: dict[type[Event], list[Callable[[Any], Any]]] = {}
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, event_type: type[E], callback: Callable[[E], Any]) -> Callable[[], None]:
        """Register a callback; returns the function that removes it."""
        self._subscribers.setdefault(event_type, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def publish(self, event: Event) -> None:
        for event_type in type(event).__mro__:
            for callback in list(self._subscribers.get(event_type, [])):
                self._deliver(callback, event)

    def _deliver(self, callback: Callable[[Any], Any], event: Event) -> None:
        try:
            result = callback(event)
        except Exception as e:
            logger.error(f"❌ Subscriber {getattr(callback, '__qualname__', callback)} failed on "
                         f"{type(event).__name__}: {e}")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"❌ Async subscriber failed: {task.exception()}")

    async def drain(self) -> None:
        """Wait until every scheduled async subscriber has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
