"""
runtime.py — Component wiring
==============================
Builds every client component once and connects them. There are no module
level singletons besides get_settings(); tests build a Runtime with their own
Settings, storage and HTTP transport.

BAĞLANTILAR:
------------
    GameWon(CONFIRMED) / GameLost  →  ScoreQueue.submit_score
    LoggedIn                        →  ScoreQueue.submit_pending_scores
    NetworkMonitor online           →  ScoreQueue flush (inside ScoreQueue)
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from datetime import date

import httpx

from decodey.apps.game.models import Session
from decodey.apps.game.store import GameStateStore
from decodey.apps.game.verifier import WinVerifier
from decodey.apps.session.coordinator import SessionCoordinator
from decodey.core.config import Settings, get_settings
from decodey.core.events import EventBus, GameLost, GameWon, LoggedIn, Phase
from decodey.core.network import NetworkMonitor
from decodey.core.storage import LocalStorage
from decodey.services.active_game import ActiveGameDetector
from decodey.services.api_client import DecodeyClient
from decodey.services.score_queue import PendingScore, ScoreQueue, ScoreSubmission, idempotency_key

logger = logging.getLogger(__name__)


def score_from_session(session: Session, win_data: dict | None = None) -> PendingScore:
    """Score payload for a finished session. Losses score zero."""
    won = session.has_won
    score = int((win_data or {}).get("score") or 0) if won else 0
    return PendingScore(
        game_id=session.game_id,
        score=score,
        mistakes=session.mistakes,
        time_taken=session.time_spent,
        difficulty=session.difficulty,
        game_type="daily" if session.is_daily_challenge else "regular",
        challenge_date=session.daily_date.isoformat() if session.daily_date else None,
        completed=True,
        won=won,
        completed_at=session.completed_at,
        idempotency_key=idempotency_key(session.game_id, session.completed_at),
    )


class Runtime:
    def __init__(
        self,
        settings: Settings | None = None,
        storage: LocalStorage | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        online: bool = True,
        today: Callable[[], date] = date.today,
    ):
        self.settings = settings or get_settings()
        self.storage = storage or LocalStorage(self.settings.STORAGE_PATH)
        self.events = EventBus()
        self.network = NetworkMonitor(online=online)

        self.client = DecodeyClient(self.settings, self.storage, transport=transport)
        self.store = GameStateStore(self.client, self.storage, self.settings, self.events)
        self.verifier = WinVerifier(self.client, self.store)
        self.store.verifier = self.verifier
        self.detector = ActiveGameDetector(self.client, self.storage, today=today)
        self.scores = ScoreQueue(self.client, self.storage, self.network, self.events)
        self.coordinator = SessionCoordinator(
            self.client,
            self.storage,
            self.store,
            self.detector,
            self.events,
            self.settings,
            today=today,
        )

        self._scored: set[str] = set()
        self.events.subscribe(GameWon, self._on_game_won)
        self.events.subscribe(GameLost, self._on_game_lost)
        self.events.subscribe(LoggedIn, self._on_logged_in)

    # ── Event handlers ───────────────────────────────

    async def _record(self, game_id: str, win_data: dict | None = None) -> ScoreSubmission | None:
        session = self.store.session
        if session.game_id != game_id or game_id in self._scored:
            return None
        self._scored.add(game_id)
        score = score_from_session(session, win_data)
        result = await self.scores.submit_score(score, is_authenticated=self.storage.is_authenticated)
        logger.info(f"Score for {game_id}: {result.message}")
        return result

    def _on_game_won(self, event: GameWon):
        # Provisional wins never produce a score.
        if event.phase is not Phase.CONFIRMED:
            return None
        return self._record(event.game_id, event.win_data)

    def _on_game_lost(self, event: GameLost):
        if event.phase is not Phase.CONFIRMED:
            return None
        return self._record(event.game_id)

    def _on_logged_in(self, event: LoggedIn):
        if self.scores.pending_count() == 0:
            return None
        return self.scores.submit_pending_scores(is_authenticated=True)

    # ── Host hooks ───────────────────────────────────

    async def set_online(self, online: bool) -> None:
        """Report a connectivity change and wait for whatever it triggered."""
        for result in self.network.set_online(online):
            if inspect.isawaitable(result):
                await result

    async def settle(self) -> None:
        """Wait for background work scheduled by event subscribers."""
        await self.events.drain()
