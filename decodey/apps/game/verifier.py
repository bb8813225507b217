"""
verifier.py — WinVerifier
==========================
Turns a provisional, client-detected win into the server's verdict.

The store flips a tentative win as soon as a guess response says the puzzle
is solved; this class then asks GET /api/game-status for the canonical
result. A confirmed win gets its winData; a server-side loss overrides the
client's guess.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from decodey.apps.game.schema import GameStatus, WinData
from decodey.apps.game.store import GameStateStore
from decodey.core.errors import GameError
from decodey.services.api_client import DecodeyClient

logger = logging.getLogger(__name__)


@dataclass
class WinVerification:
    verified: bool
    win_data: dict | None = None
    lost: bool = False
    error: GameError | None = None


class WinVerifier:
    def __init__(self, client: DecodeyClient, store: GameStateStore):
        self.client = client
        self.store = store

    @staticmethod
    def _server_says_lost(status: GameStatus) -> bool:
        if status.game_complete and not status.has_won:
            return True
        return (
            status.mistakes is not None
            and status.max_mistakes is not None
            and status.mistakes >= status.max_mistakes
        )

    async def _with_attribution(self, game_id: str, win_data: WinData) -> WinData:
        if win_data.attribution and win_data.attribution.major_attribution:
            return win_data
        try:
            attribution = await self.client.get_attribution(game_id)
        except GameError as e:
            logger.warning(f"Could not fetch attribution for {game_id}: {e}")
            return win_data
        return win_data.model_copy(update={"attribution": attribution})

    async def verify_win_and_get_data(self) -> WinVerification:
        session = self.store.session
        if not session.has_won:
            return WinVerification(verified=False)
        if session.win_confirmed:
            return WinVerification(verified=True, win_data=session.win_data)

        game_id = session.game_id
        try:
            status = await self.client.get_game_status(game_id)
        except GameError as e:
            logger.error(f"Win verification failed for {game_id}, keeping provisional win: {e}")
            return WinVerification(verified=False, error=e)

        if self.store.session.game_id != game_id:
            logger.info(f"Discarding verification for stale game {game_id}")
            return WinVerification(verified=False)

        # Loss first, same rule as the store.
        if self._server_says_lost(status):
            self.store.correct_to_loss(game_id, status.mistakes)
            return WinVerification(verified=False, lost=True)

        if status.has_won:
            win_data = status.win_data or WinData(mistakes=session.mistakes, max_mistakes=session.max_mistakes)
            win_data = await self._with_attribution(game_id, win_data)
            data = win_data.model_dump()
            self.store.confirm_win(game_id, data)
            logger.info(f"✅ Win confirmed for {game_id}: score={win_data.score}")
            return WinVerification(verified=True, win_data=data)

        logger.info(f"Server has no verdict yet for {game_id}, win stays provisional")
        return WinVerification(verified=False)
