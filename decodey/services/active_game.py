"""
active_game.py — Saved-game detection
======================================
Asks the backend whether the signed-in player already has a game in
progress, so nothing starts on top of it unannounced.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime

from decodey.apps.game.schema import ActiveGameStats
from decodey.core.errors import AuthenticationRequiredError, GameError
from decodey.core.storage import LocalStorage
from decodey.services.api_client import DecodeyClient

logger = logging.getLogger(__name__)


@dataclass
class ActiveGameCheck:
    has_active_game: bool = False
    has_active_daily_game: bool = False
    game_stats: ActiveGameStats | None = None
    daily_stats: ActiveGameStats | None = None
    anonymous: bool = False
    auth_error: bool = False
    error: GameError | None = None

    @property
    def found(self) -> bool:
        return self.has_active_game or self.has_active_daily_game


def _local_date(moment: datetime) -> date:
    # Naive timestamps are taken as local time; aware ones are converted.
    if moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.date()


class ActiveGameDetector:
    def __init__(
        self,
        client: DecodeyClient,
        storage: LocalStorage,
        today: Callable[[], date] = date.today,
    ):
        self.client = client
        self.storage = storage
        self._today = today

    async def check_active_game(self) -> ActiveGameCheck:
        if not self.storage.is_authenticated:
            # Nothing is kept server-side for anonymous players.
            return ActiveGameCheck(anonymous=True)

        try:
            response = await self.client.check_active_game()
        except AuthenticationRequiredError as e:
            logger.warning(f"Active game check needs re-authentication: {e}")
            return ActiveGameCheck(auth_error=True, error=e)
        except GameError as e:
            logger.error(f"Error checking for active game: {e}")
            return ActiveGameCheck(error=e)

        result = ActiveGameCheck(
            has_active_game=response.has_active_game,
            game_stats=response.game_stats if response.has_active_game else None,
        )

        if response.has_active_daily_game and response.daily_stats:
            started = response.daily_stats.start_time
            if started is not None and _local_date(started) == self._today():
                result.has_active_daily_game = True
                result.daily_stats = response.daily_stats
            else:
                logger.info(f"Ignoring stale daily game started {started}")

        if result.found:
            logger.info(
                f"Active game found (regular={result.has_active_game}, daily={result.has_active_daily_game})"
            )
        return result
