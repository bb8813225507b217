"""
coordinator.py — SessionCoordinator
====================================
Decides what "start the game" means for the current player and drives
GameStateStore accordingly.

KARAR SIRASI (initialize):
--------------------------
1. Initialization already running          → already-initializing, no effect
2. daily=True                               → daily challenge
3. Anonymous, no custom request             → daily challenge (stale id cleared)
4. Signed in, no custom request             → saved game on the server?
                                              yes → ActiveGameFound, caller decides
5. custom_game_requested=True               → fresh game
6. Signed in with a stored game id          → resume, fresh game if that fails
7. Otherwise                                → fresh game

Daily challenge: a signed-in player who already finished today's puzzle
gets already_completed instead of a new session.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import date

from decodey.apps.game.store import GameStateStore
from decodey.apps.session.schema import InitOptions, InitResult, LoginResult
from decodey.core.config import Settings, normalize_difficulty
from decodey.core.errors import (
    AuthenticationRequiredError,
    DataIntegrityError,
    GameError,
    NoActiveGameError,
    ServerRejectedError,
)
from decodey.core.events import ActiveGameFound, DailyAlreadyCompleted, EventBus, LoggedIn, LoggedOut
from decodey.core.storage import GAME_ID, LocalStorage
from decodey.services.active_game import ActiveGameDetector
from decodey.services.api_client import DecodeyClient

logger = logging.getLogger(__name__)


class SessionCoordinator:
    def __init__(
        self,
        client: DecodeyClient,
        storage: LocalStorage,
        store: GameStateStore,
        detector: ActiveGameDetector,
        events: EventBus,
        settings: Settings,
        today: Callable[[], date] = date.today,
    ):
        self.client = client
        self.storage = storage
        self.store = store
        self.detector = detector
        self.events = events
        self.settings = settings
        self._today = today
        self._initializing = False

    @property
    def is_initializing(self) -> bool:
        return self._initializing

    # ═══════════════════════════════════════════════════
    # RE-ENTRANCY GUARD
    # ═══════════════════════════════════════════════════

    def _release(self) -> None:
        self._initializing = False

    async def _guarded(self, action: Callable[[], Awaitable[InitResult]]) -> InitResult:
        if self._initializing:
            logger.info("Game initialization already in progress, returning early")
            return InitResult(success=False, reason="already-initializing")

        self._initializing = True
        try:
            return await action()
        except GameError as e:
            logger.error(f"Error initializing game: {e}")
            return InitResult(success=False, error=e)
        finally:
            # Held a little longer to swallow duplicate UI-triggered calls.
            grace = self.settings.INIT_GRACE_SECONDS
            if grace > 0:
                asyncio.get_running_loop().call_later(grace, self._release)
            else:
                self._release()

    # ═══════════════════════════════════════════════════
    # INITIALIZE
    # ═══════════════════════════════════════════════════

    async def initialize(self, options: InitOptions | None = None) -> InitResult:
        options = options or InitOptions()
        return await self._guarded(lambda: self._initialize(options))

    async def _initialize(self, options: InitOptions) -> InitResult:
        authenticated = self.storage.is_authenticated
        has_game_id = self.storage.has(GAME_ID)
        logger.info(
            f"Init: authenticated={authenticated} existing_game_id={has_game_id} "
            f"daily={options.daily} custom={options.custom_game_requested}"
        )

        if options.daily:
            return await self._start_daily()

        if not authenticated and not options.custom_game_requested:
            logger.info("Anonymous player, starting the daily challenge")
            self.storage.game_id = None
            return await self._start_daily()

        if authenticated and not options.custom_game_requested:
            check = await self.detector.check_active_game()
            if check.found:
                self.events.publish(ActiveGameFound(
                    game_stats=check.game_stats.model_dump() if check.game_stats else None,
                    daily_stats=check.daily_stats.model_dump() if check.daily_stats else None,
                ))
                return InitResult(
                    success=True,
                    active_game_found=True,
                    game_stats=check.game_stats,
                    daily_stats=check.daily_stats,
                )

        if options.custom_game_requested:
            return await self._start_fresh(options, custom=True)

        if authenticated and has_game_id:
            resumed = await self._resume()
            if resumed.success:
                return resumed
            logger.info(f"Continue failed ({resumed.reason or resumed.error}), starting new game")

        return await self._start_fresh(options)

    async def _start_fresh(self, options: InitOptions, custom: bool = False) -> InitResult:
        difficulty, hardcore = self.store.preferences()
        if options.difficulty:
            difficulty = normalize_difficulty(options.difficulty, difficulty)
        if options.hardcore_mode is not None:
            hardcore = options.hardcore_mode
        long_text = self.settings.LONG_TEXT if options.long_text is None else options.long_text

        self.storage.game_id = None
        data = await self.client.start_game(difficulty=difficulty, long_text=long_text, hardcore_mode=hardcore)
        self.store.load(data, hardcore_mode=hardcore, is_daily=False)
        return InitResult(success=True, game_data=data, new_game=True, is_custom_game=custom)

    # ═══════════════════════════════════════════════════
    # DAILY CHALLENGE
    # ═══════════════════════════════════════════════════

    async def _daily_completed(self, today: date) -> tuple[bool, dict | None]:
        try:
            completion = await self.client.check_daily_completion(today)
        except AuthenticationRequiredError:
            raise
        except GameError as e:
            # Server will still refuse a second completion; don't block play on this.
            logger.error(f"Error checking daily completion: {e}")
            return False, None
        return completion.is_completed, completion.completion_data

    async def _start_daily(self) -> InitResult:
        today = self._today()

        if self.storage.is_authenticated:
            completed, completion_data = await self._daily_completed(today)
            if completed:
                logger.info(f"Daily challenge for {today} already completed")
                self.events.publish(DailyAlreadyCompleted(today, completion_data))
                return InitResult(
                    success=False,
                    already_completed=True,
                    completion_data=completion_data,
                    daily=True,
                )

        # The daily replaces whatever was active.
        self.storage.game_id = None
        data = await self.client.start_daily(today)
        if not data.game_id:
            raise ServerRejectedError("Invalid response from daily challenge endpoint", payload=data.model_dump())

        _, hardcore = self.store.preferences()
        self.store.load(data, hardcore_mode=hardcore, is_daily=True, daily_date=today)
        logger.info(f"Daily challenge started with game ID: {data.game_id}")
        return InitResult(success=True, game_data=data, daily=True)

    # ═══════════════════════════════════════════════════
    # RESUME / ABANDON
    # ═══════════════════════════════════════════════════

    async def continue_game(self) -> InitResult:
        """Resume the server-side saved game (after ActiveGameFound, typically)."""
        return await self._guarded(self._resume)

    async def _resume(self) -> InitResult:
        if not self.storage.is_authenticated:
            return InitResult(success=False, reason="anonymous-user")
        try:
            data = await self.client.continue_game()
        except NoActiveGameError:
            logger.info("No active game to continue")
            return InitResult(success=False, reason="no-active-game")
        except GameError as e:
            logger.error(f"Error continuing saved game: {e}")
            return InitResult(success=False, error=e)

        _, hardcore = self.store.preferences()
        try:
            self.store.load(data, hardcore_mode=hardcore, resumed=True)
        except (DataIntegrityError, ServerRejectedError) as e:
            return InitResult(success=False, error=e)
        return InitResult(success=True, game_data=data, resumed=True, daily=self.store.session.is_daily_challenge)

    async def abandon_and_start_new(self, options: InitOptions | None = None) -> InitResult:
        """Drop the saved game and start a fresh one; nothing is abandoned while busy."""
        options = (options or InitOptions()).model_copy(update={"custom_game_requested": True, "daily": False})

        async def action() -> InitResult:
            await self.store.abandon_game()
            return await self._initialize(options)

        return await self._guarded(action)

    # ═══════════════════════════════════════════════════
    # LOGIN / LOGOUT
    # ═══════════════════════════════════════════════════

    async def login(self, username: str, password: str, remember_me: bool = False) -> LoginResult:
        try:
            account = await self.client.login(username, password, remember_me)
        except GameError as e:
            logger.error(f"Login failed for {username}: {e}")
            return LoginResult(success=False, error=e)

        name = account.username or username
        self.events.publish(LoggedIn(name))

        check = await self.detector.check_active_game()
        if check.found:
            self.events.publish(ActiveGameFound(
                game_stats=check.game_stats.model_dump() if check.game_stats else None,
                daily_stats=check.daily_stats.model_dump() if check.daily_stats else None,
            ))
        return LoginResult(
            success=True,
            username=name,
            active_game_found=check.found,
            game_stats=check.game_stats,
            daily_stats=check.daily_stats,
        )

    async def logout(self, start_anonymous_game: bool = True) -> InitResult:
        confirmed = False
        try:
            await self.client.logout()
            confirmed = True
        except GameError as e:
            logger.warning(f"Logout request failed, clearing session anyway: {e}")

        self.storage.clear_session()
        self.store.reset_game()
        self.events.publish(LoggedOut(server_confirmed=confirmed))

        if start_anonymous_game:
            return await self.initialize(InitOptions(daily=True))
        return InitResult(success=True)

