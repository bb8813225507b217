"""
store.py — GameStateStore
==========================
In-memory mirror of the one live puzzle session. All mutation goes through
this class, and every mutation applies what the server answered rather than
what the client guessed.

KURALLAR:
---------
- len(encrypted) == len(display), before and after hardcore filtering.
  An update that breaks it raises DataIntegrityError and changes nothing.
- mistakes <= max_mistakes; reaching max_mistakes is a loss, and the loss
  check runs before the win check.
- A hint is only requested while mistakes + pending_hints + 1 < max_mistakes.
- Once won or lost the session only changes through WinVerifier or by being
  replaced.
- A server answer for a game id that is no longer current is dropped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING

from decodey.apps.game.models import (
    BLOCK,
    GameId,
    Session,
    hardcore_filter,
    letter_frequency,
)
from decodey.apps.game.schema import GameData, MoveResponse
from decodey.core import storage as keys
from decodey.core.config import Settings, max_mistakes_for, normalize_difficulty
from decodey.core.errors import DataIntegrityError, GameError, GameNotActiveError, ServerRejectedError
from decodey.core.events import (
    EventBus,
    GameAbandoned,
    GameLost,
    GameReset,
    GameStarted,
    GameStateChanged,
    GameWon,
    Phase,
)
from decodey.core.storage import LocalStorage
from decodey.services.api_client import DecodeyClient

if TYPE_CHECKING:
    from decodey.apps.game.verifier import WinVerifier

logger = logging.getLogger(__name__)


@dataclass
class GuessResult:
    is_correct: bool = False
    has_won: bool = False
    has_lost: bool = False
    win_verified: bool = False
    stale: bool = False


@dataclass
class HintResult:
    accepted: bool
    reason: str | None = None  # hint-in-progress | mistake-budget
    revealed: list[str] = field(default_factory=list)
    has_won: bool = False
    has_lost: bool = False
    stale: bool = False


class GameStateStore:
    def __init__(
        self,
        client: DecodeyClient,
        storage: LocalStorage,
        settings: Settings,
        events: EventBus,
    ):
        self.client = client
        self.storage = storage
        self.settings = settings
        self.events = events
        self.verifier: WinVerifier | None = None

        difficulty, hardcore = self.preferences()
        self._session = Session.blank(difficulty, hardcore)
        self._move_lock = asyncio.Lock()
        self._hint_in_flight = False

    @property
    def session(self) -> Session:
        return self._session

    def preferences(self) -> tuple[str, bool]:
        """Difficulty and hardcore mode: stored user settings over Settings defaults."""
        prefs = self.storage.get(keys.SETTINGS) or {}
        difficulty = normalize_difficulty(prefs.get("difficulty"), self.settings.DEFAULT_DIFFICULTY)
        hardcore = bool(prefs.get("hardcore_mode", self.settings.HARDCORE_MODE))
        return difficulty, hardcore

    def update_preferences(self, difficulty: str | None = None, hardcore_mode: bool | None = None) -> dict:
        """
        Persist the player's defaults for future games.

        `normal` is stored as `medium`; an unknown difficulty falls back to
        medium. The live session is not touched.
        """
        prefs = dict(self.storage.get(keys.SETTINGS) or {})
        if difficulty is not None:
            value = difficulty.strip().lower()
            normalized = normalize_difficulty(value, "medium")
            if normalized != value and value != "normal":
                logger.warning(f"Invalid difficulty value: {difficulty}, defaulting to medium")
            prefs["difficulty"] = normalized
        if hardcore_mode is not None:
            prefs["hardcore_mode"] = bool(hardcore_mode)
        self.storage.set(keys.SETTINGS, prefs)
        logger.info(f"⚙️  Preferences saved: {prefs}")
        return prefs

    # ═══════════════════════════════════════════════════
    # TEXT INTEGRITY
    # ═══════════════════════════════════════════════════

    @staticmethod
    def _check_parity(encrypted: str, display: str, what: str) -> None:
        if len(encrypted) != len(display):
            logger.error(
                f"Data integrity error ({what}): encrypted length {len(encrypted)} "
                f"!= display length {len(display)}"
            )
            raise DataIntegrityError(details={
                "stage": what,
                "encrypted_length": len(encrypted),
                "display_length": len(display),
            })

    def _prepare_text(self, encrypted: str, display: str, hardcore: bool) -> tuple[str, str]:
        display = display.upper()
        self._check_parity(encrypted, display, "raw")
        if not hardcore:
            return encrypted, display
        filtered = hardcore_filter(encrypted, display)
        self._check_parity(*filtered, "hardcore")
        return filtered

    def _prepare_display(self, session: Session, display: str | None) -> str | None:
        if not display:
            return None
        display = display.upper()
        self._check_parity(session.raw_encrypted, display, "raw")
        if not session.hardcore_mode:
            return display
        _, filtered = hardcore_filter(session.raw_encrypted, display)
        self._check_parity(session.encrypted, filtered, "hardcore")
        return filtered

    # ═══════════════════════════════════════════════════
    # LOAD — start / continue / daily
    # ═══════════════════════════════════════════════════

    def load(
        self,
        data: GameData,
        *,
        hardcore_mode: bool | None = None,
        is_daily: bool | None = None,
        daily_date: date | None = None,
        resumed: bool = False,
    ) -> Session:
        """
        Install a session from a full game payload.

        Raises:
            DataIntegrityError: text missing or encrypted/display lengths differ
            ServerRejectedError: payload carries no game id
        """
        if not data.game_id:
            raise ServerRejectedError("Game payload has no game_id", payload=data.model_dump())
        if not data.encrypted_paragraph or not data.display:
            logger.error(f"Invalid game data for {data.game_id}: missing encrypted or display text")
            raise DataIntegrityError("Game payload is missing encrypted or display text")

        _, default_hardcore = self.preferences()
        if hardcore_mode is None:
            hardcore_mode = data.hardcore_mode if data.hardcore_mode is not None else default_hardcore

        encrypted, display = self._prepare_text(data.encrypted_paragraph, data.display, hardcore_mode)

        parsed = GameId.parse(data.game_id, self.settings.DEFAULT_DIFFICULTY)
        difficulty = normalize_difficulty(data.difficulty, parsed.difficulty)
        max_mistakes = max_mistakes_for(difficulty)
        if is_daily is None:
            is_daily = parsed.is_daily
        if is_daily and daily_date is None:
            daily_date = parsed.daily_date
            if daily_date is None and data.daily_date:
                try:
                    daily_date = date.fromisoformat(data.daily_date[:10])
                except ValueError:
                    daily_date = None

        correctly_guessed = set(data.correctly_guessed)
        if data.guessed_mappings:
            mappings = dict(data.guessed_mappings)
        elif data.reverse_mapping:
            mappings = {
                letter: data.reverse_mapping[letter]
                for letter in correctly_guessed
                if letter in data.reverse_mapping
            }
        else:
            mappings = {}

        session = Session(
            game_id=data.game_id,
            encrypted=encrypted,
            raw_encrypted=data.encrypted_paragraph,
            display=display,
            mistakes=min(max(data.mistakes, 0), max_mistakes),
            difficulty=difficulty,
            max_mistakes=max_mistakes,
            correctly_guessed=correctly_guessed,
            guessed_mappings=mappings,
            letter_frequency=dict(data.letter_frequency) if data.letter_frequency else letter_frequency(encrypted),
            original_letters=list(data.original_letters),
            hardcore_mode=hardcore_mode,
            is_daily_challenge=is_daily,
            daily_date=daily_date,
            started_at=time.time() - data.time_spent,
        )
        if session.mistakes >= session.max_mistakes:
            session.mark_lost()

        self._session = session
        self.storage.game_id = session.game_id
        logger.info(
            f"🎮 Game {'resumed' if resumed else 'loaded'}: {session.game_id} "
            f"({difficulty}, daily={is_daily}, hardcore={hardcore_mode})"
        )
        self.events.publish(GameStarted(game_id=session.game_id, is_daily=is_daily, resumed=resumed))
        return session

    # ═══════════════════════════════════════════════════
    # MOVES — guess / hint
    # ═══════════════════════════════════════════════════

    def _require_live(self) -> Session:
        session = self._session
        if not session.has_started:
            raise GameNotActiveError()
        if session.is_over:
            raise GameNotActiveError("Game is already over", {"game_id": session.game_id})
        return session

    def _apply_move(self, session: Session, resp: MoveResponse, display: str | None) -> bool:
        """
        Write the server's view of the board into the session.

        Returns True when the answer revealed a win that needs verifying.
        """
        if resp.error:
            raise ServerRejectedError(resp.error, payload=resp.model_dump())
        if display is not None:
            session.display = display
        if resp.mistakes is not None:
            session.mistakes = min(max(resp.mistakes, 0), session.max_mistakes)
        if resp.correctly_guessed is not None:
            session.correctly_guessed = set(resp.correctly_guessed)

        if session.mistakes >= session.max_mistakes:
            session.mark_lost()
            logger.info(f"💀 Game lost: {session.game_id} ({session.mistakes}/{session.max_mistakes})")
            self.events.publish(GameLost(session.game_id, session.mistakes, session.max_mistakes))
            return False
        if resp.reports_win:
            session.mark_won(Phase.TENTATIVE)
            logger.info(f"🏆 Provisional win: {session.game_id}")
            self.events.publish(GameWon(session.game_id, Phase.TENTATIVE))
            return True
        return False

    def _set_mapping(self, session: Session, encrypted_letter: str, plain_letter: str) -> None:
        # One plaintext letter maps from at most one encrypted letter.
        for other, plain in list(session.guessed_mappings.items()):
            if plain == plain_letter and other != encrypted_letter:
                del session.guessed_mappings[other]
        session.guessed_mappings[encrypted_letter] = plain_letter

    async def submit_guess(self, encrypted_letter: str, guessed_letter: str) -> GuessResult:
        """
        Send one letter mapping to the server and apply its verdict.

        Raises:
            ValueError: either letter missing
            GameNotActiveError: no game, or the game is over
            AuthenticationRequiredError / SessionExpiredError / NetworkUnreachableError /
            ServerRejectedError: straight from the backend call
            DataIntegrityError: the answer's display does not line up with the text
        """
        if not encrypted_letter or not guessed_letter:
            raise ValueError("Both the encrypted letter and the guessed letter are required")
        encrypted_letter = encrypted_letter.upper()
        guessed_letter = guessed_letter.upper()

        async with self._move_lock:
            session = self._require_live()
            game_id = session.game_id
            was_guessed = encrypted_letter in session.correctly_guessed

            resp = await self.client.submit_guess(game_id, encrypted_letter, guessed_letter)

            if self._session.game_id != game_id:
                logger.info(f"Discarding guess result for stale game {game_id}")
                return GuessResult(stale=True)

            display = self._prepare_display(session, resp.display)
            needs_verify = self._apply_move(session, resp, display)
            session.selected_encrypted = None

            is_correct = encrypted_letter in session.correctly_guessed and not was_guessed
            if resp.is_correct is not None:
                is_correct = resp.is_correct and encrypted_letter in session.correctly_guessed
            if is_correct:
                session.last_correct_guess = encrypted_letter
                self._set_mapping(session, encrypted_letter, guessed_letter)

            self.events.publish(GameStateChanged(game_id, "guess"))

            verified = False
            if needs_verify and self.verifier:
                verified = (await self.verifier.verify_win_and_get_data()).verified

            return GuessResult(
                is_correct=is_correct,
                has_won=session.has_won,
                has_lost=session.has_lost,
                win_verified=verified,
            )

    async def get_hint(self) -> HintResult:
        """
        Ask the server to reveal one letter. Costs a mistake.

        Refused without a request while another hint is in flight or when the
        hint would use up the last mistake.
        """
        if self._hint_in_flight:
            return HintResult(accepted=False, reason="hint-in-progress")
        session = self._require_live()
        if not session.hints_available:
            logger.info(
                f"Hint refused for {session.game_id}: mistakes={session.mistakes} "
                f"pending={session.pending_hints} max={session.max_mistakes}"
            )
            return HintResult(accepted=False, reason="mistake-budget")

        self._hint_in_flight = True
        session.pending_hints += 1
        released = False
        game_id = session.game_id
        try:
            async with self._move_lock:
                if self._session.game_id != game_id or session.is_over:
                    return HintResult(accepted=False, stale=True)
                # A guess that finished while we waited may have used up the budget.
                if session.mistakes + session.pending_hints >= session.max_mistakes:
                    logger.info(f"Hint refused for {game_id} after waiting: mistakes={session.mistakes}")
                    return HintResult(accepted=False, reason="mistake-budget")

                resp = await self.client.get_hint(game_id)

                if self._session.game_id != game_id:
                    logger.info(f"Discarding hint result for stale game {game_id}")
                    return HintResult(accepted=False, stale=True)

                display = self._prepare_display(session, resp.display)
                before = set(session.correctly_guessed)
                session.pending_hints -= 1
                released = True
                needs_verify = self._apply_move(session, resp, display)

                revealed = sorted(session.correctly_guessed - before)
                for letter in revealed:
                    for i, c in enumerate(session.encrypted):
                        if c == letter and session.display[i] != BLOCK:
                            self._set_mapping(session, letter, session.display[i])
                            break

                self.events.publish(GameStateChanged(game_id, "hint"))
                if needs_verify and self.verifier:
                    await self.verifier.verify_win_and_get_data()

                return HintResult(
                    accepted=True,
                    revealed=revealed,
                    has_won=session.has_won,
                    has_lost=session.has_lost,
                )
        finally:
            # The reservation never outlives the request.
            if not released:
                session.pending_hints = max(0, session.pending_hints - 1)
            self._hint_in_flight = False

    # ═══════════════════════════════════════════════════
    # WIN VERIFICATION HOOKS
    # ═══════════════════════════════════════════════════

    def confirm_win(self, game_id: str, win_data: dict) -> bool:
        session = self._session
        if session.game_id != game_id:
            return False
        session.mark_won(Phase.CONFIRMED, win_data)
        self.events.publish(GameWon(game_id, Phase.CONFIRMED, win_data))
        self.events.publish(GameStateChanged(game_id, "verify"))
        return True

    def correct_to_loss(self, game_id: str, mistakes: int | None = None) -> bool:
        session = self._session
        if session.game_id != game_id:
            return False
        if mistakes is not None:
            session.mistakes = min(max(mistakes, 0), session.max_mistakes)
        session.mark_lost()
        logger.warning(f"Server reports {game_id} as lost, overriding provisional win")
        self.events.publish(GameLost(game_id, session.mistakes, session.max_mistakes))
        self.events.publish(GameStateChanged(game_id, "verify"))
        return True

    # ═══════════════════════════════════════════════════
    # SELECTION / RESET / ABANDON
    # ═══════════════════════════════════════════════════

    def select_letter(self, letter: str | None) -> bool:
        """Select an encrypted letter; already-solved letters cannot be selected."""
        session = self._session
        if letter is not None:
            letter = letter.upper()
            if letter in session.correctly_guessed:
                return False
        session.selected_encrypted = letter
        self.events.publish(GameStateChanged(session.game_id, "select"))
        return True

    def reset_game(self) -> None:
        previous = self._session.game_id
        difficulty, hardcore = self.preferences()
        self._session = Session.blank(difficulty, hardcore)
        self.events.publish(GameReset(previous_game_id=previous))

    async def abandon_game(self) -> bool:
        """
        Drop the current game, server side when possible.

        The server call is best effort; local identity and state are cleared
        either way. Returns whether the server confirmed the abandon.
        """
        game_id = self._session.game_id or self.storage.game_id
        confirmed = False
        if game_id and self.storage.is_authenticated:
            try:
                await self.client.abandon_game(game_id)
                confirmed = True
            except GameError as e:
                logger.warning(f"Server abandon failed for {game_id}, continuing anyway: {e}")

        self.storage.game_id = None
        if game_id or self._session.has_started:
            self.reset_game()
            self.events.publish(GameAbandoned(game_id=game_id, server_confirmed=confirmed))
            logger.info(f"🗑️  Game abandoned: {game_id}")
        return confirmed
