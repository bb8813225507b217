"""
api_client.py — decodey backend client
=======================================
Every backend call the game client makes goes through DecodeyClient.

Responsibilities:
    - auth headers (bearer token) and session correlation headers
      (X-Game-ID, X-Session-ID); the session id the server hands out is
      remembered in LocalStorage
    - one refresh-and-retry on 401 when a refresh token is stored, with a
      cooldown after a failed refresh
    - mapping transport / HTTP failures onto decodey.core.errors
    - parsing every response into decodey.apps.game.schema models

Kullanim:
    client = DecodeyClient(settings, storage)
    game = await client.start_game(difficulty="hard")
    move = await client.submit_guess(game.game_id, "Q", "T")
"""
from __future__ import annotations

import logging
import time
from datetime import date
from typing import TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from decodey.apps.game.schema import (
    ActiveGameResponse,
    Attribution,
    DailyCompletion,
    GameData,
    GameStatus,
    LeaderboardPage,
    LoginResponse,
    MoveResponse,
    ScoreReceipt,
)
from decodey.core import storage as keys
from decodey.core.config import Settings
from decodey.core.errors import (
    AuthenticationRequiredError,
    NetworkUnreachableError,
    NoActiveGameError,
    ServerRejectedError,
    SessionExpiredError,
)
from decodey.core.storage import LocalStorage

logger = logging.getLogger(__name__)


def _error_text(payload: dict) -> str:
    err = payload.get("error") or payload.get("message") or payload.get("msg") or ""
    if isinstance(err, dict):
        err = err.get("message", "")
    return str(err)


ModelT = TypeVar("ModelT", bound=BaseModel)


def _parse(model: type[ModelT], data: dict, path: str) -> ModelT:
    """Validate a response body; a body that does not fit is a server fault."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.error(f"Malformed response from {path}: {e.error_count()} validation error(s)")
        raise ServerRejectedError(f"Malformed response from {path}", status=502, payload=data) from e


class DecodeyClient:
    def __init__(
        self,
        settings: Settings,
        storage: LocalStorage,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.storage = storage
        self._transport = transport
        self._timeout = httpx.Timeout(settings.REQUEST_TIMEOUT, connect=settings.CONNECT_TIMEOUT)
        self._refreshing = False
        self._refresh_failed_at: float | None = None

    # ── Helpers ─────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.settings.API_URL,
            timeout=self._timeout,
            transport=self._transport,
        )

    def _headers(self, game_id: str | None = None, token: str | None = None) -> dict:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        token = token or self.storage.auth_token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        session_id = self.storage.get(keys.SESSION_ID)
        if session_id:
            headers["X-Session-ID"] = session_id
        game_id = game_id or self.storage.game_id
        if game_id:
            headers["X-Game-ID"] = game_id
        return headers

    def _remember_session(self, resp: httpx.Response) -> None:
        session_id = resp.headers.get("X-Session-ID")
        if session_id and session_id != self.storage.get(keys.SESSION_ID):
            self.storage.set(keys.SESSION_ID, session_id)
            logger.debug(f"Saved session ID: {session_id}")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict | None = None,
        params: dict | None = None,
        game_id: str | None = None,
        retry_auth: bool = True,
    ) -> dict:
        try:
            async with self._client() as client:
                resp = await client.request(
                    method, path, json=json, params=params, headers=self._headers(game_id),
                )
        except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as e:
            raise NetworkUnreachableError(f"{method} {path}: {e}") from e

        self._remember_session(resp)
        payload = self._payload(resp)

        if resp.status_code == 401:
            if retry_auth and self.storage.refresh_token and await self.refresh_token():
                return await self._request(
                    method, path, json=json, params=params, game_id=game_id, retry_auth=False,
                )
            if "expired" in _error_text(payload).lower():
                raise SessionExpiredError(details={"path": path})
            raise AuthenticationRequiredError(details={"path": path})

        text = _error_text(payload)
        if "session expired" in text.lower():
            raise SessionExpiredError(details={"path": path})
        if resp.status_code == 404 and "no active game" in text.lower():
            raise NoActiveGameError(text)
        if resp.status_code >= 400:
            raise ServerRejectedError(
                text or f"HTTP {resp.status_code} from {method} {path}",
                status=resp.status_code,
                payload=payload,
            )
        return payload

    @staticmethod
    def _payload(resp: httpx.Response) -> dict:
        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError:
            return {"error": resp.text[:200]}
        return data if isinstance(data, dict) else {"data": data}

    # ═══════════════════════════════════════════════════
    #  AUTH — /login, /logout, /refresh
    # ═══════════════════════════════════════════════════

    async def login(self, username: str, password: str, remember_me: bool = False) -> LoginResponse:
        data = await self._request(
            "POST", "/login",
            json={"username": username, "password": password, "remember": remember_me},
            retry_auth=False,
        )
        result = _parse(LoginResponse, data, "/login")
        self.storage.set(keys.AUTH_TOKEN, result.access_token)
        if result.refresh_token:
            self.storage.set(keys.REFRESH_TOKEN, result.refresh_token)
        if result.user_id:
            self.storage.set(keys.USER_ID, result.user_id)
        self.storage.set(keys.REMEMBER_ME, remember_me)
        logger.info(f"Logged in as {result.username or username}")
        return result

    async def logout(self) -> None:
        try:
            await self._request("POST", "/logout", retry_auth=False)
        finally:
            self.storage.remove(keys.AUTH_TOKEN, keys.REFRESH_TOKEN, keys.USER_ID)

    async def refresh_token(self) -> bool:
        """
        Trade the stored refresh token for a new access token.

        Single-flight: a second caller while a refresh is running gets False.
        After a failure no new attempt is made for REFRESH_COOLDOWN_SECONDS.
        """
        if self._refreshing:
            logger.info("Token refresh already in progress")
            return False
        if (
            self._refresh_failed_at is not None
            and time.monotonic() - self._refresh_failed_at < self.settings.REFRESH_COOLDOWN_SECONDS
        ):
            logger.info("Token refresh in cooldown, skipping")
            return False
        refresh = self.storage.refresh_token
        if not refresh:
            return False

        self._refreshing = True
        try:
            async with self._client() as client:
                resp = await client.post("/refresh", json={}, headers=self._headers(token=refresh))
            if resp.status_code == 401:
                logger.warning("Refresh token rejected, clearing credentials")
                self.storage.remove(keys.AUTH_TOKEN, keys.REFRESH_TOKEN)
                self._refresh_failed_at = time.monotonic()
                return False
            resp.raise_for_status()
            token = self._payload(resp).get("access_token")
            if not token:
                self._refresh_failed_at = time.monotonic()
                return False
            self.storage.set(keys.AUTH_TOKEN, token)
            self._refresh_failed_at = None
            return True
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Token refresh failed: {e}")
            self._refresh_failed_at = time.monotonic()
            return False
        finally:
            self._refreshing = False

    # ═══════════════════════════════════════════════════
    #  GAME — start / guess / hint / status
    # ═══════════════════════════════════════════════════

    async def start_game(
        self, difficulty: str = "easy", long_text: bool = False, hardcore_mode: bool = False,
    ) -> GameData:
        path = "/api/longstart" if long_text else "/api/start"
        data = await self._request(
            "POST", path, json={"difficulty": difficulty, "hardcore_mode": hardcore_mode},
        )
        return _parse(GameData, data, path)

    async def submit_guess(self, game_id: str, encrypted_letter: str, guessed_letter: str) -> MoveResponse:
        data = await self._request(
            "POST", "/api/guess",
            json={"encrypted_letter": encrypted_letter, "guessed_letter": guessed_letter, "game_id": game_id},
            game_id=game_id,
        )
        return _parse(MoveResponse, data, "/api/guess")

    async def get_hint(self, game_id: str) -> MoveResponse:
        data = await self._request("POST", "/api/hint", json={"game_id": game_id}, game_id=game_id)
        return _parse(MoveResponse, data, "/api/hint")

    async def get_game_status(self, game_id: str) -> GameStatus:
        data = await self._request("GET", "/api/game-status", params={"game_id": game_id}, game_id=game_id)
        return _parse(GameStatus, data, "/api/game-status")

    async def get_attribution(self, game_id: str) -> Attribution:
        data = await self._request("GET", "/get_attribution", params={"game_id": game_id}, game_id=game_id)
        return _parse(Attribution, data, "/get_attribution")

    # ═══════════════════════════════════════════════════
    #  SAVED GAMES — auth required
    # ═══════════════════════════════════════════════════

    async def check_active_game(self) -> ActiveGameResponse:
        data = await self._request("GET", "/api/check-active-game")
        return _parse(ActiveGameResponse, data, "/api/check-active-game")

    async def continue_game(self) -> GameData:
        data = await self._request("GET", "/api/continue-game")
        return _parse(GameData, data, "/api/continue-game")

    async def abandon_game(self, game_id: str | None = None) -> None:
        params = {"game_id": game_id} if game_id else None
        await self._request("DELETE", "/api/abandon-game", params=params, game_id=game_id)

    # ═══════════════════════════════════════════════════
    #  DAILY CHALLENGE
    # ═══════════════════════════════════════════════════

    async def start_daily(self, challenge_date: date) -> GameData:
        data = await self._request("GET", f"/api/daily/{challenge_date.isoformat()}")
        return _parse(GameData, data, "/api/daily")

    async def check_daily_completion(self, challenge_date: date) -> DailyCompletion:
        data = await self._request("GET", "/api/daily-completion", params={"date": challenge_date.isoformat()})
        return _parse(DailyCompletion, data, "/api/daily-completion")

    # ═══════════════════════════════════════════════════
    #  SCORES / LEADERBOARD
    # ═══════════════════════════════════════════════════

    async def record_score(self, payload: dict) -> ScoreReceipt:
        data = await self._request("POST", "/record_score", json=payload, game_id=payload.get("game_id"))
        return _parse(ScoreReceipt, data, "/record_score")

    async def get_leaderboard(self, period: str = "all-time", page: int = 1, per_page: int = 10) -> LeaderboardPage:
        data = await self._request(
            "GET", "/leaderboard", params={"period": period, "page": page, "per_page": per_page},
        )
        return _parse(LeaderboardPage, data, "/leaderboard")
