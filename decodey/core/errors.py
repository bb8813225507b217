"""Error taxonomy for the game client."""

from __future__ import annotations


class GameError(Exception):
    def __init__(self, code: str, message: str, details: dict | None = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class AuthenticationRequiredError(GameError):
    def __init__(self, message: str = "Authentication required", details: dict | None = None):
        super().__init__("AUTH_REQUIRED", message, details)


class SessionExpiredError(AuthenticationRequiredError):
    def __init__(self, message: str = "Session expired, please log in again", details: dict | None = None):
        super().__init__(message, details)
        self.code = "SESSION_EXPIRED"


class DataIntegrityError(GameError):
    def __init__(self, message: str = "Encrypted and display text lengths differ", details: dict | None = None):
        super().__init__("DATA_INTEGRITY", message, details)


class NetworkUnreachableError(GameError):
    def __init__(self, message: str = "Server unreachable", details: dict | None = None):
        super().__init__("NETWORK_UNREACHABLE", message, details)


class ServerRejectedError(GameError):
    def __init__(self, message: str = "Request rejected by server", status: int | None = None,
                 payload: dict | None = None):
        super().__init__("SERVER_REJECTED", message, {"status": status, "payload": payload or {}})
        self.status = status
        self.payload = payload or {}

    @property
    def retryable(self) -> bool:
        """Server-side faults and throttling are worth retrying; other 4xx are final."""
        if self.status is None:
            return True
        return self.status >= 500 or self.status in (408, 429)


class NoActiveGameError(GameError):
    def __init__(self, message: str = "No active game found", details: dict | None = None):
        super().__init__("NO_ACTIVE_GAME", message, details)


class GameNotActiveError(GameError):
    def __init__(self, message: str = "No game in progress", details: dict | None = None):
        super().__init__("GAME_NOT_ACTIVE", message, details)
