"""
fake_backend.py — In-memory decodey backend
============================================
A small FastAPI app that speaks the same HTTP contract as the real game
server, mounted in tests through httpx.ASGITransport.

Every quote is enciphered with a shift-by-3 alphabet, so
"HELLO, WORLD" is served as "KHOOR, ZRUOG" and the winning guesses are
K→H, H→E, O→L, R→O, Z→W, U→R, G→D.

KNOBS:
------
backend.fail("POST", "/api/guess", 500)    → next matching request fails
backend.hold("/api/hint")                  → request parks until gate.release
backend.move_overrides = {...}             → merged into guess/hint answers
backend.status_overrides = {...}           → merged into game-status answers
backend.completed_dailies.add(("alice", d)) → daily already done
"""

from __future__ import annotations

import asyncio
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, time

from fastapi import Body, FastAPI, Header, Request
from fastapi.responses import JSONResponse

BLOCK = "█"
QUOTE = "HELLO, WORLD"
MAX_MISTAKES = {"easy": 8, "medium": 5, "hard": 3}

# Fixed "today" for every test runtime.
TODAY = date(2026, 10, 15)


def encipher(text: str) -> str:
    return "".join(chr((ord(c) - 65 + 3) % 26 + 65) if "A" <= c <= "Z" else c for c in text)


def decipher_letter(letter: str) -> str:
    return chr((ord(letter) - 65 - 3) % 26 + 65)


@dataclass
class Gate:
    arrived: asyncio.Event = field(default_factory=asyncio.Event)
    released: asyncio.Event = field(default_factory=asyncio.Event)

    def release(self) -> None:
        self.released.set()


@dataclass
class FakeGame:
    game_id: str
    plain: str
    difficulty: str = "easy"
    owner: str | None = None
    is_daily: bool = False
    mistakes: int = 0
    correctly_guessed: set[str] = field(default_factory=set)
    started: datetime = field(default_factory=datetime.now)
    abandoned: bool = False

    @property
    def encrypted(self) -> str:
        return encipher(self.plain)

    @property
    def max_mistakes(self) -> int:
        return MAX_MISTAKES.get(self.difficulty, 8)

    @property
    def letters(self) -> set[str]:
        return {c for c in self.encrypted if "A" <= c <= "Z"}

    @property
    def display(self) -> str:
        return "".join(
            (decipher_letter(c) if c in self.correctly_guessed else BLOCK) if "A" <= c <= "Z" else c
            for c in self.encrypted
        )

    @property
    def solved(self) -> bool:
        return self.letters <= self.correctly_guessed

    @property
    def lost(self) -> bool:
        return self.mistakes >= self.max_mistakes

    def payload(self) -> dict:
        return {
            "game_id": self.game_id,
            "encrypted_paragraph": self.encrypted,
            "display": self.display,
            "mistakes": self.mistakes,
            "correctly_guessed": sorted(self.correctly_guessed),
            "letter_frequency": dict(Counter(c for c in self.encrypted if "A" <= c <= "Z")),
            "original_letters": sorted({c for c in self.plain if "A" <= c <= "Z"}),
            "difficulty": self.difficulty,
            "reverse_mapping": {c: decipher_letter(c) for c in self.letters},
        }


class FakeBackend:
    def __init__(self, quote: str = QUOTE):
        self.quote = quote
        self.users: dict[str, str] = {"alice": "secret"}
        self.tokens: dict[str, str] = {}
        self.refresh_tokens: dict[str, str] = {}
        self.games: dict[str, FakeGame] = {}
        self.active: dict[str, str] = {}
        self.active_daily: dict[str, str] = {}
        self.completed_dailies: set[tuple[str, date]] = set()
        self.scores: dict[str, dict] = {}
        self.score_posts: list[dict] = []
        self.calls: list[str] = []
        self.failures: dict[tuple[str, str], list[tuple[int, dict]]] = {}
        self.gates: dict[str, Gate] = {}
        self.move_overrides: dict = {}
        self.status_overrides: dict = {}
        self.display_mismatch = False

    # ── Test knobs ───────────────────────────────────

    def issue_token(self, username: str) -> str:
        token = f"token-{username}-{uuid.uuid4().hex[:8]}"
        self.tokens[token] = username
        return token

    def issue_refresh_token(self, username: str) -> str:
        token = f"refresh-{username}-{uuid.uuid4().hex[:8]}"
        self.refresh_tokens[token] = username
        return token

    def revoke_access_tokens(self) -> None:
        self.tokens.clear()

    def fail(self, method: str, path: str, status: int, body: dict | None = None, times: int = 1) -> None:
        queue = self.failures.setdefault((method.upper(), path), [])
        queue.extend([(status, body or {"error": f"Injected {status}"})] * times)

    def hold(self, path: str) -> Gate:
        gate = Gate()
        self.gates[path] = gate
        return gate

    def count(self, call: str) -> int:
        return sum(1 for c in self.calls if c == call)

    def add_game(self, owner: str | None = None, difficulty: str = "easy", is_daily: bool = False,
                 started: datetime | None = None, challenge_date: date | None = None) -> FakeGame:
        if is_daily:
            game_id = f"{difficulty}-daily-{(challenge_date or date.today()).isoformat()}-{uuid.uuid4()}"
        else:
            game_id = f"{difficulty}-custom-{uuid.uuid4()}"
        game = FakeGame(game_id=game_id, plain=self.quote, difficulty=difficulty, owner=owner,
                        is_daily=is_daily, started=started or datetime.now())
        self.games[game_id] = game
        if owner:
            (self.active_daily if is_daily else self.active)[owner] = game_id
        return game

    # ── Helpers used by the routes ───────────────────

    def user_for(self, authorization: str | None) -> str | None:
        if not authorization or not authorization.startswith("Bearer "):
            return None
        return self.tokens.get(authorization[len("Bearer "):])

    def finish(self, game: FakeGame) -> None:
        if game.owner:
            if self.active.get(game.owner) == game.game_id:
                del self.active[game.owner]
            if self.active_daily.get(game.owner) == game.game_id:
                del self.active_daily[game.owner]

    def move_answer(self, game: FakeGame, is_correct: bool | None = None) -> dict:
        complete = game.solved or game.lost
        if complete:
            self.finish(game)
        display = game.display[:-1] if self.display_mismatch else game.display
        answer = {
            "display": display,
            "mistakes": game.mistakes,
            "correctly_guessed": sorted(game.correctly_guessed),
            "game_complete": complete,
            "hasWon": game.solved and not game.lost,
            "max_mistakes": game.max_mistakes,
        }
        if is_correct is not None:
            answer["is_correct"] = is_correct
        answer.update(self.move_overrides)
        return answer


def _unauthorized(message: str = "Authentication required") -> JSONResponse:
    return JSONResponse({"error": message}, status_code=401)


def _stats(game: FakeGame) -> dict:
    return {
        "difficulty": game.difficulty,
        "mistakes": game.mistakes,
        "completionPercentage": round(100 * len(game.correctly_guessed) / max(len(game.letters), 1), 1),
        "timeSpent": int((datetime.now(game.started.tzinfo) - game.started).total_seconds()),
        "maxMistakes": game.max_mistakes,
        "startTime": game.started.isoformat(),
    }


def create_app(backend: FakeBackend) -> FastAPI:
    app = FastAPI(title="decodey fake backend")

    @app.middleware("http")
    async def instrument(request: Request, call_next):
        path = request.url.path
        backend.calls.append(f"{request.method} {path}")

        gate = backend.gates.get(path)
        if gate:
            gate.arrived.set()
            await gate.released.wait()
            del backend.gates[path]

        queue = backend.failures.get((request.method, path))
        if queue:
            status, body = queue.pop(0)
            return JSONResponse(body, status_code=status)

        response = await call_next(request)
        response.headers["X-Session-ID"] = "sess-fake-1"
        return response

    # ═══════════════════════════════════════════════════
    # AUTH
    # ═══════════════════════════════════════════════════

    @app.post("/login")
    async def login(payload: dict = Body(default={})):
        username = payload.get("username")
        if backend.users.get(username) != payload.get("password"):
            return _unauthorized("Invalid credentials")
        return {
            "access_token": backend.issue_token(username),
            "refresh_token": backend.issue_refresh_token(username),
            "user_id": f"user-{username}",
            "username": username,
        }

    @app.post("/logout")
    async def logout(authorization: str | None = Header(default=None)):
        if authorization and authorization.startswith("Bearer "):
            backend.tokens.pop(authorization[len("Bearer "):], None)
        return {"message": "Logged out"}

    @app.post("/refresh")
    async def refresh(authorization: str | None = Header(default=None)):
        token = (authorization or "")[len("Bearer "):]
        username = backend.refresh_tokens.get(token)
        if not username:
            return _unauthorized("Invalid refresh token")
        return {"access_token": backend.issue_token(username)}

    # ═══════════════════════════════════════════════════
    # GAME
    # ═══════════════════════════════════════════════════

    async def start(payload: dict, authorization: str | None):
        user = backend.user_for(authorization)
        game = backend.add_game(owner=user, difficulty=payload.get("difficulty") or "easy")
        return game.payload()

    @app.post("/api/start")
    async def start_game(payload: dict = Body(default={}), authorization: str | None = Header(default=None)):
        return await start(payload, authorization)

    @app.post("/api/longstart")
    async def start_long_game(payload: dict = Body(default={}), authorization: str | None = Header(default=None)):
        return await start(payload, authorization)

    @app.post("/api/guess")
    async def guess(payload: dict = Body(default={})):
        game = backend.games.get(payload.get("game_id"))
        if not game or game.abandoned:
            return JSONResponse({"error": "Game not found"}, status_code=404)
        enc = payload["encrypted_letter"]
        correct = decipher_letter(enc) == payload["guessed_letter"] and enc in game.letters
        if correct:
            game.correctly_guessed.add(enc)
        else:
            game.mistakes += 1
        return backend.move_answer(game, is_correct=correct)

    @app.post("/api/hint")
    async def hint(payload: dict = Body(default={})):
        game = backend.games.get(payload.get("game_id"))
        if not game or game.abandoned:
            return JSONResponse({"error": "Game not found"}, status_code=404)
        remaining = sorted(game.letters - game.correctly_guessed)
        if remaining:
            game.correctly_guessed.add(remaining[0])
        game.mistakes += 1
        return backend.move_answer(game)

    @app.get("/api/game-status")
    async def game_status(game_id: str):
        game = backend.games.get(game_id)
        if not game:
            return JSONResponse({"error": "Game not found"}, status_code=404)
        won = game.solved and not game.lost
        status = {
            "hasActiveGame": not (game.solved or game.lost),
            "gameComplete": game.solved or game.lost,
            "hasWon": won,
            "mistakes": game.mistakes,
            "maxMistakes": game.max_mistakes,
        }
        if won:
            status["winData"] = {
                "score": 1000 - 100 * game.mistakes,
                "rating": "Cryptanalyst",
                "mistakes": game.mistakes,
                "maxMistakes": game.max_mistakes,
                "gameTimeSeconds": 42,
                "currentDailyStreak": 1 if game.is_daily else 0,
            }
        status.update(backend.status_overrides)
        return status

    @app.get("/get_attribution")
    async def attribution(game_id: str):
        return {"major_attribution": "Ada Lovelace", "minor_attribution": "Notes on the Analytical Engine"}

    # ═══════════════════════════════════════════════════
    # SAVED GAMES
    # ═══════════════════════════════════════════════════

    @app.get("/api/check-active-game")
    async def check_active_game(authorization: str | None = Header(default=None)):
        user = backend.user_for(authorization)
        if not user:
            return _unauthorized()
        regular = backend.games.get(backend.active.get(user, ""))
        daily = backend.games.get(backend.active_daily.get(user, ""))
        return {
            "hasActiveGame": regular is not None,
            "gameStats": _stats(regular) if regular else None,
            "hasActiveDailyGame": daily is not None,
            "dailyStats": _stats(daily) if daily else None,
        }

    @app.get("/api/continue-game")
    async def continue_game(authorization: str | None = Header(default=None)):
        user = backend.user_for(authorization)
        if not user:
            return _unauthorized()
        game_id = backend.active.get(user) or backend.active_daily.get(user)
        if not game_id:
            return JSONResponse({"error": "No active game found"}, status_code=404)
        game = backend.games[game_id]
        answer = game.payload()
        answer["time_spent"] = int((datetime.now(game.started.tzinfo) - game.started).total_seconds())
        return answer

    @app.delete("/api/abandon-game")
    async def abandon_game(authorization: str | None = Header(default=None)):
        user = backend.user_for(authorization)
        if not user:
            return _unauthorized()
        for game_id in (backend.active.pop(user, None), backend.active_daily.pop(user, None)):
            if game_id:
                backend.games[game_id].abandoned = True
        return {"success": True}

    # ═══════════════════════════════════════════════════
    # DAILY
    # ═══════════════════════════════════════════════════

    @app.get("/api/daily/{challenge_date}")
    async def daily(challenge_date: str, authorization: str | None = Header(default=None)):
        user = backend.user_for(authorization)
        day = date.fromisoformat(challenge_date)
        game = backend.add_game(owner=user, is_daily=True, challenge_date=day,
                                started=datetime.combine(day, time(9, 0)))
        return game.payload()

    @app.get("/api/daily-completion")
    async def daily_completion(date: str, authorization: str | None = Header(default=None)):
        user = backend.user_for(authorization)
        if not user:
            return _unauthorized()
        day = datetime.fromisoformat(date).date()
        if (user, day) in backend.completed_dailies:
            return {"isCompleted": True, "completionData": {"score": 900, "mistakes": 1}}
        return {"isCompleted": False}

    # ═══════════════════════════════════════════════════
    # SCORES / LEADERBOARD
    # ═══════════════════════════════════════════════════

    @app.post("/record_score")
    async def record_score(payload: dict = Body(default={}), authorization: str | None = Header(default=None)):
        user = backend.user_for(authorization)
        if not user:
            return _unauthorized()
        backend.score_posts.append(payload)
        key = payload.get("idempotency_key") or str(uuid.uuid4())
        if key not in backend.scores:
            backend.scores[key] = dict(payload, username=user)
        return {"success": True, "score_id": key}

    @app.get("/leaderboard")
    async def leaderboard(period: str = "all-time", page: int = 1, per_page: int = 10,
                          authorization: str | None = Header(default=None)):
        user = backend.user_for(authorization)
        totals: Counter = Counter()
        for score in backend.scores.values():
            totals[score["username"]] += score.get("score", 0)
        ranked = [
            {"rank": i, "username": name, "score": total, "isCurrentUser": name == user}
            for i, (name, total) in enumerate(totals.most_common(), start=1)
        ]
        return {"entries": ranked[(page - 1) * per_page: page * per_page], "page": page, "totalPages": 1}

    return app


SOLUTION = {c: decipher_letter(c) for c in dict.fromkeys(encipher(QUOTE)) if "A" <= c <= "Z"}


async def solve(store) -> None:
    """Play every correct guess until the puzzle is over."""
    for enc, plain in SOLUTION.items():
        if store.session.is_over:
            break
        if enc not in store.session.correctly_guessed:
            await store.submit_guess(enc, plain)
