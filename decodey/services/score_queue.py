"""
score_queue.py — Offline-tolerant score delivery
=================================================
Finished games produce a score that must reach the server eventually, even
if the player is offline or signed out at the time.

SORUMLULUKLAR:
--------------
✅ Deliver immediately when possible
✅ Otherwise persist in LocalStorage (survives restarts)
✅ Flush the queue when the network comes back (single-flight)

Delivery is at-least-once: if the server's success reply is lost, the score
is sent again later. Each payload carries an idempotency key derived from
the game id and completion time so the server can drop the repeat.
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass

from pydantic import BaseModel, Field

from decodey.core import storage as keys
from decodey.core.errors import AuthenticationRequiredError, GameError, ServerRejectedError
from decodey.core.events import EventBus, ScoreQueued, ScoresFlushed
from decodey.core.network import NetworkMonitor
from decodey.core.storage import LocalStorage
from decodey.services.api_client import DecodeyClient

logger = logging.getLogger(__name__)


def idempotency_key(game_id: str | None, completed_at: float | None) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"decodey:{game_id}:{completed_at}"))


class PendingScore(BaseModel):
    game_id: str | None = None
    score: int = 0
    mistakes: int = 0
    time_taken: int = 0
    difficulty: str = "easy"
    game_type: str = "regular"  # regular | daily
    challenge_date: str | None = None
    completed: bool = True
    won: bool = True
    completed_at: float | None = None
    idempotency_key: str | None = None
    queued_at: float = Field(default_factory=time.time)

    def to_payload(self) -> dict:
        return self.model_dump(exclude={"queued_at"}, exclude_none=True)


@dataclass
class ScoreSubmission:
    success: bool
    queued: bool = False
    auth_required: bool = False
    pending_count: int = 0
    score_id: str | int | None = None
    message: str = ""


@dataclass
class FlushResult:
    success: bool
    submitted: int = 0
    failed: int = 0
    dropped: int = 0
    remaining: int = 0
    auth_required: bool = False
    reason: str | None = None
    message: str = ""


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'' if n == 1 else 's'}"


class ScoreQueue:
    def __init__(
        self,
        client: DecodeyClient,
        storage: LocalStorage,
        network: NetworkMonitor,
        events: EventBus | None = None,
    ):
        self.client = client
        self.storage = storage
        self.network = network
        self.events = events
        self._flushing = False
        network.on_change(self._on_network_change)

    # ── Persistence ──────────────────────────────────

    def load_pending(self) -> list[PendingScore]:
        raw = self.storage.get(keys.PENDING_SCORES) or []
        scores = []
        for item in raw:
            try:
                scores.append(PendingScore.model_validate(item))
            except ValueError as e:
                logger.error(f"Dropping unreadable pending score {item!r}: {e}")
        return scores

    def _save_pending(self, scores: list[PendingScore]) -> None:
        if scores:
            self.storage.set(keys.PENDING_SCORES, [s.model_dump(mode="json") for s in scores])
        else:
            self.storage.remove(keys.PENDING_SCORES)

    def pending_count(self) -> int:
        return len(self.load_pending())

    def clear_pending(self) -> None:
        self.storage.remove(keys.PENDING_SCORES)

    def queue_score(self, score: PendingScore, auth_required: bool = False) -> ScoreSubmission:
        if not score.game_id:
            score.game_id = self.storage.game_id
        if not score.idempotency_key:
            score.idempotency_key = idempotency_key(score.game_id, score.completed_at)

        pending = self.load_pending()
        if any(p.idempotency_key == score.idempotency_key for p in pending):
            logger.info(f"Score for {score.game_id} already queued")
        else:
            pending.append(score)
            self._save_pending(pending)
            logger.info(f"📥 Score queued for later submission: {score.game_id} ({len(pending)} pending)")

        if self.events:
            self.events.publish(ScoreQueued(score.game_id, len(pending), auth_required))
        return ScoreSubmission(
            success=False,
            queued=True,
            auth_required=auth_required,
            pending_count=len(pending),
            message=(
                "Authentication required. Score saved locally."
                if auth_required else "Score saved locally. Will submit when online."
            ),
        )

    # ── Delivery ─────────────────────────────────────

    async def submit_score(self, data: PendingScore | dict, is_authenticated: bool | None = None) -> ScoreSubmission:
        """
        Deliver a score now, or queue it.

        is_authenticated=None means "unknown": delivery is attempted and the
        server decides.
        """
        score = data if isinstance(data, PendingScore) else PendingScore.model_validate(data)
        if not score.idempotency_key:
            score.idempotency_key = idempotency_key(score.game_id, score.completed_at)

        if not self.network.online:
            return self.queue_score(score)
        if is_authenticated is False:
            return self.queue_score(score, auth_required=True)

        try:
            receipt = await self.client.record_score(score.to_payload())
        except AuthenticationRequiredError:
            return self.queue_score(score, auth_required=True)
        except GameError as e:
            logger.error(f"Error submitting score for {score.game_id}: {e}")
            return self.queue_score(score)

        if receipt.accepted:
            logger.info(f"✅ Score recorded for {score.game_id}")
            return ScoreSubmission(
                success=True,
                score_id=receipt.score_id,
                pending_count=self.pending_count(),
                message=receipt.message or "Score recorded successfully!",
            )
        return self.queue_score(score)

    async def submit_pending_scores(self, is_authenticated: bool | None = None) -> FlushResult:
        if self._flushing:
            return FlushResult(success=False, reason="flush-in-progress",
                               remaining=self.pending_count(), message="A flush is already running.")
        if not self.network.online:
            return FlushResult(success=False, reason="offline", remaining=self.pending_count(),
                               message="Currently offline. Will try again when online.")
        if is_authenticated is False:
            return FlushResult(success=False, auth_required=True, reason="auth-required",
                               remaining=self.pending_count(),
                               message="Authentication required to submit scores.")

        self._flushing = True
        try:
            return await self._flush()
        finally:
            self._flushing = False

    async def _flush(self) -> FlushResult:
        pending = self.load_pending()
        if not pending:
            return FlushResult(success=True, message="No pending scores to submit.")

        logger.info(f"Attempting to submit {len(pending)} pending scores...")
        submitted = failed = dropped = 0
        auth_required = False
        remaining: list[PendingScore] = []

        for score in pending:
            try:
                receipt = await self.client.record_score(score.to_payload())
            except AuthenticationRequiredError:
                auth_required = True
                remaining.append(score)
                failed += 1
                continue
            except ServerRejectedError as e:
                if not e.retryable:
                    logger.error(f"Server refused score for {score.game_id} ({e.status}), dropping it: {e}")
                    dropped += 1
                else:
                    remaining.append(score)
                    failed += 1
                continue
            except GameError as e:
                logger.error(f"Error submitting pending score for {score.game_id}: {e}")
                remaining.append(score)
                failed += 1
                continue

            if receipt.accepted:
                submitted += 1
            else:
                remaining.append(score)
                failed += 1

        # Scores queued while this flush was running must survive it.
        known = {s.idempotency_key for s in pending}
        remaining.extend(s for s in self.load_pending() if s.idempotency_key not in known)
        self._save_pending(remaining)

        if submitted and not failed:
            message = f"{_plural(submitted, 'pending score')} submitted successfully."
        elif submitted:
            message = f"{_plural(submitted, 'score')} submitted. {_plural(failed, 'score')} still pending."
        elif failed:
            message = f"Failed to submit {_plural(failed, 'pending score')}."
        else:
            message = ""

        if self.events:
            self.events.publish(ScoresFlushed(submitted=submitted, remaining=len(remaining)))
        return FlushResult(
            success=submitted > 0,
            submitted=submitted,
            failed=failed,
            dropped=dropped,
            remaining=len(remaining),
            auth_required=auth_required,
            message=message,
        )

    # ── Network hook ─────────────────────────────────

    def _on_network_change(self, online: bool):
        if online and not self._flushing and self.pending_count() > 0:
            logger.info(f"Network is back online. Submitting {self.pending_count()} pending scores.")
            return self.submit_pending_scores()
        return None
