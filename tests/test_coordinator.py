import asyncio
from datetime import datetime, timedelta

import httpx

from decodey.apps.session.schema import InitOptions
from decodey.core import storage as keys
from decodey.core.errors import ServerRejectedError
from decodey.core.events import ActiveGameFound, DailyAlreadyCompleted, Event, LoggedIn, LoggedOut
from decodey.runtime import Runtime

from tests.fake_backend import TODAY


def record_events(runtime):
    seen = []
    runtime.events.subscribe(Event, seen.append)
    return seen


# ═══════════════════════════════════════════════════
# ANONYMOUS PLAYERS
# ═══════════════════════════════════════════════════

async def test_anonymous_player_gets_the_daily(runtime, backend, storage):
    storage.game_id = "easy-custom-stale"

    result = await runtime.coordinator.initialize()

    session = runtime.store.session
    assert result.success
    assert result.daily
    assert session.is_daily_challenge
    assert session.daily_date == TODAY
    assert storage.game_id == session.game_id
    assert backend.count(f"GET /api/daily/{TODAY.isoformat()}") == 1
    # anonymous players never ask about saved games or completions
    assert backend.count("GET /api/check-active-game") == 0
    assert backend.count("GET /api/daily-completion") == 0


async def test_custom_request_skips_the_daily(runtime, backend):
    result = await runtime.coordinator.initialize(InitOptions(custom_game_requested=True, difficulty="medium"))

    assert result.success
    assert result.new_game
    assert result.is_custom_game
    assert runtime.store.session.difficulty == "medium"
    assert runtime.store.session.max_mistakes == 5
    assert backend.count("POST /api/start") == 1


async def test_long_text_uses_longstart(runtime, backend):
    await runtime.coordinator.initialize(InitOptions(custom_game_requested=True, long_text=True))
    assert backend.count("POST /api/longstart") == 1


async def test_stored_preferences_apply_to_new_games(runtime, storage):
    storage.set(keys.SETTINGS, {"difficulty": "hard", "hardcore_mode": True})

    await runtime.coordinator.initialize(InitOptions(custom_game_requested=True))

    session = runtime.store.session
    assert session.difficulty == "hard"
    assert session.hardcore_mode
    assert session.encrypted == "KHOORZRUOG"


# ═══════════════════════════════════════════════════
# DAILY CHALLENGE
# ═══════════════════════════════════════════════════

async def test_completed_daily_is_not_started_again(runtime, backend, storage, sign_in):
    sign_in()
    backend.completed_dailies.add(("alice", TODAY))
    seen = record_events(runtime)

    result = await runtime.coordinator.initialize(InitOptions(daily=True))

    assert not result.success
    assert result.already_completed
    assert result.completion_data == {"score": 900, "mistakes": 1}
    assert backend.count(f"GET /api/daily/{TODAY.isoformat()}") == 0
    assert not runtime.store.session.has_started
    assert [type(e) for e in seen] == [DailyAlreadyCompleted]


async def test_daily_for_signed_in_player(runtime, backend, sign_in):
    sign_in()
    result = await runtime.coordinator.initialize(InitOptions(daily=True))

    assert result.success
    assert result.daily
    assert backend.count("GET /api/daily-completion") == 1
    assert runtime.store.session.game_id.startswith(f"easy-daily-{TODAY.isoformat()}")


async def test_daily_completion_check_failure_does_not_block(runtime, backend, sign_in):
    sign_in()
    backend.fail("GET", "/api/daily-completion", 500)

    result = await runtime.coordinator.initialize(InitOptions(daily=True))

    assert result.success
    assert result.daily


async def test_daily_without_game_id_is_an_error(runtime, backend):
    backend.fail("GET", f"/api/daily/{TODAY.isoformat()}", 200, body={"message": "no daily today"})

    result = await runtime.coordinator.initialize(InitOptions(daily=True))

    assert not result.success
    assert result.error is not None
    assert not runtime.store.session.has_started


# ═══════════════════════════════════════════════════
# SIGNED-IN PLAYERS AND SAVED GAMES
# ═══════════════════════════════════════════════════

async def test_saved_game_is_reported_without_side_effects(runtime, backend, storage, sign_in):
    sign_in()
    saved = backend.add_game(owner="alice", difficulty="hard")
    storage.game_id = saved.game_id
    seen = record_events(runtime)

    result = await runtime.coordinator.initialize()

    assert result.success
    assert result.active_game_found
    assert result.game_stats.difficulty == "hard"
    assert storage.game_id == saved.game_id
    assert not runtime.store.session.has_started
    assert backend.count("POST /api/start") == 0
    assert backend.count("GET /api/continue-game") == 0
    assert [type(e) for e in seen] == [ActiveGameFound]


async def test_continue_after_active_game_found(runtime, backend, sign_in):
    sign_in()
    saved = backend.add_game(owner="alice")
    saved.correctly_guessed = {"K"}
    saved.mistakes = 1
    await runtime.coordinator.initialize()

    result = await runtime.coordinator.continue_game()

    session = runtime.store.session
    assert result.success
    assert result.resumed
    assert session.game_id == saved.game_id
    assert session.mistakes == 1
    assert session.guessed_mappings == {"K": "H"}


async def test_yesterdays_daily_is_not_an_active_game(runtime, backend, sign_in):
    sign_in()
    yesterday_evening = datetime.combine(TODAY, datetime.min.time()) - timedelta(hours=3)
    backend.add_game(owner="alice", is_daily=True, started=yesterday_evening)

    result = await runtime.coordinator.initialize()

    assert not result.active_game_found
    assert result.success


async def test_signed_in_without_saved_game_starts_fresh(runtime, backend, storage, sign_in):
    sign_in()
    storage.game_id = "easy-custom-gone"

    result = await runtime.coordinator.initialize()

    assert result.success
    assert result.new_game
    assert backend.count("GET /api/continue-game") == 1
    assert backend.count("POST /api/start") == 1
    assert storage.game_id == runtime.store.session.game_id


async def test_continue_for_anonymous_player(runtime, backend):
    result = await runtime.coordinator.continue_game()
    assert not result.success
    assert result.reason == "anonymous-user"
    assert backend.calls == []


async def test_abandon_and_start_new(runtime, backend, storage, sign_in):
    sign_in()
    saved = backend.add_game(owner="alice")
    storage.game_id = saved.game_id
    await runtime.coordinator.initialize()

    result = await runtime.coordinator.abandon_and_start_new()

    assert result.success
    assert result.new_game
    assert saved.abandoned
    assert runtime.store.session.game_id != saved.game_id


async def test_abandon_is_refused_while_initializing(settings, storage, transport, backend, sign_in):
    settings.INIT_GRACE_SECONDS = 0.05
    runtime = Runtime(settings, storage, transport=transport, today=lambda: TODAY)
    sign_in()
    saved = backend.add_game(owner="alice")
    storage.game_id = saved.game_id
    assert (await runtime.coordinator.initialize()).active_game_found

    result = await runtime.coordinator.abandon_and_start_new()

    assert result.reason == "already-initializing"
    assert not saved.abandoned
    assert storage.game_id == saved.game_id
    assert backend.count("DELETE /api/abandon-game") == 0

    await asyncio.sleep(0.1)
    assert (await runtime.coordinator.abandon_and_start_new()).new_game
    assert saved.abandoned


# ═══════════════════════════════════════════════════
# RE-ENTRANCY
# ═══════════════════════════════════════════════════

async def test_second_initialize_while_busy_returns_early(runtime, backend):
    gate = backend.hold(f"/api/daily/{TODAY.isoformat()}")
    first = asyncio.create_task(runtime.coordinator.initialize())
    await gate.arrived.wait()

    second = await runtime.coordinator.initialize(InitOptions(custom_game_requested=True))

    assert not second.success
    assert second.reason == "already-initializing"
    gate.release()
    assert (await first).success
    assert backend.count("POST /api/start") == 0


async def test_grace_window_swallows_immediate_repeat(settings, storage, transport, backend):
    settings.INIT_GRACE_SECONDS = 0.05
    runtime = Runtime(settings, storage, transport=transport, today=lambda: TODAY)

    assert (await runtime.coordinator.initialize()).success
    repeat = await runtime.coordinator.initialize()
    assert repeat.reason == "already-initializing"

    await asyncio.sleep(0.1)
    assert not runtime.coordinator.is_initializing
    assert (await runtime.coordinator.initialize(InitOptions(custom_game_requested=True))).success


# ═══════════════════════════════════════════════════
# LOGIN / LOGOUT
# ═══════════════════════════════════════════════════

async def test_login_reports_saved_game(runtime, backend, storage):
    backend.add_game(owner="alice")
    seen = record_events(runtime)

    result = await runtime.coordinator.login("alice", "secret")

    assert result.success
    assert result.username == "alice"
    assert result.active_game_found
    assert storage.is_authenticated
    assert [type(e) for e in seen] == [LoggedIn, ActiveGameFound]


async def test_login_failure(runtime, storage):
    result = await runtime.coordinator.login("alice", "nope")
    assert not result.success
    assert result.error.code == "AUTH_REQUIRED"
    assert not storage.is_authenticated


async def test_logout_clears_session_and_starts_daily(runtime, backend, storage, sign_in):
    sign_in(with_refresh=True)
    await runtime.coordinator.initialize(InitOptions(custom_game_requested=True))
    seen = record_events(runtime)

    result = await runtime.coordinator.logout()

    assert result.success
    assert result.daily
    assert not storage.is_authenticated
    assert storage.refresh_token is None
    assert runtime.store.session.is_daily_challenge
    assert any(isinstance(e, LoggedOut) and e.server_confirmed for e in seen)


async def test_logout_survives_server_failure(runtime, backend, storage, sign_in):
    sign_in()
    backend.fail("POST", "/logout", 500)
    seen = record_events(runtime)

    result = await runtime.coordinator.logout(start_anonymous_game=False)

    assert result.success
    assert not storage.is_authenticated
    assert any(isinstance(e, LoggedOut) and not e.server_confirmed for e in seen)


# ═══════════════════════════════════════════════════
# MALFORMED SERVER DATA
# ═══════════════════════════════════════════════════

async def test_malformed_start_payload_fails_initialize(settings, storage):
    def handler(request):
        return httpx.Response(200, json={"game_id": "easy-custom-1", "mistakes": "lots",
                                         "encrypted_paragraph": "AB", "display": "██"})

    runtime = Runtime(settings, storage, transport=httpx.MockTransport(handler), today=lambda: TODAY)

    result = await runtime.coordinator.initialize(InitOptions(custom_game_requested=True))

    assert not result.success
    assert isinstance(result.error, ServerRejectedError)
    assert not runtime.store.session.has_started
    assert not runtime.coordinator.is_initializing
