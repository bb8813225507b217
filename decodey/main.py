"""
decodey — terminal client.

    python -m decodey.main play               # daily for anonymous players
    python -m decodey.main play --custom --difficulty hard
    python -m decodey.main login alice
    python -m decodey.main flush
    python -m decodey.main leaderboard --period weekly
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path

from decodey.apps.session.schema import InitOptions, InitResult
from decodey.core.config import Settings, get_settings
from decodey.core.errors import GameError, GameNotActiveError
from decodey.core.storage import LocalStorage
from decodey.runtime import Runtime

logger = logging.getLogger("decodey")


def open_storage(settings: Settings) -> LocalStorage:
    """Each command is its own process, so the CLI always keeps state on disk."""
    if settings.STORAGE_PATH:
        path = Path(settings.STORAGE_PATH).expanduser()
    else:
        path = Path.home() / ".decodey" / "storage.json"
    return LocalStorage(path)


def _print_board(rt: Runtime) -> None:
    s = rt.store.session
    print()
    print(f"  {s.encrypted}")
    print(f"  {s.display}")
    print(f"  mistakes {s.mistakes}/{s.max_mistakes}  ({s.difficulty}{', daily' if s.is_daily_challenge else ''})")


async def _ask(prompt: str) -> str:
    return (await asyncio.to_thread(input, prompt)).strip()


async def _choose_saved_game(rt: Runtime, result: InitResult) -> InitResult:
    stats = result.game_stats or result.daily_stats
    if stats:
        print(f"Saved game: {stats.difficulty}, {stats.completion_percentage:.0f}% done, "
              f"{stats.mistakes} mistakes")
    answer = await _ask("Continue it? [Y/n] ")
    if answer.lower() in ("", "y", "yes"):
        return await rt.coordinator.continue_game()
    return await rt.coordinator.abandon_and_start_new()


async def play(rt: Runtime, args: argparse.Namespace) -> int:
    if args.difficulty or args.hardcore is not None:
        rt.store.update_preferences(difficulty=args.difficulty, hardcore_mode=args.hardcore)
    options = InitOptions(
        daily=args.daily,
        custom_game_requested=args.custom,
        difficulty=args.difficulty,
        hardcore_mode=args.hardcore,
        long_text=args.long or None,
    )
    result = await rt.coordinator.initialize(options)
    if result.active_game_found:
        result = await _choose_saved_game(rt, result)
    if result.already_completed:
        print("You already completed today's daily challenge.")
        return 0
    if not result.success:
        print(f"Could not start a game: {result.error or result.reason}")
        return 1

    while not rt.store.session.is_over:
        _print_board(rt)
        line = await _ask("guess (e.g. 'X E'), 'hint' or 'quit': ")
        if line.lower() in ("q", "quit"):
            return 0
        try:
            if line.lower() == "hint":
                hint = await rt.store.get_hint()
                if not hint.accepted:
                    print(f"No hint: {hint.reason}")
                continue
            parts = line.upper().split()
            if len(parts) != 2:
                print("Enter an encrypted letter and your guess.")
                continue
            guess = await rt.store.submit_guess(parts[0], parts[1])
            print("✓" if guess.is_correct else "✗")
        except GameNotActiveError:
            break
        except GameError as e:
            print(f"Error: {e}")

    await rt.settle()
    _print_board(rt)
    session = rt.store.session
    if session.has_won:
        score = (session.win_data or {}).get("score")
        print(f"Solved! {'Score: ' + str(score) if score is not None else '(unconfirmed)'}")
    else:
        print("Out of mistakes.")
    return 0


async def login(rt: Runtime, args: argparse.Namespace) -> int:
    password = getpass.getpass("Password: ")
    result = await rt.coordinator.login(args.username, password, remember_me=args.remember)
    if not result.success:
        print(f"Login failed: {result.error}")
        return 1
    print(f"Logged in as {result.username}")
    if result.active_game_found:
        print("You have a saved game; run `play` to continue it.")
    await rt.settle()
    return 0


async def logout(rt: Runtime, args: argparse.Namespace) -> int:
    await rt.coordinator.logout(start_anonymous_game=False)
    print("Logged out.")
    return 0


async def flush(rt: Runtime, args: argparse.Namespace) -> int:
    result = await rt.scores.submit_pending_scores(is_authenticated=rt.storage.is_authenticated or None)
    print(result.message or result.reason or "Nothing to do.")
    return 0 if result.remaining == 0 else 1


async def leaderboard(rt: Runtime, args: argparse.Namespace) -> int:
    board = await rt.client.get_leaderboard(period=args.period, page=args.page)
    for entry in board.entries:
        marker = "*" if entry.is_current_user else " "
        print(f"{marker}{entry.rank:>4}  {entry.username:<20} {entry.score:>8}")
    print(f"page {board.page}/{board.total_pages}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="decodey", description="Play decodey from the terminal")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("play", help="start or continue a game")
    p.add_argument("--daily", action="store_true", help="play today's daily challenge")
    p.add_argument("--custom", action="store_true", help="start a fresh game, ignoring saved games")
    p.add_argument("--difficulty", choices=["easy", "medium", "hard", "normal"], help="remembered for later games")
    p.add_argument("--hardcore", action=argparse.BooleanOptionalAction, default=None,
                   help="letters only, no spaces or punctuation (remembered)")
    p.add_argument("--long", action="store_true", help="use a longer quote")
    p.set_defaults(handler=play)

    p = sub.add_parser("login", help="sign in")
    p.add_argument("username")
    p.add_argument("--remember", action="store_true")
    p.set_defaults(handler=login)

    p = sub.add_parser("logout", help="sign out")
    p.set_defaults(handler=logout)

    p = sub.add_parser("flush", help="submit scores saved while offline")
    p.set_defaults(handler=flush)

    p = sub.add_parser("leaderboard", help="show the leaderboard")
    p.add_argument("--period", default="all-time", choices=["all-time", "weekly"])
    p.add_argument("--page", type=int, default=1)
    p.set_defaults(handler=leaderboard)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(f"{settings.APP_NAME} {settings.VERSION} → {settings.API_URL}")

    rt = Runtime(settings, open_storage(settings))
    try:
        return asyncio.run(args.handler(rt, args))
    except GameError as e:
        logger.error(f"{e.code}: {e}")
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
