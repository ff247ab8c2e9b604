"""Command-line access to the matchmaking API.

Usage:
    runematch get-match M-42 --code ABC123 --rsn Zezima
    runematch watch M-42 --ticks 200
    runematch config set verified_username Zezima
    runematch --show-log

Credentials default to the settings file and the RUNEMATCH_* environment
variables (a .env file in the working directory is loaded first).
Logs are written to ~/.runematch/debug.log.
"""

import argparse
import json
import logging
import signal
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from runematch import __version__
from runematch.api_client import MatchmakingApiClient
from runematch.credentials import AccountState
from runematch.engine import MatchmakingEngine
from runematch.observer import WorldSnapshot
from runematch.session import MatchUpdate
from runematch.settings import DEFAULTS, SETTINGS_DIR, get_settings

LOG_DIR = SETTINGS_DIR
LOG_FILE = LOG_DIR / "debug.log"

logger = logging.getLogger(__name__)


def configure_logging(log_file: Path = LOG_FILE, verbose: bool = False) -> None:
    """Send DEBUG to the log file and INFO (or DEBUG) to the console."""
    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    # Configure root logger directly (basicConfig is a no-op if already configured)
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for h in root_logger.handlers[:]:
        root_logger.removeHandler(h)
    root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(logging.Formatter('%(message)s'))
    root_logger.addHandler(console_handler)


def format_update(update: MatchUpdate) -> str:
    """One-line human summary of a MatchUpdate."""
    if not update.success:
        detail = update.message or update.raw_response or "no details"
        return f"[failed] {detail}"

    session = update.session
    if session is None:
        return f"[ok] {update.message}".rstrip()

    parts = [
        f"[{session.status or 'pending'}]",
        f"{session.player1.rsn or '?'} vs {session.player2.rsn or '?'}",
        f"world {session.world}",
    ]
    if session.zone:
        parts.append(session.zone)
    if session.rally is not None:
        parts.append(f"rally ({session.rally.x}, {session.rally.y}, {session.rally.plane})")
    if session.winner is not None:
        parts.append(f"winner {session.winner.osrs_rsn}")
    if update.message:
        parts.append(f"- {update.message}")
    return " ".join(parts)


def _build_account(args: argparse.Namespace) -> AccountState:
    settings = get_settings()
    return AccountState(
        verification_code=args.code or settings.get("verification_code"),
        verified_username=args.rsn or settings.get("verified_username"),
    )


def _build_client(args: argparse.Namespace) -> MatchmakingApiClient:
    settings = get_settings()
    return MatchmakingApiClient(
        api_url=args.api_url or settings.get("api_url"),
        timeout=float(settings.get("request_timeout")),
    )


def cmd_get_match(args: argparse.Namespace) -> int:
    account = _build_account(args)
    if not account.verified:
        print("Error: verification code and RSN are required (--code/--rsn or settings)")
        return 2

    client = _build_client(args)
    result = client.get_match(account.verification_code, args.match_code, account.verified_username)

    if args.json:
        print(json.dumps({
            "success": result.success,
            "message": result.message,
            "token_refresh": result.token_refresh,
            "session": result.session.to_dict() if result.session else None,
        }, indent=2))
    else:
        print(format_update(MatchUpdate(
            result.session, result.message, result.raw_response,
            result.success, result.token_refresh,
        )))
    return 0 if result.success else 1


def cmd_watch(args: argparse.Namespace) -> int:
    settings = get_settings()
    account = _build_account(args)
    world = WorldSnapshot()
    stop = threading.Event()

    def on_update(update: MatchUpdate) -> None:
        print(f"{datetime.now():%H:%M:%S} {format_update(update)}")

    engine = MatchmakingEngine(
        _build_client(args),
        world,
        account,
        listener=on_update,
        poll_interval_ticks=int(settings.get("poll_interval_ticks")),
        rally_distance=int(settings.get("rally_distance")),
        max_workers=int(settings.get("max_workers")),
    )

    def signal_handler(sig, frame):
        stop.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    tick_seconds = float(settings.get("tick_seconds"))
    engine.load_match(args.match_code)

    ticks = 0
    try:
        while not stop.is_set():
            if args.ticks and ticks >= args.ticks:
                break
            engine.on_tick()
            ticks += 1
            stop.wait(tick_seconds)
    finally:
        engine.shutdown()
        logger.info(f"Stopped watching after {ticks} ticks")
    return 0


def _coerce_setting(key: str, raw: str) -> Any:
    """Convert a command-line string to the type of the setting's default."""
    default = DEFAULTS[key]
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw


def cmd_config(args: argparse.Namespace) -> int:
    settings = get_settings()

    if args.action == "reset":
        settings.reset()
        print(f"Settings reset to defaults ({settings.path})")
        return 0

    if args.action == "set":
        if args.key not in DEFAULTS or args.value is None:
            print(f"Usage: runematch config set KEY VALUE (keys: {', '.join(DEFAULTS)})")
            return 2
        try:
            value = _coerce_setting(args.key, args.value)
        except ValueError:
            print(f"Invalid value for {args.key}: {args.value}")
            return 2
        settings.set(args.key, value)
        print(f"{args.key} = {value}")
        return 0

    print(f"Settings file: {settings.path}")
    for key in DEFAULTS:
        value = settings.get(key)
        if key == "verification_code" and value:
            value = "********"
        print(f"  {key}: {value}")
    return 0


def show_log(log_file: Path = LOG_FILE) -> None:
    print(f"Debug log: {log_file}")
    if log_file.exists():
        print(f"Size: {log_file.stat().st_size:,} bytes")
        print("\nLast 20 lines:")
        with open(log_file, encoding='utf-8', errors='replace') as f:
            lines = f.readlines()
            for line in lines[-20:]:
                print(line, end='')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="runematch",
        description="RuneAlytics matchmaking client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  runematch get-match M-42 --code ABC123 --rsn Zezima
  runematch get-match M-42 --json
  runematch watch M-42 --ticks 100
  runematch config set rally_distance 10

Environment variables:
  RUNEMATCH_API_URL            Override the API base URL
  RUNEMATCH_VERIFICATION_CODE  Account verification code
  RUNEMATCH_RSN                Verified username

Debug logs are written to ~/.runematch/debug.log
        """
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--api-url", help="API base URL (default: from settings)")
    parser.add_argument("--code", help="Verification code")
    parser.add_argument("--rsn", help="Verified RuneScape name")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug output on the console")
    parser.add_argument(
        "--show-log",
        action="store_true",
        help="Show the debug log file path and exit"
    )

    subparsers = parser.add_subparsers(dest="command")

    get_match = subparsers.add_parser("get-match", help="Fetch a match once and print it")
    get_match.add_argument("match_code")
    get_match.add_argument("--json", action="store_true", help="Print the session as JSON")
    get_match.set_defaults(func=cmd_get_match)

    watch = subparsers.add_parser("watch", help="Load a match and poll it every tick")
    watch.add_argument("match_code")
    watch.add_argument("--ticks", type=int, default=0, help="Stop after N ticks (0 = run until Ctrl+C)")
    watch.set_defaults(func=cmd_watch)

    config = subparsers.add_parser("config", help="Show, change or reset saved settings")
    config.add_argument("action", nargs="?", choices=["show", "set", "reset"], default="show")
    config.add_argument("key", nargs="?")
    config.add_argument("value", nargs="?")
    config.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the runematch command."""
    load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.show_log:
        show_log()
        return 0

    if not getattr(args, "func", None):
        parser.print_help()
        return 2

    configure_logging(verbose=args.verbose)
    logger.debug(f"runematch {__version__} starting: {args.command} (Python {sys.version.split()[0]})")

    try:
        return args.func(args)
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        print(f"\nFatal error: {e}")
        print(f"See debug log for details: {LOG_FILE}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
