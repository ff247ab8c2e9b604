"""RuneMatch: client-side participant in the RuneAlytics matchmaking protocol."""

from typing import Optional

from runematch.api_client import (
    ApiResult,
    MatchmakingApiClient,
    PrimitiveResponse,
    RawResponse,
    StructuredResponse,
    build_item_payload,
    parse_match_session,
    parse_response_body,
)
from runematch.credentials import AccountState
from runematch.engine import MatchmakingEngine, MatchUpdateListener, RequestKind
from runematch.observer import Actor, GameObserver, ItemStack, WorldSnapshot
from runematch.session import (
    MatchSession,
    MatchUpdate,
    Participant,
    Rally,
    Winner,
    WorldPoint,
)
from runematch.settings import Settings, get_settings

__version__ = "0.1.0"


def create_engine(
    observer: GameObserver,
    account: AccountState,
    listener: Optional[MatchUpdateListener] = None,
    settings: Optional[Settings] = None,
) -> MatchmakingEngine:
    """Create an engine wired to an API client built from settings.

    Args:
        observer: The running game client (or a WorldSnapshot).
        account: Verification state for the linked account.
        listener: Optional callback receiving MatchUpdate events.
        settings: Settings to read from. Defaults to the global settings.

    Returns:
        A MatchmakingEngine ready for load_match()/on_tick().

    Example:
        engine = create_engine(world, AccountState("ABC123", "Zezima"))
        engine.load_match("M-42")
    """
    settings = settings or get_settings()
    client = MatchmakingApiClient(
        api_url=settings.get("api_url"),
        timeout=float(settings.get("request_timeout")),
    )
    return MatchmakingEngine(
        client,
        observer,
        account,
        listener=listener,
        poll_interval_ticks=int(settings.get("poll_interval_ticks")),
        rally_distance=int(settings.get("rally_distance")),
        max_workers=int(settings.get("max_workers")),
    )


__all__ = [
    "__version__",
    "create_engine",
    "AccountState",
    "Actor",
    "ApiResult",
    "GameObserver",
    "ItemStack",
    "MatchSession",
    "MatchUpdate",
    "MatchUpdateListener",
    "MatchmakingApiClient",
    "MatchmakingEngine",
    "Participant",
    "PrimitiveResponse",
    "Rally",
    "RawResponse",
    "RequestKind",
    "Settings",
    "StructuredResponse",
    "Winner",
    "WorldPoint",
    "WorldSnapshot",
    "build_item_payload",
    "get_settings",
    "parse_match_session",
    "parse_response_body",
]
