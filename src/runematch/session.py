"""Matchmaking session snapshot types.

A MatchSession is rebuilt from every successful server response and never
mutated afterwards; the engine swaps the whole object on each round trip.
"""

from dataclasses import dataclass
from typing import Optional

# Server-reported statuses the engine acts on. Anything else is "pending"
# (lobby, joining, rally...).
STATUS_FIGHTING = "Fighting"
STATUS_COMPLETED = "Completed"
STATUS_CANCELED = "Canceled"

TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELED)


def is_fighting(status: Optional[str]) -> bool:
    return bool(status) and status.lower() == STATUS_FIGHTING.lower()


def is_terminal(status: Optional[str]) -> bool:
    """True for Completed/Canceled, compared case-insensitively."""
    if not status:
        return False
    return status.lower() in (s.lower() for s in TERMINAL_STATUSES)


def _same_name(a: Optional[str], b: Optional[str]) -> bool:
    if a is None or b is None:
        return False
    return a.lower() == b.lower()


@dataclass(frozen=True)
class WorldPoint:
    """A tile coordinate in the game world."""
    x: int
    y: int
    plane: int = 0

    def distance_to(self, other: "WorldPoint") -> Optional[int]:
        """Chebyshev tile distance, or None when the planes differ."""
        if self.plane != other.plane:
            return None
        return max(abs(self.x - other.x), abs(self.y - other.y))

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "plane": self.plane}


@dataclass(frozen=True)
class Rally:
    """Meeting point both participants must reach before the fight begins."""
    x: int
    y: int
    plane: int

    def to_world_point(self) -> WorldPoint:
        return WorldPoint(self.x, self.y, self.plane)

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "plane": self.plane}


@dataclass(frozen=True)
class Winner:
    osrs_rsn: str
    combat_level: int
    elo: int

    def to_dict(self) -> dict:
        return {
            "osrs_rsn": self.osrs_rsn,
            "combat_level": self.combat_level,
            "elo": self.elo,
        }


@dataclass(frozen=True)
class Participant:
    """One of the two player slots in a match."""
    rsn: str
    joined: bool = False
    ready_to_fight: bool = False
    # Only meaningful for the slot that matches the local player
    token: str = ""

    def matches(self, name: Optional[str]) -> bool:
        return bool(self.rsn) and _same_name(self.rsn, name)

    def to_dict(self) -> dict:
        return {
            "rsn": self.rsn,
            "joined": self.joined,
            "ready_to_fight": self.ready_to_fight,
        }


@dataclass(frozen=True)
class MatchSession:
    """Server-reported state of one matchmaking attempt.

    Participants are normalised at parse time into a two-element tuple
    (player1, player2). The local slot is the one whose RSN matches
    ``local_rsn`` case-insensitively; when neither does, every local view
    returns an empty/absent value instead of raising.
    """
    match_code: str
    local_rsn: str
    participants: tuple[Participant, Participant]
    world: int = 0
    zone: str = ""
    status: str = ""
    risk: str = ""
    gear_rules: str = ""
    rally: Optional[Rally] = None
    winner: Optional[Winner] = None
    token: str = ""
    token_expires_at: str = ""

    @property
    def player1(self) -> Participant:
        return self.participants[0]

    @property
    def player2(self) -> Participant:
        return self.participants[1]

    def _local_index(self) -> Optional[int]:
        # player1 wins the tie when both slots carry the same name
        for idx, participant in enumerate(self.participants):
            if participant.matches(self.local_rsn):
                return idx
        return None

    @property
    def local_participant(self) -> Optional[Participant]:
        idx = self._local_index()
        return None if idx is None else self.participants[idx]

    @property
    def opponent(self) -> Optional[Participant]:
        idx = self._local_index()
        return None if idx is None else self.participants[1 - idx]

    @property
    def opponent_rsn(self) -> Optional[str]:
        opponent = self.opponent
        return opponent.rsn if opponent is not None else None

    @property
    def local_token(self) -> str:
        """Token of the local slot, falling back to the authentication block."""
        local = self.local_participant
        if local is not None and local.token:
            return local.token
        return self.token

    @property
    def local_joined(self) -> bool:
        local = self.local_participant
        return local.joined if local is not None else False

    @property
    def local_ready_to_fight(self) -> bool:
        local = self.local_participant
        return local.ready_to_fight if local is not None else False

    @property
    def has_participants(self) -> bool:
        """False for payloads that carry no match fields (bare acks, refresh signals)."""
        return bool(self.player1.rsn or self.player2.rsn)

    def involves(self, name: Optional[str]) -> bool:
        """True if ``name`` is one of the two participants."""
        return any(p.matches(name) for p in self.participants)

    @property
    def is_fighting(self) -> bool:
        return is_fighting(self.status)

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    def to_dict(self) -> dict:
        """Convert to a plain dict for display and logging."""
        return {
            "match_code": self.match_code,
            "local_rsn": self.local_rsn,
            "opponent_rsn": self.opponent_rsn,
            "player1": self.player1.to_dict(),
            "player2": self.player2.to_dict(),
            "world": self.world,
            "zone": self.zone,
            "status": self.status,
            "risk": self.risk,
            "gear_rules": self.gear_rules,
            "rally": self.rally.to_dict() if self.rally else None,
            "winner": self.winner.to_dict() if self.winner else None,
            "token_expires_at": self.token_expires_at,
        }


@dataclass(frozen=True)
class MatchUpdate:
    """Event published to the presentation layer after each operation."""
    session: Optional[MatchSession]
    message: str = ""
    raw_response: str = ""
    success: bool = False
    token_refresh: bool = False
