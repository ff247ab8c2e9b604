"""Game-world observer contract consumed by the matchmaking engine.

The engine never talks to the game client directly. It asks an observer
for the local player, looks other players up by name, reads the item
containers and pushes hint-arrow changes back out.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Optional, Protocol, Union

from runematch.session import WorldPoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """A live player as currently seen by the client."""
    name: str
    position: WorldPoint
    # Name of the actor this one is interacting with, if any
    interacting: Optional[str] = None

    def is_interacting_with(self, other: "Actor") -> bool:
        return bool(self.interacting) and self.interacting.lower() == other.name.lower()


@dataclass(frozen=True)
class ItemStack:
    id: int
    quantity: int


HintTarget = Union[Actor, WorldPoint]


class GameObserver(Protocol):
    """What the engine needs from the running game client."""

    def get_local_player(self) -> Optional[Actor]:
        """The logged-in player, or None when not in game."""
        ...

    def find_player(self, name: str) -> Optional[Actor]:
        """Look up a visible player by name (case-insensitive)."""
        ...

    def get_inventory(self) -> list[ItemStack]:
        ...

    def get_equipment(self) -> list[ItemStack]:
        ...

    def set_hint_arrow(self, target: HintTarget) -> None:
        """Point the hint arrow at a live actor or a tile."""
        ...

    def clear_hint_arrow(self) -> None:
        ...


@dataclass
class WorldSnapshot:
    """In-memory GameObserver fed explicitly by its owner.

    Useful for hosts that push player updates rather than expose a live
    client, and for driving the engine headless.

    Example:
        world = WorldSnapshot()
        world.set_local_player(Actor("Zezima", WorldPoint(3200, 3200, 0)))
        world.update_player(Actor("Lynx Titan", WorldPoint(3205, 3201, 0)))
    """
    local_player: Optional[Actor] = None
    players: dict[str, Actor] = field(default_factory=dict)
    inventory: list[ItemStack] = field(default_factory=list)
    equipment: list[ItemStack] = field(default_factory=list)
    hint_target: Optional[HintTarget] = None
    hint_changes: int = 0

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def set_local_player(self, actor: Optional[Actor]) -> None:
        with self._lock:
            self.local_player = actor

    def update_player(self, actor: Actor) -> None:
        with self._lock:
            self.players[actor.name.lower()] = actor

    def remove_player(self, name: str) -> None:
        with self._lock:
            self.players.pop(name.lower(), None)

    def get_local_player(self) -> Optional[Actor]:
        return self.local_player

    def find_player(self, name: str) -> Optional[Actor]:
        if not name:
            return None
        with self._lock:
            if self.local_player is not None and self.local_player.name.lower() == name.lower():
                return self.local_player
            return self.players.get(name.lower())

    def get_inventory(self) -> list[ItemStack]:
        return list(self.inventory)

    def get_equipment(self) -> list[ItemStack]:
        return list(self.equipment)

    def set_hint_arrow(self, target: HintTarget) -> None:
        logger.debug(f"Hint arrow -> {target}")
        self.hint_target = target
        self.hint_changes += 1

    def clear_hint_arrow(self) -> None:
        logger.debug("Hint arrow cleared")
        self.hint_target = None
        self.hint_changes += 1
