"""Phase state machine: Waiting -> Day -> Voting -> Night -> (Day | Ended)."""

import logging
from typing import Callable, Optional

from cipher import Cipher, CipherUnit, Kind
from mafia.clock import Clock
from mafia.config import GameConfig
from mafia.errors import (
    GameAlreadyStarted,
    GameNotStarted,
    NotAuthorized,
    NotEnoughPlayers,
    PhaseNotReady,
    RoomInactive,
)
from mafia.events import EventSink, emit_event
from mafia.registry import RoomRegistry
from mafia.rules import PHASE_CYCLE, Faction, Phase, Role, assign_role
from mafia.state import Caller, Event, EventKind, Room

logger = logging.getLogger(__name__)


class PhaseMachine:
    """Drives rooms through the fixed phase cycle and decides when a game ends."""

    def __init__(
        self,
        registry: RoomRegistry,
        unit: CipherUnit,
        clock: Clock,
        sink: EventSink | None,
        config: GameConfig,
    ):
        self.registry = registry
        self.unit = unit
        self.clock = clock
        self.sink = sink
        self.config = config
        # Called with the room right after it reaches Ended
        self.end_hooks: list[Callable[[Room], None]] = []

    def _enter(self, room: Room, phase: Phase) -> None:
        """Move room into phase (mutates room)."""
        previous = room.phase
        room.phase = phase
        room.phase_start_time = self.clock.now()
        room.force_ready = False
        room.phase_serial += 1
        if phase == Phase.DAY:
            false = self.unit.encrypt(False, Kind.EBOOL)
            for record in room.records.values():
                record.has_voted = false
        logger.info("Room %d: %s -> %s (day %d)", room.id, previous.value, phase.value, room.day_count)
        emit_event(
            self.sink,
            Event(
                kind=EventKind.PHASE_CHANGED,
                room_id=room.id,
                phase=phase,
                message=f"Day {room.day_count} - {phase.value} phase.",
                extra={"from": previous.value, "day_count": room.day_count},
            ),
        )

    def start_game(self, room_id: int, caller: Caller) -> Room:
        """Assign roles by join order and move the room to Day."""
        room = self.registry.get_room(room_id)
        if not room.is_active:
            raise RoomInactive(f"Room {room_id} is not active")
        if not caller.privileged and not room.has_participant(caller.identity):
            raise NotAuthorized("Only participants can start the game")
        if room.phase != Phase.WAITING or room.roles_assigned:
            raise GameAlreadyStarted(f"Room {room_id} already started")
        count = len(room.participants)
        if count < self.config.min_players:
            raise NotEnoughPlayers(f"At least {self.config.min_players} players required, have {count}")

        for index, address in enumerate(room.participants):
            role = assign_role(index, count)
            room.records[address].role = self.unit.encrypt(role, Kind.EBYTE)
        room.roles_assigned = True
        room.day_count = 1
        emit_event(
            self.sink,
            Event(
                kind=EventKind.GAME_STARTED,
                room_id=room.id,
                phase=Phase.DAY,
                message=f"Game started with {count} players.",
                player_id=caller.identity,
            ),
        )
        self._enter(room, Phase.DAY)
        return room

    def time_remaining(self, room: Room) -> Optional[float]:
        """Seconds until the current phase may be advanced; None if untimed."""
        duration = self.config.phase_duration(room.phase)
        if duration is None:
            return None
        return max(0.0, room.phase_start_time + duration - self.clock.now())

    def is_ready(self, room: Room) -> bool:
        if room.force_ready:
            return True
        remaining = self.time_remaining(room)
        return remaining is not None and remaining <= 0

    def advance_phase(self, room_id: int, caller: Caller) -> Phase:
        """Advance one step along the cycle. Returns the new phase."""
        room = self.registry.get_room(room_id)
        if not room.is_active or room.phase == Phase.ENDED:
            raise RoomInactive(f"Room {room_id} is not active")
        if not caller.privileged and not room.has_participant(caller.identity):
            raise NotAuthorized("Only participants can advance the phase")
        if room.phase == Phase.WAITING:
            raise GameNotStarted(f"Room {room_id} has not started")
        if not caller.privileged and not self.is_ready(room):
            raise PhaseNotReady(
                f"{room.phase.value} phase has {self.time_remaining(room):.0f}s remaining"
            )

        nxt = PHASE_CYCLE[room.phase]
        if nxt == Phase.DAY:
            room.day_count += 1
        self._enter(room, nxt)
        if room.day_count >= self.config.end_day_limit:
            self.end_game(room, reason="day limit reached")
        return room.phase

    def _faction_counts(self, room: Room) -> tuple[Cipher, Cipher]:
        """Encrypted (alive infiltrators, alive others)."""
        u = self.unit
        zero = u.encrypt(0, Kind.EBYTE)
        one = u.encrypt(1, Kind.EBYTE)
        infiltrator = u.encrypt(Role.INFILTRATOR, Kind.EBYTE)
        infiltrators = zero
        others = zero
        for record in room.records.values():
            is_inf = u.eq(record.role, infiltrator)
            infiltrators = u.add(infiltrators, u.select(u.and_(is_inf, record.is_alive), one, zero))
            others = u.add(others, u.select(u.and_(u.not_(is_inf), record.is_alive), one, zero))
        return infiltrators, others

    def check_victory(self, room: Room) -> bool:
        """
        Reveal only whether the game is over (no infiltrator alive, or
        infiltrators at parity). Ends the game if so.
        """
        if not room.is_active or room.phase in (Phase.WAITING, Phase.ENDED):
            return False
        u = self.unit
        infiltrators, others = self._faction_counts(room)
        over = u.or_(
            u.eq(infiltrators, u.encrypt(0, Kind.EBYTE)),
            u.not_(u.lt(infiltrators, others)),
        )
        if u.decrypt(over, reason="victory-check"):
            self.end_game(room, reason="victory")
            return True
        return False

    def end_game(self, room: Room, reason: str) -> None:
        """Move room to Ended, record the encrypted winning faction, release players."""
        u = self.unit
        infiltrators, _ = self._faction_counts(room)
        room.winner = u.select(
            u.eq(infiltrators, u.encrypt(0, Kind.EBYTE)),
            u.encrypt(Faction.GUARDIANS, Kind.EBYTE),
            u.encrypt(Faction.INFILTRATORS, Kind.EBYTE),
        )
        room.phase = Phase.ENDED
        room.phase_start_time = self.clock.now()
        room.is_active = False
        self.registry.release_participants(room)
        logger.info("Room %d ended after day %d: %s", room.id, room.day_count, reason)
        emit_event(
            self.sink,
            Event(
                kind=EventKind.GAME_ENDED,
                room_id=room.id,
                phase=Phase.ENDED,
                message=f"Game over ({reason}).",
                extra={"day_count": room.day_count},
            ),
        )
        for hook in self.end_hooks:
            hook(room)
