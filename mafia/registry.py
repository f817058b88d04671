"""Room registry: rooms, membership, and the participant -> room index."""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from cipher import CipherUnit, Kind
from mafia.clock import Clock
from mafia.config import GameConfig
from mafia.errors import (
    AlreadyInRoom,
    CannotLeaveDuringGame,
    GameAlreadyStarted,
    NotAuthorized,
    NotInRoom,
    RoomFull,
    RoomInactive,
    RoomNotFound,
)
from mafia.events import EventSink, emit_event
from mafia.rules import Phase, Role
from mafia.state import Caller, Event, EventKind, Participant, Room

logger = logging.getLogger(__name__)


class RoomRegistry:
    """
    Owns every Room and Participant record.

    `rooms` and the participant -> room index are kept mutually consistent after
    every operation. `index_lock` guards the index and is always taken innermost,
    after the owning room's lock.
    """

    def __init__(self, unit: CipherUnit, clock: Clock, sink: EventSink | None, config: GameConfig):
        self.unit = unit
        self.clock = clock
        self.sink = sink
        self.config = config
        self.rooms: dict[int, Room] = {}
        self._player_room: dict[str, int] = {}
        self._next_room_id = 1
        self.index_lock = threading.RLock()
        self._room_locks: dict[int, threading.RLock] = {}

    @contextmanager
    def room_lock(self, room_id: int) -> Iterator[None]:
        """Serialize mutations of one room. Raises RoomNotFound for unknown ids."""
        with self.index_lock:
            self.get_room(room_id)
            lock = self._room_locks.setdefault(room_id, threading.RLock())
        with lock:
            yield

    def get_room(self, room_id: int) -> Room:
        room = self.rooms.get(room_id)
        if room is None:
            raise RoomNotFound(f"Room {room_id} not found")
        return room

    def room_of(self, address: str) -> Optional[int]:
        """Return the room id the address is mapped to, or None."""
        with self.index_lock:
            return self._player_room.get(address)

    def participant(self, room: Room, address: str) -> Participant:
        record = room.records.get(address)
        if record is None:
            raise NotInRoom(f"{address} is not in room {room.id}")
        return record

    def list_rooms(self) -> list[int]:
        return sorted(self.rooms)

    def _new_participant(self, address: str) -> Participant:
        u = self.unit
        return Participant(
            address=address,
            role=u.encrypt(Role.UNASSIGNED, Kind.EBYTE),
            health=u.encrypt(self.config.starting_health, Kind.EWORD),
            resources=u.encrypt(self.config.starting_resources, Kind.EWORD),
            is_alive=u.encrypt(True, Kind.EBOOL),
            has_voted=u.encrypt(False, Kind.EBOOL),
            join_time=self.clock.now(),
        )

    def _check_joinable(self, room: Room, address: str) -> None:
        if address in self._player_room:
            raise AlreadyInRoom(f"{address} is already in room {self._player_room[address]}")
        if not room.is_active:
            raise RoomInactive(f"Room {room.id} is not active")
        if room.phase != Phase.WAITING:
            raise GameAlreadyStarted(f"Room {room.id} already started")
        if len(room.participants) >= self.config.max_players:
            raise RoomFull(f"Room {room.id} is full")

    def _admit(self, room: Room, address: str) -> None:
        room.records[address] = self._new_participant(address)
        room.participants.append(address)
        self._player_room[address] = room.id

    def create_room(self, caller: Caller) -> int:
        """Create a room and join the caller to it. Returns the room id."""
        with self.index_lock:
            room = Room(id=self._next_room_id, phase_start_time=self.clock.now())
            self._check_joinable(room, caller.identity)
            room_id = self._next_room_id
            self._next_room_id += 1
            self._admit(room, caller.identity)
            self.rooms[room_id] = room
        logger.info("Room %d created by %s", room_id, caller.identity)
        emit_event(
            self.sink,
            Event(
                kind=EventKind.ROOM_CREATED,
                room_id=room_id,
                phase=Phase.WAITING,
                message=f"Room {room_id} created.",
                player_id=caller.identity,
            ),
        )
        self._emit_joined(room, caller.identity)
        return room_id

    def join_room(self, room_id: int, caller: Caller) -> None:
        room = self.get_room(room_id)
        with self.index_lock:
            self._check_joinable(room, caller.identity)
            self._admit(room, caller.identity)
        self._emit_joined(room, caller.identity)

    def _emit_joined(self, room: Room, address: str) -> None:
        emit_event(
            self.sink,
            Event(
                kind=EventKind.PLAYER_JOINED,
                room_id=room.id,
                phase=room.phase,
                message=f"{address} joined ({len(room.participants)} players).",
                player_id=address,
            ),
        )

    def leave_room(self, caller: Caller) -> int:
        """
        Remove the caller from their room (Waiting only). Returns the room id.

        Uses swap-with-last-and-pop: the last participant takes the leaver's
        slot, so join order of the remaining participants is not preserved.
        """
        with self.index_lock:
            room_id = self._player_room.get(caller.identity)
            if room_id is None:
                raise NotInRoom(f"{caller.identity} is not in a room")
            room = self.get_room(room_id)
            if room.phase != Phase.WAITING:
                raise CannotLeaveDuringGame(f"Room {room_id} is in {room.phase.value}")
            idx = room.participants.index(caller.identity)
            room.participants[idx] = room.participants[-1]
            room.participants.pop()
            del room.records[caller.identity]
            del self._player_room[caller.identity]
            if not room.participants:
                room.is_active = False
        logger.info("%s left room %d", caller.identity, room_id)
        emit_event(
            self.sink,
            Event(
                kind=EventKind.PLAYER_LEFT,
                room_id=room_id,
                phase=room.phase,
                message=f"{caller.identity} left ({len(room.participants)} players).",
                player_id=caller.identity,
                extra={"room_active": room.is_active},
            ),
        )
        return room_id

    def release_participants(self, room: Room) -> None:
        """Drop every participant -> room mapping that points at this room."""
        with self.index_lock:
            for address in room.participants:
                if self._player_room.get(address) == room.id:
                    del self._player_room[address]

    def emergency_stop(self, room_id: int, caller: Caller) -> None:
        """Force a room to Ended and release its participants, bypassing phase checks."""
        if not caller.privileged:
            raise NotAuthorized("emergency_stop requires a privileged caller")
        room = self.get_room(room_id)
        room.phase = Phase.ENDED
        room.is_active = False
        room.phase_start_time = self.clock.now()
        self.release_participants(room)
        logger.warning("Room %d emergency-stopped by %s", room_id, caller.identity)
        emit_event(
            self.sink,
            Event(
                kind=EventKind.EMERGENCY_STOP,
                room_id=room_id,
                phase=Phase.ENDED,
                message=f"Room {room_id} stopped by administrator.",
                player_id=caller.identity,
            ),
        )

    def check_invariants(self) -> None:
        """Assert the participant <-> room index is consistent."""
        with self.index_lock:
            for address, room_id in self._player_room.items():
                room = self.rooms.get(room_id)
                assert room is not None, f"{address} mapped to missing room {room_id}"
                assert address in room.participants, f"{address} mapped to {room_id} but not listed"
            for room in self.rooms.values():
                assert len(room.participants) <= self.config.max_players
                assert len(set(room.participants)) == len(room.participants)
                assert set(room.participants) == set(room.records)
                if room.is_active:
                    for address in room.participants:
                        assert self._player_room.get(address) == room.id, (
                            f"{address} listed in active room {room.id} but not mapped"
                        )
