"""ConfidentialGame: wires the components and serializes calls per room."""

import logging
from typing import Optional

from cipher import Cipher, CipherUnit, Kind, PlainCipherUnit
from mafia.clock import Clock, SystemClock
from mafia.config import GameConfig, load_config
from mafia.errors import (
    GameNotStarted,
    NotAuthorized,
    NotInRoom,
    PhaseNotReady,
    SessionNotActive,
    SessionStillOpen,
)
from mafia.events import EventSink, LoggingEventSink
from mafia.phases import PhaseMachine
from mafia.registry import RoomRegistry
from mafia.rules import Faction, Phase, Role, VoteType
from mafia.state import Caller, Room, VoteReceipt, VotingSession
from mafia.voting import VoteTallyEngine
from mafia.weights import WeightCalculator

logger = logging.getLogger(__name__)


class ConfidentialGame:
    """
    Entry point for every game operation. Each call that touches a room runs
    under that room's lock, so mutations of one room or its sessions never
    interleave. Calls either commit fully or raise before mutating.
    """

    def __init__(
        self,
        unit: CipherUnit | None = None,
        clock: Clock | None = None,
        sink: EventSink | None = None,
        config: GameConfig | None = None,
    ):
        self.unit = unit or PlainCipherUnit()
        self.clock = clock or SystemClock()
        self.sink = sink if sink is not None else LoggingEventSink()
        self.config = config or load_config()
        self.registry = RoomRegistry(self.unit, self.clock, self.sink, self.config)
        self.phases = PhaseMachine(self.registry, self.unit, self.clock, self.sink, self.config)
        self.weights = WeightCalculator(self.unit, self.config.weight_table)
        self.voting = VoteTallyEngine(
            self.registry, self.phases, self.weights, self.unit, self.clock, self.sink, self.config
        )
        self.phases.end_hooks.append(lambda room: self.voting.close_room_sessions(room, "game ended"))

    # Rooms

    def create_room(self, caller: Caller) -> int:
        return self.registry.create_room(caller)

    def join_room(self, room_id: int, caller: Caller) -> None:
        with self.registry.room_lock(room_id):
            self.registry.join_room(room_id, caller)

    def leave_room(self, caller: Caller) -> int:
        room_id = self.registry.room_of(caller.identity)
        if room_id is None:
            raise NotInRoom(f"{caller.identity} is not in a room")
        with self.registry.room_lock(room_id):
            return self.registry.leave_room(caller)

    def emergency_stop(self, room_id: int, caller: Caller) -> None:
        if not caller.privileged:
            raise NotAuthorized("emergency_stop requires a privileged caller")
        with self.registry.room_lock(room_id):
            room = self.registry.get_room(room_id)
            self.voting.close_room_sessions(room, "emergency stop")
            self.registry.emergency_stop(room_id, caller)

    def get_room(self, room_id: int) -> Room:
        return self.registry.get_room(room_id)

    def list_rooms(self) -> list[int]:
        return self.registry.list_rooms()

    def room_of(self, address: str) -> Optional[int]:
        return self.registry.room_of(address)

    # Phases

    def start_game(self, room_id: int, caller: Caller) -> Room:
        with self.registry.room_lock(room_id):
            return self.phases.start_game(room_id, caller)

    def advance_phase(self, room_id: int, caller: Caller) -> Phase:
        with self.registry.room_lock(room_id):
            return self.phases.advance_phase(room_id, caller)

    def time_remaining(self, room_id: int) -> Optional[float]:
        return self.phases.time_remaining(self.registry.get_room(room_id))

    # Voting

    def open_session(
        self,
        room_id: int,
        caller: Caller,
        vote_type: VoteType | str,
        options: list[str],
        duration: float | None = None,
    ) -> VotingSession:
        with self.registry.room_lock(room_id):
            return self.voting.open_session(room_id, caller, vote_type, options, duration=duration)

    def encrypt_choice(self, choice: int) -> Cipher:
        """Encrypt an option index the way a client would before casting."""
        return self.unit.encrypt(choice, Kind.EBYTE)

    def cast_vote(self, session_id: int, caller: Caller, choice: Cipher) -> VoteReceipt:
        room_id = self.voting.get_session(session_id).room_id
        with self.registry.room_lock(room_id):
            return self.voting.cast_vote(session_id, caller, choice)

    def finalize(self, session_id: int, caller: Caller) -> VotingSession:
        room_id = self.voting.get_session(session_id).room_id
        with self.registry.room_lock(room_id):
            return self.voting.finalize(session_id, caller)

    def cancel(self, session_id: int, caller: Caller, reason: str) -> VotingSession:
        room_id = self.voting.get_session(session_id).room_id
        with self.registry.room_lock(room_id):
            return self.voting.cancel(session_id, caller, reason)

    def get_session(self, session_id: int) -> VotingSession:
        return self.voting.get_session(session_id)

    def active_session(self, room_id: int) -> Optional[VotingSession]:
        return self.voting.active_session(room_id)

    def settle(self, room_id: int, caller: Caller) -> list[int]:
        """Retry outcome reveals that were pending. Returns ids still pending."""
        with self.registry.room_lock(room_id):
            room = self.registry.get_room(room_id)
            self._require_member(room, caller)
            pending = [
                s for s in self.voting.sessions.values() if s.room_id == room_id and s.outcome_pending
            ]
            return [s.id for s in pending if not self.voting.settle(s)]

    # Authorised decrypt paths

    def _require_member(self, room: Room, caller: Caller) -> None:
        if not caller.privileged and not room.has_participant(caller.identity):
            raise NotAuthorized(f"{caller.identity} is not in room {room.id}")

    def reveal_own_role(self, caller: Caller) -> Role:
        room_id = self.registry.room_of(caller.identity)
        if room_id is None:
            raise NotInRoom(f"{caller.identity} is not in a room")
        room = self.registry.get_room(room_id)
        if not room.roles_assigned:
            raise GameNotStarted(f"Room {room_id} has not started")
        record = self.registry.participant(room, caller.identity)
        return Role(self.unit.decrypt(record.role, reason="own-role"))

    def reveal_winning_option(self, session_id: int, caller: Caller) -> int:
        session = self.voting.get_session(session_id)
        self._require_member(self.registry.get_room(session.room_id), caller)
        if session.is_active:
            raise SessionStillOpen(f"Session {session_id} is still collecting votes")
        if not session.is_finalized or session.winning_option is None:
            raise SessionNotActive(f"Session {session_id} was cancelled")
        return int(self.unit.decrypt(session.winning_option, reason="winning-option"))

    def reveal_winner(self, room_id: int, caller: Caller) -> Faction:
        room = self.registry.get_room(room_id)
        self._require_member(room, caller)
        if room.phase != Phase.ENDED:
            raise PhaseNotReady(f"Room {room_id} has not ended")
        if room.winner is None:
            return Faction.NONE
        return Faction(self.unit.decrypt(room.winner, reason="winning-faction"))

    def check_invariants(self) -> None:
        self.registry.check_invariants()
        self.voting.check_invariants()
