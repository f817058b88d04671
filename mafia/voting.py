"""Vote tally engine: encrypted ballots, oblivious accumulation, running-max winner."""

import logging
from typing import Callable, Optional

from cipher import Cipher, CipherUnit, DecryptPending, Kind
from mafia.clock import Clock
from mafia.config import GameConfig
from mafia.errors import (
    AlreadyFinalized,
    AlreadyVoted,
    GameNotStarted,
    InvalidChoice,
    InvalidOptions,
    NotAuthorized,
    NotInRoom,
    PlayerDead,
    RoomInactive,
    SessionAlreadyActive,
    SessionNotActive,
    SessionNotFound,
    SessionStillOpen,
    VotingClosed,
)
from mafia.events import EventSink, emit_event
from mafia.phases import PhaseMachine
from mafia.registry import RoomRegistry
from mafia.rules import (
    ALLIANCE_RESOURCE_GRANT,
    EMERGENCY_ACCEPT_OPTION,
    MAX_OPTIONS,
    MIN_OPTIONS,
    Phase,
    VoteType,
)
from mafia.state import (
    Caller,
    Decision,
    Event,
    EventKind,
    Room,
    VoteOption,
    VoteReceipt,
    VotingSession,
)
from mafia.weights import WeightCalculator

logger = logging.getLogger(__name__)


class VoteTallyEngine:
    """
    Owns VotingSessions and their options. Reads room and participant records;
    only the per-type result handlers run after finalize may change them.

    At most one session per room is active; `_room_session` is the
    room -> active session index and is cleared together with finalize/cancel.
    """

    def __init__(
        self,
        registry: RoomRegistry,
        phases: PhaseMachine,
        weights: WeightCalculator,
        unit: CipherUnit,
        clock: Clock,
        sink: EventSink | None,
        config: GameConfig,
    ):
        self.registry = registry
        self.phases = phases
        self.weights = weights
        self.unit = unit
        self.clock = clock
        self.sink = sink
        self.config = config
        self.sessions: dict[int, VotingSession] = {}
        self._room_session: dict[int, int] = {}
        self._next_session_id = 1
        # Oblivious effects of a result; never decrypt
        self._effects: dict[VoteType, Callable[[VotingSession, Room], None]] = {
            VoteType.ELIMINATION: self._eliminate,
            VoteType.POLICY: lambda session, room: None,
            VoteType.ALLIANCE: self._ally,
            VoteType.EMERGENCY: lambda session, room: None,
        }
        # Follow-ups that reveal a public outcome; may be pending
        self._reveals: dict[VoteType, Callable[[VotingSession, Room], None]] = {
            VoteType.ELIMINATION: self._reveal_victory,
            VoteType.EMERGENCY: self._reveal_emergency,
        }

    def get_session(self, session_id: int) -> VotingSession:
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Session {session_id} not found")
        return session

    def active_session(self, room_id: int) -> Optional[VotingSession]:
        session_id = self._room_session.get(room_id)
        return self.sessions[session_id] if session_id is not None else None

    def open_session(
        self,
        room_id: int,
        caller: Caller,
        vote_type: VoteType | str,
        options: list[str],
        duration: float | None = None,
    ) -> VotingSession:
        """Open a session over `options` for the room's alive participants."""
        room = self.registry.get_room(room_id)
        if not room.is_active or room.phase == Phase.ENDED:
            raise RoomInactive(f"Room {room_id} is not active")
        if room.phase == Phase.WAITING:
            raise GameNotStarted(f"Room {room_id} has not started")
        if not caller.privileged and not room.has_participant(caller.identity):
            raise NotAuthorized("Only participants can open a vote")
        if room_id in self._room_session:
            raise SessionAlreadyActive(
                f"Room {room_id} already has session {self._room_session[room_id]}"
            )
        try:
            vote_type = VoteType(vote_type)
        except ValueError:
            raise InvalidOptions(f"Unknown vote type {vote_type!r}") from None
        if not MIN_OPTIONS <= len(options) <= MAX_OPTIONS:
            raise InvalidOptions(f"Between {MIN_OPTIONS} and {MAX_OPTIONS} options required")
        if any(not (o or "").strip() for o in options):
            raise InvalidOptions("Option descriptions must be non-empty")
        if vote_type in (VoteType.ELIMINATION, VoteType.ALLIANCE):
            unknown = [o for o in options if not room.has_participant(o)]
            if unknown:
                raise InvalidOptions(f"Options are not participants: {', '.join(unknown)}")
        if duration is not None and duration <= 0:
            raise InvalidOptions("duration must be positive")

        u = self.unit
        zero_byte = u.encrypt(0, Kind.EBYTE)
        one_byte = u.encrypt(1, Kind.EBYTE)
        total_voters = zero_byte
        for record in room.records.values():
            total_voters = u.add(total_voters, u.select(record.is_alive, one_byte, zero_byte))

        now = self.clock.now()
        session = VotingSession(
            id=self._next_session_id,
            room_id=room_id,
            vote_type=vote_type,
            start_time=now,
            end_time=now + (duration if duration is not None else self.config.session_seconds),
            total_voters=total_voters,
            votes_received=zero_byte,
            options=[
                VoteOption(
                    option_id=u.encrypt(i, Kind.EBYTE),
                    vote_count=u.encrypt(0, Kind.EWORD),
                    description=description.strip(),
                )
                for i, description in enumerate(options)
            ],
            has_voted={address: u.encrypt(False, Kind.EBOOL) for address in room.participants},
        )
        self._next_session_id += 1
        self.sessions[session.id] = session
        self._room_session[room_id] = session.id
        logger.info("Room %d: %s session %d opened", room_id, vote_type.value, session.id)
        emit_event(
            self.sink,
            Event(
                kind=EventKind.SESSION_OPENED,
                room_id=room_id,
                phase=room.phase,
                message=f"{vote_type.value.title()} vote opened with {len(options)} options.",
                player_id=caller.identity,
                session_id=session.id,
                extra={"options": [o.description for o in session.options]},
            ),
        )
        return session

    def _is_complete(self, session: VotingSession) -> bool:
        """True once time is up, else reveal only whether every eligible voter has voted."""
        if self.clock.now() >= session.end_time:
            return True
        u = self.unit
        return bool(u.decrypt(u.eq(session.votes_received, session.total_voters), reason="votes-complete"))

    def cast_vote(self, session_id: int, caller: Caller, choice: Cipher) -> VoteReceipt:
        """
        Accept one encrypted ballot. Every option's count is updated with
        `select(choice == i, weight, 0)`, so the work done does not depend on
        which option was chosen.
        """
        session = self.get_session(session_id)
        if not session.is_active:
            raise SessionNotActive(f"Session {session_id} is not active")
        if self.clock.now() >= session.end_time:
            raise VotingClosed(f"Session {session_id} closed")
        room = self.registry.get_room(session.room_id)
        if not room.is_active:
            raise SessionNotActive(f"Room {room.id} is not active")
        voter = caller.identity
        record = room.records.get(voter)
        if record is None or voter not in session.has_voted:
            raise NotInRoom(f"{voter} is not a voter in session {session_id}")
        if choice.kind == Kind.EBOOL:
            raise InvalidChoice("Choice must be an encrypted integer")

        u = self.unit
        # Revealed predicates: status flags and range check only, never the choice.
        if not u.decrypt(record.is_alive, reason="voter-alive"):
            raise PlayerDead(f"{voter} is dead")
        if u.decrypt(session.has_voted[voter], reason="voter-has-voted"):
            raise AlreadyVoted(f"{voter} already voted in session {session_id}")
        in_range = u.lt(choice, u.encrypt(len(session.options), Kind.EBYTE))
        if not u.decrypt(in_range, reason="choice-in-range"):
            raise InvalidChoice("Choice is not a valid option index")

        weight = self.weights.compute_weight(session, record)
        zero = u.encrypt(0, Kind.EWORD)
        new_counts = [
            u.add(option.vote_count, u.select(u.eq(choice, option.option_id), weight.total_weight, zero))
            for option in session.options
        ]
        votes_received = u.add(session.votes_received, u.encrypt(1, Kind.EBYTE))
        voted = u.encrypt(True, Kind.EBOOL)

        for option, count in zip(session.options, new_counts):
            option.vote_count = count
        session.votes_received = votes_received
        session.has_voted[voter] = voted
        session.choices[voter] = choice
        session.weights[voter] = weight
        record.has_voted = voted
        emit_event(
            self.sink,
            Event(
                kind=EventKind.VOTE_CAST,
                room_id=room.id,
                phase=room.phase,
                message=f"{voter} voted.",
                player_id=voter,
                session_id=session.id,
            ),
        )

        try:
            complete = self._is_complete(session)
        except DecryptPending as e:
            logger.warning("Session %d completion check pending (request %d)", session.id, e.request_id)
            return VoteReceipt(session_id=session.id, voter=voter, completion_pending=True)
        if complete:
            self._finalize(session, room)
            return VoteReceipt(session_id=session.id, voter=voter, finalized=True)
        return VoteReceipt(session_id=session.id, voter=voter)

    def finalize(self, session_id: int, caller: Caller) -> VotingSession:
        """
        Resolve the winner. Participants may finalize once all votes are in or
        time is up; privileged callers at any time.
        """
        session = self.get_session(session_id)
        if session.is_finalized:
            raise AlreadyFinalized(f"Session {session_id} already finalized")
        if not session.is_active:
            raise SessionNotActive(f"Session {session_id} is not active")
        room = self.registry.get_room(session.room_id)
        if not caller.privileged:
            if not room.has_participant(caller.identity):
                raise NotAuthorized("Only participants can finalize")
            if not self._is_complete(session):
                raise SessionStillOpen(f"Session {session_id} is still collecting votes")
        self._finalize(session, room)
        return session

    def _resolve_winner(self, session: VotingSession) -> Cipher:
        """Running max in index order; strict > keeps the lowest index on ties."""
        u = self.unit
        winner = session.options[0].option_id
        best = session.options[0].vote_count
        for option in session.options[1:]:
            better = u.gt(option.vote_count, best)
            winner = u.select(better, option.option_id, winner)
            best = u.select(better, option.vote_count, best)
        return winner

    def _finalize(self, session: VotingSession, room: Room) -> None:
        session.winning_option = self._resolve_winner(session)
        session.finalized_in_phase = room.phase_serial
        session.is_finalized = True
        session.is_active = False
        self._room_session.pop(session.room_id, None)
        logger.info("Room %d: session %d finalized", room.id, session.id)
        emit_event(
            self.sink,
            Event(
                kind=EventKind.SESSION_FINALIZED,
                room_id=room.id,
                phase=room.phase,
                message=f"{session.vote_type.value.title()} vote finalized.",
                session_id=session.id,
            ),
        )
        self._effects[session.vote_type](session, room)
        room.decisions.append(
            Decision(session_id=session.id, vote_type=session.vote_type, winning_option=session.winning_option)
        )
        self.settle(session)

    def settle(self, session: VotingSession) -> bool:
        """
        Run the outcome reveal for a finalized session (victory check, emergency
        result). Returns False and leaves `outcome_pending` set if the decrypt is
        still pending.
        """
        reveal = self._reveals.get(session.vote_type)
        if reveal is None:
            session.outcome_pending = False
            return True
        room = self.registry.get_room(session.room_id)
        try:
            reveal(session, room)
        except DecryptPending as e:
            session.outcome_pending = True
            logger.warning("Session %d outcome pending (request %d)", session.id, e.request_id)
            return False
        session.outcome_pending = False
        return True

    def _named_records(self, session: VotingSession, room: Room):
        for option in session.options:
            record = room.records.get(option.description)
            if record is not None:
                yield option, record

    def _eliminate(self, session: VotingSession, room: Room) -> None:
        u = self.unit
        dead = u.encrypt(False, Kind.EBOOL)
        no_health = u.encrypt(0, Kind.EWORD)
        for option, record in self._named_records(session, room):
            hit = u.eq(session.winning_option, option.option_id)
            record.is_alive = u.select(hit, dead, record.is_alive)
            record.health = u.select(hit, no_health, record.health)

    def _ally(self, session: VotingSession, room: Room) -> None:
        u = self.unit
        grant = u.encrypt(ALLIANCE_RESOURCE_GRANT, Kind.EWORD)
        zero = u.encrypt(0, Kind.EWORD)
        for option, record in self._named_records(session, room):
            hit = u.eq(session.winning_option, option.option_id)
            record.resources = u.add(record.resources, u.select(hit, grant, zero))

    def _reveal_victory(self, session: VotingSession, room: Room) -> None:
        self.phases.check_victory(room)

    def _reveal_emergency(self, session: VotingSession, room: Room) -> None:
        u = self.unit
        accepted = u.eq(session.winning_option, u.encrypt(EMERGENCY_ACCEPT_OPTION, Kind.EBYTE))
        if not u.decrypt(accepted, reason="emergency-outcome"):
            return
        # Only the phase the vote was decided in may be cut short
        if room.is_active and room.phase_serial == session.finalized_in_phase:
            room.force_ready = True
            logger.info("Room %d: emergency vote accepted, %s phase may end now", room.id, room.phase.value)
        else:
            logger.info("Room %d: emergency vote from session %d accepted after its phase ended", room.id, session.id)

    def cancel(self, session_id: int, caller: Caller, reason: str) -> VotingSession:
        """Close an active session without a result."""
        session = self.get_session(session_id)
        if not session.is_active:
            raise SessionNotActive(f"Session {session_id} is not active")
        room = self.registry.get_room(session.room_id)
        if not caller.privileged and not room.has_participant(caller.identity):
            raise NotAuthorized("Only participants can cancel a vote")
        self._cancel(session, room, reason)
        return session

    def _cancel(self, session: VotingSession, room: Room, reason: str) -> None:
        session.is_active = False
        session.cancel_reason = reason
        self._room_session.pop(session.room_id, None)
        logger.info("Room %d: session %d cancelled (%s)", room.id, session.id, reason)
        emit_event(
            self.sink,
            Event(
                kind=EventKind.SESSION_CANCELLED,
                room_id=room.id,
                phase=room.phase,
                message=f"Vote cancelled: {reason}",
                session_id=session.id,
            ),
        )

    def close_room_sessions(self, room: Room, reason: str = "room closed") -> None:
        """Cancel the room's active session, if any."""
        session = self.active_session(room.id)
        if session is not None:
            self._cancel(session, room, reason)

    def check_invariants(self) -> None:
        """Assert at most one active session per room and a consistent index."""
        active_by_room: dict[int, list[int]] = {}
        for session in self.sessions.values():
            if session.is_active:
                active_by_room.setdefault(session.room_id, []).append(session.id)
            if session.is_finalized:
                assert not session.is_active
        for room_id, ids in active_by_room.items():
            assert len(ids) == 1, f"room {room_id} has active sessions {ids}"
            assert self._room_session.get(room_id) == ids[0]
        for room_id, session_id in self._room_session.items():
            assert self.sessions[session_id].is_active
            assert self.sessions[session_id].room_id == room_id
