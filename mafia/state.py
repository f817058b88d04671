"""Game state types for Cipher Mafia."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from cipher import Cipher
from mafia.rules import Phase, VoteType


@dataclass(frozen=True)
class Caller:
    """Identity of whoever makes a call, as supplied by the host."""

    identity: str
    privileged: bool = False


@dataclass
class Participant:
    """A player's confidential record inside one room."""

    address: str
    role: Cipher
    health: Cipher
    resources: Cipher
    is_alive: Cipher
    has_voted: Cipher
    join_time: float


@dataclass
class Decision:
    """Outcome of a finalized session, kept on the room."""

    session_id: int
    vote_type: VoteType
    winning_option: Cipher


@dataclass
class Room:
    """One game room."""

    id: int
    participants: list[str] = field(default_factory=list)  # join order
    records: dict[str, Participant] = field(default_factory=dict)
    phase: Phase = Phase.WAITING
    phase_start_time: float = 0.0
    day_count: int = 0
    is_active: bool = True
    winner: Optional[Cipher] = None
    roles_assigned: bool = False
    force_ready: bool = False  # set by an accepted emergency vote
    phase_serial: int = 0  # bumped on every phase entry
    decisions: list[Decision] = field(default_factory=list)

    def has_participant(self, address: str) -> bool:
        return address in self.records


@dataclass
class VoteOption:
    option_id: Cipher
    vote_count: Cipher
    description: str
    is_active: bool = True


@dataclass(frozen=True)
class VoteWeight:
    """Weight of one ballot, frozen at casting time."""

    base_weight: Cipher
    role_bonus: Cipher
    resource_bonus: Cipher
    total_weight: Cipher
    version: int


class SessionStatus(str, Enum):
    OPEN = "open"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"


@dataclass
class VotingSession:
    """One vote collection process in a room."""

    id: int
    room_id: int
    vote_type: VoteType
    start_time: float
    end_time: float
    total_voters: Cipher
    votes_received: Cipher
    options: list[VoteOption] = field(default_factory=list)
    has_voted: dict[str, Cipher] = field(default_factory=dict)
    choices: dict[str, Cipher] = field(default_factory=dict)
    weights: dict[str, VoteWeight] = field(default_factory=dict)
    is_active: bool = True
    is_finalized: bool = False
    winning_option: Optional[Cipher] = None
    cancel_reason: Optional[str] = None
    outcome_pending: bool = False  # outcome reveal waits on a decrypt
    finalized_in_phase: Optional[int] = None  # room.phase_serial at finalize

    @property
    def status(self) -> SessionStatus:
        if self.is_finalized:
            return SessionStatus.FINALIZED
        if self.is_active:
            return SessionStatus.OPEN
        return SessionStatus.CANCELLED


@dataclass(frozen=True)
class VoteReceipt:
    """Result of a successful cast_vote."""

    session_id: int
    voter: str
    finalized: bool = False
    completion_pending: bool = False  # completion check waits on a decrypt


class EventKind(str, Enum):
    """Type of game event."""

    ROOM_CREATED = "room_created"
    PLAYER_JOINED = "player_joined"
    PLAYER_LEFT = "player_left"
    GAME_STARTED = "game_started"
    PHASE_CHANGED = "phase_changed"
    GAME_ENDED = "game_ended"
    EMERGENCY_STOP = "emergency_stop"
    SESSION_OPENED = "session_opened"
    VOTE_CAST = "vote_cast"
    SESSION_FINALIZED = "session_finalized"
    SESSION_CANCELLED = "session_cancelled"


@dataclass
class Event:
    """A side-effect description handed to the event sink."""

    kind: EventKind
    room_id: int
    message: str
    phase: Optional[Phase] = None
    player_id: Optional[str] = None
    session_id: Optional[int] = None
    extra: Optional[dict] = None
