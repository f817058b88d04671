"""Pydantic request/response models for the API."""

from pydantic import BaseModel, Field, field_validator

from mafia.rules import MAX_OPTIONS, MIN_OPTIONS, VoteType

# Validation constants (no magic numbers in validation)
MAX_OPTION_LENGTH = 64
MAX_REASON_LENGTH = 200
MAX_CHOICE = 255


class CipherPublic(BaseModel):
    """A ciphertext as shown to clients: kind and opaque handle, never the value."""

    kind: str
    handle: int


class ParticipantPublic(BaseModel):
    address: str
    join_time: float
    role: CipherPublic
    health: CipherPublic
    resources: CipherPublic
    is_alive: CipherPublic


class RoomResponse(BaseModel):
    """Public room state for GET /rooms/{id}."""

    room_id: int
    participants: list[ParticipantPublic]
    phase: str
    phase_start_time: float
    day_count: int
    is_active: bool
    time_remaining: float | None = Field(default=None, description="Seconds until the phase may be advanced")
    active_session_id: int | None = None
    winner: CipherPublic | None = Field(default=None, description="Encrypted winning faction once ended")
    decisions: int = Field(default=0, description="Number of finalized votes applied to this room")


class OpenSessionRequest(BaseModel):
    """Body for POST /rooms/{id}/sessions."""

    vote_type: VoteType = VoteType.ELIMINATION
    options: list[str] = Field(..., min_length=MIN_OPTIONS, max_length=MAX_OPTIONS)
    duration: float | None = Field(default=None, gt=0, description="Seconds; server default if omitted")

    @field_validator("options")
    @classmethod
    def options_non_empty(cls, v: list[str]) -> list[str]:
        for option in v:
            if not option.strip():
                raise ValueError("options must be non-empty")
            if len(option) > MAX_OPTION_LENGTH:
                raise ValueError(f"options must be at most {MAX_OPTION_LENGTH} characters")
        return v


class CastVoteRequest(BaseModel):
    """Body for POST /sessions/{id}/votes. The server encrypts the index on ingress."""

    choice: int = Field(..., ge=0, le=MAX_CHOICE)


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=MAX_REASON_LENGTH)


class OptionPublic(BaseModel):
    index: int
    description: str
    vote_count: CipherPublic


class SessionResponse(BaseModel):
    session_id: int
    room_id: int
    vote_type: str
    status: str
    start_time: float
    end_time: float
    options: list[OptionPublic]
    total_voters: CipherPublic
    votes_received: CipherPublic
    winning_option: CipherPublic | None = None
    cancel_reason: str | None = None
    outcome_pending: bool = False


class VoteReceiptResponse(BaseModel):
    session_id: int
    voter: str
    finalized: bool
    completion_pending: bool


class SessionResultResponse(BaseModel):
    session_id: int
    winning_option: int
    description: str


class EventPublic(BaseModel):
    kind: str
    room_id: int
    message: str
    phase: str | None = None
    player_id: str | None = None
    session_id: int | None = None


def cipher_to_public(c) -> CipherPublic:
    return CipherPublic(kind=c.kind.value, handle=c.handle)


def room_to_public(room, time_remaining: float | None = None, active_session_id: int | None = None) -> RoomResponse:
    """Build public response from Room; every confidential field stays encrypted."""
    participants = [
        ParticipantPublic(
            address=address,
            join_time=room.records[address].join_time,
            role=cipher_to_public(room.records[address].role),
            health=cipher_to_public(room.records[address].health),
            resources=cipher_to_public(room.records[address].resources),
            is_alive=cipher_to_public(room.records[address].is_alive),
        )
        for address in room.participants
    ]
    return RoomResponse(
        room_id=room.id,
        participants=participants,
        phase=room.phase.value,
        phase_start_time=room.phase_start_time,
        day_count=room.day_count,
        is_active=room.is_active,
        time_remaining=time_remaining,
        active_session_id=active_session_id,
        winner=cipher_to_public(room.winner) if room.winner is not None else None,
        decisions=len(room.decisions),
    )


def session_to_public(session) -> SessionResponse:
    return SessionResponse(
        session_id=session.id,
        room_id=session.room_id,
        vote_type=session.vote_type.value,
        status=session.status.value,
        start_time=session.start_time,
        end_time=session.end_time,
        options=[
            OptionPublic(index=i, description=o.description, vote_count=cipher_to_public(o.vote_count))
            for i, o in enumerate(session.options)
        ],
        total_voters=cipher_to_public(session.total_voters),
        votes_received=cipher_to_public(session.votes_received),
        winning_option=cipher_to_public(session.winning_option) if session.winning_option is not None else None,
        cancel_reason=session.cancel_reason,
        outcome_pending=session.outcome_pending,
    )


def event_to_public(e) -> EventPublic:
    return EventPublic(
        kind=e.kind.value,
        room_id=e.room_id,
        message=e.message,
        phase=e.phase.value if e.phase else None,
        player_id=e.player_id,
        session_id=e.session_id,
    )
