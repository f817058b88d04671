"""FastAPI app: rooms, phases, encrypted voting."""

import hmac
import logging

from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cipher import DecryptPending
from mafia.config import admin_token
from mafia.errors import GameError
from mafia.events import MemoryEventSink
from mafia.state import Caller
from api.models import (
    CancelRequest,
    CastVoteRequest,
    EventPublic,
    OpenSessionRequest,
    RoomResponse,
    SessionResponse,
    SessionResultResponse,
    VoteReceiptResponse,
    event_to_public,
    room_to_public,
    session_to_public,
)
from api.store import get_game

logger = logging.getLogger(__name__)

app = FastAPI(title="Cipher Mafia API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GameError)
async def game_error_handler(request: Request, exc: GameError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": {"code": exc.code, "message": exc.message}},
    )


@app.exception_handler(DecryptPending)
async def decrypt_pending_handler(request: Request, exc: DecryptPending) -> JSONResponse:
    """Pending decrypt is not a failure: the caller retries once it resolves."""
    logger.info("Decrypt pending on %s: request %d", request.url.path, exc.request_id)
    return JSONResponse(
        status_code=202,
        content={"status": "pending", "request_id": exc.request_id, "reason": exc.reason},
    )


def get_caller(
    x_player_id: str = Header(..., min_length=1, max_length=128),
    x_admin_token: str | None = Header(default=None),
) -> Caller:
    """Identity comes from the host; the admin token marks a privileged call."""
    expected = admin_token()
    privileged = bool(expected and x_admin_token and hmac.compare_digest(expected, x_admin_token))
    return Caller(identity=x_player_id, privileged=privileged)


def _room_response(room_id: int) -> RoomResponse:
    game = get_game()
    room = game.get_room(room_id)
    active = game.active_session(room_id)
    return room_to_public(
        room,
        time_remaining=game.time_remaining(room_id),
        active_session_id=active.id if active else None,
    )


@app.post("/rooms", response_model=dict, tags=["Rooms"], summary="Create room")
def create_room(caller: Caller = Depends(get_caller)):
    """Create a room and join the caller to it. Returns room_id."""
    room_id = get_game().create_room(caller)
    return {"room_id": room_id}


@app.get("/rooms", response_model=list[int], tags=["Rooms"], summary="List room IDs")
def list_rooms_route():
    return get_game().list_rooms()


@app.get("/rooms/{room_id}", response_model=RoomResponse, tags=["Rooms"], summary="Get room state")
def get_room(room_id: int):
    return _room_response(room_id)


@app.post("/rooms/leave", response_model=dict, tags=["Rooms"], summary="Leave current room")
def leave_room(caller: Caller = Depends(get_caller)):
    room_id = get_game().leave_room(caller)
    return {"room_id": room_id}


@app.post("/rooms/{room_id}/join", response_model=RoomResponse, tags=["Rooms"], summary="Join room")
def join_room(room_id: int, caller: Caller = Depends(get_caller)):
    get_game().join_room(room_id, caller)
    return _room_response(room_id)


@app.post("/rooms/{room_id}/start", response_model=RoomResponse, tags=["Phases"], summary="Start game")
def start_game(room_id: int, caller: Caller = Depends(get_caller)):
    """Assign roles and move to day."""
    get_game().start_game(room_id, caller)
    return _room_response(room_id)


@app.post("/rooms/{room_id}/advance", response_model=RoomResponse, tags=["Phases"], summary="Advance phase")
def advance_phase(room_id: int, caller: Caller = Depends(get_caller)):
    get_game().advance_phase(room_id, caller)
    return _room_response(room_id)


@app.post("/rooms/{room_id}/emergency-stop", response_model=RoomResponse, tags=["Admin"], summary="Emergency stop")
def emergency_stop(room_id: int, caller: Caller = Depends(get_caller)):
    """Force the room to end. Requires the admin token."""
    get_game().emergency_stop(room_id, caller)
    return _room_response(room_id)


@app.post("/rooms/{room_id}/settle", response_model=dict, tags=["Phases"], summary="Retry pending outcomes")
def settle(room_id: int, caller: Caller = Depends(get_caller)):
    pending = get_game().settle(room_id, caller)
    return {"pending_session_ids": pending}


@app.get("/rooms/{room_id}/winner", response_model=dict, tags=["Phases"], summary="Reveal winning faction")
def reveal_winner(room_id: int, caller: Caller = Depends(get_caller)):
    faction = get_game().reveal_winner(room_id, caller)
    return {"room_id": room_id, "winner": faction.name.lower()}


@app.post("/rooms/{room_id}/sessions", response_model=SessionResponse, tags=["Voting"], summary="Open vote")
def open_session(room_id: int, body: OpenSessionRequest, caller: Caller = Depends(get_caller)):
    session = get_game().open_session(room_id, caller, body.vote_type, body.options, duration=body.duration)
    return session_to_public(session)


@app.get("/sessions/{session_id}", response_model=SessionResponse, tags=["Voting"], summary="Get session")
def get_session(session_id: int):
    return session_to_public(get_game().get_session(session_id))


@app.post("/sessions/{session_id}/votes", response_model=VoteReceiptResponse, tags=["Voting"], summary="Cast vote")
def cast_vote(session_id: int, body: CastVoteRequest, caller: Caller = Depends(get_caller)):
    """Encrypt the chosen index and cast it. The plaintext choice is not stored."""
    game = get_game()
    receipt = game.cast_vote(session_id, caller, game.encrypt_choice(body.choice))
    return VoteReceiptResponse(
        session_id=receipt.session_id,
        voter=receipt.voter,
        finalized=receipt.finalized,
        completion_pending=receipt.completion_pending,
    )


@app.post("/sessions/{session_id}/finalize", response_model=SessionResponse, tags=["Voting"], summary="Finalize vote")
def finalize(session_id: int, caller: Caller = Depends(get_caller)):
    return session_to_public(get_game().finalize(session_id, caller))


@app.post("/sessions/{session_id}/cancel", response_model=SessionResponse, tags=["Voting"], summary="Cancel vote")
def cancel(session_id: int, body: CancelRequest, caller: Caller = Depends(get_caller)):
    return session_to_public(get_game().cancel(session_id, caller, body.reason.strip()))


@app.get("/sessions/{session_id}/result", response_model=SessionResultResponse, tags=["Voting"], summary="Reveal result")
def session_result(session_id: int, caller: Caller = Depends(get_caller)):
    """Decrypt the winning option of a finalized session for a participant."""
    game = get_game()
    index = game.reveal_winning_option(session_id, caller)
    session = game.get_session(session_id)
    return SessionResultResponse(
        session_id=session_id,
        winning_option=index,
        description=session.options[index].description,
    )


@app.get("/me/role", response_model=dict, tags=["Players"], summary="Reveal own role")
def my_role(caller: Caller = Depends(get_caller)):
    role = get_game().reveal_own_role(caller)
    return {"player_id": caller.identity, "role": role.name.lower()}


@app.get("/events", response_model=list[EventPublic], tags=["System"], summary="List events")
def list_events(room_id: int | None = None):
    sink = get_game().sink
    events = sink.events if isinstance(sink, MemoryEventSink) else []
    return [event_to_public(e) for e in events if room_id is None or e.room_id == room_id]


@app.get("/health", tags=["System"], summary="Health check")
def health():
    return {"status": "ok"}
