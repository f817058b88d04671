"""Validation errors raised by the game core.

Every error aborts the call before any state is mutated. None are retryable
as-is; `cipher.DecryptPending` is the separate, retryable outcome.
"""


class GameError(Exception):
    """Base for all game rule violations."""

    code = "game_error"
    http_status = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code.replace("_", " "))
        self.message = message or self.code.replace("_", " ")


class AlreadyInRoom(GameError):
    code = "already_in_room"
    http_status = 409


class NotInRoom(GameError):
    code = "not_in_room"
    http_status = 403


class RoomNotFound(GameError):
    code = "room_not_found"
    http_status = 404


class RoomInactive(GameError):
    code = "room_inactive"
    http_status = 409


class RoomFull(GameError):
    code = "room_full"
    http_status = 409


class GameAlreadyStarted(GameError):
    code = "game_already_started"
    http_status = 409


class GameNotStarted(GameError):
    code = "game_not_started"
    http_status = 409


class NotEnoughPlayers(GameError):
    code = "not_enough_players"


class PhaseNotReady(GameError):
    code = "phase_not_ready"
    http_status = 409


class CannotLeaveDuringGame(GameError):
    code = "cannot_leave_during_game"
    http_status = 409


class SessionNotFound(GameError):
    code = "session_not_found"
    http_status = 404


class SessionNotActive(GameError):
    code = "session_not_active"
    http_status = 409


class SessionAlreadyActive(GameError):
    code = "session_already_active"
    http_status = 409


class SessionStillOpen(GameError):
    code = "session_still_open"
    http_status = 409


class VotingClosed(GameError):
    code = "voting_closed"
    http_status = 409


class PlayerDead(GameError):
    code = "player_dead"
    http_status = 403


class AlreadyVoted(GameError):
    code = "already_voted"
    http_status = 409


class InvalidChoice(GameError):
    code = "invalid_choice"


class InvalidOptions(GameError):
    code = "invalid_options"


class AlreadyFinalized(GameError):
    code = "already_finalized"
    http_status = 409


class NotAuthorized(GameError):
    code = "not_authorized"
    http_status = 403
