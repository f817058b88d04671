"""In-memory holder for the server's game instance. Replace with DB later if needed."""

from mafia.config import load_config
from mafia.events import MemoryEventSink
from mafia.game import ConfidentialGame

_game: ConfidentialGame | None = None


def _new_game() -> ConfidentialGame:
    return ConfidentialGame(sink=MemoryEventSink(), config=load_config())


def get_game() -> ConfidentialGame:
    global _game
    if _game is None:
        _game = _new_game()
    return _game


def set_game(game: ConfidentialGame) -> None:
    """Swap in a game instance (tests use a manual clock)."""
    global _game
    _game = game


def reset() -> ConfidentialGame:
    """Drop all rooms and sessions."""
    global _game
    _game = _new_game()
    return _game
