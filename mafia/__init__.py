"""Confidential game core for Cipher Mafia."""

from mafia.game import ConfidentialGame
from mafia.config import GameConfig, load_config
from mafia.rules import Faction, Phase, Role, VoteType
from mafia.state import (
    Caller,
    Event,
    EventKind,
    Participant,
    Room,
    VoteOption,
    VoteReceipt,
    VoteWeight,
    VotingSession,
)
from mafia.events import LoggingEventSink, MemoryEventSink
from mafia.clock import ManualClock, SystemClock

__all__ = [
    "ConfidentialGame",
    "GameConfig",
    "load_config",
    "Faction",
    "Phase",
    "Role",
    "VoteType",
    "Caller",
    "Event",
    "EventKind",
    "Participant",
    "Room",
    "VoteOption",
    "VoteReceipt",
    "VoteWeight",
    "VotingSession",
    "LoggingEventSink",
    "MemoryEventSink",
    "ManualClock",
    "SystemClock",
]
