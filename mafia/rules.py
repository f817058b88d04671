"""Game rules and constants for Cipher Mafia."""

from dataclasses import dataclass, field
from enum import Enum, IntEnum


class Role(IntEnum):
    """Player roles. Stored encrypted as ebyte codes."""

    UNASSIGNED = 0
    GUARDIAN = 1
    INFILTRATOR = 2
    DETECTIVE = 3
    HACKER = 4


class Phase(str, Enum):
    """Room lifecycle phase."""

    WAITING = "waiting"
    DAY = "day"
    VOTING = "voting"
    NIGHT = "night"
    ENDED = "ended"


class VoteType(str, Enum):
    """What a voting session decides."""

    ELIMINATION = "elimination"
    POLICY = "policy"
    ALLIANCE = "alliance"
    EMERGENCY = "emergency"


class Faction(IntEnum):
    """Winning side, stored encrypted on the room once the game ends."""

    NONE = 0
    GUARDIANS = 1
    INFILTRATORS = 2


# Successor of each started phase (day -> voting -> night -> day)
PHASE_CYCLE = {
    Phase.DAY: Phase.VOTING,
    Phase.VOTING: Phase.NIGHT,
    Phase.NIGHT: Phase.DAY,
}

MIN_PLAYERS = 4
MAX_PLAYERS = 10

# Game ends once day_count reaches this
END_DAY_LIMIT = 10

MIN_OPTIONS = 2
MAX_OPTIONS = 10

STARTING_HEALTH = 100
STARTING_RESOURCES = 100

# Phase durations in seconds
DAY_SECONDS = 300
VOTING_SECONDS = 180
NIGHT_SECONDS = 120
SESSION_SECONDS = 180

# Resources granted to the participant an alliance vote picks
ALLIANCE_RESOURCE_GRANT = 50

# Option index that accepts an emergency vote (0 = reject, 1 = accept)
EMERGENCY_ACCEPT_OPTION = 1


def assign_role(index: int, count: int) -> Role:
    """Role for the participant at join position `index` in a room of `count`.

    Deterministic by join order; there is no randomness source.
    """
    if index == 0:
        return Role.INFILTRATOR
    if index == 1 and count > 5:
        return Role.DETECTIVE
    if index == 2 and count > 7:
        return Role.HACKER
    return Role.GUARDIAN


@dataclass(frozen=True)
class WeightTable:
    """Versioned mapping from role/resources to vote weight bonuses."""

    version: int
    base_weight: int
    role_bonus: dict[Role, int] = field(default_factory=dict)
    # (threshold, step): resources strictly above threshold add step
    resource_tiers: tuple[tuple[int, int], ...] = ()


WEIGHT_TABLES: dict[int, WeightTable] = {
    1: WeightTable(
        version=1,
        base_weight=100,
        role_bonus={
            Role.GUARDIAN: 0,
            Role.INFILTRATOR: 0,
            Role.DETECTIVE: 50,
            Role.HACKER: 25,
        },
        resource_tiers=((100, 10), (200, 10), (500, 20)),
    ),
}

CURRENT_WEIGHT_VERSION = 1
