"""Tunable game settings, overridable from the environment."""

import os
from dataclasses import dataclass
from typing import Mapping

from mafia import rules

# Env var names
ENV_MIN_PLAYERS = "CIPHER_MAFIA_MIN_PLAYERS"
ENV_MAX_PLAYERS = "CIPHER_MAFIA_MAX_PLAYERS"
ENV_END_DAY_LIMIT = "CIPHER_MAFIA_END_DAY_LIMIT"
ENV_DAY_SECONDS = "CIPHER_MAFIA_DAY_SECONDS"
ENV_VOTING_SECONDS = "CIPHER_MAFIA_VOTING_SECONDS"
ENV_NIGHT_SECONDS = "CIPHER_MAFIA_NIGHT_SECONDS"
ENV_SESSION_SECONDS = "CIPHER_MAFIA_SESSION_SECONDS"
ENV_WEIGHT_VERSION = "CIPHER_MAFIA_WEIGHT_VERSION"
ENV_ADMIN_TOKEN = "CIPHER_MAFIA_ADMIN_TOKEN"


@dataclass(frozen=True)
class GameConfig:
    min_players: int = rules.MIN_PLAYERS
    max_players: int = rules.MAX_PLAYERS
    end_day_limit: int = rules.END_DAY_LIMIT
    day_seconds: float = rules.DAY_SECONDS
    voting_seconds: float = rules.VOTING_SECONDS
    night_seconds: float = rules.NIGHT_SECONDS
    session_seconds: float = rules.SESSION_SECONDS
    starting_health: int = rules.STARTING_HEALTH
    starting_resources: int = rules.STARTING_RESOURCES
    weight_version: int = rules.CURRENT_WEIGHT_VERSION

    def __post_init__(self) -> None:
        if self.min_players < 1 or self.max_players < self.min_players:
            raise ValueError(
                f"invalid player bounds: min={self.min_players} max={self.max_players}"
            )
        if self.max_players > rules.MAX_PLAYERS:
            raise ValueError(f"max_players cannot exceed {rules.MAX_PLAYERS}")
        if self.end_day_limit < 1:
            raise ValueError("end_day_limit must be >= 1")
        if self.weight_version not in rules.WEIGHT_TABLES:
            raise ValueError(f"unknown weight table version {self.weight_version}")

    def phase_duration(self, phase: rules.Phase) -> float | None:
        """Seconds a phase lasts before it may be advanced; None if untimed."""
        return {
            rules.Phase.DAY: self.day_seconds,
            rules.Phase.VOTING: self.voting_seconds,
            rules.Phase.NIGHT: self.night_seconds,
        }.get(phase)

    @property
    def weight_table(self) -> rules.WeightTable:
        return rules.WEIGHT_TABLES[self.weight_version]


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def load_config(env: Mapping[str, str] | None = None) -> GameConfig:
    """Build GameConfig from env (defaults to os.environ)."""
    env = os.environ if env is None else env
    return GameConfig(
        min_players=_int(env, ENV_MIN_PLAYERS, rules.MIN_PLAYERS),
        max_players=_int(env, ENV_MAX_PLAYERS, rules.MAX_PLAYERS),
        end_day_limit=_int(env, ENV_END_DAY_LIMIT, rules.END_DAY_LIMIT),
        day_seconds=_float(env, ENV_DAY_SECONDS, rules.DAY_SECONDS),
        voting_seconds=_float(env, ENV_VOTING_SECONDS, rules.VOTING_SECONDS),
        night_seconds=_float(env, ENV_NIGHT_SECONDS, rules.NIGHT_SECONDS),
        session_seconds=_float(env, ENV_SESSION_SECONDS, rules.SESSION_SECONDS),
        weight_version=_int(env, ENV_WEIGHT_VERSION, rules.CURRENT_WEIGHT_VERSION),
    )


def admin_token(env: Mapping[str, str] | None = None) -> str | None:
    """Admin token for privileged API calls, or None when unset."""
    env = os.environ if env is None else env
    return env.get(ENV_ADMIN_TOKEN) or None
