"""Unit tests for vote weight calculation."""

import pytest

from cipher import Kind, PlainCipherUnit
from mafia.rules import WEIGHT_TABLES, Role
from mafia.state import Participant
from mafia.weights import WeightCalculator


def _participant(unit: PlainCipherUnit, role: Role, resources: int = 100) -> Participant:
    return Participant(
        address="P",
        role=unit.encrypt(role, Kind.EBYTE),
        health=unit.encrypt(100, Kind.EWORD),
        resources=unit.encrypt(resources, Kind.EWORD),
        is_alive=unit.encrypt(True, Kind.EBOOL),
        has_voted=unit.encrypt(False, Kind.EBOOL),
        join_time=0.0,
    )


@pytest.mark.parametrize(
    "role, resources, expected",
    [
        (Role.GUARDIAN, 100, 100),
        (Role.INFILTRATOR, 100, 100),
        (Role.DETECTIVE, 100, 150),
        (Role.HACKER, 100, 125),
        (Role.GUARDIAN, 101, 110),
        (Role.GUARDIAN, 250, 120),
        (Role.DETECTIVE, 600, 190),
    ],
)
def test_total_weight(role, resources, expected):
    unit = PlainCipherUnit()
    calc = WeightCalculator(unit, WEIGHT_TABLES[1])
    weight = calc.compute_weight(None, _participant(unit, role, resources))
    assert unit.decrypt(weight.total_weight, reason="test") == expected
    assert unit.decrypt(weight.base_weight, reason="test") == 100
    assert weight.version == 1


def test_bonus_parts():
    unit = PlainCipherUnit()
    calc = WeightCalculator(unit, WEIGHT_TABLES[1])
    weight = calc.compute_weight(None, _participant(unit, Role.HACKER, 300))
    assert unit.decrypt(weight.role_bonus, reason="test") == 25
    assert unit.decrypt(weight.resource_bonus, reason="test") == 20


def test_resource_bonus_is_monotonic():
    unit = PlainCipherUnit()
    calc = WeightCalculator(unit, WEIGHT_TABLES[1])
    bonuses = [
        unit.decrypt(calc.compute_weight(None, _participant(unit, Role.GUARDIAN, r)).resource_bonus, reason="test")
        for r in (0, 100, 101, 200, 201, 500, 501, 10_000)
    ]
    assert bonuses == sorted(bonuses)


def test_compute_never_decrypts():
    unit = PlainCipherUnit()
    calc = WeightCalculator(unit, WEIGHT_TABLES[1])
    participant = _participant(unit, Role.DETECTIVE, 400)
    unit.reset_counts()
    calc.compute_weight(None, participant)
    assert unit.op_counts["decrypt"] == 0
    assert unit.audit_log == []


def test_op_shape_independent_of_role():
    """Role and resources only change operands, never the operations run."""
    unit = PlainCipherUnit()
    calc = WeightCalculator(unit, WEIGHT_TABLES[1])
    shapes = []
    for role, resources in [(Role.GUARDIAN, 100), (Role.HACKER, 900)]:
        participant = _participant(unit, role, resources)
        unit.reset_counts()
        calc.compute_weight(None, participant)
        shapes.append(dict(unit.op_counts))
    assert shapes[0] == shapes[1]
