"""Unit tests for the vote tally engine."""

import pytest

from cipher import DecryptPending, Kind, OracleCipherUnit, PlainCipherUnit
from mafia.clock import ManualClock
from mafia.config import GameConfig
from mafia.errors import (
    AlreadyFinalized,
    AlreadyVoted,
    GameNotStarted,
    InvalidChoice,
    InvalidOptions,
    NotAuthorized,
    NotInRoom,
    PhaseNotReady,
    PlayerDead,
    RoomInactive,
    SessionAlreadyActive,
    SessionNotActive,
    SessionStillOpen,
    VotingClosed,
)
from mafia.events import MemoryEventSink
from mafia.game import ConfidentialGame
from mafia.rules import Faction, Phase, VoteType
from mafia.state import Caller, EventKind, SessionStatus

ADMIN = Caller("admin", privileged=True)


def _make_game(unit=None, **config) -> tuple[ConfidentialGame, ManualClock, MemoryEventSink]:
    clock = ManualClock()
    sink = MemoryEventSink()
    game = ConfidentialGame(unit=unit or PlainCipherUnit(), clock=clock, sink=sink, config=GameConfig(**config))
    return game, clock, sink


def _started_room(game: ConfidentialGame, count: int = 4) -> tuple[int, list[str]]:
    names = [chr(ord("A") + i) for i in range(count)]
    room_id = game.create_room(Caller(names[0]))
    for name in names[1:]:
        game.join_room(room_id, Caller(name))
    game.start_game(room_id, Caller(names[0]))
    return room_id, names


def _vote(game: ConfidentialGame, session_id: int, voter: str, choice: int):
    return game.cast_vote(session_id, Caller(voter), game.encrypt_choice(choice))


def _counts(game: ConfidentialGame, session) -> list[int]:
    return [game.unit.decrypt(o.vote_count, reason="test") for o in session.options]


def _kill(game: ConfidentialGame, room_id: int, address: str) -> None:
    game.get_room(room_id).records[address].is_alive = game.unit.encrypt(False, Kind.EBOOL)


def test_end_to_end_elimination():
    """A is excluded; B, C, D all vote for A and the third vote finalizes."""
    game, _, sink = _make_game()
    room_id, _ = _started_room(game)
    _kill(game, room_id, "A")
    session = game.open_session(room_id, Caller("B"), VoteType.ELIMINATION, ["A", "B", "C", "D"])

    assert not _vote(game, session.id, "B", 0).finalized
    assert not _vote(game, session.id, "C", 0).finalized
    receipt = _vote(game, session.id, "D", 0)

    assert receipt.finalized
    assert session.status == SessionStatus.FINALIZED
    assert _counts(game, session) == [300, 0, 0, 0]
    assert game.reveal_winning_option(session.id, Caller("B")) == 0
    assert game.active_session(room_id) is None
    # Infiltrator gone: guardians win
    room = game.get_room(room_id)
    assert room.phase == Phase.ENDED
    assert game.reveal_winner(room_id, Caller("C")) == Faction.GUARDIANS
    assert len(sink.of_kind(EventKind.VOTE_CAST)) == 3
    assert len(sink.of_kind(EventKind.SESSION_FINALIZED)) == 1
    game.check_invariants()


def test_elimination_marks_winner_dead():
    game, _, _ = _make_game()
    room_id, _ = _started_room(game)
    session = game.open_session(room_id, Caller("A"), VoteType.ELIMINATION, ["B", "C"])
    for voter, choice in [("A", 0), ("B", 1), ("C", 0), ("D", 0)]:
        receipt = _vote(game, session.id, voter, choice)
    assert receipt.finalized
    room = game.get_room(room_id)
    u = game.unit
    assert u.decrypt(room.records["B"].is_alive, reason="test") is False
    assert u.decrypt(room.records["B"].health, reason="test") == 0
    assert u.decrypt(room.records["C"].is_alive, reason="test") is True
    assert room.phase == Phase.DAY
    assert len(room.decisions) == 1


def test_vote_content_never_decrypted():
    game, _, _ = _make_game()
    room_id, _ = _started_room(game)
    session = game.open_session(room_id, Caller("A"), VoteType.POLICY, ["x", "y", "z"])
    for voter in ["A", "B", "C", "D"]:
        _vote(game, session.id, voter, 2)
    reasons = {reason for reason, _ in game.unit.audit_log}
    assert reasons <= {"voter-alive", "voter-has-voted", "choice-in-range", "votes-complete"}


def test_oblivious_tally_shape():
    """Casting for option 0 or option 2 runs the same operations."""
    shapes = []
    logs = []
    for choice in (0, 2):
        game, _, _ = _make_game()
        room_id, _ = _started_room(game)
        session = game.open_session(room_id, Caller("A"), VoteType.POLICY, ["x", "y", "z"])
        choice_cipher = game.encrypt_choice(choice)
        game.unit.reset_counts()
        game.unit.audit_log.clear()
        game.cast_vote(session.id, Caller("B"), choice_cipher)
        shapes.append(dict(game.unit.op_counts))
        logs.append(list(game.unit.audit_log))
    assert shapes[0] == shapes[1]
    assert logs[0] == logs[1]
    # one select per option for the tally at least
    assert shapes[0]["select"] >= 3


def test_weight_conservation():
    game, _, _ = _make_game()
    room_id, _ = _started_room(game, 6)  # B is the detective
    session = game.open_session(room_id, Caller("A"), VoteType.POLICY, ["x", "y", "z"])
    ballots = [("A", 0), ("B", 1), ("C", 1), ("D", 2), ("E", 0)]
    for voter, choice in ballots:
        _vote(game, session.id, voter, choice)

    counts = _counts(game, session)
    weights = [game.unit.decrypt(session.weights[v].total_weight, reason="test") for v, _ in ballots]
    assert counts == [200, 250, 100]
    assert sum(counts) == sum(weights) == 550
    assert session.is_active


@pytest.mark.parametrize(
    "counts, expected",
    [
        ([10, 10, 5], 0),
        ([5, 10, 10], 1),
        ([1, 2, 3], 2),
        ([0, 0, 0], 0),
        ([3, 7, 7, 1], 1),
    ],
)
def test_tie_break_lowest_index(counts, expected):
    game, _, _ = _make_game()
    room_id, _ = _started_room(game)
    options = [f"o{i}" for i in range(len(counts))]
    session = game.open_session(room_id, Caller("A"), VoteType.POLICY, options)
    for option, count in zip(session.options, counts):
        option.vote_count = game.unit.encrypt(count, Kind.EWORD)
    game.finalize(session.id, ADMIN)
    assert game.reveal_winning_option(session.id, ADMIN) == expected


def test_open_session_validation():
    game, _, _ = _make_game()
    waiting = game.create_room(Caller("W"))
    with pytest.raises(GameNotStarted):
        game.open_session(waiting, Caller("W"), VoteType.POLICY, ["x", "y"])

    room_id, _ = _started_room(game)
    with pytest.raises(InvalidOptions):
        game.open_session(room_id, Caller("A"), VoteType.POLICY, ["only"])
    with pytest.raises(InvalidOptions):
        game.open_session(room_id, Caller("A"), VoteType.POLICY, [str(i) for i in range(11)])
    with pytest.raises(InvalidOptions):
        game.open_session(room_id, Caller("A"), VoteType.ELIMINATION, ["B", "Z"])
    with pytest.raises(InvalidOptions):
        game.open_session(room_id, Caller("A"), "coup", ["x", "y"])
    with pytest.raises(NotAuthorized):
        game.open_session(room_id, Caller("Z"), VoteType.POLICY, ["x", "y"])

    game.open_session(room_id, Caller("A"), VoteType.POLICY, ["x", "y"])
    with pytest.raises(SessionAlreadyActive):
        game.open_session(room_id, ADMIN, VoteType.POLICY, ["x", "y"])
    game.check_invariants()


def test_total_voters_counts_alive_only():
    game, _, _ = _make_game()
    room_id, _ = _started_room(game)
    _kill(game, room_id, "D")
    session = game.open_session(room_id, Caller("A"), VoteType.POLICY, ["x", "y"])
    assert game.unit.decrypt(session.total_voters, reason="test") == 3


def test_cast_vote_rejections():
    game, clock, _ = _make_game()
    room_id, _ = _started_room(game)
    session = game.open_session(room_id, Caller("A"), VoteType.POLICY, ["x", "y", "z", "w"])

    with pytest.raises(NotInRoom):
        _vote(game, session.id, "Z", 0)
    with pytest.raises(InvalidChoice):
        _vote(game, session.id, "A", 4)
    with pytest.raises(InvalidChoice):
        game.cast_vote(session.id, Caller("A"), game.unit.encrypt(True, Kind.EBOOL))

    _kill(game, room_id, "D")
    with pytest.raises(PlayerDead):
        _vote(game, session.id, "D", 0)

    _vote(game, session.id, "A", 1)
    with pytest.raises(AlreadyVoted):
        _vote(game, session.id, "A", 2)
    assert game.unit.decrypt(session.votes_received, reason="test") == 1
    assert _counts(game, session) == [0, 100, 0, 0]

    clock.advance(180)
    with pytest.raises(VotingClosed):
        _vote(game, session.id, "B", 0)
    assert game.unit.decrypt(session.votes_received, reason="test") == 1


def test_finalize_rules():
    game, clock, _ = _make_game()
    room_id, _ = _started_room(game)
    session = game.open_session(room_id, Caller("A"), VoteType.POLICY, ["x", "y"])
    _vote(game, session.id, "A", 1)

    with pytest.raises(SessionStillOpen):
        game.finalize(session.id, Caller("B"))
    with pytest.raises(NotAuthorized):
        game.finalize(session.id, Caller("Z"))
    with pytest.raises(SessionStillOpen):
        game.reveal_winning_option(session.id, Caller("A"))

    clock.advance(180)
    game.finalize(session.id, Caller("B"))
    assert game.reveal_winning_option(session.id, Caller("B")) == 1
    with pytest.raises(AlreadyFinalized):
        game.finalize(session.id, ADMIN)
    with pytest.raises(SessionNotActive):
        _vote(game, session.id, "C", 0)
    with pytest.raises(SessionNotActive):
        game.cancel(session.id, ADMIN, "too late")


def test_cancel_session():
    game, _, sink = _make_game()
    room_id, _ = _started_room(game)
    session = game.open_session(room_id, Caller("A"), VoteType.POLICY, ["x", "y"])
    _vote(game, session.id, "A", 0)

    with pytest.raises(NotAuthorized):
        game.cancel(session.id, Caller("Z"), "spam")
    game.cancel(session.id, Caller("B"), "wrong options")

    assert session.status == SessionStatus.CANCELLED
    assert session.winning_option is None
    assert session.cancel_reason == "wrong options"
    assert game.active_session(room_id) is None
    assert game.get_room(room_id).decisions == []
    assert sink.of_kind(EventKind.SESSION_CANCELLED)
    with pytest.raises(SessionNotActive):
        game.finalize(session.id, ADMIN)
    with pytest.raises(SessionNotActive):
        game.cancel(session.id, ADMIN, "again")
    with pytest.raises(SessionNotActive):
        game.reveal_winning_option(session.id, ADMIN)

    replacement = game.open_session(room_id, Caller("A"), VoteType.POLICY, ["x", "y", "z"])
    assert game.active_session(room_id) is replacement
    game.check_invariants()


def test_single_active_session_across_lifecycle():
    game, clock, _ = _make_game()
    room_a, _ = _started_room(game)
    room_b = game.create_room(Caller("P"))
    for name in ["Q", "R", "S"]:
        game.join_room(room_b, Caller(name))
    game.start_game(room_b, Caller("P"))

    s1 = game.open_session(room_a, Caller("A"), VoteType.POLICY, ["x", "y"])
    s2 = game.open_session(room_b, Caller("P"), VoteType.POLICY, ["x", "y"])
    game.check_invariants()
    for voter in ["A", "B", "C", "D"]:
        _vote(game, s1.id, voter, 0)
        game.check_invariants()
    assert not s1.is_active
    assert s2.is_active
    s3 = game.open_session(room_a, Caller("B"), VoteType.POLICY, ["x", "y"])
    game.cancel(s2.id, Caller("P"), "done")
    game.check_invariants()
    clock.advance(500)
    game.finalize(s3.id, Caller("C"))
    game.check_invariants()
    assert game.active_session(room_a) is None
    assert game.active_session(room_b) is None


def test_alliance_grants_resources_and_weight_is_frozen():
    game, _, _ = _make_game()
    room_id, _ = _started_room(game)
    alliance = game.open_session(room_id, Caller("A"), VoteType.ALLIANCE, ["B", "C"])
    for voter, choice in [("A", 1), ("B", 1), ("C", 0), ("D", 1)]:
        _vote(game, alliance.id, voter, choice)
    room = game.get_room(room_id)
    assert game.unit.decrypt(room.records["C"].resources, reason="test") == 150
    assert game.unit.decrypt(room.records["B"].resources, reason="test") == 100

    policy = game.open_session(room_id, Caller("A"), VoteType.POLICY, ["x", "y"])
    _vote(game, policy.id, "C", 0)
    frozen = policy.weights["C"].total_weight
    assert game.unit.decrypt(frozen, reason="test") == 110
    room.records["C"].resources = game.unit.encrypt(900, Kind.EWORD)
    assert policy.weights["C"].total_weight == frozen
    assert _counts(game, policy) == [110, 0]


@pytest.mark.parametrize("choice, ready", [(1, True), (0, False)])
def test_emergency_vote_controls_phase(choice, ready):
    game, _, _ = _make_game()
    room_id, _ = _started_room(game)
    session = game.open_session(room_id, Caller("A"), VoteType.EMERGENCY, ["continue", "end phase"])
    for voter in ["A", "B", "C", "D"]:
        _vote(game, session.id, voter, choice)
    assert session.is_finalized
    if ready:
        assert game.advance_phase(room_id, Caller("B")) == Phase.VOTING
    else:
        with pytest.raises(PhaseNotReady):
            game.advance_phase(room_id, Caller("B"))


def test_voting_after_game_end_rejected():
    game, _, _ = _make_game()
    room_id, _ = _started_room(game)
    game.emergency_stop(room_id, ADMIN)
    with pytest.raises(RoomInactive):
        game.open_session(room_id, ADMIN, VoteType.POLICY, ["x", "y"])


def test_pending_decrypt_during_validation_mutates_nothing():
    unit = OracleCipherUnit()
    game, _, _ = _make_game(unit=unit)
    room_id, _ = _started_room(game)
    session = game.open_session(room_id, Caller("A"), VoteType.POLICY, ["x", "y"])

    unit.go_offline()
    with pytest.raises(DecryptPending):
        _vote(game, session.id, "B", 1)
    assert unit.pending_requests

    unit.resolve_all()
    assert game.unit.decrypt(session.votes_received, reason="test") == 0
    assert session.choices == {}
    assert _counts(game, session) == [0, 0]
    assert not _vote(game, session.id, "B", 1).completion_pending


def test_pending_completion_check_keeps_vote():
    unit = OracleCipherUnit()
    game, _, _ = _make_game(unit=unit)
    room_id, _ = _started_room(game)
    session = game.open_session(room_id, Caller("A"), VoteType.POLICY, ["x", "y"])

    unit.hold("votes-complete")
    receipts = [_vote(game, session.id, v, 0) for v in ["A", "B", "C", "D"]]
    assert all(r.completion_pending and not r.finalized for r in receipts)
    assert session.is_active
    with pytest.raises(DecryptPending):
        game.finalize(session.id, Caller("A"))

    unit.resolve_all()
    game.finalize(session.id, Caller("A"))
    assert session.is_finalized
    assert _counts(game, session) == [400, 0]


def test_pending_victory_check_settles_later():
    unit = OracleCipherUnit()
    game, _, _ = _make_game(unit=unit)
    room_id, _ = _started_room(game)
    session = game.open_session(room_id, Caller("B"), VoteType.ELIMINATION, ["A", "B"])

    unit.hold("victory-check")
    for voter in ["A", "B", "C", "D"]:
        receipt = _vote(game, session.id, voter, 0)
    assert receipt.finalized
    assert session.outcome_pending
    assert game.get_room(room_id).phase == Phase.DAY
    assert game.settle(room_id, Caller("C")) == [session.id]

    unit.resolve_all()
    assert game.settle(room_id, Caller("C")) == []
    assert not session.outcome_pending
    assert game.get_room(room_id).phase == Phase.ENDED
    assert game.reveal_winner(room_id, Caller("C")) == Faction.GUARDIANS


@pytest.mark.parametrize("advances, ready", [(0, True), (2, False)])
def test_pending_emergency_outcome_only_applies_to_its_phase(advances, ready):
    unit = OracleCipherUnit()
    game, _, _ = _make_game(unit=unit)
    room_id, _ = _started_room(game)
    session = game.open_session(room_id, Caller("A"), VoteType.EMERGENCY, ["continue", "end phase"])

    unit.hold("emergency-outcome")
    for voter in ["A", "B", "C", "D"]:
        _vote(game, session.id, voter, 1)
    assert session.is_finalized
    assert session.outcome_pending

    for _ in range(advances):
        game.advance_phase(room_id, ADMIN)
    unit.resolve_all()
    assert game.settle(room_id, Caller("C")) == []
    assert not session.outcome_pending

    room = game.get_room(room_id)
    assert room.force_ready is ready
    if ready:
        assert game.advance_phase(room_id, Caller("B")) == Phase.VOTING
    else:
        assert room.phase == Phase.NIGHT
        with pytest.raises(PhaseNotReady):
            game.advance_phase(room_id, Caller("B"))


def test_timed_out_session_finalizes_without_decrypt():
    unit = OracleCipherUnit()
    game, clock, _ = _make_game(unit=unit)
    room_id, _ = _started_room(game)
    session = game.open_session(room_id, Caller("A"), VoteType.POLICY, ["x", "y"])
    _vote(game, session.id, "A", 1)

    clock.advance(1000)
    unit.go_offline()
    game.finalize(session.id, Caller("B"))

    assert session.is_finalized
    assert unit.pending_requests == []
    assert game.active_session(room_id) is None
