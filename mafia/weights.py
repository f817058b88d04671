"""Vote weight calculation over encrypted role and resources."""

from cipher import CipherUnit, Kind
from mafia.rules import WeightTable
from mafia.state import Participant, VotingSession, VoteWeight


class WeightCalculator:
    """
    total = base + role bonus + resource bonus, combined homomorphically.

    Role bonus is a sum of `select(role == r, bonus_r, 0)` over every role in
    the table; resource bonus is a sum of `select(resources > t, step, 0)` over
    the tiers. Nothing is decrypted.
    """

    def __init__(self, unit: CipherUnit, table: WeightTable):
        self.unit = unit
        self.table = table

    def compute_weight(self, session: VotingSession, participant: Participant) -> VoteWeight:
        u = self.unit
        zero = u.encrypt(0, Kind.EWORD)

        base = u.encrypt(self.table.base_weight, Kind.EWORD)

        role_bonus = zero
        for role, bonus in sorted(self.table.role_bonus.items()):
            is_role = u.eq(participant.role, u.encrypt(role, Kind.EBYTE))
            role_bonus = u.add(role_bonus, u.select(is_role, u.encrypt(bonus, Kind.EWORD), zero))

        resource_bonus = zero
        for threshold, step in self.table.resource_tiers:
            above = u.gt(participant.resources, u.encrypt(threshold, Kind.EWORD))
            resource_bonus = u.add(resource_bonus, u.select(above, u.encrypt(step, Kind.EWORD), zero))

        total = u.add(u.add(base, role_bonus), resource_bonus)
        return VoteWeight(
            base_weight=base,
            role_bonus=role_bonus,
            resource_bonus=resource_bonus,
            total_weight=total,
            version=self.table.version,
        )
