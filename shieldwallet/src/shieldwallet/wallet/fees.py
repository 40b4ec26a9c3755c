"""
Conventional fee rule: a fixed fee per logical action.

A pool's logical actions are the larger of its spend and output counts;
transactions always pay for at least the grace number of actions.
"""

from __future__ import annotations

from collections.abc import Mapping

from shieldcore.models import ShieldedPool

MARGINAL_FEE = 5_000
GRACE_ACTIONS = 2


def logical_actions(
    spends: Mapping[ShieldedPool, int], outputs: Mapping[ShieldedPool, int]
) -> int:
    return sum(max(spends.get(pool, 0), outputs.get(pool, 0)) for pool in ShieldedPool)


def conventional_fee(
    spends: Mapping[ShieldedPool, int], outputs: Mapping[ShieldedPool, int]
) -> int:
    return MARGINAL_FEE * max(GRACE_ACTIONS, logical_actions(spends, outputs))
