"""
Power Supply Organization

Packs branches into ES-PS power supplies, heaviest branch first. A supply
takes branches until it reaches its branch cap or its usable capacity,
after reserving the amplifier and detection-network current of the levels
it serves. Each level's reserve is charged once, on the first supply that
serves it. Branches are frozen once placed.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import List, Dict, Optional

from .specs import (CapacityPolicy, CircuitBranch, PowerSupply, AuxiliaryLoad,
                    CancellationToken, check_cancelled, within)
from .levels import level_sort_key

logger = logging.getLogger(__name__)


@dataclass
class SupplyResult:
    """Supply arena plus the reserve shares used to fill it"""
    supplies: List[PowerSupply] = field(default_factory=list)
    level_reserves: Dict[str, float] = field(default_factory=dict)
    unscoped_reserve: float = 0.0
    # Shares for levels that own no branch; carried on ES-PS-1
    unmatched_reserves: Dict[str, float] = field(default_factory=dict)


def apportion_auxiliary_loads(aux_loads: List[AuxiliaryLoad]) -> Dict[str, float]:
    """Split each auxiliary current evenly across the levels it serves."""
    shares = defaultdict(float)
    for load in aux_loads:
        levels = [name for name in load.serving_levels if name]
        if not levels:
            continue
        share = load.current_a / len(levels)
        for name in levels:
            shares[name] += share
    return dict(shares)


class PowerSupplyOrganizer:
    """Next-fit packing of branches into supplies"""

    def __init__(self, policy: CapacityPolicy):
        self.policy = policy

    def _new_supply(self, supplies: List[PowerSupply], unscoped: float) -> PowerSupply:
        index = len(supplies)
        supply = PowerSupply(
            index=index,
            name=f"ES-PS-{index + 1}",
            max_branches=self.policy.max_branches_per_supply,
            capacity=self.policy.supply_capacity_a,
            spare_fraction=self.policy.spare_fraction,
        )
        if index == 0:
            supply.reserved_current = unscoped
        supplies.append(supply)
        return supply

    def _uncharged_reserve(self, branch: CircuitBranch, reserves: Dict[str, float],
                           charged: Dict[str, int]) -> float:
        """Reserve of the branch's levels that no supply carries yet"""
        return sum(reserves.get(name, 0.0) for name in set(branch.source_levels) if name not in charged)

    def can_add(self, supply: PowerSupply, branch: CircuitBranch,
                reserves: Dict[str, float], charged: Optional[Dict[str, int]] = None) -> bool:
        if len(supply.branch_indices) >= supply.max_branches:
            return False

        reserve = self._uncharged_reserve(branch, reserves, charged or {})
        projected_alarm = supply.total_alarm_load + branch.current + reserve
        projected_standby = supply.total_standby_load + branch.standby_current + reserve

        return (within(projected_alarm, supply.usable_capacity)
                and within(projected_standby, supply.usable_capacity))

    def _add(self, supply: PowerSupply, branch: CircuitBranch,
             reserves: Dict[str, float], charged: Dict[str, int]):
        supply.branch_indices.append(branch.index)
        supply.alarm_load += branch.current
        supply.standby_load += branch.standby_current
        for name in branch.source_levels:
            if name not in supply.served_levels:
                supply.served_levels.append(name)
            if name not in charged:
                charged[name] = supply.index
                supply.reserved_current += reserves.get(name, 0.0)

        branch.supply_index = supply.index
        branch.branch_number = len(supply.branch_indices)
        branch.frozen = True

    def organize(self, branches: List[CircuitBranch], aux_loads: Optional[List[AuxiliaryLoad]] = None,
                 cancel_token: Optional[CancellationToken] = None) -> SupplyResult:
        """
        Assign every branch to a supply.

        Args:
            branches: Branch arena; branches[i].index must equal i
            aux_loads: Amplifier and detection-network loads to reserve
            cancel_token: Checked before each assignment

        Returns:
            SupplyResult with the supply arena
        """
        for position, branch in enumerate(branches):
            if branch.index != position:
                raise ValueError(f"Branch handle {branch.index} does not match arena position {position}")

        aux_loads = aux_loads or []
        shares = apportion_auxiliary_loads(aux_loads)
        served = {name for branch in branches for name in branch.source_levels}
        reserves = {name: share for name, share in shares.items() if name in served}
        unmatched = {name: share for name, share in shares.items() if name not in served}

        unscoped = sum(load.current_a for load in aux_loads
                       if not [name for name in load.serving_levels if name])
        unscoped += sum(unmatched.values())
        if unmatched:
            logger.warning("Auxiliary current for levels without branches moved to ES-PS-1: %s",
                           ", ".join(sorted(unmatched)))

        ordered = sorted(branches, key=lambda b: (-b.current, level_sort_key(b.level).ordinal, b.index))
        supplies: List[PowerSupply] = []
        charged: Dict[str, int] = {}
        open_supply = None

        for branch in ordered:
            check_cancelled(cancel_token)
            if open_supply is None or not self.can_add(open_supply, branch, reserves, charged):
                open_supply = self._new_supply(supplies, unscoped)
            self._add(open_supply, branch, reserves, charged)

        logger.info("Packed %d branches into %d power supplies", len(branches), len(supplies))
        return SupplyResult(supplies=supplies, level_reserves=reserves,
                            unscoped_reserve=unscoped, unmatched_reserves=unmatched)
