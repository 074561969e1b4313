"""
Circuit Allocation

Dual-constraint bin-packing of a level's devices into IDNAC branches.

Algorithm:
1. Isolate devices that alone exceed a hard limit (one branch each, flagged)
2. Order the rest by zone, then x, then y so neighbours share a branch
3. Small levels: sequential fill against the usable limits
4. Large levels: best-fit for the heaviest quarter, first-fit-decreasing
   for the rest, then a load-balancing pass for anything left over

Current and unit loads are always tested separately. The combined load
score only orders devices.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .specs import (DeviceLoad, CapacityPolicy, BalancingOptions, CapacityBudget,
                    LevelData, CircuitBranch, budget_from_policy)

logger = logging.getLogger(__name__)

STRATEGY_EMPTY = "empty"
STRATEGY_SEQUENTIAL = "sequential"
STRATEGY_MULTI = "multi_strategy"


@dataclass
class AllocationResult:
    """Branches for one level and how they were produced"""
    success: bool
    strategy: str
    branches: List[CircuitBranch] = field(default_factory=list)
    oversized_device_ids: List[str] = field(default_factory=list)
    overflow_count: int = 0


def spatial_order(devices: List[DeviceLoad]) -> List[DeviceLoad]:
    """Zone, then x, then y; stable for identical positions."""
    return sorted(devices, key=lambda d: (d.zone or "", d.x, d.y))


class CircuitAllocator:
    """Packs one level's devices into branches"""

    def __init__(self, policy: CapacityPolicy, options: BalancingOptions = None):
        self.policy = policy
        self.options = options or BalancingOptions()

    def is_oversized(self, device: DeviceLoad) -> bool:
        return self.policy.exceeds_hard(device.current, device.unit_loads)

    def allocate(self, level: LevelData, budget: Optional[CapacityBudget] = None,
                 start_index: int = 0) -> AllocationResult:
        """
        Allocate every device of `level` into new branches.

        Args:
            level: Level (or combined level) to allocate
            budget: Usable capacity per branch; defaults to the policy budget
            start_index: First branch handle to hand out

        Returns:
            AllocationResult; success is False only for a level without devices
        """
        if not level.devices:
            return AllocationResult(success=False, strategy=STRATEGY_EMPTY)

        budget = budget or budget_from_policy(self.policy)
        self._level = level
        self._fresh = budget.fresh
        self._next_index = start_index
        branches: List[CircuitBranch] = []

        ordered = spatial_order(list(level.devices))
        regular = []
        oversized_ids = []

        for device in ordered:
            if self.is_oversized(device):
                branch = self._new_branch(branches)
                branch.add_device(device)
                branch.oversized = True
                oversized_ids.append(device.device_id)
                logger.warning("Device %s on %s exceeds a hard IDNAC limit (%.2fA, %d UL); isolated",
                               device.device_id, level.name, device.current, device.unit_loads)
            else:
                regular.append(device)

        overflow = 0
        if len(regular) <= self.options.sequential_fill_threshold:
            strategy = STRATEGY_SEQUENTIAL
            self._sequential_fill(regular, branches, budget)
        else:
            strategy = STRATEGY_MULTI
            overflow = self._multi_strategy(regular, branches, budget)

        logger.debug("Level %s: %d devices into %d branches (%s)",
                     level.name, len(ordered), len(branches), strategy)

        return AllocationResult(
            success=True,
            strategy=strategy,
            branches=branches,
            oversized_device_ids=oversized_ids,
            overflow_count=overflow,
        )

    def _new_branch(self, branches: List[CircuitBranch]) -> CircuitBranch:
        level = self._level
        name = f"{level.name} - Branch {len(branches) + 1}"
        branch = CircuitBranch(self._next_index, name, level.name,
                               source_levels=level.original_floors or (level.name,),
                               category=level.category)
        branch.combined = level.combined
        branch.requires_isolators = level.requires_isolators or level.combined
        # A fresh budget is a separate power domain
        branch.repeater_island = level.repeater_island or self._fresh
        self._next_index += 1
        branches.append(branch)
        return branch

    def _sequential_fill(self, devices: List[DeviceLoad], branches: List[CircuitBranch],
                         budget: CapacityBudget):
        """Append until either usable limit would be crossed, then open a new branch."""
        current_branch = None
        for device in devices:
            if current_branch is None:
                current_branch = self._new_branch(branches)
            elif not current_branch.can_accept(device, budget) and current_branch.devices:
                current_branch = self._new_branch(branches)
            current_branch.add_device(device)

    def _multi_strategy(self, devices: List[DeviceLoad], branches: List[CircuitBranch],
                        budget: CapacityBudget) -> int:
        """Best-fit, first-fit-decreasing, then load balancing. Returns overflow count."""
        by_score = sorted(devices, key=lambda d: d.load_score, reverse=True)
        working = [b for b in branches if not b.oversized]

        # Strategy 1: best-fit for the heaviest quarter
        quarter = len(by_score) // 4
        threshold = by_score[quarter - 1].load_score if quarter > 0 else float("inf")
        heavy = [d for d in by_score if d.load_score >= threshold]
        rest = [d for d in by_score if d.load_score < threshold]

        for device in heavy:
            fitting = [b for b in working if b.can_accept(device, budget)]
            if fitting:
                target = max(fitting, key=lambda b: (b.utilization(budget), -b.index))
            else:
                target = self._new_branch(branches)
                working.append(target)
            target.add_device(device)

        # Strategy 2: first-fit-decreasing, bounded circuit count
        leftovers = []
        for device in rest:
            target = next((b for b in working if b.can_accept(device, budget)), None)
            if target is None:
                if len(working) < self.options.max_circuits_per_level:
                    target = self._new_branch(branches)
                    working.append(target)
                else:
                    leftovers.append(device)
                    continue
            target.add_device(device)

        # Strategy 3: least-utilized branch for the smallest leftovers first
        unplaced = []
        for device in sorted(leftovers, key=lambda d: d.load_score):
            fitting = [b for b in working if b.can_accept(device, budget)]
            if fitting:
                target = min(fitting, key=lambda b: (b.utilization(budget), b.index))
                target.add_device(device)
            else:
                unplaced.append(device)

        if unplaced:
            logger.warning("Level %s: %d devices exceed the %d-circuit cap; opening extra branches",
                           self._level.name, len(unplaced), self.options.max_circuits_per_level)
            self._sequential_fill(unplaced, branches, budget)

        return len(unplaced)
