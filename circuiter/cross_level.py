"""
Cross-Level Optimization

After every level has its own branches, lightly loaded branches on adjacent
levels of the same category are merged so the building needs fewer IDNACs.
Merged branches span floors and therefore require isolators.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Dict

from .specs import CapacityPolicy, BalancingOptions, CircuitBranch, within
from .levels import building_order

logger = logging.getLogger(__name__)


@dataclass
class CrossLevelResult:
    """Branch arena after merging plus a record of each merge"""
    branches: List[CircuitBranch] = field(default_factory=list)
    merges: List[Dict] = field(default_factory=list)
    skipped: bool = False


class CrossLevelOptimizer:
    """Greedy union of underutilized branches on neighbouring levels"""

    def __init__(self, policy: CapacityPolicy, options: BalancingOptions = None):
        self.policy = policy
        self.options = options or BalancingOptions()

    def _eligible(self, branch: CircuitBranch) -> bool:
        if branch.repeater_island or branch.oversized or branch.frozen:
            return False
        return branch.category not in self.options.cross_level_skip_categories

    def _utilization(self, branch: CircuitBranch) -> float:
        return self.policy.utilization(branch.current, branch.unit_loads)

    def optimize(self, branches: List[CircuitBranch]) -> CrossLevelResult:
        if not self.options.enable_cross_level_optimization:
            return CrossLevelResult(branches=list(branches), skipped=True)

        ranks = {name: rank for rank, name in enumerate(building_order(b.level for b in branches))}

        candidates = sorted(
            (b for b in branches
             if self._eligible(b) and self._utilization(b) < self.options.underutilized_threshold),
            key=lambda b: (b.current, b.index),
        )
        absorbed = set()
        merges = []

        for primary in candidates:
            if id(primary) in absorbed:
                continue
            absorbed.add(id(primary))
            members = [primary]

            for other in candidates:
                if id(other) in absorbed:
                    continue
                if other.category != primary.category:
                    continue
                if abs(ranks[other.level] - ranks[primary.level]) > self.options.max_level_merge_distance:
                    continue
                if not self._fits_hard(members, other):
                    continue
                members.append(other)
                absorbed.add(id(other))

            if len(members) > 1:
                merges.append(self._merge(members, ranks))

        merged_away = {id(m) for merge in merges for m in merge["absorbed"]}
        result = []
        used_names = set()
        for branch in branches:
            if id(branch) in merged_away:
                continue
            base_name, suffix = branch.name, 2
            while branch.name in used_names:
                branch.name = f"{base_name} ({suffix})"
                suffix += 1
            used_names.add(branch.name)
            branch.index = len(result)
            result.append(branch)

        records = [{"name": merge["primary"].name,
                    "merged_from": merge["merged_from"],
                    "current_a": round(merge["primary"].current, 4),
                    "unit_loads": merge["primary"].unit_loads}
                   for merge in merges]

        if records:
            logger.info("Cross-level optimization merged %d branches into %d",
                        sum(len(r["merged_from"]) for r in records), len(records))
        return CrossLevelResult(branches=result, merges=records)

    def _fits_hard(self, members: List[CircuitBranch], other: CircuitBranch) -> bool:
        current = sum(m.current for m in members) + other.current
        unit_loads = sum(m.unit_loads for m in members) + other.unit_loads
        devices = sum(m.device_count for m in members) + other.device_count
        return (within(current, self.policy.current_limit_a)
                and within(unit_loads, self.policy.ul_limit)
                and devices <= self.policy.max_devices_per_circuit)

    def _merge(self, members: List[CircuitBranch], ranks: Dict[str, int]) -> Dict:
        primary = members[0]
        merged_from = [m.name for m in members]

        for other in members[1:]:
            for device in list(other.devices):
                primary.add_device(device)

        levels = sorted({m.level for m in members}, key=lambda name: ranks[name])
        source_levels = []
        for member in sorted(members, key=lambda m: ranks[m.level]):
            for name in member.source_levels:
                if name not in source_levels:
                    source_levels.append(name)

        if len(levels) > 1:
            primary.name = " + ".join(levels)
        primary.source_levels = tuple(source_levels)
        primary.combined = len(source_levels) > 1
        primary.requires_isolators = primary.requires_isolators or primary.combined

        return {"primary": primary, "absorbed": members[1:], "merged_from": merged_from}
