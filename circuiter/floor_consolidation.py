"""
Floor Consolidation

Lightly loaded floors each cost a full IDNAC. Before allocation, adjacent
underutilized floors of the same category are combined so they can share
circuits. Combined floors always need isolators.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import List, Dict, Tuple

from .specs import CapacityPolicy, BalancingOptions, LevelData, within
from .levels import level_sort_key

logger = logging.getLogger(__name__)


@dataclass
class ConsolidationSummary:
    """Before/after floor counts"""
    original_floors: int = 0
    optimized_floors: int = 0
    reduction: int = 0
    reduction_percent: float = 0.0
    combined_levels: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "original_floors": self.original_floors,
            "optimized_floors": self.optimized_floors,
            "reduction": self.reduction,
            "reduction_percent": round(self.reduction_percent, 1),
            "combined_levels": list(self.combined_levels),
        }


def combined_level_name(floors: List[str]) -> str:
    """"A + B", "A + B + C + D", or "A to F (6 floors)"."""
    if not floors:
        return "Combined Level"
    ordered = sorted(floors, key=lambda name: (level_sort_key(name).ordinal, name))
    if len(ordered) == 1:
        return ordered[0]
    if len(ordered) <= 4:
        return " + ".join(ordered)
    return f"{ordered[0]} to {ordered[-1]} ({len(ordered)} floors)"


class FloorConsolidator:
    """
    Greedy consolidation of underutilized floors.

    Floors are visited in building order. Each unprocessed candidate absorbs
    the nearest same-category candidates while the union stays inside the
    hard limits and below the target utilization.
    """

    def __init__(self, policy: CapacityPolicy, options: BalancingOptions = None):
        self.policy = policy
        self.options = options or BalancingOptions()

    def is_candidate(self, level: LevelData) -> bool:
        if level.device_count == 0 or level.repeater_island:
            return False
        utilization = self.policy.utilization(level.current, level.unit_loads)
        return utilization < self.options.underutilized_threshold

    def consolidate(self, levels: Dict[str, LevelData]) -> Tuple[Dict[str, LevelData], ConsolidationSummary]:
        """Return the replacement level map and a summary."""
        populated = [level for level in levels.values() if level.device_count > 0]
        original_count = len(populated)

        if original_count == 0:
            return dict(levels), ConsolidationSummary()

        ordered = sorted(populated, key=lambda level: (level.sort_key, level.name))
        candidates = {level.name for level in ordered if self.is_candidate(level)}
        processed = set()
        optimized = {}

        for level in ordered:
            if level.name in processed:
                continue

            if level.name not in candidates:
                optimized[level.name] = level
                processed.add(level.name)
                continue

            group = self._absorb_neighbours(level, ordered, candidates, processed)
            processed.update(member.name for member in group)

            if len(group) > 1:
                merged = self._merge(group)
                optimized[merged.name] = merged
                logger.info("Combined floors %s (%.2fA, %d UL)",
                            merged.name, merged.current, merged.unit_loads)
            else:
                optimized[level.name] = level

        optimized_count = len(optimized)
        reduction = original_count - optimized_count
        summary = ConsolidationSummary(
            original_floors=original_count,
            optimized_floors=optimized_count,
            reduction=reduction,
            reduction_percent=reduction / original_count * 100,
            combined_levels=[name for name, level in optimized.items() if level.combined],
        )
        return optimized, summary

    def _absorb_neighbours(self, primary: LevelData, ordered: List[LevelData],
                           candidates: set, processed: set) -> List[LevelData]:
        """Primary plus every neighbour accepted under the limits"""
        neighbours = []
        for other in ordered:
            if other.name == primary.name or other.name in processed:
                continue
            if other.name not in candidates or other.category != primary.category:
                continue
            distance = abs(other.sort_key - primary.sort_key)
            if distance <= self.options.consolidation_distance:
                neighbours.append((distance, other.sort_key, other.name, other))

        neighbours.sort(key=lambda item: item[:3])

        group = [primary]
        current = primary.current
        unit_loads = primary.unit_loads

        for _, _, _, other in neighbours:
            union_current = current + other.current
            union_ul = unit_loads + other.unit_loads

            if not (within(union_current, self.policy.current_limit_a)
                    and within(union_ul, self.policy.ul_limit)):
                continue

            if self.policy.utilization(union_current, union_ul) > self.options.consolidation_target:
                continue

            group.append(other)
            current = union_current
            unit_loads = union_ul

        return group

    def _merge(self, group: List[LevelData]) -> LevelData:
        members = sorted(group, key=lambda level: (level.sort_key, level.name))
        floors = []
        devices = []
        families = defaultdict(int)
        for member in members:
            floors.extend(member.original_floors or (member.name,))
            devices.extend(member.devices)
            for family, count in member.families.items():
                families[family] += count

        current = sum(m.current for m in members)
        unit_loads = sum(m.unit_loads for m in members)

        return LevelData(
            name=combined_level_name(floors),
            category=members[0].category,
            sort_key=members[0].sort_key,
            devices=tuple(devices),
            device_count=sum(m.device_count for m in members),
            current=current,
            standby_current=sum(m.standby_current for m in members),
            unit_loads=unit_loads,
            wattage=sum(m.wattage for m in members),
            families=dict(families),
            combined=True,
            requires_isolators=True,
            original_floors=tuple(floors),
            utilization_percent=self.policy.utilization(current, unit_loads) * 100,
            has_repeater=any(m.has_repeater for m in members),
        )
