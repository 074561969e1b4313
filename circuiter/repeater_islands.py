"""
Repeater islands

A repeater regenerates the notification network, so the devices behind it
form an independent power domain. With the fresh-budget policy enabled, a
level holding a repeater is sized against the full usable IDNAC budget,
ignoring what the rest of the building already uses, and never shares
capacity with other levels.
"""

import logging
from dataclasses import replace
from typing import Dict, Set

from .specs import CapacityPolicy, CapacityBudget, LevelData, budget_from_policy

logger = logging.getLogger(__name__)


class RepeaterIslandHandler:
    """Marks repeater-bearing levels and hands out their capacity budgets"""

    def __init__(self, policy: CapacityPolicy):
        self.policy = policy

    def is_island(self, level: LevelData) -> bool:
        return self.policy.repeater_fresh_budget and level.has_repeater

    def apply(self, levels: Dict[str, LevelData]) -> Dict[str, LevelData]:
        """Return levels with islands flagged; non-island levels pass through."""
        result = {}
        for name, level in levels.items():
            if self.is_island(level):
                result[name] = replace(level, repeater_island=True, requires_isolators=True)
                logger.info("Level %s holds a repeater: fresh %.2fA / %d UL budget",
                            name, self.policy.usable_current, self.policy.usable_unit_loads)
            else:
                result[name] = level
        return result

    def island_names(self, levels: Dict[str, LevelData]) -> Set[str]:
        return {name for name, level in levels.items() if level.repeater_island}

    def budget_for(self, level: LevelData) -> CapacityBudget:
        """
        Every level allocates against the full usable budget. An island's
        budget is flagged fresh; the allocator marks the branches it opens
        from a fresh budget as island branches, which cross-level merging
        leaves alone. Floor consolidation skips islands through the level's
        own repeater_island flag.
        """
        return budget_from_policy(self.policy, fresh=level.repeater_island)
