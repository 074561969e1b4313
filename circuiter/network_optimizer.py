"""
Notification Network Optimizer

One forward pass over the building:
1. Group devices by level and drop excluded categories
2. Flag repeater islands, combine underutilized floors
3. Allocate each level into branches and balance them
4. Merge underutilized branches across adjacent levels
5. Pack branches into power supplies, size the cabinet
6. Analyze levels, collect statistics and validate

Cancellation is checked before each level, each balancing pass and each
supply assignment. A cancelled run returns a result with status
"cancelled" and no layout.
"""

import time
import logging
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Callable

from .specs import (DeviceLoad, CapacityPolicy, BalancingOptions, AuxiliaryLoad,
                    CircuitBranch, PowerSupply, CabinetConfiguration, LevelData,
                    CancellationToken, OptimizationCancelled, check_cancelled)
from .levels import group_devices_by_level, build_levels
from .repeater_islands import RepeaterIslandHandler
from .floor_consolidation import FloorConsolidator, ConsolidationSummary
from .circuit_allocation import CircuitAllocator
from .branch_balancing import BranchBalancer, BalanceOutcome
from .cross_level import CrossLevelOptimizer
from .power_supplies import PowerSupplyOrganizer
from .cabinet_sizing import CabinetSizer
from .level_analysis import analyze_levels, LevelAnalysis
from .balancing_stats import calculate_statistics, generate_recommendations, BalancingStatistics
from .validation import ValidationReporter, ValidationSummary, Diagnostic, ERROR

logger = logging.getLogger(__name__)

STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

ProgressCallback = Callable[[str, int, str], None]


@dataclass
class OptimizationResult:
    """Everything one run produced"""
    status: str
    branches: List[CircuitBranch] = field(default_factory=list)
    supplies: List[PowerSupply] = field(default_factory=list)
    cabinet: Optional[CabinetConfiguration] = None
    levels: Dict[str, LevelData] = field(default_factory=dict)
    level_analysis: Dict[str, LevelAnalysis] = field(default_factory=dict)
    consolidation: ConsolidationSummary = field(default_factory=ConsolidationSummary)
    balance_outcomes: Dict[str, BalanceOutcome] = field(default_factory=dict)
    allocation_strategies: Dict[str, str] = field(default_factory=dict)
    cross_level_merges: List[Dict] = field(default_factory=list)
    statistics: BalancingStatistics = field(default_factory=BalancingStatistics)
    validation: ValidationSummary = field(default_factory=ValidationSummary)
    excluded: Dict[str, int] = field(default_factory=dict)
    total_devices: int = 0
    elapsed_seconds: float = 0.0

    @property
    def cancelled(self) -> bool:
        return self.status == STATUS_CANCELLED

    @property
    def formatted_output(self) -> Dict[str, Any]:
        if self.cancelled:
            return {"status": self.status}

        return {
            "status": self.status,
            "summary": {
                "total_devices": self.total_devices,
                "devices_allocated": sum(b.device_count for b in self.branches),
                "devices_excluded": sum(self.excluded.values()),
                "total_branches": len(self.branches),
                "total_power_supplies": len(self.supplies),
                "total_current_a": round(sum(b.current for b in self.branches), 4),
                "total_unit_loads": sum(b.unit_loads for b in self.branches),
                "cabinet_type": self.cabinet.cabinet_type if self.cabinet else None,
                "is_valid": self.validation.is_valid,
                "elapsed_seconds": round(self.elapsed_seconds, 3),
            },
            "branches": [b.to_dict() for b in self.branches],
            "power_supplies": [s.to_dict(self.branches) for s in self.supplies],
            "cabinet": self.cabinet.to_dict() if self.cabinet else None,
            "levels": {name: a.to_dict() for name, a in self.level_analysis.items()},
            "consolidation": self.consolidation.to_dict(),
            "allocation_strategies": dict(self.allocation_strategies),
            "cross_level_merges": list(self.cross_level_merges),
            "statistics": self.statistics.to_dict(),
            "validation": self.validation.to_dict(),
            "recommendations": list(self.validation.recommendations),
        }


class NotificationNetworkOptimizer:
    """
    Sizes IDNAC branches, ES-PS power supplies and the cabinet for a device list.

    The policy and options are immutable snapshots held for the whole run.
    """

    def __init__(self, devices: List[DeviceLoad], policy: CapacityPolicy,
                 options: BalancingOptions = None, aux_loads: List[AuxiliaryLoad] = None,
                 voltage_drops: Dict[str, float] = None,
                 progress: Optional[ProgressCallback] = None,
                 cancel_token: Optional[CancellationToken] = None):
        if devices is None:
            raise ValueError("A device list is required")
        if policy is None:
            raise ValueError("A capacity policy is required")

        self.devices = list(devices)
        self.policy = policy
        self.options = options or BalancingOptions()
        self.aux_loads = list(aux_loads or [])
        self.voltage_drops = dict(voltage_drops or {})
        self.progress = progress
        self.cancel_token = cancel_token

        self.islands = RepeaterIslandHandler(policy)
        self.consolidator = FloorConsolidator(policy, self.options)
        self.allocator = CircuitAllocator(policy, self.options)
        self.balancer = BranchBalancer(policy, max_passes=self.options.max_balancing_passes)
        self.cross_level = CrossLevelOptimizer(policy, self.options)
        self.organizer = PowerSupplyOrganizer(policy)
        self.sizer = CabinetSizer(policy)
        self.reporter = ValidationReporter(policy)

    def _report(self, operation: str, percent: int, message: str):
        logger.debug("[%s] %d%% %s", operation, percent, message)
        if self.progress is not None:
            self.progress(operation, percent, message)

    def optimize(self) -> OptimizationResult:
        start = time.time()
        try:
            result = self._run()
        except OptimizationCancelled:
            logger.info("Optimization cancelled after %.2fs", time.time() - start)
            return OptimizationResult(status=STATUS_CANCELLED, elapsed_seconds=time.time() - start)

        result.elapsed_seconds = time.time() - start
        self._report("Complete", 100, f"{len(result.branches)} branches, {len(result.supplies)} supplies")
        return result

    def _run(self) -> OptimizationResult:
        result = OptimizationResult(status=STATUS_COMPLETED, total_devices=len(self.devices))

        self._report("Level grouping", 0, f"Grouping {len(self.devices)} devices")
        grouping = group_devices_by_level(self.devices, self.options)
        result.excluded = grouping.excluded

        levels = self.islands.apply(build_levels(grouping, self.policy))

        if self.options.enable_floor_consolidation:
            self._report("Floor consolidation", 10, "Combining underutilized floors")
            levels, result.consolidation = self.consolidator.consolidate(levels)
        else:
            populated = sum(1 for level in levels.values() if level.device_count)
            result.consolidation = ConsolidationSummary(original_floors=populated, optimized_floors=populated)
        result.levels = levels

        branches, overflow, level_failures = self._allocate_levels(levels, result)

        self._report("Cross-level optimization", 60, "Merging underutilized branches")
        cross = self.cross_level.optimize(branches)
        branches = cross.branches
        result.cross_level_merges = cross.merges

        self._report("Power supplies", 80, f"Packing {len(branches)} branches")
        supply_result = self.organizer.organize(branches, self.aux_loads, self.cancel_token)

        cabinet = self.sizer.size(supply_result.supplies, len(branches), self.aux_loads)

        result.branches = branches
        result.supplies = supply_result.supplies
        result.cabinet = cabinet
        result.level_analysis = analyze_levels(levels, self.policy)
        result.statistics = calculate_statistics(branches, supply_result.supplies, self.policy)

        self._report("Validation", 90, "Checking limits")
        result.validation = self.reporter.report(
            branches, supply_result.supplies, cabinet,
            excluded=grouping.excluded,
            overflow_count=overflow,
            voltage_drops=self.voltage_drops,
            recommendations=generate_recommendations(result.statistics),
            unmatched_reserves=supply_result.unmatched_reserves,
        )
        result.validation.diagnostics.extend(level_failures)
        return result

    def _allocate_levels(self, levels: Dict[str, LevelData], result: OptimizationResult):
        branches: List[CircuitBranch] = []
        overflow = 0
        failures: List[Diagnostic] = []
        total = max(len(levels), 1)

        for position, (name, level) in enumerate(levels.items(), start=1):
            check_cancelled(self.cancel_token)
            try:
                budget = self.islands.budget_for(level)
                allocation = self.allocator.allocate(level, budget, start_index=len(branches))
                if not allocation.success:
                    continue

                if self.options.enable_intra_level_balancing and len(allocation.branches) > 1:
                    result.balance_outcomes[name] = self.balancer.balance(
                        allocation.branches, budget, self.cancel_token)
            except OptimizationCancelled:
                raise
            except Exception as e:
                logger.exception("Allocation failed for level %s", name)
                failures.append(Diagnostic(
                    ERROR, "LEVEL_FAILED", f"Allocation failed for level {name}: {e}",
                    "Verify the device data on this level and re-run", name))
                continue

            result.allocation_strategies[name] = allocation.strategy
            overflow += allocation.overflow_count
            branches.extend(allocation.branches)
            self._report("Circuit allocation", 10 + position * 50 // total,
                         f"Allocated {name} ({len(allocation.branches)} branches)")

        return branches, overflow, failures
