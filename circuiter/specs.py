"""
Dataclasses for the Notification Network Sizing Engine

Devices, capacity policy and balancing options are immutable snapshots.
Branches and power supplies live in plain lists (arenas) and refer to each
other through integer handles.
"""

import math
from dataclasses import dataclass, field
from typing import List, Dict, Tuple, Optional, FrozenSet

# Absolute tolerance for every "total <= limit" test
CAPACITY_TOLERANCE = 1e-9

UNKNOWN_LEVEL = "Unknown"


def within(total: float, limit: float) -> bool:
    """True when total does not exceed limit (float accumulation tolerant)."""
    return total <= limit + CAPACITY_TOLERANCE


@dataclass(frozen=True)
class DeviceLoad:
    """Normalized notification device"""
    device_id: str
    level: str
    zone: str = ""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    current: float = 0.0           # A, alarm
    standby_current: float = 0.0   # A
    unit_loads: int = 1
    wattage: float = 0.0           # W
    family: str = "Unknown"
    has_strobe: bool = False
    has_speaker: bool = False
    is_isolator: bool = False
    is_repeater: bool = False

    @property
    def load_score(self) -> float:
        """Combined sort key; never used for acceptance."""
        return self.current * 100 + self.unit_loads


@dataclass(frozen=True)
class CapacityPolicy:
    """Capacity limits for one run"""
    current_limit_a: float = 3.0        # A per IDNAC
    ul_limit: int = 139                 # UL per IDNAC
    spare_fraction: float = 0.20
    enforce_on_current: bool = True
    enforce_on_ul: bool = True
    enforce_on_devices: bool = True
    max_branches_per_supply: int = 3    # IDNAC circuits per ES-PS
    max_devices_per_circuit: int = 127
    supply_capacity_a: float = 9.7      # A, ES-PS with fan and IDNAC modules
    repeater_fresh_budget: bool = True
    repeater_unit_load: int = 4
    isolator_unit_load: int = 4
    max_voltage_drop_percent: float = 10.0

    def __post_init__(self):
        if not 0.0 <= self.spare_fraction < 1.0:
            raise ValueError(f"spare_fraction must be in [0, 1), got {self.spare_fraction}")

    @property
    def usable_current(self) -> float:
        if self.enforce_on_current:
            return self.current_limit_a * (1 - self.spare_fraction)
        return self.current_limit_a

    @property
    def usable_unit_loads(self) -> int:
        if self.enforce_on_ul:
            return int(math.floor(self.ul_limit * (1 - self.spare_fraction) + CAPACITY_TOLERANCE))
        return self.ul_limit

    @property
    def usable_devices(self) -> int:
        if self.enforce_on_devices:
            return int(math.floor(self.max_devices_per_circuit * (1 - self.spare_fraction) + CAPACITY_TOLERANCE))
        return self.max_devices_per_circuit

    @property
    def usable_supply_capacity(self) -> float:
        return self.supply_capacity_a * (1 - self.spare_fraction)

    def utilization(self, current: float, unit_loads: float) -> float:
        """Limiting-factor utilization against usable limits (0.0 for zero limits)."""
        current_util = current / self.usable_current if self.usable_current > 0 else 0.0
        ul_util = unit_loads / self.usable_unit_loads if self.usable_unit_loads > 0 else 0.0
        return max(current_util, ul_util)

    def exceeds_hard(self, current: float, unit_loads: float) -> bool:
        return not (within(current, self.current_limit_a) and within(unit_loads, self.ul_limit))


@dataclass(frozen=True)
class BalancingOptions:
    """Switches and thresholds for the balancing pipeline"""
    enable_floor_consolidation: bool = True
    enable_intra_level_balancing: bool = True
    enable_cross_level_optimization: bool = True
    max_level_merge_distance: int = 1
    excluded_levels: FrozenSet[str] = frozenset()
    exclude_villa_levels: bool = True
    exclude_garage_levels: bool = True
    exclude_mechanical_levels: bool = False
    cross_level_skip_categories: FrozenSet[str] = frozenset()
    max_balancing_passes: int = 100
    underutilized_threshold: float = 0.60
    consolidation_target: float = 0.80
    consolidation_distance: float = 100.0
    sequential_fill_threshold: int = 50
    max_circuits_per_level: int = 50


@dataclass(frozen=True)
class AuxiliaryLoad:
    """Amplifier or detection-network load reserved on power supplies"""
    current_a: float
    blocks_required: int = 0
    serving_levels: Tuple[str, ...] = ()
    kind: str = "amplifier"        # "amplifier" or "detection"
    device_count: int = 0


@dataclass(frozen=True)
class CapacityBudget:
    """Usable capacity a level allocates against"""
    current: float
    unit_loads: int
    devices: int
    fresh: bool = False


@dataclass(frozen=True)
class LevelKey:
    """Ordinal position of a level and the rule that produced it"""
    ordinal: float
    rule: str


@dataclass(frozen=True)
class LevelData:
    """Aggregated view of one (possibly combined) level"""
    name: str
    category: str
    sort_key: float
    devices: Tuple[DeviceLoad, ...] = ()
    device_count: int = 0
    current: float = 0.0
    standby_current: float = 0.0
    unit_loads: int = 0
    wattage: float = 0.0
    families: Dict[str, int] = field(default_factory=dict)
    combined: bool = False
    requires_isolators: bool = False
    original_floors: Tuple[str, ...] = ()
    utilization_percent: float = 0.0
    has_repeater: bool = False
    repeater_island: bool = False


class CircuitBranch:
    """
    One IDNAC branch. Totals are derived from the device list on every read.

    `index` is the branch handle in the current arena, `supply_index` the
    handle of the owning power supply once packed.
    """

    def __init__(self, index: int, name: str, level: str,
                 source_levels: Tuple[str, ...] = (), category: str = "main"):
        self.index = index
        self.name = name
        self.level = level
        self.category = category
        self.source_levels = tuple(source_levels) or (level,)
        self.devices: List[DeviceLoad] = []
        self.supply_index: Optional[int] = None
        self.branch_number = 0
        self.combined = len(self.source_levels) > 1
        self.requires_isolators = self.combined
        self.repeater_island = False
        self.oversized = False
        self.frozen = False

    @property
    def current(self) -> float:
        return sum(d.current for d in self.devices)

    @property
    def standby_current(self) -> float:
        return sum(d.standby_current for d in self.devices)

    @property
    def unit_loads(self) -> int:
        return sum(d.unit_loads for d in self.devices)

    @property
    def wattage(self) -> float:
        return sum(d.wattage for d in self.devices)

    @property
    def device_count(self) -> int:
        return len(self.devices)

    @property
    def has_isolator(self) -> bool:
        return any(d.is_isolator for d in self.devices)

    @property
    def has_repeater(self) -> bool:
        return any(d.is_repeater for d in self.devices)

    def _check_mutable(self):
        if self.frozen:
            raise RuntimeError(f"Branch {self.name} is assigned to a power supply and cannot change")

    def add_device(self, device: DeviceLoad):
        self._check_mutable()
        self.devices.append(device)

    def remove_device(self, device: DeviceLoad):
        self._check_mutable()
        self.devices.remove(device)

    def can_accept(self, device: DeviceLoad, budget: CapacityBudget) -> bool:
        """Both usable constraints and the device cap, tested independently."""
        return (within(self.current + device.current, budget.current)
                and within(self.unit_loads + device.unit_loads, budget.unit_loads)
                and self.device_count + 1 <= budget.devices)

    def utilization(self, budget: CapacityBudget) -> float:
        """Max of current, unit-load and device-count utilization."""
        ratios = [
            self.current / budget.current if budget.current > 0 else 0.0,
            self.unit_loads / budget.unit_loads if budget.unit_loads > 0 else 0.0,
            self.device_count / budget.devices if budget.devices > 0 else 0.0,
        ]
        return max(ratios)

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "level": self.level,
            "source_levels": list(self.source_levels),
            "branch_number": self.branch_number,
            "power_supply": self.supply_index,
            "device_ids": [d.device_id for d in self.devices],
            "device_count": self.device_count,
            "current_a": round(self.current, 4),
            "standby_current_a": round(self.standby_current, 4),
            "unit_loads": self.unit_loads,
            "wattage_w": round(self.wattage, 2),
            "combined": self.combined,
            "requires_isolators": self.requires_isolators,
            "repeater_island": self.repeater_island,
            "oversized": self.oversized,
        }

    def __repr__(self):
        return (f"CircuitBranch({self.name!r}, devices={self.device_count}, "
                f"current={self.current:.2f}A, ul={self.unit_loads})")


class PowerSupply:
    """ES-PS module filled by the organizer; branches are referenced by handle"""

    def __init__(self, index: int, name: str, max_branches: int,
                 capacity: float, spare_fraction: float):
        self.index = index
        self.name = name
        self.max_branches = max_branches
        self.capacity = capacity            # A, hard
        self.spare_fraction = spare_fraction
        self.branch_indices: List[int] = []
        self.alarm_load = 0.0
        self.standby_load = 0.0
        self.reserved_current = 0.0
        self.served_levels: List[str] = []

    @property
    def usable_capacity(self) -> float:
        return self.capacity * (1 - self.spare_fraction)

    @property
    def total_alarm_load(self) -> float:
        return self.alarm_load + self.reserved_current

    @property
    def total_standby_load(self) -> float:
        return self.standby_load + self.reserved_current

    @property
    def utilization(self) -> float:
        return self.total_alarm_load / self.capacity if self.capacity > 0 else 0.0

    def to_dict(self, branches: List[CircuitBranch]) -> Dict:
        return {
            "name": self.name,
            "branches": [branches[i].name for i in self.branch_indices],
            "branch_count": len(self.branch_indices),
            "max_branches": self.max_branches,
            "capacity_a": self.capacity,
            "usable_capacity_a": round(self.usable_capacity, 4),
            "alarm_load_a": round(self.total_alarm_load, 4),
            "standby_load_a": round(self.total_standby_load, 4),
            "reserved_current_a": round(self.reserved_current, 4),
            "served_levels": list(self.served_levels),
            "utilization_percent": round(self.utilization * 100, 1),
        }

    def __repr__(self):
        return f"PowerSupply({self.name!r}, branches={len(self.branch_indices)}, load={self.total_alarm_load:.2f}A)"


@dataclass(frozen=True)
class CabinetConfiguration:
    """Cabinet tier selection, computed once"""
    cabinet_type: str
    available_blocks: int
    blocks_required: int
    amplifier_blocks: int
    idnac_blocks: int
    reserved_blocks: int
    remaining_blocks: int
    power_supplies: int
    total_idnacs: int
    total_capacity_a: float
    total_draw_a: float
    power_margin_a: float
    battery_charger_available: bool
    fits: bool
    cabinets_required: int = 1
    model_config: Tuple[str, ...] = ()

    def to_dict(self) -> Dict:
        return {
            "cabinet_type": self.cabinet_type,
            "available_blocks": self.available_blocks,
            "blocks_required": self.blocks_required,
            "amplifier_blocks": self.amplifier_blocks,
            "idnac_blocks": self.idnac_blocks,
            "reserved_blocks": self.reserved_blocks,
            "remaining_blocks": self.remaining_blocks,
            "power_supplies": self.power_supplies,
            "total_idnacs": self.total_idnacs,
            "total_capacity_a": round(self.total_capacity_a, 3),
            "total_draw_a": round(self.total_draw_a, 3),
            "power_margin_a": round(self.power_margin_a, 3),
            "battery_charger_available": self.battery_charger_available,
            "fits": self.fits,
            "cabinets_required": self.cabinets_required,
            "model_config": list(self.model_config),
        }


class OptimizationCancelled(Exception):
    """Raised inside the core when a run is cancelled"""
    pass


class CancellationToken:
    """Cooperative cancellation flag shared between caller and pipeline"""

    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self):
        if self._cancelled:
            raise OptimizationCancelled("Optimization was cancelled")


def check_cancelled(token: Optional[CancellationToken]):
    if token is not None:
        token.raise_if_cancelled()


def budget_from_policy(policy: CapacityPolicy, fresh: bool = False) -> CapacityBudget:
    return CapacityBudget(
        current=policy.usable_current,
        unit_loads=policy.usable_unit_loads,
        devices=policy.usable_devices,
        fresh=fresh,
    )
