"""
Per-level IDNAC requirements

For each (possibly combined) level: how many IDNACs the load needs under
both limits, which limit drives that number, and a short status label.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List

from .specs import CapacityPolicy, LevelData


@dataclass
class SpareCapacityInfo:
    spare_current: float = 0.0
    spare_unit_loads: int = 0
    current_utilization: float = 0.0     # percent of hard capacity
    unit_load_utilization: float = 0.0   # percent of hard capacity


@dataclass
class LevelAnalysis:
    level: str
    idnacs_required: int
    status: str
    limiting_factor: str
    current: float
    unit_loads: int
    devices: int
    wattage: float
    utilization_percent: float
    combined: bool = False
    requires_isolators: bool = False
    repeater_island: bool = False
    original_floors: List[str] = field(default_factory=list)
    spare: SpareCapacityInfo = field(default_factory=SpareCapacityInfo)

    def to_dict(self) -> Dict:
        return {
            "level": self.level,
            "idnacs_required": self.idnacs_required,
            "status": self.status,
            "limiting_factor": self.limiting_factor,
            "current_a": round(self.current, 3),
            "unit_loads": self.unit_loads,
            "devices": self.devices,
            "wattage_w": round(self.wattage, 2),
            "utilization_percent": round(self.utilization_percent, 1),
            "combined": self.combined,
            "requires_isolators": self.requires_isolators,
            "repeater_island": self.repeater_island,
            "original_floors": list(self.original_floors),
            "spare": {
                "spare_current_a": round(self.spare.spare_current, 3),
                "spare_unit_loads": self.spare.spare_unit_loads,
                "current_utilization_percent": round(self.spare.current_utilization, 1),
                "unit_load_utilization_percent": round(self.spare.unit_load_utilization, 1),
            },
        }


def idnacs_for(current: float, unit_loads: int, policy: CapacityPolicy):
    """(for current, for unit loads) against the usable limits"""
    for_current = math.ceil(current / policy.usable_current - 1e-9) if current > 0 and policy.usable_current > 0 else 0
    for_ul = math.ceil(unit_loads / policy.usable_unit_loads - 1e-9) if unit_loads > 0 and policy.usable_unit_loads > 0 else 0
    return for_current, for_ul


def status_label(idnacs: int, utilization: float, combined: bool) -> str:
    if idnacs == 0:
        return "No devices"
    percent = utilization * 100
    if idnacs > 1:
        return f"{idnacs} IDNACs [MULTIPLE] ({percent:.0f}% avg util)"
    if combined:
        return f"1 IDNAC [OPTIMIZED] ({percent:.0f}% utilized)"
    if percent <= 60:
        return f"1 IDNAC [UNDERUTILIZED] ({percent:.0f}% utilized)"
    if percent <= 80:
        return f"1 IDNAC [GOOD] ({percent:.0f}% utilized)"
    if percent <= 95:
        return f"1 IDNAC [EXCELLENT] ({percent:.0f}% utilized)"
    return f"1 IDNAC [NEAR LIMIT] ({percent:.0f}% utilized)"


def analyze_level(level: LevelData, policy: CapacityPolicy) -> LevelAnalysis:
    for_current, for_ul = idnacs_for(level.current, level.unit_loads, policy)
    required = max(for_current, for_ul)
    utilization = policy.utilization(level.current, level.unit_loads)
    # Average utilization across the IDNACs the level needs
    avg_utilization = utilization / required if required > 1 else utilization

    if for_current >= for_ul:
        limiting = f"Current ({level.current:.2f}A requires {for_current} IDNACs)"
    else:
        limiting = f"Unit Loads ({level.unit_loads} UL requires {for_ul} IDNACs)"

    if level.repeater_island:
        status = f"{required} IDNAC(s) [REPEATER ISLAND]"
        limiting = f"{limiting} - Fresh Budget"
    else:
        status = status_label(required, avg_utilization, level.combined)

    spare = SpareCapacityInfo()
    if required > 0:
        current_capacity = required * policy.current_limit_a
        ul_capacity = required * policy.ul_limit
        spare = SpareCapacityInfo(
            spare_current=max(0.0, current_capacity - level.current),
            spare_unit_loads=max(0, ul_capacity - level.unit_loads),
            current_utilization=level.current / current_capacity * 100 if current_capacity > 0 else 0.0,
            unit_load_utilization=level.unit_loads / ul_capacity * 100 if ul_capacity > 0 else 0.0,
        )

    return LevelAnalysis(
        level=level.name,
        idnacs_required=required,
        status=status,
        limiting_factor=limiting,
        current=level.current,
        unit_loads=level.unit_loads,
        devices=level.device_count,
        wattage=level.wattage,
        utilization_percent=utilization * 100,
        combined=level.combined,
        requires_isolators=level.requires_isolators,
        repeater_island=level.repeater_island,
        original_floors=list(level.original_floors),
        spare=spare,
    )


def analyze_levels(levels: Dict[str, LevelData], policy: CapacityPolicy) -> Dict[str, LevelAnalysis]:
    return {name: analyze_level(level, policy) for name, level in levels.items()}
