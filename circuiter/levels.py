"""
Level grouping for notification devices

Buckets devices by level name, applies level-category exclusions and
aggregates per-level loads. Also owns the building ordering of level names
(basements first, roof last) that floor consolidation and cross-level
merging rely on.
"""

import re
import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import List, Dict, Iterable

from .specs import (DeviceLoad, CapacityPolicy, BalancingOptions, LevelData,
                    LevelKey, UNKNOWN_LEVEL)

logger = logging.getLogger(__name__)

PARKING_NAME = re.compile(r"^P\s*\d+")
BASEMENT_NAME = re.compile(r"\bB\d+")


def level_category(level_name: str) -> str:
    """parking, villa, mechanical, main or unknown"""
    if not level_name:
        return "unknown"
    upper = level_name.upper().strip()
    if ("LEVEL P" in upper or "PARKING" in upper or "GARAGE" in upper
            or PARKING_NAME.match(upper)):
        return "parking"
    if "VILLA" in upper:
        return "villa"
    if "MECH" in upper or "ROOF" in upper:
        return "mechanical"
    return "main"


def level_sort_key(level_name: str) -> LevelKey:
    """
    Ordinal position of a level in the building.

    basement -1000-n, parking -500+n, ground 0, "Level n" 1000+n,
    other numbered 2000+n, villa 5000+n, mechanical 9000+n, unparsed 9999.
    """
    if not level_name:
        return LevelKey(9999, "unparsed")

    upper = level_name.upper().strip()

    if "BASEMENT" in upper or BASEMENT_NAME.search(upper):
        match = re.search(r"B\w*?\s*(\d+)", upper)
        if match:
            return LevelKey(-1000 - int(match.group(1)), "basement")
        return LevelKey(-1000, "basement")

    if level_category(level_name) == "parking":
        match = re.search(r"P\w*?\s*(\d+)\.?(\d*)", upper)
        if match:
            sub = float("0." + match.group(2)) if match.group(2) else 0.0
            return LevelKey(-500 + int(match.group(1)) + sub, "parking")
        match = re.search(r"(\d+)", upper)
        return LevelKey(-500 + (int(match.group(1)) if match else 0), "parking")

    if "GROUND" in upper or "LOBBY" in upper or upper == "LEVEL 1":
        return LevelKey(0, "ground")

    if "VILLA" in upper:
        match = re.search(r"(\d+)", upper)
        return LevelKey(5000 + (int(match.group(1)) if match else 0), "villa")

    if "MECH" in upper or "ROOF" in upper:
        match = re.search(r"(\d+)", upper)
        return LevelKey(9000 + (int(match.group(1)) if match else 0), "mechanical")

    match = re.search(r"LEVEL\s+(\d+)", upper)
    if match:
        return LevelKey(1000 + int(match.group(1)), "numbered_level")

    match = re.search(r"(\d+)", upper)
    if match:
        return LevelKey(2000 + int(match.group(1)), "numbered_other")

    return LevelKey(9999, "unparsed")


def building_order(level_names: Iterable[str]) -> List[str]:
    """Level names in ascending building order, name as tie-break."""
    return sorted(set(level_names), key=lambda name: (level_sort_key(name).ordinal, name))


def should_exclude_level(level_name: str, options: BalancingOptions) -> bool:
    if level_name in options.excluded_levels:
        return True
    category = level_category(level_name)
    if options.exclude_villa_levels and category == "villa":
        return True
    if options.exclude_garage_levels and category == "parking":
        return True
    if options.exclude_mechanical_levels and category == "mechanical":
        return True
    return False


@dataclass
class LevelGrouping:
    """Devices per level plus what the exclusion rules dropped"""
    groups: Dict[str, List[DeviceLoad]] = field(default_factory=dict)
    excluded: Dict[str, int] = field(default_factory=dict)

    @property
    def excluded_count(self) -> int:
        return sum(self.excluded.values())

    @property
    def device_count(self) -> int:
        return sum(len(devices) for devices in self.groups.values())


def group_devices_by_level(devices: List[DeviceLoad], options: BalancingOptions) -> LevelGrouping:
    """Bucket devices by level; missing level names go to "Unknown"."""
    groups = defaultdict(list)
    excluded = defaultdict(int)

    for device in devices:
        level = device.level or UNKNOWN_LEVEL
        if level != device.level:
            device = replace(device, level=level)

        if should_exclude_level(level, options):
            excluded[level] += 1
            continue

        groups[level].append(device)

    ordered = {name: groups[name] for name in building_order(groups.keys())}

    if excluded:
        logger.info("Excluded %d devices on %d levels: %s",
                    sum(excluded.values()), len(excluded), ", ".join(sorted(excluded)))

    return LevelGrouping(groups=ordered, excluded=dict(excluded))


def build_level_data(name: str, devices: List[DeviceLoad], policy: CapacityPolicy) -> LevelData:
    """Aggregate one level's devices"""
    families = defaultdict(int)
    for device in devices:
        families[device.family] += 1

    current = sum(d.current for d in devices)
    unit_loads = sum(d.unit_loads for d in devices)

    return LevelData(
        name=name,
        category=level_category(name) if name != UNKNOWN_LEVEL else "unknown",
        sort_key=level_sort_key(name).ordinal,
        devices=tuple(devices),
        device_count=len(devices),
        current=current,
        standby_current=sum(d.standby_current for d in devices),
        unit_loads=unit_loads,
        wattage=sum(d.wattage for d in devices),
        families=dict(families),
        original_floors=(name,),
        utilization_percent=policy.utilization(current, unit_loads) * 100,
        has_repeater=any(d.is_repeater for d in devices),
    )


def build_levels(grouping: LevelGrouping, policy: CapacityPolicy) -> Dict[str, LevelData]:
    return {name: build_level_data(name, devices, policy)
            for name, devices in grouping.groups.items()}
