"""
Cabinet Sizing

Maps the block demand of amplifiers, IDNAC modules and network hardware to
the smallest cabinet tier that holds it. When even the largest tier is too
small the largest tier is returned with fits=False so the validator can
report it.
"""

import math
import logging
from typing import List, Tuple, Optional

from .specs import CapacityPolicy, CabinetConfiguration, PowerSupply, AuxiliaryLoad

logger = logging.getLogger(__name__)

# (tier name, available blocks after the audio controller)
CABINET_TIERS: Tuple[Tuple[str, int], ...] = (
    ("Single Bay", 4),
    ("Two Bay", 14),
    ("Three Bay", 22),
)

IDNAC_CIRCUITS_PER_MODULE = 3
"""IDNAC circuits served by one block-sized module"""

DETECTION_RESERVE_THRESHOLD = 100
"""Detection devices above which one block is kept for network hardware"""

BATTERY_CHARGER_MAX_UTILIZATION = 0.80


class CabinetSizer:
    """Chooses a cabinet tier and computes its power margin"""

    def __init__(self, policy: CapacityPolicy, tiers: Tuple[Tuple[str, int], ...] = CABINET_TIERS):
        self.policy = policy
        self.tiers = tiers

    def block_demand(self, circuit_count: int, amplifier_blocks: int,
                     detection_devices: int) -> Tuple[int, int, int]:
        """(idnac blocks, amplifier blocks, reserved blocks)"""
        idnac_blocks = math.ceil(circuit_count / IDNAC_CIRCUITS_PER_MODULE) if circuit_count > 0 else 0
        reserved = 1 if detection_devices > DETECTION_RESERVE_THRESHOLD else 0
        return idnac_blocks, amplifier_blocks, reserved

    def select_tier(self, demand: int) -> Tuple[str, int, bool]:
        for name, blocks in self.tiers:
            if demand <= blocks:
                return name, blocks, True
        name, blocks = self.tiers[-1]
        return name, blocks, False

    def size(self, supplies: List[PowerSupply], circuit_count: int,
             aux_loads: Optional[List[AuxiliaryLoad]] = None) -> CabinetConfiguration:
        aux_loads = aux_loads or []
        amplifier_blocks = sum(load.blocks_required for load in aux_loads if load.kind == "amplifier")
        detection_devices = sum(load.device_count for load in aux_loads if load.kind == "detection")

        idnac_blocks, amplifier_blocks, reserved = self.block_demand(
            circuit_count, amplifier_blocks, detection_devices)
        demand = idnac_blocks + amplifier_blocks + reserved

        cabinet_type, available, fits = self.select_tier(demand)
        largest = self.tiers[-1][1]
        cabinets_required = max(1, math.ceil(demand / largest)) if largest > 0 else 1

        supply_count = len(supplies)
        total_capacity = self.policy.supply_capacity_a * supply_count
        # Branch alarm current plus each auxiliary load exactly once
        total_draw = sum(s.alarm_load for s in supplies) + sum(load.current_a for load in aux_loads)

        battery_charger = total_capacity > 0 and total_draw < total_capacity * BATTERY_CHARGER_MAX_UTILIZATION

        model_config = [f"Cabinet: {cabinet_type}",
                        f"Power Supplies: {supply_count}x ES-PS"]
        if amplifier_blocks > 0:
            model_config.append(f"Amplifier Blocks: {amplifier_blocks}")
        if idnac_blocks > 0:
            model_config.append(f"IDNAC Modules: {idnac_blocks} ({circuit_count} circuits)")
        if reserved:
            model_config.append(f"Network Infrastructure: {reserved} reserved block")
        if not fits:
            model_config.append(f"Estimated Cabinets Needed: {cabinets_required}")

        if not fits:
            logger.warning("Block demand %d exceeds the %s capacity of %d blocks",
                           demand, cabinet_type, available)

        return CabinetConfiguration(
            cabinet_type=cabinet_type,
            available_blocks=available,
            blocks_required=demand,
            amplifier_blocks=amplifier_blocks,
            idnac_blocks=idnac_blocks,
            reserved_blocks=reserved,
            remaining_blocks=available - demand,
            power_supplies=supply_count,
            total_idnacs=circuit_count,
            total_capacity_a=total_capacity,
            total_draw_a=total_draw,
            power_margin_a=total_capacity - total_draw,
            battery_charger_available=battery_charger,
            fits=fits,
            cabinets_required=cabinets_required,
            model_config=tuple(model_config),
        )
