"""
Data Parsers for the Notification Network Sizing Engine

This module turns device schedules (JSON request bodies, JSON files or CSV
exports from the CAD model) into DeviceLoad records, and configuration
sections into CapacityPolicy / BalancingOptions snapshots.

Both camelCase keys (as exported by the CAD add-in) and snake_case keys are
accepted.
"""

import json
import csv
from typing import List, Dict, Tuple, Any, Optional

from circuiter.specs import (DeviceLoad, CapacityPolicy, BalancingOptions,
                             AuxiliaryLoad, UNKNOWN_LEVEL)


def _pick(record: Dict[str, Any], *keys, default=None):
    """First present key wins"""
    for key in keys:
        if key in record and record[key] is not None and record[key] != "":
            return record[key]
    return default


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y")
    return bool(value)


def _as_float(value, field_name: str, device_id: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Device {device_id}: '{field_name}' must be a number, got {value!r}")


def default_unit_loads(family: str, is_isolator: bool, is_repeater: bool,
                       policy: CapacityPolicy) -> int:
    """Most devices 1 UL, isolators and repeaters per policy"""
    name = (family or "").lower()
    if is_isolator or "isolator" in name:
        return policy.isolator_unit_load
    if is_repeater or "repeater" in name:
        return policy.repeater_unit_load
    return 1


def create_device_load(record: Dict[str, Any], index: int, policy: CapacityPolicy) -> DeviceLoad:
    """
    Build one DeviceLoad from a device record

    Args:
        record: Device dictionary (level, zone, x, y, z, currentA, ...)
        index: Position in the input, used when the record has no id
        policy: Policy supplying unit-load defaults

    Returns:
        DeviceLoad
    """
    device_id = str(_pick(record, 'id', 'deviceId', 'device_id', 'elementId', default=f"device-{index + 1}"))
    family = str(_pick(record, 'family', 'familyName', 'family_name', default="Unknown"))

    position = record.get('position') or {}
    if isinstance(position, (list, tuple)):
        position = dict(zip(('x', 'y', 'z'), position))

    is_isolator = _as_bool(_pick(record, 'isIsolator', 'is_isolator', default=False))
    is_repeater = _as_bool(_pick(record, 'isRepeater', 'is_repeater', default=False))

    unit_loads = _pick(record, 'unitLoads', 'unit_loads', 'UL')
    if unit_loads is None:
        unit_loads = default_unit_loads(family, is_isolator, is_repeater, policy)

    current = _as_float(_pick(record, 'currentA', 'current', 'alarmCurrent', 'amps', default=0.0),
                        'currentA', device_id)
    if current < 0:
        raise ValueError(f"Device {device_id}: current cannot be negative ({current})")

    return DeviceLoad(
        device_id=device_id,
        level=str(_pick(record, 'level', 'levelName', 'level_name', default=UNKNOWN_LEVEL)),
        zone=str(_pick(record, 'zone', default="")),
        x=_as_float(_pick(record, 'x', default=position.get('x', 0.0)), 'x', device_id),
        y=_as_float(_pick(record, 'y', default=position.get('y', 0.0)), 'y', device_id),
        z=_as_float(_pick(record, 'z', default=position.get('z', 0.0)), 'z', device_id),
        current=current,
        standby_current=_as_float(_pick(record, 'standbyA', 'standbyCurrent', 'standby_current', default=0.0),
                                  'standbyA', device_id),
        unit_loads=int(_as_float(unit_loads, 'unitLoads', device_id)),
        wattage=_as_float(_pick(record, 'wattage', 'watts', default=0.0), 'wattage', device_id),
        family=family,
        has_strobe=_as_bool(_pick(record, 'hasStrobe', 'has_strobe', default=False)),
        has_speaker=_as_bool(_pick(record, 'hasSpeaker', 'has_speaker', default=False)),
        is_isolator=is_isolator,
        is_repeater=is_repeater,
    )


def create_device_loads(records: List[Dict[str, Any]], policy: CapacityPolicy) -> List[DeviceLoad]:
    if not isinstance(records, list):
        raise ValueError("'devices' must be a list of device records")
    return [create_device_load(record, i, policy) for i, record in enumerate(records)]


def create_capacity_policy(data: Optional[Dict[str, Any]], base: CapacityPolicy = None) -> CapacityPolicy:
    """
    Build a CapacityPolicy from a configuration section

    Missing keys keep the values of `base` (or the defaults). A spare
    percentage (0-100) is accepted in place of the fraction.
    """
    base = base or CapacityPolicy()
    data = data or {}

    spare = _pick(data, 'spareFraction', 'spare_fraction')
    if spare is None and _pick(data, 'sparePercent', 'spare_percent') is not None:
        spare = float(_pick(data, 'sparePercent', 'spare_percent')) / 100.0

    return CapacityPolicy(
        current_limit_a=float(_pick(data, 'currentLimitA', 'current_limit_a', default=base.current_limit_a)),
        ul_limit=int(_pick(data, 'ulLimit', 'ul_limit', default=base.ul_limit)),
        spare_fraction=float(spare if spare is not None else base.spare_fraction),
        enforce_on_current=_as_bool(_pick(data, 'enforceOnCurrent', 'enforce_on_current',
                                          default=base.enforce_on_current)),
        enforce_on_ul=_as_bool(_pick(data, 'enforceOnUL', 'enforce_on_ul', default=base.enforce_on_ul)),
        enforce_on_devices=_as_bool(_pick(data, 'enforceOnDevices', 'enforce_on_devices',
                                          default=base.enforce_on_devices)),
        max_branches_per_supply=int(_pick(data, 'maxBranchesPerSupply', 'max_branches_per_supply',
                                          default=base.max_branches_per_supply)),
        max_devices_per_circuit=int(_pick(data, 'maxDevicesPerCircuit', 'max_devices_per_circuit',
                                          default=base.max_devices_per_circuit)),
        supply_capacity_a=float(_pick(data, 'supplyCapacityA', 'supply_capacity_a',
                                      default=base.supply_capacity_a)),
        repeater_fresh_budget=_as_bool(_pick(data, 'repeaterFreshBudget', 'repeater_fresh_budget',
                                             default=base.repeater_fresh_budget)),
        repeater_unit_load=int(_pick(data, 'repeaterUnitLoad', 'repeater_unit_load',
                                     default=base.repeater_unit_load)),
        isolator_unit_load=int(_pick(data, 'isolatorUnitLoad', 'isolator_unit_load',
                                     default=base.isolator_unit_load)),
        max_voltage_drop_percent=float(_pick(data, 'maxVoltageDropPercent', 'max_voltage_drop_percent',
                                             default=base.max_voltage_drop_percent)),
    )


def create_balancing_options(data: Optional[Dict[str, Any]]) -> BalancingOptions:
    """Build BalancingOptions; underutilizedPercent and consolidationTargetPercent are accepted as 0-100"""
    base = BalancingOptions()
    data = data or {}

    underutilized = _pick(data, 'underutilizedThreshold', 'underutilized_threshold')
    if underutilized is None and _pick(data, 'underutilizedPercent') is not None:
        underutilized = float(data['underutilizedPercent']) / 100.0

    consolidation_target = _pick(data, 'consolidationTarget', 'consolidation_target')
    if consolidation_target is None and _pick(data, 'consolidationTargetPercent') is not None:
        consolidation_target = float(data['consolidationTargetPercent']) / 100.0

    return BalancingOptions(
        enable_floor_consolidation=_as_bool(_pick(data, 'enableFloorConsolidation', 'enable_floor_consolidation',
                                                  default=base.enable_floor_consolidation)),
        enable_intra_level_balancing=_as_bool(_pick(data, 'enableIntraLevelBalancing',
                                                    'enable_intra_level_balancing',
                                                    default=base.enable_intra_level_balancing)),
        enable_cross_level_optimization=_as_bool(_pick(data, 'enableCrossLevelOptimization',
                                                       'enable_cross_level_optimization',
                                                       default=base.enable_cross_level_optimization)),
        max_level_merge_distance=int(_pick(data, 'maxLevelMergeDistance', 'max_level_merge_distance',
                                           default=base.max_level_merge_distance)),
        excluded_levels=frozenset(_pick(data, 'excludedLevels', 'excluded_levels', default=[])),
        exclude_villa_levels=_as_bool(_pick(data, 'excludeVillaLevels', 'exclude_villa_levels',
                                            default=base.exclude_villa_levels)),
        exclude_garage_levels=_as_bool(_pick(data, 'excludeGarageLevels', 'exclude_garage_levels',
                                             default=base.exclude_garage_levels)),
        exclude_mechanical_levels=_as_bool(_pick(data, 'excludeMechanicalLevels', 'exclude_mechanical_levels',
                                                 default=base.exclude_mechanical_levels)),
        cross_level_skip_categories=frozenset(_pick(data, 'crossLevelSkipCategories',
                                                    'cross_level_skip_categories', default=[])),
        max_balancing_passes=int(_pick(data, 'maxBalancingPasses', 'max_balancing_passes',
                                       default=base.max_balancing_passes)),
        underutilized_threshold=float(underutilized if underutilized is not None
                                      else base.underutilized_threshold),
        consolidation_target=float(consolidation_target if consolidation_target is not None
                                   else base.consolidation_target),
        consolidation_distance=float(_pick(data, 'consolidationDistance', 'consolidation_distance',
                                           default=base.consolidation_distance)),
        sequential_fill_threshold=int(_pick(data, 'sequentialFillThreshold', 'sequential_fill_threshold',
                                            default=base.sequential_fill_threshold)),
        max_circuits_per_level=int(_pick(data, 'maxCircuitsPerLevel', 'max_circuits_per_level',
                                         default=base.max_circuits_per_level)),
    )


def create_auxiliary_loads(records: Optional[List[Dict[str, Any]]]) -> List[AuxiliaryLoad]:
    """Amplifier / detection-network requirements: {currentA, blocksRequired, servingLevels}"""
    loads = []
    for record in records or []:
        loads.append(AuxiliaryLoad(
            current_a=float(_pick(record, 'currentA', 'current_a', 'amplifierCurrent', default=0.0)),
            blocks_required=int(_pick(record, 'blocksRequired', 'blocks_required', default=0)),
            serving_levels=tuple(_pick(record, 'servingLevels', 'serving_levels', default=[])),
            kind=str(_pick(record, 'kind', 'type', default='amplifier')).lower(),
            device_count=int(_pick(record, 'deviceCount', 'device_count', default=0)),
        ))
    return loads


def parse_request(data: Dict[str, Any], base_policy: CapacityPolicy = None
                  ) -> Tuple[List[DeviceLoad], CapacityPolicy, BalancingOptions, List[AuxiliaryLoad], Dict[str, float]]:
    """
    Parse a full request body

    {
        "devices": [...],
        "policy": {...},             // optional CapacityPolicy overrides
        "balancing": {...},          // optional BalancingOptions
        "auxiliaryLoads": [...],     // optional amplifier/detection loads
        "voltageDrops": {...}        // optional branch name -> percent
    }
    """
    if 'devices' not in data:
        raise ValueError("Missing 'devices' field in request")

    policy = create_capacity_policy(data.get('policy') or data.get('capacityPolicy'), base_policy)
    devices = create_device_loads(data['devices'], policy)
    options = create_balancing_options(data.get('balancing') or data.get('balancingConfiguration'))
    aux_loads = create_auxiliary_loads(data.get('auxiliaryLoads') or data.get('amplifierRequirements'))
    voltage_drops = {str(k): float(v) for k, v in (data.get('voltageDrops') or {}).items()}

    return devices, policy, options, aux_loads, voltage_drops


def parse_devices_csv(file_path: str, policy: CapacityPolicy = None) -> List[DeviceLoad]:
    """
    Parse a device schedule exported as CSV

    Columns follow the JSON keys (id, level, zone, x, y, z, currentA,
    standbyA, unitLoads, wattage, family, hasStrobe, hasSpeaker,
    isIsolator, isRepeater).
    """
    policy = policy or CapacityPolicy()
    with open(file_path, 'r', newline='') as f:
        reader = csv.DictReader(f)
        records = [dict(row) for row in reader]
    return create_device_loads(records, policy)


def load_all_data(file_path: str):
    """
    Load a request from a JSON file (or a device schedule from a CSV file)

    Returns:
        Tuple of (devices, policy, options, auxiliary loads, voltage drops)
    """
    print(f"Loading device data from {file_path}...")

    if file_path.lower().endswith('.csv'):
        policy = CapacityPolicy()
        devices = parse_devices_csv(file_path, policy)
        result = (devices, policy, BalancingOptions(), [], {})
    else:
        with open(file_path, 'r') as f:
            data = json.load(f)
        result = parse_request(data)

    devices, policy = result[0], result[1]
    levels = {d.level for d in devices}
    print(f"  Loaded {len(devices)} devices on {len(levels)} levels")
    print(f"  Limits: {policy.current_limit_a}A / {policy.ul_limit} UL per IDNAC, "
          f"{policy.spare_fraction * 100:.0f}% spare")
    return result


def main():
    """Example usage of the data parsers"""
    import sys

    file_path = sys.argv[1] if len(sys.argv) > 1 else "example_input.json"
    try:
        devices, policy, options, aux_loads, voltage_drops = load_all_data(file_path)

        print(f"\nUsable per IDNAC: {policy.usable_current:.2f}A / {policy.usable_unit_loads} UL "
              f"/ {policy.usable_devices} devices")
        print(f"Auxiliary loads: {len(aux_loads)}")
        print(f"Voltage drop entries: {len(voltage_drops)}")

        print(f"\nFirst devices:")
        for device in devices[:5]:
            print(f"  {device.device_id}: {device.level} {device.current:.3f}A {device.unit_loads} UL ({device.family})")

    except FileNotFoundError as e:
        print(f"File not found: {e}")
    except ValueError as e:
        print(f"Invalid input: {e}")


if __name__ == "__main__":
    main()
