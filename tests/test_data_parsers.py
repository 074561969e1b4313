import json

import pytest

import data_parsers
from circuiter.specs import CapacityPolicy
from circuiter.network_optimizer import NotificationNetworkOptimizer


def test_camel_case_device_record(policy):
    record = {
        "id": "E-101", "level": "Level 2", "zone": "North", "x": 1.5, "y": 2.0, "z": 0.0,
        "currentA": 0.177, "standbyA": 0.002, "unitLoads": 2, "wattage": 15,
        "family": "Speaker Strobe", "hasStrobe": True, "hasSpeaker": True,
    }

    device = data_parsers.create_device_load(record, 0, policy)

    assert device.device_id == "E-101"
    assert device.zone == "North"
    assert device.current == pytest.approx(0.177)
    assert device.standby_current == pytest.approx(0.002)
    assert device.unit_loads == 2
    assert device.has_strobe and device.has_speaker
    assert not device.is_isolator


def test_unit_load_defaults(policy):
    isolator = data_parsers.create_device_load({"level": "Level 2", "isIsolator": True}, 0, policy)
    repeater = data_parsers.create_device_load({"level": "Level 2", "family": "Network Repeater"}, 1, policy)
    horn = data_parsers.create_device_load({"level": "Level 2", "currentA": 0.1}, 2, policy)

    assert isolator.unit_loads == 4
    assert repeater.unit_loads == policy.repeater_unit_load
    assert horn.unit_loads == 1
    assert horn.device_id == "device-3"


def test_snake_case_and_position_list(policy):
    device = data_parsers.create_device_load(
        {"device_id": "A", "level_name": "Level 9", "current": "0.25", "position": [3, 4, 5]}, 0, policy)

    assert device.level == "Level 9"
    assert (device.x, device.y, device.z) == (3.0, 4.0, 5.0)
    assert device.current == pytest.approx(0.25)


@pytest.mark.parametrize("record", [
    {"id": "bad", "currentA": "lots"},
    {"id": "neg", "currentA": -0.1},
])
def test_invalid_device_records(policy, record):
    with pytest.raises(ValueError):
        data_parsers.create_device_load(record, 0, policy)


def test_capacity_policy_overrides():
    policy = data_parsers.create_capacity_policy({"currentLimitA": 2.5, "sparePercent": 25, "ulLimit": 100})

    assert policy.current_limit_a == 2.5
    assert policy.spare_fraction == pytest.approx(0.25)
    assert policy.ul_limit == 100
    assert policy.max_branches_per_supply == 3

    base = CapacityPolicy(spare_fraction=0.1)
    assert data_parsers.create_capacity_policy(None, base).spare_fraction == 0.1

    with pytest.raises(ValueError):
        data_parsers.create_capacity_policy({"spareFraction": 1.5})


def test_balancing_options():
    options = data_parsers.create_balancing_options({
        "underutilizedPercent": 50,
        "consolidationTarget": 0.7,
        "consolidationDistance": 2,
        "sequentialFillThreshold": "20",
        "max_circuits_per_level": 12,
        "excludedLevels": ["Level 9"],
        "excludeGarageLevels": False,
        "enableCrossLevelOptimization": "false",
    })

    assert options.underutilized_threshold == pytest.approx(0.5)
    assert options.consolidation_target == pytest.approx(0.7)
    assert options.consolidation_distance == 2.0
    assert options.sequential_fill_threshold == 20
    assert options.max_circuits_per_level == 12
    assert options.excluded_levels == frozenset({"Level 9"})
    assert not options.exclude_garage_levels
    assert not options.enable_cross_level_optimization
    assert options.exclude_villa_levels


def test_auxiliary_loads():
    loads = data_parsers.create_auxiliary_loads([
        {"currentA": 1.2, "blocksRequired": 2, "servingLevels": ["Level 2", "Level 3"]},
        {"currentA": 0.4, "type": "Detection", "deviceCount": 180},
    ])

    assert loads[0].serving_levels == ("Level 2", "Level 3")
    assert loads[0].kind == "amplifier"
    assert loads[1].kind == "detection"
    assert loads[1].device_count == 180


def test_parse_request_requires_devices():
    with pytest.raises(ValueError):
        data_parsers.parse_request({"policy": {}})
    with pytest.raises(ValueError):
        data_parsers.parse_request({"devices": {"not": "a list"}})


def test_load_all_data_from_json(tmp_path):
    path = tmp_path / "request.json"
    path.write_text(json.dumps({
        "devices": [{"id": "A", "level": "Level 2", "currentA": 0.2},
                    {"id": "B", "level": "Level 3", "currentA": 0.3}],
        "policy": {"spareFraction": 0.1},
        "auxiliaryLoads": [{"currentA": 0.5}],
        "voltageDrops": {"Level 2 - Branch 1": 4.5},
    }))

    devices, policy, options, aux_loads, voltage_drops = data_parsers.load_all_data(str(path))

    assert [d.device_id for d in devices] == ["A", "B"]
    assert policy.spare_fraction == 0.1
    assert len(aux_loads) == 1
    assert voltage_drops == {"Level 2 - Branch 1": 4.5}


def test_load_all_data_from_csv(tmp_path):
    path = tmp_path / "devices.csv"
    path.write_text(
        "id,level,zone,x,y,currentA,unitLoads,family,isIsolator\n"
        "A,Level 2,N,0,0,0.2,,Horn,false\n"
        "B,Level 2,N,1,0,0.0,,Isolator Module,true\n"
    )

    devices, policy, options, aux_loads, voltage_drops = data_parsers.load_all_data(str(path))

    assert [d.unit_loads for d in devices] == [1, 4]
    assert devices[1].is_isolator
    assert aux_loads == []
    assert voltage_drops == {}


def test_balancing_option_defaults():
    options = data_parsers.create_balancing_options(None)

    assert options.underutilized_threshold == 0.60
    assert options.consolidation_target == 0.80
    assert options.consolidation_distance == 100.0
    assert options.sequential_fill_threshold == 50
    assert options.max_circuits_per_level == 50
    assert data_parsers.create_balancing_options({"consolidationTargetPercent": 90}).consolidation_target \
        == pytest.approx(0.9)


def test_parsed_fill_threshold_switches_allocation_strategy():
    records = [{"id": f"L2-{i}", "level": "Level 2", "currentA": 0.1, "x": i} for i in range(30)]
    devices, policy, options, aux, drops = data_parsers.parse_request(
        {"devices": records, "balancing": {"sequentialFillThreshold": 20}})

    assert options.sequential_fill_threshold == 20
    result = NotificationNetworkOptimizer(devices, policy, options, aux, drops).optimize()
    assert result.allocation_strategies == {"Level 2": "multi_strategy"}
