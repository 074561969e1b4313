import pytest

from circuiter.specs import CapacityPolicy, AuxiliaryLoad, CancellationToken, OptimizationCancelled
from circuiter.power_supplies import PowerSupplyOrganizer, apportion_auxiliary_loads


def _one_amp_branches(make_branch, count=10):
    return [make_branch(i, f"Level {i + 2}", [1.0]) for i in range(count)]


def test_usable_capacity_limits_branches_per_supply(make_branch):
    # 3.0A supply with 20% spare holds two 1.0A branches
    policy = CapacityPolicy(supply_capacity_a=3.0)
    branches = _one_amp_branches(make_branch)

    result = PowerSupplyOrganizer(policy).organize(branches)

    assert len(result.supplies) == 5
    assert [s.name for s in result.supplies] == ["ES-PS-1", "ES-PS-2", "ES-PS-3", "ES-PS-4", "ES-PS-5"]
    assert all(len(s.branch_indices) == 2 for s in result.supplies)
    assert all(s.total_alarm_load <= s.usable_capacity + 1e-9 for s in result.supplies)


def test_branch_cap_limits_branches_per_supply(policy, make_branch):
    branches = _one_amp_branches(make_branch)

    result = PowerSupplyOrganizer(policy).organize(branches)

    assert [len(s.branch_indices) for s in result.supplies] == [3, 3, 3, 1]


def test_every_branch_assigned_once_and_frozen(policy, make_branch):
    branches = [make_branch(i, "Level 2", [0.2 * (i + 1)]) for i in range(7)]

    result = PowerSupplyOrganizer(policy).organize(branches)

    assigned = sorted(i for s in result.supplies for i in s.branch_indices)
    assert assigned == list(range(7))
    for supply in result.supplies:
        for number, index in enumerate(supply.branch_indices, start=1):
            assert branches[index].supply_index == supply.index
            assert branches[index].branch_number == number
            assert branches[index].frozen
    # Heaviest branch first
    assert result.supplies[0].branch_indices[0] == 6

    with pytest.raises(RuntimeError):
        branches[0].add_device(branches[1].devices[0])


def test_apportion_auxiliary_loads():
    loads = [
        AuxiliaryLoad(current_a=3.0, serving_levels=("Level 2", "Level 3", "Level 4")),
        AuxiliaryLoad(current_a=1.0, serving_levels=("Level 2",)),
        AuxiliaryLoad(current_a=5.0),
    ]

    shares = apportion_auxiliary_loads(loads)

    assert shares == pytest.approx({"Level 2": 2.0, "Level 3": 1.0, "Level 4": 1.0})


def test_auxiliary_reserve_counts_against_capacity(policy, make_branch):
    branches = [make_branch(0, "Level 2", [2.0]), make_branch(1, "Level 3", [2.0]), make_branch(2, "Level 4", [2.0])]
    aux = [AuxiliaryLoad(current_a=2.0, serving_levels=("Level 2",))]

    result = PowerSupplyOrganizer(policy).organize(branches, aux)

    # 7.76A usable: Level 2 (2.0A + 2.0A reserve) and Level 3 fit, Level 4 does not
    first = result.supplies[0]
    assert first.reserved_current == pytest.approx(2.0)
    assert first.total_alarm_load == pytest.approx(6.0)
    assert len(first.branch_indices) == 2
    assert len(result.supplies) == 2
    assert result.level_reserves == {"Level 2": 2.0}


def test_unscoped_reserve_sits_on_first_supply(policy, make_branch):
    branches = _one_amp_branches(make_branch, count=4)
    aux = [AuxiliaryLoad(current_a=1.5)]

    result = PowerSupplyOrganizer(policy).organize(branches, aux)

    assert result.unscoped_reserve == pytest.approx(1.5)
    assert result.supplies[0].reserved_current == pytest.approx(1.5)
    assert all(s.reserved_current == 0 for s in result.supplies[1:])


def test_handle_mismatch_is_rejected(policy, make_branch):
    branches = [make_branch(0, "Level 2", [1.0]), make_branch(5, "Level 3", [1.0])]

    with pytest.raises(ValueError):
        PowerSupplyOrganizer(policy).organize(branches)


def test_cancellation(policy, make_branch):
    token = CancellationToken()
    token.cancel()

    with pytest.raises(OptimizationCancelled):
        PowerSupplyOrganizer(policy).organize(_one_amp_branches(make_branch), cancel_token=token)


def test_no_branches(policy):
    assert PowerSupplyOrganizer(policy).organize([]).supplies == []


def test_level_reserve_is_charged_on_first_supply_only(policy, make_branch):
    branches = [make_branch(i, "Level 2", [2.0]) for i in range(4)]
    aux = [AuxiliaryLoad(current_a=1.0, serving_levels=("Level 2",))]

    result = PowerSupplyOrganizer(policy).organize(branches, aux)

    assert [(s.name, len(s.branch_indices)) for s in result.supplies] == [("ES-PS-1", 3), ("ES-PS-2", 1)]
    assert [s.reserved_current for s in result.supplies] == pytest.approx([1.0, 0.0])
    assert result.supplies[1].served_levels == ["Level 2"]
    assert sum(s.reserved_current for s in result.supplies) == pytest.approx(1.0)


def test_reserve_for_level_without_branches_moves_to_first_supply(policy, make_branch):
    branches = [make_branch(0, "Level 2", [0.5])]
    aux = [AuxiliaryLoad(current_a=2.0, serving_levels=("P1",))]

    result = PowerSupplyOrganizer(policy).organize(branches, aux)

    assert result.unmatched_reserves == {"P1": 2.0}
    assert result.level_reserves == {}
    assert result.unscoped_reserve == pytest.approx(2.0)
    assert result.supplies[0].reserved_current == pytest.approx(2.0)
    assert result.supplies[0].total_alarm_load == pytest.approx(2.5)
