import pytest

from circuiter.specs import BalancingOptions
from circuiter.cross_level import CrossLevelOptimizer


def test_adjacent_light_branches_are_merged(policy, make_branch):
    branches = [make_branch(0, "Level 2", [0.25, 0.25]), make_branch(1, "Level 3", [0.25, 0.25])]

    result = CrossLevelOptimizer(policy).optimize(branches)

    assert len(result.branches) == 1
    merged = result.branches[0]
    assert merged.name == "Level 2 + Level 3"
    assert merged.index == 0
    assert merged.device_count == 4
    assert merged.current == pytest.approx(1.0)
    assert merged.source_levels == ("Level 2", "Level 3")
    assert merged.combined
    assert merged.requires_isolators
    assert result.merges == [{
        "name": "Level 2 + Level 3",
        "merged_from": ["Level 2 - Branch 1", "Level 3 - Branch 2"],
        "current_a": 1.0,
        "unit_loads": 4,
    }]


def test_union_may_exceed_usable_but_not_hard_limits(policy, make_branch):
    # 1.4A each is 58% usable; 2.8A together is still inside 3.0A
    branches = [make_branch(0, "Level 2", [0.7, 0.7]), make_branch(1, "Level 3", [0.7, 0.7])]
    assert len(CrossLevelOptimizer(policy).optimize(branches).branches) == 1

    # 1.4A + 1.7A would be 3.1A
    branches = [make_branch(0, "Level 2", [0.7, 0.7]), make_branch(1, "Level 3", [1.7])]
    options = BalancingOptions(underutilized_threshold=0.75)

    result = CrossLevelOptimizer(policy, options).optimize(branches)

    assert len(result.branches) == 2
    assert result.merges == []


def test_non_adjacent_levels_are_not_merged(policy, make_branch):
    branches = [
        make_branch(0, "Level 2", [0.5]),
        make_branch(1, "Level 3", [1.0, 1.0]),
        make_branch(2, "Level 5", [0.5]),
    ]

    result = CrossLevelOptimizer(policy).optimize(branches)

    assert [b.name for b in result.branches] == ["Level 2 - Branch 1", "Level 3 - Branch 2", "Level 5 - Branch 3"]
    assert result.merges == []


def test_no_cross_category_merge(policy, make_branch):
    branches = [
        make_branch(0, "Level 12", [0.2]),
        make_branch(1, "Roof", [0.2], category="mechanical"),
    ]

    result = CrossLevelOptimizer(policy).optimize(branches)

    assert len(result.branches) == 2


def test_islands_and_skipped_categories_stay_apart(policy, make_branch):
    branches = [make_branch(0, "Level 2", [0.2]), make_branch(1, "Level 3", [0.2])]
    branches[1].repeater_island = True
    assert len(CrossLevelOptimizer(policy).optimize(branches).branches) == 2

    branches = [make_branch(0, "Level 2", [0.2]), make_branch(1, "Level 3", [0.2])]
    options = BalancingOptions(cross_level_skip_categories=frozenset({"main"}))
    assert len(CrossLevelOptimizer(policy, options).optimize(branches).branches) == 2


def test_disabled_optimization_returns_input(policy, make_branch):
    branches = [make_branch(0, "Level 2", [0.2]), make_branch(1, "Level 3", [0.2])]
    options = BalancingOptions(enable_cross_level_optimization=False)

    result = CrossLevelOptimizer(policy, options).optimize(branches)

    assert result.skipped
    assert result.branches == branches


def test_handles_are_renumbered_after_merge(policy, make_branch):
    branches = [
        make_branch(0, "Level 2", [2.0]),
        make_branch(1, "Level 3", [0.2]),
        make_branch(2, "Level 4", [0.2]),
        make_branch(3, "Level 5", [2.0]),
    ]

    result = CrossLevelOptimizer(policy).optimize(branches)

    assert [b.index for b in result.branches] == [0, 1, 2]
    assert [b.name for b in result.branches] == ["Level 2 - Branch 1", "Level 3 + Level 4", "Level 5 - Branch 4"]
