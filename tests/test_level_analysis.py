from dataclasses import replace

import pytest

from circuiter.level_analysis import idnacs_for, analyze_level, status_label
from circuiter.balancing_stats import calculate_statistics, efficiency_rating, generate_recommendations


def test_idnacs_for(policy):
    assert idnacs_for(5.0, 10, policy) == (3, 1)
    assert idnacs_for(2.4, 111, policy) == (1, 1)
    assert idnacs_for(0.1, 300, policy) == (1, 3)
    assert idnacs_for(0.0, 0, policy) == (0, 0)


def test_status_labels():
    assert "UNDERUTILIZED" in status_label(1, 0.5, False)
    assert "GOOD" in status_label(1, 0.75, False)
    assert "EXCELLENT" in status_label(1, 0.9, False)
    assert "NEAR LIMIT" in status_label(1, 0.99, False)
    assert "OPTIMIZED" in status_label(1, 0.3, True)
    assert "MULTIPLE" in status_label(3, 0.7, False)
    assert status_label(0, 0.0, False) == "No devices"


def test_analyze_level(policy, make_level, make_device):
    level = make_level("Level 2", [make_device(current=0.3) for _ in range(10)])

    analysis = analyze_level(level, policy)

    assert analysis.idnacs_required == 2
    assert analysis.limiting_factor.startswith("Current")
    assert "MULTIPLE" in analysis.status
    assert analysis.spare.spare_current == pytest.approx(3.0)
    assert analysis.to_dict()["devices"] == 10


def test_repeater_island_status(policy, make_level, make_device):
    level = replace(make_level("Level 3", [make_device(level="Level 3", current=0.2, is_repeater=True)]),
                    repeater_island=True)

    analysis = analyze_level(level, policy)

    assert "REPEATER ISLAND" in analysis.status
    assert analysis.limiting_factor.endswith("Fresh Budget")


@pytest.mark.parametrize("utilization, rating", [
    (80, "EXCELLENT"), (70, "GOOD"), (88, "GOOD"), (40, "UNDERUTILIZED"), (97, "OVERLOADED"), (60, "ADEQUATE"),
])
def test_efficiency_rating(utilization, rating):
    assert efficiency_rating(utilization) == rating


def test_statistics_and_recommendations(policy, make_branch):
    branches = [make_branch(0, "Level 2", [2.3]), make_branch(1, "Level 3", [0.2])]

    stats = calculate_statistics(branches, [], policy)

    assert stats.total_branches == 2
    assert stats.total_alarm_current == pytest.approx(2.5)
    assert stats.max_branch_utilization == pytest.approx(2.3 / 2.4 * 100)
    assert stats.min_branch_utilization == pytest.approx(0.2 / 2.4 * 100)
    assert stats.load_balance_score < 80

    recommendations = generate_recommendations(stats)
    assert any("underutilized" in r for r in recommendations)
    assert any("near capacity" in r for r in recommendations)
    assert any("Load balance score" in r for r in recommendations)


def test_even_load_scores_full_marks(policy, make_branch):
    branches = [make_branch(0, "Level 2", [1.5]), make_branch(1, "Level 3", [1.5])]
    stats = calculate_statistics(branches, [], policy)
    assert stats.load_balance_score == pytest.approx(100.0)
    assert generate_recommendations(stats) == []


def test_no_branches(policy):
    stats = calculate_statistics([], [], policy)
    assert stats.total_branches == 0
    assert generate_recommendations(stats) == []
