from circuiter.specs import CapacityPolicy
from circuiter.repeater_islands import RepeaterIslandHandler


def _levels(make_level, make_device):
    return {
        "Level 2": make_level("Level 2", [make_device(level="Level 2", current=0.5)]),
        "Level 3": make_level("Level 3", [
            make_device(level="Level 3", current=0.2),
            make_device(level="Level 3", current=0.05, unit_loads=4, is_repeater=True, family="Repeater"),
        ]),
    }


def test_repeater_level_becomes_island(policy, make_level, make_device):
    handler = RepeaterIslandHandler(policy)

    levels = handler.apply(_levels(make_level, make_device))

    assert levels["Level 3"].repeater_island
    assert levels["Level 3"].requires_isolators
    assert not levels["Level 2"].repeater_island
    assert handler.island_names(levels) == {"Level 3"}


def test_island_gets_a_fresh_full_budget(policy, make_level, make_device):
    handler = RepeaterIslandHandler(policy)
    levels = handler.apply(_levels(make_level, make_device))

    budget = handler.budget_for(levels["Level 3"])

    assert budget.fresh
    assert budget.current == policy.usable_current == 3.0 * 0.8
    assert budget.unit_loads == 111
    assert budget.devices == 101
    assert not handler.budget_for(levels["Level 2"]).fresh


def test_fresh_budget_can_be_disabled(make_level, make_device):
    policy = CapacityPolicy(repeater_fresh_budget=False)
    handler = RepeaterIslandHandler(policy)

    levels = handler.apply(_levels(make_level, make_device))

    assert handler.island_names(levels) == set()
    assert levels["Level 3"].has_repeater
