import itertools

import pytest

from circuiter.specs import DeviceLoad, CapacityPolicy, CircuitBranch
from circuiter.levels import build_level_data


@pytest.fixture
def policy():
    return CapacityPolicy()


@pytest.fixture
def make_device():
    counter = itertools.count(1)

    def factory(level="Level 2", current=0.1, unit_loads=1, **kwargs):
        n = next(counter)
        kwargs.setdefault("device_id", f"D{n:03d}")
        kwargs.setdefault("x", float(n))
        return DeviceLoad(level=level, current=current, unit_loads=unit_loads, **kwargs)

    return factory


@pytest.fixture
def make_level(policy):
    def factory(name, devices, level_policy=None):
        return build_level_data(name, list(devices), level_policy or policy)

    return factory


@pytest.fixture
def make_branch(make_device):
    def factory(index, level, currents, category="main", **device_kwargs):
        branch = CircuitBranch(index, f"{level} - Branch {index + 1}", level, category=category)
        for current in currents:
            branch.add_device(make_device(level=level, current=current, **device_kwargs))
        return branch

    return factory
