"""
Balancing statistics and recommendations
"""

from dataclasses import dataclass, asdict
from typing import List, Dict

import numpy as np

from .specs import CapacityPolicy, CircuitBranch, PowerSupply


@dataclass
class BalancingStatistics:
    total_branches: int = 0
    total_power_supplies: int = 0
    total_devices: int = 0
    total_alarm_current: float = 0.0
    total_unit_loads: int = 0
    average_branch_utilization: float = 0.0    # percent
    min_branch_utilization: float = 0.0
    max_branch_utilization: float = 0.0
    branch_utilization_std: float = 0.0        # fraction
    average_power_supply_utilization: float = 0.0
    load_balance_score: float = 0.0            # 0-100
    efficiency_rating: str = "UNKNOWN"

    def to_dict(self) -> Dict:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, float):
                data[key] = round(value, 3)
        return data


def efficiency_rating(average_supply_utilization: float) -> str:
    """Rating of average supply utilization (percent)"""
    if 75 <= average_supply_utilization <= 85:
        return "EXCELLENT"
    if 65 <= average_supply_utilization <= 90:
        return "GOOD"
    if average_supply_utilization < 50:
        return "UNDERUTILIZED"
    if average_supply_utilization > 95:
        return "OVERLOADED"
    return "ADEQUATE"


def calculate_statistics(branches: List[CircuitBranch], supplies: List[PowerSupply],
                         policy: CapacityPolicy) -> BalancingStatistics:
    stats = BalancingStatistics(
        total_branches=len(branches),
        total_power_supplies=len(supplies),
        total_devices=sum(b.device_count for b in branches),
        total_alarm_current=sum(b.current for b in branches),
        total_unit_loads=sum(b.unit_loads for b in branches),
    )

    if branches:
        utilizations = np.array([policy.utilization(b.current, b.unit_loads) for b in branches])
        stats.average_branch_utilization = float(utilizations.mean() * 100)
        stats.min_branch_utilization = float(utilizations.min() * 100)
        stats.max_branch_utilization = float(utilizations.max() * 100)
        stats.branch_utilization_std = float(utilizations.std())

        loads = np.array([b.current for b in branches])
        mean = loads.mean()
        if mean > 0:
            cv = loads.std() / mean
            stats.load_balance_score = float(max(0.0, 100 * (1 - cv)))
        else:
            stats.load_balance_score = 100.0

    if supplies:
        stats.average_power_supply_utilization = float(np.mean([s.utilization * 100 for s in supplies]))
        stats.efficiency_rating = efficiency_rating(stats.average_power_supply_utilization)

    return stats


def generate_recommendations(stats: BalancingStatistics) -> List[str]:
    recommendations = []

    if stats.total_branches == 0:
        return recommendations

    if stats.min_branch_utilization < 50:
        recommendations.append(
            f"Some branches are underutilized ({stats.min_branch_utilization:.1f}%). "
            "Consider merging circuits.")

    if stats.max_branch_utilization > 90:
        recommendations.append(
            f"Some branches are near capacity ({stats.max_branch_utilization:.1f}%). "
            "Consider redistributing load.")

    if stats.load_balance_score < 80:
        recommendations.append(
            f"Load balance score is {stats.load_balance_score:.1f}/100. "
            "Consider rebalancing circuits.")

    if stats.average_power_supply_utilization > 80:
        recommendations.append(
            f"Power supply utilization is high ({stats.average_power_supply_utilization:.1f}%). "
            "Ensure adequate spare capacity.")

    return recommendations
