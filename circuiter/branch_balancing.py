"""
Branch Balancing

Bounded local search that evens out current across a level's branches by
moving single devices between branch pairs. A move must keep the receiving
branch inside the usable limits and strictly lower the population variance
of branch current. The pass cap bounds the run time; the result is a local
optimum at best.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .specs import (CapacityPolicy, CapacityBudget, CircuitBranch, DeviceLoad,
                    CancellationToken, budget_from_policy, check_cancelled)

logger = logging.getLogger(__name__)

DEFAULT_MAX_PASSES = 100

# Smallest variance reduction that counts as an improvement
MIN_IMPROVEMENT = 1e-12


@dataclass
class BalanceOutcome:
    """Summary of one balancing run"""
    passes: int
    moves: int
    converged: bool
    initial_variance: float
    final_variance: float


def current_variance(branches: List[CircuitBranch]) -> float:
    """Population variance of branch current"""
    if len(branches) <= 1:
        return 0.0
    loads = np.array([b.current for b in branches], dtype=float)
    return float(np.var(loads))


class BranchBalancer:
    """Pairwise single-device moves until no move helps or the cap is hit"""

    def __init__(self, policy: CapacityPolicy, max_passes: int = DEFAULT_MAX_PASSES):
        self.policy = policy
        self.max_passes = max_passes

    def balance(self, branches: List[CircuitBranch], budget: Optional[CapacityBudget] = None,
                cancel_token: Optional[CancellationToken] = None) -> BalanceOutcome:
        """Balance `branches` in place."""
        budget = budget or budget_from_policy(self.policy)
        working = [b for b in branches if not b.frozen and not b.oversized]
        initial = current_variance(working)

        if len(working) <= 1:
            return BalanceOutcome(0, 0, True, initial, initial)

        passes = 0
        moves = 0
        converged = False
        variance = initial

        while passes < self.max_passes:
            check_cancelled(cancel_token)
            passes += 1
            improved = False

            for i in range(len(working) - 1):
                for j in range(i + 1, len(working)):
                    move = self._best_move(working, working[i], working[j], variance, budget)
                    if move is None:
                        continue
                    device, source, target, new_variance = move
                    source.remove_device(device)
                    target.add_device(device)
                    logger.debug("Moved %s from %s to %s (variance %.5f -> %.5f)",
                                 device.device_id, source.name, target.name, variance, new_variance)
                    variance = current_variance(working)
                    moves += 1
                    improved = True

            if not improved:
                converged = True
                break

        if not converged:
            logger.info("Balancing stopped at the %d-pass cap", self.max_passes)

        return BalanceOutcome(passes, moves, converged, initial, variance)

    def _best_move(self, working: List[CircuitBranch], first: CircuitBranch, second: CircuitBranch,
                   variance: float, budget: CapacityBudget
                   ) -> Optional[Tuple[DeviceLoad, CircuitBranch, CircuitBranch, float]]:
        """Best improving move between two branches, either direction"""
        loads = np.array([b.current for b in working], dtype=float)
        first_pos = working.index(first)
        second_pos = working.index(second)

        best = None
        best_gain = MIN_IMPROVEMENT

        for source, target, source_pos, target_pos in ((first, second, first_pos, second_pos),
                                                        (second, first, second_pos, first_pos)):
            if source.device_count <= 1:
                continue
            for device in source.devices:
                if not target.can_accept(device, budget):
                    continue
                trial = loads.copy()
                trial[source_pos] -= device.current
                trial[target_pos] += device.current
                trial_variance = float(np.var(trial))
                gain = variance - trial_variance
                if gain > best_gain:
                    best_gain = gain
                    best = (device, source, target, trial_variance)

        return best
