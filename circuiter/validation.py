"""
Validation Reporter

Structural checks over the finished layout. Every finding becomes a
severity-tagged diagnostic with remediation text; nothing here raises for
bad data, only for missing inputs.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

import numpy as np

from .specs import (CapacityPolicy, CircuitBranch, PowerSupply, CabinetConfiguration,
                    UNKNOWN_LEVEL, within)

logger = logging.getLogger(__name__)

ERROR = "ERROR"
WARNING = "WARNING"
INFO = "INFO"

SUPPLY_IMBALANCE_CV = 0.3
UTILIZATION_STD_LIMIT = 0.2
LOW_AVERAGE_UTILIZATION = 0.5
NEAR_LIMIT_UTILIZATION = 0.95
MIN_SPARE_BLOCKS = 2


@dataclass
class Diagnostic:
    severity: str
    code: str
    message: str
    remediation: str = ""
    subject: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity,
            "code": self.code,
            "message": self.message,
            "remediation": self.remediation,
            "subject": self.subject,
            "details": dict(self.details),
        }


@dataclass
class ValidationSummary:
    diagnostics: List[Diagnostic] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == ERROR]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == WARNING]

    @property
    def infos(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == INFO]

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def for_subject(self, subject: str) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.subject == subject]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "errors": [d.to_dict() for d in self.errors],
            "warnings": [d.to_dict() for d in self.warnings],
            "info": [d.to_dict() for d in self.infos],
            "recommendations": list(self.recommendations),
        }


class ValidationReporter:
    """Runs branch, supply, cabinet and distribution checks"""

    def __init__(self, policy: CapacityPolicy):
        self.policy = policy

    def report(self, branches: List[CircuitBranch], supplies: List[PowerSupply],
               cabinet: Optional[CabinetConfiguration] = None,
               excluded: Optional[Dict[str, int]] = None,
               overflow_count: int = 0,
               voltage_drops: Optional[Dict[str, float]] = None,
               recommendations: Optional[List[str]] = None,
               unmatched_reserves: Optional[Dict[str, float]] = None) -> ValidationSummary:
        if branches is None or supplies is None:
            raise ValueError("branches and supplies are required for validation")

        summary = ValidationSummary(recommendations=list(recommendations or []))
        diagnostics = summary.diagnostics

        for branch in branches:
            diagnostics.extend(self.check_branch(branch))
            if voltage_drops and branch.name in voltage_drops:
                diagnostics.extend(self.check_voltage_drop(branch, voltage_drops[branch.name]))

        for supply in supplies:
            diagnostics.extend(self.check_supply(supply, branches))

        if cabinet is not None:
            diagnostics.extend(self.check_cabinet(cabinet))

        diagnostics.extend(self.check_inputs(branches, excluded or {}, overflow_count))
        diagnostics.extend(self.check_auxiliary_levels(unmatched_reserves or {}))
        diagnostics.extend(self.check_distribution(branches))

        logger.info("Validation: %d errors, %d warnings, %d info",
                    len(summary.errors), len(summary.warnings), len(summary.infos))
        return summary

    def check_branch(self, branch: CircuitBranch) -> List[Diagnostic]:
        policy = self.policy
        spare_percent = policy.spare_fraction * 100
        found = []

        if branch.oversized:
            device = branch.devices[0] if branch.devices else None
            found.append(Diagnostic(
                ERROR, "OVERSIZED_DEVICE",
                f"Device {device.device_id if device else '?'} alone exceeds the IDNAC limits "
                f"({branch.current:.2f}A / {branch.unit_loads} UL vs {policy.current_limit_a}A / {policy.ul_limit} UL)",
                "Verify the device data or power it from a dedicated circuit or auxiliary supply",
                branch.name))

        checks = (
            ("ALARM_CURRENT", "alarm current", branch.current, policy.current_limit_a,
             policy.usable_current, "A", policy.enforce_on_current),
            ("STANDBY_CURRENT", "standby current", branch.standby_current, policy.current_limit_a,
             policy.usable_current, "A", policy.enforce_on_current),
            ("UNIT_LOADS", "unit loads", branch.unit_loads, policy.ul_limit,
             policy.usable_unit_loads, "UL", policy.enforce_on_ul),
            ("DEVICE_COUNT", "device count", branch.device_count, policy.max_devices_per_circuit,
             policy.usable_devices, "", policy.enforce_on_devices),
        )
        for code, label, value, hard, usable, unit, enforced in checks:
            if unit == "A":
                shown, usable_shown = f"{value:.2f}A", f"{usable:.2f}A"
            else:
                shown, usable_shown = f"{value} {unit}".strip(), f"{usable} {unit}".strip()
            if not within(value, hard):
                found.append(Diagnostic(
                    ERROR, code,
                    f"Branch {label} ({shown}) exceeds maximum limit ({hard} {unit})".replace(" )", ")"),
                    "Split the branch or move devices to another circuit",
                    branch.name, {"value": value, "limit": hard}))
            elif enforced and not within(value, usable):
                found.append(Diagnostic(
                    WARNING, code,
                    f"Branch {label} ({shown}) exceeds usable limit with {spare_percent:.0f}% spare ({usable_shown})",
                    "Move devices to a lighter branch to restore spare capacity",
                    branch.name, {"value": value, "usable": usable}))

        if branch.requires_isolators and not branch.has_isolator:
            found.append(Diagnostic(
                WARNING, "ISOLATORS_REQUIRED",
                f"Branch spans {len(branch.source_levels)} floor(s) "
                f"({', '.join(branch.source_levels)}) and has no isolator",
                "Install fault isolators at each floor boundary",
                branch.name))

        return found

    def check_voltage_drop(self, branch: CircuitBranch, drop_percent: float) -> List[Diagnostic]:
        limit = self.policy.max_voltage_drop_percent
        if drop_percent > limit:
            return [Diagnostic(ERROR, "VOLTAGE_DROP",
                               f"Cable voltage drop ({drop_percent:.1f}%) exceeds limit ({limit}%)",
                               "Increase wire gauge or shorten the circuit run",
                               branch.name, {"voltage_drop_percent": drop_percent})]
        if drop_percent > limit * 0.8:
            return [Diagnostic(WARNING, "VOLTAGE_DROP",
                               f"Cable voltage drop ({drop_percent:.1f}%) approaching limit ({limit}%)",
                               "Consider a heavier wire gauge",
                               branch.name, {"voltage_drop_percent": drop_percent})]
        return []

    def check_supply(self, supply: PowerSupply, branches: List[CircuitBranch]) -> List[Diagnostic]:
        found = []
        spare_percent = supply.spare_fraction * 100

        if not within(supply.total_alarm_load, supply.capacity):
            found.append(Diagnostic(
                ERROR, "SUPPLY_ALARM_LOAD",
                f"Power supply alarm load ({supply.total_alarm_load:.2f}A) exceeds total capacity ({supply.capacity}A)",
                "Add a power supply or move branches to another supply",
                supply.name))
        elif not within(supply.total_alarm_load, supply.usable_capacity):
            found.append(Diagnostic(
                WARNING, "SUPPLY_ALARM_LOAD",
                f"Power supply alarm load ({supply.total_alarm_load:.2f}A) exceeds usable capacity "
                f"with {spare_percent:.0f}% spare ({supply.usable_capacity:.2f}A)",
                "Redistribute branches to restore spare capacity",
                supply.name))

        if not within(supply.total_standby_load, supply.capacity):
            found.append(Diagnostic(
                ERROR, "SUPPLY_STANDBY_LOAD",
                f"Power supply standby load ({supply.total_standby_load:.2f}A) exceeds total capacity ({supply.capacity}A)",
                "Add a power supply or reduce standby load",
                supply.name))
        elif not within(supply.total_standby_load, supply.usable_capacity):
            found.append(Diagnostic(
                WARNING, "SUPPLY_STANDBY_LOAD",
                f"Power supply standby load ({supply.total_standby_load:.2f}A) exceeds usable capacity "
                f"({supply.usable_capacity:.2f}A)",
                "Redistribute branches to restore spare capacity",
                supply.name))

        if len(supply.branch_indices) > supply.max_branches:
            found.append(Diagnostic(
                ERROR, "SUPPLY_BRANCH_COUNT",
                f"Power supply has too many branches ({len(supply.branch_indices)} > {supply.max_branches})",
                "Move branches to another power supply",
                supply.name))

        if len(supply.branch_indices) > 1:
            loads = np.array([branches[i].current for i in supply.branch_indices])
            mean = loads.mean()
            cv = float(loads.std() / mean) if mean > 0 else 0.0
            if cv > SUPPLY_IMBALANCE_CV:
                found.append(Diagnostic(
                    WARNING, "SUPPLY_IMBALANCE",
                    f"Power supply branches are unbalanced (variation: {cv:.2f})",
                    "Redistribute circuit branches for better load balancing",
                    supply.name, {"coefficient_of_variation": cv}))

        return found

    def check_cabinet(self, cabinet: CabinetConfiguration) -> List[Diagnostic]:
        found = []
        if not cabinet.fits:
            found.append(Diagnostic(
                ERROR, "CABINET_CAPACITY",
                f"Block demand ({cabinet.blocks_required}) exceeds {cabinet.cabinet_type} capacity "
                f"({cabinet.available_blocks} blocks)",
                f"Plan for {cabinet.cabinets_required} cabinets or distribute equipment to remote panels",
                cabinet.cabinet_type,
                {"blocks_required": cabinet.blocks_required, "cabinets_required": cabinet.cabinets_required}))
        elif cabinet.remaining_blocks < MIN_SPARE_BLOCKS:
            found.append(Diagnostic(
                WARNING, "CABINET_SPARE_BLOCKS",
                f"Only {cabinet.remaining_blocks} spare block(s) left in the {cabinet.cabinet_type} cabinet",
                "Consider the next cabinet size to allow future expansion",
                cabinet.cabinet_type))

        if cabinet.power_supplies > 0 and not cabinet.battery_charger_available:
            found.append(Diagnostic(
                INFO, "BATTERY_CHARGER",
                f"Battery charger not available: draw {cabinet.total_draw_a:.2f}A is at or above 80% "
                f"of {cabinet.total_capacity_a:.2f}A supply capacity",
                "Provide an external battery charger or add a power supply",
                cabinet.cabinet_type))
        return found

    def check_inputs(self, branches: List[CircuitBranch], excluded: Dict[str, int],
                     overflow_count: int) -> List[Diagnostic]:
        found = []
        for level, count in sorted(excluded.items()):
            found.append(Diagnostic(
                INFO, "LEVEL_EXCLUDED",
                f"{count} device(s) on {level} excluded by level category rules",
                "Size excluded levels separately or clear the exclusion flag",
                level, {"devices": count}))

        if any(UNKNOWN_LEVEL in b.source_levels for b in branches):
            found.append(Diagnostic(
                INFO, "UNKNOWN_LEVEL",
                "Some devices have no level and were grouped under \"Unknown\"",
                "Assign a level to every device in the model",
                UNKNOWN_LEVEL))

        if overflow_count:
            found.append(Diagnostic(
                WARNING, "CIRCUIT_CAP_OVERFLOW",
                f"{overflow_count} device(s) needed branches beyond the per-level circuit cap",
                "Review the level for unusually dense device placement",
                "", {"devices": overflow_count}))

        if len(branches) > 1:
            total_current = sum(b.current for b in branches)
            total_ul = sum(b.unit_loads for b in branches)
            found.append(Diagnostic(
                INFO, "MULTIPLE_IDNACS",
                f"Building load requires {len(branches)} IDNACs "
                f"(with {self.policy.spare_fraction * 100:.0f}% spare)",
                "Plan panel placement and IDNAC organization by building levels/zones",
                "", {"total_current": total_current, "total_unit_loads": total_ul,
                     "idnacs": len(branches)}))
        return found

    def check_auxiliary_levels(self, unmatched_reserves: Dict[str, float]) -> List[Diagnostic]:
        """Auxiliary current assigned to levels that own no branch"""
        found = []
        for level, current in sorted(unmatched_reserves.items()):
            found.append(Diagnostic(
                WARNING, "AUX_LEVEL_UNSERVED",
                f"Auxiliary current {current:.2f}A serves {level}, which has no notification branch; "
                f"reserved on ES-PS-1 instead",
                "Check the serving level name or size the excluded level separately",
                level, {"current_a": current}))
        return found

    def check_distribution(self, branches: List[CircuitBranch]) -> List[Diagnostic]:
        if not branches:
            return []
        found = []
        utilizations = np.array([self.policy.utilization(b.current, b.unit_loads) for b in branches])

        if len(branches) > 1 and utilizations.std() > UTILIZATION_STD_LIMIT:
            found.append(Diagnostic(
                WARNING, "POOR_BALANCE",
                f"High utilization variation ({utilizations.std():.2f}) - circuits are poorly balanced",
                "Enable intra-level balancing or rebalance manually"))

        if utilizations.mean() < LOW_AVERAGE_UTILIZATION:
            found.append(Diagnostic(
                INFO, "LOW_UTILIZATION",
                f"Average branch utilization is low ({utilizations.mean() * 100:.0f}%)",
                "Consider consolidating circuits"))

        near_limit = int((utilizations > NEAR_LIMIT_UTILIZATION).sum())
        if near_limit:
            found.append(Diagnostic(
                WARNING, "NEAR_LIMIT",
                f"{near_limit} branch(es) above {NEAR_LIMIT_UTILIZATION * 100:.0f}% of usable capacity",
                "Leave headroom for future devices"))
        return found
