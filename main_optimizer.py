"""
Main Notification Network Optimizer

This is the command-line entry point for IDNAC sizing.
It orchestrates the complete process from data loading to final configuration output.
"""

import json
import sys
import signal
import logging
from collections import defaultdict
from typing import Dict, Any, Optional

from circuiter.network_optimizer import NotificationNetworkOptimizer
from circuiter.specs import CancellationToken
from data_parsers import load_all_data

DEFAULT_TIMEOUT_SECONDS = 30


def run_optimization(input_path: str, output_path: str = None,
                     timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS) -> Optional[Dict[str, Any]]:
    """
    Run the complete IDNAC sizing process

    Args:
        input_path: Path to a JSON request file or a CSV device schedule
        output_path: Optional path to save the results JSON file
        timeout_seconds: Cancel the run after this many seconds (0 disables)

    Returns:
        Dictionary containing the branch, supply and cabinet layout,
        or None when the run was cancelled
    """
    import time

    start_time = time.time()
    print("=" * 60)
    print("NOTIFICATION NETWORK OPTIMIZER")
    print("=" * 60)
    print(f"Starting optimization at {time.strftime('%H:%M:%S')}")

    token = CancellationToken()

    def timeout_handler(signum, frame):
        token.cancel()

    if timeout_seconds and hasattr(signal, "SIGALRM"):
        signal.signal(signal.SIGALRM, timeout_handler)
        signal.alarm(timeout_seconds)

    try:
        devices, policy, options, aux_loads, voltage_drops = load_all_data(input_path)

        print(f"\nSystem Overview:")
        print(f"  Total devices: {len(devices)}")
        print(f"  IDNAC limits: {policy.current_limit_a}A / {policy.ul_limit} UL "
              f"(usable {policy.usable_current:.2f}A / {policy.usable_unit_loads} UL)")
        print(f"  Branches per power supply: {policy.max_branches_per_supply}")

        level_groups = defaultdict(list)
        for device in devices:
            level_groups[device.level].append(device)

        print(f"\nDevice Distribution by Level:")
        for level, level_devices in level_groups.items():
            print(f"  {level}: {len(level_devices)} devices, "
                  f"{sum(d.current for d in level_devices):.2f}A")

        optimizer = NotificationNetworkOptimizer(
            devices, policy, options,
            aux_loads=aux_loads,
            voltage_drops=voltage_drops,
            progress=lambda operation, percent, message: print(f"  [{percent:3d}%] {operation}: {message}"),
            cancel_token=token,
        )
        result = optimizer.optimize()
    finally:
        if timeout_seconds and hasattr(signal, "SIGALRM"):
            signal.alarm(0)

    if result.cancelled:
        print(f"\nOptimization cancelled after {timeout_seconds} seconds")
        print("Consider disabling intra-level balancing or splitting the building into smaller runs")
        return None

    final_config = result.formatted_output

    if output_path:
        with open(output_path, 'w') as f:
            json.dump(final_config, f, indent=2)
        print(f"\nResults saved to: {output_path}")

    print(f"\nTotal optimization time: {time.time() - start_time:.2f} seconds")
    return final_config


def print_results_summary(config: Dict[str, Any]):
    """Print a human-readable summary of the optimization results"""
    print("\n" + "=" * 60)
    print("OPTIMIZATION RESULTS SUMMARY")
    print("=" * 60)

    summary = config.get("summary", {})
    print(f"Total Devices: {summary.get('total_devices', 'N/A')} "
          f"({summary.get('devices_excluded', 0)} excluded)")
    print(f"Total IDNAC Branches: {summary.get('total_branches', 'N/A')}")
    print(f"Total Power Supplies: {summary.get('total_power_supplies', 'N/A')}")
    print(f"Cabinet: {summary.get('cabinet_type', 'N/A')}")

    print(f"\nBranches by Power Supply:")
    for supply in config.get("power_supplies", []):
        print(f"  {supply['name']}: {', '.join(supply['branches'])} "
              f"({supply['alarm_load_a']}A, {supply['utilization_percent']}%)")

    consolidation = config.get("consolidation", {})
    for combined in consolidation.get("combined_levels", []):
        print(f"\nCombined floors: {combined}")

    validation = config.get("validation", {})
    print(f"\nValidation: {len(validation.get('errors', []))} errors, "
          f"{len(validation.get('warnings', []))} warnings")
    for error in validation.get("errors", []):
        print(f"  ERROR: {error['message']}")
    for warning in validation.get("warnings", []):
        print(f"  WARNING: {warning['message']}")

    recommendations = config.get("recommendations", [])
    if recommendations:
        print(f"\nRecommendations:")
        for recommendation in recommendations:
            print(f"  - {recommendation}")


def main():
    """Main entry point for command-line usage"""
    if len(sys.argv) < 2:
        print("Usage:")
        print("  python main_optimizer.py <input.json|devices.csv> [output.json] [--timeout SECONDS] [--verbose]")
        print("\nExamples:")
        print("  python main_optimizer.py tower_devices.json results.json")
        print("  python main_optimizer.py device_schedule.csv --timeout 60")
        sys.exit(1)

    args = sys.argv[1:]
    verbose = "--verbose" in args
    if verbose:
        args.remove("--verbose")

    timeout_seconds = DEFAULT_TIMEOUT_SECONDS
    if "--timeout" in args:
        position = args.index("--timeout")
        try:
            timeout_seconds = int(args[position + 1])
        except (IndexError, ValueError):
            print("--timeout requires a number of seconds")
            sys.exit(1)
        del args[position:position + 2]

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    input_path = args[0]
    output_path = args[1] if len(args) > 1 else None

    try:
        config = run_optimization(input_path, output_path, timeout_seconds)
    except Exception as e:
        print(f"Optimization failed: {e}")
        sys.exit(1)

    if config is None:
        sys.exit(2)

    print_results_summary(config)

    if not config["summary"]["is_valid"]:
        print(f"\nOptimization completed with validation errors")
        sys.exit(3)

    print(f"\nOptimization completed successfully!")


if __name__ == "__main__":
    main()
