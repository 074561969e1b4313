"""
Flask API Server for the Notification Network Optimizer
Provides REST API endpoints for IDNAC, power supply and cabinet sizing

Run from the repository root:
    python -m circuiter.api_server
"""

import os
import logging
import traceback

from dotenv import load_dotenv
from flask import Flask, request, jsonify

import data_parsers
from .specs import CapacityPolicy
from .network_optimizer import NotificationNetworkOptimizer
from .levels import group_devices_by_level, build_levels
from .repeater_islands import RepeaterIslandHandler
from .level_analysis import analyze_levels

load_dotenv()

logger = logging.getLogger(__name__)

app = Flask(__name__)


def default_policy_from_env() -> CapacityPolicy:
    """Server-wide policy defaults; request "policy" sections override them"""
    base = CapacityPolicy()
    return CapacityPolicy(
        current_limit_a=float(os.getenv("IDNAC_CURRENT_LIMIT_A", base.current_limit_a)),
        ul_limit=int(os.getenv("IDNAC_UL_LIMIT", base.ul_limit)),
        spare_fraction=float(os.getenv("SPARE_FRACTION", base.spare_fraction)),
    )


DEFAULT_POLICY = default_policy_from_env()


def _error(message: str, error_type: str, status: int, **extra):
    body = {"success": False, "error": message, "error_type": error_type}
    body.update(extra)
    return jsonify(body), status


@app.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint"""
    return jsonify({
        "status": "healthy",
        "service": "Notification Network Optimizer API",
        "version": "v1.0"
    }), 200


@app.route('/api/optimize', methods=['POST'])
def optimize_network():
    """
    Main optimization endpoint

    Request Body:
    {
        "devices": [...],              // Device records (level, currentA, unitLoads, x, y, z, ...)
        "policy": {...},               // Optional: CapacityPolicy overrides
        "balancing": {...},            // Optional: BalancingOptions
        "auxiliaryLoads": [...],       // Optional: amplifier / detection loads
        "voltageDrops": {...}          // Optional: branch name -> voltage drop percent
    }

    Returns:
    {
        "success": true,
        "data": {...},                 // Branches, supplies, cabinet, validation
        "metadata": {
            "devices_allocated": 240,
            "total_devices": 260,
            "branches_created": 12,
            "power_supplies_used": 4
        }
    }
    """
    try:
        data = request.get_json(silent=True)

        if not data:
            return _error("No JSON data provided", "ValidationError", 400)

        devices, policy, options, aux_loads, voltage_drops = data_parsers.parse_request(data, DEFAULT_POLICY)

        optimizer = NotificationNetworkOptimizer(
            devices, policy, options,
            aux_loads=aux_loads,
            voltage_drops=voltage_drops,
        )
        result = optimizer.optimize()

        if result.cancelled:
            return _error("Optimization was cancelled", "Cancelled", 409)

        output = result.formatted_output

        response = {
            "success": True,
            "data": output,
            "metadata": {
                "devices_allocated": output['summary']['devices_allocated'],
                "total_devices": output['summary']['total_devices'],
                "branches_created": output['summary']['total_branches'],
                "power_supplies_used": output['summary']['total_power_supplies'],
                "cabinet_type": output['summary']['cabinet_type'],
                "is_valid": output['summary']['is_valid'],
                "spare_fraction": policy.spare_fraction,
            }
        }

        if output['recommendations']:
            response["metadata"]["recommendations"] = output['recommendations']

        return jsonify(response), 200

    except ValueError as e:
        return _error(str(e), "ValidationError", 400)
    except Exception as e:
        logger.exception("Optimization request failed")
        return _error(str(e), "ServerError", 500, traceback=traceback.format_exc())


@app.route('/api/validate', methods=['POST'])
def analyze_design():
    """
    Quick per-level analysis without allocation

    Request Body:
    {
        "devices": [...],
        "policy": {...},
        "balancing": {...}
    }

    Returns:
    {
        "success": true,
        "validation": {
            "total_devices": 260,
            "levels": 9,
            "excluded_devices": 20,
            "estimated_idnacs": 12,
            "level_analysis": {...}
        }
    }
    """
    try:
        data = request.get_json(silent=True)

        if not data:
            return _error("No JSON data provided", "ValidationError", 400)

        devices, policy, options, _, _ = data_parsers.parse_request(data, DEFAULT_POLICY)

        grouping = group_devices_by_level(devices, options)
        levels = RepeaterIslandHandler(policy).apply(build_levels(grouping, policy))
        analysis = analyze_levels(levels, policy)

        return jsonify({
            "success": True,
            "validation": {
                "total_devices": len(devices),
                "levels": len(levels),
                "excluded_devices": grouping.excluded_count,
                "excluded_levels": grouping.excluded,
                "estimated_idnacs": sum(a.idnacs_required for a in analysis.values()),
                "level_analysis": {name: a.to_dict() for name, a in analysis.items()},
            }
        }), 200

    except ValueError as e:
        return _error(str(e), "ValidationError", 400)
    except Exception as e:
        logger.exception("Validation request failed")
        return _error(str(e), "ServerError", 500, traceback=traceback.format_exc())


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "5000"))
    debug = os.getenv("DEBUG", "false").lower() in ("1", "true", "yes")

    print("=" * 80)
    print("Starting Notification Network Optimizer API Server")
    print("=" * 80)
    print("\nEndpoints:")
    print("  GET  /health             - Health check")
    print("  POST /api/optimize       - Run IDNAC / power supply / cabinet sizing")
    print("  POST /api/validate       - Per-level analysis (quick check)")
    print(f"\nServer will run on: http://{host}:{port}")
    print("Started with: python -m circuiter.api_server (from the repository root)")
    print("=" * 80)

    app.run(host=host, port=port, debug=debug)
