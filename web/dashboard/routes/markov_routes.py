import logging
import time

from quart import Blueprint, jsonify

from .. import state

markov_bp = Blueprint("dashboard_markov", __name__)


@markov_bp.route("/api/markov/status")
async def markov_status():
    """Report whether the Markov engine is up and what it is doing."""
    bridge = state.markov_bridge
    if bridge is None:
        return jsonify({"initialized": False, "error": "Markov engine is not registered"}), 503

    try:
        status = bridge.status()
    except Exception as e:
        logging.error(f"Error reading Markov engine status: {e}")
        return jsonify({"initialized": False, "error": str(e)}), 500

    status["commands_executed"] = state.commands_executed
    status["uptime_seconds"] = int(time.time() - state.start_time) if state.start_time else 0
    return jsonify(status), 200 if status.get("initialized") else 503
