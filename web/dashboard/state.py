import time
from typing import Optional

# Engine bridge owned by the bot; None until the bot registers it
markov_bridge = None

commands_executed = 0
start_time: Optional[float] = None


def set_markov_bridge(bridge):
    """Register the engine bridge the status routes report on."""
    global markov_bridge, start_time
    markov_bridge = bridge
    start_time = time.time() if bridge is not None else None


def increment_command_count():
    global commands_executed
    commands_executed += 1
