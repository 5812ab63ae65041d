from .app import create_app
from .state import increment_command_count, set_markov_bridge

__all__ = ["create_app", "increment_command_count", "set_markov_bridge"]
