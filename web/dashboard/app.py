import logging

from quart import Quart
from quart_cors import cors

from . import state
from .routes.markov_routes import markov_bp


def create_app(bridge=None) -> Quart:
    """Create and configure the Quart application."""
    app = Quart(__name__)
    app = cors(app)

    if bridge is not None:
        state.set_markov_bridge(bridge)
    app.register_blueprint(markov_bp)
    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_app().run(host="0.0.0.0", port=5001, debug=False)
