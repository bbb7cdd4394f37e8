"""Flask application factory for the dispensary cart core."""
import logging

from flask import Flask, jsonify

from dispensary.database import init_db


def create_app(config_object='config.Config', **storefront_overrides):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    # Initialize database
    init_db(app)

    # Wire cart, stock, pricing and notifications for this app session
    from dispensary.services.session_service import init_storefront
    init_storefront(app, **storefront_overrides)

    # Error Handlers
    from dispensary.exceptions import DispensaryError

    @app.errorhandler(DispensaryError)
    def handle_dispensary_error(error):
        """Handle custom application exceptions."""
        app.logger.error(f"DispensaryError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    return app
