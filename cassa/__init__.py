"""Flask application factory."""
import logging

from flask import Flask, jsonify

from cassa.database import init_db


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Logging
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    logging.basicConfig(level=level, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    app.logger.setLevel(level)

    # Initialize database
    init_db(app)

    # Blueprints
    from cassa.blueprints.pos import pos_bp
    app.register_blueprint(pos_bp)

    # Error Handlers
    from cassa.exceptions import CassaError, CompensationFailure
    from cassa.services.notification_service import notification_for_error

    @app.errorhandler(CassaError)
    def handle_cassa_error(error):
        """Handle custom application exceptions."""
        if isinstance(error, CompensationFailure):
            app.logger.critical(f"CassaError [{error.status_code}]: {error.message}")
        else:
            app.logger.error(f"CassaError [{error.status_code}]: {error.message}")

        body = error.to_dict()
        body['notification'] = notification_for_error(error).to_dict()
        return jsonify(body), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'status': 'error', 'message': 'Not Found'}), 404

    # CLI
    from cassa.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
