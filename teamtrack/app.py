import logging
import os

from flask import Flask, jsonify

from .config import config
from .errors import (
    CascadeStageError, NotFoundError, SafetyViolationError,
    StoreUnavailableError, ValidationError
)
from .services import init_services

logger = logging.getLogger(__name__)


def create_app(config_name: str = None) -> Flask:
    """Application factory for the TeamTrack API."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])

    init_services(app)

    register_error_handlers(app)
    register_health(app)

    from .routes import accounts, safety, teams, tournaments
    app.register_blueprint(accounts.bp)
    app.register_blueprint(teams.bp)
    app.register_blueprint(tournaments.bp)
    app.register_blueprint(safety.bp)

    return app


def register_error_handlers(app: Flask):
    """Map the error taxonomy onto HTTP status codes."""

    @app.errorhandler(ValidationError)
    def handle_validation(e):
        return jsonify({'error': 'validation_error', 'message': str(e)}), 400

    @app.errorhandler(NotFoundError)
    def handle_not_found(e):
        return jsonify({
            'error': 'not_found',
            'message': str(e),
            'entity': e.entity,
            'key': e.key
        }), 404

    @app.errorhandler(SafetyViolationError)
    def handle_safety(e):
        return jsonify(e.to_dict()), 409

    @app.errorhandler(StoreUnavailableError)
    def handle_unavailable(e):
        logger.error(f"Collaborator unavailable: {e}")
        return jsonify({'error': 'store_unavailable', 'message': str(e)}), 503

    @app.errorhandler(CascadeStageError)
    def handle_cascade(e):
        logger.error(f"Cascade failed: {e}")
        return jsonify(e.to_dict()), 500


def register_health(app: Flask):

    @app.route('/health')
    def health():
        """Health check endpoint."""
        return jsonify({
            'status': 'healthy',
            'service': 'teamtrack',
            'store_backend': app.config.get('STORE_BACKEND'),
            'identity_backend': app.config.get('IDENTITY_BACKEND')
        })
