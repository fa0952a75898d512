from flask import Flask, jsonify, request
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
import logging
from dotenv import load_dotenv

load_dotenv()

db = SQLAlchemy()

logger = logging.getLogger(__name__)


def create_app(config_name='development', gateway=None):
    app = Flask(__name__)

    # Config
    from handyhire.config import get_config
    app.config.from_object(get_config(config_name))

    # Initialize extensions
    db.init_app(app)
    CORS(app)

    # Payment gateway (Stripe unless a test double is injected)
    if gateway is None:
        from handyhire.services.gateway import StripeGateway
        gateway = StripeGateway.from_config(app.config)
    app.extensions['payment_gateway'] = gateway

    # Create tables with error handling
    with app.app_context():
        from handyhire import models  # noqa: F401  (register tables)
        try:
            db.create_all()
        except Exception as e:
            logger.warning(f"Could not create database tables: {e}")

    # Register routes
    from handyhire.routes import register_routes
    register_routes(app)

    # Completion scheduler (sweep + one-shot release timers)
    from handyhire.services.scheduler import CompletionScheduler
    scheduler = CompletionScheduler(app)
    app.extensions['completion_scheduler'] = scheduler
    if app.config.get('SCHEDULER_ENABLED'):
        scheduler.start()

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        original = getattr(error, 'original_exception', None)
        app.logger.error(f'Unhandled error on {request.method} {request.path}: {original or error}', exc_info=original)
        return jsonify({'error': 'Internal server error'}), 500

    # Health check
    @app.route('/health', methods=['GET'])
    def health():
        return {'status': 'ok'}, 200

    return app
