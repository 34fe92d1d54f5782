"""Flask application factory."""
import logging
import os

from flask import Flask, jsonify

from pos.database import init_db


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    # Sentry error tracking in production
    if os.getenv('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Redis view cache
    from pos.services.cache_service import init_cache
    cache = init_cache(app)

    # Prometheus request instrumentation
    from pos.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Both stores
    remote_store, local_store = init_db(app)

    # Synchronization and the storage facade
    from pos.services.sync_service import SyncService
    from pos.services.hybrid_storage import DualStoreGateway, HybridStorage

    view_cache = cache if cache.enabled else None
    sync_service = SyncService(
        remote_store,
        local_store,
        probe_interval=app.config.get('SYNC_PROBE_INTERVAL', 10),
        probe_timeout=app.config.get('SYNC_PROBE_TIMEOUT', 3),
        cache=view_cache,
    )
    gateway = DualStoreGateway(remote_store, local_store, sync_service.state, sync_service.gate)
    app.extensions['pos_sync'] = sync_service
    app.extensions['pos_storage'] = HybridStorage(
        gateway,
        sync_service=sync_service,
        cache=view_cache,
        order_prefix=app.config.get('ORDER_NUMBER_PREFIX', 'BRU'),
    )

    if app.config.get('SYNC_AUTOSTART', True):
        sync_service.start()

    # Error Handlers
    from pos.exceptions import PosError

    @app.errorhandler(PosError)
    def handle_pos_error(error):
        """Handle custom application exceptions."""
        app.logger.error(f"PosError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'status': 'error', 'message': 'Not Found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.exception(f"Unhandled Exception: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from pos.blueprints.metrics import metrics_bp
    app.register_blueprint(metrics_bp)

    # Register CLI commands
    from pos.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(
        f"POS ready: remote={remote_store.engine.url.render_as_string(hide_password=True)} "
        f"local={local_store.engine.url}"
    )
    return app


def get_storage(app):
    """The HybridStorage facade of an app created by create_app."""
    return app.extensions['pos_storage']
