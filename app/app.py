"""
VidStash - media library ingestion back end
Application Factory and startup
"""
import atexit
import logging
import sys

import flask.cli
flask.cli.show_server_banner = lambda *args: None

# Core Flask imports
from flask import Flask
from flask_socketio import SocketIO
import structlog

# Local imports
from constants import BUILD_VERSION
from db import db, migrate, init_db
from event_hub import HubLogHandler
from exceptions import ConfigurationException, register_exception_handlers
from metrics import init_metrics
from pipeline import EXTENSION_KEY, Pipeline
from settings import load_config, load_settings, merge_settings
from utils import ColoredFormatter, FilterRemoveDateFromWerkzeugLogs

# Routes
from routes.activity import activity_bp
from routes.links import links_bp
from routes.scheduler import scheduler_bp
from routes.scraper import scraper_bp
from routes.system import system_bp

socketio = SocketIO()

logger = logging.getLogger("main")


def configure_logging(config):
    """Colored console output on the main logger, structlog over stdlib"""
    formatter = ColoredFormatter(
        "[%(asctime)s.%(msecs)03d] %(levelname)s (%(module)s) %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO), handlers=[handler])

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if config.log_format == "json" else structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Apply filter to hide date from http access logs
    logging.getLogger("werkzeug").addFilter(FilterRemoveDateFromWerkzeugLogs())
    logging.getLogger("alembic.runtime.migration").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def create_app(config=None, settings=None, start_workers=True, http_session=None):
    """Application factory"""
    if config is None:
        config = load_config()
    settings = merge_settings(settings) if settings is not None else load_settings()

    configure_logging(config)

    app = Flask(__name__)
    app.config["SQLALCHEMY_DATABASE_URI"] = config.database_uri
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["TESTING"] = config.server_mode == "test"
    app.config["VIDSTASH_CONFIG"] = config
    app.config["VIDSTASH_SETTINGS"] = settings

    # Initialize components
    db.init_app(app)
    migrate.init_app(app, db)
    init_db(app)

    # Register exception handlers
    register_exception_handlers(app)

    # Register blueprints
    app.register_blueprint(activity_bp)
    app.register_blueprint(scraper_bp)
    app.register_blueprint(links_bp)
    app.register_blueprint(scheduler_bp)
    app.register_blueprint(system_bp)

    # Initialize metrics
    init_metrics(app)

    # Initialize SocketIO
    socketio.init_app(app, cors_allowed_origins="*", async_mode="threading", engineio_logger=False, logger=False)

    @socketio.on("connect")
    def handle_connect():
        logger.info("Client connected")

    @socketio.on("disconnect")
    def handle_disconnect():
        logger.info("Client disconnected")

    pipeline = Pipeline(app, config, settings, http_session=http_session)
    app.extensions[EXTENSION_KEY] = pipeline

    # Warnings and errors reach live clients as console_log events
    hub_handler = HubLogHandler(pipeline.hub)
    main_logger = logging.getLogger("main")
    for existing in [h for h in main_logger.handlers if isinstance(h, HubLogHandler)]:
        main_logger.removeHandler(existing)
    main_logger.addHandler(hub_handler)

    pipeline.start(start_workers=start_workers, socketio=socketio if start_workers else None)
    return app


if __name__ == "__main__":
    try:
        config = load_config()
    except ConfigurationException as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        sys.exit(1)

    app = create_app(config)
    atexit.register(app.extensions[EXTENSION_KEY].shutdown)

    logger.info(f"Build Version: {BUILD_VERSION}")
    logger.info(f"Starting server on {config.server_host}:{config.server_port}...")
    socketio.run(
        app,
        debug=config.server_mode == "debug",
        use_reloader=False,
        host=config.server_host,
        port=config.server_port,
        allow_unsafe_werkzeug=True,
    )
    logger.info("Shutting down server...")
