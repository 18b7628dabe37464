import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask
from flask.logging import default_handler


def configure_logging(app):
    """Configure application logging"""

    log_file = app.config['LOG_FILE']

    # Create logs directory if it doesn't exist
    log_dir = os.path.dirname(os.path.abspath(log_file))
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    # Drop handlers from a previous app instance (tests build many apps)
    for handler in list(app.logger.handlers):
        app.logger.removeHandler(handler)
        if handler is not default_handler:
            handler.close()

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    file_handler.setFormatter(file_formatter)

    # The app logger is the 'rotabackup' package logger, parent of every module logger
    app.logger.setLevel(log_level)
    app.logger.addHandler(console_handler)
    app.logger.addHandler(file_handler)

    app.logger.debug(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(config_name=None, overrides=None):
    """
    Flask application factory.

    Configuration is layered: config class, then the backup.config file,
    then ``overrides``.
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('ROTABACKUP_ENV', 'production')

    from rotabackup.config import config, load_config_file
    app.config.from_object(config[config_name])

    config_file = (overrides or {}).get('CONFIG_FILE', app.config.get('CONFIG_FILE'))
    file_values = {}
    if config_file:
        try:
            file_values = load_config_file(config_file)
        except FileNotFoundError:
            file_values = None
        app.config.update(file_values or {})

    if overrides:
        app.config.update(overrides)

    # Configure logging
    configure_logging(app)

    if file_values is None:
        app.logger.warning(f"Configuration file {config_file} not found, using defaults")
    elif config_file:
        app.logger.debug(f"Loaded configuration from {config_file}")

    # Register the command dispatcher
    from rotabackup.cli import backup_cli
    app.cli.add_command(backup_cli)

    return app
