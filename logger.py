# logger.py - Centralized logging configuration
import os
import logging
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]"


def log_dir():
    path = os.environ.get("LOG_DIR", "logs")
    if not os.path.exists(path):
        os.makedirs(path, exist_ok=True)
    return path


def file_handler(log_file, level=logging.INFO):
    handler = RotatingFileHandler(log_file, maxBytes=1024 * 1024, backupCount=10, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.setLevel(level)
    return handler


def setup_logger(name, log_file=None, level=logging.INFO):
    """Set up a logger with file rotation"""
    if not log_file:
        log_file = os.path.join(log_dir(), f"{name}.log")

    logger = logging.getLogger(name)

    # Avoid adding handlers multiple times
    if not logger.handlers:
        logger.setLevel(level)
        logger.addHandler(file_handler(log_file, level))

        # Console handler for development
        if os.environ.get("FLASK_ENV") != "production":
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.DEBUG)
            console_handler.setFormatter(logging.Formatter(
                "%(name)s - %(levelname)s - %(message)s"
            ))
            logger.addHandler(console_handler)

    return logger


def configure_app_logging(app):
    """Attach the rotating file handler to app.logger (replaces Flask's default handler)."""
    level = logging.DEBUG if app.debug else logging.INFO
    path = os.path.join(app.config.get("LOG_DIR") or log_dir(), "app.log")
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    for handler in list(app.logger.handlers):
        handler.close()
    app.logger.handlers.clear()
    app.logger.addHandler(file_handler(path, level))
    app.logger.setLevel(level)
    app.logger.propagate = False

    if app.debug:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        app.logger.addHandler(console_handler)


# Create global loggers
commission_logger = setup_logger("commissions")
ledger_logger = setup_logger("ledger")
