"""
Logging setup for the Flask app.

Everything logs through ``app.logger`` (services use ``current_app.logger``).
A stream handler is always attached; a rotating file handler is added when
LOG_FILE is configured.
"""
import logging
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(app) -> None:
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    formatter = logging.Formatter(LOG_FORMAT)

    if not any(getattr(h, "_salon_handler", False) for h in app.logger.handlers):
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        stream_handler._salon_handler = True
        app.logger.addHandler(stream_handler)

        log_file = app.config.get("LOG_FILE")
        if log_file:
            # 5MB x 5 files
            file_handler = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=5)
            file_handler.setFormatter(formatter)
            file_handler._salon_handler = True
            app.logger.addHandler(file_handler)

    app.logger.setLevel(level)
