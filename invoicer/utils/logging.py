"""
invoicer/utils/logging.py
─────────────────────────
Configures structured logging for production.
"""
import os
import logging
from logging.handlers import RotatingFileHandler
from flask import has_request_context, request, session


class RequestFormatter(logging.Formatter):
    """
    Injects request info (URL, IP, session user) into the record when a
    request context is active.
    """
    def format(self, record):
        if has_request_context():
            record.url = request.url
            record.remote_addr = request.remote_addr
            record.user_id = session.get('user_id')
        else:
            record.url = None
            record.remote_addr = None
            record.user_id = None
        return super().format(record)


def setup_logging(app):
    """
    Configure rotating file logging: logs/app.log
    Max size: 5MB
    Backup count: 5 files
    Format: timestamp | level | module | ip | user | url | message
    """
    handlers = []

    # 1. File Logger (skipped under tests and on read-only filesystems)
    if not app.config.get('TESTING'):
        try:
            log_dir = app.config.get('LOG_DIR') or os.path.join(app.root_path, '..', 'logs')
            os.makedirs(log_dir, exist_ok=True)

            file_handler = RotatingFileHandler(
                os.path.join(log_dir, 'app.log'),
                maxBytes=5 * 1024 * 1024,
                backupCount=5
            )
            file_handler.setFormatter(RequestFormatter(
                '%(asctime)s | %(levelname)s | %(name)s | %(remote_addr)s | '
                'user=%(user_id)s | %(url)s | %(message)s'
            ))
            file_handler.setLevel(logging.INFO)
            handlers.append(file_handler)
        except OSError:
            app.logger.warning("File logging disabled: log directory is not writable")

    # 2. Stdout Logger (container / platform logs)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
    ))
    stream_handler.setLevel(logging.INFO)
    handlers.append(stream_handler)

    # app.logger is the 'invoicer' logger, so module loggers propagate into it.
    # create_app() runs once per test; don't stack duplicate handlers.
    for handler in handlers:
        if not any(type(h) is type(handler) for h in app.logger.handlers):
            app.logger.addHandler(handler)

    app.logger.setLevel(logging.INFO)
    app.logger.info("Invoicer startup")
