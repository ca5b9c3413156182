# eventcast/log_config/logging_config.py

"""
Logging configuration for the event publication engine.

This configuration is used to initialize Python's logging module with a
dictionary-based setup. It defines formatters, handlers, and loggers for
the engine's components so that publication, queue, reminder and
attendance activity land in organized log files.

Uses RotatingFileHandler to automatically manage log file sizes and prevent
unlimited growth.
"""

import logging.config
import logging.handlers
import os

LOGGING_CONFIG = {
    'version': 1,
    'disable_existing_loggers': False,

    # Formatters define the layout of the log messages.
    'formatters': {
        'detailed': {
            'format': '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s'
        },
        'simple': {
            'format': '%(asctime)s [%(levelname)s] %(message)s'
        },
        'focused': {
            'format': '%(asctime)s [%(levelname)s] %(name)s - %(message)s'
        }
    },

    # Handlers specify where log messages are sent (e.g., console, files).
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'focused',
            'level': 'INFO',
        },
        'publications_file': {
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': 'logs/publications.log',
            'formatter': 'detailed',
            'level': 'INFO',
            'maxBytes': 10485760,   # 10MB
            'backupCount': 3,
            'encoding': 'utf-8'
        },
        'attendance_file': {
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': 'logs/attendance.log',
            'formatter': 'focused',
            'level': 'WARNING',     # Refresh runs every few seconds
            'maxBytes': 10485760,   # 10MB
            'backupCount': 2,
            'encoding': 'utf-8'
        },
        'db_file': {
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': 'logs/db_operations.log',
            'formatter': 'detailed',
            'level': 'ERROR',
            'maxBytes': 26214400,   # 25MB
            'backupCount': 2,
            'encoding': 'utf-8'
        },
        'errors_file': {
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': 'logs/errors.log',
            'formatter': 'detailed',
            'level': 'WARNING',
            'maxBytes': 26214400,   # 25MB
            'backupCount': 3,
            'encoding': 'utf-8'
        }
    },

    # Loggers define logging behavior for specific modules or components.
    'loggers': {
        'sqlalchemy.engine': {
            'handlers': ['db_file'],
            'level': 'ERROR',
            'propagate': False
        },
        'eventcast.services.publication_orchestrator': {
            'handlers': ['console', 'publications_file', 'errors_file'],
            'level': 'INFO',
            'propagate': False
        },
        'eventcast.services.publication_queue': {
            'handlers': ['console', 'publications_file', 'errors_file'],
            'level': 'INFO',
            'propagate': False
        },
        'eventcast.services.reminder_scheduler': {
            'handlers': ['console', 'publications_file', 'errors_file'],
            'level': 'INFO',
            'propagate': False
        },
        'eventcast.services.attendance_reconciler': {
            'handlers': ['attendance_file', 'errors_file'],
            'level': 'INFO',
            'propagate': False
        },
        'eventcast.realtime': {
            'handlers': ['console', 'attendance_file'],
            'level': 'INFO',
            'propagate': False
        },
        'eventcast.channels': {
            'handlers': ['console', 'errors_file'],
            'level': 'INFO',
            'propagate': False
        },
        'discord': {
            'handlers': ['console'],
            'level': 'WARNING',
            'propagate': False
        },
        'socketio': {
            'handlers': ['console'],
            'level': 'WARNING',
            'propagate': False
        },
        'engineio': {
            'handlers': ['console'],
            'level': 'WARNING',
            'propagate': False
        },
    },

    'root': {
        'handlers': ['console', 'errors_file'],
        'level': 'INFO',
    }
}


def configure_logging(log_dir='logs', config=None):
    """
    Apply the logging configuration, pointing file handlers at ``log_dir``.

    The directory is created if missing so RotatingFileHandler can open
    its files.
    """
    config = dict(config or LOGGING_CONFIG)
    handlers = {}
    for name, handler in config.get('handlers', {}).items():
        handler = dict(handler)
        if 'filename' in handler:
            handler['filename'] = os.path.join(log_dir, os.path.basename(handler['filename']))
        handlers[name] = handler
    config['handlers'] = handlers

    os.makedirs(log_dir, exist_ok=True)
    logging.config.dictConfig(config)
