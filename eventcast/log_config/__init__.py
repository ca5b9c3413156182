from .logging_config import LOGGING_CONFIG, configure_logging

__all__ = ['LOGGING_CONFIG', 'configure_logging']
