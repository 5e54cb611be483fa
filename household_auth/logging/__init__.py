"""
Módulo de logging customizado
"""
from household_auth.logging.custom_logger import CustomLogger, get_logger
from household_auth.logging.log_levels import LogLevel

__all__ = [
    'CustomLogger',
    'LogLevel',
    'get_logger',
]
