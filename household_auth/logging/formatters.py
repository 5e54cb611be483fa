import logging
from household_auth.logging.log_levels import LogLevel

class BaseFormatter(logging.Formatter):
    """Formatter base com formato padrão"""
    def __init__(self, fmt=None):
        super().__init__(fmt or '%(asctime)s - %(name)s - %(levelname)s - %(message)s')

class ErrorFormatter(BaseFormatter):
    def __init__(self):
        super().__init__('[ERROR] %(asctime)s - %(name)s - %(message)s%(context)s')

class WarningFormatter(BaseFormatter):
    def __init__(self):
        super().__init__('[WARNING] %(asctime)s - %(name)s - %(message)s%(context)s')

class InfoFormatter(BaseFormatter):
    def __init__(self):
        super().__init__('[INFO] %(asctime)s - %(name)s - %(message)s%(context)s')

class RequestFormatter(BaseFormatter):
    def __init__(self):
        super().__init__('[REQUEST] %(asctime)s - %(message)s%(context)s')

class SlowFormatter(BaseFormatter):
    def __init__(self):
        super().__init__('[SLOW] %(asctime)s - %(name)s - %(message)s%(context)s')

class GreatFormatter(BaseFormatter):
    def __init__(self):
        super().__init__('[GREAT] %(asctime)s - %(name)s - %(message)s%(context)s')

class AuditFormatter(BaseFormatter):
    def __init__(self):
        super().__init__('[AUDIT] %(asctime)s - %(name)s - %(message)s%(context)s')

class DefaultFormatter(BaseFormatter):
    pass

_FORMATTERS = {
    LogLevel.ERROR: ErrorFormatter,
    LogLevel.WARNING: WarningFormatter,
    LogLevel.INFO: InfoFormatter,
    LogLevel.REQUEST: RequestFormatter,
    LogLevel.SLOW: SlowFormatter,
    LogLevel.GREAT: GreatFormatter,
    LogLevel.AUDIT: AuditFormatter,
}

def get_formatter_for_level(level: LogLevel) -> logging.Formatter:
    """Retorna o formatter apropriado para o nível de log"""
    return _FORMATTERS.get(level, DefaultFormatter)()
