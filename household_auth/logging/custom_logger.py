"""
Custom Logger com níveis: warning, info, request, error, slow, great, audit

Context passed as keyword arguments is appended to the message as key=value
pairs and kept on the record as "custom_data" for structured handlers.
"""
import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Dict

from household_auth.logging.log_levels import LogLevel
from household_auth.logging.formatters import get_formatter_for_level
from household_auth.helpers.getters import isDebugMode

# Keys never written to the log, whatever the caller passes
_REDACTED_KEYS = {"code", "code_preview", "token", "temp_token", "device_token", "refresh_token", "secret"}


class LevelFormatter(logging.Formatter):
    """Dispatches to the formatter of the record's custom level."""

    def format(self, record: logging.LogRecord) -> str:
        level = getattr(record, "custom_level", None)
        if not hasattr(record, "context"):
            record.context = ""
        return get_formatter_for_level(level).format(record)


class CustomLogger:
    """
    Logger customizado

    Uso:
        logger = CustomLogger("my_module")
        logger.info("Código enviado", user_id=123, method="email")
        logger.error("Falha ao enviar SMS", exc_info=True)
        logger.slow("Request lenta", duration=5.2, path="/api/auth/login-code")
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG if isDebugMode() else logging.INFO)
        self.logger.propagate = False

        # Remove handlers existentes para evitar duplicação
        self.logger.handlers.clear()

        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(LevelFormatter())
        self.logger.addHandler(console_handler)

    def _log(
        self,
        level: LogLevel,
        message: str,
        exc_info: bool = False,
        **context: Any
    ) -> None:
        """Método interno de logging"""
        safe_context = {
            key: ("[FILTERED]" if key in _REDACTED_KEYS else value)
            for key, value in context.items()
        }
        log_data = {
            "level": level.value,
            "module": self.name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **safe_context
        }

        if exc_info:
            log_data["traceback"] = self._get_clean_traceback()

        rendered_context = "".join(f" | {key}={value}" for key, value in safe_context.items())

        # Mapeia para níveis padrão do logging
        log_level_map = {
            LogLevel.WARNING: logging.WARNING,
            LogLevel.INFO: logging.INFO,
            LogLevel.REQUEST: logging.INFO,
            LogLevel.ERROR: logging.ERROR,
            LogLevel.SLOW: logging.WARNING,
            LogLevel.GREAT: logging.INFO,
            LogLevel.AUDIT: logging.INFO,
        }

        self.logger.log(
            log_level_map[level],
            message,
            extra={"custom_data": log_data, "custom_level": level, "context": rendered_context},
            exc_info=exc_info
        )

    def _get_clean_traceback(self) -> str:
        """
        Extrai traceback limpo, removendo duplicações e frames internos
        """
        tb_lines = traceback.format_exc().split('\n')

        seen = set()
        clean_lines = []

        for line in tb_lines:
            if line.strip() and line not in seen:
                if not any(skip in line for skip in ['/usr/local/lib/python', 'site-packages']):
                    seen.add(line)
                    clean_lines.append(line)

        return '\n'.join(clean_lines)

    def warning(self, message: str, **context: Any) -> None:
        """
        Situações que merecem atenção mas não são erros

        Exemplo:
            logger.warning("Código incorreto", user_id=123, attempts=2)
        """
        self._log(LogLevel.WARNING, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(LogLevel.INFO, message, **context)

    def request(
        self,
        message: str,
        method: str,
        path: str,
        status_code: int,
        duration: float,
        **context: Any
    ) -> None:
        """
        Log de requisição HTTP

        Exemplo:
            logger.request(
                "API request",
                method="POST",
                path="/api/auth/verify-login-code",
                status_code=200,
                duration=0.152
            )
        """
        self._log(
            LogLevel.REQUEST,
            message,
            method=method,
            path=path,
            status_code=status_code,
            duration=duration,
            **context
        )

    def error(
        self,
        message: str,
        exc_info: bool = True,
        **context: Any
    ) -> None:
        """
        Falhas que requerem atenção imediata

        Exemplo:
            try:
                ...
            except httpx.HTTPError:
                logger.error("Falha ao enviar SMS", exc_info=True, user_id=456)
        """
        self._log(LogLevel.ERROR, message, exc_info=exc_info, **context)

    def slow(
        self,
        message: str,
        duration: float,
        threshold: float = 1.0,
        **context: Any
    ) -> None:
        self._log(
            LogLevel.SLOW,
            message,
            duration=duration,
            threshold=threshold,
            **context
        )

    def great(self, message: str, **context: Any) -> None:
        """
        Eventos positivos importantes

        Exemplo:
            logger.great("2FA ativado", user_id=42)
        """
        self._log(LogLevel.GREAT, message, **context)

    def audit(self, message: str, **context: Any) -> None:
        """
        Security-relevant decisions that must be traceable later
        (account linking, trusted devices, revocations).
        """
        self._log(LogLevel.AUDIT, message, **context)


_loggers: Dict[str, CustomLogger] = {}


def get_logger(name: str) -> CustomLogger:
    """
    Obtém uma instância do logger customizado

    Uso:
        from household_auth.logging import get_logger
        logger = get_logger(__name__)
    """
    if name not in _loggers:
        _loggers[name] = CustomLogger(name)
    return _loggers[name]
