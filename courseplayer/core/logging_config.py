# courseplayer/core/logging_config.py
import json
import logging
import logging.config
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from courseplayer.core.config import settings

# Campos que los módulos pasan en `extra` y que se copian al JSON
STRUCTURED_EXTRAS = (
    "service",
    "endpoint",
    "method",
    "status_code",
    "response_time_ms",
    "user_id",
    "course_id",
    "video_id",
    "error_code",
)

MAX_LOG_BYTES = 10 * 1024 * 1024


class StructuredFormatter(logging.Formatter):
    """
    Una línea JSON por registro, con los campos de contexto del reproductor
    cuando vienen en el registro.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update({key: getattr(record, key) for key in STRUCTURED_EXTRAS if hasattr(record, key)})

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


def _rotating_file(path: Path, level: str, backups: int = 10) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "formatter": "structured",
        "filename": str(path),
        "maxBytes": MAX_LOG_BYTES,
        "backupCount": backups,
        "encoding": "utf-8",
        "level": level,
    }


def build_logging_config(log_dir: Path, level: str = "INFO") -> Dict[str, Any]:
    """
    Diccionario para dictConfig. Los servicios del reproductor escriben en
    player.log; el resto del paquete en app.log; todo error va además a errors.log.
    """
    def logger_entry(*handlers: str) -> Dict[str, Any]:
        return {"level": level, "handlers": list(handlers), "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {"()": StructuredFormatter},
            "console": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "console",
                "stream": "ext://sys.stdout",
                "level": level,
            },
            "app_file": _rotating_file(log_dir / "app.log", level),
            "player_file": _rotating_file(log_dir / "player.log", level, backups=5),
            "error_file": _rotating_file(log_dir / "errors.log", "ERROR"),
        },
        "loggers": {
            "courseplayer": logger_entry("console", "app_file", "error_file"),
            "courseplayer.services": logger_entry("console", "player_file", "error_file"),
            "courseplayer.requests": logger_entry("app_file", "error_file"),
            "uvicorn": {"level": "INFO", "handlers": ["console"], "propagate": False},
        },
        "root": {"level": "WARNING", "handlers": ["console"]},
    }


def setup_logging(log_dir: Optional[str] = None, level: Optional[str] = None) -> None:
    directory = Path(log_dir or settings.LOG_DIR)
    directory.mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(build_logging_config(directory, (level or settings.LOG_LEVEL).upper()))
    logging.getLogger("courseplayer").info(f"Logging configurado en {directory.absolute()}")


class LoggerAdapter(logging.LoggerAdapter):
    """
    Agrega el contexto fijo (servicio, usuario, curso) a cada registro sin
    pisar los `extra` propios de la llamada.
    """

    def process(self, msg: str, kwargs: Dict[str, Any]):
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def get_player_logger(name: str = "courseplayer.services", **context: Any) -> LoggerAdapter:
    extra = {"service": "player"}
    extra.update({key: value for key, value in context.items() if value is not None})
    return LoggerAdapter(logging.getLogger(name), extra)


def log_backend_call(
    logger: logging.Logger,
    method: str,
    endpoint: str,
    status_code: Optional[int] = None,
    response_time_ms: Optional[int] = None,
    **context: Any,
) -> None:
    """
    Registra una llamada al backend REST. Sin `status_code` la llamada no
    obtuvo respuesta (falla de transporte o timeout).
    """
    extra = {"service": "backend", "method": method, "endpoint": endpoint, **context}
    if status_code is not None:
        extra["status_code"] = status_code
    if response_time_ms is not None:
        extra["response_time_ms"] = response_time_ms

    if status_code is None or status_code >= 500:
        logger.warning(f"Backend sin respuesta válida: {method} {endpoint}", extra=extra)
    elif status_code >= 400:
        logger.info(f"Backend rechazó la petición: {method} {endpoint} -> {status_code}", extra=extra)
    else:
        logger.debug(f"Backend: {method} {endpoint} -> {status_code}", extra=extra)
