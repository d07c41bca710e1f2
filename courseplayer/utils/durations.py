# courseplayer/utils/durations.py
"""
Normalización y agregación de duraciones de video.

El backend envía la duración como segundos numéricos, pero catálogos y
tarjetas antiguas la envían ya formateada ("12:34", "1:02:03"). Toda
duración se normaliza a segundos al ingresar, antes de sumar.
"""
import logging
import math
import re
from typing import Any, Iterable, Union

logger = logging.getLogger(__name__)

DurationInput = Union[int, float, str, None]

_NUMERIC_RE = re.compile(r"^\d+(\.\d+)?$")
_CLOCK_RE = re.compile(r"^(\d+):([0-5]?\d)(?::([0-5]?\d))?$")


def parse_duration(value: DurationInput) -> float:
    """
    Convierte una duración a segundos.

    Acepta segundos numéricos, cadenas numéricas y cadenas "M:SS" o "H:MM:SS".
    Valores negativos, vacíos, no finitos o no reconocidos valen 0.
    """
    if value is None or isinstance(value, bool):
        return 0.0

    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value < 0:
            return 0.0
        return float(value)

    if not isinstance(value, str):
        logger.debug(f"Tipo de duración no soportado: {type(value).__name__}")
        return 0.0

    text = value.strip()
    if not text:
        return 0.0

    if _NUMERIC_RE.match(text):
        return float(text)

    match = _CLOCK_RE.match(text)
    if not match:
        logger.debug(f"Duración no reconocida: {value!r}")
        return 0.0

    first, second, third = match.groups()
    if third is None:
        # M:SS
        return float(int(first) * 60 + int(second))
    # H:MM:SS
    return float(int(first) * 3600 + int(second) * 60 + int(third))


def _duration_of(item: Any) -> DurationInput:
    if hasattr(item, "duration_seconds"):
        return item.duration_seconds
    if isinstance(item, dict):
        return item.get("duration")
    return item


def total_seconds(videos: Iterable[Any]) -> float:
    """
    Suma las duraciones de una colección de videos.

    Cada elemento puede ser un modelo con `duration_seconds`, un dict con
    la llave "duration" o directamente un valor de duración.
    """
    return sum((parse_duration(_duration_of(item)) for item in videos), 0.0)


def format_duration(seconds: DurationInput) -> str:
    """
    Formatea segundos como "H:MM:SS", o "M:SS" si el total es menor a una hora.
    """
    total = int(math.floor(parse_duration(seconds)))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_total_duration(videos: Iterable[Any]) -> str:
    return format_duration(total_seconds(videos))
