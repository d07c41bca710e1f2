# courseplayer/core/metrics.py
from prometheus_client import Counter

PROGRESS_FLUSHES_TOTAL = Counter(
    "courseplayer_progress_flushes_total",
    "Escrituras de progreso enviadas al backend",
    ["outcome"],
)

MEDIA_ERRORS_TOTAL = Counter(
    "courseplayer_media_errors_total",
    "Fallas de carga o reproducción de video",
)

CHECKOUT_SESSIONS_TOTAL = Counter(
    "courseplayer_checkout_sessions_total",
    "Intentos de creación de sesión de pago",
    ["outcome"],
)
