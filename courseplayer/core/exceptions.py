# courseplayer/core/exceptions.py
"""
Taxonomía de errores del reproductor de cursos.

Los errores de acceso son esperados y se resuelven con inicio de sesión o compra;
los errores de sincronización de progreso nunca bloquean la reproducción.
"""
from typing import Optional


class CoursePlayerException(Exception):
    """
    Clase base de los errores del reproductor
    """
    error_code = "player_error"

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code


# --- Errores del backend ---

class BackendError(CoursePlayerException):
    error_code = "backend_error"

    def __init__(self, message: str, status_code: Optional[int] = None, error_code: Optional[str] = None):
        super().__init__(message, error_code)
        self.status_code = status_code


class NetworkError(BackendError):
    """Falla de transporte o timeout; no hubo respuesta del backend."""
    error_code = "network_error"


class ServerError(BackendError):
    error_code = "server_error"


class NotFound(BackendError):
    error_code = "not_found"


class AuthRequired(BackendError):
    """Se requiere un token válido para la operación."""
    error_code = "auth_required"


# --- Errores del dominio ---

class AccessDenied(CoursePlayerException):
    """
    Video bloqueado. Es un resultado esperado: se resuelve con inicio
    de sesión o con la compra del curso.
    """
    error_code = "access_denied"

    def __init__(self, video_id: str, decision):
        super().__init__(f"Video {video_id} bloqueado: {decision.value}")
        self.video_id = video_id
        self.decision = decision


class MediaLoadError(CoursePlayerException):
    error_code = "media_load_error"


class RetryLimitExceeded(MediaLoadError):
    error_code = "retry_limit_exceeded"


class ProgressSyncError(CoursePlayerException):
    error_code = "progress_sync_error"


class CheckoutCreationFailed(CoursePlayerException):
    error_code = "checkout_creation_failed"


class InvalidTransition(CoursePlayerException):
    error_code = "invalid_transition"

    def __init__(self, operation: str, state):
        super().__init__(f"'{operation}' no está permitido en el estado {state.value}")
        self.operation = operation
        self.state = state
