# courseplayer/services/purchase.py
"""
Orquestador de compra: crea la sesión de checkout y entrega la URL del
proveedor de pago. No consulta el resultado del pago; el estado de compra
se vuelve a leer cuando el usuario regresa.
"""
import enum
import logging
import time
from typing import Callable, Optional

from courseplayer.core.config import settings
from courseplayer.core.exceptions import AuthRequired, BackendError, CheckoutCreationFailed, InvalidTransition
from courseplayer.core.metrics import CHECKOUT_SESSIONS_TOTAL
from courseplayer.schemas.course import CheckoutSession
from courseplayer.schemas.player import PurchaseSnapshot
from courseplayer.services.backend_client import BackendClient

logger = logging.getLogger(__name__)

ALREADY_OWNED_ERROR = "already_owned"


class PurchaseState(str, enum.Enum):
    IDLE = "idle"
    PROCESSING = "processing"


def _is_already_owned(error: BackendError) -> bool:
    return error.status_code == 400 and "already own" in error.message.lower()


class PurchaseOrchestrator:
    def __init__(
        self,
        client: BackendClient,
        token: Optional[str] = None,
        error_display_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.token = token
        self.error_display_seconds = (
            error_display_seconds if error_display_seconds is not None
            else settings.CHECKOUT_ERROR_DISPLAY_SECONDS
        )
        self.clock = clock
        self.state = PurchaseState.IDLE
        self.pending_course_id: Optional[str] = None
        self._error_message: Optional[str] = None
        self._error_at: float = 0.0

    @property
    def error_message(self) -> Optional[str]:
        """Mensaje de la última falla; desaparece pasado el tiempo de despliegue."""
        if self._error_message is None:
            return None
        if self.clock() - self._error_at >= self.error_display_seconds:
            self._error_message = None
        return self._error_message

    async def initiate(self, course_id: str) -> CheckoutSession:
        """
        Crea la sesión de pago del curso. Sin token falla con AuthRequired;
        la navegación a inicio de sesión le corresponde al llamador.
        """
        if not self.token:
            raise AuthRequired("Inicia sesión para comprar el curso")
        if self.state == PurchaseState.PROCESSING:
            raise InvalidTransition("purchase", self.state)

        self.state = PurchaseState.PROCESSING
        self._error_message = None
        try:
            session = await self.client.create_checkout_session(course_id, self.token)
        except BackendError as e:
            CHECKOUT_SESSIONS_TOTAL.labels(outcome="failure").inc()
            self._error_message = e.message
            self._error_at = self.clock()
            logger.error(f"No se pudo crear la sesión de pago: course={course_id}, error={e.message}")
            error_code = ALREADY_OWNED_ERROR if _is_already_owned(e) else None
            raise CheckoutCreationFailed(e.message, error_code) from e
        finally:
            # El botón vuelve a estar disponible con éxito o con falla
            self.state = PurchaseState.IDLE

        CHECKOUT_SESSIONS_TOTAL.labels(outcome="success").inc()
        self.pending_course_id = course_id
        logger.info(f"Sesión de pago creada: course={course_id}, session={session.session_id}")
        return session

    def complete_return(self) -> Optional[str]:
        """Curso del checkout pendiente, que se olvida al regresar el usuario."""
        course_id = self.pending_course_id
        self.pending_course_id = None
        return course_id

    def snapshot(self) -> PurchaseSnapshot:
        return PurchaseSnapshot(
            state=self.state.value,
            error_message=self.error_message,
            pending_course_id=self.pending_course_id,
        )
