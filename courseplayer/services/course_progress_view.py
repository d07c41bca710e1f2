# courseplayer/services/course_progress_view.py
"""
Vista del progreso agregado de un curso (tarjeta del dashboard, encabezado
del playlist). Carga el agregado una vez y luego se actualiza con los
eventos del canal de progreso, sin volver a consultar al backend.
"""
import logging
from typing import Optional

from courseplayer.core.exceptions import BackendError, ProgressSyncError
from courseplayer.schemas.progress import CourseProgress, ProgressEvent
from courseplayer.services.backend_client import BackendClient
from courseplayer.services.progress_bus import ProgressBus, Subscription, progress_bus

logger = logging.getLogger(__name__)


class CourseProgressView:
    def __init__(
        self,
        client: BackendClient,
        course_id: str,
        user_id: str,
        token: Optional[str],
        bus: ProgressBus = progress_bus,
    ):
        self.client = client
        self.course_id = course_id
        self.user_id = user_id
        self.token = token
        self.bus = bus
        self.course_progress: Optional[CourseProgress] = None
        self.error: Optional[ProgressSyncError] = None
        self._subscription: Optional[Subscription] = bus.subscribe(user_id, course_id, self._on_event)

    async def load(self) -> Optional[CourseProgress]:
        if not self.token:
            return self.course_progress
        try:
            loaded = await self.client.get_course_progress(self.course_id, self.token)
        except BackendError as e:
            # Se conserva el último valor conocido
            self.error = ProgressSyncError(f"Lectura del curso falló: {e.message}", e.error_code)
            logger.warning(f"No se pudo cargar progreso del curso {self.course_id}: {e.message}")
            return self.course_progress

        self.error = None
        if loaded is not None:
            self._apply(loaded)
        return self.course_progress

    def _apply(self, incoming: CourseProgress) -> None:
        current = self.course_progress
        if current is not None and current.is_authoritative and not incoming.is_authoritative:
            # Un agregado local no reemplaza al del backend; solo aporta completitud
            if incoming.is_completed:
                current.is_completed = True
            return
        accepted = incoming.model_copy()
        if current is not None and current.is_completed:
            accepted.is_completed = True
        self.course_progress = accepted

    def _on_event(self, event: ProgressEvent) -> None:
        if event.course_progress is not None:
            self._apply(event.course_progress)

    @property
    def percentage(self) -> int:
        return self.course_progress.rounded_percentage if self.course_progress else 0

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def __enter__(self) -> "CourseProgressView":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
