# courseplayer/services/progress_tracker.py
"""
Seguimiento del progreso de reproducción de un curso.

- Cada time update actualiza el progreso local; la escritura al backend se
  hace con una cadencia acotada y siempre en pausa, cambio de video y cierre.
- Toda respuesta lleva un número de secuencia tomado al emitir la petición;
  una respuesta más vieja que la última actualización aplicada se descarta,
  salvo la completitud, que es pegajosa.
- Una lectura fallida conserva el último valor conocido; una escritura
  fallida se reintenta en el siguiente punto natural de flush.
"""
import asyncio
import itertools
import logging
import time
import uuid
from typing import Callable, Dict, Iterable, List, Optional, Set

from courseplayer.core.config import settings
from courseplayer.core.exceptions import BackendError, ProgressSyncError
from courseplayer.core.metrics import PROGRESS_FLUSHES_TOTAL
from courseplayer.crud.crud_snapshot import SnapshotStore
from courseplayer.schemas.course import Video
from courseplayer.schemas.progress import CourseProgress, Progress, ProgressEvent, ProgressUpdateRequest
from courseplayer.services.backend_client import BackendClient
from courseplayer.services.progress_bus import ProgressBus, Subscription, progress_bus

logger = logging.getLogger(__name__)

ANONYMOUS_VIEWER = "anonymous"


class ProgressTracker:
    def __init__(
        self,
        client: BackendClient,
        course_id: str,
        user_id: Optional[str] = None,
        token: Optional[str] = None,
        bus: ProgressBus = progress_bus,
        snapshot_store: Optional[SnapshotStore] = None,
        flush_interval: Optional[float] = None,
        completion_threshold: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.course_id = course_id
        self.user_id = user_id
        self.token = token
        self.bus = bus
        self.snapshot_store = snapshot_store
        self.flush_interval = (
            flush_interval if flush_interval is not None else settings.PROGRESS_FLUSH_INTERVAL_SECONDS
        )
        self.completion_threshold = (
            completion_threshold if completion_threshold is not None else settings.VIDEO_COMPLETION_THRESHOLD
        )
        self.clock = clock
        self.origin = uuid.uuid4().hex[:12]

        self.active_video_id: Optional[str] = None
        self.last_sync_error: Optional[ProgressSyncError] = None

        self._video_ids: List[str] = []
        self._durations: Dict[str, float] = {}
        self._progress: Dict[str, Progress] = {}
        self._current_percentage: Dict[str, int] = {}
        self._dirty: Set[str] = set()
        self._tickets = itertools.count(1)
        self._applied: Dict[str, int] = {}
        self._course_applied = 0
        self._course_progress: Optional[CourseProgress] = None
        self._last_flush_at: Dict[str, float] = {}
        self._flush_tasks: Dict[str, asyncio.Task] = {}
        self._subscription: Optional[Subscription] = self.bus.subscribe(
            self.scope_user, self.course_id, self._on_bus_event
        )

    @property
    def scope_user(self) -> str:
        # Cada vista anónima tiene su propio alcance en el canal
        return self.user_id or f"{ANONYMOUS_VIEWER}:{self.origin}"

    @property
    def can_persist(self) -> bool:
        return bool(self.token and self.user_id)

    def reserve_ticket(self) -> int:
        """Número de secuencia para una lectura que está por emitirse."""
        return next(self._tickets)

    # --- Lectura ---

    def current_progress(self, video_id: str) -> Optional[Progress]:
        return self._progress.get(video_id)

    def current_percentage(self, video_id: str) -> int:
        """Posición actual como porcentaje del video (no el progreso visto)."""
        return self._current_percentage.get(video_id, 0)

    def progress_by_video(self) -> Dict[str, Progress]:
        return dict(self._progress)

    def is_dirty(self, video_id: str) -> bool:
        return video_id in self._dirty

    def course_progress(self) -> CourseProgress:
        """
        Agregado del curso: el del backend si existe; si no, uno calculado
        con el progreso local.
        """
        if self._course_progress is not None and self._course_progress.is_authoritative:
            return self._course_progress

        total = len(self._video_ids)
        records = [self._progress.get(video_id) or Progress() for video_id in self._video_ids]
        completed = sum(1 for record in records if record.is_completed)
        percentage = (
            round(sum(record.completion_percentage for record in records) / total) if total else 0
        )
        local = CourseProgress(
            total_videos=total,
            completed_videos=completed,
            course_progress_percentage=percentage,
            last_watched_video=self.active_video_id,
            last_watched_position=(
                self._progress[self.active_video_id].last_position
                if self.active_video_id in self._progress else 0.0
            ),
            total_watched_duration=sum(record.watched_duration for record in records),
            course_total_duration=sum(self._durations.get(video_id, 0.0) for video_id in self._video_ids),
        )
        if self._course_progress is not None and self._course_progress.is_completed:
            local.is_completed = True
        return local

    # --- Ingreso de datos del backend ---

    def seed(self, videos: Iterable[Video], ticket: Optional[int] = None) -> None:
        """
        Registra los videos del curso con el progreso que trajo la consulta
        de acceso. `ticket` debe reservarse antes de emitir esa consulta.
        """
        ticket = ticket if ticket is not None else self.reserve_ticket()
        self._video_ids = []
        for video in videos:
            self._video_ids.append(video.id)
            self._durations[video.id] = video.duration_seconds
            self._accept(video.id, video.progress, ticket)

    def _accept(self, video_id: str, incoming: Progress, ticket: int) -> bool:
        current = self._progress.get(video_id)

        if ticket <= self._applied.get(video_id, 0):
            if current is not None:
                merged = current.absorb_completion(incoming)
                if merged is not current:
                    self._progress[video_id] = merged
            logger.debug(
                f"Respuesta de progreso desactualizada descartada: video={video_id}, ticket={ticket}"
            )
            return False

        self._applied[video_id] = ticket
        merged = current.absorb(incoming) if current is not None else incoming
        if current is not None and video_id == self.active_video_id:
            # La posición visible no retrocede mientras la sesión avanza
            merged.last_position = max(current.last_position, merged.last_position)
        self._progress[video_id] = merged
        return True

    def _accept_course(self, incoming: CourseProgress, ticket: int) -> bool:
        previous = self._course_progress
        if ticket <= self._course_applied:
            if previous is not None and incoming.is_completed and not previous.is_completed:
                previous.is_completed = True
            return False

        self._course_applied = ticket
        accepted = incoming.model_copy()
        accepted.is_authoritative = True
        if previous is not None and previous.is_completed:
            accepted.is_completed = True
        self._course_progress = accepted
        return True

    # --- Eventos de reproducción ---

    def activate(self, video_id: str) -> None:
        self.active_video_id = video_id

    def deactivate(self, video_id: str) -> None:
        if self.active_video_id == video_id:
            self.active_video_id = None

    def on_time_update(self, video_id: str, current_time: float, duration: float) -> Progress:
        current_time = max(0.0, float(current_time or 0))
        duration = max(0.0, float(duration or 0))
        previous = self._progress.get(video_id) or Progress(total_duration=duration)

        total = duration if duration > 0 else previous.total_duration
        if duration > 0:
            self._current_percentage[video_id] = min(100, round(current_time / duration * 100))

        watched = max(previous.watched_duration, current_time)
        if total > 0:
            watched_percentage = min(100, round(watched / total * 100))
        else:
            watched_percentage = previous.watched_percentage
        completed = previous.is_completed or (total > 0 and watched_percentage >= self.completion_threshold)

        updated = Progress(
            watched_duration=watched,
            total_duration=total,
            watched_percentage=watched_percentage,
            completion_percentage=watched_percentage,
            is_completed=completed,
            last_position=current_time,
        )
        self._applied[video_id] = self.reserve_ticket()
        self._progress[video_id] = updated
        self._dirty.add(video_id)

        if (
            round(updated.watched_percentage) != round(previous.watched_percentage)
            or updated.is_completed != previous.is_completed
        ):
            self._publish(video_id, source="local")

        self._maybe_schedule_flush(video_id)
        return updated

    def _maybe_schedule_flush(self, video_id: str) -> None:
        now = self.clock()
        last = self._last_flush_at.setdefault(video_id, now)
        if now - last < self.flush_interval:
            return
        pending = self._flush_tasks.get(video_id)
        if pending is not None and not pending.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Sin loop activo: se escribe en el siguiente punto natural
            return
        self._last_flush_at[video_id] = now
        self._flush_tasks[video_id] = loop.create_task(self.flush(video_id))

    # --- Escritura ---

    async def flush(self, video_id: str) -> bool:
        """
        Escribe el progreso pendiente del video. Devuelve False si la
        escritura falló; el video queda pendiente para el siguiente flush.
        Escrituras concurrentes son válidas: la secuencia decide cuál se aplica.
        """
        if video_id not in self._dirty:
            return True

        progress = self._progress[video_id]
        if not self.can_persist:
            self._dirty.discard(video_id)
            await self._save_snapshot(video_id, progress)
            return True

        # La secuencia se toma antes de ceder el loop al snapshot
        ticket = self.reserve_ticket()
        self._dirty.discard(video_id)
        self._last_flush_at[video_id] = self.clock()
        update = ProgressUpdateRequest(
            course_id=self.course_id,
            video_id=video_id,
            watched_duration=progress.watched_duration,
            total_duration=progress.total_duration,
            timestamp=progress.last_position,
        )
        await self._save_snapshot(video_id, progress)

        try:
            result = await self.client.update_progress(update, self.token)
        except BackendError as e:
            self._dirty.add(video_id)
            self.last_sync_error = ProgressSyncError(f"Flush de progreso falló: {e.message}", e.error_code)
            PROGRESS_FLUSHES_TOTAL.labels(outcome="failure").inc()
            logger.warning(
                f"No se pudo guardar progreso: course={self.course_id}, video={video_id}, error={e.message}"
            )
            return False

        PROGRESS_FLUSHES_TOTAL.labels(outcome="success").inc()
        self.last_sync_error = None
        if result.progress is not None:
            self._accept(video_id, result.progress, ticket)
        if result.course_progress is not None:
            self._accept_course(result.course_progress, ticket)

        await self._save_snapshot(video_id, self._progress[video_id])
        self._publish(video_id, source="flush", sequence=ticket)
        return True

    async def flush_all(self) -> bool:
        results = [await self.flush(video_id) for video_id in list(self._dirty)]
        return all(results)

    async def refresh(self, video_id: str) -> Optional[Progress]:
        """
        Relee el progreso del video. Si falla, conserva el último valor
        conocido o, en su defecto, el snapshot local.
        """
        if not self.can_persist:
            return self.current_progress(video_id)

        ticket = self.reserve_ticket()
        try:
            progress = await self.client.get_video_progress(self.course_id, video_id, self.token)
        except BackendError as e:
            self.last_sync_error = ProgressSyncError(f"Lectura de progreso falló: {e.message}", e.error_code)
            logger.warning(f"No se pudo leer progreso: video={video_id}, error={e.message}")
            snapshot = await self._load_snapshot(video_id)
            current = self._progress.get(video_id)
            if snapshot is not None and (current is None or current.is_blank):
                self._progress[video_id] = snapshot
            return self.current_progress(video_id)

        if progress is not None and self._accept(video_id, progress, ticket):
            await self._save_snapshot(video_id, self._progress[video_id])
            self._publish(video_id, source="fetch", sequence=ticket)
        return self.current_progress(video_id)

    async def refresh_course(self) -> CourseProgress:
        if not self.can_persist:
            return self.course_progress()

        ticket = self.reserve_ticket()
        try:
            course_progress = await self.client.get_course_progress(self.course_id, self.token)
        except BackendError as e:
            self.last_sync_error = ProgressSyncError(f"Lectura del curso falló: {e.message}", e.error_code)
            logger.warning(f"No se pudo leer progreso del curso {self.course_id}: {e.message}")
            return self.course_progress()

        if course_progress is not None and self._accept_course(course_progress, ticket):
            self._publish(None, source="fetch", sequence=ticket)
        return self.course_progress()

    async def restore_snapshots(self) -> int:
        """
        Carga snapshots locales para los videos sin progreso conocido. Se usa
        cuando el backend de progreso no respondió.
        """
        if self.snapshot_store is None or not self.user_id:
            return 0
        restored = 0
        snapshots = await asyncio.to_thread(self.snapshot_store.load_course, self.user_id, self.course_id)
        for video_id, snapshot in snapshots.items():
            current = self._progress.get(video_id)
            if video_id in self._video_ids and (current is None or current.is_blank):
                self._progress[video_id] = snapshot
                restored += 1
        return restored

    # --- Notificaciones ---

    def _publish(self, video_id: Optional[str], source: str, sequence: int = 0) -> None:
        event = ProgressEvent(
            user_id=self.scope_user,
            course_id=self.course_id,
            video_id=video_id,
            progress=self._progress.get(video_id) if video_id else None,
            course_progress=self.course_progress(),
            source=source,
            origin=self.origin,
            sequence=sequence,
        )
        self.bus.publish(event)

    def _on_bus_event(self, event: ProgressEvent) -> None:
        if event.origin == self.origin:
            return

        if event.course_progress is not None and event.course_progress.is_authoritative:
            self._accept_course(event.course_progress, self.reserve_ticket())

        if event.video_id and event.progress is not None:
            if event.video_id == self.active_video_id:
                current = self._progress.get(event.video_id)
                if current is not None:
                    self._progress[event.video_id] = current.absorb_completion(event.progress)
            else:
                self._accept(event.video_id, event.progress, self.reserve_ticket())

    # --- Snapshot local ---
    # SQLAlchemy es síncrono: el acceso al snapshot corre en un hilo aparte.

    async def _save_snapshot(self, video_id: str, progress: Progress) -> None:
        if self.snapshot_store is not None and self.user_id:
            await asyncio.to_thread(self.snapshot_store.save, self.user_id, self.course_id, video_id, progress)

    async def _load_snapshot(self, video_id: str) -> Optional[Progress]:
        if self.snapshot_store is None or not self.user_id:
            return None
        return await asyncio.to_thread(self.snapshot_store.load, self.user_id, self.course_id, video_id)

    async def forget(self) -> None:
        """Descarta el progreso en memoria y los snapshots del usuario."""
        self._progress.clear()
        self._applied.clear()
        self._dirty.clear()
        self._course_progress = None
        if self.snapshot_store is not None and self.user_id:
            await asyncio.to_thread(self.snapshot_store.clear_user, self.user_id)

    async def close(self) -> None:
        """
        Escribe todo lo pendiente y cancela la suscripción al canal.
        """
        if self._flush_tasks:
            await asyncio.gather(*list(self._flush_tasks.values()), return_exceptions=True)
            self._flush_tasks.clear()
        await self.flush_all()
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
