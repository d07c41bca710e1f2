# courseplayer/services/playback_session.py
"""
Máquina de estados de la reproducción del video activo.

    IDLE -> SELECTING -> AWAITING_MEDIA -> PLAYING <-> PAUSED -> ENDED
    SELECTING -> LOCKED                    (acceso denegado)
    AWAITING_MEDIA | PLAYING -> ERROR      (falla de carga)
    ERROR -> AWAITING_MEDIA                (reintento del usuario, acotado)

Solo existe una sesión activa a la vez; `select` es el único que la
reemplaza y lo hace bajo un lock, de modo que nunca hay dos videos
"actuales". Solo en PLAYING se reportan time updates al tracker.
"""
import asyncio
import enum
import logging
from typing import Callable, List, Optional

from courseplayer.core.config import settings
from courseplayer.core.exceptions import (
    InvalidTransition,
    MediaLoadError,
    NotFound,
    RetryLimitExceeded,
)
from courseplayer.core.metrics import MEDIA_ERRORS_TOTAL
from courseplayer.schemas.course import AccessDecision, MediaAvailability
from courseplayer.schemas.player import LockedSnapshot, SessionSnapshot
from courseplayer.services import access_resolver
from courseplayer.services.playlist import Playlist
from courseplayer.services.progress_tracker import ProgressTracker

logger = logging.getLogger(__name__)

FALLBACK_ACTIONS = ["reload", "contact_support"]

LOCK_MESSAGES = {
    AccessDecision.LOCKED_REQUIRES_SIGN_IN: "Este video requiere la compra del curso. Inicia sesión o compra el curso.",
    AccessDecision.LOCKED_REQUIRES_PURCHASE: "Este video requiere la compra del curso.",
}


class PlaybackState(str, enum.Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    AWAITING_MEDIA = "awaiting_media"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"
    ERROR = "error"
    LOCKED = "locked"


class PlaybackSession:
    """
    Estado efímero del video seleccionado.
    """

    def __init__(self, video_id: str, start_position: float = 0.0, max_retries: int = 3):
        self.video_id = video_id
        self.start_position = start_position
        self.current_time = start_position
        self.duration = 0.0
        self.is_playing = False
        self.playback_rate = 1.0
        self.refreshing = False
        self.error: Optional[MediaLoadError] = None
        self.retry_count = 0
        self.max_retries = max_retries
        self.released = False

    @property
    def can_retry(self) -> bool:
        return self.error is not None and self.retry_count < self.max_retries

    @property
    def fallback_actions(self) -> List[str]:
        if self.error is not None and not self.can_retry:
            return list(FALLBACK_ACTIONS)
        return []

    def snapshot(self, current_percentage: int = 0) -> SessionSnapshot:
        return SessionSnapshot(
            video_id=self.video_id,
            is_playing=self.is_playing,
            playback_rate=self.playback_rate,
            current_time=self.current_time,
            duration=self.duration,
            current_percentage=current_percentage,
            start_position=self.start_position,
            refreshing=self.refreshing,
            error=self.error.message if self.error else None,
            retry_count=self.retry_count,
            max_retries=self.max_retries,
            can_retry=self.can_retry,
            fallback_actions=self.fallback_actions,
        )


class LockedVideo:
    def __init__(self, video_id: str, decision: AccessDecision):
        self.video_id = video_id
        self.decision = decision
        self.remediation = access_resolver.remediation_for(decision)
        self.message = LOCK_MESSAGES.get(decision, "")

    def snapshot(self) -> LockedSnapshot:
        return LockedSnapshot(
            video_id=self.video_id,
            decision=self.decision,
            remediation=self.remediation,
            message=self.message,
        )


class PlaybackController:
    def __init__(
        self,
        playlist: Playlist,
        tracker: ProgressTracker,
        max_retries: Optional[int] = None,
    ):
        self.playlist = playlist
        self.tracker = tracker
        self.max_retries = max_retries if max_retries is not None else settings.MAX_MEDIA_RETRIES
        self.state = PlaybackState.IDLE
        self.session: Optional[PlaybackSession] = None
        self.locked: Optional[LockedVideo] = None
        self._resume_state: Optional[PlaybackState] = None
        self._select_lock = asyncio.Lock()
        self._ended_listeners: List[Callable[[str], None]] = []

    @property
    def current_video_id(self) -> Optional[str]:
        return self.session.video_id if self.session else None

    def _require(self, operation: str, *states: PlaybackState) -> None:
        if self.state not in states:
            raise InvalidTransition(operation, self.state)

    # --- Selección ---

    async def select(self, video_id: str) -> PlaybackState:
        if video_id not in self.playlist:
            raise NotFound(f"El video {video_id} no pertenece al curso {self.playlist.course_id}")

        async with self._select_lock:
            if (
                self.session is not None
                and self.session.video_id == video_id
                and self.state in (PlaybackState.AWAITING_MEDIA, PlaybackState.PLAYING, PlaybackState.PAUSED)
            ):
                return self.state

            previous_state = self.state
            self.state = PlaybackState.SELECTING

            decision = self.playlist.decision(video_id)
            if decision != AccessDecision.ACCESSIBLE:
                await self._lock(video_id, decision, previous_state)
                return self.state

            self.locked = None
            self._resume_state = None
            previous = self.session
            if previous is not None:
                await self._release(previous)

            progress = self.tracker.current_progress(video_id) or self.playlist.get(video_id).progress
            start = progress.last_position if progress.last_position > 0 else 0.0
            session = PlaybackSession(video_id, start_position=start, max_retries=self.max_retries)
            session.refreshing = self.playlist.availability(video_id) == MediaAvailability.NOT_YET_AVAILABLE

            self.session = session
            self.tracker.activate(video_id)
            self.state = PlaybackState.AWAITING_MEDIA
            logger.info(f"Video seleccionado: course={self.playlist.course_id}, video={video_id}, start={start}")
            return self.state

    async def _lock(self, video_id: str, decision: AccessDecision, previous_state: PlaybackState) -> None:
        """
        El video pedido está bloqueado: el video actual no cambia. Si se
        estaba reproduciendo queda en pausa hasta cerrar el aviso.
        """
        if previous_state == PlaybackState.LOCKED:
            resume = self._resume_state
        elif previous_state == PlaybackState.PLAYING:
            resume = PlaybackState.PAUSED
        else:
            resume = previous_state

        if self.session is not None and previous_state == PlaybackState.PLAYING:
            self.session.is_playing = False
            await self.tracker.flush(self.session.video_id)

        self.locked = LockedVideo(video_id, decision)
        self._resume_state = resume
        self.state = PlaybackState.LOCKED
        logger.info(f"Video bloqueado: course={self.playlist.course_id}, video={video_id}, decision={decision.value}")

    async def _release(self, session: PlaybackSession) -> None:
        # Deja de aceptar time updates del video anterior antes del flush final
        session.released = True
        session.is_playing = False
        self.tracker.deactivate(session.video_id)
        await self.tracker.flush(session.video_id)

    def dismiss_lock(self) -> PlaybackState:
        self._require("dismiss_lock", PlaybackState.LOCKED)
        self.locked = None
        if self.session is None:
            self.state = PlaybackState.IDLE
        else:
            self.state = self._resume_state or PlaybackState.PAUSED
        self._resume_state = None
        return self.state

    # --- Eventos del elemento de video ---

    def on_play(self) -> PlaybackState:
        if self.state == PlaybackState.PLAYING:
            return self.state
        self._require("play", PlaybackState.AWAITING_MEDIA, PlaybackState.PAUSED, PlaybackState.ENDED)
        if self.session.refreshing:
            raise InvalidTransition("play", self.state)
        self.session.is_playing = True
        self.state = PlaybackState.PLAYING
        return self.state

    def on_time_update(self, current_time: float, duration: float, video_id: Optional[str] = None) -> bool:
        """
        Reporta la posición al tracker. Devuelve False si el evento se ignoró
        (estado distinto de PLAYING o evento de una sesión ya reemplazada).
        """
        session = self.session
        if self.state != PlaybackState.PLAYING or session is None or session.released:
            return False
        if video_id is not None and video_id != session.video_id:
            return False

        session.current_time = max(0.0, float(current_time or 0))
        if duration and duration > 0:
            session.duration = float(duration)
        self.tracker.on_time_update(session.video_id, session.current_time, session.duration)
        return True

    async def on_pause(self) -> PlaybackState:
        if self.state != PlaybackState.PLAYING:
            return self.state
        self.session.is_playing = False
        self.state = PlaybackState.PAUSED
        await self.tracker.flush(self.session.video_id)
        return self.state

    async def on_ended(self) -> PlaybackState:
        self._require("ended", PlaybackState.PLAYING, PlaybackState.PAUSED)
        session = self.session
        session.is_playing = False
        if session.duration > 0:
            session.current_time = session.duration
            self.tracker.on_time_update(session.video_id, session.duration, session.duration)
        self.state = PlaybackState.ENDED
        await self.tracker.flush(session.video_id)

        for listener in list(self._ended_listeners):
            try:
                listener(session.video_id)
            except Exception:
                logger.exception(f"Listener de fin de video falló: video={session.video_id}")
        return self.state

    async def on_media_error(self, message: Optional[str] = None) -> PlaybackState:
        self._require("error", PlaybackState.AWAITING_MEDIA, PlaybackState.PLAYING)
        session = self.session
        was_playing = self.state == PlaybackState.PLAYING
        session.is_playing = False
        session.error = MediaLoadError(message or "Error de reproducción. Intenta de nuevo.")
        self.state = PlaybackState.ERROR
        MEDIA_ERRORS_TOTAL.inc()
        logger.warning(
            f"Error de video: course={self.playlist.course_id}, video={session.video_id}, "
            f"retries={session.retry_count}/{session.max_retries}, error={session.error.message}"
        )
        if was_playing:
            await self.tracker.flush(session.video_id)
        return self.state

    def retry(self) -> PlaybackState:
        """
        Reintento manual tras un error. No hay reintentos automáticos.
        """
        self._require("retry", PlaybackState.ERROR)
        session = self.session
        if not session.can_retry:
            raise RetryLimitExceeded(
                f"Se agotaron los reintentos ({session.max_retries}) para el video {session.video_id}"
            )
        session.retry_count += 1
        session.error = None
        session.start_position = session.current_time
        self.state = PlaybackState.AWAITING_MEDIA
        return self.state

    def set_playback_rate(self, rate: float) -> None:
        if self.session is None:
            raise InvalidTransition("playback_rate", self.state)
        if rate <= 0:
            raise ValueError("La velocidad de reproducción debe ser positiva")
        self.session.playback_rate = rate

    def on_access_changed(self) -> None:
        """
        Recalcula la disponibilidad del medio del video activo tras un cambio
        de compra o de la lista de videos.
        """
        if self.session is not None and self.session.video_id in self.playlist:
            availability = self.playlist.availability(self.session.video_id)
            self.session.refreshing = availability == MediaAvailability.NOT_YET_AVAILABLE

    def on_video_ended(self, listener: Callable[[str], None]) -> Callable[[], None]:
        self._ended_listeners.append(listener)

        def remove():
            if listener in self._ended_listeners:
                self._ended_listeners.remove(listener)

        return remove

    async def close(self) -> None:
        """Desmontaje de la vista: flush final y liberación de la sesión."""
        async with self._select_lock:
            if self.session is not None:
                await self._release(self.session)
            self.session = None
            self.locked = None
            self._resume_state = None
            self.state = PlaybackState.IDLE
