# courseplayer/services/course_player.py
"""
Reproductor de un curso para un usuario: une el playlist con sus decisiones
de acceso, el tracker de progreso, la máquina de estados de reproducción y
el orquestador de compra.
"""
import logging
import time
import uuid
from typing import Callable, Dict, Optional, Tuple

from courseplayer.core.exceptions import AuthRequired, BackendError, CheckoutCreationFailed, NotFound
from courseplayer.core.logging_config import get_player_logger
from courseplayer.core.security import get_viewer_id
from courseplayer.crud.crud_snapshot import SnapshotStore
from courseplayer.schemas.course import AccessDecision, CheckoutSession, MediaAvailability, ViewerState
from courseplayer.schemas.player import MediaResponse, PlaybackEventRequest, PlayerState
from courseplayer.services import access_resolver
from courseplayer.services.backend_client import BackendClient
from courseplayer.services.playback_session import PlaybackController, PlaybackState
from courseplayer.services.playlist import Playlist
from courseplayer.services.progress_bus import ProgressBus, progress_bus
from courseplayer.services.progress_tracker import ANONYMOUS_VIEWER, ProgressTracker
from courseplayer.services.purchase import ALREADY_OWNED_ERROR, PurchaseOrchestrator

logger = logging.getLogger(__name__)

# Vista de un usuario autenticado que no envía su propio id de reproductor
DEFAULT_PLAYER_ID = "default"


class CoursePlayer:
    def __init__(
        self,
        client: BackendClient,
        course_id: str,
        token: Optional[str] = None,
        bus: ProgressBus = progress_bus,
        snapshot_store: Optional[SnapshotStore] = None,
        page_url: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
        player_id: Optional[str] = None,
    ):
        self.client = client
        self.course_id = course_id
        self.player_id = player_id or DEFAULT_PLAYER_ID
        self.token = token
        self.user_id = get_viewer_id(token)
        self.playlist = Playlist(
            course_id,
            viewer_state=access_resolver.viewer_state_for(token, False),
            page_url=page_url,
        )
        self.tracker = ProgressTracker(
            client,
            course_id,
            user_id=self.user_id,
            token=token,
            bus=bus,
            snapshot_store=snapshot_store,
            clock=clock,
        )
        self.controller = PlaybackController(self.playlist, self.tracker)
        self.purchase = PurchaseOrchestrator(client, token, clock=clock)
        self.log = get_player_logger(user_id=self.viewer_id, course_id=course_id)

    @property
    def viewer_id(self) -> str:
        return self.user_id or ANONYMOUS_VIEWER

    # --- Carga ---

    async def open(self) -> PlayerState:
        """
        Carga el playlist, el estado de compra y el progreso, y selecciona
        el primer video accesible (o muestra bloqueado el primero).
        """
        await self.load_playlist()
        if self.token:
            await self.refresh_purchase_status()

        initial = self.playlist.initial_video()
        if self.tracker.can_persist:
            if initial is not None:
                await self.tracker.refresh(initial.id)
            await self.tracker.refresh_course()
            if self.tracker.last_sync_error is not None:
                restored = await self.tracker.restore_snapshots()
                self.log.info(f"Progreso restaurado desde snapshots locales: {restored} videos")

        if initial is not None and self.controller.state == PlaybackState.IDLE:
            await self.controller.select(initial.id)

        self.log.info(
            f"Curso abierto: videos={len(self.playlist)}, viewer={self.playlist.viewer_state.value}"
        )
        return self.state()

    async def load_playlist(self) -> None:
        ticket = self.tracker.reserve_ticket()
        course_videos = await self.client.get_course_videos(self.course_id, self.token)
        self.playlist.replace_videos(course_videos.videos)
        self.tracker.seed(course_videos.videos, ticket)
        if course_videos.user_has_purchased:
            self._set_viewer_state(access_resolver.viewer_state_for(self.token, True))
        self.controller.on_access_changed()

    async def refresh_purchase_status(self) -> ViewerState:
        """
        Relee el estado de compra y recalcula todas las decisiones. Una falla
        de lectura conserva el estado actual; un token rechazado por el
        backend se propaga como AuthRequired.
        """
        try:
            status = await self.client.get_purchase_status(self.course_id, self.token)
        except AuthRequired:
            raise
        except BackendError as e:
            self.log.warning(f"No se pudo consultar el estado de compra: {e.message}")
            return self.playlist.viewer_state

        viewer_state = access_resolver.viewer_state_for(self.token, status.has_purchased)
        if self._set_viewer_state(viewer_state) and viewer_state == ViewerState.AUTHENTICATED_PURCHASED:
            await self._after_purchase()
        return self.playlist.viewer_state

    def _set_viewer_state(self, viewer_state: ViewerState) -> bool:
        changed = self.playlist.set_viewer_state(viewer_state)
        if changed:
            self.log.info(f"Estado del usuario: {viewer_state.value}")
            self.controller.on_access_changed()
        return changed

    async def _after_purchase(self) -> None:
        # Las decisiones ya cambiaron; los enlaces reproducibles llegan con la nueva consulta
        try:
            await self.load_playlist()
        except BackendError as e:
            self.log.warning(f"No se pudo refrescar el playlist tras la compra: {e.message}")

        locked = self.controller.locked
        if locked is None:
            return
        if locked.video_id not in self.playlist:
            # El video bloqueado ya no forma parte del curso
            self.controller.dismiss_lock()
        elif self.playlist.decision(locked.video_id) == AccessDecision.ACCESSIBLE:
            self.controller.dismiss_lock()
            await self.controller.select(locked.video_id)

    # --- Reproducción ---

    async def select(self, video_id: str) -> PlayerState:
        await self.controller.select(video_id)
        return self.state()

    async def handle_event(self, event: PlaybackEventRequest) -> PlayerState:
        if event.type == "play":
            self.controller.on_play()
        elif event.type == "pause":
            await self.controller.on_pause()
        elif event.type == "ended":
            await self.controller.on_ended()
        elif event.type == "error":
            await self.controller.on_media_error(event.message)
        elif event.type == "time_update":
            self.controller.on_time_update(event.current_time, event.duration)
        elif event.type == "rate" and event.playback_rate:
            self.controller.set_playback_rate(event.playback_rate)
        return self.state()

    def media(self, video_id: str) -> MediaResponse:
        """
        Enlace del video. Solo se entrega para videos accesibles; mientras el
        enlace se refresca la URL viene vacía.
        """
        if video_id not in self.playlist:
            raise NotFound(f"El video {video_id} no pertenece al curso {self.course_id}")
        video = self.playlist.require_accessible(video_id)
        availability = self.playlist.availability(video_id)
        return MediaResponse(
            video_id=video_id,
            availability=availability,
            media_url=video.media_url if availability == MediaAvailability.ACCESSIBLE else None,
        )

    def retry(self) -> PlayerState:
        self.controller.retry()
        return self.state()

    def dismiss_lock(self) -> PlayerState:
        self.controller.dismiss_lock()
        return self.state()

    # --- Compra ---

    async def start_purchase(self) -> Optional[CheckoutSession]:
        """
        Inicia el checkout. Devuelve None si el curso ya estaba comprado.
        """
        if self.playlist.viewer_state == ViewerState.AUTHENTICATED_PURCHASED:
            return None
        try:
            return await self.purchase.initiate(self.course_id)
        except CheckoutCreationFailed as e:
            if e.error_code == ALREADY_OWNED_ERROR:
                await self.refresh_purchase_status()
            raise

    async def on_checkout_return(self) -> PlayerState:
        self.purchase.complete_return()
        if self.token:
            await self.refresh_purchase_status()
        return self.state()

    # --- Cierre ---

    async def sign_out(self) -> None:
        """
        Escribe lo pendiente y luego descarta el progreso local del usuario.
        """
        await self.close()
        await self.tracker.forget()
        self.playlist.reset_viewer_state(ViewerState.ANONYMOUS)

    async def close(self) -> None:
        await self.controller.close()
        await self.tracker.close()

    def state(self) -> PlayerState:
        session = self.controller.session
        return PlayerState(
            course_id=self.course_id,
            player_id=self.player_id,
            viewer_state=self.playlist.viewer_state,
            state=self.controller.state.value,
            session=(
                session.snapshot(self.tracker.current_percentage(session.video_id))
                if session is not None else None
            ),
            locked=self.controller.locked.snapshot() if self.controller.locked else None,
            playlist=self.playlist.entries(self.tracker.progress_by_video()),
            total_duration=self.playlist.formatted_total_duration(),
            no_free_preview=self.playlist.no_free_preview,
            course_progress=self.tracker.course_progress(),
            purchase=self.purchase.snapshot(),
        )


PlayerKey = Tuple[str, str, str]


class PlayerRegistry:
    """
    Reproductores abiertos en el proceso, uno por vista: (usuario, curso,
    id de reproductor). El token no se verifica localmente, así que un
    reproductor solo se entrega a quien presenta el mismo token con el que
    se abrió. Las vistas anónimas reciben siempre un id propio.
    """

    def __init__(
        self,
        client: BackendClient,
        snapshot_store: Optional[SnapshotStore] = None,
        bus: ProgressBus = progress_bus,
    ):
        self.client = client
        self.snapshot_store = snapshot_store
        self.bus = bus
        self._players: Dict[PlayerKey, CoursePlayer] = {}

    @staticmethod
    def key_for(token: Optional[str], course_id: str, player_id: Optional[str] = None) -> PlayerKey:
        return (get_viewer_id(token) or ANONYMOUS_VIEWER, course_id, player_id or DEFAULT_PLAYER_ID)

    def get(self, token: Optional[str], course_id: str, player_id: Optional[str] = None) -> Optional[CoursePlayer]:
        player = self._players.get(self.key_for(token, course_id, player_id))
        if player is None or player.token != token:
            return None
        return player

    async def open(
        self,
        token: Optional[str],
        course_id: str,
        player_id: Optional[str] = None,
        page_url: Optional[str] = None,
    ) -> CoursePlayer:
        if player_id is None and get_viewer_id(token) is None:
            player_id = uuid.uuid4().hex
        key = self.key_for(token, course_id, player_id)

        player = self._players.get(key)
        if player is not None and player.token == token:
            if page_url is not None:
                player.playlist.page_url = page_url
            await player.open()
            return player

        # Un token distinto solo reemplaza al reproductor abierto si el backend lo acepta
        candidate = CoursePlayer(
            self.client,
            course_id,
            token=token,
            bus=self.bus,
            snapshot_store=self.snapshot_store,
            page_url=page_url,
            player_id=key[2],
        )
        try:
            await candidate.open()
        except BackendError:
            await candidate.close()
            raise

        self._players[key] = candidate
        if player is not None:
            await player.close()
        logger.debug(
            f"Reproductor abierto: viewer={key[0]}, course={course_id}, player={key[2]}, abiertos={len(self._players)}"
        )
        return candidate

    async def close(self, token: Optional[str], course_id: str, player_id: Optional[str] = None) -> bool:
        player = self.get(token, course_id, player_id)
        if player is None:
            return False
        self._players.pop(self.key_for(token, course_id, player_id), None)
        await player.close()
        return True

    async def close_all(self) -> None:
        for key in list(self._players):
            await self._players.pop(key).close()

    def __len__(self) -> int:
        return len(self._players)
