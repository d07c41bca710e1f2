# courseplayer/services/playlist.py
import logging
from typing import Dict, Iterable, List, Optional

from courseplayer.core.exceptions import AccessDenied
from courseplayer.schemas.course import AccessDecision, MediaAvailability, Video, ViewerState
from courseplayer.schemas.player import PlaylistEntry
from courseplayer.services import access_resolver
from courseplayer.utils.durations import format_duration, total_seconds

logger = logging.getLogger(__name__)


class Playlist:
    """
    Lista ordenada de videos de un curso junto con el estado de compra del
    usuario. Las decisiones de acceso se calculan en cada consulta.
    """

    def __init__(
        self,
        course_id: str,
        videos: Iterable[Video] = (),
        viewer_state: ViewerState = ViewerState.ANONYMOUS,
        page_url: Optional[str] = None,
    ):
        self.course_id = course_id
        self.page_url = page_url
        self._viewer_state = viewer_state
        self._videos: List[Video] = []
        self._by_id: Dict[str, Video] = {}
        self.replace_videos(videos)

    @property
    def viewer_state(self) -> ViewerState:
        return self._viewer_state

    @property
    def videos(self) -> List[Video]:
        return list(self._videos)

    def set_viewer_state(self, viewer_state: ViewerState) -> bool:
        """
        Cambia el estado del usuario. Una compra confirmada no retrocede
        dentro de la misma sesión; para eso está `reset_viewer_state`.
        Devuelve True si el estado cambió.
        """
        if viewer_state == self._viewer_state:
            return False
        if self._viewer_state == ViewerState.AUTHENTICATED_PURCHASED:
            logger.warning(
                f"Ignorando regresión de compra en curso {self.course_id}: {viewer_state.value}"
            )
            return False
        self._viewer_state = viewer_state
        return True

    def reset_viewer_state(self, viewer_state: ViewerState) -> None:
        self._viewer_state = viewer_state

    def replace_videos(self, videos: Iterable[Video]) -> None:
        self._videos = list(videos)
        self._by_id = {video.id: video for video in self._videos}

    def __len__(self) -> int:
        return len(self._videos)

    def __contains__(self, video_id: str) -> bool:
        return video_id in self._by_id

    def get(self, video_id: str) -> Optional[Video]:
        return self._by_id.get(video_id)

    def decision(self, video_id: str) -> AccessDecision:
        return access_resolver.resolve(self._by_id[video_id], self._viewer_state)

    def availability(self, video_id: str) -> MediaAvailability:
        video = self._by_id[video_id]
        return access_resolver.media_availability(
            video, access_resolver.resolve(video, self._viewer_state), self.page_url
        )

    def require_accessible(self, video_id: str) -> Video:
        """El video, o AccessDenied con la remediación si está bloqueado."""
        decision = self.decision(video_id)
        if decision != AccessDecision.ACCESSIBLE:
            raise AccessDenied(video_id, decision)
        return self._by_id[video_id]

    def first_accessible(self) -> Optional[Video]:
        for video in self._videos:
            if self.decision(video.id) == AccessDecision.ACCESSIBLE:
                return video
        return None

    def initial_video(self) -> Optional[Video]:
        """Primer video accesible, o el primero del curso si todos están bloqueados."""
        video = self.first_accessible()
        if video is None and self._videos:
            return self._videos[0]
        return video

    def next_accessible(self, video_id: str) -> Optional[Video]:
        ids = [video.id for video in self._videos]
        if video_id not in ids:
            return None
        for video in self._videos[ids.index(video_id) + 1:]:
            if self.decision(video.id) == AccessDecision.ACCESSIBLE:
                return video
        return None

    @property
    def all_locked(self) -> bool:
        return bool(self._videos) and self.first_accessible() is None

    @property
    def no_free_preview(self) -> bool:
        return self.all_locked and self._viewer_state == ViewerState.ANONYMOUS

    def total_seconds(self) -> float:
        return total_seconds(self._videos)

    def formatted_total_duration(self) -> str:
        return format_duration(self.total_seconds())

    def entries(self, progress_by_id: Optional[Dict[str, object]] = None) -> List[PlaylistEntry]:
        progress_by_id = progress_by_id or {}
        entries = []
        for video in self._videos:
            decision = self.decision(video.id)
            entries.append(PlaylistEntry(
                id=video.id,
                title=video.title,
                duration=video.formatted_duration,
                duration_seconds=video.duration_seconds,
                is_free_preview=video.is_free_preview,
                decision=decision,
                requires_purchase=decision != AccessDecision.ACCESSIBLE,
                availability=self.availability(video.id),
                remediation=access_resolver.remediation_for(decision),
                progress=progress_by_id.get(video.id) or video.progress,
            ))
        return entries
