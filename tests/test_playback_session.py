"""Pruebas de la máquina de estados de reproducción."""

import pytest
from prometheus_client import REGISTRY

from courseplayer.core.exceptions import InvalidTransition, NotFound, RetryLimitExceeded
from courseplayer.schemas.course import AccessDecision, Video, ViewerState
from courseplayer.services.playback_session import PlaybackController, PlaybackState
from courseplayer.services.playlist import Playlist
from courseplayer.services.progress_tracker import ProgressTracker

COURSE_ID = "course-1"


def _videos():
    return [
        Video.model_validate({"_id": "v1", "duration": 100, "isFreePreview": True,
                              "videoUrl": "https://cdn.test/v1.mp4"}),
        Video.model_validate({"_id": "v2", "duration": 100, "isFreePreview": True,
                              "videoUrl": "https://cdn.test/v2.mp4",
                              "progress": {"watchedDuration": 30, "lastPosition": 30}}),
        Video.model_validate({"_id": "v3", "duration": 100, "videoUrl": ""}),
    ]


@pytest.fixture
def tracker(client, token, bus):
    tracker = ProgressTracker(client, COURSE_ID, user_id="user-1", token=token, bus=bus, flush_interval=3600)
    tracker.seed(_videos())
    return tracker


@pytest.fixture
def playlist():
    return Playlist(COURSE_ID, _videos(), ViewerState.AUTHENTICATED_NOT_PURCHASED)


@pytest.fixture
def controller(playlist, tracker):
    return PlaybackController(playlist, tracker, max_retries=2)


async def _play(controller, video_id):
    await controller.select(video_id)
    controller.on_play()


class TestSelect:
    @pytest.mark.anyio
    async def test_select_enters_awaiting_media(self, controller, tracker):
        assert await controller.select("v1") == PlaybackState.AWAITING_MEDIA
        assert controller.current_video_id == "v1"
        assert tracker.active_video_id == "v1"

    @pytest.mark.anyio
    async def test_resumes_from_last_position(self, controller):
        await controller.select("v2")
        assert controller.session.start_position == 30
        assert controller.session.current_time == 30

    @pytest.mark.anyio
    async def test_single_active_session_and_flush_before_teardown(self, controller, tracker, backend):
        await _play(controller, "v1")
        controller.on_time_update(40, 100)
        previous = controller.session

        await controller.select("v2")

        assert previous.released is True
        assert controller.session is not previous
        assert controller.current_video_id == "v2"
        assert backend.progress["v1"]["watchedDuration"] == 40
        assert not tracker.is_dirty("v1")

    @pytest.mark.anyio
    async def test_events_from_released_session_are_ignored(self, controller, tracker):
        await _play(controller, "v1")
        await controller.select("v2")
        assert controller.on_time_update(80, 100, video_id="v1") is False
        assert tracker.current_progress("v1").watched_duration == 0

    @pytest.mark.anyio
    async def test_unknown_video(self, controller):
        with pytest.raises(NotFound):
            await controller.select("missing")

    @pytest.mark.anyio
    async def test_reselecting_current_video_is_a_no_op(self, controller):
        await _play(controller, "v1")
        session = controller.session
        assert await controller.select("v1") == PlaybackState.PLAYING
        assert controller.session is session


class TestLocked:
    @pytest.mark.anyio
    async def test_locked_video_keeps_current_video(self, controller, backend):
        await _play(controller, "v1")
        controller.on_time_update(20, 100)

        assert await controller.select("v3") == PlaybackState.LOCKED

        assert controller.current_video_id == "v1"
        assert controller.session.is_playing is False
        assert controller.locked.video_id == "v3"
        assert controller.locked.decision == AccessDecision.LOCKED_REQUIRES_PURCHASE
        assert controller.locked.remediation == "purchase"
        assert backend.progress["v1"]["watchedDuration"] == 20

    @pytest.mark.anyio
    async def test_dismiss_returns_to_paused_session(self, controller):
        await _play(controller, "v1")
        await controller.select("v3")
        assert controller.dismiss_lock() == PlaybackState.PAUSED
        assert controller.locked is None

    @pytest.mark.anyio
    async def test_dismiss_without_session_is_idle(self, controller):
        await controller.select("v3")
        assert controller.dismiss_lock() == PlaybackState.IDLE

    @pytest.mark.anyio
    async def test_anonymous_remediation_is_sign_in(self, tracker):
        playlist = Playlist(COURSE_ID, _videos(), ViewerState.ANONYMOUS)
        controller = PlaybackController(playlist, tracker)
        await controller.select("v3")
        assert controller.locked.remediation == "sign_in"

    @pytest.mark.anyio
    async def test_time_updates_are_not_reported_while_locked(self, controller, tracker):
        await _play(controller, "v1")
        await controller.select("v3")
        assert controller.on_time_update(50, 100) is False
        assert tracker.current_progress("v1").watched_duration == 0


class TestPlayback:
    @pytest.mark.anyio
    async def test_time_updates_only_while_playing(self, controller, tracker):
        await controller.select("v1")
        assert controller.on_time_update(10, 100) is False
        controller.on_play()
        assert controller.on_time_update(10, 100) is True
        assert tracker.current_progress("v1").watched_duration == 10

    @pytest.mark.anyio
    async def test_pause_flushes(self, controller, backend):
        await _play(controller, "v1")
        controller.on_time_update(25, 100)
        assert await controller.on_pause() == PlaybackState.PAUSED
        assert controller.session.is_playing is False
        assert backend.progress["v1"]["watchedDuration"] == 25

    @pytest.mark.anyio
    async def test_pause_stays_responsive_when_flush_fails(self, controller, backend, tracker):
        backend.fail("/api/progress/update", 503)
        await _play(controller, "v1")
        controller.on_time_update(25, 100)
        assert await controller.on_pause() == PlaybackState.PAUSED
        assert tracker.is_dirty("v1")
        assert controller.on_play() == PlaybackState.PLAYING

    @pytest.mark.anyio
    async def test_ended_notifies_without_auto_advancing(self, controller, tracker):
        ended = []
        controller.on_video_ended(ended.append)
        await _play(controller, "v1")
        controller.on_time_update(95, 100)

        assert await controller.on_ended() == PlaybackState.ENDED

        assert ended == ["v1"]
        assert controller.current_video_id == "v1"
        assert tracker.current_progress("v1").is_completed is True

    @pytest.mark.anyio
    async def test_refreshing_media_cannot_play(self, tracker):
        playlist = Playlist(COURSE_ID, _videos(), ViewerState.AUTHENTICATED_PURCHASED)
        controller = PlaybackController(playlist, tracker)
        await controller.select("v3")
        assert controller.session.refreshing is True
        with pytest.raises(InvalidTransition):
            controller.on_play()

    @pytest.mark.anyio
    async def test_invalid_transitions(self, controller):
        with pytest.raises(InvalidTransition):
            controller.on_play()
        with pytest.raises(InvalidTransition):
            await controller.on_ended()
        with pytest.raises(InvalidTransition):
            controller.retry()

    @pytest.mark.anyio
    async def test_playback_rate(self, controller):
        await controller.select("v1")
        controller.set_playback_rate(1.5)
        assert controller.session.playback_rate == 1.5
        with pytest.raises(ValueError):
            controller.set_playback_rate(0)


class TestErrors:
    @pytest.mark.anyio
    async def test_media_error_and_bounded_retry(self, controller):
        errors_before = REGISTRY.get_sample_value("courseplayer_media_errors_total")
        await controller.select("v1")

        assert await controller.on_media_error("decode failed") == PlaybackState.ERROR
        assert REGISTRY.get_sample_value("courseplayer_media_errors_total") == errors_before + 1
        assert controller.session.can_retry is True

        assert controller.retry() == PlaybackState.AWAITING_MEDIA
        await controller.on_media_error()
        assert controller.retry() == PlaybackState.AWAITING_MEDIA
        await controller.on_media_error()

        assert controller.session.retry_count == 2
        assert controller.session.can_retry is False
        assert controller.session.fallback_actions == ["reload", "contact_support"]
        with pytest.raises(RetryLimitExceeded):
            controller.retry()
        assert controller.state == PlaybackState.ERROR

    @pytest.mark.anyio
    async def test_error_is_not_reachable_from_paused(self, controller):
        await _play(controller, "v1")
        await controller.on_pause()
        with pytest.raises(InvalidTransition):
            await controller.on_media_error("late error")

    @pytest.mark.anyio
    async def test_retry_resumes_from_error_position(self, controller):
        await _play(controller, "v1")
        controller.on_time_update(33, 100)
        await controller.on_media_error("network")
        controller.retry()
        assert controller.session.start_position == 33


class TestClose:
    @pytest.mark.anyio
    async def test_close_flushes_and_goes_idle(self, controller, backend):
        await _play(controller, "v1")
        controller.on_time_update(60, 100)
        await controller.close()
        assert controller.state == PlaybackState.IDLE
        assert controller.session is None
        assert backend.progress["v1"]["watchedDuration"] == 60
