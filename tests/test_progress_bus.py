"""Pruebas de las notificaciones de progreso entre vistas."""

import pytest

from courseplayer.schemas.progress import CourseProgress, ProgressEvent
from courseplayer.services.course_progress_view import CourseProgressView

COURSE_ID = "course-1"


def _event(user_id="user-1", course_id=COURSE_ID, percentage=40, authoritative=True, **kwargs):
    course_progress = CourseProgress(total_videos=2, completed_videos=0, course_progress_percentage=percentage)
    course_progress.is_authoritative = authoritative
    return ProgressEvent(user_id=user_id, course_id=course_id, course_progress=course_progress, **kwargs)


class TestProgressBus:
    def test_delivery_is_scoped_by_user_and_course(self, bus):
        received = []
        bus.subscribe("user-1", COURSE_ID, received.append)

        assert bus.publish(_event()) == 1
        assert bus.publish(_event(user_id="user-2")) == 0
        assert bus.publish(_event(course_id="course-2")) == 0
        assert len(received) == 1

    def test_unsubscribe_stops_delivery(self, bus):
        received = []
        with bus.subscribe("user-1", COURSE_ID, received.append):
            bus.publish(_event())
        bus.publish(_event())
        assert len(received) == 1
        assert bus.subscriber_count("user-1", COURSE_ID) == 0

    def test_failing_listener_does_not_block_others(self, bus):
        received = []

        def broken(event):
            raise RuntimeError("view crashed")

        bus.subscribe("user-1", COURSE_ID, broken)
        bus.subscribe("user-1", COURSE_ID, received.append)

        assert bus.publish(_event()) == 1
        assert len(received) == 1


class TestCourseProgressView:
    @pytest.mark.anyio
    async def test_updates_from_events_without_refetch(self, client, token, bus, backend):
        view = CourseProgressView(client, COURSE_ID, "user-1", token, bus=bus)
        await view.load()
        fetches = len(backend.calls_to("/api/progress/course/"))

        bus.publish(_event(percentage=60))

        assert view.percentage == 60
        assert len(backend.calls_to("/api/progress/course/")) == fetches
        view.close()

    @pytest.mark.anyio
    async def test_failed_load_keeps_last_value(self, client, token, bus, backend):
        with CourseProgressView(client, COURSE_ID, "user-1", token, bus=bus) as view:
            bus.publish(_event(percentage=30))
            backend.fail("/api/progress/course/", 500)

            assert (await view.load()).rounded_percentage == 30
            assert view.error is not None
        assert bus.subscriber_count("user-1", COURSE_ID) == 0

    def test_local_aggregate_does_not_replace_authoritative(self, client, token, bus):
        view = CourseProgressView(client, COURSE_ID, "user-1", token, bus=bus)
        bus.publish(_event(percentage=50))
        bus.publish(_event(percentage=10, authoritative=False))
        assert view.percentage == 50
        view.close()

    def test_course_completion_is_sticky(self, client, token, bus):
        view = CourseProgressView(client, COURSE_ID, "user-1", token, bus=bus)
        completed = CourseProgress(total_videos=1, completed_videos=1, course_progress_percentage=100)
        completed.is_authoritative = True
        bus.publish(ProgressEvent(user_id="user-1", course_id=COURSE_ID, course_progress=completed))
        bus.publish(_event(percentage=80))
        assert view.course_progress.is_completed is True
        view.close()
