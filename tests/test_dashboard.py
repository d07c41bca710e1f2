"""Pruebas de las estadísticas y filtros del dashboard."""

import pytest

from courseplayer.schemas.progress import DashboardCourse
from courseplayer.services import dashboard


@pytest.fixture
def courses():
    return [
        DashboardCourse.model_validate({"_id": "c1", "title": "Python Basics", "progress": 100, "isCompleted": True}),
        DashboardCourse.model_validate({"_id": "c2", "title": "Advanced Python", "progress": 92}),
        DashboardCourse.model_validate({"_id": "c3", "title": "Data Science", "progress": 40}),
        DashboardCourse.model_validate({"_id": "c4", "title": "Web Design", "progress": 0}),
    ]


class TestStats:
    def test_compute_stats(self, courses):
        stats = dashboard.compute_stats(courses)
        assert stats.total_courses == 4
        assert stats.completed_courses == 2
        assert stats.in_progress_courses == 1
        assert stats.not_started_courses == 1
        assert stats.average_progress == 58

    def test_empty_dashboard(self):
        stats = dashboard.compute_stats([])
        assert stats.total_courses == 0
        assert stats.average_progress == 0


class TestFilters:
    def test_status_filters(self, courses):
        assert [c.id for c in dashboard.filter_courses(courses, "completed")] == ["c1", "c2"]
        assert [c.id for c in dashboard.filter_courses(courses, "in-progress")] == ["c3"]
        assert len(dashboard.filter_courses(courses, "all")) == 4

    def test_search_is_case_insensitive(self, courses):
        assert [c.id for c in dashboard.filter_courses(courses, search="PYTHON")] == ["c1", "c2"]
        assert [c.id for c in dashboard.filter_courses(courses, "completed", search="advanced")] == ["c2"]

    def test_unknown_filter(self, courses):
        with pytest.raises(ValueError):
            dashboard.filter_courses(courses, "archived")


class TestLoadDashboard:
    @pytest.mark.anyio
    async def test_stats_cover_all_courses_while_list_is_filtered(self, client, backend, token):
        backend.dashboard_courses = [
            {"_id": "c1", "title": "Python Basics", "progress": 100, "isCompleted": True},
            {"_id": "c2", "title": "Data Science", "progress": 30},
        ]

        response = await dashboard.load_dashboard(client, token, status="completed")

        assert response.stats.total_courses == 2
        assert [course.id for course in response.courses] == ["c1"]
