# courseplayer/services/dashboard.py
"""
Estadísticas y filtros del dashboard de cursos comprados.
"""
import logging
from typing import Iterable, List, Optional

from courseplayer.core.config import settings
from courseplayer.schemas.progress import DashboardCourse, DashboardResponse, DashboardStats
from courseplayer.services.backend_client import BackendClient

logger = logging.getLogger(__name__)

COURSE_FILTERS = ("all", "in-progress", "completed")


def is_course_completed(course: DashboardCourse, threshold: Optional[float] = None) -> bool:
    threshold = threshold if threshold is not None else settings.DASHBOARD_COMPLETED_THRESHOLD
    return course.is_completed or course.progress >= threshold


def is_course_in_progress(course: DashboardCourse, threshold: Optional[float] = None) -> bool:
    return course.progress > 0 and not is_course_completed(course, threshold)


def compute_stats(courses: Iterable[DashboardCourse], threshold: Optional[float] = None) -> DashboardStats:
    courses = list(courses)
    completed = sum(1 for course in courses if is_course_completed(course, threshold))
    in_progress = sum(1 for course in courses if is_course_in_progress(course, threshold))
    average = round(sum(course.progress for course in courses) / len(courses)) if courses else 0
    return DashboardStats(
        total_courses=len(courses),
        completed_courses=completed,
        in_progress_courses=in_progress,
        not_started_courses=len(courses) - completed - in_progress,
        average_progress=average,
    )


def filter_courses(
    courses: Iterable[DashboardCourse],
    status: str = "all",
    search: Optional[str] = None,
    threshold: Optional[float] = None,
) -> List[DashboardCourse]:
    if status not in COURSE_FILTERS:
        raise ValueError(f"Filtro desconocido: {status}. Opciones: {', '.join(COURSE_FILTERS)}")

    term = (search or "").strip().lower()
    result = []
    for course in courses:
        if term and term not in course.title.lower():
            continue
        if status == "completed" and not is_course_completed(course, threshold):
            continue
        if status == "in-progress" and not is_course_in_progress(course, threshold):
            continue
        result.append(course)
    return result


async def load_dashboard(
    client: BackendClient,
    token: str,
    status: str = "all",
    search: Optional[str] = None,
) -> DashboardResponse:
    """
    Las estadísticas cubren todos los cursos; los filtros solo afectan la lista.
    """
    courses = await client.get_dashboard(token)
    logger.debug(f"Dashboard cargado: {len(courses)} cursos")
    return DashboardResponse(
        stats=compute_stats(courses),
        courses=filter_courses(courses, status=status, search=search),
    )
