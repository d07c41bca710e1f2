"""Fixtures de pytest para las pruebas del reproductor de cursos."""

import asyncio
import json
import os
import tempfile

# Antes de importar courseplayer: snapshot en memoria y logs fuera del repo
os.environ.setdefault("SNAPSHOT_DATABASE_URI", "sqlite://")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "courseplayer-test-logs"))

import httpx
import pytest
from jose import JWTError, jwt

from courseplayer.crud.crud_snapshot import SnapshotStore
from courseplayer.db.session import create_session_factory
from courseplayer.services.backend_client import BackendClient
from courseplayer.services.progress_bus import ProgressBus

BACKEND_URL = "http://backend.test"
TOKEN_SECRET = "test-secret"
COURSE_ID = "course-1"


def make_token(user_id: str) -> str:
    """Token firmado con el secreto del backend de prueba; el reproductor no verifica la firma."""
    return jwt.encode({"userId": user_id}, TOKEN_SECRET, algorithm="HS256")


def sample_videos():
    return [
        {"_id": "v1", "title": {"en": "Introduction", "es": "Introducción"}, "duration": "1:05",
         "isFreePreview": True, "videoUrl": "https://cdn.test/v1.mp4"},
        {"_id": "v2", "title": "Setup", "duration": 65, "isFreePreview": False,
         "videoUrl": "https://cdn.test/v2.mp4"},
        {"_id": "v3", "title": "Deep dive", "duration": "1:00:00", "isFreePreview": False,
         "videoUrl": "https://cdn.test/v3.mp4"},
    ]


class FakeBackend:
    """
    Backend REST en memoria para httpx.MockTransport. Registra las llamadas
    recibidas y permite forzar fallas y retener respuestas de progreso.
    """

    def __init__(self, course_id: str = COURSE_ID):
        self.course_id = course_id
        self.videos = sample_videos()
        self.purchased = False
        self.progress = {}
        self.dashboard_courses = []
        self.checkout_error = None
        self.failures = {}
        self.calls = []
        self._holds = []

    # --- Control desde los tests ---

    def fail(self, path_prefix: str, status_code: int = 500, message: str = "Server error"):
        self.failures[path_prefix] = (status_code, message)

    def fail_with(self, path_prefix: str, exception: Exception):
        self.failures[path_prefix] = exception

    def recover(self, path_prefix: str):
        self.failures.pop(path_prefix, None)

    def hold_next_update(self):
        """Retiene la siguiente escritura de progreso hasta liberar el evento."""
        arrived, release = asyncio.Event(), asyncio.Event()
        self._holds.append((arrived, release))
        return arrived, release

    def calls_to(self, path_prefix: str):
        return [call for call in self.calls if call[1].startswith(path_prefix)]

    # --- Respuestas ---

    @staticmethod
    def _verify(token: str) -> bool:
        try:
            jwt.decode(token, TOKEN_SECRET, algorithms=["HS256"])
        except JWTError:
            return False
        return True

    def _progress_record(self, watched: float, total: float, position: float, completed: bool = False):
        percentage = min(100, round(watched / total * 100)) if total else 0
        completed = completed or percentage >= 90
        return {
            "watchedDuration": watched,
            "totalDuration": total,
            "watchedPercentage": 100 if completed else percentage,
            "completionPercentage": 100 if completed else percentage,
            "isCompleted": completed,
            "lastPosition": position,
        }

    def overall_progress(self):
        total = len(self.videos)
        records = [self.progress.get(video["_id"]) for video in self.videos]
        completed = sum(1 for record in records if record and record["isCompleted"])
        percentage = round(sum(record["completionPercentage"] for record in records if record) / total)
        return {
            "totalVideos": total,
            "completedVideos": completed,
            "totalProgress": percentage,
            "isCompleted": percentage >= 100 and completed >= total,
        }

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))
        header = request.headers.get("Authorization", "")
        token = header[len("Bearer "):] if header.startswith("Bearer ") else None
        authorized = token is not None and self._verify(token)

        for prefix, failure in self.failures.items():
            if path.startswith(prefix):
                if isinstance(failure, Exception):
                    raise failure
                status_code, message = failure
                return httpx.Response(status_code, json={"success": False, "message": message})

        if path.startswith("/api/videos/course/"):
            has_access = authorized and self.purchased
            videos = []
            for video in self.videos:
                accessible = has_access or video["isFreePreview"]
                item = dict(video, hasAccess=accessible)
                if not accessible:
                    item["videoUrl"] = ""
                videos.append(item)
            return httpx.Response(200, json={"success": True, "data": {"videos": videos, "userHasPurchased": has_access}})

        if token is None:
            return httpx.Response(401, json={"success": False, "message": "Not authorized, no token"})
        if not authorized:
            return httpx.Response(401, json={"success": False, "message": "Not authorized, token failed"})

        if path.startswith("/api/payment/check-purchase/"):
            return httpx.Response(200, json={"success": True, "hasPurchased": self.purchased})

        if path == "/api/payment/create-checkout-session":
            if self.checkout_error is not None:
                status_code, message = self.checkout_error
                return httpx.Response(status_code, json={"success": False, "message": message})
            return httpx.Response(200, json={"sessionId": "cs_test_1", "url": "https://checkout.test/cs_test_1"})

        if path.startswith("/api/progress/video/"):
            video_id = path.rsplit("/", 1)[-1]
            return httpx.Response(200, json={"success": True, "data": {"progress": self.progress.get(video_id)}})

        if path == "/api/progress/update":
            body = json.loads(request.content)
            if self._holds:
                arrived, release = self._holds.pop(0)
                arrived.set()
                await release.wait()
            previous = self.progress.get(body["videoId"])
            watched = max(body["watchedDuration"], previous["watchedDuration"] if previous else 0)
            record = self._progress_record(
                watched, body["totalDuration"], body["timestamp"],
                completed=bool(previous and previous["isCompleted"]),
            )
            # La respuesta refleja lo que llegó en esta petición
            response_record = self._progress_record(
                body["watchedDuration"], body["totalDuration"], body["timestamp"]
            )
            self.progress[body["videoId"]] = record
            return httpx.Response(200, json={
                "success": True,
                "data": {"progress": response_record, "overallProgress": self.overall_progress()},
            })

        if path.startswith("/api/progress/course/"):
            return httpx.Response(200, json={"success": True, "data": {"overallProgress": self.overall_progress()}})

        if path == "/api/progress/dashboard":
            return httpx.Response(200, json={"success": True, "data": {"courses": self.dashboard_courses}})

        return httpx.Response(404, json={"success": False, "message": f"Route not found: {path}"})


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def client(backend):
    return BackendClient(base_url=BACKEND_URL, transport=httpx.MockTransport(backend.handler))


@pytest.fixture
def bus():
    return ProgressBus()


@pytest.fixture
def snapshot_store():
    return SnapshotStore(create_session_factory("sqlite://"))


@pytest.fixture
def token():
    return make_token("user-1")


@pytest.fixture
def token_for():
    return make_token
