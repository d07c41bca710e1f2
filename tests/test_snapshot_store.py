"""Pruebas del almacén local de snapshots de progreso."""

from sqlalchemy.exc import OperationalError

from courseplayer.crud.crud_snapshot import SnapshotStore
from courseplayer.schemas.progress import Progress


class TestSnapshotStore:
    def test_save_and_load(self, snapshot_store):
        progress = Progress(watched_duration=40, total_duration=100, watched_percentage=40,
                            completion_percentage=40, last_position=38)

        assert snapshot_store.save("user-1", "course-1", "v1", progress) is True

        loaded = snapshot_store.load("user-1", "course-1", "v1")
        assert loaded == progress
        assert snapshot_store.load("user-2", "course-1", "v1") is None

    def test_upsert_keeps_completion(self, snapshot_store):
        snapshot_store.save("user-1", "course-1", "v1", Progress(watched_duration=95, is_completed=True))
        snapshot_store.save("user-1", "course-1", "v1", Progress(watched_duration=10))

        loaded = snapshot_store.load("user-1", "course-1", "v1")
        assert loaded.is_completed is True
        assert loaded.completion_percentage == 100

    def test_load_course_and_clear_user(self, snapshot_store):
        snapshot_store.save("user-1", "course-1", "v1", Progress(watched_duration=1))
        snapshot_store.save("user-1", "course-1", "v2", Progress(watched_duration=2))
        snapshot_store.save("user-1", "course-2", "v9", Progress(watched_duration=3))

        assert set(snapshot_store.load_course("user-1", "course-1")) == {"v1", "v2"}
        assert snapshot_store.clear_user("user-1") == 3
        assert snapshot_store.load_course("user-1", "course-1") == {}

    def test_storage_failure_is_not_fatal(self):
        class BrokenSession:
            def query(self, *args):
                raise OperationalError("SELECT", {}, Exception("disk I/O error"))

            def rollback(self):
                pass

            def close(self):
                pass

        store = SnapshotStore(BrokenSession)

        assert store.save("user-1", "course-1", "v1", Progress()) is False
        assert store.load("user-1", "course-1", "v1") is None
        assert store.load_course("user-1", "course-1") == {}
        assert store.clear_user("user-1") == 0
