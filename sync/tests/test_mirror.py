import json
import os
import shutil
import tempfile
import unittest
from unittest import mock

from redis import exceptions as redis_exceptions

from shared.types import EntityKind
from sync.mirror import InMemoryMirror, JsonFileMirror, RedisMirror, mirror_key

ITEMS = [{"id": "t1", "title": "Buy milk", "createdAt": "2025-01-01T00:00:00+00:00"}]


class MirrorKeyTests(unittest.TestCase):
    def test_key_is_scoped_by_owner_and_kind(self):
        self.assertEqual(mirror_key("user-1", EntityKind.TASKS), "taskpad:user-1:tasks")
        self.assertEqual(
            mirror_key("user-1", EntityKind.TASK_LISTS, "app"), "app:user-1:taskLists"
        )


class InMemoryMirrorTests(unittest.TestCase):
    def test_round_trip_and_clear(self):
        mirror = InMemoryMirror()
        self.assertIsNone(mirror.load("user-1", EntityKind.TASKS))

        mirror.save("user-1", EntityKind.TASKS, ITEMS)
        self.assertEqual(mirror.load("user-1", EntityKind.TASKS), ITEMS)
        self.assertIsNone(mirror.load("user-2", EntityKind.TASKS))

        mirror.clear("user-1", EntityKind.TASKS)
        self.assertIsNone(mirror.load("user-1", EntityKind.TASKS))

    def test_corrupt_blob_is_ignored(self):
        mirror = InMemoryMirror(blobs={mirror_key("user-1", EntityKind.NOTES): "{not json"})
        with self.assertLogs("sync.mirror", level="WARNING"):
            self.assertIsNone(mirror.load("user-1", EntityKind.NOTES))


class JsonFileMirrorTests(unittest.TestCase):
    def setUp(self):
        self.directory = tempfile.mkdtemp()
        self.mirror = JsonFileMirror(os.path.join(self.directory, "mirror"))

    def tearDown(self):
        shutil.rmtree(self.directory)

    def test_save_overwrites_whole_blob(self):
        self.mirror.save("user-1", EntityKind.TASKS, ITEMS)
        self.mirror.save("user-1", EntityKind.TASKS, [])

        self.assertEqual(self.mirror.load("user-1", EntityKind.TASKS), [])
        files = os.listdir(os.path.join(self.directory, "mirror"))
        self.assertEqual(files, ["taskpad_user-1_tasks.json"])

    def test_missing_and_corrupt_files(self):
        self.assertIsNone(self.mirror.load("user-1", EntityKind.TASKS))
        self.mirror.save("user-1", EntityKind.TASKS, ITEMS)
        path = os.path.join(self.directory, "mirror", "taskpad_user-1_tasks.json")
        with open(path, "w", encoding="utf-8") as f:
            f.write(json.dumps({"not": "a list"}))

        with self.assertLogs("sync.mirror", level="WARNING"):
            self.assertIsNone(self.mirror.load("user-1", EntityKind.TASKS))

        self.mirror.clear("user-1", EntityKind.TASKS)
        self.mirror.clear("user-1", EntityKind.TASKS)
        self.assertFalse(os.path.exists(path))


class RedisMirrorTests(unittest.TestCase):
    def setUp(self):
        patcher = mock.patch("sync.mirror.redis.Redis.from_url")
        self.from_url = patcher.start()
        self.addCleanup(patcher.stop)
        self.client = self.from_url.return_value
        self.mirror = RedisMirror(url="redis://localhost:6379/0")

    def test_save_and_load(self):
        self.mirror.save("user-1", EntityKind.TASKS, ITEMS)
        self.client.set.assert_called_once_with(
            "taskpad:user-1:tasks", json.dumps(ITEMS)
        )

        self.client.get.return_value = json.dumps(ITEMS).encode()
        self.assertEqual(self.mirror.load("user-1", EntityKind.TASKS), ITEMS)
        self.client.get.return_value = None
        self.assertIsNone(self.mirror.load("user-1", EntityKind.TASKS))

    def test_connection_errors_reconnect_and_never_raise(self):
        self.client.get.side_effect = redis_exceptions.ConnectionError("reset")
        self.client.set.side_effect = redis_exceptions.ConnectionError("reset")

        self.assertIsNone(self.mirror.load("user-1", EntityKind.TASKS))
        with self.assertLogs("sync.mirror", level="WARNING"):
            self.mirror.save("user-1", EntityKind.TASKS, ITEMS)

        self.assertEqual(self.from_url.call_count, 3)


if __name__ == "__main__":
    unittest.main()
