import unittest

from shared.types import SyncStatus, Task, TaskList, new_placeholder_id
from sync.cache import EntityCache


def make_task(task_id, title="Task"):
    return Task(id=task_id, owner_id="user-1", title=title, list_id="default")


class EntityCacheTests(unittest.TestCase):
    def test_newest_first_inserts_at_head(self):
        cache = EntityCache()
        cache.upsert(make_task("a"))
        cache.upsert(make_task("b"))
        cache.upsert(make_task("a", "Renamed"))

        self.assertEqual([entry.id for entry in cache.list()], ["b", "a"])
        self.assertEqual(cache.get("a").entity.title, "Renamed")

    def test_oldest_first_appends(self):
        cache = EntityCache(newest_first=False)
        cache.upsert(TaskList(id="l1", owner_id="user-1", name="One"))
        cache.upsert(TaskList(id="l2", owner_id="user-1", name="Two"))

        self.assertEqual([entry.id for entry in cache.list()], ["l1", "l2"])

    def test_replace_keeps_position(self):
        cache = EntityCache()
        placeholder = new_placeholder_id()
        cache.upsert(make_task("older"))
        cache.upsert(make_task(placeholder), status=SyncStatus.SYNCING)
        cache.upsert(make_task("newer"))

        cache.replace(placeholder, make_task("server-id"))

        self.assertEqual(
            [entry.id for entry in cache.list()], ["newer", "server-id", "older"]
        )
        self.assertNotIn(placeholder, cache)
        self.assertEqual(cache.get("server-id").sync_status, SyncStatus.SYNCED)

    def test_replace_never_duplicates(self):
        cache = EntityCache()
        placeholder = new_placeholder_id()
        cache.upsert(make_task(placeholder))
        # A snapshot delivered the server copy before the create resolved.
        cache.upsert(make_task("server-id"))

        cache.replace(placeholder, make_task("server-id", "From create"))

        self.assertEqual(len(cache), 1)
        self.assertEqual(cache.get("server-id").entity.title, "From create")

    def test_failed_creates_are_hidden(self):
        cache = EntityCache()
        placeholder = new_placeholder_id()
        cache.upsert(make_task(placeholder), status=SyncStatus.ERROR, error="boom")
        cache.upsert(make_task("synced"), status=SyncStatus.ERROR, error="boom")

        self.assertEqual(len(cache.list()), 2)
        self.assertEqual([task.id for task in cache.entities()], ["synced"])

    def test_status_and_deleting_flags(self):
        cache = EntityCache()
        cache.upsert(make_task("a"))

        cache.set_status("a", SyncStatus.ERROR, error="Falha ao sincronizar")
        cache.set_deleting("a", True)
        cache.set_status("missing", SyncStatus.SYNCED)

        entry = cache.get("a")
        self.assertEqual(entry.sync_status, SyncStatus.ERROR)
        self.assertEqual(entry.error, "Falha ao sincronizar")
        self.assertTrue(entry.is_deleting)

    def test_remove_is_idempotent(self):
        cache = EntityCache()
        cache.upsert(make_task("a"))
        cache.remove("a")
        cache.remove("a")
        self.assertEqual(len(cache), 0)

    def test_observers(self):
        cache = EntityCache()
        seen = []
        unsubscribe = cache.subscribe(lambda c: seen.append(len(c)))

        def broken(_):
            raise RuntimeError("observer bug")

        cache.subscribe(broken)
        with self.assertLogs("sync.cache", level="ERROR"):
            cache.upsert(make_task("a"))
        unsubscribe()
        with self.assertLogs("sync.cache", level="ERROR"):
            cache.upsert(make_task("b"))

        self.assertEqual(seen, [1])

    def test_reset_keeps_given_order(self):
        cache = EntityCache()
        cache.upsert(make_task("stale"))
        other = EntityCache()
        other.upsert(make_task("x"))
        other.upsert(make_task("y"))

        cache.reset(other.list())

        self.assertEqual([entry.id for entry in cache], ["y", "x"])


if __name__ == "__main__":
    unittest.main()
