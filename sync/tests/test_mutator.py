import asyncio
import unittest

from shared.errors import NetworkError, NotFoundError, ValidationError
from shared.types import EntityKind, SyncStatus, Task, entity_to_dict, is_placeholder_id
from sync.config import SyncSettings
from sync.mirror import InMemoryMirror
from sync.mutator import SYNC_ERROR_MESSAGE, OptimisticMutator
from sync.store import InMemoryRemoteStore


def make_settings(**overrides):
    values = {
        "debounce_seconds": 0.01,
        "create_error_grace_seconds": 10,
        "remote_timeout_seconds": 1,
        "max_retries": 0,
        "retry_backoff_seconds": 0,
        "mirror_backend": "memory",
    }
    values.update(overrides)
    return SyncSettings(**values)


class OptimisticMutatorTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.remote = InMemoryRemoteStore(EntityKind.TASKS)
        self.mirror = InMemoryMirror()
        self.mutator = self.make_mutator()

    def make_mutator(self, **overrides):
        return OptimisticMutator(
            EntityKind.TASKS,
            "user-1",
            self.remote,
            mirror=self.mirror,
            settings=make_settings(**overrides),
        )

    async def asyncTearDown(self):
        await self.mutator.close()

    def create(self, title="Buy milk", **fields):
        return self.mutator.create({"title": title, "list_id": "default", **fields})

    async def create_synced(self, title="Buy milk"):
        task = self.create(title)
        return await self.mutator.wait_settled(task.id)

    async def start_flush(self):
        flush = asyncio.create_task(self.mutator.flush())
        await asyncio.sleep(0.005)
        return flush

    async def test_create_is_visible_before_remote_call(self):
        task = self.create()

        entry = self.mutator.cache.get(task.id)
        self.assertTrue(is_placeholder_id(task.id))
        self.assertEqual(entry.sync_status, SyncStatus.PENDING)
        self.assertEqual(self.mutator.entities(), [task])
        self.assertEqual(self.remote.calls, [])

    async def test_create_replaces_placeholder_exactly_once(self):
        task = self.create()
        await self.mutator.drain()

        entries = self.mutator.list()
        self.assertEqual(len(entries), 1)
        server_id = entries[0].id
        self.assertIn(server_id, self.remote.documents)
        self.assertEqual(entries[0].sync_status, SyncStatus.SYNCED)
        self.assertEqual(self.mutator.resolve_id(task.id), server_id)
        self.assertEqual(self.mutator.get(task.id).title, "Buy milk")

    async def test_rapid_updates_coalesce_into_one_call(self):
        task = await self.create_synced()

        self.mutator.update(task.id, {"title": "Oat milk"})
        self.mutator.update(task.id, {"notes": "2 litres"})
        self.mutator.update(task.id, {"title": "Soy milk"})
        self.assertEqual(self.mutator.get(task.id).title, "Soy milk")
        await self.mutator.drain()

        self.assertEqual(
            self.remote.calls_to("update"),
            [{"id": task.id, "title": "Soy milk", "notes": "2 litres"}],
        )
        self.assertEqual(self.mutator.cache.get(task.id).sync_status, SyncStatus.SYNCED)

    async def test_update_failure_keeps_optimistic_values(self):
        task = await self.create_synced()
        self.remote.fail_when(lambda op, _: op == "update", NetworkError("offline"))

        self.mutator.update(task.id, {"title": "Renamed"})
        with self.assertRaises(NetworkError):
            await self.mutator.wait_settled(task.id)

        entry = self.mutator.cache.get(task.id)
        self.assertEqual(entry.sync_status, SyncStatus.ERROR)
        self.assertTrue(entry.error.startswith(SYNC_ERROR_MESSAGE))
        self.assertEqual(entry.entity.title, "Renamed")

    async def test_delete_keeps_entity_until_remote_settles(self):
        task = await self.create_synced()
        self.remote.latency_seconds = 0.05

        self.mutator.delete(task.id)
        self.assertTrue(self.mutator.cache.get(task.id).is_deleting)
        flush = await self.start_flush()
        self.assertIn(task.id, [entry.id for entry in self.mutator.list()])

        await flush
        self.assertEqual(self.mutator.list(), [])
        self.assertNotIn(task.id, self.remote.documents)

    async def test_failed_delete_restores_entity(self):
        task = await self.create_synced()
        self.remote.fail_when(lambda op, _: op == "delete", NetworkError("offline"))

        self.mutator.delete(task.id)
        await self.mutator.drain()

        entry = self.mutator.cache.get(task.id)
        self.assertFalse(entry.is_deleting)
        self.assertEqual(entry.sync_status, SyncStatus.ERROR)
        self.assertEqual(entry.entity, task)
        self.assertIn(task.id, self.remote.documents)

    async def test_delete_of_missing_remote_entity_succeeds(self):
        task = await self.create_synced()
        del self.remote.documents[task.id]

        self.mutator.delete(task.id)
        await self.mutator.drain()

        self.assertEqual(self.mutator.list(), [])

    async def test_update_before_create_is_sent_folds_into_create(self):
        task = self.create()
        self.mutator.update(task.id, {"notes": "2 litres", "important": True})
        await self.mutator.drain()

        creates = self.remote.calls_to("create")
        self.assertEqual(len(creates), 1)
        self.assertEqual(creates[0]["notes"], "2 litres")
        self.assertTrue(creates[0]["important"])
        self.assertEqual(self.remote.calls_to("update"), [])

    async def test_update_during_create_is_replayed_on_server_id(self):
        self.remote.latency_seconds = 0.02
        task = self.create()
        flush = await self.start_flush()
        self.assertTrue(self.mutator.queue.is_in_flight(task.id))

        self.mutator.update(task.id, {"title": "Oat milk"})
        await flush
        settled = await self.mutator.wait_settled(task.id)
        await self.mutator.drain()

        server_id = self.mutator.resolve_id(task.id)
        self.assertEqual(self.remote.calls_to("update"), [{"id": server_id, "title": "Oat milk"}])
        self.assertEqual(settled.title, "Oat milk")
        self.assertEqual(len(self.mutator.list()), 1)
        self.assertEqual(self.remote.documents[server_id]["title"], "Oat milk")

    async def test_delete_during_create_deletes_server_copy(self):
        self.remote.latency_seconds = 0.02
        task = self.create()
        flush = await self.start_flush()

        self.mutator.delete(task.id)
        self.assertTrue(self.mutator.cache.get(task.id).is_deleting)
        await flush
        await self.mutator.drain()

        self.assertEqual(self.mutator.list(), [])
        self.assertEqual(self.remote.documents, {})

    async def test_delete_before_create_is_sent_never_reaches_remote(self):
        task = self.create()
        deleted = []

        self.mutator.delete(task.id, on_deleted=deleted.append)
        await self.mutator.drain()

        self.assertEqual(deleted, [task.id])
        self.assertEqual(self.mutator.list(), [])
        self.assertEqual(self.remote.calls, [])
        with self.assertRaises(NotFoundError):
            await self.mutator.wait_settled(task.id)

    async def test_failed_create_is_evicted_after_grace_period(self):
        await self.mutator.close()
        self.mutator = self.make_mutator(create_error_grace_seconds=0.02)
        self.remote.fail_when(lambda op, _: op == "create", NetworkError("offline"))

        task = self.create()
        await self.mutator.drain()

        entry = self.mutator.cache.get(task.id)
        self.assertEqual(entry.sync_status, SyncStatus.ERROR)
        self.assertEqual(self.mutator.entities(), [])
        with self.assertRaises(NotFoundError):
            self.mutator.update(task.id, {"title": "Retry"})

        await asyncio.sleep(0.05)
        self.assertEqual(self.mutator.list(), [])

    async def test_timeouts_are_retried_then_marked_error(self):
        await self.mutator.close()
        self.mutator = self.make_mutator(remote_timeout_seconds=0.01, max_retries=2)
        self.remote.latency_seconds = 0.1

        task = self.create()
        with self.assertLogs("sync.mutator", level="INFO"):
            with self.assertRaises(NetworkError):
                await self.mutator.wait_settled(task.id)

        self.assertEqual(len(self.remote.calls_to("create")), 3)
        self.assertEqual(self.mutator.cache.get(task.id).sync_status, SyncStatus.ERROR)
        self.assertEqual(self.remote.documents, {})

    async def test_validation_never_touches_cache(self):
        with self.assertRaises(ValidationError):
            self.create("   ")
        with self.assertRaises(ValidationError):
            self.create(colour="red")
        task = await self.create_synced()
        with self.assertRaises(ValidationError):
            self.mutator.update(task.id, {"title": ""})

        self.assertEqual(len(self.mutator.list()), 1)
        self.assertEqual(self.mutator.get(task.id).title, "Buy milk")

    async def test_toggle(self):
        task = await self.create_synced()

        toggled = self.mutator.toggle(task.id, "completed")
        await self.mutator.drain()

        self.assertTrue(toggled.completed)
        self.assertEqual(self.remote.calls_to("update"), [{"id": task.id, "completed": True}])

    async def test_refresh_seeds_from_mirror_then_overwrites_it(self):
        cached = Task(id="old", owner_id="user-1", title="Cached", list_id="default")
        self.mirror.save("user-1", EntityKind.TASKS, [entity_to_dict(cached, json_safe=True)])
        server = await self.remote.create({"title": "Server", "listId": "default"}, "user-1")
        self.remote.latency_seconds = 0.02

        refresh = asyncio.create_task(self.mutator.refresh())
        await asyncio.sleep(0.005)
        self.assertEqual([t.title for t in self.mutator.entities()], ["Cached"])

        await refresh
        self.assertEqual([t.id for t in self.mutator.entities()], [server["id"]])
        mirrored = self.mirror.load("user-1", EntityKind.TASKS)
        self.assertEqual([item["title"] for item in mirrored], ["Server"])

    async def test_snapshot_keeps_unsynced_local_state(self):
        synced = await self.create_synced("Synced")
        self.mutator.update(synced.id, {"title": "Edited"})
        pending = self.create("Pending")

        self.mutator.apply_remote_snapshot(await self.remote.list("user-1"))

        self.assertEqual(self.mutator.get(synced.id).title, "Edited")
        self.assertIsNotNone(self.mutator.get(pending.id))
        await self.mutator.drain()
        self.assertEqual(len(self.mutator.list()), 2)

    async def test_subscription_applies_remote_changes(self):
        self.mutator.start_subscription()
        other_device = await self.remote.create({"title": "Elsewhere", "listId": "default"}, "user-1")
        await asyncio.sleep(0)

        self.assertEqual(self.mutator.get(other_device["id"]).title, "Elsewhere")
        self.mutator.stop_subscription()
        self.assertEqual(self.remote.registry.listeners, [])


if __name__ == "__main__":
    unittest.main()
