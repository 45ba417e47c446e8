import random
import unittest

from shared.errors import NotFoundError, ValidationError
from shared.filters import SortBy, TaskFilter
from shared.types import EntityKind
from sync.config import SyncSettings
from sync.mutator import OptimisticMutator
from sync.store import InMemoryRemoteStore
from sync.tasks import OptimisticTasks, ordered_steps

TEST_SETTINGS = SyncSettings(
    debounce_seconds=0.01, max_retries=0, retry_backoff_seconds=0, mirror_backend="memory"
)


class OptimisticTasksTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.remote = InMemoryRemoteStore(EntityKind.TASKS)
        self.tasks = OptimisticTasks(
            OptimisticMutator(EntityKind.TASKS, "user-1", self.remote, settings=TEST_SETTINGS)
        )

    async def asyncTearDown(self):
        await self.tasks.mutator.close()

    def assert_dense(self, task_id):
        steps = ordered_steps(self.tasks.get(task_id))
        self.assertEqual([step.order_index for step in steps], list(range(len(steps))))

    async def test_create_task_trims_title_and_requires_list(self):
        task = self.tasks.create_task("  Buy milk  ", "default")
        self.assertEqual(task.title, "Buy milk")
        with self.assertRaises(ValidationError):
            self.tasks.create_task("Buy milk", "")

    async def test_step_order_stays_dense(self):
        task = self.tasks.create_task("Plan trip", "default")
        steps = [self.tasks.add_step(task.id, f"Step {n}") for n in range(6)]
        self.assert_dense(task.id)

        rng = random.Random(7)
        for _ in range(20):
            current = ordered_steps(self.tasks.get(task.id))
            choice = rng.choice(["remove", "move", "reorder", "add"])
            if choice == "remove" and len(current) > 1:
                self.tasks.remove_step(task.id, rng.choice(current).id)
            elif choice == "move" and current:
                self.tasks.move_step(task.id, rng.choice(current).id, rng.choice(["up", "down"]))
            elif choice == "reorder":
                ids = [step.id for step in current]
                rng.shuffle(ids)
                self.tasks.reorder_steps(task.id, ids)
            else:
                self.tasks.add_step(task.id, "Extra")
            self.assert_dense(task.id)

        await self.tasks.mutator.drain()
        self.assert_dense(self.tasks.mutator.resolve_id(task.id))
        self.assertGreater(len(steps), 0)

    async def test_move_step(self):
        task = self.tasks.create_task("Plan trip", "default")
        first = self.tasks.add_step(task.id, "Book flight")
        second = self.tasks.add_step(task.id, "Book hotel")

        self.tasks.move_step(task.id, first.id, "up")
        self.tasks.move_step(task.id, first.id, "down")

        titles = [step.title for step in ordered_steps(self.tasks.get(task.id))]
        self.assertEqual(titles, ["Book hotel", "Book flight"])
        self.assertEqual(ordered_steps(self.tasks.get(task.id))[0].id, second.id)

    async def test_step_updates(self):
        task = self.tasks.create_task("Plan trip", "default")
        step = self.tasks.add_step(task.id, "Book flight")

        toggled = self.tasks.toggle_step(task.id, step.id)
        self.assertTrue(toggled.completed)
        renamed = self.tasks.update_step(task.id, step.id, title=" Book train ")
        self.assertEqual(renamed.title, "Book train")

        with self.assertRaises(ValidationError):
            self.tasks.update_step(task.id, step.id, title=" ")
        with self.assertRaises(ValidationError):
            self.tasks.update_step(task.id, step.id, colour="red")
        with self.assertRaises(ValidationError):
            self.tasks.add_step(task.id, "")
        with self.assertRaises(NotFoundError):
            self.tasks.remove_step(task.id, "missing")
        with self.assertRaises(ValidationError):
            self.tasks.reorder_steps(task.id, [])

    async def test_steps_reach_the_remote_in_order(self):
        task = self.tasks.create_task("Plan trip", "default")
        await self.tasks.mutator.drain()
        task_id = self.tasks.mutator.resolve_id(task.id)

        self.tasks.add_step(task_id, "Book flight")
        self.tasks.add_step(task_id, "Book hotel")
        await self.tasks.mutator.drain()

        steps = self.remote.documents[task_id]["steps"]
        self.assertEqual([s["title"] for s in steps], ["Book flight", "Book hotel"])
        self.assertEqual([s["orderIndex"] for s in steps], [0, 1])
        self.assertEqual(len(self.remote.calls_to("update")), 1)
        for step in steps:
            self.assertNotIn("dueDate", step)
            self.assertNotIn("assignee", step)

    async def test_toggles(self):
        task = self.tasks.create_task("Buy milk", "default")
        self.assertTrue(self.tasks.toggle_completion(task.id).completed)
        self.assertTrue(self.tasks.toggle_importance(task.id).important)
        self.assertFalse(self.tasks.toggle_completion(task.id).completed)

    async def test_filtered(self):
        self.tasks.create_task("b task", "default")
        self.tasks.create_task("a task", "default", important=True)
        done = self.tasks.create_task("c task", "default")
        self.tasks.toggle_completion(done.id)

        titles = [t.title for t in self.tasks.filtered(TaskFilter(sort_by=SortBy.ALPHABETICAL))]
        self.assertEqual(titles, ["a task", "b task", "c task"])
        important = self.tasks.filtered(TaskFilter(important=True))
        self.assertEqual([t.title for t in important], ["a task"])

    async def test_delete_task(self):
        task = self.tasks.create_task("Buy milk", "default")
        await self.tasks.mutator.drain()
        task_id = self.tasks.mutator.resolve_id(task.id)

        self.tasks.delete_task(task_id)
        await self.tasks.mutator.drain()

        self.assertEqual(self.tasks.tasks, [])
        with self.assertRaises(NotFoundError):
            self.tasks.get(task_id)


if __name__ == "__main__":
    unittest.main()
