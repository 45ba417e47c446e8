import os
import tempfile
import unittest

from backend.db import SqlDbClient
from shared.errors import ValidationError


class SqlDbClientTests(unittest.TestCase):
    """
    Uses in-memory SQLite via SQLAlchemy for fast/local testing.
    """

    def setUp(self):
        self.db = SqlDbClient("sqlite+pysqlite:///:memory:")

    def test_default_list_is_seeded_once(self):
        lists = self.db.list_lists()
        self.assertEqual([record.id for record in lists], ["default"])
        self.assertEqual(lists[0].name, "Tarefas")

    def test_create_and_get_task_with_steps(self):
        task = self.db.create_task(
            title="Plan trip",
            list_id="default",
            steps=[{"title": "Book"}, {"title": "Pack"}],
        )
        fetched = self.db.get_task(task.id)
        self.assertIsNotNone(fetched)
        self.assertEqual([s.title for s in fetched.steps], ["Book", "Pack"])
        self.assertEqual([s.order_index for s in fetched.steps], [0, 1])
        self.assertEqual(fetched.as_dict()["listId"], "default")

    def test_list_tasks_newest_first(self):
        first = self.db.create_task(title="a", list_id="default")
        second = self.db.create_task(title="b", list_id="default")
        self.assertEqual([t.id for t in self.db.list_tasks()], [second.id, first.id])

    def test_update_task_replaces_steps_keeping_ids(self):
        task = self.db.create_task(
            title="t", list_id="default", steps=[{"title": "x"}, {"title": "y"}]
        )
        kept = task.steps[0]
        updated = self.db.update_task(
            task.id,
            {"title": "renamed"},
            steps=[{"title": "z"}, {"id": kept.id, "title": "x2"}],
        )
        self.assertEqual(updated.title, "renamed")
        self.assertEqual([s.title for s in updated.steps], ["z", "x2"])
        self.assertEqual(updated.steps[1].id, kept.id)
        self.assertEqual(updated.steps[1].order_index, 1)

    def test_update_missing_task_returns_none(self):
        self.assertIsNone(self.db.update_task("missing", {"title": "x"}))

    def test_delete_task_cascades_to_steps(self):
        task = self.db.create_task(title="t", list_id="default", steps=[{"title": "x"}])
        step_id = task.steps[0].id
        self.assertTrue(self.db.delete_task(task.id))
        self.assertIsNone(self.db.get_task(task.id))
        self.assertIsNone(self.db.update_step(task.id, step_id, {"completed": True}))
        self.assertFalse(self.db.delete_task(task.id))

    def test_update_step_checks_owning_task(self):
        task = self.db.create_task(title="t", list_id="default", steps=[{"title": "x"}])
        other = self.db.create_task(title="o", list_id="default")
        step_id = task.steps[0].id
        self.assertIsNone(self.db.update_step(other.id, step_id, {"completed": True}))
        step = self.db.update_step(task.id, step_id, {"completed": True})
        self.assertTrue(step.completed)

    def test_delete_list_moves_tasks(self):
        work = self.db.create_list(name="Work", icon="briefcase")
        task = self.db.create_task(title="t", list_id=work.id)
        self.assertTrue(self.db.delete_list(work.id))
        self.assertEqual(self.db.get_task(task.id).list_id, "default")
        self.assertIsNone(self.db.get_list(work.id))
        self.assertFalse(self.db.delete_list(work.id))

    def test_default_list_cannot_be_deleted(self):
        with self.assertRaises(ValidationError):
            self.db.delete_list("default")

    def test_update_list(self):
        work = self.db.create_list(name="Work")
        self.assertEqual(work.color, "#3B82F6")
        updated = self.db.update_list(work.id, {"color": "#000000", "ignored": 1})
        self.assertEqual(updated.color, "#000000")
        self.assertIsNone(self.db.update_list("missing", {"name": "x"}))


class SqlDbFileTests(unittest.TestCase):
    def test_data_survives_a_new_client(self):
        with tempfile.TemporaryDirectory() as tmp:
            url = f"sqlite:///{os.path.join(tmp, 'tasks.db')}"
            first = SqlDbClient(url)
            task = first.create_task(title="persist me", list_id="default")
            first.engine.dispose()

            second = SqlDbClient(url)
            self.assertEqual(second.get_task(task.id).title, "persist me")
            self.assertEqual(len(second.list_lists()), 1)
            second.engine.dispose()


if __name__ == "__main__":
    unittest.main()
