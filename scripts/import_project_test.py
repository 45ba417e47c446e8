# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

import unittest
from unittest import mock

from scripts import import_project
from shared.project_io import export_project, import_project as read_bundle
from shared.types import EntityKind, Note, Task
from sync.config import SyncSettings
from sync.mirror import InMemoryMirror
from sync.store import InMemoryRegistry, InMemoryRemoteStore
from sync.workspace import open_workspace

TEST_SETTINGS = SyncSettings(debounce_seconds=0.01, max_retries=0, mirror_backend="memory")


class RestoreProjectTest(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        registry = InMemoryRegistry()
        self.remotes = {kind: InMemoryRemoteStore(kind, registry) for kind in EntityKind}
        patcher = mock.patch.object(
            import_project, "open_workspace", side_effect=self.in_memory_workspace
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def in_memory_workspace(self, owner_id):
        return open_workspace(
            owner_id,
            remote_for=self.remotes.__getitem__,
            mirror=InMemoryMirror(),
            settings=TEST_SETTINGS,
        )

    async def test_bundle_is_created_for_the_new_owner(self):
        bundle = export_project(
            [Note(id="n1", owner_id="user-1", title="Standup")],
            [
                Task(id="t1", owner_id="user-1", title="Buy milk", list_id="work"),
                Task(id="t2", owner_id="user-1", title="Call mum", list_id="work"),
            ],
        )
        notes, tasks = read_bundle(bundle, "user-2")

        results = await import_project.restore_project("user-2", notes, tasks)

        self.assertEqual(results["tasks"], {"synced": 2, "failed": 0})
        self.assertEqual(results["notes"], {"synced": 1, "failed": 0})
        (default_list,) = self.remotes[EntityKind.TASK_LISTS].documents.values()
        self.assertEqual(default_list["ownerId"], "user-2")
        task_docs = self.remotes[EntityKind.TASKS].documents.values()
        self.assertEqual({doc["listId"] for doc in task_docs}, {default_list["id"]})
        self.assertEqual({doc["ownerId"] for doc in task_docs}, {"user-2"})


if __name__ == "__main__":
    unittest.main()
