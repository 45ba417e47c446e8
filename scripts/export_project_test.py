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

import os
import tempfile
import unittest
from unittest import mock

from scripts import export_project
from shared.types import EntityKind
from sync.config import SyncSettings
from sync.mirror import InMemoryMirror
from sync.store import InMemoryRegistry, InMemoryRemoteStore
from sync.workspace import open_workspace

TEST_SETTINGS = SyncSettings(debounce_seconds=0.01, max_retries=0, mirror_backend="memory")


class LoadWorkspaceTest(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        registry = InMemoryRegistry()
        self.remotes = {kind: InMemoryRemoteStore(kind, registry) for kind in EntityKind}
        await self.remotes[EntityKind.NOTES].create(
            {"title": "Standup", "content": "#work", "tags": ["work"]}, "user-1"
        )
        await self.remotes[EntityKind.TASKS].create(
            {"title": "Buy milk", "listId": "default"}, "user-1"
        )
        await self.remotes[EntityKind.TASKS].create(
            {"title": "Not mine", "listId": "default"}, "user-2"
        )

    def in_memory_workspace(self, owner_id):
        return open_workspace(
            owner_id,
            remote_for=self.remotes.__getitem__,
            mirror=InMemoryMirror(),
            settings=TEST_SETTINGS,
        )

    async def test_loads_the_owners_notes_and_tasks(self):
        with mock.patch.object(
            export_project, "open_workspace", side_effect=self.in_memory_workspace
        ):
            notes, tasks = await export_project.load_workspace("user-1")

        self.assertEqual([note.title for note in notes], ["Standup"])
        self.assertEqual([task.title for task in tasks], ["Buy milk"])

        with tempfile.TemporaryDirectory() as markdown_dir:
            export_project.write_markdown(notes, markdown_dir)
            with open(os.path.join(markdown_dir, "standup.md"), encoding="utf-8") as f:
                self.assertTrue(f.read().startswith("# Standup\n\n#work"))


if __name__ == "__main__":
    unittest.main()
