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

import argparse
import asyncio
import json
import logging
import os
import sys

from shared.errors import TaskpadError
from shared.project_io import export_project, note_filename, note_to_markdown
from sync.workspace import open_workspace

# Exports an owner's notes and tasks as a JSON bundle, optionally writing
# every note as a Markdown file too.

logger = logging.getLogger(__name__)


async def load_workspace(owner_id: str):
    workspace = open_workspace(owner_id)
    try:
        await workspace.refresh()
        return workspace.notes.notes, workspace.tasks.tasks
    finally:
        await workspace.close()


def write_markdown(notes, markdown_dir: str) -> None:
    os.makedirs(markdown_dir, exist_ok=True)
    for note in notes:
        path = os.path.join(markdown_dir, note_filename(note))
        with open(path, "w", encoding="utf-8") as f:
            f.write(note_to_markdown(note))
        logger.info("Wrote %s", path)


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Export notes and tasks for one owner."
    )
    parser.add_argument("owner", help="Owner id to export.")
    parser.add_argument(
        "--output", default="-", help="JSON bundle path, or - for stdout."
    )
    parser.add_argument(
        "--markdown_dir",
        default=None,
        help="Also write each note as Markdown into this directory.",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging.")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        notes, tasks = asyncio.run(load_workspace(args.owner))
    except TaskpadError as e:
        logger.error("Export failed: %s", e)
        return 1

    bundle = json.dumps(export_project(notes, tasks), indent=2, ensure_ascii=False)
    if args.output == "-":
        print(bundle)
    else:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(bundle)
        logger.info(
            "Exported %d notes and %d tasks to %s", len(notes), len(tasks), args.output
        )
    if args.markdown_dir:
        write_markdown(notes, args.markdown_dir)
    return 0


if __name__ == "__main__":
    sys.exit(main())
