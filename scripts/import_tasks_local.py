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
import sys

from import_pipeline.task_importer import (
    ParsedTask,
    import_tasks,
    parse_import_text_with_report,
)
from shared.errors import TaskpadError
from sync.workspace import open_workspace

# Parses a free-text task dump and either prints the parsed tree or imports
# it into an owner's workspace through the sync layer.

logger = logging.getLogger(__name__)


def print_tree(tasks: list[ParsedTask], depth: int = 0) -> None:
    for task in tasks:
        box = "x" if task.completed else " "
        star = " *" if task.important else ""
        print(f"{'  ' * depth}[{box}] {task.title}{star}")
        if task.notes:
            print(f"{'  ' * (depth + 1)}notes: {task.notes}")
        for step in task.steps:
            step_box = "x" if step.completed else " "
            print(f"{'  ' * (depth + 1)}- [{step_box}] {step.title}")
        print_tree(task.children, depth + 1)


async def run_import(args, text: str) -> int:
    workspace = open_workspace(args.owner)
    try:
        await workspace.refresh()
        result = await import_tasks(
            text, workspace.tasks, args.list_id, task_lists=workspace.task_lists
        )
        await workspace.drain()
    finally:
        await workspace.close()
    print(json.dumps(result.as_dict()))
    return 0 if result.failed == 0 else 1


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Import tasks from a plain-text or Markdown file."
    )
    parser.add_argument("path", help="File to import, or - for stdin.")
    parser.add_argument("--owner", help="Owner id to import for.")
    parser.add_argument(
        "--list_id",
        default=None,
        help="Target list id. Defaults to the first list, creating the default list if there is none.",
    )
    parser.add_argument(
        "--dry_run",
        action="store_true",
        help="Only print what would be imported.",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging.")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.path == "-":
        text = sys.stdin.read()
    else:
        with open(args.path, encoding="utf-8") as f:
            text = f.read()

    report = parse_import_text_with_report(text)
    for ambiguity in report.ambiguities:
        logger.warning("Kept as notes: %s", ambiguity)

    if args.dry_run:
        print_tree(report.tasks)
        return 0
    if not args.owner:
        parser.error("--owner is required unless --dry_run is set")

    try:
        return asyncio.run(run_import(args, text))
    except TaskpadError as e:
        logger.error("Import failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
