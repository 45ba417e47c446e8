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

from shared.errors import TaskpadError
from shared.project_io import import_project
from sync.workspace import open_workspace

# Restores a JSON bundle written by export_project.py into an owner's
# workspace. Every note and task is created as a new entity.

logger = logging.getLogger(__name__)


async def restore_project(owner_id: str, notes, tasks) -> dict:
    workspace = open_workspace(owner_id)
    try:
        await workspace.refresh()
        results = await workspace.restore(notes, tasks)
        await workspace.drain()
    finally:
        await workspace.close()
    return {str(kind): result.as_dict() for kind, result in results.items()}


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Import notes and tasks from an exported JSON bundle."
    )
    parser.add_argument("path", help="Bundle to import, or - for stdin.")
    parser.add_argument("--owner", required=True, help="Owner id to import for.")
    parser.add_argument(
        "--dry_run",
        action="store_true",
        help="Only check the bundle and print what would be imported.",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging.")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.path == "-":
            data = json.load(sys.stdin)
        else:
            with open(args.path, encoding="utf-8") as f:
                data = json.load(f)
    except json.JSONDecodeError as e:
        logger.error("Not a JSON bundle: %s", e)
        return 1

    try:
        notes, tasks = import_project(data, args.owner)
        if args.dry_run:
            print(json.dumps({"notes": len(notes), "tasks": len(tasks)}))
            return 0
        results = asyncio.run(restore_project(args.owner, notes, tasks))
    except TaskpadError as e:
        logger.error("Import failed: %s", e)
        return 1

    print(json.dumps(results))
    failed = sum(result["failed"] for result in results.values())
    return 0 if failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
