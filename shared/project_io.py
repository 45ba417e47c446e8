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

"""Project export and import helpers (JSON bundles and Markdown notes)."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Iterable, Optional

from dacite import DaciteError

from shared.errors import ValidationError
from shared.types import (
    Note,
    Task,
    entity_from_dict,
    entity_to_dict,
    new_local_id,
    utc_now,
)


def export_project(
    notes: Iterable[Note], tasks: Iterable[Task], *, now: Optional[datetime] = None
) -> dict:
    """Returns a JSON-serializable bundle of notes and tasks."""
    return {
        "notes": [entity_to_dict(note, json_safe=True) for note in notes],
        "tasks": [entity_to_dict(task, json_safe=True) for task in tasks],
        "exportedAt": (now or utc_now()).isoformat(),
    }


def note_to_markdown(note: Note) -> str:
    return (
        f"# {note.title}\n\n{note.content}\n\n---\n"
        f"Tags: {', '.join(note.tags)}\n"
        f"Created: {note.created_at.isoformat()}"
    )


def note_filename(note: Note) -> str:
    return re.sub(r"[^a-z0-9]", "-", note.title, flags=re.IGNORECASE).lower() + ".md"


def import_project(
    data: dict, owner_id: Optional[str] = None
) -> tuple[list[Note], list[Task]]:
    """Rebuilds notes and tasks from an exported bundle.

    Every item gets a fresh local id so it is pushed as a new entity on the
    next sync; createdAt is kept and updatedAt is reset to now.

    Raises:
        ValidationError: The bundle has no notes/tasks lists.
    """
    if not isinstance(data, dict) or not isinstance(
        data.get("notes"), list
    ) or not isinstance(data.get("tasks"), list):
        raise ValidationError("Invalid project file")

    now = utc_now()
    notes = [_reidentify(Note, item, owner_id, now) for item in data["notes"]]
    tasks = [_reidentify(Task, item, owner_id, now) for item in data["tasks"]]
    return notes, tasks


def _reidentify(entity_type, item: dict, owner_id: Optional[str], now: datetime):
    if not isinstance(item, dict):
        raise ValidationError("Invalid project file")
    item = {**item, "id": new_local_id(), "updatedAt": now}
    if owner_id is not None:
        item["ownerId"] = owner_id
    try:
        return entity_from_dict(entity_type, item)
    except (DaciteError, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid project file: {e}") from e
