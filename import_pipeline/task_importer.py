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

"""Parses pasted free text into draft tasks and imports them in bulk.

Accepted notations, tried in order on each stripped line:

    - [ ] title / - [x] title   (also with `*` or `+` bullets, and ✓ ✗)
    ⬜ title / ✅ title / ☐ / ☑ / ✓ / ✗
    - title / * title / + title
    1. title
    TODO: title / FEITO: title / CONCLUÍDO: title

Indentation levels are ranks among the distinct indentation widths seen in
the text, so mixed two and four space pastes nest the same way. Level 1
items become steps of their root task; deeper items become child tasks.
"""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

from shared.errors import NotFoundError, ParseAmbiguity, TaskpadError, ValidationError
from shared.types import DEFAULT_LIST_ID, Step
from sync.task_lists import ALL_LISTS, OptimisticTaskLists
from sync.tasks import OptimisticTasks

logger = logging.getLogger(__name__)

CODE_FENCE = "```"
IMPORTANT_MARKERS = ("★", "!", "IMPORTANTE")

_CHECKBOX_DONE = frozenset("xX✓✗")
_GLYPH_DONE = frozenset("✅☑✓")
_PREFIX_DONE = frozenset({"feito", "concluído"})

TASK_PATTERNS = [
    re.compile(r"^-\s*\[([ xX✓✗])\]\s+(.+)$"),
    re.compile(r"^\*\s*\[([ xX✓✗])\]\s+(.+)$"),
    re.compile(r"^\+\s*\[([ xX✓✗])\]\s+(.+)$"),
    re.compile(r"^(⬜|✅|☐|☑|✓|✗)\s+(.+)$"),
    re.compile(r"^[-*+]\s+(.+)$"),
    re.compile(r"^\d+\.\s+(.+)$"),
    re.compile(r"^(FEITO|TODO|CONCLUÍDO?):\s*(.+)$", re.IGNORECASE),
    re.compile(r"^-\s+(.+)$"),
]

PRIORITY_PATTERN = re.compile(r"^(!{1,3})\s*(.+)$")
TRAILING_TAGS_PATTERN = re.compile(r"^(.+?)\s+(#\w+(?:\s+#\w+)*)$")

# Title suffixes that carry notes: "Notas:", parentheses, " - ", "//".
INLINE_NOTE_PATTERNS = [
    re.compile(r"^(.+?)\s+Notas?:\s+(.+)$", re.IGNORECASE),
    re.compile(r"^(.+?)\s+\((.+)\)$"),
    re.compile(r"^(.+?)\s+-\s+(.+)$"),
    re.compile(r"^(.+?)\s+//\s*(.+)$"),
]

NOTE_LINE_PATTERNS = [
    re.compile(r"^Notas?:\s*(.+)$", re.IGNORECASE),
    re.compile(r"^Descrição:\s*(.+)$", re.IGNORECASE),
    re.compile(r"^Detalhes?:\s*(.+)$", re.IGNORECASE),
    re.compile(r"^>\s*(.+)$"),
    re.compile(r"^\s*//\s*(.+)$"),
]


@dataclass
class ParsedTask:
    title: str
    completed: bool = False
    notes: Optional[str] = None
    steps: List[Step] = field(default_factory=list)
    level: int = 0
    children: List["ParsedTask"] = field(default_factory=list)
    important: bool = False


@dataclass
class ParseResult:
    tasks: List[ParsedTask]
    ambiguities: List[ParseAmbiguity] = field(default_factory=list)


@dataclass
class ImportResult:
    success: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return {"success": self.success, "failed": self.failed}


def _leading_width(line: str) -> int:
    return len(line) - len(line.lstrip())


def _indent_levels(lines: List[str]) -> List[int]:
    widths = {_leading_width(line) for line in lines if line.strip()}
    return sorted(width for width in widths if width > 0)


def _level_for(width: int, levels: List[int]) -> int:
    if width == 0:
        return 0
    for index, level in enumerate(levels):
        if level >= width:
            return index + 1
    return 1


def _match_task(line: str) -> Optional[tuple[str, bool]]:
    """Returns (raw title, completed) when the line is a task line."""
    for index, pattern in enumerate(TASK_PATTERNS):
        match = pattern.match(line)
        if not match:
            continue
        if index <= 2:
            return match.group(2), match.group(1) in _CHECKBOX_DONE
        if index == 3:
            return match.group(2), match.group(1) in _GLYPH_DONE
        if index == 6:
            return match.group(2), match.group(1).lower() in _PREFIX_DONE
        return match.group(1), False
    return None


def _split_title(raw_title: str) -> tuple[str, Optional[str], bool]:
    """Splits priority bangs, trailing tags and inline notes off a title."""
    title = raw_title.strip()
    notes: Optional[str] = None
    important = False

    priority = PRIORITY_PATTERN.match(title)
    if priority:
        important = True
        title = priority.group(2)

    tags = ""
    tag_match = TRAILING_TAGS_PATTERN.match(title)
    if tag_match:
        title = tag_match.group(1)
        tags = tag_match.group(2)

    for pattern in INLINE_NOTE_PATTERNS:
        match = pattern.match(title)
        if match:
            title = match.group(1)
            notes = match.group(2)
            if tags:
                notes = f"{notes} {tags}"
            break

    if notes is None and tags:
        notes = tags
    return title.strip(), notes, important


def _match_note_line(line: str) -> Optional[str]:
    for pattern in NOTE_LINE_PATTERNS:
        match = pattern.match(line)
        if match:
            return match.group(1)
    return None


def parse_import_text_with_report(text: str) -> ParseResult:
    """Parses text into root tasks and records lines it could not classify.

    Unclassified lines are never fatal: they are appended to the notes of
    the task above them, or dropped when no task precedes them.
    """
    lines = text.split("\n")
    levels = _indent_levels(lines)

    roots: List[ParsedTask] = []
    ambiguities: List[ParseAmbiguity] = []
    stack: List[ParsedTask] = []
    pending: Optional[ParsedTask] = None
    current_notes = ""
    in_code_block = False

    for line_number, line in enumerate(lines, start=1):
        stripped = line.strip()

        if stripped.startswith(CODE_FENCE):
            in_code_block = not in_code_block
            if current_notes:
                current_notes += "\n" + line
            continue

        if in_code_block:
            current_notes = current_notes + "\n" + line if current_notes else line
            continue

        if not stripped:
            if current_notes and pending is not None:
                pending.notes = current_notes.strip()
                current_notes = ""
                pending = None
            continue

        level = _level_for(_leading_width(line), levels)
        matched = _match_task(stripped)

        if matched is not None:
            raw_title, completed = matched
            title, notes, important = _split_title(raw_title)

            if current_notes and pending is not None:
                pending.notes = current_notes.strip()
                current_notes = ""

            task = ParsedTask(
                title=title,
                completed=completed,
                notes=notes,
                level=level,
                important=important,
            )

            if level == 0:
                roots.append(task)
                stack = [task]
            else:
                while stack and stack[-1].level >= level:
                    stack.pop()
                if not stack:
                    roots.append(task)
                else:
                    parent = stack[-1]
                    if level == 1:
                        parent.steps.append(
                            Step(
                                id=uuid.uuid4().hex,
                                title=title,
                                completed=completed,
                                order_index=len(parent.steps),
                            )
                        )
                    else:
                        parent.children.append(task)
                stack.append(task)
            pending = task
            continue

        note = _match_note_line(stripped)
        if note is not None:
            current_notes = current_notes + "\n" + note if current_notes else note
            continue

        if stripped.startswith("#"):
            continue

        ambiguities.append(ParseAmbiguity(line_number, stripped))
        if pending is not None:
            current_notes = (
                current_notes + "\n" + stripped if current_notes else stripped
            )

    if current_notes and pending is not None:
        pending.notes = current_notes.strip()

    return ParseResult(tasks=roots, ambiguities=ambiguities)


def parse_import_text(text: str) -> List[ParsedTask]:
    return parse_import_text_with_report(text).tasks


def is_important(task: ParsedTask) -> bool:
    return task.important or any(marker in task.title for marker in IMPORTANT_MARKERS)


def target_list_id(task_lists: Optional[OptimisticTaskLists]) -> str:
    """The selected list, else the first known list, else the default list.

    An owner without lists gets the default list created.
    """
    if task_lists is None:
        return DEFAULT_LIST_ID
    if task_lists.active_list_id != ALL_LISTS:
        return task_lists.active_list_id
    lists = task_lists.lists
    return lists[0].id if lists else task_lists.ensure_default_list().id


async def import_tasks(
    text: str,
    tasks: OptimisticTasks,
    list_id: Optional[str] = None,
    *,
    task_lists: Optional[OptimisticTaskLists] = None,
) -> ImportResult:
    """Creates every parsed root task and waits for their remote outcomes.

    One failed task never aborts the batch; the result tallies both sides.

    Raises:
        ValidationError: list_id is not one of the cached task_lists.
    """
    result = ImportResult()
    if not text.strip():
        return result

    if list_id is None:
        list_id = target_list_id(task_lists)
    elif task_lists is not None:
        try:
            list_id = task_lists.get(list_id).id
        except NotFoundError as e:
            raise ValidationError(f"Unknown list {list_id}") from e

    created: List[tuple[ParsedTask, str]] = []
    for parsed in parse_import_text(text):
        if parsed.children:
            logger.info(
                "Skipping %d nested task(s) under %r: only steps are imported",
                len(parsed.children),
                parsed.title,
            )
        try:
            task = tasks.create_task(
                parsed.title,
                list_id,
                completed=parsed.completed,
                important=is_important(parsed),
                notes=parsed.notes or None,
                steps=parsed.steps,
            )
        except TaskpadError as e:
            logger.warning("Failed to import task %r: %s", parsed.title, e)
            result.failed += 1
            continue
        created.append((parsed, task.id))

    outcomes = await asyncio.gather(
        *(tasks.mutator.wait_settled(task_id) for _, task_id in created),
        return_exceptions=True,
    )
    for (parsed, _), outcome in zip(created, outcomes):
        if isinstance(outcome, BaseException):
            logger.warning("Failed to import task %r: %s", parsed.title, outcome)
            result.failed += 1
        else:
            result.success += 1

    logger.info(
        "Imported %d task(s), %d failed", result.success, result.failed
    )
    return result
