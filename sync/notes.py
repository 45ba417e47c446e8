"""
Note operations. Tags are always derived from the Markdown content.
"""

from __future__ import annotations

from shared.errors import NotFoundError, ValidationError
from shared.tags import extract_tags
from shared.types import Note
from sync.mutator import OptimisticMutator


class OptimisticNotes:
    def __init__(self, mutator: OptimisticMutator[Note]):
        self.mutator = mutator

    @property
    def notes(self) -> list[Note]:
        return self.mutator.entities()

    def get(self, note_id: str) -> Note:
        note = self.mutator.get(note_id)
        if note is None:
            raise NotFoundError(self.mutator.kind, note_id)
        return note

    def create_note(self, title: str, content: str = "") -> Note:
        return self.mutator.create(
            {
                "title": (title or "").strip(),
                "content": content or "",
                "tags": extract_tags(content),
            }
        )

    def update_note(self, note_id: str, **changes) -> Note:
        if "tags" in changes:
            raise ValidationError("Note tags are derived from content")
        if "title" in changes:
            changes["title"] = (changes["title"] or "").strip()
        if "content" in changes:
            changes["content"] = changes["content"] or ""
            changes["tags"] = extract_tags(changes["content"])
        return self.mutator.update(note_id, changes)

    def delete_note(self, note_id: str) -> None:
        self.mutator.delete(note_id)

    def import_markdown(self, content: str, title: str) -> Note:
        return self.create_note(title, content)
