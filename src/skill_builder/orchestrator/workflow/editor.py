from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True, slots=True)
class EditorDraft:
    """Review document being edited.

    Unsaved changes are derived by comparing against the last loaded or saved
    content, so a re-hydrated draft with identical text is clean.
    """

    step_id: int
    relative_path: str
    loaded: str = ""
    current: str = ""

    @property
    def has_unsaved_changes(self) -> bool:
        return self.current != self.loaded

    def edited(self, content: str) -> EditorDraft:
        return replace(self, current=content)

    def saved(self) -> EditorDraft:
        return replace(self, loaded=self.current)
