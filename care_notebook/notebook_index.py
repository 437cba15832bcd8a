"""
Per-device index of known notebooks and the last one used.

A notebook is addressed by an opaque id carried in the URL; the index lets a
device come back without it and land in the notebook it used last.
"""

from datetime import datetime

from pydantic import Field

from care_notebook.database import Store
from care_notebook.models import CamelModel
from care_notebook.timefmt import epoch_millis


class NotebookIndexEntry(CamelModel):
    id: str
    added_at: int  # epoch millis


class NotebookIndex(CamelModel):
    entries: list[NotebookIndexEntry] = Field(default_factory=list)
    last_used: str | None = None

    def __contains__(self, notebook_id: str) -> bool:
        return any(e.id == notebook_id for e in self.entries)


def remember(index: NotebookIndex, notebook_id: str, now: datetime) -> NotebookIndex:
    entries = list(index.entries)
    if notebook_id not in index:
        entries.append(NotebookIndexEntry(id=notebook_id, added_at=epoch_millis(now)))
    return NotebookIndex(entries=entries, last_used=notebook_id)


def resolve(
    index: NotebookIndex, requested: str | None, now: datetime
) -> tuple[str | None, NotebookIndex]:
    """The requested id wins and becomes last used; else the last used id."""
    requested = (requested or "").strip()
    if requested:
        return requested, remember(index, requested, now)
    return index.last_used, index


def _key(device_id: str) -> str:
    return f"device:{device_id}:index"


def load_index(store: Store, device_id: str) -> NotebookIndex:
    doc = store.get(_key(device_id))
    return NotebookIndex.model_validate(doc) if doc else NotebookIndex()


def save_index(store: Store, device_id: str, index: NotebookIndex) -> None:
    store.put(_key(device_id), index.to_document())
