"""
Domain models for a care notebook.

Persisted and wire shapes use camelCase keys; attributes are snake_case.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SYSTEM_AUTHOR = "System"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Caretaker(CamelModel):
    id: str
    name: str
    is_primary: bool = False
    is_active: bool = True


class CareNote(CamelModel):
    id: str
    created_at: datetime
    time: str  # display only, derived from created_at
    note: str
    author: str
    edited_at: datetime | None = None

    @property
    def is_system(self) -> bool:
        return self.author == SYSTEM_AUTHOR


class Task(CamelModel):
    id: str
    text: str
    completed: bool = False


class NotebookState(CamelModel):
    current_caregiver: str = ""
    last_updated_by: str | None = None  # None until the first handoff
    tasks: list[Task] = Field(default_factory=list)
    revision: int = 0


class TodayState(CamelModel):
    care_notes: list[CareNote] = Field(default_factory=list)
    tasks: list[Task] = Field(default_factory=list)
    current_caregiver: str = ""
    last_updated_by: str | None = None
    last_updated_label: str = ""
    revision: int = 0


class NotebookMetadata(CamelModel):
    caree_name: str
    created_at: int  # epoch millis


class HistoryEntry(CamelModel):
    date_key: str
    date_label: str
    relative_label: str
    notes: list[CareNote]
