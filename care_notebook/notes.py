"""
Care notes: creation, System messages and the edit/delete policy.
"""

from collections.abc import Callable
from datetime import date, datetime, timedelta, tzinfo
from uuid import uuid4

from care_notebook.models import SYSTEM_AUTHOR, CareNote, HistoryEntry
from care_notebook.roster import names_match
from care_notebook.timefmt import (
    format_date_label,
    format_date_with_day,
    format_time,
)

EDIT_WINDOW = timedelta(minutes=15)
HISTORY_DAYS = 3


def new_note_id() -> str:
    return uuid4().hex


def create_care_note(
    text: str,
    author: str,
    now: datetime,
    tz: tzinfo,
    *,
    id_factory: Callable[[], str] = new_note_id,
) -> CareNote:
    return CareNote(
        id=id_factory(),
        created_at=now,
        time=format_time(now, tz),
        note=text.strip(),
        author=author,
    )


def create_system_note(message: str, now: datetime, tz: tzinfo) -> CareNote:
    return create_care_note(message, SYSTEM_AUTHOR, now, tz)


def handoff_message(from_caregiver: str, to_caregiver: str) -> str:
    return f"{from_caregiver} handed off care to {to_caregiver}."


def caretaker_added_message(name: str) -> str:
    return f"{name} was added as a caretaker."


def caretaker_archived_message(name: str) -> str:
    return f"{name} was archived as a caretaker."


def caretaker_restored_message(name: str) -> str:
    return f"{name} was restored as a caretaker."


def primary_changed_message(name: str) -> str:
    return f"{name} is now the primary contact."


def caretaker_renamed_message(old_name: str, new_name: str) -> str:
    return f"{old_name} was renamed to {new_name}."


def delete_rejection(note: CareNote, requester: str | None) -> str | None:
    """Reason the requester may not delete the note, or None if allowed."""
    if note.is_system:
        return "System notes cannot be changed."
    if not names_match(note.author, requester):
        return "Only the author of a note can change it."
    return None


def edit_rejection(
    note: CareNote,
    requester: str | None,
    now: datetime,
    window: timedelta | None = EDIT_WINDOW,
) -> str | None:
    """
    Reason the requester may not edit the note, or None if allowed.

    A falsy window disables the time limit.
    """
    reason = delete_rejection(note, requester)
    if reason is not None:
        return reason
    if window and now - note.created_at > window:
        minutes = int(window.total_seconds() // 60)
        return f"Notes can only be edited within {minutes} minutes of being added."
    return None


def can_edit(
    note: CareNote,
    requester: str | None,
    now: datetime,
    window: timedelta | None = EDIT_WINDOW,
) -> bool:
    return edit_rejection(note, requester, now, window) is None


def can_delete(note: CareNote, requester: str | None) -> bool:
    return delete_rejection(note, requester) is None


def apply_edit(note: CareNote, text: str, now: datetime) -> CareNote:
    return note.model_copy(update={"note": text.strip(), "edited_at": now})


def history_entries(
    notes_by_date: dict[str, list[CareNote]],
    today_key: str,
    *,
    limit: int = HISTORY_DAYS,
) -> list[HistoryEntry]:
    """Most recent non-empty days before today, newest first."""
    today = date.fromisoformat(today_key)
    keys = sorted(
        (k for k, notes in notes_by_date.items() if k != today_key and notes),
        reverse=True,
    )[:limit]
    return [
        HistoryEntry(
            date_key=k,
            date_label=format_date_with_day(k, today),
            relative_label=format_date_label(k, today),
            notes=notes_by_date[k],
        )
        for k in keys
    ]
