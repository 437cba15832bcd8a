"""
Notebook persistence adapter.

Translates the pure roster, handoff and note functions into stored documents.
Every guard lives in those modules; this layer only raises when they reject.

Documents per notebook:
    notebook:<id>:meta            NotebookMetadata
    notebook:<id>:state           NotebookState (pointers, tasks, revision)
    notebook:<id>:caretakers      list[Caretaker]
    notebook:<id>:notes:<date>    list[CareNote], newest first
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta, tzinfo
from uuid import uuid4

from care_notebook import handoff as handoff_rules
from care_notebook import notes as note_rules
from care_notebook import roster as roster_rules
from care_notebook.database import Store
from care_notebook.errors import Conflict, NotFound, ValidationFailed
from care_notebook.logger import get_logger
from care_notebook.models import (
    CareNote,
    Caretaker,
    HistoryEntry,
    NotebookMetadata,
    NotebookState,
    Task,
    TodayState,
)
from care_notebook.timefmt import date_key, epoch_millis

logger = get_logger(__name__)

NowFn = Callable[[], datetime]


def new_id() -> str:
    return uuid4().hex


class NotebookAdapter:
    def __init__(
        self,
        store: Store,
        notebook_id: str,
        *,
        now_fn: NowFn = lambda: datetime.now(UTC),
        tz: tzinfo = UTC,
        edit_window: timedelta | None = note_rules.EDIT_WINDOW,
        id_factory: Callable[[], str] = new_id,
    ) -> None:
        self.store = store
        self.notebook_id = notebook_id
        self.now_fn = now_fn
        self.tz = tz
        self.edit_window = edit_window
        self.id_factory = id_factory

    # --- keys ---

    def _key(self, suffix: str) -> str:
        return f"notebook:{self.notebook_id}:{suffix}"

    def _notes_key(self, day: str) -> str:
        return self._key(f"notes:{day}")

    def today_key(self) -> str:
        return date_key(self.now_fn(), self.tz)

    # --- raw reads ---

    def _read_state(self) -> NotebookState:
        doc = self.store.get(self._key("state"))
        if doc is None:
            raise NotFound("Notebook not found")
        return NotebookState.model_validate(doc)

    def _read_roster(self, current_caregiver: str) -> list[Caretaker]:
        docs = self.store.get(self._key("caretakers")) or []
        roster = [Caretaker.model_validate(d) for d in docs]
        healed = roster_rules.heal_roster(roster, current_caregiver)
        if healed.changed:
            logger.warning(
                "notebook %s: repaired caretaker roster on load", self.notebook_id
            )
        return healed.roster

    def _read_notes(self, day: str) -> list[CareNote]:
        docs = self.store.get(self._notes_key(day)) or []
        return [CareNote.model_validate(d) for d in docs]

    def _find_note(self, note_id: str) -> tuple[str, list[CareNote], int]:
        today = self.today_key()
        days = [today] + [d for d in self._note_days() if d != today]
        for day in days:
            day_notes = self._read_notes(day)
            for index, note in enumerate(day_notes):
                if note.id == note_id:
                    return day, day_notes, index
        raise NotFound("Note not found")

    def _note_days(self) -> list[str]:
        prefix = self._notes_key("")
        return sorted(
            (k[len(prefix) :] for k in self.store.keys(prefix)), reverse=True
        )

    # --- writes ---

    def _begin(self, expected_revision: int | None) -> NotebookState:
        state = self._read_state()
        if expected_revision is not None and expected_revision != state.revision:
            raise Conflict()
        return state

    def _commit(
        self,
        state: NotebookState,
        *,
        roster: list[Caretaker] | None = None,
        system_note: str | None = None,
    ) -> int:
        """
        Claim the next revision, then write the payload documents.

        The state document is written with a compare-and-set so two writers
        starting from the same revision cannot both succeed. The roster and
        note documents that follow are plain writes.
        """
        expected = state.revision
        state = state.model_copy(update={"revision": expected + 1})
        if not self.store.put_if_revision(
            self._key("state"), state.to_document(), expected
        ):
            raise Conflict()

        if roster is not None:
            self.store.put(
                self._key("caretakers"), [c.to_document() for c in roster]
            )
        if system_note is not None:
            self._prepend_note(
                note_rules.create_system_note(system_note, self.now_fn(), self.tz)
            )
        return state.revision

    def _prepend_note(self, note: CareNote) -> None:
        day = date_key(note.created_at, self.tz)
        day_notes = self._read_notes(day)
        self._write_notes(day, [note, *day_notes])

    def _write_notes(self, day: str, day_notes: list[CareNote]) -> None:
        self.store.put(self._notes_key(day), [n.to_document() for n in day_notes])

    def _confirm_ids(self, roster: list[Caretaker]) -> list[Caretaker]:
        return [
            c.model_copy(update={"id": self.id_factory()})
            if c.id.startswith(roster_rules.TEMP_ID_PREFIX)
            else c
            for c in roster
        ]

    # --- notebook ---

    def exists(self) -> bool:
        return (
            self.store.get(self._key("meta")) is not None
            or self.store.get(self._key("state")) is not None
            or bool(self._note_days())
        )

    def create(self, caree_name: str) -> NotebookMetadata:
        name = roster_rules.normalize_name(caree_name)
        if not name:
            raise ValidationFailed("Care recipient name cannot be empty.")
        if self.exists():
            raise ValidationFailed("Notebook already exists.")

        metadata = NotebookMetadata(
            caree_name=name, created_at=epoch_millis(self.now_fn())
        )
        self.store.put(self._key("meta"), metadata.to_document())
        if not self.store.put_if_revision(
            self._key("state"), NotebookState().to_document(), 0
        ):
            raise Conflict()
        logger.info("notebook %s: created", self.notebook_id)
        return metadata

    def get_metadata(self) -> NotebookMetadata:
        doc = self.store.get(self._key("meta"))
        if doc is None:
            raise NotFound("Notebook not found")
        return NotebookMetadata.model_validate(doc)

    def update_metadata(self, caree_name: str) -> NotebookMetadata:
        name = roster_rules.normalize_name(caree_name)
        if not name:
            raise ValidationFailed("Care recipient name cannot be empty.")
        metadata = self.get_metadata().model_copy(update={"caree_name": name})
        self.store.put(self._key("meta"), metadata.to_document())
        return metadata

    # --- reads ---

    def load_today(self) -> TodayState:
        state = self._read_state()
        return TodayState(
            care_notes=self._read_notes(self.today_key()),
            tasks=state.tasks,
            current_caregiver=state.current_caregiver,
            last_updated_by=state.last_updated_by,
            last_updated_label=handoff_rules.last_updated_label(
                state.last_updated_by
            ),
            revision=state.revision,
        )

    def get_caretakers(self) -> list[Caretaker]:
        """
        The authoritative roster, repaired if needed.

        A repair is written back so every reader sees the same roster.
        """
        state = self._read_state()
        stored = self.store.get(self._key("caretakers")) or []
        roster = self._read_roster(state.current_caregiver)
        if [c.to_document() for c in roster] != stored:
            self.store.put(
                self._key("caretakers"), [c.to_document() for c in roster]
            )
        return roster

    def get_notes_by_date(self) -> dict[str, list[CareNote]]:
        self._read_state()
        return {day: self._read_notes(day) for day in self._note_days()}

    def history(self, limit: int = note_rules.HISTORY_DAYS) -> list[HistoryEntry]:
        if limit < 1:
            raise ValidationFailed("History limit must be at least 1.")
        return note_rules.history_entries(
            self.get_notes_by_date(), self.today_key(), limit=limit
        )

    # --- notes ---

    def add_note(
        self, text: str, *, expected_revision: int | None = None
    ) -> CareNote:
        if not text or not text.strip():
            raise ValidationFailed("Note cannot be empty.")
        state = self._begin(expected_revision)
        if not state.current_caregiver:
            raise ValidationFailed("Add a caretaker before writing notes.")

        note = note_rules.create_care_note(
            text, state.current_caregiver, self.now_fn(), self.tz
        )
        self._commit(state)
        self._prepend_note(note)
        logger.info("notebook %s: note %s added", self.notebook_id, note.id)
        return note

    def update_note(
        self,
        note_id: str,
        text: str,
        *,
        requested_by: str | None = None,
        expected_revision: int | None = None,
    ) -> CareNote:
        if not text or not text.strip():
            raise ValidationFailed("Note cannot be empty.")
        state = self._begin(expected_revision)
        day, day_notes, index = self._find_note(note_id)
        now = self.now_fn()

        reason = note_rules.edit_rejection(
            day_notes[index],
            requested_by or state.current_caregiver,
            now,
            self.edit_window,
        )
        if reason is not None:
            raise ValidationFailed(reason)

        updated = note_rules.apply_edit(day_notes[index], text, now)
        day_notes[index] = updated
        self._commit(state)
        self._write_notes(day, day_notes)
        logger.info("notebook %s: note %s edited", self.notebook_id, note_id)
        return updated

    def delete_note(
        self,
        note_id: str,
        *,
        requested_by: str | None = None,
        expected_revision: int | None = None,
    ) -> None:
        state = self._begin(expected_revision)
        day, day_notes, index = self._find_note(note_id)

        reason = note_rules.delete_rejection(
            day_notes[index], requested_by or state.current_caregiver
        )
        if reason is not None:
            raise ValidationFailed(reason)

        del day_notes[index]
        self._commit(state)
        self._write_notes(day, day_notes)
        logger.info("notebook %s: note %s deleted", self.notebook_id, note_id)

    # --- tasks ---

    def _task_index(self, state: NotebookState, task_id: str) -> int:
        for index, task in enumerate(state.tasks):
            if task.id == task_id:
                return index
        raise NotFound("Task not found")

    def add_task(self, text: str, *, expected_revision: int | None = None) -> Task:
        if not text or not text.strip():
            raise ValidationFailed("Task cannot be empty.")
        state = self._begin(expected_revision)
        task = Task(id=self.id_factory(), text=text.strip())
        self._commit(state.model_copy(update={"tasks": [*state.tasks, task]}))
        return task

    def update_task(
        self, task_id: str, text: str, *, expected_revision: int | None = None
    ) -> Task:
        if not text or not text.strip():
            raise ValidationFailed("Task cannot be empty.")
        state = self._begin(expected_revision)
        index = self._task_index(state, task_id)
        tasks = list(state.tasks)
        tasks[index] = tasks[index].model_copy(update={"text": text.strip()})
        self._commit(state.model_copy(update={"tasks": tasks}))
        return tasks[index]

    def delete_task(
        self, task_id: str, *, expected_revision: int | None = None
    ) -> None:
        state = self._begin(expected_revision)
        index = self._task_index(state, task_id)
        tasks = [t for i, t in enumerate(state.tasks) if i != index]
        self._commit(state.model_copy(update={"tasks": tasks}))

    def toggle_task(
        self,
        task_id: str,
        completed: bool,
        *,
        expected_revision: int | None = None,
    ) -> Task:
        state = self._begin(expected_revision)
        index = self._task_index(state, task_id)
        tasks = list(state.tasks)
        tasks[index] = tasks[index].model_copy(update={"completed": completed})
        self._commit(state.model_copy(update={"tasks": tasks}))
        return tasks[index]

    # --- handoff ---

    def handoff(
        self, to_caregiver: str, *, expected_revision: int | None = None
    ) -> TodayState:
        state = self._begin(expected_revision)
        roster = self._read_roster(state.current_caregiver)
        result = handoff_rules.handoff(
            roster,
            state.current_caregiver,
            to_caregiver,
            state.last_updated_by,
            self.now_fn(),
            self.tz,
        )
        if not result.ok:
            raise ValidationFailed(result.reason)

        self._commit(
            state.model_copy(
                update={
                    "current_caregiver": result.current_caregiver,
                    "last_updated_by": result.last_updated_by,
                }
            )
        )
        self._prepend_note(result.note)
        logger.info(
            "notebook %s: handoff %s -> %s",
            self.notebook_id,
            result.last_updated_by,
            result.current_caregiver,
        )
        return self.load_today()

    # --- caretakers ---

    def _apply_roster_change(
        self,
        state: NotebookState,
        result: roster_rules.RosterResult,
        system_note: str,
    ) -> list[Caretaker]:
        if not result.ok:
            raise ValidationFailed(result.reason)
        if not result.changed:
            return result.roster
        roster = self._confirm_ids(result.roster)
        self._commit(state, roster=roster, system_note=system_note)
        return roster

    def add_caretaker(
        self, name: str, *, expected_revision: int | None = None
    ) -> list[Caretaker]:
        state = self._begin(expected_revision)
        roster = self._read_roster(state.current_caregiver)
        result = roster_rules.add_caretaker(roster, name)
        clean = roster_rules.normalize_name(name)
        if result.ok and not state.current_caregiver:
            state = state.model_copy(update={"current_caregiver": clean})
        updated = self._apply_roster_change(
            state, result, note_rules.caretaker_added_message(clean)
        )
        logger.info("notebook %s: caretaker %s added", self.notebook_id, clean)
        return updated

    def archive_caretaker(
        self, name: str, *, expected_revision: int | None = None
    ) -> list[Caretaker]:
        state = self._begin(expected_revision)
        roster = self._read_roster(state.current_caregiver)
        result = roster_rules.archive(roster, name, state.current_caregiver)
        target = roster_rules.find_caretaker(roster, name)
        return self._apply_roster_change(
            state,
            result,
            note_rules.caretaker_archived_message(target.name if target else name),
        )

    def restore_caretaker(
        self, name: str, *, expected_revision: int | None = None
    ) -> list[Caretaker]:
        state = self._begin(expected_revision)
        roster = self._read_roster(state.current_caregiver)
        result = roster_rules.restore(roster, name)
        target = roster_rules.find_caretaker(roster, name)
        return self._apply_roster_change(
            state,
            result,
            note_rules.caretaker_restored_message(target.name if target else name),
        )

    def set_primary_caretaker(
        self, name: str, *, expected_revision: int | None = None
    ) -> list[Caretaker]:
        state = self._begin(expected_revision)
        roster = self._read_roster(state.current_caregiver)
        result = roster_rules.set_primary(roster, name)
        target = roster_rules.find_caretaker(roster, name)
        return self._apply_roster_change(
            state,
            result,
            note_rules.primary_changed_message(target.name if target else name),
        )

    def update_caretaker_name(
        self,
        old_name: str,
        new_name: str,
        *,
        expected_revision: int | None = None,
    ) -> list[Caretaker]:
        state = self._begin(expected_revision)
        roster = self._read_roster(state.current_caregiver)
        result = roster_rules.rename(roster, old_name, new_name)
        target = roster_rules.find_caretaker(roster, old_name)
        if not result.ok or target is None:
            raise ValidationFailed(result.reason)

        clean = roster_rules.normalize_name(new_name)
        pointers = {}
        if roster_rules.names_match(state.current_caregiver, target.name):
            pointers["current_caregiver"] = clean
        if roster_rules.names_match(state.last_updated_by, target.name):
            pointers["last_updated_by"] = clean
        return self._apply_roster_change(
            state.model_copy(update=pointers),
            result,
            note_rules.caretaker_renamed_message(target.name, clean),
        )
