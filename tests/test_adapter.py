from datetime import UTC, datetime, timedelta

import pytest

from care_notebook.adapter import NotebookAdapter
from care_notebook.database import InMemoryKeyValueDatabase, SqliteDocumentStore
from care_notebook.errors import Conflict, NotFound, ValidationFailed
from care_notebook.models import SYSTEM_AUTHOR
from care_notebook.roster import TEMP_ID_PREFIX

START = datetime(2025, 7, 2, 8, 30, tzinfo=UTC)


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> Clock:
    return Clock(START)


@pytest.fixture
def store() -> InMemoryKeyValueDatabase:
    return InMemoryKeyValueDatabase()


@pytest.fixture
def adapter(store, clock) -> NotebookAdapter:
    nb = NotebookAdapter(store, "nb-1", now_fn=clock)
    nb.create("Grandma Rosa")
    return nb


@pytest.fixture
def team(adapter) -> NotebookAdapter:
    adapter.add_caretaker("Lupe")
    adapter.add_caretaker("Maria")
    return adapter


def _by_name(adapter: NotebookAdapter) -> dict:
    return {c.name: c for c in adapter.get_caretakers()}


# --- notebook ---


def test_unknown_notebook(store) -> None:
    nb = NotebookAdapter(store, "missing")
    assert nb.exists() is False
    with pytest.raises(NotFound):
        nb.load_today()
    with pytest.raises(NotFound):
        nb.get_metadata()
    with pytest.raises(NotFound):
        nb.add_caretaker("Lupe")


def test_create(adapter) -> None:
    meta = adapter.get_metadata()
    assert meta.caree_name == "Grandma Rosa"
    assert meta.created_at == int(START.timestamp() * 1000)
    assert adapter.exists() is True

    today = adapter.load_today()
    assert today.care_notes == []
    assert today.current_caregiver == ""
    assert today.last_updated_by is None
    assert today.last_updated_label == "no handoff has occurred yet"
    assert today.revision == 0


def test_create_rejects_blank_and_duplicate(store, adapter) -> None:
    with pytest.raises(ValidationFailed):
        NotebookAdapter(store, "nb-2").create("   ")
    with pytest.raises(ValidationFailed):
        adapter.create("Someone else")


def test_update_metadata(adapter) -> None:
    adapter.update_metadata(" Rosa ")
    assert adapter.get_metadata().caree_name == "Rosa"


# --- caretakers ---


def test_first_caretaker_is_primary_and_current(adapter) -> None:
    roster = adapter.add_caretaker("Lupe")

    assert len(roster) == 1
    assert roster[0].is_primary is True
    assert not roster[0].id.startswith(TEMP_ID_PREFIX)

    today = adapter.load_today()
    assert today.current_caregiver == "Lupe"
    assert today.care_notes[0].note == "Lupe was added as a caretaker."
    assert today.care_notes[0].author == SYSTEM_AUTHOR


def test_duplicate_caretaker_writes_nothing(team) -> None:
    before = team.load_today()
    with pytest.raises(ValidationFailed):
        team.add_caretaker("maria")
    after = team.load_today()

    assert after.revision == before.revision
    assert len(after.care_notes) == len(before.care_notes)


def test_archive_caretaker(team) -> None:
    team.archive_caretaker("Maria")

    maria = _by_name(team)["Maria"]
    assert maria.is_active is False
    assert maria.is_primary is False

    note = team.load_today().care_notes[0]
    assert note.note == "Maria was archived as a caretaker."
    assert note.author == SYSTEM_AUTHOR


def test_archive_current_caregiver_rejected(team) -> None:
    with pytest.raises(ValidationFailed) as excinfo:
        team.archive_caretaker("Lupe")
    assert "current caregiver" in excinfo.value.reason
    assert _by_name(team)["Lupe"].is_active is True


def test_archive_twice_adds_one_note(team) -> None:
    team.archive_caretaker("Maria")
    count = len(team.load_today().care_notes)
    team.archive_caretaker("Maria")
    assert len(team.load_today().care_notes) == count


def test_restore_caretaker(team) -> None:
    team.archive_caretaker("Maria")
    team.restore_caretaker("maria")

    assert _by_name(team)["Maria"].is_active is True
    assert team.load_today().care_notes[0].note == "Maria was restored as a caretaker."


def test_set_primary_caretaker(team) -> None:
    team.set_primary_caretaker("Maria")

    roster = _by_name(team)
    assert roster["Maria"].is_primary is True
    assert roster["Lupe"].is_primary is False
    assert team.load_today().care_notes[0].note == "Maria is now the primary contact."


def test_set_primary_archived_rejected(team) -> None:
    team.archive_caretaker("Maria")
    with pytest.raises(ValidationFailed):
        team.set_primary_caretaker("Maria")


def test_rename_current_caregiver_moves_pointer(team) -> None:
    team.update_caretaker_name("lupe", "Guadalupe")

    today = team.load_today()
    assert today.current_caregiver == "Guadalupe"
    assert today.care_notes[0].note == "Lupe was renamed to Guadalupe."
    assert "Guadalupe" in _by_name(team)


def test_rename_collision_rejected(team) -> None:
    with pytest.raises(ValidationFailed):
        team.update_caretaker_name("Lupe", "maria")


def test_get_caretakers_heals_and_persists(store, team) -> None:
    team.handoff("Maria")
    key = "notebook:nb-1:caretakers"
    corrupted = store.get(key)
    for doc in corrupted:
        doc["isPrimary"] = False
    store.put(key, corrupted)

    roster = _by_name(team)

    assert roster["Maria"].is_primary is True
    assert roster["Lupe"].is_primary is False
    assert [d["isPrimary"] for d in store.get(key)] == [False, True]


# --- handoff ---


def test_handoff(team) -> None:
    today = team.handoff("maria")

    assert today.current_caregiver == "Maria"
    assert today.last_updated_by == "Lupe"
    assert today.last_updated_label == "Lupe"
    assert today.care_notes[0].note == "Lupe handed off care to Maria."
    assert today.care_notes[0].author == SYSTEM_AUTHOR


def test_handoff_to_archived_rejected(team) -> None:
    team.archive_caretaker("Maria")
    with pytest.raises(ValidationFailed):
        team.handoff("Maria")
    assert team.load_today().current_caregiver == "Lupe"


def test_handoff_without_other_caretakers(adapter) -> None:
    adapter.add_caretaker("Lupe")
    with pytest.raises(ValidationFailed) as excinfo:
        adapter.handoff("Lupe")
    assert "no other active" in excinfo.value.reason


# --- notes ---


def test_add_note(team) -> None:
    note = team.add_note("  Breakfast completed.  ")

    assert note.note == "Breakfast completed."
    assert note.author == "Lupe"
    assert note.time == "8:30 AM"
    assert team.load_today().care_notes[0] == note


def test_add_note_requires_text_and_caregiver(adapter) -> None:
    with pytest.raises(ValidationFailed):
        adapter.add_note("   ")
    with pytest.raises(ValidationFailed):
        adapter.add_note("Hello")


def test_update_note_within_window(team, clock) -> None:
    note = team.add_note("Walk")
    clock.advance(minutes=10)

    updated = team.update_note(note.id, "Long walk")

    assert updated.note == "Long walk"
    assert updated.edited_at == clock.now
    assert updated.id == note.id
    assert team.load_today().care_notes[0].note == "Long walk"


def test_update_note_after_window_rejected(team, clock) -> None:
    note = team.add_note("Walk")
    clock.advance(minutes=16)

    with pytest.raises(ValidationFailed) as excinfo:
        team.update_note(note.id, "Long walk")
    assert "15 minutes" in excinfo.value.reason


def test_update_note_by_other_caregiver_rejected(team) -> None:
    note = team.add_note("Walk")
    with pytest.raises(ValidationFailed):
        team.update_note(note.id, "Run", requested_by="Maria")


def test_system_note_cannot_be_changed(team) -> None:
    system_note = team.load_today().care_notes[0]
    with pytest.raises(ValidationFailed):
        team.update_note(system_note.id, "edited", requested_by="Lupe")
    with pytest.raises(ValidationFailed):
        team.delete_note(system_note.id, requested_by="Lupe")


def test_delete_note(team) -> None:
    note = team.add_note("Walk")
    team.delete_note(note.id)
    assert note.id not in {n.id for n in team.load_today().care_notes}


def test_unknown_note(team) -> None:
    with pytest.raises(NotFound):
        team.delete_note("nope")


def test_notes_are_grouped_by_day(team, clock) -> None:
    first = team.add_note("Day one")
    clock.advance(days=1)
    team.add_note("Day two")

    by_date = team.get_notes_by_date()
    assert set(by_date) == {"2025-07-02", "2025-07-03"}
    assert [n.note for n in team.load_today().care_notes] == ["Day two"]

    history = team.history()
    assert [e.date_key for e in history] == ["2025-07-02"]
    assert history[0].notes[0] == first

    assert history[0].relative_label == "Yesterday"
    with pytest.raises(ValidationFailed):
        team.history(0)

    # yesterday's note is found by id
    team.delete_note(first.id)
    assert first.id not in {n.id for n in team.get_notes_by_date()["2025-07-02"]}


# --- tasks ---


def test_tasks(team) -> None:
    task = team.add_task(" Evening medication ")
    assert task.text == "Evening medication"
    assert task.completed is False

    team.update_task(task.id, "Evening meds")
    toggled = team.toggle_task(task.id, True)
    assert toggled.completed is True
    assert team.load_today().tasks == [toggled]
    assert toggled.text == "Evening meds"

    team.delete_task(task.id)
    assert team.load_today().tasks == []


def test_unknown_task(team) -> None:
    with pytest.raises(NotFound):
        team.toggle_task("nope", True)
    with pytest.raises(ValidationFailed):
        team.add_task("")


# --- revisions ---


def test_every_write_bumps_revision(team) -> None:
    before = team.load_today().revision
    team.add_note("Walk")
    assert team.load_today().revision == before + 1


def test_stale_write_conflicts(team) -> None:
    revision = team.load_today().revision
    team.add_note("First device")

    with pytest.raises(Conflict):
        team.add_note("Second device", expected_revision=revision)
    with pytest.raises(Conflict):
        team.handoff("Maria", expected_revision=revision)

    team.add_note("Fresh", expected_revision=revision + 1)


def test_sqlite_backed_notebook(tmp_path, clock) -> None:
    store = SqliteDocumentStore(str(tmp_path / "care.db"))
    nb = NotebookAdapter(store, "nb-sql", now_fn=clock)
    nb.create("Rosa")
    nb.add_caretaker("Lupe")
    nb.add_caretaker("Maria")
    nb.handoff("Maria")

    reopened = NotebookAdapter(
        SqliteDocumentStore(str(tmp_path / "care.db")), "nb-sql", now_fn=clock
    )
    today = reopened.load_today()
    assert today.current_caregiver == "Maria"
    assert today.care_notes[0].note == "Lupe handed off care to Maria."
    assert [c.name for c in reopened.get_caretakers()] == ["Lupe", "Maria"]
    store.close()
