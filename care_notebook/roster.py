"""
Caretaker roster rules.

Every operation takes the current roster as a plain list and returns a
RosterResult holding a full replacement roster. Expected rejections come back
as ok=False with a reason and the input roster untouched; nothing here raises
for them and nothing here touches storage.
"""

from collections.abc import Callable
from uuid import uuid4

from pydantic import BaseModel

from care_notebook.models import Caretaker

TEMP_ID_PREFIX = "tmp-"

IdFactory = Callable[[], str]


class RosterResult(BaseModel):
    roster: list[Caretaker]
    ok: bool = True
    reason: str | None = None
    changed: bool = False


def temp_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid4().hex}"


def normalize_name(name: str | None) -> str:
    return (name or "").strip()


def names_match(a: str | None, b: str | None) -> bool:
    """Names compare trimmed and case-insensitively everywhere."""
    left = normalize_name(a)
    return bool(left) and left.casefold() == normalize_name(b).casefold()


def find_caretaker(roster: list[Caretaker], name: str | None) -> Caretaker | None:
    return next((c for c in roster if names_match(c.name, name)), None)


def handoff_candidates(
    roster: list[Caretaker], current_caregiver: str | None
) -> list[Caretaker]:
    return [
        c
        for c in roster
        if c.is_active and not names_match(c.name, current_caregiver)
    ]


def _rejected(roster: list[Caretaker], reason: str) -> RosterResult:
    return RosterResult(roster=roster, ok=False, reason=reason)


def lookup_caretaker(
    roster: list[Caretaker], name: str | None
) -> tuple[Caretaker | None, str | None]:
    clean = normalize_name(name)
    if not clean:
        return None, "Caretaker name cannot be empty."
    target = find_caretaker(roster, clean)
    if target is None:
        return None, f"No caretaker named {clean} was found."
    return target, None


def _replace(
    roster: list[Caretaker], target: Caretaker, **changes
) -> list[Caretaker]:
    return [
        c.model_copy(update=changes) if c.id == target.id else c for c in roster
    ]


def add_caretaker(
    roster: list[Caretaker], name: str | None, *, id_factory: IdFactory = temp_id
) -> RosterResult:
    clean = normalize_name(name)
    if not clean:
        return _rejected(roster, "Caretaker name cannot be empty.")

    existing = find_caretaker(roster, clean)
    if existing is not None:
        return _rejected(
            roster, f"A caretaker named {existing.name} already exists."
        )

    entry = Caretaker(
        id=id_factory(),
        name=clean,
        is_primary=not roster,
        is_active=True,
    )
    return RosterResult(roster=[*roster, entry], changed=True)


def set_primary(roster: list[Caretaker], name: str | None) -> RosterResult:
    target, reason = lookup_caretaker(roster, name)
    if target is None:
        return _rejected(roster, reason)

    if not target.is_active:
        return _rejected(
            roster,
            f"{target.name} is archived and cannot be the primary contact. "
            "Restore them first.",
        )

    others_primary = any(c.is_primary for c in roster if c.id != target.id)
    if target.is_primary and not others_primary:
        return RosterResult(roster=roster)

    new_roster = [
        c.model_copy(update={"is_primary": c.id == target.id}) for c in roster
    ]
    return RosterResult(roster=new_roster, changed=True)


def archive(
    roster: list[Caretaker], name: str | None, current_caregiver: str | None
) -> RosterResult:
    target, reason = lookup_caretaker(roster, name)
    if target is None:
        return _rejected(roster, reason)

    # primary is checked before the active flag so an archived primary
    # cannot be produced here
    roles = []
    if target.is_primary:
        roles.append("the primary contact")
    if names_match(target.name, current_caregiver):
        roles.append("the current caregiver")
    if roles:
        return _rejected(
            roster,
            f"{target.name} is {' and '.join(roles)} and cannot be archived.",
        )

    if not target.is_active:
        return RosterResult(roster=roster)

    return RosterResult(
        roster=_replace(roster, target, is_active=False), changed=True
    )


def restore(roster: list[Caretaker], name: str | None) -> RosterResult:
    target, reason = lookup_caretaker(roster, name)
    if target is None:
        return _rejected(roster, reason)

    if target.is_active:
        return RosterResult(roster=roster)

    return RosterResult(
        roster=_replace(roster, target, is_active=True), changed=True
    )


def rename(
    roster: list[Caretaker], old_name: str | None, new_name: str | None
) -> RosterResult:
    target, reason = lookup_caretaker(roster, old_name)
    if target is None:
        return _rejected(roster, reason)

    clean = normalize_name(new_name)
    if not clean:
        return _rejected(roster, "New caretaker name cannot be empty.")

    clash = find_caretaker(roster, clean)
    if clash is not None and clash.id != target.id:
        return _rejected(
            roster, f"A caretaker named {clash.name} already exists."
        )

    if clean == target.name:
        return RosterResult(roster=roster)

    return RosterResult(roster=_replace(roster, target, name=clean), changed=True)


def heal_roster(
    roster: list[Caretaker], current_caregiver: str | None
) -> RosterResult:
    """
    Restore roster invariants on read.

    The roster can be edited outside the guarded operations above (direct
    store edits, migrations, two devices racing), so loads repair it:
    nobody active -> activate the current caregiver, or the first entry;
    nobody primary -> promote the current caregiver if active, else the
    first active entry; several primaries -> keep the first.
    """
    if not roster:
        return RosterResult(roster=roster)

    healed = list(roster)
    changed = False

    if not any(c.is_active for c in healed):
        pick = find_caretaker(healed, current_caregiver) or healed[0]
        healed = _replace(healed, pick, is_active=True)
        changed = True

    primaries = [c for c in healed if c.is_primary]
    if not primaries:
        current = find_caretaker(healed, current_caregiver)
        if current is None or not current.is_active:
            current = next(c for c in healed if c.is_active)
        healed = _replace(healed, current, is_primary=True)
        changed = True
    elif len(primaries) > 1:
        keep = primaries[0].id
        healed = [
            c.model_copy(update={"is_primary": False})
            if c.is_primary and c.id != keep
            else c
            for c in healed
        ]
        changed = True

    return RosterResult(roster=healed, changed=changed)
