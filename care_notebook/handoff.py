from datetime import datetime, tzinfo

from pydantic import BaseModel

from care_notebook.models import CareNote, Caretaker
from care_notebook.notes import create_system_note, handoff_message
from care_notebook.roster import (
    handoff_candidates,
    lookup_caretaker,
    names_match,
    normalize_name,
)

NO_HANDOFF_YET = "no handoff has occurred yet"


class HandoffResult(BaseModel):
    ok: bool
    reason: str | None = None
    current_caregiver: str
    last_updated_by: str | None = None
    note: CareNote | None = None


def last_updated_label(last_updated_by: str | None) -> str:
    return normalize_name(last_updated_by) or NO_HANDOFF_YET


def handoff(
    roster: list[Caretaker],
    current: str,
    target: str,
    last_updated_by: str | None,
    now: datetime,
    tz: tzinfo,
) -> HandoffResult:
    """
    Transfer current-caregiver status to another active caretaker.

    On rejection the returned pointers are the unchanged inputs.
    """

    def rejected(reason: str) -> HandoffResult:
        return HandoffResult(
            ok=False,
            reason=reason,
            current_caregiver=current,
            last_updated_by=last_updated_by,
        )

    if not normalize_name(current):
        return rejected("There is no current caregiver to hand off from.")
    if not handoff_candidates(roster, current):
        return rejected("There are no other active caretakers to hand off to.")

    match, reason = lookup_caretaker(roster, target)
    if match is None:
        return rejected(reason)
    if not match.is_active:
        return rejected(f"{match.name} is archived and cannot take over care.")
    if names_match(match.name, current):
        return rejected(f"{match.name} is already the current caregiver.")

    return HandoffResult(
        ok=True,
        current_caregiver=match.name,
        last_updated_by=current,
        note=create_system_note(handoff_message(current, match.name), now, tz),
    )
