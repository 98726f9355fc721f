"""
Conflict Guard

Decides whether a batch of new intents may be staged next to the intents
already staged. A subject-id may be referenced by at most one staged intent.
"""
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional, Set

from .intents import StagedIntent


class StagingError(ValueError):
    """Base class for errors raised while staging intents."""


class ConflictError(StagingError):
    """The new intents touch subjects that already have pending changes."""

    def __init__(self, reason: str, conflicting_ids: Iterable[str] = ()):
        super().__init__(reason)
        self.reason = reason
        self.conflicting_ids = frozenset(conflicting_ids)


class StagingValidationError(StagingError):
    """A staged intent or an edit to one breaks a staging rule."""


class UnknownIntentError(KeyError):
    """No staged intent has the requested id."""

    def __init__(self, intent_id: str):
        super().__init__(intent_id)
        self.intent_id = intent_id


@dataclass(frozen=True)
class ConflictCheck:
    ok: bool
    reason: Optional[str] = None
    conflicting_ids: FrozenSet[str] = frozenset()

    def raise_for_conflict(self):
        if not self.ok:
            raise ConflictError(self.reason, self.conflicting_ids)


def referenced_subject_ids(intents: Iterable[StagedIntent]) -> Set[str]:
    ids: Set[str] = set()
    for intent in intents:
        ids.update(intent.subject_ids())
    return ids


def can_add(existing_intents: Iterable[StagedIntent], new_intents: Iterable[StagedIntent]) -> ConflictCheck:
    """
    Check new intents against already staged ones.

    The whole batch is rejected if any one intent conflicts. Subjects shared
    between two of the new intents count as a conflict as well.

    Args:
        existing_intents: Intents currently staged
        new_intents: Intents about to be staged

    Returns:
        ConflictCheck with ok=False and a combined reason on conflict
    """
    existing_ids = referenced_subject_ids(existing_intents)

    conflicting: Set[str] = set()
    seen_in_batch: Set[str] = set()
    for intent in new_intents:
        ids = intent.subject_ids()
        conflicting.update(ids & existing_ids)
        conflicting.update(ids & seen_in_batch)
        seen_in_batch.update(ids)

    if not conflicting:
        return ConflictCheck(ok=True)

    listed = ", ".join(sorted(conflicting))
    reason = (
        f"Unsafe to stage: {listed} already "
        f"{'has' if len(conflicting) == 1 else 'have'} a pending change. "
        "Publish or remove the existing change first."
    )
    return ConflictCheck(ok=False, reason=reason, conflicting_ids=frozenset(conflicting))
