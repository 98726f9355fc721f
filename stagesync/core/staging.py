"""
Staging Store

A temporary, in-memory store for intents that have not been published yet.

A store belongs to exactly one staging session (one mounted view). It is
never persisted: disposing the session, or publishing, discards everything
staged in it.

The store supports:
    - Atomic, all-or-nothing staging of one or more intents
    - Removing or editing a single staged intent
    - Clearing everything
    - Read-only snapshots for rendering and publishing
"""
import dataclasses
import logging
import re
import threading
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from .conflicts import ConflictError, StagingValidationError, UnknownIntentError, can_add
from .intents import IDENTITY_FIELDS, GroupCreateIntent, StagedIntent

logger = logging.getLogger(__name__)

# Called with (staged, new); raises a StagingError to reject the new intents
Validator = Callable[[Sequence[StagedIntent], Sequence[StagedIntent]], None]

GROUP_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,36}$")


class StagingStore:
    """
    Ordered collection of staged intents for one session.

    Two states: empty, or holding N > 0 intents. `add` grows the store,
    `remove` shrinks it and `clear` always empties it. There is no
    publishing state; the Publisher works from a snapshot.

    Notes:
        - Every mutation runs under a lock so a request thread never observes
          a half-applied `add`.
        - Extra validators run after the conflict guard, with the same
          all-or-nothing semantics.
    """

    def __init__(self, validators: Optional[Iterable[Validator]] = None):
        self._intents: List[StagedIntent] = []
        self._touched: Set[str] = set()
        self._validators: List[Validator] = list(validators or [])
        self._lock = threading.RLock()
        self._disposed = False

    # === mutators ===

    def add(self, intents: Iterable[StagedIntent]) -> None:
        """
        Stage new intents, all or nothing.

        Args:
            intents: Intents to append, in order

        Raises:
            ConflictError: If any new intent touches a subject with a pending change
            StagingValidationError: If an extra validator rejects the batch
            RuntimeError: If the store has been disposed
        """
        new_intents = list(intents)

        with self._lock:
            self._ensure_usable()

            check = can_add(self._intents, new_intents)
            if not check.ok:
                logger.info(f"Rejected {len(new_intents)} intent(s): {check.reason}")
                check.raise_for_conflict()

            for validator in self._validators:
                validator(tuple(self._intents), tuple(new_intents))

            self._intents.extend(new_intents)
            for intent in new_intents:
                self._touched.update(intent.subject_ids())

        logger.debug(f"Staged {len(new_intents)} intent(s); {len(self._intents)} pending")

    def remove(self, intent_id: str) -> StagedIntent:
        """
        Un-stage a single intent and release the subjects it touched.

        Raises:
            UnknownIntentError: If no staged intent has this id
        """
        with self._lock:
            index = self._index_of(intent_id)
            intent = self._intents.pop(index)
            self._touched.difference_update(intent.subject_ids())
        return intent

    def discard(self, intent_ids: Iterable[str]) -> int:
        """
        Un-stage every intent whose id is in `intent_ids`; unknown ids are ignored.

        Intents staged after the ids were collected stay in the store.

        Returns:
            Number of intents removed
        """
        ids = set(intent_ids)
        with self._lock:
            dropped = [intent for intent in self._intents if intent.intent_id in ids]
            self._intents = [intent for intent in self._intents if intent.intent_id not in ids]
            for intent in dropped:
                self._touched.difference_update(intent.subject_ids())
        return len(dropped)

    def update(self, intent_id: str, **changes) -> StagedIntent:
        """
        Replace editable fields of a staged intent, keeping its position.

        Fields that decide which subjects an intent touches cannot change.

        Raises:
            UnknownIntentError: If no staged intent has this id
            StagingValidationError: If a change targets an identity field or an unknown field
        """
        blocked = IDENTITY_FIELDS.intersection(changes)
        if blocked:
            raise StagingValidationError(
                f"Cannot edit {', '.join(sorted(blocked))} of a staged change; remove and re-stage it instead"
            )

        with self._lock:
            index = self._index_of(intent_id)
            current = self._intents[index]
            known = {f.name for f in dataclasses.fields(current)}
            unknown = set(changes) - known
            if unknown:
                raise StagingValidationError(
                    f"Unknown field(s) for {current.kind}: {', '.join(sorted(unknown))}"
                )
            try:
                updated = dataclasses.replace(current, **changes)
            except ValueError as e:
                raise StagingValidationError(str(e)) from e

            others = self._intents[:index] + self._intents[index + 1:]
            for validator in self._validators:
                validator(tuple(others), (updated,))

            self._intents[index] = updated
        return updated

    def clear(self) -> None:
        """Remove all staged intents."""
        with self._lock:
            self._intents.clear()
            self._touched.clear()

    def dispose(self) -> None:
        """Clear the store and refuse further staging. Called when the owning view goes away."""
        with self._lock:
            self.clear()
            self._disposed = True

    # === accessors ===

    def list(self) -> Tuple[StagedIntent, ...]:
        """Snapshot of staged intents in insertion order."""
        with self._lock:
            return tuple(self._intents)

    def get(self, intent_id: str) -> StagedIntent:
        with self._lock:
            return self._intents[self._index_of(intent_id)]

    def touched_subject_ids(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._touched)

    def is_empty(self) -> bool:
        return not self._intents

    @property
    def disposed(self) -> bool:
        return self._disposed

    def __len__(self) -> int:
        return len(self._intents)

    # === helpers ===

    def _index_of(self, intent_id: str) -> int:
        for index, intent in enumerate(self._intents):
            if intent.intent_id == intent_id:
                return index
        raise UnknownIntentError(intent_id)

    def _ensure_usable(self):
        if self._disposed:
            raise RuntimeError("Staging store has been disposed")


# ============================================================================
# VALIDATORS
# ============================================================================

def unique_group_names(staged: Sequence[StagedIntent], new: Sequence[StagedIntent]) -> None:
    """Group names must be unique within a publish batch."""
    names: Dict[str, int] = {}
    for intent in staged:
        if isinstance(intent, GroupCreateIntent):
            names[intent.name] = names.get(intent.name, 0) + 1

    duplicates = set()
    for intent in new:
        if isinstance(intent, GroupCreateIntent):
            if intent.name in names:
                duplicates.add(intent.name)
            names[intent.name] = names.get(intent.name, 0) + 1

    if duplicates:
        raise ConflictError(
            f"A group named {', '.join(sorted(duplicates))} is already staged"
        )


def valid_group_names(staged: Sequence[StagedIntent], new: Sequence[StagedIntent]) -> None:
    """Names may only use letters, digits, hyphens and underscores (36 characters max)."""
    invalid = sorted(
        intent.name for intent in new
        if isinstance(intent, GroupCreateIntent) and not GROUP_NAME_PATTERN.match(intent.name)
    )
    if invalid:
        raise StagingValidationError(
            f"Invalid group name(s): {', '.join(invalid)}. "
            "The name must consist only of alphanumeric, hyphens, or underscores, "
            "and be at most 36 characters."
        )


def group_size_within(min_size: Optional[int], max_size: Optional[int]) -> Validator:
    """Build a validator rejecting group creates outside [min_size, max_size]."""

    def validator(staged: Sequence[StagedIntent], new: Sequence[StagedIntent]) -> None:
        for intent in new:
            if not isinstance(intent, GroupCreateIntent):
                continue
            size = len(intent.member_ids)
            if min_size is not None and size < min_size:
                raise StagingValidationError(
                    f"Group {intent.name} is too small (min: {min_size}, current: {size})"
                )
            if max_size is not None and size > max_size:
                raise StagingValidationError(
                    f"Group {intent.name} is too large (max: {max_size}, current: {size})"
                )

    return validator
