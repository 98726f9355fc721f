"""
Publish Service

Applies staged intents to the course backend:
- Group creates (create the group, then move every member into it)
- Member moves
- Emails (one batch row per distinct batch, then one email row per recipient)

Each intent is applied independently. A failing intent is recorded and the
remaining intents are still attempted; nothing is rolled back. The published
intents leave the staging store once every intent has been attempted.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import redis

from stagesync.core.cache import ReadViewCache, email_history_key, groups_view_key
from stagesync.core.intents import (
    EmailSendIntent,
    GroupCreateIntent,
    MemberMoveIntent,
    StagedIntent,
    intent_to_dict,
)
from stagesync.core.staging import StagingStore
from stagesync.services.backend import BackendClient, RemoteCallError

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8


def moves_first(intent: StagedIntent) -> int:
    """Sort key: apply member moves before group creates."""
    return 0 if isinstance(intent, MemberMoveIntent) else 1


def creates_first(intent: StagedIntent) -> int:
    """Sort key: apply group creates before member moves."""
    return 0 if isinstance(intent, GroupCreateIntent) else 1


class IntentOutcome:
    """Result of publishing a single intent."""

    def __init__(
        self,
        intent: StagedIntent,
        success: bool,
        message: str,
        remote_id: Optional[int] = None,
        errors: Optional[List[RemoteCallError]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.intent = intent
        self.success = success
        self.message = message
        self.remote_id = remote_id
        self.errors = errors or []
        self.details = details or {}

    @property
    def partial(self) -> bool:
        """The intent failed after some of its remote effects were already applied."""
        return not self.success and self.remote_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intent": intent_to_dict(self.intent),
            "success": self.success,
            "partial": self.partial,
            "message": self.message,
            "remote_id": self.remote_id,
            "errors": [e.to_dict() for e in self.errors],
            "details": self.details,
        }


class PublishResult:
    """Structured outcome of a publish: what went through and what has to be redone."""

    def __init__(self, outcomes: List[IntentOutcome]):
        self.outcomes = outcomes
        self.timestamp = datetime.now()

    @property
    def succeeded(self) -> List[IntentOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> List[IntentOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def failed_intents(self) -> List[StagedIntent]:
        """Failed intents, in publish order, ready to be re-staged."""
        return [o.intent for o in self.failed]

    @property
    def partial(self) -> bool:
        return any(o.partial for o in self.outcomes)

    @property
    def overall_success(self) -> bool:
        return all(o.success for o in self.outcomes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "total": len(self.outcomes),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "partial": self.partial,
            "overall_success": self.overall_success,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class Publisher:
    """Publishes the intents of one staging store to the backend."""

    def __init__(
        self,
        store: StagingStore,
        backend: BackendClient,
        class_id: int,
        assignment_id: Optional[int] = None,
        cache: Optional[ReadViewCache] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        """
        Initialize publisher.

        Args:
            store: Store the published intents are removed from
            backend: Backend client used for every remote call
            class_id: Class the intents belong to
            assignment_id: Assignment for group creates (group sessions only)
            cache: Optional read-view cache to invalidate after publishing
            max_workers: Threads used for the member moves of one group create
        """
        self.store = store
        self.backend = backend
        self.class_id = class_id
        self.assignment_id = assignment_id
        self.cache = cache
        self.max_workers = max_workers

    def publish(
        self,
        intents: Optional[Iterable[StagedIntent]] = None,
        order: Optional[Callable[[StagedIntent], Any]] = None,
    ) -> PublishResult:
        """
        Apply intents one by one, then un-stage them and invalidate read views.

        Publishing the store snapshot removes exactly the snapshot from the store,
        whatever the outcome. Publishing caller-supplied intents clears the store.

        Args:
            intents: Intents to publish (default: snapshot of the store)
            order: Optional sort key; the sort is stable, so insertion order
                is kept within equal keys

        Returns:
            PublishResult with one outcome per intent
        """
        snapshot = list(intents) if intents is not None else list(self.store.list())
        if order is not None:
            snapshot.sort(key=order)

        logger.info(f"Publishing {len(snapshot)} staged change(s) for class {self.class_id}")

        # Remote ids of email batches created during this publish, and batches that failed
        batch_ids: Dict[str, int] = {}
        batch_errors: Dict[str, RemoteCallError] = {}

        outcomes: List[IntentOutcome] = []
        try:
            for intent in snapshot:
                outcomes.append(self._publish_one(intent, batch_ids, batch_errors))
        finally:
            if intents is None:
                # Intents staged while publishing were not in the snapshot; keep them
                self.store.discard(intent.intent_id for intent in snapshot)
            else:
                self.store.clear()
            self._invalidate_views(snapshot)

        result = PublishResult(outcomes)
        logger.info(
            f"Publish completed: {len(result.succeeded)} succeeded, {len(result.failed)} failed"
        )
        return result

    # ========================================================================
    # PER-INTENT HANDLERS
    # ========================================================================

    def _publish_one(
        self,
        intent: StagedIntent,
        batch_ids: Dict[str, int],
        batch_errors: Dict[str, RemoteCallError],
    ) -> IntentOutcome:
        try:
            if isinstance(intent, GroupCreateIntent):
                return self._publish_group_create(intent)
            if isinstance(intent, MemberMoveIntent):
                return self._publish_member_move(intent)
            if isinstance(intent, EmailSendIntent):
                return self._publish_email(intent, batch_ids, batch_errors)
            raise TypeError(f"Cannot publish {type(intent).__name__}")
        except RemoteCallError as e:
            logger.error(f"Failed to publish {intent.kind} {intent.intent_id}: {e}")
            return IntentOutcome(intent, success=False, message=str(e), errors=[e])
        except Exception as e:
            logger.exception(f"Unexpected error publishing {intent.intent_id}")
            error = RemoteCallError(f"Unexpected error: {e}", code="unexpected")
            return IntentOutcome(intent, success=False, message=str(error), errors=[error])

    def _publish_group_create(self, intent: GroupCreateIntent) -> IntentOutcome:
        created = self.backend.create_group(
            name=intent.name,
            class_id=self.class_id,
            assignment_id=self.assignment_id,
        )

        members = sorted(intent.member_ids)
        results = self._settle_all([
            (member, self._mover(created.id, member))
            for member in members
        ])

        moved = [member for member, error in results if error is None]
        failures = {member: error for member, error in results if error is not None}

        for member, error in failures.items():
            logger.error(f"Failed to move {member} into group {intent.name}: {error}")

        details = {
            "moved": moved,
            "failed": {member: str(error) for member, error in failures.items()},
        }

        if failures:
            return IntentOutcome(
                intent,
                success=False,
                message=(
                    f"Created group {intent.name} but failed to move "
                    f"{len(failures)} of {len(members)} member(s)"
                ),
                remote_id=created.id,
                errors=list(failures.values()),
                details=details,
            )

        return IntentOutcome(
            intent,
            success=True,
            message=f"Created group {intent.name} with {len(members)} member(s)",
            remote_id=created.id,
            details=details,
        )

    def _publish_member_move(self, intent: MemberMoveIntent) -> IntentOutcome:
        self.backend.move_member(
            new_group_id=intent.to_group_id,
            old_group_id=intent.from_group_id,
            subject_id=intent.subject_id,
            class_id=self.class_id,
        )
        return IntentOutcome(
            intent,
            success=True,
            message=f"Moved {intent.subject_id}",
        )

    def _publish_email(
        self,
        intent: EmailSendIntent,
        batch_ids: Dict[str, int],
        batch_errors: Dict[str, RemoteCallError],
    ) -> IntentOutcome:
        batch = intent.batch
        cc_emails = [cc.address for cc in intent.cc]

        if batch.batch_id in batch_errors:
            error = batch_errors[batch.batch_id]
            return IntentOutcome(
                intent,
                success=False,
                message=f"Email batch was not created: {error}",
                errors=[error],
            )

        if batch.batch_id not in batch_ids:
            try:
                created = self.backend.create_email_batch(
                    subject=batch.subject,
                    body=batch.body,
                    cc_emails=[cc.address for cc in batch.cc],
                    reply_to=batch.reply_to,
                    class_id=self.class_id,
                )
            except RemoteCallError as e:
                batch_errors[batch.batch_id] = e
                raise
            batch_ids[batch.batch_id] = created.id

        remote_batch_id = batch_ids[batch.batch_id]
        self.backend.insert_email(
            batch_id=remote_batch_id,
            user_id=intent.recipient.subject_id,
            subject=intent.subject,
            body=intent.body,
            cc_emails=cc_emails,
            reply_to=intent.reply_to,
            class_id=self.class_id,
        )
        return IntentOutcome(
            intent,
            success=True,
            message=f"Queued email \"{intent.subject}\" to {intent.recipient.address}",
            remote_id=remote_batch_id,
        )

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _mover(self, group_id: int, member: str) -> Callable[[], None]:
        def move():
            self.backend.move_member(
                new_group_id=group_id,
                old_group_id=None,
                subject_id=member,
                class_id=self.class_id,
            )
        return move

    def _settle_all(
        self,
        calls: List[Tuple[str, Callable[[], None]]],
    ) -> List[Tuple[str, Optional[RemoteCallError]]]:
        """
        Run every call concurrently and wait for all of them.

        Returns:
            (key, error) per call in submission order; error is None on success
        """
        if not calls:
            return []

        workers = max(1, min(self.max_workers, len(calls)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [(key, executor.submit(fn)) for key, fn in calls]

            results: List[Tuple[str, Optional[RemoteCallError]]] = []
            for key, future in futures:
                try:
                    future.result()
                    results.append((key, None))
                except RemoteCallError as e:
                    results.append((key, e))
                except Exception as e:
                    logger.exception(f"Unexpected error in remote call for {key}")
                    results.append((key, RemoteCallError(f"Unexpected error: {e}", code="unexpected")))
        return results

    def _invalidate_views(self, intents: List[StagedIntent]):
        if self.cache is None or not intents:
            return

        keys = set()
        for intent in intents:
            if isinstance(intent, (GroupCreateIntent, MemberMoveIntent)) and self.assignment_id is not None:
                keys.add(groups_view_key(self.assignment_id))
            elif isinstance(intent, EmailSendIntent):
                keys.add(email_history_key(self.class_id))

        try:
            self.cache.invalidate(*sorted(keys))
        except redis.RedisError as e:
            logger.warning(f"Failed to invalidate read views {sorted(keys)}: {e}")
