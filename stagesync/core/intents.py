"""
Staged Intents

Immutable descriptions of mutations that have not been applied yet.
Each intent knows which subject-ids (student/staff profile ids) it touches,
which is what the conflict guard works from.
"""
import uuid
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Tuple, Union


def generate_uuid() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class EmailRecipient:
    """An email address and the subject it belongs to."""
    address: str
    subject_id: str


@dataclass(frozen=True)
class EmailBatch:
    """
    Template text shared by every email produced from one "Add to Preview".

    `batch_id` is a local identifier; the remote batch id is only known
    once the Publisher has created the batch row.
    """
    subject: str
    body: str
    cc: Tuple[EmailRecipient, ...] = ()
    reply_to: Optional[str] = None
    assignment_id: Optional[int] = None
    batch_id: str = field(default_factory=generate_uuid)


@dataclass(frozen=True)
class GroupCreateIntent:
    """Create a group named `name` and move every member into it."""
    name: str
    member_ids: FrozenSet[str]
    tag_name: Optional[str] = None
    tag_color: Optional[str] = None
    intent_id: str = field(default_factory=generate_uuid)

    kind = "group_create"

    def __post_init__(self):
        if not self.name:
            raise ValueError("Group name must not be empty")
        # Accept any iterable of ids but always store a frozenset
        object.__setattr__(self, "member_ids", frozenset(self.member_ids))
        if not self.member_ids:
            raise ValueError(f"Group '{self.name}' must have at least one member")

    def subject_ids(self) -> FrozenSet[str]:
        return self.member_ids


@dataclass(frozen=True)
class MemberMoveIntent:
    """Move one subject between groups. A missing `to_group_id` removes them from their group."""
    subject_id: str
    from_group_id: Optional[int] = None
    to_group_id: Optional[int] = None
    intent_id: str = field(default_factory=generate_uuid)

    kind = "member_move"

    def __post_init__(self):
        if not self.subject_id:
            raise ValueError("subject_id must not be empty")
        if self.from_group_id is None and self.to_group_id is None:
            raise ValueError(f"Move for {self.subject_id} needs a source or a target group")

    def subject_ids(self) -> FrozenSet[str]:
        return frozenset([self.subject_id])


@dataclass(frozen=True)
class EmailSendIntent:
    """One rendered email to one recipient, belonging to `batch`."""
    recipient: EmailRecipient
    subject: str
    body: str
    batch: EmailBatch
    cc: Tuple[EmailRecipient, ...] = ()
    reply_to: Optional[str] = None
    why: Optional[str] = None
    intent_id: str = field(default_factory=generate_uuid)

    kind = "email_send"

    def __post_init__(self):
        if not self.subject or not self.body:
            raise ValueError(f"Email to {self.recipient.address} needs a subject and a body")

    def subject_ids(self) -> FrozenSet[str]:
        # CC copies are not targets of the intent
        return frozenset([self.recipient.subject_id])


StagedIntent = Union[GroupCreateIntent, MemberMoveIntent, EmailSendIntent]

# Fields that define who an intent touches; these cannot be edited in place
IDENTITY_FIELDS = {
    "intent_id",
    "member_ids",
    "subject_id",
    "recipient",
    "batch",
}


def intent_to_dict(intent: StagedIntent) -> dict:
    """Serialize an intent for API responses and logs."""
    if isinstance(intent, GroupCreateIntent):
        return {
            "intent_id": intent.intent_id,
            "kind": intent.kind,
            "name": intent.name,
            "member_ids": sorted(intent.member_ids),
            "tag_name": intent.tag_name,
            "tag_color": intent.tag_color,
        }
    if isinstance(intent, MemberMoveIntent):
        return {
            "intent_id": intent.intent_id,
            "kind": intent.kind,
            "subject_id": intent.subject_id,
            "from_group_id": intent.from_group_id,
            "to_group_id": intent.to_group_id,
        }
    if isinstance(intent, EmailSendIntent):
        return {
            "intent_id": intent.intent_id,
            "kind": intent.kind,
            "batch_id": intent.batch.batch_id,
            "to": {"address": intent.recipient.address, "subject_id": intent.recipient.subject_id},
            "subject": intent.subject,
            "body": intent.body,
            "cc": [{"address": cc.address, "subject_id": cc.subject_id} for cc in intent.cc],
            "reply_to": intent.reply_to,
            "why": intent.why,
        }
    raise TypeError(f"Unknown intent type: {type(intent).__name__}")
