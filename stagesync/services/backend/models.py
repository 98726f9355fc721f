"""
Typed request/response structs for the course backend.

Each remote operation gets its own request model. Payloads are validated
here before they are dispatched, and serialized with the backend's column
names.
"""
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class CreateGroupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=36)
    class_id: int
    assignment_id: int

    def to_payload(self) -> dict:
        return {
            "name": self.name,
            "class_id": self.class_id,
            "assignment_id": self.assignment_id,
        }


class MoveMemberRequest(BaseModel):
    new_group_id: Optional[int] = None
    old_group_id: Optional[int] = None
    subject_id: str = Field(..., min_length=1)
    class_id: int

    @model_validator(mode="after")
    def check_groups(self):
        if self.new_group_id is None and self.old_group_id is None:
            raise ValueError("A move needs a new group, an old group, or both")
        return self

    def to_payload(self) -> dict:
        return {
            "new_assignment_group_id": self.new_group_id,
            "old_assignment_group_id": self.old_group_id,
            "profile_id": self.subject_id,
            "class_id": self.class_id,
        }


class CreateEmailBatchRequest(BaseModel):
    subject: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    cc_emails: List[str] = Field(default_factory=list)
    reply_to: Optional[str] = None
    class_id: int

    @field_validator("reply_to")
    @classmethod
    def empty_reply_to_is_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    def to_payload(self) -> dict:
        return {
            "subject": self.subject,
            "body": self.body,
            "cc_emails": {"emails": self.cc_emails},
            "reply_to": self.reply_to,
            "class_id": self.class_id,
        }


class InsertEmailRequest(BaseModel):
    batch_id: int
    user_id: str = Field(..., min_length=1)
    subject: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    cc_emails: List[str] = Field(default_factory=list)
    reply_to: Optional[str] = None
    class_id: int

    @field_validator("reply_to")
    @classmethod
    def empty_reply_to_is_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    def to_payload(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "user_id": self.user_id,
            "subject": self.subject,
            "body": self.body,
            "cc_emails": {"emails": self.cc_emails},
            "reply_to": self.reply_to,
            "class_id": self.class_id,
        }


class CreatedRow(BaseModel):
    """The id of a row the backend just inserted."""
    id: int
