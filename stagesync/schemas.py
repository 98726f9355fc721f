"""
Pydantic schemas for request/response models.

This module contains the data validation and serialization models used
by the StageSync API endpoints. Each schema provides:
- Type validation and coercion
- Documentation for OpenAPI/Swagger
- Example values for API docs
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


# ============================================================================
# COURSE SCHEMAS
# ============================================================================

class AssignmentInfo(BaseModel):
    """Assignment group settings."""
    id: int = Field(..., description="Assignment ID", examples=[301])
    title: Optional[str] = Field(None, description="Assignment title", examples=["Project 1"])
    min_group_size: Optional[int] = Field(None, description="Minimum group size", examples=[2])
    max_group_size: Optional[int] = Field(None, description="Maximum group size", examples=[4])


class CourseInfo(BaseModel):
    """Course information model."""
    id: str = Field(..., description="Course identifier", examples=["cs2100_fa26"])
    name: Optional[str] = Field(None, description="Full course name", examples=["CS2100: Program Design"])
    class_id: int = Field(..., description="Backend class ID", examples=[42])
    assignments: List[AssignmentInfo] = Field(default_factory=list, description="Configured assignments")


class CoursesResponse(BaseModel):
    """Response model for listing courses."""
    courses: List[CourseInfo] = Field(..., description="List of courses")
    total: int = Field(..., description="Total number of courses", examples=[3])


# ============================================================================
# SESSION SCHEMAS
# ============================================================================

class SessionInfo(BaseModel):
    """A mounted staging session."""
    session_id: str = Field(..., description="Session identifier")
    kind: str = Field(..., description="Staging domain", examples=["groups"])
    course_id: str = Field(..., description="Course identifier", examples=["cs2100_fa26"])
    class_id: int = Field(..., description="Backend class ID", examples=[42])
    assignment_id: Optional[int] = Field(None, description="Assignment for group sessions", examples=[301])
    created_at: str = Field(..., description="ISO 8601 timestamp")
    staged: int = Field(..., description="Number of staged changes", examples=[0])


class StagedListResponse(BaseModel):
    """Staged changes of a session, in the order they will be published."""
    session: SessionInfo
    intents: List[Dict[str, Any]] = Field(..., description="Staged changes")
    warnings: List[str] = Field(default_factory=list, description="Non-blocking problems, e.g. group sizes")


# ============================================================================
# GROUP SCHEMAS
# ============================================================================

class GroupCreateItem(BaseModel):
    name: str = Field(..., description="Group name", examples=["brave-otter"])
    member_ids: List[str] = Field(..., min_length=1, description="Profile ids of the members")
    tag_name: Optional[str] = Field(None, description="Tag the group was generated from")
    tag_color: Optional[str] = Field(None, description="Color of that tag")


class StageGroupsRequest(BaseModel):
    groups: List[GroupCreateItem] = Field(..., description="Groups to create")


class MoveItem(BaseModel):
    subject_id: str = Field(..., description="Profile id of the student to move")
    from_group_id: Optional[int] = Field(None, description="Current group, if any")
    to_group_id: Optional[int] = Field(None, description="Target group; empty removes the student from their group")


class StageMovesRequest(BaseModel):
    moves: List[MoveItem] = Field(..., description="Moves to stage")


class TagRef(BaseModel):
    name: str
    color: Optional[str] = None


class GenerateGroupsRequest(BaseModel):
    ungrouped_ids: List[str] = Field(..., description="Profile ids of students without a group")
    group_size: int = Field(..., description="Desired members per group", examples=[3])
    tags: Optional[Dict[str, TagRef]] = Field(
        None,
        description="First selected tag of each student, keyed by profile id",
    )
    seed: Optional[int] = Field(None, description="Shuffle seed for reproducible previews")


class GeneratedGroupsResponse(BaseModel):
    groups: List[Dict[str, Any]] = Field(..., description="Proposed groups (not staged)")
    warnings: List[str] = Field(default_factory=list)


# ============================================================================
# EMAIL SCHEMAS
# ============================================================================

class RecipientItem(BaseModel):
    address: str = Field(..., description="Email address", examples=["ada@example.edu"])
    subject_id: str = Field(..., description="User id of the recipient")
    variables: Dict[str, Any] = Field(
        default_factory=dict,
        description="Template variables for this recipient",
        examples=[{"assignment_group_name": "brave-otter"}],
    )


class EmailPreviewRequest(BaseModel):
    recipients: List[RecipientItem] = Field(..., description="Who receives the email")
    subject: str = Field(..., description="Subject template", examples=["{course_name}: {assignment_name} reminder"])
    body: str = Field(..., description="Body template")
    cc: List[RecipientItem] = Field(default_factory=list, description="Copied on every email")
    reply_to: Optional[str] = Field(None, description="Reply-to address")
    assignment_id: Optional[int] = Field(None, description="Assignment the email is about")
    why: Optional[str] = Field(None, description="Audience description", examples=["Students who have not submitted"])


class EmailPreviewResponse(BaseModel):
    batch_id: str = Field(..., description="Local batch identifier")
    added: int = Field(..., description="Number of emails added to the preview")
    intents: List[Dict[str, Any]]


# ============================================================================
# EDIT / PUBLISH SCHEMAS
# ============================================================================

class IntentUpdateRequest(BaseModel):
    """Editable fields of a staged change. Only fields that are sent are changed."""
    name: Optional[str] = None
    tag_name: Optional[str] = None
    tag_color: Optional[str] = None
    from_group_id: Optional[int] = None
    to_group_id: Optional[int] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    reply_to: Optional[str] = None
    why: Optional[str] = None


class PublishResponse(BaseModel):
    """Outcome of publishing a session."""
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    total: int = Field(..., description="Number of changes attempted")
    succeeded: int
    failed: int
    partial: bool = Field(..., description="Some failed change was partly applied")
    overall_success: bool
    outcomes: List[Dict[str, Any]] = Field(..., description="Per-change results")
