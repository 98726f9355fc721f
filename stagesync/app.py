"""
StageSync API - FastAPI Application

Stage group and email changes for a course, review them, then publish
them to the course backend in one batch:
- Group staging: create assignment groups, move students between groups
- Email staging: draft email batches and send them

Staged changes live only as long as their session; nothing is persisted
until it is published.
"""

# ============================================================================
# IMPORTS
# ============================================================================

import logging
import random
from typing import Optional

import redis
from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import JSONResponse

from stagesync import __version__
from stagesync.config_manager import ConfigManager, CourseConfig, EnvConfig, get_config_manager
from stagesync.core.cache import ReadViewCache, email_history_key, groups_view_key
from stagesync.core.emails import build_email_preview
from stagesync.core.grouping import generate_groups, group_size_warning, is_group_size_invalid
from stagesync.core.intents import (
    EmailRecipient,
    GroupCreateIntent,
    MemberMoveIntent,
    generate_uuid,
    intent_to_dict,
)
from stagesync.core.sessions import EMAILS, GROUPS, SessionRegistry, StagingSession
from stagesync.publish import Publisher, moves_first
from stagesync.schemas import (
    CoursesResponse,
    EmailPreviewRequest,
    EmailPreviewResponse,
    GeneratedGroupsResponse,
    GenerateGroupsRequest,
    IntentUpdateRequest,
    PublishResponse,
    SessionInfo,
    StagedListResponse,
    StageGroupsRequest,
    StageMovesRequest,
)
from stagesync.services.backend import BackendClient
from stagesync.utils import handle_errors

# ============================================================================
# CONFIGURATION
# ============================================================================

logging.basicConfig(level=EnvConfig.get_log_level())
logger = logging.getLogger(__name__)

app = FastAPI(
    title="StageSync API",
    description="Stage group and email changes for a course and publish them in one batch",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

SESSION_REGISTRY = SessionRegistry()
_backend_client: Optional[BackendClient] = None
_view_cache: Optional[ReadViewCache] = None


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_config() -> ConfigManager:
    return get_config_manager()


def get_registry() -> SessionRegistry:
    return SESSION_REGISTRY


def get_backend() -> BackendClient:
    """Shared backend client, created on first use from the environment."""
    global _backend_client
    if _backend_client is None:
        url, key = EnvConfig.get_backend_credentials()
        _backend_client = BackendClient(
            base_url=url,
            api_key=key,
            max_tries=EnvConfig.get_backend_max_tries(),
            request_timeout=EnvConfig.get_backend_request_timeout(),
        )
    return _backend_client


def get_cache(config: ConfigManager = Depends(get_config)) -> ReadViewCache:
    global _view_cache
    if _view_cache is None:
        _view_cache = ReadViewCache.from_settings(
            ttl_seconds=config.cache_ttl_seconds,
            **EnvConfig.get_redis_settings(),
        )
    return _view_cache


# ============================================================================
# HELPERS
# ============================================================================

def _require_course(config: ConfigManager, course_id: str) -> CourseConfig:
    course = config.get_course(course_id)
    if not course:
        raise HTTPException(
            status_code=404,
            detail=f"Course not found: {course_id}. Available courses: {config.list_courses()}"
        )
    return course


def _require_session(registry: SessionRegistry, session_id: str, kind: Optional[str] = None) -> StagingSession:
    try:
        session = registry.get(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    if kind is not None and session.kind != kind:
        raise HTTPException(
            status_code=400,
            detail=f"Session {session_id} stages {session.kind}, not {kind}"
        )
    return session


def _cached_view(cache: ReadViewCache, key: str, loader):
    """Serve a read view from cache, falling back to the backend when redis is down."""
    try:
        return cache.get_or_load(key, loader)
    except redis.RedisError as e:
        logger.warning(f"Read-view cache unavailable, loading {key} directly: {e}")
        return loader()


def _session_listing(session: StagingSession) -> dict:
    intents = session.store.list()
    warnings = []
    if session.kind == GROUPS:
        for intent in intents:
            if isinstance(intent, GroupCreateIntent):
                warning = group_size_warning(
                    intent.name,
                    len(intent.member_ids),
                    session.min_group_size,
                    session.max_group_size,
                )
                if warning:
                    warnings.append(warning)
    return {
        "session": session.to_dict(),
        "intents": [intent_to_dict(intent) for intent in intents],
        "warnings": warnings,
    }


# ============================================================================
# ROOT ENDPOINT
# ============================================================================

@app.get("/", tags=["General"], summary="API Information")
def read_root():
    """Root endpoint providing API information and endpoint discovery."""
    return {
        "message": "Welcome to the StageSync API",
        "version": __version__,
        "documentation": {
            "swagger_ui": "/docs",
            "redoc": "/redoc",
            "openapi_schema": "/openapi.json"
        },
        "endpoints": {
            "courses": "/api/courses - List all configured courses",
            "group_sessions": "/api/courses/{course_id}/assignments/{assignment_id}/group-sessions - Open a group staging session",
            "email_sessions": "/api/courses/{course_id}/email-sessions - Open an email staging session",
            "session": "/api/sessions/{session_id} - List, edit, clear and publish staged changes",
        }
    }


# ============================================================================
# COURSES AND READ VIEWS
# ============================================================================

@app.get("/api/courses", response_model=CoursesResponse, tags=["Courses"], summary="List All Courses")
@handle_errors
def list_courses(config: ConfigManager = Depends(get_config)):
    """List all configured courses with their assignment group settings."""
    courses = []
    for course in config.list_course_configs():
        courses.append({
            "id": course.id,
            "name": course.name,
            "class_id": course.class_id,
            "assignments": [
                {
                    "id": assignment.id,
                    "title": assignment.title,
                    "min_group_size": assignment.min_group_size,
                    "max_group_size": assignment.max_group_size,
                }
                for assignment in course.assignments.values()
            ],
        })
    return JSONResponse(content={"courses": courses, "total": len(courses)})


@app.get(
    "/api/courses/{course_id}/assignments/{assignment_id}/groups",
    tags=["Read Views"],
    summary="Assignment Groups",
)
@handle_errors
def get_assignment_groups(
    course_id: str,
    assignment_id: int,
    config: ConfigManager = Depends(get_config),
    backend: BackendClient = Depends(get_backend),
    cache: ReadViewCache = Depends(get_cache),
):
    """Current groups of an assignment, served from the read-view cache."""
    _require_course(config, course_id)
    groups = _cached_view(cache, groups_view_key(assignment_id), lambda: backend.list_groups(assignment_id))
    return {"assignment_id": assignment_id, "groups": groups, "total": len(groups)}


@app.get("/api/courses/{course_id}/emails/history", tags=["Read Views"], summary="Email History")
@handle_errors
def get_email_history(
    course_id: str,
    config: ConfigManager = Depends(get_config),
    backend: BackendClient = Depends(get_backend),
    cache: ReadViewCache = Depends(get_cache),
):
    """Email batches already sent for a course, newest first."""
    course = _require_course(config, course_id)
    batches = _cached_view(
        cache,
        email_history_key(course.class_id),
        lambda: backend.list_email_batches(course.class_id),
    )
    return {"class_id": course.class_id, "batches": batches, "total": len(batches)}


# ============================================================================
# SESSION LIFECYCLE
# ============================================================================

@app.post(
    "/api/courses/{course_id}/assignments/{assignment_id}/group-sessions",
    response_model=SessionInfo,
    status_code=201,
    tags=["Sessions"],
    summary="Open Group Session",
)
@handle_errors
def open_group_session(
    course_id: str,
    assignment_id: int,
    config: ConfigManager = Depends(get_config),
    registry: SessionRegistry = Depends(get_registry),
):
    """
    Open a group staging session for one assignment.

    Staged changes are not saved if the session is disposed before publishing.
    """
    course = _require_course(config, course_id)
    assignment = course.get_assignment(assignment_id)
    if not assignment:
        raise HTTPException(
            status_code=404,
            detail=f"Assignment {assignment_id} is not configured for course {course_id}"
        )

    session = registry.open_group_session(
        course_id=course.id,
        class_id=course.class_id,
        assignment_id=assignment_id,
        min_group_size=assignment.min_group_size,
        max_group_size=assignment.max_group_size,
        enforce_group_size=config.enforce_group_size,
    )
    return session.to_dict()


@app.post(
    "/api/courses/{course_id}/email-sessions",
    response_model=SessionInfo,
    status_code=201,
    tags=["Sessions"],
    summary="Open Email Session",
)
@handle_errors
def open_email_session(
    course_id: str,
    config: ConfigManager = Depends(get_config),
    registry: SessionRegistry = Depends(get_registry),
):
    course = _require_course(config, course_id)
    session = registry.open_email_session(course_id=course.id, class_id=course.class_id)
    return session.to_dict()


@app.get("/api/sessions/{session_id}", response_model=StagedListResponse, tags=["Sessions"])
@handle_errors
def list_staged(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Staged changes in publish order, plus non-blocking warnings."""
    session = _require_session(registry, session_id)
    return _session_listing(session)


@app.delete("/api/sessions/{session_id}", status_code=204, tags=["Sessions"])
@handle_errors
def dispose_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Discard a session and any unpublished changes in it."""
    _require_session(registry, session_id)
    registry.dispose(session_id)
    return None


# ============================================================================
# GROUP STAGING
# ============================================================================

@app.post("/api/sessions/{session_id}/groups", response_model=StagedListResponse, tags=["Groups"])
@handle_errors
def stage_groups(session_id: str, request: StageGroupsRequest, registry: SessionRegistry = Depends(get_registry)):
    """Stage group creates. All groups are staged, or none (409 on conflict)."""
    session = _require_session(registry, session_id, GROUPS)
    intents = [
        GroupCreateIntent(
            name=group.name,
            member_ids=frozenset(group.member_ids),
            tag_name=group.tag_name,
            tag_color=group.tag_color,
        )
        for group in request.groups
    ]
    session.store.add(intents)
    return _session_listing(session)


@app.post("/api/sessions/{session_id}/moves", response_model=StagedListResponse, tags=["Groups"])
@handle_errors
def stage_moves(session_id: str, request: StageMovesRequest, registry: SessionRegistry = Depends(get_registry)):
    """Stage member moves. All moves are staged, or none (409 on conflict)."""
    session = _require_session(registry, session_id, GROUPS)
    intents = [
        MemberMoveIntent(
            subject_id=move.subject_id,
            from_group_id=move.from_group_id,
            to_group_id=move.to_group_id,
        )
        for move in request.moves
    ]
    session.store.add(intents)
    return _session_listing(session)


@app.post("/api/sessions/{session_id}/groups/generate", response_model=GeneratedGroupsResponse, tags=["Groups"])
@handle_errors
def generate_group_preview(
    session_id: str,
    request: GenerateGroupsRequest,
    registry: SessionRegistry = Depends(get_registry),
    backend: BackendClient = Depends(get_backend),
):
    """
    Propose groups for ungrouped students. Nothing is staged; post the
    returned groups to /groups to stage them.
    """
    session = _require_session(registry, session_id, GROUPS)

    warnings = []
    if is_group_size_invalid(
        request.group_size,
        session.min_group_size,
        session.max_group_size,
        len(request.ungrouped_ids),
    ):
        upper = session.max_group_size if session.max_group_size is not None else len(request.ungrouped_ids)
        warnings.append(
            f"Groups for this assignment should be in range "
            f"{session.min_group_size or 1} - {upper}"
        )

    def name_factory() -> str:
        # The backend can return null; fall back to a random id
        return backend.generate_anon_name() or generate_uuid()

    tags = None
    if request.tags:
        tags = {subject_id: tag.model_dump() for subject_id, tag in request.tags.items()}

    rng = random.Random(request.seed) if request.seed is not None else None
    groups = generate_groups(request.ungrouped_ids, request.group_size, name_factory, tags=tags, rng=rng)
    return {"groups": [intent_to_dict(group) for group in groups], "warnings": warnings}


# ============================================================================
# EMAIL STAGING
# ============================================================================

@app.post("/api/sessions/{session_id}/emails/preview", response_model=EmailPreviewResponse, tags=["Emails"])
@handle_errors
def add_emails_to_preview(
    session_id: str,
    request: EmailPreviewRequest,
    registry: SessionRegistry = Depends(get_registry),
    config: ConfigManager = Depends(get_config),
):
    """Render one email per recipient from the templates and stage them as a new batch."""
    session = _require_session(registry, session_id, EMAILS)
    course = config.get_course(session.course_id)

    shared = {}
    if course:
        shared["course_name"] = course.name
        reply_to = request.reply_to or course.reply_to
        if request.assignment_id is not None:
            assignment = course.get_assignment(request.assignment_id)
            if assignment:
                shared["assignment_name"] = assignment.title
                shared["assignment_slug"] = assignment.slug
                shared["due_date"] = assignment.due_date
            shared["assignment_url"] = config.assignment_url(course.class_id, request.assignment_id)
    else:
        reply_to = request.reply_to

    variables_by_subject = {r.subject_id: r.variables for r in request.recipients}

    def variables_for(recipient: EmailRecipient) -> dict:
        return {**shared, **variables_by_subject.get(recipient.subject_id, {})}

    batch, intents = build_email_preview(
        recipients=[EmailRecipient(address=r.address, subject_id=r.subject_id) for r in request.recipients],
        subject=request.subject,
        body=request.body,
        cc=[EmailRecipient(address=c.address, subject_id=c.subject_id) for c in request.cc],
        reply_to=reply_to,
        assignment_id=request.assignment_id,
        why=request.why,
        variables_for=variables_for,
    )
    session.store.add(intents)
    logger.info(f"Added {len(intents)} email(s) to preview in session {session_id}")
    return {
        "batch_id": batch.batch_id,
        "added": len(intents),
        "intents": [intent_to_dict(intent) for intent in intents],
    }


# ============================================================================
# EDIT, CLEAR, PUBLISH
# ============================================================================

@app.patch("/api/sessions/{session_id}/intents/{intent_id}", response_model=StagedListResponse, tags=["Sessions"])
@handle_errors
def update_intent(
    session_id: str,
    intent_id: str,
    request: IntentUpdateRequest,
    registry: SessionRegistry = Depends(get_registry),
):
    """Edit a staged change in place, e.g. the subject of a drafted email."""
    session = _require_session(registry, session_id)
    session.store.update(intent_id, **request.model_dump(exclude_unset=True))
    return _session_listing(session)


@app.delete("/api/sessions/{session_id}/intents/{intent_id}", response_model=StagedListResponse, tags=["Sessions"])
@handle_errors
def remove_intent(session_id: str, intent_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Un-stage a single change."""
    session = _require_session(registry, session_id)
    session.store.remove(intent_id)
    return _session_listing(session)


@app.post("/api/sessions/{session_id}/clear", response_model=StagedListResponse, tags=["Sessions"])
@handle_errors
def clear_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = _require_session(registry, session_id)
    session.store.clear()
    return _session_listing(session)


@app.post("/api/sessions/{session_id}/publish", response_model=PublishResponse, tags=["Sessions"])
@handle_errors
def publish_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
    backend: BackendClient = Depends(get_backend),
    cache: ReadViewCache = Depends(get_cache),
    config: ConfigManager = Depends(get_config),
):
    """
    Publish every staged change of a session.

    Each change is applied independently; failures are reported per change
    and do not stop the others. The session is empty afterwards, whatever
    the outcome: re-stage the failed changes listed in the response.
    """
    session = _require_session(registry, session_id)
    publisher = Publisher(
        store=session.store,
        backend=backend,
        class_id=session.class_id,
        assignment_id=session.assignment_id,
        cache=cache,
        max_workers=config.publish_max_workers,
    )
    order = moves_first if session.kind == GROUPS else None
    result = publisher.publish(order=order)
    return result.to_dict()
