"""
Staging sessions.

A session is the lifetime of one mounted staging view: it owns a
StagingStore from mount until the view goes away or is explicitly disposed.
The registry hands sessions out by id; nothing here is persisted.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from .intents import generate_uuid
from .staging import StagingStore, group_size_within, unique_group_names, valid_group_names

logger = logging.getLogger(__name__)

GROUPS = "groups"
EMAILS = "emails"


@dataclass
class StagingSession:
    kind: str
    course_id: str
    class_id: int
    store: StagingStore
    assignment_id: Optional[int] = None
    min_group_size: Optional[int] = None
    max_group_size: Optional[int] = None
    session_id: str = field(default_factory=generate_uuid)
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict:
        return {
            "session_id": self.session_id,
            "kind": self.kind,
            "course_id": self.course_id,
            "class_id": self.class_id,
            "assignment_id": self.assignment_id,
            "created_at": self.created_at.isoformat(),
            "staged": len(self.store),
        }


class SessionRegistry:
    """Creates, looks up and disposes staging sessions."""

    def __init__(self):
        self._sessions: Dict[str, StagingSession] = {}
        self._lock = threading.Lock()

    def open_group_session(
        self,
        course_id: str,
        class_id: int,
        assignment_id: int,
        min_group_size: Optional[int] = None,
        max_group_size: Optional[int] = None,
        enforce_group_size: bool = False,
    ) -> StagingSession:
        """
        Open a session for staging group creates and moves on one assignment.

        With `enforce_group_size`, group creates outside the size bounds are
        rejected instead of only being reported as warnings.
        """
        validators = [valid_group_names, unique_group_names]
        if enforce_group_size:
            validators.append(group_size_within(min_group_size, max_group_size))

        session = StagingSession(
            kind=GROUPS,
            course_id=course_id,
            class_id=class_id,
            assignment_id=assignment_id,
            min_group_size=min_group_size,
            max_group_size=max_group_size,
            store=StagingStore(validators=validators),
        )
        return self._register(session)

    def open_email_session(self, course_id: str, class_id: int) -> StagingSession:
        session = StagingSession(
            kind=EMAILS,
            course_id=course_id,
            class_id=class_id,
            store=StagingStore(),
        )
        return self._register(session)

    def get(self, session_id: str) -> StagingSession:
        """
        Raises:
            KeyError: If the session does not exist (or was disposed)
        """
        with self._lock:
            return self._sessions[session_id]

    def dispose(self, session_id: str) -> None:
        """Discard a session and everything staged in it."""
        with self._lock:
            session = self._sessions.pop(session_id)
        pending = len(session.store)
        session.store.dispose()
        if pending:
            logger.warning(f"Disposed session {session_id} with {pending} unpublished change(s)")
        else:
            logger.info(f"Disposed session {session_id}")

    def list_sessions(self) -> List[StagingSession]:
        with self._lock:
            return list(self._sessions.values())

    def _register(self, session: StagingSession) -> StagingSession:
        with self._lock:
            self._sessions[session.session_id] = session
        logger.info(
            f"Opened {session.kind} session {session.session_id} for course {session.course_id}"
        )
        return session
