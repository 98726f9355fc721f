# tests/conftest.py

import json
import threading

import pytest

from stagesync.core.intents import (
    EmailBatch,
    EmailRecipient,
    EmailSendIntent,
    GroupCreateIntent,
    MemberMoveIntent,
)
from stagesync.core.staging import StagingStore
from stagesync.services.backend import RemoteCallError
from stagesync.services.backend.models import CreatedRow


class FakeBackend:
    """In-memory stand-in for BackendClient that records every call."""

    def __init__(self):
        self.calls = []
        self.failures = {}
        self.groups = []
        self.email_batches = []
        self._next_id = 100
        self._names = 0
        self._lock = threading.Lock()

    def fail(self, operation, key, message="boom", code="P0001"):
        self.failures[(operation, key)] = RemoteCallError(message, code=code)

    def _record(self, operation, key, **kwargs):
        with self._lock:
            self.calls.append((operation, kwargs))
        error = self.failures.get((operation, key))
        if error is not None:
            raise error

    def _new_id(self):
        with self._lock:
            self._next_id += 1
            return self._next_id

    def calls_to(self, operation):
        return [kwargs for op, kwargs in self.calls if op == operation]

    def create_group(self, name, class_id, assignment_id):
        self._record("create_group", name, name=name, class_id=class_id, assignment_id=assignment_id)
        return CreatedRow(id=self._new_id())

    def move_member(self, new_group_id, old_group_id, subject_id, class_id):
        self._record(
            "move_member",
            subject_id,
            new_group_id=new_group_id,
            old_group_id=old_group_id,
            subject_id=subject_id,
            class_id=class_id,
        )

    def create_email_batch(self, subject, body, cc_emails, reply_to, class_id):
        self._record(
            "create_email_batch",
            subject,
            subject=subject,
            body=body,
            cc_emails=cc_emails,
            reply_to=reply_to,
            class_id=class_id,
        )
        return CreatedRow(id=self._new_id())

    def insert_email(self, batch_id, user_id, subject, body, cc_emails, reply_to, class_id):
        self._record(
            "insert_email",
            user_id,
            batch_id=batch_id,
            user_id=user_id,
            subject=subject,
            body=body,
            cc_emails=cc_emails,
            reply_to=reply_to,
            class_id=class_id,
        )

    def generate_anon_name(self):
        self._names += 1
        return f"anon-{self._names}"

    def list_groups(self, assignment_id):
        self._record("list_groups", assignment_id, assignment_id=assignment_id)
        return self.groups

    def list_email_batches(self, class_id):
        self._record("list_email_batches", class_id, class_id=class_id)
        return self.email_batches


class FakeRedis:
    """Just enough of redis.Redis for the read-view cache."""

    def __init__(self):
        self.data = {}
        self.deleted = []

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self.data[key] = value.encode() if isinstance(value, str) else value

    def delete(self, *keys):
        self.deleted.extend(keys)
        for key in keys:
            self.data.pop(key, None)


@pytest.fixture
def store():
    return StagingStore()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def sample_group():
    return GroupCreateIntent(name="team-red", member_ids=frozenset({"s1", "s2"}))


@pytest.fixture
def sample_move():
    return MemberMoveIntent(subject_id="s3", from_group_id=7, to_group_id=8)


@pytest.fixture
def sample_batch():
    return EmailBatch(subject="Reminder", body="Project 1 is due Friday", reply_to="staff@example.edu")


@pytest.fixture
def make_email(sample_batch):
    def _make(subject_id, batch=None):
        batch = batch or sample_batch
        return EmailSendIntent(
            recipient=EmailRecipient(address=f"{subject_id}@example.edu", subject_id=subject_id),
            subject=batch.subject,
            body=batch.body,
            batch=batch,
            reply_to=batch.reply_to,
        )
    return _make


@pytest.fixture
def config_file(tmp_path):
    config = {
        "courses": [
            {
                "id": "cs2100_fa26",
                "name": "CS2100",
                "class_id": 42,
                "reply_to": "staff@example.edu",
                "assignments": [
                    {
                        "id": 301,
                        "title": "Project 1",
                        "slug": "project-1",
                        "min_group_size": 2,
                        "max_group_size": 3,
                        "due_date": "2026-10-02",
                    },
                ],
            }
        ],
        "global_settings": {
            "publish_max_workers": 4,
            "cache_ttl_seconds": 60,
            "app_url": "https://course.example.edu/",
        },
    }
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config))
    return path
