"""
Course Backend Client

Client for the hosted course backend (PostgREST tables plus edge functions)
with typed requests, error normalization and optional retry on transient
failures.
"""
import logging
from typing import Any, Dict, List, Optional, Type

import backoff
import requests
from pydantic import BaseModel, ValidationError
from requests.exceptions import RequestException, Timeout

from .models import (
    CreatedRow,
    CreateEmailBatchRequest,
    CreateGroupRequest,
    InsertEmailRequest,
    MoveMemberRequest,
)

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30
TRANSIENT_STATUS_CODES = {429, 502, 503, 504}

MOVE_MEMBER_FUNCTION = "assignment-group-instructor-move-student"


class RemoteCallError(Exception):
    """A backend call failed, either in transport or with an application error payload."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[str] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details
        self.status = status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "status": self.status,
        }

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class TransientBackendError(RemoteCallError):
    """Network failure or an overloaded backend; safe to retry."""


class InvalidRequestError(RemoteCallError):
    """A request payload failed validation and was never sent."""


class BackendClient:
    """
    Client for the course backend.

    Features:
    - Typed, validated request payloads per operation
    - PostgREST and edge-function error payloads normalized to RemoteCallError
    - Exponential backoff on transient failures (off by default: max_tries=1)
    - Per-request timeout
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        max_tries: int = 1,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize backend client.

        Args:
            base_url: Project URL, e.g. https://xyz.supabase.co
            api_key: Service key sent as apikey and bearer token
            max_tries: Attempts per call for transient failures (1 = no retry)
            request_timeout: Seconds before an HTTP request is abandoned
            session: Optional pre-configured requests session
        """
        self.base_url = base_url.rstrip("/")
        self.max_tries = max(1, max_tries)
        self.request_timeout = request_timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        })

    # ========================================================================
    # TRANSPORT
    # ========================================================================

    def _call_api(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Call the backend, retrying transient failures up to `max_tries` times.

        Returns:
            Parsed JSON body, or None for an empty body

        Raises:
            TransientBackendError: After the last failed attempt on a transient failure
            RemoteCallError: On any other error status or error payload
        """
        retrying = backoff.on_exception(
            backoff.expo,
            TransientBackendError,
            max_tries=self.max_tries,
            logger=logger,
        )(self._send)
        return retrying(method, path, json=json, params=params, headers=headers)

    def _send(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        url = self.base_url + path
        logger.info(f"Calling backend: {method} {url}")

        try:
            response = self.session.request(
                method,
                url,
                json=json,
                params=params,
                headers=headers,
                timeout=self.request_timeout,
            )
        except Timeout as e:
            logger.warning(f"Request timed out after {self.request_timeout}s: {url}")
            raise TransientBackendError(
                f"Request timed out after {self.request_timeout}s", code="timeout"
            ) from e
        except RequestException as e:
            logger.warning(f"Network error calling {url}: {e}")
            raise TransientBackendError(f"Network error: {e}", code="network_error") from e

        if response.status_code in TRANSIENT_STATUS_CODES:
            logger.warning(f"Backend returned {response.status_code} for {url}")
            raise TransientBackendError(
                f"Backend unavailable (HTTP {response.status_code})",
                code=str(response.status_code),
                status=response.status_code,
            )

        body = self._parse_body(response)

        if not response.ok:
            logger.error(f"API error: {response.status_code} at {url}")
            raise self._error_from_body(body, response.status_code)

        # Edge functions report failures inside a 200 response
        if isinstance(body, dict) and body.get("error"):
            logger.error(f"Application error from {url}: {body['error']}")
            raise self._error_from_body(body["error"], response.status_code)

        return body

    @staticmethod
    def _parse_body(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return {"message": response.text}

    @staticmethod
    def _error_from_body(body: Any, status: int) -> RemoteCallError:
        if isinstance(body, dict):
            return RemoteCallError(
                message=body.get("message") or f"Backend returned HTTP {status}",
                code=body.get("code"),
                details=body.get("details") or body.get("hint"),
                status=status,
            )
        if isinstance(body, str) and body:
            return RemoteCallError(message=body, status=status)
        return RemoteCallError(message=f"Backend returned HTTP {status}", status=status)

    @staticmethod
    def _build(model: Type[BaseModel], **fields) -> BaseModel:
        try:
            return model(**fields)
        except ValidationError as e:
            raise InvalidRequestError(
                f"Invalid {model.__name__}",
                code="invalid_request",
                details=str(e),
            ) from e

    def _insert_returning_id(self, table: str, payload: Dict[str, Any]) -> CreatedRow:
        rows = self._call_api(
            "POST",
            f"/rest/v1/{table}",
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        row = rows[0] if isinstance(rows, list) and rows else rows
        if not isinstance(row, dict) or "id" not in row:
            raise RemoteCallError(f"Insert into {table} returned no id", code="missing_id")
        return CreatedRow(id=row["id"])

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    def create_group(self, name: str, class_id: int, assignment_id: int) -> CreatedRow:
        """Insert an assignment group and return its id."""
        request = self._build(CreateGroupRequest, name=name, class_id=class_id, assignment_id=assignment_id)
        created = self._insert_returning_id("assignment_groups", request.to_payload())
        logger.info(f"Created group {name} (ID: {created.id})")
        return created

    def move_member(
        self,
        new_group_id: Optional[int],
        old_group_id: Optional[int],
        subject_id: str,
        class_id: int,
    ) -> None:
        """Move a student between groups through the instructor move edge function."""
        request = self._build(
            MoveMemberRequest,
            new_group_id=new_group_id,
            old_group_id=old_group_id,
            subject_id=subject_id,
            class_id=class_id,
        )
        self._call_api("POST", f"/functions/v1/{MOVE_MEMBER_FUNCTION}", json=request.to_payload())
        logger.info(f"Moved {subject_id} from group {old_group_id} to group {new_group_id}")

    def create_email_batch(
        self,
        subject: str,
        body: str,
        cc_emails: List[str],
        reply_to: Optional[str],
        class_id: int,
    ) -> CreatedRow:
        request = self._build(
            CreateEmailBatchRequest,
            subject=subject,
            body=body,
            cc_emails=cc_emails,
            reply_to=reply_to,
            class_id=class_id,
        )
        created = self._insert_returning_id("email_batches", request.to_payload())
        logger.info(f"Created email batch {created.id}")
        return created

    def insert_email(
        self,
        batch_id: int,
        user_id: str,
        subject: str,
        body: str,
        cc_emails: List[str],
        reply_to: Optional[str],
        class_id: int,
    ) -> None:
        request = self._build(
            InsertEmailRequest,
            batch_id=batch_id,
            user_id=user_id,
            subject=subject,
            body=body,
            cc_emails=cc_emails,
            reply_to=reply_to,
            class_id=class_id,
        )
        self._call_api(
            "POST",
            "/rest/v1/emails",
            json=request.to_payload(),
            headers={"Prefer": "return=minimal"},
        )

    # ========================================================================
    # READS
    # ========================================================================

    def generate_anon_name(self) -> Optional[str]:
        """Ask the backend for a random group name. May return None."""
        return self._call_api("POST", "/rest/v1/rpc/generate_anon_name", json={})

    def list_groups(self, assignment_id: int) -> List[Dict[str, Any]]:
        """Get every group of an assignment with its members."""
        data = self._call_api(
            "GET",
            "/rest/v1/assignment_groups",
            params={
                "assignment_id": f"eq.{assignment_id}",
                "select": "*,assignment_groups_members(*)",
            },
        )
        logger.info(f"Retrieved {len(data or [])} groups for assignment {assignment_id}")
        return data or []

    def list_email_batches(self, class_id: int) -> List[Dict[str, Any]]:
        """Get sent email batches for a class, newest first."""
        data = self._call_api(
            "GET",
            "/rest/v1/email_batches",
            params={
                "class_id": f"eq.{class_id}",
                "order": "created_at.desc",
            },
        )
        logger.info(f"Retrieved {len(data or [])} email batches for class {class_id}")
        return data or []

    def close(self):
        """Close the HTTP session."""
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
