"""
Error kinds surfaced by the object store.

Every failure leaving the store layer is a StoreError tagged with one of a
small closed set of kinds. Callers branch on the kind, never on messages.
"""
import json
from enum import Enum
from typing import Optional

from kubernetes.client import ApiException


class ErrorKind(str, Enum):
    NOT_FOUND = "NotFound"
    ALREADY_EXISTS = "AlreadyExists"
    CONFLICT = "Conflict"
    TRANSIENT = "Transient"
    MALFORMED = "Malformed"


class StoreError(Exception):
    def __init__(self, kind: ErrorKind, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status = status

    def __str__(self):
        base = super().__str__()
        if self.status:
            return f"{self.kind.value} ({self.status}): {base}"
        return f"{self.kind.value}: {base}"

    @property
    def is_not_found(self) -> bool:
        return self.kind == ErrorKind.NOT_FOUND

    @property
    def is_already_exists(self) -> bool:
        return self.kind == ErrorKind.ALREADY_EXISTS

    @classmethod
    def from_api_exception(cls, e: ApiException, creating: bool = False) -> "StoreError":
        """
        Translate a kubernetes ApiException.

        A 409 is AlreadyExists when the API says so or when the call was a
        create; on update it is an optimistic-concurrency Conflict. Any other
        non-404 status is treated as transient and left to the caller's retry.
        """
        message = _reason_message(e)
        if e.status == 404:
            return cls(ErrorKind.NOT_FOUND, message, e.status)
        if e.status == 409:
            if creating or _status_reason(e) == "AlreadyExists":
                return cls(ErrorKind.ALREADY_EXISTS, message, e.status)
            return cls(ErrorKind.CONFLICT, message, e.status)
        return cls(ErrorKind.TRANSIENT, message, e.status)


def _status_body(e: ApiException) -> dict:
    if not e.body:
        return {}
    try:
        body = json.loads(e.body)
    except (TypeError, ValueError):
        return {}
    return body if isinstance(body, dict) else {}


def _status_reason(e: ApiException) -> str:
    return _status_body(e).get("reason", "")


def _reason_message(e: ApiException) -> str:
    return _status_body(e).get("message") or e.reason or "kubernetes API error"
