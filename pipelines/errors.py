from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    # Retryable
    RATE_LIMITED = "rate_limited"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    TIMEOUT = "timeout"
    NETWORK = "network"
    CREDENTIAL_BUSY = "credential_busy"
    QUOTA_EXHAUSTED = "quota_exhausted"
    NO_CREDENTIAL = "no_credential"
    # Permanent
    AUTH_ERROR = "auth_error"
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset({
    ErrorKind.RATE_LIMITED,
    ErrorKind.PROVIDER_UNAVAILABLE,
    ErrorKind.TIMEOUT,
    ErrorKind.NETWORK,
})

# Not retried inside the call executor, but the stage is rescheduled
TRANSIENT_KINDS = RETRYABLE_KINDS | frozenset({
    ErrorKind.CREDENTIAL_BUSY,
    ErrorKind.QUOTA_EXHAUSTED,
    ErrorKind.NO_CREDENTIAL,
})


class PipelineError(Exception):
    """Base for every error the pipeline raises on purpose."""


class ValidationError(PipelineError):
    """Raw record is missing a required identifier; it is dropped, never queued."""


class ClassificationParseError(PipelineError):
    """Classifier replied with something that is not the expected JSON object."""

    def __init__(self, message: str, raw: Optional[str] = None) -> None:
        super().__init__(message)
        self.raw = raw


class ExternalCallError(PipelineError):
    retryable = False

    def __init__(self, kind: ErrorKind, message: str = "", status_code: Optional[int] = None) -> None:
        super().__init__(message or kind.value)
        self.kind = kind
        self.status_code = status_code


class TransientExternalError(ExternalCallError):
    """Timeout, 5xx, rate-limit signal or a busy/exhausted credential."""

    retryable = True


class PermanentExternalError(ExternalCallError):
    """Auth failure, malformed request or not-found. Never retried."""


class DuplicateSubjectError(PipelineError):
    """A Lead already exists for the subject key. Routes the record to `duplicate`."""

    def __init__(self, subject_key: str, lead_id: int, first_record_id: Optional[int]) -> None:
        super().__init__(f"Lead {lead_id} already exists for subject {subject_key}")
        self.subject_key = subject_key
        self.lead_id = lead_id
        self.first_record_id = first_record_id


class StaleClaimError(PipelineError):
    """A record claimed `processing` that never completed within the timeout."""

    def __init__(self, record_id: int, stage: Optional[str]) -> None:
        super().__init__(f"Record {record_id} stuck in processing for stage {stage}")
        self.record_id = record_id
        self.stage = stage


class InvalidTransitionError(PipelineError):
    def __init__(self, from_status: str, to_status: str, record_id: Optional[int] = None) -> None:
        where = f" for record {record_id}" if record_id is not None else ""
        super().__init__(f"Illegal transition {from_status} -> {to_status}{where}")
        self.from_status = from_status
        self.to_status = to_status
        self.record_id = record_id


def classify_http_status(status_code: int, body: str = "") -> ErrorKind:
    """Map a provider HTTP status (and body hints) to an ErrorKind."""
    text = (body or "").lower()
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code >= 500 or "provider_error" in text or "operational problems" in text:
        return ErrorKind.PROVIDER_UNAVAILABLE
    if status_code in (401, 403):
        return ErrorKind.AUTH_ERROR
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if 400 <= status_code < 500:
        return ErrorKind.INVALID_REQUEST
    return ErrorKind.UNKNOWN


def error_for_kind(kind: ErrorKind, message: str = "", status_code: Optional[int] = None) -> ExternalCallError:
    if kind in TRANSIENT_KINDS:
        return TransientExternalError(kind, message, status_code)
    return PermanentExternalError(kind, message, status_code)
