from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable, Dict, Optional

from config.settings import Settings, get_settings
from pipelines.errors import (
    ErrorKind,
    ExternalCallError,
    PermanentExternalError,
    RETRYABLE_KINDS,
    TransientExternalError,
)
from ports.repos import AccountStorePort
from services.rate_limiter import AccountRateLimiter
from utils.llm_logger import log_call


logger = logging.getLogger(__name__)

Operation = Callable[[str, Dict[str, Any]], Dict[str, Any]]


class RateLimitedCallExecutor:
    """Issue profile API calls on a credential: spacing, quota, claim, retry with backoff."""

    def __init__(
        self,
        accounts: AccountStorePort,
        operations: Dict[str, Operation],
        limiter: Optional[AccountRateLimiter] = None,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self.accounts = accounts
        self.operations = dict(operations)
        self.limiter = limiter or AccountRateLimiter(
            self.settings.call_spacing_min_seconds,
            self.settings.call_spacing_max_seconds,
        )
        self._sleep = sleep

    def backoff_seconds(self, attempt: int) -> float:
        return min(self.settings.call_backoff_base_seconds * (2 ** attempt), self.settings.call_backoff_cap_seconds)

    def pick_account(self) -> str:
        """Longest-idle active credential that still has quota today."""
        candidates = [a.account_id for a in self.accounts.list_active() if self.accounts.has_quota(a.account_id)]
        chosen = self.limiter.pick_account(candidates)
        if chosen is None:
            raise TransientExternalError(ErrorKind.NO_CREDENTIAL, "No active credential with quota left")
        return chosen

    def execute(
        self,
        account_id: str,
        operation_kind: str,
        payload: Dict[str, Any],
        priority: bool = False,
        record_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        operation = self.operations.get(operation_kind)
        if operation is None:
            raise PermanentExternalError(ErrorKind.INVALID_REQUEST, f"Unknown operation: {operation_kind}")
        acct = self.accounts.get(account_id)
        if acct is None or not acct.is_active:
            raise TransientExternalError(ErrorKind.NO_CREDENTIAL, f"Credential {account_id} unavailable")
        if not self.accounts.has_quota(account_id):
            raise TransientExternalError(ErrorKind.QUOTA_EXHAUSTED, f"Daily quota reached for {account_id}")

        max_attempts = max(1, self.settings.call_max_attempts)
        for attempt in range(max_attempts):
            with self.limiter.slot(account_id, priority=priority):
                operation_id = uuid.uuid4().hex
                if not self.accounts.claim_operation(account_id, operation_id):
                    raise TransientExternalError(ErrorKind.CREDENTIAL_BUSY, f"Credential {account_id} is busy")
                t0 = time.time()
                try:
                    if not self.accounts.reserve_call(account_id):
                        raise TransientExternalError(ErrorKind.QUOTA_EXHAUSTED, f"Daily quota reached for {account_id}")
                    try:
                        result = operation(account_id, payload)
                    except ExternalCallError as exc:
                        err = exc
                    else:
                        self.limiter.record_success(account_id)
                        self._trace(operation_kind, account_id, record_id, attempt, t0, "ok")
                        return result
                finally:
                    self.accounts.release_operation(account_id, operation_id)

            self._trace(operation_kind, account_id, record_id, attempt, t0, "error", err)
            self.accounts.mark_last_error(account_id, err.kind.value)
            if err.kind not in RETRYABLE_KINDS:
                raise err
            if attempt + 1 >= max_attempts:
                logger.warning(
                    "Call attempts exhausted",
                    extra={"step": operation_kind, "account": account_id, "record_id": record_id, "error": err.kind.value},
                )
                raise err
            delay = self.backoff_seconds(attempt)
            logger.info(
                "Retrying external call",
                extra={"step": operation_kind, "account": account_id, "record_id": record_id, "error": err.kind.value, "duration_ms": int(delay * 1000)},
            )
            self._sleep(delay)
        raise AssertionError("unreachable")

    def _trace(
        self,
        operation_kind: str,
        account_id: str,
        record_id: Optional[int],
        attempt: int,
        t0: float,
        status: str,
        err: Optional[ExternalCallError] = None,
    ) -> None:
        log_call(
            caller="call_executor.execute",
            provider="profile_api",
            operation=operation_kind,
            account_id=account_id,
            record_id=record_id,
            attempt=attempt + 1,
            duration_ms=int((time.time() - t0) * 1000),
            status=status,
            error=str(err) if err else None,
            error_kind=err.kind.value if err else None,
        )
