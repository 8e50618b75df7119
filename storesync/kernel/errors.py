from __future__ import annotations

import re
from typing import Any


_ERROR_CODE_RE = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)*$")


class StoreSyncError(Exception):
    """Base typed error for storesync.

    - Stable `code` for programmatic handling (queue retry policy, API surfaces).
    - Human-readable `message` for logs and the ledger's error_message.
    - Optional `meta` payload for debugging (safe-to-expose only).
    """

    def __init__(
        self,
        *,
        code: str,
        message: str,
        status_code: int = 500,
        meta: dict[str, Any] | None = None,
    ) -> None:
        if not _ERROR_CODE_RE.fullmatch(code):
            raise ValueError(
                "Invalid storesync error code. Expected dot-separated lowercase tokens, "
                f"got: {code!r}"
            )
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = int(status_code)
        self.meta = dict(meta or {})

    def to_public_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "detail": self.message,
            "code": self.code,
        }
        if self.meta:
            payload["meta"] = self.meta
        return payload


class NonRetryableError(StoreSyncError):
    """Marks a failure the job queue must not retry."""


class NotFoundError(StoreSyncError):
    def __init__(self, *, message: str = "Not found", code: str = "resource.not_found", meta: dict[str, Any] | None = None):
        super().__init__(code=code, message=message, status_code=404, meta=meta)


class UnauthorizedError(StoreSyncError):
    def __init__(
        self,
        *,
        message: str = "Not authenticated",
        code: str = "auth.unauthorized",
        meta: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, status_code=401, meta=meta)


class ValidationError(StoreSyncError):
    def __init__(
        self,
        *,
        message: str = "Validation error",
        code: str = "request.validation_error",
        meta: dict[str, Any] | None = None,
        status_code: int = 422,
    ):
        super().__init__(code=code, message=message, status_code=status_code, meta=meta)


class UpstreamError(StoreSyncError):
    """Transient failure talking to the platform (network, 5xx, throttling)."""

    def __init__(
        self,
        *,
        message: str = "Upstream service error",
        code: str = "upstream.error",
        meta: dict[str, Any] | None = None,
        status_code: int = 502,
    ):
        super().__init__(code=code, message=message, status_code=status_code, meta=meta)


class BulkOperationConflictError(StoreSyncError):
    """Another bulk operation is already in flight for the account."""

    def __init__(
        self,
        *,
        operation_id: str,
        status: str,
        message: str | None = None,
    ):
        super().__init__(
            code="bulk.conflict",
            message=message or f"Bulk operation {operation_id} already {status.lower()}",
            status_code=409,
            meta={"operation_id": operation_id, "status": status},
        )
        self.operation_id = operation_id
        self.status = status


class BulkOperationFailedError(NonRetryableError):
    """A bulk operation reached a terminal non-success state."""

    def __init__(
        self,
        *,
        operation_id: str,
        status: str,
        error_code: str | None = None,
    ):
        super().__init__(
            code="bulk.failed",
            message=(
                f"Bulk operation {operation_id} ended with status {status}"
                + (f", error: {error_code}" if error_code else "")
            ),
            status_code=502,
            meta={"operation_id": operation_id, "status": status, "error_code": error_code},
        )
        self.operation_id = operation_id
        self.status = status
        self.error_code = error_code


class ConnectionNotFoundError(NonRetryableError):
    """The referenced platform connection no longer exists."""

    def __init__(self, *, connection_id: str):
        super().__init__(
            code="connection.not_found",
            message=f"Connection {connection_id} does not exist",
            status_code=404,
            meta={"connection_id": connection_id},
        )
        self.connection_id = connection_id


class ConnectionInactiveError(NonRetryableError):
    """The connection exists but cannot be synced (inactive or no credential)."""

    def __init__(self, *, connection_id: str, reason: str):
        super().__init__(
            code="connection.inactive",
            message=f"Connection {connection_id} cannot be synced: {reason}",
            status_code=409,
            meta={"connection_id": connection_id, "reason": reason},
        )
        self.connection_id = connection_id


class InvalidJobPayloadError(NonRetryableError):
    def __init__(self, *, job_type: str, message: str):
        super().__init__(
            code="job.invalid_payload",
            message=f"Invalid {job_type} payload: {message}",
            status_code=422,
            meta={"job_type": job_type},
        )


class UnknownJobTypeError(NonRetryableError):
    def __init__(self, *, job_type: str):
        super().__init__(
            code="job.unknown_type",
            message=f"Unknown job_type: {job_type}",
            status_code=422,
            meta={"job_type": job_type},
        )


class InvalidLedgerTransitionError(StoreSyncError):
    def __init__(self, *, job_id: str, current: str, requested: str):
        super().__init__(
            code="ledger.invalid_transition",
            message=f"ETL job {job_id} cannot move from {current} to {requested}",
            status_code=409,
            meta={"job_id": job_id, "current": current, "requested": requested},
        )


class RecordParseError(StoreSyncError):
    """A single bulk result line could not be parsed or transformed."""

    def __init__(self, *, message: str, line_number: int | None = None):
        super().__init__(
            code="bulk.record_parse_error",
            message=message,
            status_code=422,
            meta={"line_number": line_number} if line_number is not None else None,
        )
        self.line_number = line_number


def is_retryable(exc: BaseException) -> bool:
    """Whether the job queue should schedule another attempt after `exc`."""
    return not isinstance(exc, NonRetryableError)
