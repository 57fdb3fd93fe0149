from __future__ import annotations


class CRMError(Exception):
    """Base class for lead board errors that are reported back to the user."""

    status_code = 400
    code = "crm_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class StoreError(CRMError):
    """Transient failure talking to the lead or preference store."""

    status_code = 503
    code = "store_unavailable"


class LeadNotFoundError(CRMError):
    status_code = 404
    code = "not_found"


class AccessDeniedError(CRMError):
    status_code = 403
    code = "forbidden"


class TransitionRejectedError(CRMError):
    """A stage change was blocked by a precondition; nothing was written."""

    status_code = 422
    code = "transition_rejected"


class RestoreExpiredError(CRMError):
    status_code = 410
    code = "restore_expired"


class OrderIdExhaustedError(CRMError):
    status_code = 409
    code = "order_id_exhausted"


class UnknownColumnError(CRMError):
    status_code = 404
    code = "unknown_column"


class OrderIdConflictError(CRMError):
    status_code = 409
    code = "order_id_conflict"
