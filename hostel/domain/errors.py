"""Error taxonomy shared by the store, gateway and workflow layers."""

from __future__ import annotations

from typing import Any


class WorkflowError(Exception):
    """Base failure carrying a machine-readable kind and a human message."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        # Fresh state re-read by the workflow after the failure, if any.
        self.snapshot: Any = None

    def to_detail(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class NotFoundError(WorkflowError):
    """Referenced entity is absent."""

    kind = "not_found"


class ConflictError(WorkflowError):
    """Precondition or optimistic-concurrency guard failed."""

    kind = "conflict"


class InputValidationError(WorkflowError):
    """Malformed caller input."""

    kind = "validation"


class GatewayError(WorkflowError):
    """Payment gateway rejected or errored a request."""

    kind = "gateway"


class StoreWriteError(WorkflowError):
    """Persistence layer rejected a write."""

    kind = "write"


class PaymentTimeoutError(WorkflowError):
    """Payment confirmation was not observed within the polling window."""

    kind = "timeout"
