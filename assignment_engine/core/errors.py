"""Domain exceptions raised by the assignment engine.

Every exception carries a stable ``code`` and the HTTP status the API layer
renders it with. Services raise these; routers never translate them by hand,
the handler registered in ``assignment_engine.main`` does.
"""

from typing import Any


class AssignmentEngineError(Exception):
    code = "ASSIGNMENT_ENGINE_ERROR"
    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message, "details": self.details}}


class NotFoundError(AssignmentEngineError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, resource_id: Any) -> None:
        super().__init__(f"{resource} {resource_id} not found", {"resource": resource, "id": str(resource_id)})
        self.code = f"{resource.upper().replace(' ', '_')}_NOT_FOUND"


class ValidationFailedError(AssignmentEngineError):
    code = "VALIDATION_FAILED"
    status_code = 422


class OverlappingAssignmentError(AssignmentEngineError):
    """An active assignment already covers the requested window for the case role."""

    code = "OVERLAPPING_ASSIGNMENT"
    status_code = 409


class InvalidStateTransitionError(AssignmentEngineError):
    code = "INVALID_STATE_TRANSITION"
    status_code = 409


class DuplicateTransferRequestError(AssignmentEngineError):
    code = "DUPLICATE_TRANSFER_REQUEST"
    status_code = 409


class RuleEvaluationError(AssignmentEngineError):
    """Malformed rule conditions or actions. The rule engine skips the rule."""

    code = "RULE_EVALUATION_ERROR"
    status_code = 422


class TransientStoreError(AssignmentEngineError):
    """Connection loss or timeout talking to the database. Safe to retry the whole transaction."""

    code = "STORE_UNAVAILABLE"
    status_code = 503
