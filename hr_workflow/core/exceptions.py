from typing import Any, Dict, Optional

class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)

class InvalidTransition(AppException):
    def __init__(self, from_status: Optional[str], to_status: str, reason: Optional[str] = None):
        message = f"Illegal status change {from_status} -> {to_status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message=message,
            status_code=409,
            error_code="INVALID_TRANSITION",
            details={"from_status": from_status, "to_status": to_status}
        )

class DuplicatePendingRequest(AppException):
    def __init__(self, subject_type: str, subject_id: int, request_id: Optional[int] = None):
        super().__init__(
            message=f"A pending approval request already exists for {subject_type} {subject_id}",
            status_code=409,
            error_code="DUPLICATE_PENDING_REQUEST",
            details={"subject_type": subject_type, "subject_id": subject_id, "request_id": request_id}
        )

class NotFound(AppException):
    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            message=f"{entity} {entity_id} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details={"entity": entity, "id": entity_id}
        )

class AlreadyDecided(AppException):
    def __init__(self, request_id: int, status: Optional[str] = None):
        super().__init__(
            message=f"Approval request {request_id} has already been decided",
            status_code=409,
            error_code="ALREADY_DECIDED",
            details={"request_id": request_id, "status": status}
        )

class ScoreOutOfRange(AppException):
    def __init__(self, criterion_code: str, score: float, max_score: int):
        super().__init__(
            message=f"Score {score} for criterion {criterion_code} must be between 0 and {max_score}",
            status_code=422,
            error_code="SCORE_OUT_OF_RANGE",
            details={"criterion": criterion_code, "score": score, "max_score": max_score}
        )

class IncompleteScoring(AppException):
    def __init__(self, missing_codes):
        super().__init__(
            message=f"Required criteria missing from scores: {', '.join(missing_codes)}",
            status_code=422,
            error_code="INCOMPLETE_SCORING",
            details={"missing": list(missing_codes)}
        )

class ValidationError(AppException):
    """Malformed input rejected by a service. Not to be confused with pydantic's ValidationError."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details=details
        )

class AuthenticationError(AppException):
    def __init__(self, message: str = "Could not identify the acting employee"):
        super().__init__(
            message=message,
            status_code=401,
            error_code="AUTH_FAILED"
        )

class AccessDeniedError(AppException):
    """Custom permission error. Named AccessDeniedError to avoid shadowing Python's built-in PermissionError."""
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(
            message=message,
            status_code=403,
            error_code="PERMISSION_DENIED"
        )
