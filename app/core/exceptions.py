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

class NotFoundError(AppException):
    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            message=f"{entity} {entity_id} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details={"entity": entity, "id": entity_id}
        )

class AIError(AppException):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=503,
            error_code="AI_SERVICE_UNAVAILABLE",
            details=details
        )

class ProviderError(AIError):
    """Failure talking to an external AI provider (embedding, index, model, classifier)."""
    def __init__(self, provider: str, message: str, transient: bool = True):
        self.provider = provider
        self.transient = transient
        super().__init__(
            message=f"{provider}: {message}",
            details={"provider": provider, "transient": transient}
        )

class AIKillSwitchError(AppException):
    def __init__(self):
        super().__init__(
            message="AI services are currently offline for maintenance.",
            status_code=503,
            error_code="AI_KILL_SWITCH_ACTIVE"
        )

class InsufficientScopeError(AppException):
    """Actor may not read the employee's performance records."""
    def __init__(self, actor_id: Optional[int], employee_id: int):
        super().__init__(
            message=f"Actor {actor_id} cannot read records of employee {employee_id}",
            status_code=403,
            error_code="INSUFFICIENT_SCOPE",
            details={"actor_id": actor_id, "employee_id": employee_id}
        )

class GenerationParseError(AppException):
    """Model output could not be parsed into review fields after the schema retry."""
    def __init__(self, message: str = "AI output could not be parsed; please write the review manually.", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=422,
            error_code="GENERATION_PARSE_FAILED",
            details=details
        )

class GenerationTimeoutError(AppException):
    def __init__(self, deadline_seconds: float):
        super().__init__(
            message=f"Review generation exceeded its {deadline_seconds:g}s deadline.",
            status_code=504,
            error_code="GENERATION_TIMEOUT",
            details={"deadline_seconds": deadline_seconds}
        )

class EditConflictError(AppException):
    """Concurrent modification or an edit against a locked review."""
    def __init__(self, review_id: int, message: str = "Review was modified concurrently; reload and retry.", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=409,
            error_code="EDIT_CONFLICT",
            details={"review_id": review_id, **(details or {})}
        )

class InvalidTransitionError(AppException):
    def __init__(self, current: str, target: str):
        super().__init__(
            message=f"Cannot move review from '{current}' to '{target}'",
            status_code=409,
            error_code="INVALID_STATUS_TRANSITION",
            details={"current": current, "target": target}
        )

class SentimentBatchError(AppException):
    """Too many items in a sentiment batch failed to analyze."""
    def __init__(self, failed: int, total: int, threshold: float):
        super().__init__(
            message=f"Sentiment batch failed for {failed} of {total} feedback items",
            status_code=502,
            error_code="SENTIMENT_BATCH_FAILED",
            details={"failed": failed, "total": total, "threshold": threshold}
        )
