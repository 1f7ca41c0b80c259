"""
Typed errors raised by the liquidation core.

Every error carries a machine-readable ``code``, the HTTP status the adapter
should answer with, and a ``context`` dict (liquidation id, attempted
operation, current status, ...) so callers can render a precise message
without parsing strings.

    LiquidationError
    +-- NotFoundError        404  referenced entity does not exist
    +-- ValidationError      422  missing/blank input, empty report submission
    +-- UnauthorizedError    403  actor lacks the capability
    +-- InvalidStateError    409  operation not legal from the current status
    +-- ConflictError        409  control-number collision
"""

from typing import Any, Optional


class LiquidationError(Exception):
    code: str = "LIQUIDATION_ERROR"
    status_code: int = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": {k: str(v) for k, v in self.context.items()},
            }
        }


class NotFoundError(LiquidationError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, identifier: Any, **context: Any):
        super().__init__(
            f"{entity} not found: {identifier}",
            entity=entity,
            identifier=identifier,
            **context,
        )


class ValidationError(LiquidationError):
    code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(self, message: str, field: Optional[str] = None, **context: Any):
        super().__init__(message, field=field, **context)


class UnauthorizedError(LiquidationError):
    code = "UNAUTHORIZED_ACTION"
    status_code = 403


class InvalidStateError(LiquidationError):
    code = "INVALID_STATE"
    status_code = 409

    def __init__(
        self,
        liquidation_id: Any,
        operation: str,
        current_status: Any,
        message: Optional[str] = None,
    ):
        status_value = getattr(current_status, "value", current_status)
        super().__init__(
            message
            or f"Cannot {operation.replace('_', ' ')} a liquidation in status '{status_value}'",
            liquidation_id=liquidation_id,
            operation=operation,
            current_status=status_value,
        )
        self.liquidation_id = liquidation_id
        self.operation = operation
        self.current_status = current_status


class ConflictError(LiquidationError):
    code = "CONFLICT"
    status_code = 409
