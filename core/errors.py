from typing import Any, Optional


class MarketplaceError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}


class ValidationError(MarketplaceError):
    status_code = 400
    code = "VALIDATION_ERROR"


class MalformedLinkError(ValidationError):
    code = "MALFORMED_LINK"


class NotFoundError(MarketplaceError):
    status_code = 404
    code = "NOT_FOUND"


class Unauthorized(MarketplaceError):
    status_code = 401
    code = "UNAUTHORIZED"


class Forbidden(MarketplaceError):
    status_code = 403
    code = "FORBIDDEN"


class InvalidStateError(MarketplaceError):
    status_code = 400
    code = "INVALID_STATE"


class MissingProofError(InvalidStateError):
    code = "MISSING_PROOF"


class AlreadyVerified(InvalidStateError):
    code = "ALREADY_VERIFIED"


class InvariantViolation(MarketplaceError):
    status_code = 409
    code = "INVARIANT_VIOLATION"


class Conflict(MarketplaceError):
    status_code = 409
    code = "CONFLICT"


class InsufficientFunds(MarketplaceError):
    status_code = 400
    code = "INSUFFICIENT_FUNDS"


class InternalError(MarketplaceError):
    pass
