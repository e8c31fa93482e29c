"""
Business exception taxonomy shared by services and the API layer
"""

from typing import Any, Dict, Optional


class BusinessException(Exception):
    """Base class for expected, typed failures"""

    code = "business_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class EligibilityBlocked(BusinessException):
    """The user may not enroll in the course right now"""

    code = "eligibility_blocked"
    status_code = 409

    def __init__(self, reason: str, message: Optional[str] = None):
        super().__init__(message or reason, {"reason": reason})
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["reason"] = self.reason
        return payload


class CheckoutValidationError(BusinessException):
    """Malformed or inconsistent checkout input"""

    code = "validation_error"
    status_code = 422


class NotFoundError(BusinessException):
    code = "not_found"
    status_code = 404


class PermissionDenied(BusinessException):
    code = "permission_denied"
    status_code = 403


class ExternalProviderError(BusinessException):
    """Payment provider or other HTTP collaborator failed"""

    code = "external_provider_error"
    status_code = 502
    retryable = True


class SignatureInvalid(BusinessException):
    """Webhook signature did not verify"""

    code = "signature_invalid"
    status_code = 401


class StateConflict(BusinessException):
    """Requested transition is not in the allowed table"""

    code = "state_conflict"
    status_code = 409


class PersistenceError(BusinessException):
    code = "persistence_error"
    status_code = 500
    retryable = True


class MalformedPayload(BusinessException):
    """Inbound payload could not be parsed"""

    code = "malformed_payload"
    status_code = 400
