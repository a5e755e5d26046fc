from typing import Any, Optional

from fastapi import status


class DomainError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "DOMAIN_ERROR"

    def __init__(self, detail: str, *, field: Optional[str] = None, audit: Any = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.field = field
        # Unsaved AuditLog to persist after the failed unit of work is rolled back.
        self.audit = audit

    def to_dict(self) -> dict:
        payload = {"code": self.code, "detail": self.detail}
        if self.field:
            payload["field"] = self.field
        return payload


class InvalidTransition(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_TRANSITION"


class AlreadyResponded(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "ALREADY_RESPONDED"


class ValidationError(DomainError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "VALIDATION_ERROR"


class IntegrityFailure(DomainError):
    """Hash computation or receipt rendering failed; the decision may be retried."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "INTEGRITY_FAILURE"


class NotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class Forbidden(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class Conflict(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"
