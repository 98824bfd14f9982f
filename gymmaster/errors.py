"""
Domain errors raised by the service layer.

Every error carries an error_code, a user-displayable message and the HTTP
status it is rendered with by the application exception handler.
"""
from fastapi import status


class GymError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "BAD_REQUEST"
    message = "Request could not be processed"

    def __init__(self, message: str = None, error_code: str = None):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        super().__init__(self.message)

    def to_detail(self) -> dict:
        return {"error_code": self.error_code, "message": self.message}


# ============== Check-in ==============

class InvalidToken(GymError):
    error_code = "INVALID_QR_TOKEN"
    message = "Invalid QR code"


class InactiveAccount(GymError):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "INACTIVE_ACCOUNT"
    message = "User account is inactive"


class TokenExpired(GymError):
    error_code = "QR_TOKEN_EXPIRED"
    message = "QR code has expired, please generate a new one"


class NoActiveMembership(GymError):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "NO_ACTIVE_MEMBERSHIP"
    message = "Member does not have an active membership"


class VisitAlreadyOpen(GymError):
    error_code = "VISIT_ALREADY_OPEN"
    message = "Member already has an active check-in. Check out first."


class BranchUnavailable(GymError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "BRANCH_UNAVAILABLE"
    message = "Branch not found or inactive"


class AlreadyClosed(GymError):
    error_code = "ALREADY_CHECKED_OUT"
    message = "This visit has already been checked out"


# ============== Generic ==============

class NotFound(GymError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"
    message = "Resource not found"

    def __init__(self, entity: str = None, message: str = None, error_code: str = None):
        if entity and not error_code:
            error_code = f"{entity.upper()}_NOT_FOUND"
        if entity and not message:
            message = f"{entity.replace('_', ' ').capitalize()} not found"
        super().__init__(message, error_code)


class ValidationFailed(GymError):
    error_code = "VALIDATION_FAILED"
    message = "Invalid request"


class Conflict(GymError):
    status_code = status.HTTP_409_CONFLICT
    error_code = "CONFLICT"
    message = "Resource already exists"


class AuthenticationFailed(GymError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "UNAUTHORIZED"
    message = "Authentication required"


class PermissionDenied(GymError):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "PERMISSION_DENIED"
    message = "You do not have access to this operation"
