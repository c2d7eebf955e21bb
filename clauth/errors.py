from typing import Optional
from fastapi import HTTPException, status


class AppError(HTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(status_code=self.status_code, detail=detail or self.default_detail)

    def __str__(self):
        return self.detail


class Unauthorized(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Unauthorized"


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Forbidden"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid request"


class Conflict(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflict"


class DuplicateSubmission(Conflict):
    default_detail = "You have already submitted a design for this challenge"


class GoalNotReached(Conflict):
    default_detail = "Goal not yet reached"


class AlreadyCaptured(Conflict):
    default_detail = "Payment already captured"


class UpstreamFailure(AppError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Upstream service failed"


class ServiceUnavailable(AppError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Down for maintenance"
