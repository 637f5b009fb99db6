"""
Domain errors raised by the service layer.
Routers translate them to HTTP responses with `to_http`.
"""
from fastapi import HTTPException, status


class ServiceError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(ServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN


class SelfRoleChangeError(AuthorizationError):
    def __init__(self, detail: str = "You cannot change your own role"):
        super().__init__(detail)


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(ServiceError):
    status_code = status.HTTP_409_CONFLICT


class CalendarLoadError(ServiceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, detail: str = "Calendar load failed, please retry"):
        super().__init__(detail)


class HardFailure(ServiceError):
    """The primary mutation failed and nothing was committed."""


class RoleTransitionError(HardFailure):
    pass


class UserCleanupError(HardFailure):
    pass


def to_http(err: ServiceError) -> HTTPException:
    return HTTPException(status_code=err.status_code, detail=err.detail)
