"""Error taxonomy shared by the REST routes and the realtime channel.

Every error is an ``HTTPException`` so route helpers can raise them directly
and FastAPI turns them into responses; ``code`` is the machine readable name
sent back as part of the ``{"error": ..., "code": ...}`` body.
"""

from fastapi import HTTPException, status


class ZenZoneError(HTTPException):
    code = 'ServerError'
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'Internal Server Error'

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(status_code=type(self).status_code, detail=detail or self.default_detail)


class ValidationFailed(ZenZoneError):
    code = 'ValidationError'
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid request.'


class AuthError(ZenZoneError):
    code = 'AuthError'
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = 'Invalid token'

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail)
        self.headers = {'WWW-Authenticate': 'Bearer'}


class Forbidden(ZenZoneError):
    code = 'Forbidden'
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'Not authorized.'


class NotApproved(Forbidden):
    code = 'NotApproved'
    default_detail = 'Appointment is not approved.'


class NotFound(ZenZoneError):
    code = 'NotFound'
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found.'


class ServiceUnavailable(ZenZoneError):
    code = 'ServiceUnavailable'
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'Database unavailable. Verify DATABASE_URL and database credentials.'


class UpstreamError(ZenZoneError):
    code = 'UpstreamError'
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'Upstream service error.'


def error_code(exc: HTTPException) -> str:
    if isinstance(exc, ZenZoneError):
        return exc.code
    return {
        status.HTTP_400_BAD_REQUEST: ValidationFailed.code,
        status.HTTP_401_UNAUTHORIZED: AuthError.code,
        status.HTTP_403_FORBIDDEN: Forbidden.code,
        status.HTTP_404_NOT_FOUND: NotFound.code,
        status.HTTP_503_SERVICE_UNAVAILABLE: ServiceUnavailable.code,
    }.get(exc.status_code, ZenZoneError.code)
