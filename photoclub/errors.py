"""Domain errors raised by the service layer.

Each error carries the HTTP status it maps to so the FastAPI app can translate
it with a single exception handler. Messages are meant for end users and never
include database error text.
"""


class PhotoClubError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnauthenticatedError(PhotoClubError):
    status_code = 401


class ForbiddenError(PhotoClubError):
    status_code = 403


class NotFoundError(PhotoClubError):
    status_code = 404


class ValidationError(PhotoClubError):
    status_code = 400


class ConflictError(PhotoClubError):
    # Duplicate joins/posts answer 400 like any other rejected request
    status_code = 400


class InternalError(PhotoClubError):
    status_code = 500
