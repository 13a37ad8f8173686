"""API error types.

Every handler raises one of these instead of building an error response
itself; ``create_app`` registers a single handler that renders them as
``{"message": ...}`` with the class's status code.
"""
from flask import jsonify


class ApiError(Exception):
    status_code = 500
    # Set on errors whose response must also drop the session cookies
    clears_session = False

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_response(self):
        return jsonify({"message": self.message}), self.status_code


class BadRequest(ApiError):
    status_code = 400


class ValidationError(BadRequest):
    """Missing or malformed input."""


class Unauthenticated(ApiError):
    status_code = 401


class InvalidCredentials(Unauthenticated):
    pass


class AccountDeactivated(Unauthenticated):
    clears_session = True


class Forbidden(ApiError):
    status_code = 403


class NotFound(ApiError):
    status_code = 404


class Conflict(ApiError):
    status_code = 409


class ServerError(ApiError):
    status_code = 500


class MediaUploadError(ServerError):
    pass
