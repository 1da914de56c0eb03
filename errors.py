"""Errors raised by the ranking engine and record review.

The HTTP layer turns each of them into a JSON body with ``status_code``.
Store errors (``sqlalchemy.exc.IntegrityError`` and friends) are not wrapped.
"""


class DemonlistError(Exception):
    status_code = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(DemonlistError):
    status_code = 400


class NotFoundError(DemonlistError):
    status_code = 404


class ConflictError(DemonlistError):
    status_code = 409


class ForbiddenError(DemonlistError):
    status_code = 403
