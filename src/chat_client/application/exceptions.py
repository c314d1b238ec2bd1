from __future__ import annotations


class AppError(Exception):
    """Base client error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class UnauthenticatedError(AppError):
    """No credential, or the credential has already expired."""


class AuthRejectedError(AppError):
    """The server refused the credential."""


class TransportClosedError(AppError):
    pass


class NotAuthenticatedError(AppError):
    """A send was attempted while the session is not authenticated."""


class ForbiddenError(AppError):
    pass


class ValidationError(AppError):
    pass


class FrameDecodeError(AppError):
    pass
