from typing import Any

from fastapi import status


class AppError(Exception):
    code: str = "APP_ERROR"
    message: str = "Application error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    details: Any | None = None

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: Any | None = None,
    ):
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        if details is not None:
            self.details = details

        super().__init__(self.message)


class AuthError(AppError):
    code = "AUTH_ERROR"
    message = "Authentication required"
    status_code = status.HTTP_401_UNAUTHORIZED


class AccessDeniedError(AppError):
    """Authorization denied.

    The message is fixed and no details are attached so that a denied caller
    learns nothing about the sharing configuration of the resource.
    """

    code = "PERMISSION_DENIED"
    message = "RBAC: authorization denied"
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self) -> None:
        super().__init__()


class MalformedGrantsError(AppError):
    """Stored grants that cannot be decoded; ``field`` names the annotation."""

    code = "MALFORMED_GRANTS"
    message = "Stored sharing grants are malformed"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, field: str):
        super().__init__(message)
        self.field = field


# Framework errors (routing, request parsing) are answered with a fixed code
# and message; their detail text is only logged.
HTTP_ERRORS: dict[int, tuple[str, str]] = {
    status.HTTP_400_BAD_REQUEST: ("VALIDATION_ERROR", "Validation error"),
    status.HTTP_401_UNAUTHORIZED: (AuthError.code, AuthError.message),
    status.HTTP_403_FORBIDDEN: (AccessDeniedError.code, AccessDeniedError.message),
    status.HTTP_404_NOT_FOUND: ("NOT_FOUND", "Resource not found"),
}
INTERNAL_ERROR: tuple[str, str] = ("INTERNAL_ERROR", "Internal server error")


def error_payload(
    code: str,
    message: str,
    details: Any | None = None,
) -> dict[str, Any]:
    return {"error": {"code": code, "message": message, "details": details}}


def http_error(status_code: int) -> tuple[str, str]:
    """Code and client-safe message for a framework HTTP error."""
    if status_code in HTTP_ERRORS:
        return HTTP_ERRORS[status_code]
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        return INTERNAL_ERROR
    return "UNKNOWN_ERROR", "Request failed"
