from fastapi import HTTPException, status


class ChatError(HTTPException):
    """
    Base for errors raised by the message core.

    Each subclass carries an HTTP status (used by the REST layer) and a
    stable ``code`` (used by the real-time gateway's error frames).
    """

    code = "internal"

    def __init__(self, status_code: int, detail: str):
        super().__init__(status_code=status_code, detail=detail)


class NotFoundError(ChatError):
    """Exception raised when a resource is not found."""

    code = "not_found"

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ForbiddenError(ChatError):
    """Exception raised when the actor lacks rights (membership or authorship)."""

    code = "unauthorized"

    def __init__(self, detail: str = "Access forbidden"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class UnauthorizedError(ChatError):
    """Exception raised when authentication fails."""

    code = "unauthenticated"

    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class BadRequestError(ChatError):
    """Exception raised for missing or malformed arguments."""

    code = "invalid_argument"

    def __init__(self, detail: str = "Bad request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class InternalError(ChatError):
    """Exception raised when store or broadcast infrastructure fails."""

    code = "internal"

    def __init__(self, detail: str = "Internal error"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)
