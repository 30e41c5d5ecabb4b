from fastapi import status

from formhub.core.errors import ApiError


class PermissionDenied(ApiError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(
            message,
            status_code=status.HTTP_403_FORBIDDEN,
            code="forbidden",
        )
