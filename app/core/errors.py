from typing import Dict, Optional

from fastapi import status


class ServiceError(Exception):
    """Базовая доменная ошибка, которую API отдаёт клиенту как есть"""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail: str = "Internal Server Error"

    def __init__(self, detail: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        self.detail = detail or self.default_detail
        self.headers = headers
        super().__init__(self.detail)


class Unauthorized(ServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Invalid credentials"

    def __init__(self, detail: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        super().__init__(detail, headers or {"WWW-Authenticate": "Bearer"})


class BadRequest(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Bad request"


class Forbidden(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Not enough permissions"


class NotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class Internal(ServiceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Internal Server Error"
