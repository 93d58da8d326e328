# backend/utils/errors.py
"""Error kinds raised by routes and services.

Each kind is an ``HTTPException`` so it propagates through FastAPI like any
other route error and maps to a fixed status code.
"""
from typing import Optional
from fastapi import HTTPException, status


class ValidationFailure(HTTPException):
    def __init__(self, detail: str = "Invalid request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class Unauthorized(HTTPException):
    def __init__(self, detail: str = "Unauthorized", headers: Optional[dict] = None):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail, headers=headers)


class Forbidden(HTTPException):
    def __init__(self, detail: str = "Forbidden"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class NotFound(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class Conflict(HTTPException):
    def __init__(self, detail: str = "Conflict"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class ExternalFailure(HTTPException):
    def __init__(self, detail: str = "Payment provider error"):
        super().__init__(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)


class InternalFailure(HTTPException):
    # Never carries internals to the client
    def __init__(self):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")
