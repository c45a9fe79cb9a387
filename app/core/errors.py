from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger


class ServiceError(Exception):
    """Base for errors raised by the service layer and rendered as JSON."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail: str = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationFailed(ServiceError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "The given data was invalid."


class BadRequest(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Bad request."


class Conflict(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Account already exists and is activated."


class NotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found."


class Unauthorized(ServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Invalid credentials."


class InvalidOrExpired(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid or expired OTP."


class AlreadyActivated(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Account is already activated."


class NotificationError(ServiceError):
    default_detail = "Unable to send verification email. Please try again."


class StorageError(ServiceError):
    default_detail = "File storage is unavailable. Please try again later."


class InternalError(ServiceError):
    pass


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def _service_error(request: Request, exc: ServiceError) -> JSONResponse:
        headers = None
        if isinstance(exc, Unauthorized):
            headers = {"WWW-Authenticate": "Bearer"}
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": exc.detail},
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"message": InternalError.default_detail},
        )
