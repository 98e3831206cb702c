from typing import Optional

from fastapi import FastAPI, Request, status
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from pydantic import ValidationError as PydanticValidationError
import traceback
from .logging import get_logger
from .responses import ResponseBuilder

logger = get_logger()


class ValidationError(Exception):
    """A raw activity record that cannot be ingested."""

    def __init__(self, message: str, error_code: str = "INVALID_ACTIVITY"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class ExtractionError(Exception):
    """A per-subject collection stage failed or timed out."""

    def __init__(
        self, stage: str, message: Optional[str] = None, error_code: str = "EXTRACTION_ERROR"
    ):
        message = message or f"{stage} stage failed"
        super().__init__(message)
        self.stage = stage
        self.message = message
        self.error_code = error_code


class ChannelNotReadyError(Exception):
    """The delivery channel cannot accept messages right now."""

    def __init__(
        self, message: str = "Delivery channel is not ready", error_code: str = "CHANNEL_NOT_READY"
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class DeliveryError(Exception):
    """A single message could not be delivered."""

    def __init__(self, message: str, error_code: str = "DELIVERY_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class FatalResourceError(Exception):
    """A resource the whole pipeline depends on is unavailable."""

    def __init__(self, message: str, error_code: str = "FATAL_RESOURCE_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


def _format_validation_errors(errors):
    formatted_errors = []
    for error in errors:
        field_path = " -> ".join(str(loc) for loc in error["loc"])
        formatted_errors.append(
            {
                "field": field_path,
                "message": error["msg"],
                "type": error["type"],
            }
        )
    return formatted_errors


def setup_error_handlers(app: FastAPI):
    """Setup custom error handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.error(f"HTTP Exception: {exc.status_code} - {exc.detail}")
        return ResponseBuilder.error(
            request=request,
            message=str(exc.detail),
            error_code="HTTP_ERROR",
            status_code=exc.status_code,
            meta={"http_status": exc.status_code},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        logger.error(f"Request Validation Error: {exc.errors()}")
        return ResponseBuilder.error(
            request=request,
            message="Request validation failed",
            errors=_format_validation_errors(exc.errors()),
            error_code="VALIDATION_ERROR",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )

    @app.exception_handler(PydanticValidationError)
    async def pydantic_validation_exception_handler(
        request: Request, exc: PydanticValidationError
    ):
        logger.error(f"Pydantic Validation Error: {exc.errors()}")
        return ResponseBuilder.error(
            request=request,
            message="Data validation failed",
            error_code="INTERNAL_VALIDATION_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @app.exception_handler(ValidationError)
    async def activity_validation_exception_handler(
        request: Request, exc: ValidationError
    ):
        logger.warning(f"Activity Validation Error: {exc.message}")
        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_400_BAD_REQUEST,
            meta={"error_type": "VALIDATION_ERROR"},
        )

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"SQLAlchemy Error: {str(exc)}")

        # Don't expose internal database errors to users
        return ResponseBuilder.error(
            request=request,
            message="A database error occurred",
            error_code="DATABASE_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "SQLALCHEMY_ERROR"},
        )

    @app.exception_handler(ChannelNotReadyError)
    async def channel_not_ready_exception_handler(
        request: Request, exc: ChannelNotReadyError
    ):
        logger.warning(f"Channel Not Ready: {exc.message}")
        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            meta={"error_type": "CHANNEL_NOT_READY"},
        )

    @app.exception_handler(DeliveryError)
    async def delivery_exception_handler(request: Request, exc: DeliveryError):
        logger.error(f"Delivery Error: {exc.message}")
        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_502_BAD_GATEWAY,
            meta={"error_type": "DELIVERY_ERROR"},
        )

    @app.exception_handler(FatalResourceError)
    async def fatal_resource_exception_handler(
        request: Request, exc: FatalResourceError
    ):
        logger.critical(f"Fatal Resource Error: {exc.message}")
        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            meta={"error_type": "FATAL_RESOURCE_ERROR"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        logger.error(f"Value Error: {str(exc)}")
        return ResponseBuilder.error(
            request=request,
            message=str(exc),
            error_code="VALUE_ERROR",
            status_code=status.HTTP_400_BAD_REQUEST,
            meta={"error_type": "VALUE_ERROR"},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle all other unhandled exceptions"""
        logger.error(f"Unhandled Exception: {str(exc)}")
        logger.error(f"Traceback: {traceback.format_exc()}")
        return ResponseBuilder.error(
            request=request,
            message="An internal server error occurred",
            error_code="INTERNAL_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "INTERNAL_ERROR"},
        )
