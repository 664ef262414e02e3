from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

logger = logging.getLogger(__name__)


NOT_FOUND = "not_found"
CONFLICT = "conflict"
FORBIDDEN = "forbidden"
VALIDATION = "validation"
STORAGE = "storage"

STATUS_CODES = {
    NOT_FOUND: 404,
    CONFLICT: 409,
    FORBIDDEN: 403,
    VALIDATION: 422,
    STORAGE: 500,
}


class LendingException(Exception):
    """Base exception for lending-related errors."""

    kind = CONFLICT

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


# Not found
class UserNotFoundError(LendingException):
    kind = NOT_FOUND

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User with id {user_id} not found")


class ItemNotFoundError(LendingException):
    kind = NOT_FOUND

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item with id {item_id} not found")


class BorrowNotFoundError(LendingException):
    kind = NOT_FOUND

    def __init__(self, borrow_id: str):
        self.borrow_id = borrow_id
        super().__init__(f"Borrow record with id {borrow_id} not found")


# Conflicts
class ItemNotAvailableError(LendingException):
    """Raised when an item is already lent out or has an open request."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item with id {item_id} is not available for borrowing")


class SelfLoanError(LendingException):
    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item with id {item_id} belongs to the requester")


class InvalidTransitionError(LendingException):
    """Raised when a borrow record is not in a state the operation accepts."""

    def __init__(self, borrow_id: str, status: str, operation: str):
        self.borrow_id = borrow_id
        self.status = status
        super().__init__(
            f"Cannot {operation} borrow record {borrow_id} while it is {status}"
        )


class DuplicateUsernameError(LendingException):
    def __init__(self, username: str):
        self.username = username
        super().__init__(f"Username {username} is already taken")


class PermissionDeniedError(LendingException):
    kind = FORBIDDEN

    def __init__(self, user_id: str, operation: str):
        self.user_id = user_id
        super().__init__(f"User {user_id} is not allowed to {operation}")


# Validation
class InvalidAttachmentError(LendingException):
    kind = VALIDATION

    def __init__(self, message: str):
        super().__init__(f"Invalid attachment: {message}")


class MissingFieldError(LendingException):
    kind = VALIDATION

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Field {field} is required")


class StorageError(LendingException):
    """Raised when a durable write or read fails. Never reported as a result."""

    kind = STORAGE

    def __init__(self, operation: str, details: str):
        super().__init__(f"Storage error during {operation}: {details}")


# Exception handlers
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.error(f"HTTP error {exc.status_code}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Request validation error: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={"detail": "Invalid request parameters. Please check your input."},
    )


async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred. Please contact support."},
    )


async def storage_exception_handler(request: Request, exc: StorageError):
    logger.error(f"Storage error: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "The request could not be saved. Please try again later."},
    )


async def lending_exception_handler(request: Request, exc: LendingException):
    logger.warning(f"Lending error: {exc}")
    return JSONResponse(
        status_code=STATUS_CODES.get(exc.kind, 400),
        content={"detail": str(exc)},
    )


def add_exception_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
    app.add_exception_handler(StorageError, storage_exception_handler)
    app.add_exception_handler(LendingException, lending_exception_handler)
