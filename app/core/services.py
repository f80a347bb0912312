"""
Base service layer patterns for business logic encapsulation.

- ServiceResult: result wrapper carrying either data or an error kind
- BaseService: base class with logger and transaction helpers

Service Layer Philosophy:
    Services encapsulate business logic separate from views and models.
    Views handle HTTP concerns, models handle data and legal state
    transitions, services orchestrate both.

Pattern Comparison:
    - ServiceResult: expected failures (validation, business rules,
      gateway rejections). Callers branch on result.error_code.
    - Exceptions: unexpected failures (database errors, bugs).

Usage:
    from core.services import BaseService, ServiceResult

    class ChargeService(BaseService):
        def initiate(self, authorization, amount, description):
            try:
                charge = self._reserve(authorization, amount, description)
            except BaseApplicationError as exc:
                return ServiceResult.from_error(exc)
            return ServiceResult.success(charge)

    result = service.initiate(auth, Decimal("10.00"), "May")
    if not result:
        print(result.error_code)  # e.g. "AMOUNT_EXCEEDS_LIMIT"
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any

    from core.exceptions import BaseApplicationError

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error kind for client handling
        errors: Field-level errors for validation failures
        details: Extra error context (entity ids, amounts)
        exception: The application error behind a failure, when there was one
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)
    details: dict[str, Any] | None = field(default=None)
    exception: BaseApplicationError | None = field(default=None, repr=False, compare=False)

    @classmethod
    def ok(cls, data: T) -> ServiceResult[T]:
        """Alias for success(), use whichever reads better in context."""
        return cls(success=True, data=data)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
        details: dict[str, Any] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code for client handling
            errors: Field-level errors (for validation failures)
            details: Additional context

        Returns:
            ServiceResult with success=False and error details
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
            details=details,
        )

    @classmethod
    def from_error(cls, exc: BaseApplicationError) -> ServiceResult[T]:
        """
        Create a failed result from an application error.

        The error code, message and details are carried over so the
        caller sees the same error kind the service raised internally.
        """
        errors = None
        field_name = exc.details.get("field")
        if field_name:
            errors = {field_name: [exc.message]}
        return cls(
            success=False,
            error=exc.message,
            error_code=exc.error_code,
            errors=errors,
            details=dict(exc.details) or None,
            exception=exc,
        )

    def to_response(self) -> dict[str, Any]:
        """Convert to API response format."""
        if self.success:
            return {"success": True, "data": self.data}

        response: dict[str, Any] = {
            "success": False,
            "error": self.error,
        }
        if self.error_code:
            response["error_code"] = self.error_code
        if self.errors:
            response["errors"] = self.errors
        if self.details:
            response["details"] = self.details
        return response

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Provides:
    - Logging setup per service
    - Database transaction management
    - Exception-to-result conversion

    Design Notes:
        - Collaborators (gateway, config, event sink) are passed to
          __init__, so instances are cheap and hold no mutable state
        - Use ServiceResult for expected failures
        - Raise exceptions for unexpected failures
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for
        easy filtering in logs.
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        Thin wrapper around transaction.atomic() that makes transaction
        boundaries explicit in service code.
        """
        with transaction.atomic():
            yield

    @classmethod
    def handle_exception(
        cls,
        exc: BaseApplicationError,
        context: str = "",
        log_level: int = logging.WARNING,
    ) -> ServiceResult:
        """
        Log an application error and convert it to a failed result.

        Args:
            exc: The caught application error
            context: Operation name for the log line
            log_level: Logging level (default WARNING)
        """
        message = f"{context}: {exc}" if context else str(exc)
        cls.get_logger().log(
            log_level,
            message,
            extra={"error_code": exc.error_code, "details": exc.details},
        )
        return ServiceResult.from_error(exc)
