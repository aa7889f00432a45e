"""Local error taxonomy for multifit.

The fitting engine keeps a small, stable error enum/envelope that callers can
translate into their own error formats. Numerical non-convergence is not an
error: it is reported through ``FitResult.valid``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorType(str, Enum):
    INVALID_PARAMETER = "INVALID_PARAMETER"
    INVALID_DATA = "INVALID_DATA"
    EMPTY_EXPOSURE_LIST = "EMPTY_EXPOSURE_LIST"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: ErrorType
    message: str
    context: dict[str, Any] = Field(default_factory=dict)


def make_error(error_type: ErrorType, message: str, **context: Any) -> ErrorEnvelope:
    return ErrorEnvelope(type=error_type, message=message, context=dict(context))


class MultifitError(Exception):
    """Base class for errors raised at the boundary of the fitting engine.

    Attributes:
        envelope: Structured error envelope with error details.
        error_type: The error type from the envelope.
        message: The error message.
        context: The error context dictionary.
    """

    error_kind: ErrorType = ErrorType.INTERNAL_ERROR

    def __init__(self, message: str, **context: Any) -> None:
        self._message = message
        self.envelope = make_error(self.error_kind, message, **context)
        super().__init__(message)

    @property
    def error_type(self) -> ErrorType:
        """Return the error type from the envelope."""
        return self.envelope.type

    @property
    def message(self) -> str:
        """Return the error message."""
        return self._message

    @property
    def context(self) -> dict[str, Any]:
        """Return the error context from the envelope."""
        return self.envelope.context


class InvalidParameterError(MultifitError, ValueError):
    """Raised when a parameter vector, error vector or setting has the wrong shape or value."""

    error_kind = ErrorType.INVALID_PARAMETER


class EmptyExposureListError(MultifitError):
    """Raised when a fit is requested on an evaluator with no contributing pixels."""

    error_kind = ErrorType.EMPTY_EXPOSURE_LIST
