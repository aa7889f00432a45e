"""Tests for the error taxonomy."""

from __future__ import annotations

import pytest

from multifit.errors import (
    EmptyExposureListError,
    ErrorEnvelope,
    ErrorType,
    InvalidParameterError,
    MultifitError,
    make_error,
)


class TestMakeError:
    def test_envelope_fields(self) -> None:
        envelope = make_error(ErrorType.INVALID_DATA, "bad pixels", count=3)
        assert isinstance(envelope, ErrorEnvelope)
        assert envelope.type is ErrorType.INVALID_DATA
        assert envelope.message == "bad pixels"
        assert envelope.context == {"count": 3}

    def test_envelope_is_frozen(self) -> None:
        envelope = make_error(ErrorType.INTERNAL_ERROR, "boom")
        with pytest.raises(Exception):
            envelope.message = "changed"  # type: ignore[misc]


class TestInvalidParameterError:
    def test_carries_envelope(self) -> None:
        exc = InvalidParameterError("length mismatch", n_parameters=3, n_errors=2)
        assert exc.error_type is ErrorType.INVALID_PARAMETER
        assert exc.message == "length mismatch"
        assert exc.context == {"n_parameters": 3, "n_errors": 2}
        assert str(exc) == "length mismatch"

    def test_is_value_error(self) -> None:
        exc = InvalidParameterError("bad")
        assert isinstance(exc, ValueError)
        assert isinstance(exc, MultifitError)

    def test_raise_and_catch(self) -> None:
        with pytest.raises(ValueError) as exc_info:
            raise InvalidParameterError("bad", which="strategy")
        assert exc_info.value.context["which"] == "strategy"


class TestEmptyExposureListError:
    def test_error_type(self) -> None:
        exc = EmptyExposureListError("nothing to fit")
        assert exc.error_type is ErrorType.EMPTY_EXPOSURE_LIST
        assert not isinstance(exc, ValueError)
