"""Tests for the Minuit fitters."""

from __future__ import annotations

import logging

import iminuit.minuit
import numpy as np
import pytest
from numpy.testing import assert_allclose

from multifit.config import FitterConfig
from multifit.errors import EmptyExposureListError, InvalidParameterError
from multifit.evaluator import ModelEvaluator
from multifit.fitter import FitResult, GradientCheckReport, MinuitAnalyticFitter, MinuitNumericFitter
from multifit.sources import PointSourceModel
from multifit.wcs import AffineWcs
from tests.fixtures.synthetic_exposures import (
    FlatModel,
    FlatProjection,
    make_exposure,
    render_point_source,
)

FITTERS = [MinuitAnalyticFitter, MinuitNumericFitter]

# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def two_exposures():
    """Noise-free point source at (10.3, 9.7) seen through two offset mappings."""
    return [
        render_point_source(500.0, 10.3, 9.7, shape=(25, 25)),
        render_point_source(
            500.0, 10.3, 9.7, shape=(25, 25), wcs=AffineWcs.from_shift(1.5, -2.0)
        ),
    ]


# =============================================================================
# Argument checks
# =============================================================================


class TestApplyPreconditions:
    @pytest.mark.parametrize("fitter_cls", FITTERS)
    def test_error_vector_length(self, fitter_cls, flat_model, three_pixel_exposure) -> None:
        evaluator = ModelEvaluator(flat_model, [three_pixel_exposure])
        with pytest.raises(InvalidParameterError, match="length of error vector"):
            fitter_cls().apply(evaluator, [1.0, 1.0])
        assert sum(flat_model.calls.values()) == 0

    def test_dimension_check_precedes_empty_check(self, flat_model) -> None:
        evaluator = ModelEvaluator(flat_model, [])
        with pytest.raises(InvalidParameterError):
            MinuitAnalyticFitter().apply(evaluator, [])

    @pytest.mark.parametrize("fitter_cls", FITTERS)
    def test_empty_exposure_list(self, fitter_cls, flat_model) -> None:
        evaluator = ModelEvaluator(flat_model, [make_exposure([[1.0]])], n_min_pix=5)
        with pytest.raises(EmptyExposureListError):
            fitter_cls().apply(evaluator, [1.0])

    def test_config_from_policy(self) -> None:
        fitter = MinuitNumericFitter({"strategy": 2, "iterationMax": 42})
        assert fitter.config.strategy == 2
        assert fitter.config.iteration_max == 42

    def test_config_instance(self) -> None:
        config = FitterConfig(tolerance=0.01)
        assert MinuitAnalyticFitter(config).config is config

    def test_invalid_policy(self) -> None:
        with pytest.raises(InvalidParameterError):
            MinuitAnalyticFitter({"strategy": 7})


# =============================================================================
# Fits
# =============================================================================


class TestThreePixelFit:
    @pytest.mark.parametrize("fitter_cls", FITTERS)
    def test_converges_to_mean(self, fitter_cls, flat_model, three_pixel_exposure) -> None:
        evaluator = ModelEvaluator(flat_model, [three_pixel_exposure])
        result = fitter_cls().apply(evaluator, [1.0])
        assert isinstance(result, FitResult)
        assert result.valid
        assert result.parameters[0] == pytest.approx(2.0, abs=1e-4)
        assert result.fval == pytest.approx(1.0, abs=1e-6)
        assert result.covariance is not None
        assert result.covariance[0, 0] == pytest.approx(2.0 / 3.0, rel=0.05)
        assert result.errors[0] == pytest.approx(np.sqrt(2.0 / 3.0), rel=0.05)

    def test_evaluator_left_at_best_point(self, flat_model, three_pixel_exposure) -> None:
        evaluator = ModelEvaluator(flat_model, [three_pixel_exposure])
        result = MinuitAnalyticFitter().apply(evaluator, [1.0])
        assert result.model is flat_model
        assert_allclose(evaluator.linear_parameters, result.parameters)
        assert_allclose(result.linear_parameters, result.parameters)
        assert result.nonlinear_parameters.shape == (0,)
        assert result.n_linear == 1

    def test_result_arrays_are_read_only(self, flat_model, three_pixel_exposure) -> None:
        evaluator = ModelEvaluator(flat_model, [three_pixel_exposure])
        result = MinuitAnalyticFitter().apply(evaluator, [1.0])
        with pytest.raises(ValueError):
            result.parameters[0] = 0.0
        flat_model.set_linear_parameters([10.0])
        assert result.parameters[0] == pytest.approx(2.0, abs=1e-4)


class TestPointSourceFit:
    @pytest.mark.parametrize("fitter_cls", FITTERS)
    def test_recovers_truth(self, fitter_cls, two_exposures) -> None:
        model = PointSourceModel(400.0, 10.0, 10.0)
        evaluator = ModelEvaluator(model, two_exposures)
        result = fitter_cls({"iterationMax": 2000}).apply(evaluator, [10.0, 0.1, 0.1])
        assert result.valid
        assert result.parameters[0] == pytest.approx(500.0, rel=1e-3)
        assert result.parameters[1] == pytest.approx(10.3, abs=1e-2)
        assert result.parameters[2] == pytest.approx(9.7, abs=1e-2)
        assert result.fval == pytest.approx(0.0, abs=1e-2)
        assert_allclose(model.nonlinear_parameters, result.nonlinear_parameters)

    def test_excluded_exposure_does_not_contribute(self, two_exposures) -> None:
        tiny = make_exposure([[1000.0]], xy0=(10, 10))
        model = PointSourceModel(400.0, 10.0, 10.0)
        evaluator = ModelEvaluator(model, [*two_exposures, tiny], n_min_pix=1)
        assert [p.exposure_index for p in evaluator.projection_list] == [0, 1]
        result = MinuitAnalyticFitter().apply(evaluator, [10.0, 0.1, 0.1])
        assert result.parameters[0] == pytest.approx(500.0, rel=1e-3)

    def test_call_limit_reported_not_raised(self, two_exposures) -> None:
        model = PointSourceModel(100.0, 8.0, 12.0)
        evaluator = ModelEvaluator(model, two_exposures)
        result = MinuitNumericFitter({"iterationMax": 5}).apply(evaluator, [10.0, 0.1, 0.1])
        assert not result.valid
        assert result.has_reached_call_limit

    def test_logs_failed_convergence(self, two_exposures, caplog) -> None:
        model = PointSourceModel(100.0, 8.0, 12.0)
        evaluator = ModelEvaluator(model, two_exposures)
        with caplog.at_level(logging.WARNING, logger="multifit.fitter"):
            MinuitNumericFitter({"iterationMax": 5}).apply(evaluator, [10.0, 0.1, 0.1])
        assert any("did not converge" in r.getMessage() for r in caplog.records)


# =============================================================================
# Gradient check
# =============================================================================


class TestGradientCheck:
    def test_report_when_requested(self, two_exposures, caplog) -> None:
        model = PointSourceModel(400.0, 10.0, 10.0)
        evaluator = ModelEvaluator(model, two_exposures)
        fitter = MinuitAnalyticFitter({"checkGradient": True})
        with caplog.at_level(logging.INFO, logger="multifit.fitter"):
            result = fitter.apply(evaluator, [10.0, 0.1, 0.1])
        report = result.gradient_check
        assert isinstance(report, GradientCheckReport)
        assert_allclose(report.parameters, [400.0, 10.0, 10.0])
        assert_allclose(report.ratio, 1.0, rtol=1e-3)
        messages = [r.getMessage() for r in caplog.records]
        assert any(m.startswith("numeric gradient: <") for m in messages)
        assert any(m.startswith("analytic gradient: <") for m in messages)
        assert any(m.startswith("difference: <") for m in messages)

    def test_no_report_by_default(self, flat_model, three_pixel_exposure) -> None:
        evaluator = ModelEvaluator(flat_model, [three_pixel_exposure])
        assert MinuitAnalyticFitter().apply(evaluator, [1.0]).gradient_check is None

    def test_numeric_fitter_ignores_check(self, flat_model, three_pixel_exposure) -> None:
        evaluator = ModelEvaluator(flat_model, [three_pixel_exposure])
        result = MinuitNumericFitter({"checkGradient": True}).apply(evaluator, [1.0])
        assert result.gradient_check is None

    def test_report_lines(self) -> None:
        report = GradientCheckReport(
            parameters=np.array([1.0, 2.0]),
            numeric=np.array([2.0, 3.0]),
            analytic=np.array([1.0, 3.0]),
        )
        assert report.lines() == [
            "numeric gradient: <2, 3>",
            "analytic gradient: <1, 3>",
            "difference: <2, 1>",
        ]


# =============================================================================
# Minimizer configuration
# =============================================================================


class _NanAboveUnitProjection(FlatProjection):
    """Flat model image that turns NaN once the flux exceeds 1."""

    def _compute_model_image(self, out: np.ndarray) -> None:
        super()._compute_model_image(out)
        if self._flat_model.linear_parameters[0] > 1.0:
            out[:] = np.nan


class _NanAboveUnitModel(FlatModel):
    def make_projection(self, psf, wcs, footprint) -> _NanAboveUnitProjection:
        return _NanAboveUnitProjection(self, psf, wcs, footprint)


@pytest.fixture
def migrad_strategies(monkeypatch) -> list[int]:
    """Strategy of every MIGRAD minimizer iminuit builds during the test."""
    seen: list[int] = []
    real = iminuit.minuit.MnMigrad

    def recording(fcn, state, strategy):
        seen.append(int(getattr(strategy, "strategy", strategy)))
        return real(fcn, state, strategy)

    monkeypatch.setattr(iminuit.minuit, "MnMigrad", recording)
    return seen


class TestMinimizerConfiguration:
    @pytest.mark.parametrize("strategy", [0, 1, 2])
    def test_single_migrad_pass_at_configured_strategy(
        self, strategy, migrad_strategies, flat_model, three_pixel_exposure
    ) -> None:
        evaluator = ModelEvaluator(flat_model, [three_pixel_exposure])
        result = MinuitNumericFitter({"strategy": strategy}).apply(evaluator, [1.0])
        assert result.valid
        assert migrad_strategies == [strategy]

    def test_failed_fit_is_not_retried(self, migrad_strategies, three_pixel_exposure) -> None:
        # The chi-square minimum (flux = 2) lies where the model is NaN.
        model = _NanAboveUnitModel(flux=0.0)
        evaluator = ModelEvaluator(model, [three_pixel_exposure])
        fitter = MinuitNumericFitter({"strategy": 0, "iterationMax": 500})
        result = fitter.apply(evaluator, [1.0])
        assert migrad_strategies == [0]
        assert result.nfcn <= 500
