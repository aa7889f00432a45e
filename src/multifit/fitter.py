"""Minuit-driven fitters for a model evaluator.

Two variants share one driver:

- :class:`MinuitAnalyticFitter` hands Minuit the analytic gradient of the
  chi-square objective, and can compare it once against a numeric gradient
  at the initial point (``checkGradient``).
- :class:`MinuitNumericFitter` lets Minuit differentiate numerically.

Both start from the evaluator's current parameters, run MIGRAD with the
configured strategy, call budget and tolerance, leave the evaluator at the
best parameters found, and return an immutable :class:`FitResult`. A fit that
does not converge is reported through ``FitResult.valid``, never raised.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, ClassVar

import numpy as np
from iminuit import Minuit
from numpy.typing import ArrayLike, NDArray
from scipy import optimize

from multifit.config import FitterConfig
from multifit.errors import EmptyExposureListError, InvalidParameterError
from multifit.evaluator import ModelEvaluator
from multifit.model import Model
from multifit.objective import ChisqFunction

logger = logging.getLogger(__name__)

__all__ = [
    "FitResult",
    "GradientCheckReport",
    "MinuitAnalyticFitter",
    "MinuitNumericFitter",
]


@dataclass(frozen=True)
class GradientCheckReport:
    """Numeric and analytic gradients of the objective at one point.

    Attributes
    ----------
    parameters : np.ndarray
        Point at which both gradients were evaluated.
    numeric : np.ndarray
        Finite-difference gradient.
    analytic : np.ndarray
        Gradient returned by the objective.
    """

    parameters: NDArray[np.float64]
    numeric: NDArray[np.float64]
    analytic: NDArray[np.float64]

    @property
    def ratio(self) -> NDArray[np.float64]:
        """Element-wise numeric / analytic; ``inf`` or ``nan`` where analytic is zero."""
        with np.errstate(divide="ignore", invalid="ignore"):
            result: NDArray[np.float64] = self.numeric / self.analytic
        return result

    def lines(self) -> list[str]:
        def fmt(values: NDArray[np.float64]) -> str:
            return "<" + ", ".join(f"{v:.6g}" for v in values) + ">"

        return [
            f"numeric gradient: {fmt(self.numeric)}",
            f"analytic gradient: {fmt(self.analytic)}",
            f"difference: {fmt(self.ratio)}",
        ]


@dataclass(frozen=True)
class FitResult:
    """Terminal state of one fit, bound to the fitted model.

    Attributes
    ----------
    model : Model
        The evaluator's model, left at ``parameters``.
    valid : bool
        Whether the minimizer reports a valid minimum.
    fval : float
        Objective value at ``parameters``.
    parameters : np.ndarray
        Best ``[linear..., nonlinear...]`` parameters found.
    errors : np.ndarray
        Minimizer's parabolic error estimates.
    covariance : np.ndarray | None
        Parameter covariance, None if the minimizer could not provide one.
    edm : float
        Estimated distance to the minimum.
    nfcn : int
        Number of objective evaluations.
    has_reached_call_limit : bool
        Whether the ``iterationMax`` budget was exhausted.
    n_linear : int
        Number of linear parameters at the head of ``parameters``.
    gradient_check : GradientCheckReport | None
        Report of the initial gradient comparison, when requested.
    """

    model: Model
    valid: bool
    fval: float
    parameters: NDArray[np.float64]
    errors: NDArray[np.float64]
    covariance: NDArray[np.float64] | None
    edm: float
    nfcn: int
    has_reached_call_limit: bool
    n_linear: int
    gradient_check: GradientCheckReport | None = None

    def __post_init__(self) -> None:
        for name in ("parameters", "errors", "covariance"):
            value = getattr(self, name)
            if value is not None:
                value.flags.writeable = False

    @property
    def linear_parameters(self) -> NDArray[np.float64]:
        return self.parameters[: self.n_linear]

    @property
    def nonlinear_parameters(self) -> NDArray[np.float64]:
        return self.parameters[self.n_linear :]


class _MinuitFitter:
    """Shared MIGRAD driver; subclasses choose whether to pass the gradient."""

    use_gradient: ClassVar[bool] = False

    def __init__(self, policy: FitterConfig | Mapping[str, Any] | None = None) -> None:
        if isinstance(policy, FitterConfig):
            self._config = policy
        else:
            self._config = FitterConfig.from_policy(policy)

    @property
    def config(self) -> FitterConfig:
        return self._config

    def apply(self, evaluator: ModelEvaluator, initial_errors: ArrayLike) -> FitResult:
        """Fit the evaluator's model to its exposures.

        Args:
            evaluator: Evaluator with a bound exposure list.
            initial_errors: Initial step size per parameter, in
                ``[linear..., nonlinear...]`` order.

        Returns:
            The fit result; ``valid`` is False when MIGRAD did not converge.

        Raises:
            InvalidParameterError: If ``initial_errors`` does not have one
                entry per model parameter.
            EmptyExposureListError: If the evaluator has no contributing pixels.
        """
        n_params = evaluator.linear_parameter_size + evaluator.nonlinear_parameter_size
        errors = np.asarray(initial_errors, dtype=np.float64)
        if errors.ndim != 1 or errors.size != n_params:
            raise InvalidParameterError(
                "Number of model parameters not equal to length of error vector",
                n_parameters=n_params,
                n_errors=int(errors.size),
            )
        if evaluator.n_pixels == 0:
            raise EmptyExposureListError(
                "Cannot fit a model with no contributing pixels",
                n_min_pix=evaluator.n_min_pix,
            )

        function = ChisqFunction(evaluator)
        initial = np.concatenate([evaluator.linear_parameters, evaluator.nonlinear_parameters])

        minuit = Minuit(
            function.value,
            initial,
            grad=function.gradient if self.use_gradient else None,
            name=evaluator.model.parameter_names(),
        )
        minuit.errordef = function.up
        minuit.errors = errors
        minuit.strategy = self._config.strategy
        minuit.tol = self._config.tolerance
        minuit.print_level = 0

        report = self._check_gradient(function, initial, errors)

        logger.info(
            "Starting %s: %d parameters, %d pixels, strategy=%d, iteration_max=%d",
            type(self).__name__,
            n_params,
            evaluator.n_pixels,
            self._config.strategy,
            self._config.iteration_max,
        )
        # One MIGRAD pass at the configured strategy; no Simplex or strategy-2 retries.
        minuit.migrad(ncall=self._config.iteration_max, iterate=1)
        return self._make_result(minuit, function, report)

    def _check_gradient(
        self,
        function: ChisqFunction,
        initial: NDArray[np.float64],
        errors: NDArray[np.float64],
    ) -> GradientCheckReport | None:
        return None

    def _make_result(
        self,
        minuit: Minuit,
        function: ChisqFunction,
        report: GradientCheckReport | None,
    ) -> FitResult:
        fmin = minuit.fmin
        parameters = np.array(minuit.values, dtype=np.float64)
        # Leave the evaluator (and its model) at the best point found.
        fval = function.value(parameters)
        covariance = None if minuit.covariance is None else np.array(minuit.covariance)

        result = FitResult(
            model=function.evaluator.model,
            valid=bool(fmin.is_valid),
            fval=fval,
            parameters=parameters,
            errors=np.array(minuit.errors, dtype=np.float64),
            covariance=covariance,
            edm=float(fmin.edm),
            nfcn=int(fmin.nfcn),
            has_reached_call_limit=bool(fmin.has_reached_call_limit),
            n_linear=function.evaluator.linear_parameter_size,
            gradient_check=report,
        )
        if result.valid:
            logger.info("Fit converged: fval=%.6g, nfcn=%d", result.fval, result.nfcn)
        else:
            logger.warning(
                "Fit did not converge: fval=%.6g, nfcn=%d, call limit reached=%s",
                result.fval,
                result.nfcn,
                result.has_reached_call_limit,
            )
        return result


class MinuitAnalyticFitter(_MinuitFitter):
    """MIGRAD with the analytic chi-square gradient.

    Example:
        >>> fitter = MinuitAnalyticFitter({"iterationMax": 1000, "checkGradient": True})
        >>> result = fitter.apply(evaluator, [10.0, 0.1, 0.1])
        >>> result.valid, result.parameters
    """

    use_gradient = True

    def _check_gradient(
        self,
        function: ChisqFunction,
        initial: NDArray[np.float64],
        errors: NDArray[np.float64],
    ) -> GradientCheckReport | None:
        if not self._config.check_gradient:
            return None
        scale = np.maximum(np.abs(initial), np.abs(errors))
        epsilon = np.sqrt(np.finfo(np.float64).eps) * np.where(scale > 0, scale, 1.0)
        numeric = np.asarray(optimize.approx_fprime(initial, function.value, epsilon))
        analytic = function.gradient(initial)
        report = GradientCheckReport(parameters=initial.copy(), numeric=numeric, analytic=analytic)
        for line in report.lines():
            logger.info(line)
        return report


class MinuitNumericFitter(_MinuitFitter):
    """MIGRAD with Minuit's own numerical derivatives."""

    use_gradient = False
