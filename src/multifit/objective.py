"""Chi-square objective over a model evaluator.

The minimizer sees a single parameter vector ``[linear..., nonlinear...]``.
For that vector the objective returns

    value    = 0.5 * r^T r
    gradient = [-L^T r, -N^T r]

where ``r = weighted_data - model_image`` is the whitened residual and ``L``,
``N`` are the whitened linear and nonlinear derivative matrices. The gradient
carries no factor of two; with ``errordef = 1.0`` the minimizer's error
estimates follow the same convention.

Parameters are only pushed into the evaluator when at least one element
differs from the evaluator's current values, so repeated queries at one point
reuse the evaluator's cached products.
"""

from __future__ import annotations

import logging

import numpy as np
from numpy.typing import ArrayLike, NDArray

from multifit.errors import InvalidParameterError
from multifit.evaluator import ModelEvaluator

logger = logging.getLogger(__name__)

__all__ = ["ChisqFunction"]


class ChisqFunction:
    """Value and gradient callables for a minimizer.

    Args:
        evaluator: Evaluator with its exposure list already bound. The
            weighted data are captured at construction.
    """

    errordef: float = 1.0

    def __init__(self, evaluator: ModelEvaluator) -> None:
        self._evaluator = evaluator
        self._measured = evaluator.weighted_data
        self._n_linear = evaluator.linear_parameter_size
        self._n_nonlinear = evaluator.nonlinear_parameter_size
        self._dirty = True

    @property
    def evaluator(self) -> ModelEvaluator:
        return self._evaluator

    @property
    def up(self) -> float:
        return self.errordef

    @property
    def parameter_size(self) -> int:
        return self._n_linear + self._n_nonlinear

    @property
    def dirty(self) -> bool:
        """Whether the last query moved the evaluator to new parameters."""
        return self._dirty

    def _sync(self, params: ArrayLike) -> None:
        values = np.asarray(params, dtype=np.float64)
        if values.shape != (self.parameter_size,):
            raise InvalidParameterError(
                f"parameter vector has shape {values.shape}, expected ({self.parameter_size},)",
                shape=list(values.shape),
                n_linear=self._n_linear,
                n_nonlinear=self._n_nonlinear,
            )
        linear = values[: self._n_linear]
        nonlinear = values[self._n_linear :]

        # Compare both segments in full before deciding.
        linear_same = np.array_equal(linear, self._evaluator.linear_parameters)
        nonlinear_same = np.array_equal(nonlinear, self._evaluator.nonlinear_parameters)
        self._dirty = not (linear_same and nonlinear_same)

        if self._dirty:
            logger.debug("Objective moved to new parameters %s", values.tolist())
            self._evaluator.set_linear_parameters(linear)
            self._evaluator.set_nonlinear_parameters(nonlinear)

    def residual(self, params: ArrayLike) -> NDArray[np.float64]:
        """Whitened residual ``weighted_data - model_image`` at ``params``."""
        self._sync(params)
        result: NDArray[np.float64] = self._measured - self._evaluator.compute_model_image()
        return result

    def value(self, params: ArrayLike) -> float:
        residual = self.residual(params)
        return 0.5 * float(residual @ residual)

    def gradient(self, params: ArrayLike) -> NDArray[np.float64]:
        residual = self.residual(params)
        lpd = self._evaluator.compute_linear_parameter_derivative()
        npd = self._evaluator.compute_nonlinear_parameter_derivative()
        return np.concatenate([-(lpd.T @ residual), -(npd.T @ residual)])

    def __call__(self, params: ArrayLike) -> float:
        return self.value(params)
