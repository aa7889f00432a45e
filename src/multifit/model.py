"""Abstract model interface consumed by the evaluator.

A model holds two parameter segments: linear parameters (fluxes, which enter
the model image linearly) and nonlinear parameters (position and shape). The
segment sizes are fixed when the model is created. Concrete shapes implement
the projection capability: compute a footprint on an exposure and build a
:class:`~multifit.projection.ModelProjection` bound to it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray

from multifit.errors import InvalidParameterError
from multifit.footprint import Footprint
from multifit.projection import ModelProjection
from multifit.psf import Psf
from multifit.wcs import CoordinateMapping

__all__ = ["Model"]


def _as_segment(values: ArrayLike, size: int | None, label: str) -> NDArray[np.float64]:
    array = np.array(values, dtype=np.float64, copy=True)
    if array.ndim != 1:
        array = array.ravel()
    if size is not None and array.size != size:
        raise InvalidParameterError(
            f"{label} parameter vector has length {array.size}, expected {size}",
            segment=label,
            length=int(array.size),
            expected=size,
        )
    return array


class Model(ABC):
    """Base class for models with linear and nonlinear parameter segments.

    Args:
        linear_parameters: Initial linear parameter values.
        nonlinear_parameters: Initial nonlinear parameter values.
    """

    linear_parameter_names: tuple[str, ...] = ()
    nonlinear_parameter_names: tuple[str, ...] = ()

    def __init__(self, linear_parameters: ArrayLike, nonlinear_parameters: ArrayLike) -> None:
        linear_size = len(self.linear_parameter_names) or None
        nonlinear_size = len(self.nonlinear_parameter_names) or None
        self._linear = _as_segment(linear_parameters, linear_size, "linear")
        self._nonlinear = _as_segment(nonlinear_parameters, nonlinear_size, "nonlinear")
        self._revision = 0

    @property
    def revision(self) -> int:
        """Counter bumped by every parameter setter; caches compare against it."""
        return self._revision

    @property
    def linear_parameter_size(self) -> int:
        return int(self._linear.size)

    @property
    def nonlinear_parameter_size(self) -> int:
        return int(self._nonlinear.size)

    @property
    def linear_parameters(self) -> NDArray[np.float64]:
        """Read-only view of the current linear parameters."""
        view = self._linear.view()
        view.flags.writeable = False
        return view

    @property
    def nonlinear_parameters(self) -> NDArray[np.float64]:
        """Read-only view of the current nonlinear parameters."""
        view = self._nonlinear.view()
        view.flags.writeable = False
        return view

    def parameter_names(self) -> list[str]:
        """Names of the concatenated [linear..., nonlinear...] parameter vector."""
        linear: Sequence[str] = self.linear_parameter_names or [
            f"linear_{i}" for i in range(self.linear_parameter_size)
        ]
        nonlinear: Sequence[str] = self.nonlinear_parameter_names or [
            f"nonlinear_{i}" for i in range(self.nonlinear_parameter_size)
        ]
        return [*linear, *nonlinear]

    def set_linear_parameters(self, values: ArrayLike) -> None:
        self._linear[:] = _as_segment(values, self.linear_parameter_size, "linear")
        self._revision += 1

    def set_nonlinear_parameters(self, values: ArrayLike) -> None:
        self._nonlinear[:] = _as_segment(values, self.nonlinear_parameter_size, "nonlinear")
        self._revision += 1

    @abstractmethod
    def compute_projection_footprint(self, psf: Psf, wcs: CoordinateMapping) -> Footprint:
        """Pixels of an exposure (described by ``psf`` and ``wcs``) the model can touch."""

    @abstractmethod
    def make_projection(
        self, psf: Psf, wcs: CoordinateMapping, footprint: Footprint
    ) -> ModelProjection:
        """Build the projection of this model restricted to ``footprint``."""

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(linear={self._linear.tolist()}, "
            f"nonlinear={self._nonlinear.tolist()})"
        )
