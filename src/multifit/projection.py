"""Realization of a model on one exposure's pixel grid.

A projection owns the footprint of contributing pixels of one exposure and
non-owning views into the evaluator's shared buffers: a slice of the model
image, and a column block of each derivative matrix. Subclasses only fill
those views; buffer layout and frame bookkeeping live here.

CRITICAL: buffer views are only valid for one exposure-list binding. The
evaluator rebinds every projection it creates whenever its exposure list is
replaced; a projection must not be used after that.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import numpy as np
from numpy.typing import NDArray

from multifit.errors import InvalidParameterError
from multifit.footprint import Footprint
from multifit.psf import Psf
from multifit.wcs import CoordinateMapping

if TYPE_CHECKING:
    from multifit.model import Model

__all__ = ["ModelProjection"]


class ModelProjection(ABC):
    """Base class for per-exposure model projections.

    Parameters
    ----------
    model : Model
        The model being projected. Parameters are read from it at compute time.
    psf : Psf
        The exposure's point-spread function.
    wcs : CoordinateMapping
        Mapping from the model's reference frame to the exposure's pixels.
    footprint : Footprint
        Contributing pixels, already clipped and masked.

    Attributes
    ----------
    pixel_offset : int
        Start of this projection's slice in the shared buffers.
    frame_index : int
        Position among the accepted exposures, -1 until bound.
    exposure_index : int
        Position in the exposure list given to the evaluator, -1 until bound.
    extra : dict[str, Any]
        Per-projection payload owned by the projection, for callers that need
        to attach their own bookkeeping to a frame.
    """

    def __init__(self, model: Model, psf: Psf, wcs: CoordinateMapping, footprint: Footprint) -> None:
        self._model = model
        self.psf = psf
        self.wcs = wcs
        self._footprint = footprint
        self.pixel_offset = 0
        self.frame_index = -1
        self.exposure_index = -1
        self.extra: dict[str, Any] = {}
        self._model_image: NDArray[np.float64] | None = None
        self._linear_derivative: NDArray[np.float64] | None = None
        self._nonlinear_derivative: NDArray[np.float64] | None = None
        self._sigma: NDArray[np.float64] | None = None

    @property
    def model(self) -> Model:
        return self._model

    @property
    def footprint(self) -> Footprint:
        return self._footprint

    @property
    def pixel_count(self) -> int:
        return self._footprint.npix

    @property
    def pixel_slice(self) -> slice:
        return slice(self.pixel_offset, self.pixel_offset + self.pixel_count)

    @property
    def linear_parameter_size(self) -> int:
        return self._model.linear_parameter_size

    @property
    def nonlinear_parameter_size(self) -> int:
        return self._model.nonlinear_parameter_size

    # ------------------------------------------------------------------
    # Buffer binding
    # ------------------------------------------------------------------

    def bind_frame(self, pixel_offset: int, frame_index: int, exposure_index: int) -> None:
        self.pixel_offset = int(pixel_offset)
        self.frame_index = int(frame_index)
        self.exposure_index = int(exposure_index)

    def set_model_image_buffer(self, buffer: NDArray[np.float64]) -> None:
        self._model_image = self._check_buffer(buffer, (self.pixel_count,), "model image")

    def set_linear_parameter_derivative_buffer(self, buffer: NDArray[np.float64]) -> None:
        self._linear_derivative = self._check_buffer(
            buffer, (self.linear_parameter_size, self.pixel_count), "linear derivative"
        )

    def set_nonlinear_parameter_derivative_buffer(self, buffer: NDArray[np.float64]) -> None:
        self._nonlinear_derivative = self._check_buffer(
            buffer, (self.nonlinear_parameter_size, self.pixel_count), "nonlinear derivative"
        )

    def set_sigma_buffer(self, buffer: NDArray[np.float64]) -> None:
        self._sigma = self._check_buffer(buffer, (self.pixel_count,), "sigma")

    @staticmethod
    def _check_buffer(
        buffer: NDArray[np.float64], shape: tuple[int, ...], label: str
    ) -> NDArray[np.float64]:
        if buffer.shape != shape:
            raise InvalidParameterError(
                f"{label} buffer has shape {buffer.shape}, expected {shape}",
                label=label,
                shape=list(buffer.shape),
                expected=list(shape),
            )
        return buffer

    @staticmethod
    def _require(buffer: NDArray[np.float64] | None, label: str) -> NDArray[np.float64]:
        if buffer is None:
            raise RuntimeError(f"{label} buffer has not been assigned to this projection")
        return buffer

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def compute_model_image(self) -> NDArray[np.float64]:
        """Recompute the model image into this projection's buffer slice."""
        out = self._require(self._model_image, "model image")
        self._compute_model_image(out)
        return out

    def compute_linear_parameter_derivative(self) -> NDArray[np.float64]:
        """Recompute d(model)/d(linear) into this projection's (nLinear, nPix) block."""
        out = self._require(self._linear_derivative, "linear derivative")
        self._compute_linear_parameter_derivative(out)
        return out

    def compute_nonlinear_parameter_derivative(self) -> NDArray[np.float64]:
        """Recompute d(model)/d(nonlinear) into this projection's (nNonlinear, nPix) block."""
        out = self._require(self._nonlinear_derivative, "nonlinear derivative")
        self._compute_nonlinear_parameter_derivative(out)
        return out

    def apply_weights(self, array: NDArray[np.float64]) -> NDArray[np.float64]:
        """Divide a vector or (n, nPix) matrix over this frame's pixels by sigma, in place."""
        sigma = self._require(self._sigma, "sigma")
        if array.shape[-1] != self.pixel_count:
            raise InvalidParameterError(
                f"array has {array.shape[-1]} pixels, projection has {self.pixel_count}",
                shape=list(array.shape),
            )
        array /= sigma
        return array

    @abstractmethod
    def _compute_model_image(self, out: NDArray[np.float64]) -> None: ...

    @abstractmethod
    def _compute_linear_parameter_derivative(self, out: NDArray[np.float64]) -> None: ...

    @abstractmethod
    def _compute_nonlinear_parameter_derivative(self, out: NDArray[np.float64]) -> None: ...

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(frame_index={self.frame_index}, "
            f"exposure_index={self.exposure_index}, pixel_offset={self.pixel_offset}, "
            f"pixel_count={self.pixel_count})"
        )
