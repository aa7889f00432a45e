"""Model evaluation across multiple exposures.

The evaluator binds one model to a list of exposures and exposes the whitened
quantities a chi-square fit needs, all packed into flat buffers whose pixels
are the concatenation of every accepted exposure's footprint:

- weighted data, ``data / sigma`` with ``sigma = sqrt(variance)``
- model image, ``model / sigma``
- linear and nonlinear parameter derivatives, ``d model / d p / sigma``,
  as (n_pixels, n_parameters) matrices

Derived products are computed on demand and cached; a validity flag per
product records whether the cache matches the current parameters. Any
parameter change clears every flag.

Typical use:
    evaluator = ModelEvaluator(model, exposures, n_min_pix=10)
    chisq = 0.5 * np.sum((evaluator.weighted_data - evaluator.compute_model_image()) ** 2)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from enum import Flag, auto
from typing import Any

import numpy as np
from numpy.typing import ArrayLike, NDArray

from multifit.config import EvaluatorConfig
from multifit.errors import InvalidParameterError
from multifit.footprint import clip_and_mask_footprint
from multifit.image import BAD_PIXEL_PLANES, Exposure
from multifit.model import Model
from multifit.projection import ModelProjection

logger = logging.getLogger(__name__)

__all__ = [
    "ModelEvaluator",
    "Product",
]


class Product(Flag):
    """Validity bits of the evaluator's derived products."""

    NONE = 0
    MODEL_IMAGE = auto()
    LINEAR_PARAMETER_DERIVATIVE = auto()
    NONLINEAR_PARAMETER_DERIVATIVE = auto()


def _read_only(array: NDArray[np.float64]) -> NDArray[np.float64]:
    array.flags.writeable = False
    return array


class ModelEvaluator:
    """Evaluate a model, its residuals and derivatives over many exposures.

    Args:
        model: The model to evaluate. The evaluator mutates its parameters.
        exposure_list: Optional exposures to bind immediately; see
            :meth:`set_exposure_list`.
        n_min_pix: Exposures whose masked footprint has no more than this many
            pixels are rejected. Overrides ``policy`` when given.
        policy: Policy mapping read through :class:`EvaluatorConfig`.
    """

    def __init__(
        self,
        model: Model,
        exposure_list: Iterable[Exposure] | None = None,
        *,
        n_min_pix: int | None = None,
        policy: Mapping[str, Any] | None = None,
    ) -> None:
        self._model = model
        self._n_min_pix = EvaluatorConfig.from_policy(policy).n_min_pix
        if n_min_pix is not None:
            self.n_min_pix = n_min_pix

        self._projection_list: list[ModelProjection] = []
        self._allocate(0)

        if exposure_list is not None:
            self.set_exposure_list(exposure_list)

    # ------------------------------------------------------------------
    # Exposure binding
    # ------------------------------------------------------------------

    def set_exposure_list(self, exposure_list: Iterable[Exposure]) -> None:
        """Bind the exposures used to evaluate the model.

        This resets the evaluator completely. For each exposure the model's
        projection footprint is clipped to the exposure and masked against the
        BAD, INTRP, SAT, CR and EDGE planes (and unusable variance). Exposures
        keeping more than :attr:`n_min_pix` pixels get a projection, in input
        order; the others are ignored.

        Data and variance vectors are the concatenation of the contributing
        pixels of each projection, and each projection is assigned the matching
        contiguous slice of the shared buffers.

        Must not be called while a fit is using this evaluator.
        """
        exposures = list(exposure_list)
        model = self._model

        accepted: list[tuple[int, Exposure, ModelProjection]] = []
        for index, exposure in enumerate(exposures):
            bitmask = exposure.get_plane_bitmask(*BAD_PIXEL_PLANES)
            projection_fp = model.compute_projection_footprint(exposure.psf, exposure.wcs)
            fixed_fp = clip_and_mask_footprint(
                projection_fp,
                exposure.mask,
                bitmask,
                xy0=exposure.xy0,
                valid=exposure.usable_variance(),
            )
            keep = fixed_fp.npix > self._n_min_pix
            logger.debug(
                "Exposure %d: %d projected pixels, %d after masking (%s)",
                index,
                projection_fp.npix,
                fixed_fp.npix,
                "accepted" if keep else "rejected",
            )
            if keep:
                projection = model.make_projection(exposure.psf, exposure.wcs, fixed_fp)
                accepted.append((index, exposure, projection))

        pix_sum = sum(projection.pixel_count for _, _, projection in accepted)
        # Fill fresh buffers first; the evaluator only switches over once every
        # exposure has been compressed and bound.
        data = np.zeros(pix_sum)
        variance = np.zeros(pix_sum)
        model_image = np.zeros(pix_sum)
        linear_derivative = np.zeros((self.linear_parameter_size, pix_sum))
        nonlinear_derivative = np.zeros((self.nonlinear_parameter_size, pix_sum))

        pixel_start = 0
        for frame_index, (exposure_index, exposure, projection) in enumerate(accepted):
            pixel_end = pixel_start + projection.pixel_count
            exposure.compress(
                projection.footprint,
                data[pixel_start:pixel_end],
                variance[pixel_start:pixel_end],
            )
            projection.bind_frame(pixel_start, frame_index, exposure_index)
            projection.set_model_image_buffer(model_image[pixel_start:pixel_end])
            projection.set_linear_parameter_derivative_buffer(
                linear_derivative[:, pixel_start:pixel_end]
            )
            projection.set_nonlinear_parameter_derivative_buffer(
                nonlinear_derivative[:, pixel_start:pixel_end]
            )
            pixel_start = pixel_end

        sigma = np.sqrt(variance)
        for _, _, projection in accepted:
            projection.set_sigma_buffer(sigma[projection.pixel_slice])

        self._install(data, variance, sigma, model_image, linear_derivative, nonlinear_derivative)
        self._projection_list = [projection for _, _, projection in accepted]

        if accepted:
            logger.info(
                "Bound %d of %d exposures, %d contributing pixels",
                len(accepted),
                len(exposures),
                pix_sum,
            )
        else:
            logger.warning(
                "No exposure has more than %d contributing pixels (%d exposures given)",
                self._n_min_pix,
                len(exposures),
            )

    def _allocate(self, n_pixels: int) -> None:
        self._install(
            np.zeros(n_pixels),
            np.zeros(n_pixels),
            np.zeros(n_pixels),
            np.zeros(n_pixels),
            np.zeros((self.linear_parameter_size, n_pixels)),
            np.zeros((self.nonlinear_parameter_size, n_pixels)),
        )

    def _install(
        self,
        data: NDArray[np.float64],
        variance: NDArray[np.float64],
        sigma: NDArray[np.float64],
        model_image: NDArray[np.float64],
        linear_derivative: NDArray[np.float64],
        nonlinear_derivative: NDArray[np.float64],
    ) -> None:
        self._data_vector = data
        self._variance_vector = variance
        self._sigma = _read_only(sigma)
        self._weighted_data = _read_only(data / self._sigma)
        self._model_image_buffer = model_image
        self._linear_derivative_buffer = linear_derivative
        self._nonlinear_derivative_buffer = nonlinear_derivative
        self._model_image: NDArray[np.float64] | None = None
        self._linear_derivative: NDArray[np.float64] | None = None
        self._nonlinear_derivative: NDArray[np.float64] | None = None
        self._valid_products = Product.NONE
        self._revision = self._model.revision

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def model(self) -> Model:
        return self._model

    @property
    def n_min_pix(self) -> int:
        return self._n_min_pix

    @n_min_pix.setter
    def n_min_pix(self, value: int) -> None:
        """Takes effect at the next :meth:`set_exposure_list`."""
        if int(value) != value or value < 0:
            raise InvalidParameterError(f"n_min_pix must be a non-negative integer, got {value}")
        self._n_min_pix = int(value)

    @property
    def n_pixels(self) -> int:
        return int(self._data_vector.size)

    @property
    def projection_list(self) -> tuple[ModelProjection, ...]:
        return tuple(self._projection_list)

    @property
    def linear_parameter_size(self) -> int:
        return self._model.linear_parameter_size

    @property
    def nonlinear_parameter_size(self) -> int:
        return self._model.nonlinear_parameter_size

    @property
    def linear_parameters(self) -> NDArray[np.float64]:
        return self._model.linear_parameters

    @property
    def nonlinear_parameters(self) -> NDArray[np.float64]:
        return self._model.nonlinear_parameters

    @property
    def data_vector(self) -> NDArray[np.float64]:
        return self._data_vector

    @property
    def variance_vector(self) -> NDArray[np.float64]:
        return self._variance_vector

    @property
    def sigma(self) -> NDArray[np.float64]:
        return self._sigma

    @property
    def weighted_data(self) -> NDArray[np.float64]:
        return self._weighted_data

    @property
    def valid_products(self) -> Product:
        self._check_revision()
        return self._valid_products

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    def set_linear_parameters(self, values: ArrayLike) -> None:
        self._model.set_linear_parameters(values)
        self.invalidate_products()

    def set_nonlinear_parameters(self, values: ArrayLike) -> None:
        self._model.set_nonlinear_parameters(values)
        self.invalidate_products()

    def invalidate_products(self) -> None:
        """Mark every derived product stale."""
        self._valid_products = Product.NONE

    def _check_revision(self) -> None:
        # The model may have been changed directly, bypassing the setters above.
        if self._model.revision != self._revision:
            self._valid_products = Product.NONE
            self._revision = self._model.revision

    # ------------------------------------------------------------------
    # Derived products
    # ------------------------------------------------------------------

    def compute_model_image(self) -> NDArray[np.float64]:
        """Whitened model image at every contributing pixel of every exposure."""
        self._check_revision()
        if self._model_image is None or not (self._valid_products & Product.MODEL_IMAGE):
            logger.debug("Recomputing model image over %d projections", len(self._projection_list))
            for projection in self._projection_list:
                projection.compute_model_image()
            self._model_image = _read_only(self._model_image_buffer / self._sigma)
            self._valid_products |= Product.MODEL_IMAGE
        return self._model_image

    def compute_linear_parameter_derivative(self) -> NDArray[np.float64]:
        """Whitened derivative of the model with respect to its linear parameters.

        Returns an (n_pixels, n_linear) matrix.
        """
        self._check_revision()
        if self._linear_derivative is None or not (
            self._valid_products & Product.LINEAR_PARAMETER_DERIVATIVE
        ):
            logger.debug("Recomputing linear parameter derivative")
            for projection in self._projection_list:
                projection.compute_linear_parameter_derivative()
            self._linear_derivative = _read_only(
                self._linear_derivative_buffer.T / self._sigma[:, np.newaxis]
            )
            self._valid_products |= Product.LINEAR_PARAMETER_DERIVATIVE
        return self._linear_derivative

    def compute_nonlinear_parameter_derivative(self) -> NDArray[np.float64]:
        """Whitened derivative of the model with respect to its nonlinear parameters.

        Returns an (n_pixels, n_nonlinear) matrix.
        """
        self._check_revision()
        if self._nonlinear_derivative is None or not (
            self._valid_products & Product.NONLINEAR_PARAMETER_DERIVATIVE
        ):
            logger.debug("Recomputing nonlinear parameter derivative")
            for projection in self._projection_list:
                projection.compute_nonlinear_parameter_derivative()
            self._nonlinear_derivative = _read_only(
                self._nonlinear_derivative_buffer.T / self._sigma[:, np.newaxis]
            )
            self._valid_products |= Product.NONLINEAR_PARAMETER_DERIVATIVE
        return self._nonlinear_derivative
