"""Concrete source models: point sources and circular Gaussian sources.

Both shapes are rendered as a 2D Gaussian in pixel space whose covariance is
the PSF's second-moment matrix plus the source's intrinsic covariance mapped
through the exposure's coordinate Jacobian:

    C = P + r^2 * J J^T        (r = 0 for a point source)
    model(p) = flux * N(p - c; C),    c = wcs.sky_to_pixel(x, y)

so every derivative is analytic:

    d model / d flux  = N
    d model / d c     = flux * N * C^-1 (p - c)
    d model / d (x,y) = J^T (d model / d c)
    d model / d r     = flux * N * r * (w^T M w - tr(C^-1 M)),  w = C^-1 (p - c), M = J J^T

The Jacobian is treated as locally constant over the footprint.
"""

from __future__ import annotations

import math

import numpy as np
from numpy.typing import ArrayLike, NDArray

from multifit.footprint import BoundingBox, Footprint
from multifit.model import Model
from multifit.projection import ModelProjection
from multifit.psf import Psf, gaussian_profile
from multifit.wcs import CoordinateMapping

__all__ = [
    "GaussianProjection",
    "GaussianSourceModel",
    "PointSourceModel",
]


class _GaussianShapeModel(Model):
    """Shared machinery for models rendered as a PSF-convolved Gaussian.

    Args:
        flux: Total flux (the single linear parameter).
        x: Reference-frame x of the centre.
        y: Reference-frame y of the centre.
        footprint_nsigma: Half-size of the projected footprint, in units of
            the convolved profile's standard deviation along each axis.
    """

    linear_parameter_names = ("flux",)

    def __init__(
        self,
        linear_parameters: ArrayLike,
        nonlinear_parameters: ArrayLike,
        *,
        footprint_nsigma: float = 4.0,
    ) -> None:
        if footprint_nsigma <= 0:
            raise ValueError(f"footprint_nsigma must be positive, got {footprint_nsigma}")
        super().__init__(linear_parameters, nonlinear_parameters)
        self.footprint_nsigma = float(footprint_nsigma)

    @property
    def flux(self) -> float:
        return float(self._linear[0])

    @property
    def center(self) -> tuple[float, float]:
        return (float(self._nonlinear[0]), float(self._nonlinear[1]))

    def intrinsic_covariance(
        self, jacobian: NDArray[np.float64]
    ) -> tuple[NDArray[np.float64], list[NDArray[np.float64]]]:
        """Pixel-space intrinsic covariance and its derivative per shape parameter."""
        return np.zeros((2, 2)), []

    def convolved_covariance(self, psf: Psf, jacobian: NDArray[np.float64]) -> NDArray[np.float64]:
        intrinsic, _ = self.intrinsic_covariance(jacobian)
        result: NDArray[np.float64] = np.asarray(psf.covariance(), dtype=np.float64) + intrinsic
        return result

    def compute_projection_footprint(self, psf: Psf, wcs: CoordinateMapping) -> Footprint:
        x, y = self.center
        cx, cy = wcs.sky_to_pixel(x, y)
        covariance = self.convolved_covariance(psf, wcs.jacobian(x, y))
        half_x = math.ceil(self.footprint_nsigma * math.sqrt(covariance[0, 0]))
        half_y = math.ceil(self.footprint_nsigma * math.sqrt(covariance[1, 1]))
        ix = int(round(cx))
        iy = int(round(cy))
        box = BoundingBox.from_corners(ix - half_x, iy - half_y, ix + half_x + 1, iy + half_y + 1)
        return Footprint.from_box(box)

    def make_projection(
        self, psf: Psf, wcs: CoordinateMapping, footprint: Footprint
    ) -> GaussianProjection:
        return GaussianProjection(self, psf, wcs, footprint)


class PointSourceModel(_GaussianShapeModel):
    """Unresolved source: flux and position only.

    Example:
        >>> model = PointSourceModel(flux=100.0, x=12.0, y=8.5)
        >>> model.parameter_names()
        ['flux', 'x', 'y']
    """

    nonlinear_parameter_names = ("x", "y")

    def __init__(self, flux: float, x: float, y: float, *, footprint_nsigma: float = 4.0) -> None:
        super().__init__([flux], [x, y], footprint_nsigma=footprint_nsigma)


class GaussianSourceModel(_GaussianShapeModel):
    """Circular Gaussian source of standard deviation ``radius`` (reference-frame units)."""

    nonlinear_parameter_names = ("x", "y", "radius")

    def __init__(
        self,
        flux: float,
        x: float,
        y: float,
        radius: float,
        *,
        footprint_nsigma: float = 4.0,
    ) -> None:
        super().__init__([flux], [x, y, radius], footprint_nsigma=footprint_nsigma)

    @property
    def radius(self) -> float:
        return float(self._nonlinear[2])

    def intrinsic_covariance(
        self, jacobian: NDArray[np.float64]
    ) -> tuple[NDArray[np.float64], list[NDArray[np.float64]]]:
        metric = jacobian @ jacobian.T
        r = self.radius
        return r * r * metric, [2.0 * r * metric]


class GaussianProjection(ModelProjection):
    """Projection of a :class:`_GaussianShapeModel` onto one exposure."""

    def __init__(
        self,
        model: _GaussianShapeModel,
        psf: Psf,
        wcs: CoordinateMapping,
        footprint: Footprint,
    ) -> None:
        super().__init__(model, psf, wcs, footprint)
        self._shape_model = model
        self._px = footprint.xs.astype(np.float64)
        self._py = footprint.ys.astype(np.float64)

    def _profile(
        self,
    ) -> tuple[
        NDArray[np.float64],
        NDArray[np.float64],
        NDArray[np.float64],
        NDArray[np.float64],
        list[NDArray[np.float64]],
    ]:
        x, y = self._shape_model.center
        cx, cy = self.wcs.sky_to_pixel(x, y)
        jacobian = np.asarray(self.wcs.jacobian(x, y), dtype=np.float64)
        intrinsic, d_intrinsic = self._shape_model.intrinsic_covariance(jacobian)
        covariance = np.asarray(self.psf.covariance(), dtype=np.float64) + intrinsic
        offsets = np.vstack([self._px - cx, self._py - cy])
        profile = gaussian_profile(offsets[0], offsets[1], covariance)
        weighted = np.linalg.solve(covariance, offsets)
        return profile, weighted, covariance, jacobian, d_intrinsic

    def _compute_model_image(self, out: NDArray[np.float64]) -> None:
        profile, *_ = self._profile()
        out[:] = self._shape_model.flux * profile

    def _compute_linear_parameter_derivative(self, out: NDArray[np.float64]) -> None:
        profile, *_ = self._profile()
        out[0, :] = profile

    def _compute_nonlinear_parameter_derivative(self, out: NDArray[np.float64]) -> None:
        profile, weighted, covariance, jacobian, d_intrinsic = self._profile()
        scaled = self._shape_model.flux * profile
        out[0:2, :] = jacobian.T @ (scaled * weighted)
        inverse = np.linalg.inv(covariance)
        for k, d_cov in enumerate(d_intrinsic):
            quadratic = np.einsum("ip,ij,jp->p", weighted, d_cov, weighted)
            out[2 + k, :] = 0.5 * scaled * (quadratic - np.trace(inverse @ d_cov))
