"""Point-spread function interface and the elliptical Gaussian implementation.

PSF modelling is an input to the fitting engine: a model only needs the PSF
to report its second moments so that it can be convolved analytically, and
to evaluate itself at pixel offsets for diagnostics.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import numpy as np
from numpy.typing import NDArray

__all__ = [
    "GaussianPsf",
    "Psf",
    "gaussian_profile",
]


@runtime_checkable
class Psf(Protocol):
    """Protocol for point-spread functions consumed by the source models."""

    def covariance(self) -> NDArray[np.float64]:
        """Return the 2x2 second-moment matrix in pixel units, (x, y) order."""
        ...

    def evaluate(self, dx: NDArray[np.float64], dy: NDArray[np.float64]) -> NDArray[np.float64]:
        """Evaluate the unit-flux PSF at pixel offsets from its centre."""
        ...


@dataclass(frozen=True)
class GaussianPsf:
    """Elliptical Gaussian PSF.

    Parameters
    ----------
    sigma_x : float
        Standard deviation along the principal axis closest to x (pixels).
    sigma_y : float
        Standard deviation along the other principal axis (pixels).
    theta : float
        Rotation of the principal axes, radians counter-clockwise from x.
    """

    sigma_x: float = 1.5
    sigma_y: float = 1.5
    theta: float = 0.0

    def __post_init__(self) -> None:
        if self.sigma_x <= 0:
            raise ValueError(f"sigma_x must be positive, got {self.sigma_x}")
        if self.sigma_y <= 0:
            raise ValueError(f"sigma_y must be positive, got {self.sigma_y}")

    @property
    def is_isotropic(self) -> bool:
        return bool(np.isclose(self.sigma_x, self.sigma_y))

    def covariance(self) -> NDArray[np.float64]:
        cos_theta = np.cos(self.theta)
        sin_theta = np.sin(self.theta)
        rotation = np.array([[cos_theta, -sin_theta], [sin_theta, cos_theta]])
        principal = np.diag([self.sigma_x**2, self.sigma_y**2])
        result: NDArray[np.float64] = rotation @ principal @ rotation.T
        return result

    def evaluate(self, dx: NDArray[np.float64], dy: NDArray[np.float64]) -> NDArray[np.float64]:
        return gaussian_profile(np.asarray(dx, float), np.asarray(dy, float), self.covariance())


def gaussian_profile(
    dx: NDArray[np.float64],
    dy: NDArray[np.float64],
    covariance: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Unit-flux 2D Gaussian with the given covariance, sampled at offsets."""
    inverse = np.linalg.inv(covariance)
    det = float(np.linalg.det(covariance))
    exponent = inverse[0, 0] * dx * dx + 2.0 * inverse[0, 1] * dx * dy + inverse[1, 1] * dy * dy
    result: NDArray[np.float64] = np.exp(-0.5 * exponent) / (2.0 * np.pi * np.sqrt(det))
    return result
