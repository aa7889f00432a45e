"""Coordinate mappings from the model's reference frame to exposure pixels.

Sources are positioned in a reference coordinate system shared by every
exposure (for example RA/Dec in degrees). Each exposure carries a mapping
from that system to its own pixel grid; the models only need the forward
transform and its Jacobian.

Usage:
    from multifit.wcs import AffineWcs, AstropyWcs

    mapping = AffineWcs.from_shift(dx=10.0, dy=-3.0)
    px, py = mapping.sky_to_pixel(1.0, 2.0)

    mapping = AstropyWcs(WCS(header))
    jac = mapping.jacobian(120.0, -50.0)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:
    from astropy.wcs import WCS

__all__ = [
    "AffineWcs",
    "AstropyWcs",
    "CoordinateMapping",
]


@runtime_checkable
class CoordinateMapping(Protocol):
    """Protocol for reference-frame to pixel transforms."""

    def sky_to_pixel(self, x: float, y: float) -> tuple[float, float]:
        """Return pixel (x, y) = (col, row) of the reference position (x, y)."""
        ...

    def jacobian(self, x: float, y: float) -> NDArray[np.float64]:
        """Return the 2x2 matrix d(pixel_x, pixel_y) / d(x, y) at (x, y)."""
        ...


class AffineWcs:
    """Linear mapping ``pixel = matrix @ (x, y) + offset``.

    Args:
        matrix: 2x2 linear part, defaults to identity.
        offset: Pixel position of the reference origin.
    """

    def __init__(
        self,
        matrix: NDArray[np.float64] | None = None,
        offset: tuple[float, float] = (0.0, 0.0),
    ) -> None:
        self.matrix = np.eye(2) if matrix is None else np.array(matrix, dtype=np.float64)
        if self.matrix.shape != (2, 2):
            raise ValueError(f"matrix must be 2x2, got shape {self.matrix.shape}")
        self.offset = np.array(offset, dtype=np.float64)

    @classmethod
    def from_shift(cls, dx: float = 0.0, dy: float = 0.0) -> AffineWcs:
        return cls(offset=(dx, dy))

    def sky_to_pixel(self, x: float, y: float) -> tuple[float, float]:
        px, py = self.matrix @ np.array([x, y], dtype=np.float64) + self.offset
        return (float(px), float(py))

    def jacobian(self, x: float, y: float) -> NDArray[np.float64]:
        return self.matrix.copy()

    def __repr__(self) -> str:
        return f"AffineWcs(matrix={self.matrix.tolist()}, offset={self.offset.tolist()})"


class AstropyWcs:
    """Adapter exposing an astropy WCS as a :class:`CoordinateMapping`.

    The reference coordinates are the WCS world coordinates (degrees for
    celestial frames). The Jacobian is a central finite difference with a
    step of ``step`` world units.

    Args:
        wcs: Astropy WCS object with two celestial axes.
        step: Finite-difference step in world units.
    """

    def __init__(self, wcs: WCS, step: float = 1e-6) -> None:
        if step <= 0:
            raise ValueError(f"step must be positive, got {step}")
        self.wcs = wcs
        self.step = float(step)

    def sky_to_pixel(self, x: float, y: float) -> tuple[float, float]:
        # all_world2pix returns (col, row) ordering with origin 0
        result = self.wcs.all_world2pix([[x, y]], 0)
        return (float(result[0, 0]), float(result[0, 1]))

    def jacobian(self, x: float, y: float) -> NDArray[np.float64]:
        h = self.step
        coords = np.array([[x + h, y], [x - h, y], [x, y + h], [x, y - h]])
        pix = self.wcs.all_world2pix(coords, 0)
        jac = np.empty((2, 2), dtype=np.float64)
        jac[:, 0] = (pix[0] - pix[1]) / (2.0 * h)
        jac[:, 1] = (pix[2] - pix[3]) / (2.0 * h)
        return jac
