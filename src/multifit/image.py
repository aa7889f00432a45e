"""Exposure representation consumed by the model evaluator.

An exposure bundles one image with its per-pixel variance, an integer mask
plane, the PSF and the coordinate mapping that place a model onto its pixel
grid. Image I/O is out of scope: callers build exposures from arrays.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np
from numpy.typing import NDArray

from multifit.errors import InvalidParameterError
from multifit.footprint import BoundingBox, Footprint
from multifit.psf import Psf
from multifit.wcs import CoordinateMapping

__all__ = [
    "BAD_PIXEL_PLANES",
    "DEFAULT_MASK_PLANES",
    "Exposure",
]

# Bit index of each named mask plane
DEFAULT_MASK_PLANES: dict[str, int] = {
    "BAD": 0,
    "SAT": 1,
    "INTRP": 2,
    "CR": 3,
    "EDGE": 4,
    "DETECTED": 5,
}

# Planes whose pixels never contribute to a fit
BAD_PIXEL_PLANES: tuple[str, ...] = ("BAD", "INTRP", "SAT", "CR", "EDGE")


@dataclass(eq=False)
class Exposure:
    """One image of the sky together with its noise, mask, PSF and mapping.

    Attributes:
        image: 2D pixel values, shape (height, width).
        variance: 2D per-pixel variance, same shape as ``image``.
        psf: Point-spread function of this exposure.
        wcs: Mapping from the reference frame to this exposure's pixels.
        mask: 2D integer mask plane; all zeros when omitted.
        xy0: Parent coordinates (x, y) of ``image[0, 0]``.
        mask_planes: Bit index of each named mask plane.
    """

    image: NDArray[np.floating[Any]]
    variance: NDArray[np.floating[Any]]
    psf: Psf
    wcs: CoordinateMapping
    mask: NDArray[np.integer[Any]] | None = None
    xy0: tuple[int, int] = (0, 0)
    mask_planes: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_MASK_PLANES))

    def __post_init__(self) -> None:
        self.image = np.asarray(self.image, dtype=np.float64)
        self.variance = np.asarray(self.variance, dtype=np.float64)
        if self.image.ndim != 2:
            raise InvalidParameterError(
                f"image must be 2D, got {self.image.ndim} dimensions", shape=list(self.image.shape)
            )
        if self.variance.shape != self.image.shape:
            raise InvalidParameterError(
                "variance shape does not match image shape",
                image_shape=list(self.image.shape),
                variance_shape=list(self.variance.shape),
            )
        if self.mask is None:
            self.mask = np.zeros(self.image.shape, dtype=np.int32)
        else:
            self.mask = np.asarray(self.mask)
            if self.mask.shape != self.image.shape:
                raise InvalidParameterError(
                    "mask shape does not match image shape",
                    image_shape=list(self.image.shape),
                    mask_shape=list(self.mask.shape),
                )
        self.xy0 = (int(self.xy0[0]), int(self.xy0[1]))

    @property
    def bbox(self) -> BoundingBox:
        height, width = self.image.shape
        return BoundingBox(self.xy0[0], self.xy0[1], width, height)

    def get_plane_bitmask(self, *names: str) -> int:
        """Return the OR of the bits of the named mask planes."""
        bitmask = 0
        for name in names:
            if name not in self.mask_planes:
                raise InvalidParameterError(
                    f"Unknown mask plane: {name}", known=sorted(self.mask_planes)
                )
            bitmask |= 1 << self.mask_planes[name]
        return bitmask

    def usable_variance(self) -> NDArray[np.bool_]:
        """Pixels whose variance is finite and positive (i.e. can be whitened)."""
        result: NDArray[np.bool_] = np.isfinite(self.variance) & (self.variance > 0)
        return result

    def compress(
        self,
        footprint: Footprint,
        data_out: NDArray[np.float64],
        variance_out: NDArray[np.float64],
    ) -> None:
        """Copy the footprint's image and variance pixels into flat destinations.

        Args:
            footprint: Footprint lying entirely inside this exposure.
            data_out: Destination for image values, length ``footprint.npix``.
            variance_out: Destination for variance values, same length.

        Raises:
            InvalidParameterError: If a destination has the wrong length or the
                footprint leaves the exposure's bounding box.
        """
        npix = footprint.npix
        if data_out.shape != (npix,) or variance_out.shape != (npix,):
            raise InvalidParameterError(
                "compress destinations must match the footprint size",
                npix=npix,
                data_shape=list(data_out.shape),
                variance_shape=list(variance_out.shape),
            )
        box = self.bbox
        cols = footprint.xs - box.x0
        rows = footprint.ys - box.y0
        if npix and (
            cols.min() < 0 or rows.min() < 0 or cols.max() >= box.width or rows.max() >= box.height
        ):
            raise InvalidParameterError(
                "footprint extends beyond the exposure", bbox=[box.x0, box.y0, box.x1, box.y1]
            )
        data_out[:] = self.image[rows, cols]
        variance_out[:] = self.variance[rows, cols]
