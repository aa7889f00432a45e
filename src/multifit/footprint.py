"""Pixel footprints and bounding boxes.

A footprint is an ordered set of integer pixel positions, in the parent
coordinate system of the exposures (``x`` is the column, ``y`` is the row).
The order of a footprint is the order in which its pixels are packed into the
evaluator's flat buffers, so every operation here preserves row-major order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray

__all__ = [
    "BoundingBox",
    "Footprint",
    "clip_and_mask_footprint",
]


@dataclass(frozen=True)
class BoundingBox:
    """Inclusive-exclusive integer box ``[x0, x0 + width) x [y0, y0 + height)``."""

    x0: int
    y0: int
    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width < 0 or self.height < 0:
            raise ValueError(f"box dimensions must be non-negative, got {self.width}x{self.height}")

    @property
    def x1(self) -> int:
        return self.x0 + self.width

    @property
    def y1(self) -> int:
        return self.y0 + self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    @classmethod
    def from_corners(cls, x0: int, y0: int, x1: int, y1: int) -> BoundingBox:
        """Create from exclusive upper corners, clamping empty boxes to zero size."""
        return cls(x0=x0, y0=y0, width=max(0, x1 - x0), height=max(0, y1 - y0))

    def intersection(self, other: BoundingBox) -> BoundingBox:
        return BoundingBox.from_corners(
            max(self.x0, other.x0),
            max(self.y0, other.y0),
            min(self.x1, other.x1),
            min(self.y1, other.y1),
        )


@dataclass(frozen=True, eq=False)
class Footprint:
    """Ordered set of pixel positions.

    Attributes:
        xs: Column of each pixel (int64, parent coordinates).
        ys: Row of each pixel (int64, parent coordinates).
    """

    xs: NDArray[np.int64]
    ys: NDArray[np.int64]

    def __post_init__(self) -> None:
        xs = np.asarray(self.xs, dtype=np.int64).ravel()
        ys = np.asarray(self.ys, dtype=np.int64).ravel()
        if xs.shape != ys.shape:
            raise ValueError(f"xs and ys must have the same length, got {xs.size} and {ys.size}")
        xs.flags.writeable = False
        ys.flags.writeable = False
        object.__setattr__(self, "xs", xs)
        object.__setattr__(self, "ys", ys)

    @classmethod
    def from_box(cls, box: BoundingBox) -> Footprint:
        """Footprint covering every pixel of ``box`` in row-major order."""
        ys, xs = np.mgrid[box.y0 : box.y1, box.x0 : box.x1]
        return cls(xs=xs.ravel(), ys=ys.ravel())

    @classmethod
    def empty(cls) -> Footprint:
        return cls(xs=np.zeros(0, dtype=np.int64), ys=np.zeros(0, dtype=np.int64))

    @property
    def npix(self) -> int:
        return int(self.xs.size)

    @property
    def bbox(self) -> BoundingBox:
        if self.npix == 0:
            return BoundingBox(0, 0, 0, 0)
        return BoundingBox.from_corners(
            int(self.xs.min()), int(self.ys.min()), int(self.xs.max()) + 1, int(self.ys.max()) + 1
        )

    def select(self, keep: NDArray[np.bool_]) -> Footprint:
        """Return the sub-footprint where ``keep`` is True, order preserved."""
        return Footprint(xs=self.xs[keep], ys=self.ys[keep])

    def __len__(self) -> int:
        return self.npix

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Footprint):
            return NotImplemented
        return bool(np.array_equal(self.xs, other.xs) and np.array_equal(self.ys, other.ys))

    __hash__ = None  # type: ignore[assignment]


def clip_and_mask_footprint(
    footprint: Footprint,
    mask: NDArray[np.integer[Any]],
    bitmask: int,
    *,
    xy0: tuple[int, int] = (0, 0),
    valid: NDArray[np.bool_] | None = None,
) -> Footprint:
    """Restrict a footprint to usable pixels of one exposure.

    Pixels are dropped when they fall outside the mask's bounding box, when
    any bit of ``bitmask`` is set in ``mask``, or when ``valid`` is given and
    False at that pixel.

    Args:
        footprint: Footprint in parent coordinates.
        mask: 2D integer mask plane, shape (height, width).
        bitmask: OR of the mask plane bits that reject a pixel.
        xy0: Parent coordinates (x, y) of ``mask[0, 0]``.
        valid: Optional boolean array with the shape of ``mask``.

    Returns:
        A new footprint, order preserved.
    """
    height, width = mask.shape
    box = BoundingBox(int(xy0[0]), int(xy0[1]), width, height)
    inside = (
        (footprint.xs >= box.x0)
        & (footprint.xs < box.x1)
        & (footprint.ys >= box.y0)
        & (footprint.ys < box.y1)
    )
    clipped = footprint.select(inside)

    cols = clipped.xs - box.x0
    rows = clipped.ys - box.y0
    keep = (mask[rows, cols].astype(np.int64) & int(bitmask)) == 0
    if valid is not None:
        keep &= np.asarray(valid, dtype=bool)[rows, cols]
    return clipped.select(keep)
