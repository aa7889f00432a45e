"""Tests for the Exposure container."""

from __future__ import annotations

import numpy as np
import pytest
from numpy.testing import assert_array_equal

from multifit.errors import InvalidParameterError
from multifit.footprint import BoundingBox, Footprint
from multifit.image import BAD_PIXEL_PLANES, DEFAULT_MASK_PLANES, Exposure
from multifit.psf import GaussianPsf
from multifit.wcs import AffineWcs


def _exposure(**kwargs) -> Exposure:
    image = np.arange(12, dtype=float).reshape(3, 4)
    defaults = dict(
        image=image,
        variance=image + 1.0,
        psf=GaussianPsf(),
        wcs=AffineWcs(),
    )
    defaults.update(kwargs)
    return Exposure(**defaults)


class TestExposure:
    def test_default_mask_is_zero(self) -> None:
        exposure = _exposure()
        assert exposure.mask.shape == (3, 4)
        assert not exposure.mask.any()

    def test_bbox_uses_xy0(self) -> None:
        assert _exposure(xy0=(10, 20)).bbox == BoundingBox(10, 20, 4, 3)

    def test_shape_mismatch(self) -> None:
        with pytest.raises(InvalidParameterError):
            _exposure(variance=np.ones((2, 2)))
        with pytest.raises(InvalidParameterError):
            _exposure(mask=np.zeros((3, 3), dtype=int))

    def test_image_must_be_2d(self) -> None:
        with pytest.raises(InvalidParameterError):
            _exposure(image=np.ones(4), variance=np.ones(4))

    def test_plane_bitmask(self) -> None:
        exposure = _exposure()
        expected = 0
        for name in BAD_PIXEL_PLANES:
            expected |= 1 << DEFAULT_MASK_PLANES[name]
        assert exposure.get_plane_bitmask(*BAD_PIXEL_PLANES) == expected
        assert exposure.get_plane_bitmask("DETECTED") & expected == 0

    def test_unknown_plane(self) -> None:
        with pytest.raises(InvalidParameterError):
            _exposure().get_plane_bitmask("NOT_A_PLANE")

    def test_usable_variance(self) -> None:
        variance = np.ones((3, 4))
        variance[0, 0] = 0.0
        variance[1, 1] = np.nan
        variance[2, 2] = -1.0
        usable = _exposure(variance=variance).usable_variance()
        assert usable.sum() == 9
        assert not usable[0, 0] and not usable[1, 1] and not usable[2, 2]


class TestCompress:
    def test_copies_pixels_in_footprint_order(self) -> None:
        exposure = _exposure(xy0=(5, 7))
        fp = Footprint(xs=[8, 5, 6], ys=[9, 7, 8])
        data = np.zeros(3)
        variance = np.zeros(3)
        exposure.compress(fp, data, variance)
        assert_array_equal(data, [11.0, 0.0, 5.0])
        assert_array_equal(variance, [12.0, 1.0, 6.0])

    def test_writes_into_views(self) -> None:
        exposure = _exposure()
        buffer = np.zeros(10)
        var_buffer = np.zeros(10)
        fp = Footprint.from_box(BoundingBox(0, 0, 2, 1))
        exposure.compress(fp, buffer[3:5], var_buffer[3:5])
        assert_array_equal(buffer, [0, 0, 0, 0, 1, 0, 0, 0, 0, 0])

    def test_wrong_destination_length(self) -> None:
        fp = Footprint.from_box(BoundingBox(0, 0, 2, 1))
        with pytest.raises(InvalidParameterError):
            _exposure().compress(fp, np.zeros(3), np.zeros(2))

    def test_footprint_outside(self) -> None:
        fp = Footprint(xs=[10], ys=[0])
        with pytest.raises(InvalidParameterError):
            _exposure().compress(fp, np.zeros(1), np.zeros(1))
