from __future__ import annotations

import pytest

from multifit.image import Exposure
from tests.fixtures.synthetic_exposures import FlatModel, make_exposure


@pytest.fixture
def flat_model() -> FlatModel:
    return FlatModel(flux=0.0)


@pytest.fixture
def three_pixel_exposure() -> Exposure:
    """Single exposure of 3 pixels with data [1, 2, 3] and unit variance."""
    return make_exposure([[1.0, 2.0, 3.0]], [[1.0, 1.0, 1.0]])
