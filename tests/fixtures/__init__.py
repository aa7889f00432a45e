"""Synthetic fixtures for evaluator and fitter tests.

Generators:
- make_exposure: Exposure from plain arrays with a default PSF and mapping
- render_point_source: Noise-free or noisy image of a point source
- FlatModel: One-parameter model with a fixed box footprint that counts recomputations
"""

from __future__ import annotations

from tests.fixtures.synthetic_exposures import (
    FlatModel,
    FlatProjection,
    make_exposure,
    render_point_source,
)

__all__ = [
    "FlatModel",
    "FlatProjection",
    "make_exposure",
    "render_point_source",
]
