"""Simultaneous model fitting across multiple astronomical exposures."""

from __future__ import annotations

from multifit.config import EvaluatorConfig, FitterConfig, merge_defaults
from multifit.errors import EmptyExposureListError, ErrorType, InvalidParameterError, MultifitError
from multifit.evaluator import ModelEvaluator, Product
from multifit.fitter import FitResult, GradientCheckReport, MinuitAnalyticFitter, MinuitNumericFitter
from multifit.footprint import BoundingBox, Footprint
from multifit.image import Exposure
from multifit.model import Model
from multifit.objective import ChisqFunction
from multifit.projection import ModelProjection
from multifit.psf import GaussianPsf, Psf
from multifit.sources import GaussianSourceModel, PointSourceModel
from multifit.wcs import AffineWcs, AstropyWcs, CoordinateMapping

__version__ = "0.1.0"

__all__ = [
    "AffineWcs",
    "AstropyWcs",
    "BoundingBox",
    "ChisqFunction",
    "CoordinateMapping",
    "EmptyExposureListError",
    "ErrorType",
    "EvaluatorConfig",
    "Exposure",
    "FitResult",
    "FitterConfig",
    "Footprint",
    "GaussianPsf",
    "GaussianSourceModel",
    "GradientCheckReport",
    "InvalidParameterError",
    "MinuitAnalyticFitter",
    "MinuitNumericFitter",
    "Model",
    "ModelEvaluator",
    "ModelProjection",
    "MultifitError",
    "PointSourceModel",
    "Product",
    "Psf",
    "__version__",
    "merge_defaults",
]
