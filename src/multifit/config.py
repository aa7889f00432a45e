"""Fitter and evaluator configuration.

A policy is a plain mapping of option names to values, usually loaded from a
JSON file. Missing keys fall back to the defaults below; they never fail.
Option names are accepted in either the policy spelling (``iterationMax``)
or the Python spelling (``iteration_max``).

Example:
    >>> config = FitterConfig.from_policy({"iterationMax": 200})
    >>> config.iteration_max, config.strategy
    (200, 1)
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, ClassVar, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from multifit.errors import InvalidParameterError

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_EVALUATOR_POLICY",
    "DEFAULT_FITTER_POLICY",
    "EvaluatorConfig",
    "FitterConfig",
    "load_policy",
    "merge_defaults",
]

DEFAULT_FITTER_POLICY: dict[str, Any] = {
    "checkGradient": False,
    "strategy": 1,
    "iterationMax": 500,
    "tolerance": 0.1,
}

DEFAULT_EVALUATOR_POLICY: dict[str, Any] = {
    "nMinPix": 0,
}


def merge_defaults(user: Mapping[str, Any] | None, defaults: Mapping[str, Any]) -> dict[str, Any]:
    """Return ``defaults`` overlaid with ``user``, recursing into nested mappings.

    Neither input is modified.
    """
    merged: dict[str, Any] = {}
    for key, value in defaults.items():
        merged[key] = dict(value) if isinstance(value, Mapping) else value
    for key, value in (user or {}).items():
        base = merged.get(key)
        if isinstance(value, Mapping) and isinstance(base, Mapping):
            merged[key] = merge_defaults(value, base)
        else:
            merged[key] = value
    return merged


def load_policy(path: str | Path) -> dict[str, Any]:
    """Load a policy JSON object from disk."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Policy not found: {p}")
    payload = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise InvalidParameterError("Policy file must contain a JSON object", path=str(p))
    return payload


class _PolicyModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    policy_defaults: ClassVar[Mapping[str, Any]] = {}

    @classmethod
    def from_policy(cls, policy: Mapping[str, Any] | None = None) -> Self:
        """Build a config from ``policy`` merged over the class defaults.

        Keys that belong to other components are ignored so that one policy
        can configure both the evaluator and the fitter.
        """
        aliases = {name: field.alias or name for name, field in cls.model_fields.items()}
        known = set(aliases.values())
        user = {aliases.get(key, key): value for key, value in (policy or {}).items()}
        ignored = sorted(key for key in user if key not in known)
        if ignored:
            logger.debug("%s ignoring policy keys: %s", cls.__name__, ignored)
        merged = merge_defaults(user, cls.policy_defaults)
        relevant = {key: value for key, value in merged.items() if key in known}
        try:
            return cls.model_validate(relevant)
        except ValidationError as exc:
            raise InvalidParameterError(
                f"Invalid {cls.__name__} policy: {exc.errors(include_url=False)}",
                policy=relevant,
            ) from exc

    def to_policy(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class FitterConfig(_PolicyModel):
    """Options recognized by the Minuit fitters.

    Attributes:
        check_gradient: Compare numeric and analytic gradients once at the
            initial point before fitting (analytic fitter only).
        strategy: Minimizer aggressiveness, 0 (fast) to 2 (careful).
        iteration_max: Budget of objective evaluations for one ``apply``.
        tolerance: Convergence tolerance passed to the minimizer.
    """

    check_gradient: bool = Field(default=False, alias="checkGradient")
    strategy: int = Field(default=1, ge=0, le=2)
    iteration_max: int = Field(default=500, gt=0, alias="iterationMax")
    tolerance: float = Field(default=0.1, gt=0.0)

    policy_defaults: ClassVar[Mapping[str, Any]] = DEFAULT_FITTER_POLICY


class EvaluatorConfig(_PolicyModel):
    """Options recognized by :class:`multifit.evaluator.ModelEvaluator`.

    Attributes:
        n_min_pix: Exposures whose masked footprint has no more than this
            many pixels are rejected.
    """

    n_min_pix: int = Field(default=0, ge=0, alias="nMinPix")

    policy_defaults: ClassVar[Mapping[str, Any]] = DEFAULT_EVALUATOR_POLICY
