# Copyright (c) 2024 stvario developers
#
# This file is part of the stvario project.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
#
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Spatiotemporal variogram models, combining single-distance SciKit-GStat models into joint space-time families.
"""
from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable

import numpy as np

from stvario._typing import ArrayLike, NDArrayf

with warnings.catch_warnings():
    warnings.filterwarnings("ignore", category=DeprecationWarning)
    import skgstat as skg

SUPPORTED_MODELS = ["spherical", "exponential", "gaussian", "cubic"]


class VariogramFamily(Enum):
    """Structural families combining a spatial and a temporal variogram into a spatiotemporal variogram."""

    SEPARABLE = "separable"
    METRIC = "metric"
    PRODUCT_SUM = "productSum"
    SUM_METRIC = "sumMetric"
    SIMPLE_SUM_METRIC = "simpleSumMetric"

    @classmethod
    def from_name(cls, name: str | VariogramFamily) -> VariogramFamily:
        """Family from its name, e.g. "productSum", "product_sum" or "PRODUCT_SUM"."""
        if isinstance(name, VariogramFamily):
            return name
        key = name.replace("_", "").lower()
        for family in cls:
            if key in (family.value.lower(), family.name.replace("_", "").lower()):
                return family
        raise ValueError(
            f"Variogram family {name} not recognized. Supported families are: "
            + ", ".join(f.value for f in cls)
            + "."
        )


def _get_skgstat_variogram_model_name(model: str) -> str:
    """Function to identify a SciKit-GStat variogram model from its full name or 3-letter abbreviation"""

    if isinstance(model, str):
        for supp_model in SUPPORTED_MODELS:
            if model.lower() in [supp_model[0:3], supp_model]:
                return supp_model

    raise ValueError(
        f"Variogram model name {model} not recognized. Supported models are: " + ", ".join(SUPPORTED_MODELS) + "."
    )


@dataclass(frozen=True)
class MarginalVariogram:
    """
    Single-distance variogram: a SciKit-GStat model shape with a partial sill, an effective range and a nugget.

    The range follows the SciKit-GStat convention of an effective range: the distance at which the model reaches
    about 95% of its partial sill (for the exponential and gaussian shapes), or exactly the sill (spherical, cubic).
    """

    model: str = "exponential"
    psill: float = 1.0
    range: float = 1.0
    nugget: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "model", _get_skgstat_variogram_model_name(self.model))
        for attr in ["psill", "range", "nugget"]:
            value = getattr(self, attr)
            if not isinstance(value, (float, np.floating, int, np.integer)) or not np.isfinite(value):
                raise ValueError(f"The variogram {attr} must be a finite float or integer, got {value}.")
            object.__setattr__(self, attr, float(value))
        if self.range <= 0:
            raise ValueError("The variogram range must have non-zero, positive values.")
        if self.psill < 0 or self.nugget < 0:
            raise ValueError("The variogram partial sill and nugget must be non-negative.")

    @property
    def sill(self) -> float:
        return self.psill + self.nugget

    def __call__(self, d: ArrayLike) -> NDArrayf:
        """Semivariance at distances d."""
        d = np.asarray(d, dtype=float)
        model_function = getattr(skg.models, self.model)
        out = model_function(d.ravel(), self.range, self.psill, self.nugget)
        return np.asarray(out, dtype=float).reshape(d.shape)

    def to_dict(self) -> dict[str, Any]:
        return {"model": self.model, "psill": self.psill, "range": self.range, "nugget": self.nugget}


# Components and scalar parameters needed by each family
_COMPONENTS = {
    VariogramFamily.SEPARABLE: (("space", "time"), ()),
    VariogramFamily.METRIC: (("joint",), ("stani",)),
    VariogramFamily.PRODUCT_SUM: (("space", "time"), ("k",)),
    VariogramFamily.SUM_METRIC: (("space", "time", "joint"), ("stani",)),
    VariogramFamily.SIMPLE_SUM_METRIC: (("space", "time", "joint"), ("stani", "nugget")),
}

_MARGINAL_PARAMS = ("psill", "range", "nugget")


@dataclass(frozen=True)
class STVariogramModel:
    """
    Spatiotemporal variogram model of a given family.

    Depending on the family, the model holds a spatial ("space"), a temporal ("time") and/or a joint space-time
    ("joint") single-distance variogram, and the scalar parameters "stani" (anisotropy ratio converting a temporal
    lag into an equivalent spatial distance), "k" (product-sum coefficient) and "nugget" (shared nugget of the
    simpleSumMetric family, whose components have no nugget of their own).
    """

    family: VariogramFamily
    space: MarginalVariogram | None = None
    time: MarginalVariogram | None = None
    joint: MarginalVariogram | None = None
    stani: float | None = None
    k: float | None = None
    nugget: float | None = None

    def __post_init__(self) -> None:
        family = VariogramFamily.from_name(self.family)
        object.__setattr__(self, "family", family)

        components, scalars = _COMPONENTS[family]
        for comp in ("space", "time", "joint"):
            value = getattr(self, comp)
            if comp in components and value is None:
                raise ValueError(f'The "{family.value}" variogram family requires a "{comp}" variogram.')
            if comp not in components and value is not None:
                raise ValueError(f'The "{family.value}" variogram family does not use a "{comp}" variogram.')
            if isinstance(value, dict):
                object.__setattr__(self, comp, MarginalVariogram(**value))

        for scalar in ("stani", "k", "nugget"):
            value = getattr(self, scalar)
            if scalar in scalars and value is None:
                raise ValueError(f'The "{family.value}" variogram family requires a "{scalar}" parameter.')
            if scalar not in scalars and value is not None:
                raise ValueError(f'The "{family.value}" variogram family does not use a "{scalar}" parameter.')
            if value is not None:
                if not np.isfinite(value) or value < 0:
                    raise ValueError(f'The "{scalar}" parameter must be finite and non-negative, got {value}.')
                object.__setattr__(self, scalar, float(value))
        if self.stani is not None and self.stani <= 0:
            raise ValueError(f'The "stani" anisotropy ratio must be strictly positive, got {self.stani}.')

        # The shared nugget replaces the nuggets of the components
        if family == VariogramFamily.SIMPLE_SUM_METRIC:
            for comp in components:
                marginal = getattr(self, comp)
                if marginal.nugget != 0:
                    logging.debug("Ignoring the nugget of the %s variogram in favour of the shared nugget.", comp)
                    object.__setattr__(self, comp, replace(marginal, nugget=0.0))

    def _marginal_params(self) -> tuple[str, ...]:
        if self.family == VariogramFamily.SIMPLE_SUM_METRIC:
            return ("psill", "range")
        return _MARGINAL_PARAMS

    def param_names(self) -> list[str]:
        """Names of the parameters, in the order of the parameter vector."""
        components, scalars = _COMPONENTS[self.family]
        names = [f"{comp}.{p}" for comp in components for p in self._marginal_params()]
        return names + list(scalars)

    def to_vector(self) -> NDArrayf:
        """Parameter vector."""
        values = []
        for name in self.param_names():
            if "." in name:
                comp, p = name.split(".")
                values.append(getattr(getattr(self, comp), p))
            else:
                values.append(getattr(self, name))
        return np.array(values, dtype=float)

    def with_vector(self, x: ArrayLike) -> STVariogramModel:
        """New model of the same family and shapes with the parameters of the vector."""
        names = self.param_names()
        x = np.asarray(x, dtype=float)
        if len(x) != len(names):
            raise ValueError(f"Expected {len(names)} parameters ({', '.join(names)}), got {len(x)}.")

        new_components: dict[str, dict[str, float]] = {}
        new_scalars: dict[str, float] = {}
        for name, value in zip(names, x):
            if "." in name:
                comp, p = name.split(".")
                new_components.setdefault(comp, {})[p] = float(value)
            else:
                new_scalars[name] = float(value)

        kwargs: dict[str, Any] = {k: replace(getattr(self, k), **v) for k, v in new_components.items()}
        kwargs.update(new_scalars)
        return replace(self, **kwargs)

    def __call__(self, h: ArrayLike, u: ArrayLike) -> NDArrayf:
        """
        Semivariance of the model.

        :param h: Spatial lags.
        :param u: Temporal lags, broadcastable with the spatial lags.
        """
        h, u = np.broadcast_arrays(np.asarray(h, dtype=float), np.asarray(u, dtype=float))
        return _EVALUATORS[self.family](self, h, u)

    def to_dict(self) -> dict[str, Any]:
        """Dictionary representation, e.g. to save as YAML."""
        components, scalars = _COMPONENTS[self.family]
        out: dict[str, Any] = {"family": self.family.value}
        for comp in components:
            out[comp] = getattr(self, comp).to_dict()
        for scalar in scalars:
            out[scalar] = getattr(self, scalar)
        return out

    @classmethod
    def from_dict(cls, params: dict[str, Any], family: str | VariogramFamily | None = None) -> STVariogramModel:
        """
        Model from a dictionary representation.

        :param params: Dictionary with the components ("space", "time", "joint") as dictionaries of "model",
            "psill", "range" and "nugget", and the scalar parameters ("stani", "k", "nugget").
        :param family: Family of the model, if not given by the "family" key of the dictionary.
        """
        params = dict(params)
        family = params.pop("family", family)
        if family is None:
            raise ValueError("The variogram family must be provided.")

        kwargs: dict[str, Any] = {}
        for key, value in params.items():
            if key in ("space", "time", "joint"):
                kwargs[key] = value if isinstance(value, MarginalVariogram) else MarginalVariogram(**value)
            elif key in ("stani", "k", "nugget"):
                kwargs[key] = value
            else:
                raise ValueError(f'Unknown variogram model parameter "{key}".')

        return cls(family=family, **kwargs)


def _metric_distance(model: STVariogramModel, h: NDArrayf, u: NDArrayf) -> NDArrayf:
    return np.sqrt(h**2 + (model.stani * u) ** 2)


def _separable(model: STVariogramModel, h: NDArrayf, u: NDArrayf) -> NDArrayf:
    gs = model.space(h)
    gt = model.time(u)
    return gs + gt - gs * gt


def _metric(model: STVariogramModel, h: NDArrayf, u: NDArrayf) -> NDArrayf:
    return model.joint(_metric_distance(model, h, u))


def _product_sum(model: STVariogramModel, h: NDArrayf, u: NDArrayf) -> NDArrayf:
    gs = model.space(h)
    gt = model.time(u)
    return gs + gt + model.k * gs * gt


def _sum_metric(model: STVariogramModel, h: NDArrayf, u: NDArrayf) -> NDArrayf:
    return model.space(h) + model.time(u) + model.joint(_metric_distance(model, h, u))


def _simple_sum_metric(model: STVariogramModel, h: NDArrayf, u: NDArrayf) -> NDArrayf:
    return model.space(h) + model.time(u) + model.joint(_metric_distance(model, h, u)) + model.nugget


_EVALUATORS: dict[VariogramFamily, Callable[[STVariogramModel, NDArrayf, NDArrayf], NDArrayf]] = {
    VariogramFamily.SEPARABLE: _separable,
    VariogramFamily.METRIC: _metric,
    VariogramFamily.PRODUCT_SUM: _product_sum,
    VariogramFamily.SUM_METRIC: _sum_metric,
    VariogramFamily.SIMPLE_SUM_METRIC: _simple_sum_metric,
}
