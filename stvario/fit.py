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
Functions to fit spatiotemporal variogram models to an empirical variogram by non-linear least-squares.
"""
from __future__ import annotations

import logging
import os
import warnings
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import numpy as np
import pandas as pd
import yaml  # type: ignore
from scipy.optimize import Bounds, least_squares, minimize

from stvario._typing import NDArrayf
from stvario.models import STVariogramModel
from stvario.variogram import _check_empirical_variogram

SUPPORTED_METHODS = ["trf", "dogbox", "L-BFGS-B"]
SUPPORTED_WEIGHTINGS = ["none", "npairs", "npairs_dist"]

# Lower bound of parameters that must stay strictly positive
_EPS = 1e-10


def rmse(ytrue: NDArrayf, ypred: NDArrayf) -> float:
    """
    Return root mean square error

    :param ytrue: True values
    :param ypred: Predicted values

    :return: Root mean square error
    """
    return float(np.sqrt(np.mean(np.square(ytrue - ypred))))


@dataclass(frozen=True, eq=False)
class FitResult:
    """
    Result of the fit of a spatiotemporal variogram model.

    The loss is the root mean square error between the empirical and the fitted semivariances over the fitted bins,
    in the unit of the (scaled) semivariances. The "sse" is the weighted sum of squared residuals minimized.
    """

    name: str
    model: STVariogramModel
    params: NDArrayf
    param_names: tuple[str, ...]
    loss: float
    sse: float
    converged: bool
    nfev: int
    message: str = ""

    @property
    def family(self) -> str:
        return self.model.family.value

    def to_dict(self) -> dict[str, Any]:
        """Dictionary representation, e.g. to save as YAML."""
        return {
            "name": self.name,
            "model": self.model.to_dict(),
            "loss": float(self.loss),
            "sse": float(self.sse),
            "converged": bool(self.converged),
            "nfev": int(self.nfev),
            "message": str(self.message),
        }

    @classmethod
    def from_dict(cls, dico: Mapping[str, Any]) -> FitResult:
        model = STVariogramModel.from_dict(dico["model"])
        return cls(
            name=dico["name"],
            model=model,
            params=model.to_vector(),
            param_names=tuple(model.param_names()),
            loss=float(dico["loss"]),
            sse=float(dico["sse"]),
            converged=bool(dico["converged"]),
            nfev=int(dico["nfev"]),
            message=dico.get("message", ""),
        )


def default_bounds(
    model: STVariogramModel, empirical_variogram: pd.DataFrame | None = None
) -> tuple[NDArrayf, NDArrayf]:
    """
    Default bounds of the parameters of a model: sills, ranges and anisotropy ratio strictly positive, nuggets and
    product-sum coefficient non-negative.

    Without an empirical variogram, there is no upper bound. With one, partial sills and nuggets are bounded by ten
    times the maximum semivariance, spatial ranges and the anisotropy ratio by ten times the maximum spatial lag, and
    temporal ranges by ten times the maximum temporal lag (at least one). The product-sum coefficient has no upper
    bound. Upper bounds are never below the parameters of the model.

    :param model: Spatiotemporal variogram model.
    :param empirical_variogram: Empirical variogram to derive upper bounds from.

    :return: Lower bounds, upper bounds.
    """
    names = model.param_names()
    lower = np.array([0.0 if (n.endswith("nugget") or n == "k") else _EPS for n in names])
    upper = np.full(len(names), np.inf)
    if empirical_variogram is None or len(empirical_variogram) == 0:
        return lower, upper

    gamma_max = float(np.nanmax(empirical_variogram["gamma"].to_numpy(dtype=float)))
    lag_max = float(np.nanmax(empirical_variogram["lag_upper"].to_numpy(dtype=float)))
    timelag_max = max(float(np.nanmax(empirical_variogram["timelag"].to_numpy(dtype=float))), 1.0)
    for i, n in enumerate(names):
        if n.endswith(("psill", "nugget")):
            upper[i] = 10 * gamma_max
        elif n in ["space.range", "joint.range", "stani"]:
            upper[i] = 10 * lag_max
        elif n == "time.range":
            upper[i] = 10 * timelag_max
    # A constant or degenerate variogram gives no usable upper bound
    upper = np.where(np.logical_and(np.isfinite(upper), upper > 0), upper, np.inf)

    return lower, np.maximum(upper, model.to_vector())


def _weights(empirical_variogram: pd.DataFrame, weighting: str) -> NDArrayf:
    """Weights of the bins in the least-squares."""

    if weighting == "none":
        return np.ones(len(empirical_variogram))
    npairs = empirical_variogram["np"].to_numpy(dtype=float)
    if weighting == "npairs":
        return npairs
    # Bins with only co-located pairs have a zero average distance, use the middle of the bin instead
    dist = empirical_variogram["dist"].to_numpy(dtype=float)
    h = np.where(dist > 0, dist, empirical_variogram["spacelag"].to_numpy(dtype=float))
    w = npairs / h**2
    # Normalize to avoid tiny weights with large distances
    return w / np.max(w)


def fit_spacetime_variogram(
    empirical_variogram: pd.DataFrame,
    model: STVariogramModel,
    method: str = "trf",
    weighting: str = "none",
    bounds: Mapping[str, tuple[float, float]] | None = None,
    max_nfev: int | None = None,
    name: str | None = None,
) -> FitResult:
    """
    Fit a spatiotemporal variogram model to an empirical variogram, by (weighted) least-squares on the
    semivariances of the bins. To use preferably with the empirical variogram dataframe returned by the
    `sample_spacetime_variogram` function. The model is evaluated at the average pair distance and the temporal lag
    of each bin.

    The starting parameters are those of the model passed, and they need to be of a reasonable scale compared to the
    empirical variogram (sills close to the variance of the data, ranges within the sampled lags). A fit that does not
    converge does not raise an error: the result is flagged as not converged.

    :param empirical_variogram: Empirical variogram, formatted as a dataframe with "dist" (average distance of
        pairs), "timelag" (temporal lag), "gamma" (semivariance) and "np" (pair count).
    :param model: Model with the initial parameters.
    :param method: Optimization method: "trf" or "dogbox" (scipy.optimize.least_squares) or "L-BFGS-B"
        (scipy.optimize.minimize).
    :param weighting: Weights of the bins: "none", "npairs" (pair count) or "npairs_dist" (pair count divided by the
        squared distance).
    :param bounds: Bounds (lower, upper) of parameters by name (see STVariogramModel.param_names), to override the
        default bounds derived from the empirical variogram (see `default_bounds`).
    :param max_nfev: Maximum number of function evaluations before the termination.
    :param name: Name of the fitted model, defaults to the name of the family.

    :raises ValueError: If the method, weighting or bounds are invalid, if the initial parameters are outside the
        bounds, or if the empirical variogram has no valid bin.

    :return: Fit result with the fitted model.
    """

    _check_empirical_variogram(empirical_variogram)
    if method not in SUPPORTED_METHODS:
        raise ValueError(f"Method {method} not recognized. Supported methods are: " + ", ".join(SUPPORTED_METHODS))
    if weighting not in SUPPORTED_WEIGHTINGS:
        raise ValueError(
            f"Weighting {weighting} not recognized. Supported weightings are: " + ", ".join(SUPPORTED_WEIGHTINGS)
        )
    if name is None:
        name = model.family.value

    # First, filter non-finite bins
    valid = np.logical_and(np.isfinite(empirical_variogram["gamma"].values), empirical_variogram["np"].values > 0)
    emp = empirical_variogram[valid]
    if len(emp) == 0:
        raise ValueError("The empirical variogram does not contain any valid bin to fit.")
    if np.count_nonzero(~valid) > 0:
        logging.info("Ignoring %d non-finite bins of the empirical variogram.", np.count_nonzero(~valid))

    h = emp["dist"].to_numpy(dtype=float)
    u = emp["timelag"].to_numpy(dtype=float)
    y = emp["gamma"].to_numpy(dtype=float)
    sqrt_w = np.sqrt(_weights(emp, weighting))

    names = model.param_names()
    x0 = model.to_vector()
    lower, upper = default_bounds(model, emp)
    if bounds is not None:
        for pname, (low, upp) in bounds.items():
            if pname not in names:
                raise ValueError(f'Unknown parameter "{pname}" in bounds, parameters are: ' + ", ".join(names))
            lower[names.index(pname)] = low
            upper[names.index(pname)] = upp
    if np.any(lower >= upper):
        raise ValueError("Lower bounds must be strictly below upper bounds.")
    if not np.all(np.logical_and(x0 >= lower, x0 <= upper)):
        outside = [n for n, x, lo, up in zip(names, x0, lower, upper) if not lo <= x <= up]
        raise ValueError("Initial parameters are outside of their bounds: " + ", ".join(outside))
    # The optimizers need starting values strictly within bounds
    x0 = np.clip(x0, np.where(lower > 0, lower, lower + _EPS), upper)

    def residuals(x: NDArrayf) -> NDArrayf:
        return sqrt_w * (model.with_vector(x)(h, u) - y)

    if not np.all(np.isfinite(residuals(x0))):
        raise ValueError("The model is not finite at the initial parameters.")

    logging.debug("Fitting %s with %s on %d bins, starting from %s", name, method, len(emp), dict(zip(names, x0)))

    if method in ["trf", "dogbox"]:
        res = least_squares(residuals, x0, bounds=(lower, upper), method=method, x_scale="jac", max_nfev=max_nfev)
        nfev = res.nfev
    else:
        # Parameters above one are optimized relative to their starting value
        scale = np.maximum(x0, 1.0)
        options = {"maxfun": max_nfev} if max_nfev is not None else {}
        res = minimize(
            lambda z: float(np.sum(residuals(z * scale) ** 2)),
            x0 / scale,
            method="L-BFGS-B",
            bounds=Bounds(lower / scale, upper / scale),
            options=options,
        )
        res.x = res.x * scale
        nfev = res.nfev

    fitted = model.with_vector(res.x)
    pred = fitted(h, u)
    loss = rmse(y, pred)
    sse = float(np.sum((sqrt_w * (pred - y)) ** 2))
    converged = bool(res.success and np.isfinite(loss))

    if converged:
        logging.info("Fit of %s converged with RMSE %.5g after %d evaluations.", name, loss, nfev)
    else:
        msg = f"Fit of {name} did not converge: {res.message}"
        logging.warning(msg)
        warnings.warn(msg, category=UserWarning)

    return FitResult(
        name=name,
        model=fitted,
        params=np.asarray(res.x, dtype=float),
        param_names=tuple(names),
        loss=loss,
        sse=sse,
        converged=converged,
        nfev=int(nfev),
        message=str(res.message),
    )


def fit_all(
    empirical_variogram: pd.DataFrame,
    models: Mapping[str, STVariogramModel] | Sequence[STVariogramModel],
    **kwargs: Any,
) -> list[FitResult]:
    """
    Fit several spatiotemporal variogram models independently to the same empirical variogram.

    :param empirical_variogram: Empirical variogram.
    :param models: Models with their initial parameters, either as a mapping of names to models or as a sequence
        (named by their family).
    :param kwargs: Keyword arguments passed to `fit_spacetime_variogram`.

    :return: Fit results, in the order of the models.
    """

    if isinstance(models, Mapping):
        named = list(models.items())
    else:
        named = [(m.family.value, m) for m in models]

    list_names = [n for n, _ in named]
    if len(set(list_names)) != len(list_names):
        raise ValueError("Model names must be unique, got: " + ", ".join(list_names))

    return [fit_spacetime_variogram(empirical_variogram, model, name=n, **kwargs) for n, model in named]


def save_fit_results(results: Sequence[FitResult], path: str | os.PathLike[str]) -> None:
    """
    Save fit results to a YAML file, to reproduce tables and plots without fitting again.

    :param results: Fit results.
    :param path: Path of the YAML file.
    """
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump({"fits": [r.to_dict() for r in results]}, f, sort_keys=False)
    logging.debug("Fit results written to %s", path)


def load_fit_results(path: str | os.PathLike[str]) -> list[FitResult]:
    """
    Load fit results saved with `save_fit_results`.

    :param path: Path of the YAML file.

    :return: Fit results, in the saved order.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Fit results file does not exist: {path}")
    with open(path, encoding="utf-8") as f:
        content = yaml.safe_load(f)
    if not isinstance(content, dict) or "fits" not in content:
        raise ValueError(f"The file {path} does not contain fit results.")
    return [FitResult.from_dict(d) for d in content["fits"]]
