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

"""Empirical spatiotemporal variogram: pairwise lags, binning, and persistence of the binned semivariances."""
from __future__ import annotations

import logging
import os
import warnings
from dataclasses import dataclass
from typing import Callable, Iterable

import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist

from stvario._typing import NDArrayf
from stvario.dataset import SpatiotemporalDataset

with warnings.catch_warnings():
    warnings.filterwarnings("ignore", category=DeprecationWarning)
    from skgstat import estimators as skg_estimators

# Seconds per temporal unit
TIME_UNITS = {
    "seconds": 1.0,
    "minutes": 60.0,
    "hours": 3600.0,
    "days": 86400.0,
    "weeks": 604800.0,
}

SUPPORTED_ESTIMATORS = ["matheron", "cressie", "dowd"]

# Columns of the empirical variogram dataframe, in order
EMPIRICAL_COLUMNS = ["bin", "lag_lower", "lag_upper", "spacelag", "dist", "timelag", "avg_timelag", "np", "gamma"]
_EMPIRICAL_DTYPES = {
    "bin": "int64",
    "lag_lower": "float64",
    "lag_upper": "float64",
    "spacelag": "float64",
    "dist": "float64",
    "timelag": "int64",
    "avg_timelag": "float64",
    "np": "int64",
    "gamma": "float64",
}


@dataclass(frozen=True)
class LagBin:
    """One bin of the empirical variogram, for a spatial lag interval and a temporal lag."""

    bin: int
    lag_lower: float
    lag_upper: float
    spacelag: float
    dist: float
    timelag: int
    avg_timelag: float
    np: int
    gamma: float


def _get_estimator(estimator: str) -> Callable[[NDArrayf], float]:
    """Function to identify a SciKit-GStat semivariance estimator from a string"""

    if estimator.lower() not in SUPPORTED_ESTIMATORS:
        raise ValueError(
            f"Estimator {estimator} not recognized. Supported estimators are: " + ", ".join(SUPPORTED_ESTIMATORS) + "."
        )
    return getattr(skg_estimators, estimator.lower())


def _bin_semivariance(diff: NDArrayf, estimator_func: Callable[[NDArrayf], float]) -> float:
    """Semivariance of the pairwise differences of a bin, NaN if any difference is missing."""
    if not np.all(np.isfinite(diff)):
        return np.nan
    return float(estimator_func(diff))


def _time_in_unit(times: pd.DatetimeIndex, time_unit: str) -> NDArrayf:
    """Convert timestamps to a float number of time units since the first timestamp."""

    if time_unit not in TIME_UNITS:
        raise ValueError(f"Time unit {time_unit} not recognized. Supported units are: " + ", ".join(TIME_UNITS) + ".")
    seconds = (times - times.min()).total_seconds().to_numpy(dtype=float)
    return seconds / TIME_UNITS[time_unit]


def max_pairwise_distance(coords: NDArrayf) -> float:
    """Maximum distance between any two of the coordinates."""
    unique_coords = np.unique(coords, axis=0)
    if len(unique_coords) < 2:
        return 0.0
    return float(np.max(pdist(unique_coords)))


def sample_spacetime_variogram(
    dataset: SpatiotemporalDataset,
    bin_width: float,
    cutoff: float | None = None,
    tlags: Iterable[int] = range(0, 6),
    time_unit: str = "weeks",
    estimator: str = "matheron",
    skip_missing: bool = True,
) -> pd.DataFrame:
    """
    Sample the empirical spatiotemporal variogram of a dataset.

    All pairs of observations are formed. The spatial distance of each pair is binned in intervals of width
    `bin_width` up to `cutoff`, and the absolute time difference of each pair is assigned to the nearest integer
    number of `time_unit`. For each (spatial bin, temporal lag) containing pairs, the semivariance is computed
    with the estimator, by default the classical Matheron estimator: 1/(2N) * sum((z_i - z_j)**2).

    The pairwise computation is quadratic in the number of observations, which is fine for small datasets only.

    :param dataset: Spatiotemporal dataset.
    :param bin_width: Width of the spatial lag bins.
    :param cutoff: Maximum spatial lag considered, defaults to the maximum distance between stations.
    :param tlags: Temporal lags (integer number of time units) to consider.
    :param time_unit: Unit of the temporal lags: "seconds", "minutes", "hours", "days" or "weeks".
    :param estimator: Semivariance estimator: "matheron", "cressie" or "dowd".
    :param skip_missing: Whether to exclude missing observations before forming pairs. If False, any bin containing
        a pair with a missing observation has a NaN semivariance.

    :raises ValueError: If the bin width or cutoff are not strictly positive, if the temporal lags are invalid, or if
        all stations share the same position.

    :return: Empirical variogram, one row per non-empty bin, sorted by spatial bin then temporal lag. Columns are
        "bin" (spatial bin index), "lag_lower" and "lag_upper" (spatial bin edges), "spacelag" (bin middle),
        "dist" (average pair distance), "timelag", "avg_timelag" (average pair time difference), "np" (pair count)
        and "gamma" (semivariance).
    """

    if not np.isfinite(bin_width) or bin_width <= 0:
        raise ValueError(f"The spatial bin width must be strictly positive, got {bin_width}.")
    if cutoff is not None and (not np.isfinite(cutoff) or cutoff <= 0):
        raise ValueError(f"The spatial cutoff must be strictly positive, got {cutoff}.")

    tlags_arr = np.unique(np.asarray(list(tlags)))
    if len(tlags_arr) == 0:
        raise ValueError("At least one temporal lag must be provided.")
    if not np.issubdtype(tlags_arr.dtype, np.integer) or np.any(tlags_arr < 0):
        raise ValueError(f"Temporal lags must be non-negative integers, got {list(tlags_arr)}.")

    estimator_func = _get_estimator(estimator)

    if skip_missing:
        data = dataset.dropna()
        if dataset.n_missing > 0:
            logging.info("Excluding %d missing observations from pair formation.", dataset.n_missing)
    else:
        data = dataset

    if cutoff is None:
        cutoff = max_pairwise_distance(data.coords)
        if cutoff <= 0:
            raise ValueError(
                "The maximum distance between stations is zero (all stations share the same position), "
                "cannot derive a spatial cutoff."
            )
        logging.debug("Spatial cutoff set to the maximum distance between stations: %g", cutoff)

    nbins = int(np.ceil(cutoff / bin_width))
    edges = np.arange(nbins + 1) * bin_width

    # Pairwise spatial distances, temporal lags and value differences, in condensed (i < j) order
    t = _time_in_unit(data.times, time_unit)
    dist = pdist(data.coords)
    dt = pdist(t[:, np.newaxis], metric="cityblock")
    ind_i, ind_j = np.triu_indices(len(data), k=1)
    diff = np.abs(data.values[ind_i] - data.values[ind_j])

    timelag = np.rint(dt).astype(np.int64)
    spbin = np.minimum(np.floor(dist / bin_width).astype(np.int64), nbins - 1)

    keep = np.logical_and(dist <= cutoff, np.isin(timelag, tlags_arr))
    logging.debug("Kept %d of %d pairs within the cutoff and temporal lags.", np.count_nonzero(keep), len(keep))

    df_pairs = pd.DataFrame(
        {"bin": spbin[keep], "timelag": timelag[keep], "dist": dist[keep], "dt": dt[keep], "diff": diff[keep]}
    )

    list_rows = []
    for (b, u), df_bin in df_pairs.groupby(["bin", "timelag"], sort=True):
        list_rows.append(
            {
                "bin": b,
                "lag_lower": edges[b],
                "lag_upper": edges[b + 1],
                "spacelag": (edges[b] + edges[b + 1]) / 2,
                "dist": df_bin["dist"].mean(),
                "timelag": u,
                "avg_timelag": df_bin["dt"].mean(),
                "np": len(df_bin),
                "gamma": _bin_semivariance(df_bin["diff"].to_numpy(), estimator_func),
            }
        )

    df = pd.DataFrame(list_rows, columns=EMPIRICAL_COLUMNS)
    df = df.sort_values(["bin", "timelag"], kind="stable").reset_index(drop=True)

    # Force output dtype (default differs on different OS)
    df = df.astype(_EMPIRICAL_DTYPES)

    if df.empty:
        logging.warning("No pair of observations falls within the cutoff and temporal lags, the variogram is empty.")
    else:
        logging.info("Empirical variogram sampled in %d non-empty bins from %d observations.", len(df), len(data))

    return df


def lag_bins(empirical_variogram: pd.DataFrame) -> list[LagBin]:
    """Convert an empirical variogram dataframe into a list of lag bins, in the same order."""

    _check_empirical_variogram(empirical_variogram)
    return [
        LagBin(**{k: (int(v) if _EMPIRICAL_DTYPES[k] == "int64" else float(v)) for k, v in row.items()})
        for row in empirical_variogram[EMPIRICAL_COLUMNS].to_dict(orient="records")
    ]


def marginal_variograms(empirical_variogram: pd.DataFrame) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Extract the purely spatial and purely temporal slices of an empirical variogram.

    :param empirical_variogram: Empirical variogram.

    :return: Spatial slice (temporal lag zero), temporal slice (first spatial bin).
    """

    _check_empirical_variogram(empirical_variogram)

    spatial = empirical_variogram[empirical_variogram.timelag == 0].reset_index(drop=True)
    first_bin = empirical_variogram["bin"].min()
    temporal = empirical_variogram[empirical_variogram["bin"] == first_bin].reset_index(drop=True)

    return spatial, temporal


def _check_empirical_variogram(empirical_variogram: pd.DataFrame) -> None:
    """Check that a dataframe has the format of an empirical variogram."""
    for col in EMPIRICAL_COLUMNS:
        if col not in empirical_variogram.columns:
            raise ValueError(f'The expected variable "{col}" is not part of the provided dataframe column names.')


def save_empirical_variogram(empirical_variogram: pd.DataFrame, path: str | os.PathLike[str]) -> None:
    """
    Save an empirical variogram to a CSV file, for later plotting or fitting without recomputation.

    :param empirical_variogram: Empirical variogram.
    :param path: Path of the CSV file.
    """

    _check_empirical_variogram(empirical_variogram)
    # Writing floats with their full representation ensures an exact round-trip
    empirical_variogram[EMPIRICAL_COLUMNS].to_csv(path, index=False, float_format="%.17g")
    logging.debug("Empirical variogram written to %s", path)


def load_empirical_variogram(path: str | os.PathLike[str]) -> pd.DataFrame:
    """
    Load an empirical variogram saved with `save_empirical_variogram`.

    :param path: Path of the CSV file.

    :return: Empirical variogram, with the same values and ordering as when saved.
    """

    if not os.path.exists(path):
        raise FileNotFoundError(f"Empirical variogram file does not exist: {path}")

    df = pd.read_csv(path, float_precision="round_trip")
    _check_empirical_variogram(df)

    return df[EMPIRICAL_COLUMNS].astype(_EMPIRICAL_DTYPES)
