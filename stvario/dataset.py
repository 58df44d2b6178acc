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

"""Immutable spatiotemporal dataset: observations bound to a planar position and an instant."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

import geopandas as gpd
import numpy as np
import pandas as pd

from stvario._typing import ArrayLike, NDArrayb, NDArrayf


def _readonly(arr: NDArrayf) -> NDArrayf:
    arr = np.array(arr, dtype=float, copy=True)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class SpatiotemporalDataset:
    """
    Observations with their station coordinates and timestamps.

    Built in one step by `build_dataset`; arrays are read-only. The values are stored already divided by
    `scale_factor`, so every semivariance derived from this dataset is expressed in the scaled unit.
    """

    coords: NDArrayf
    times: pd.DatetimeIndex
    values: NDArrayf
    station_ids: tuple[str, ...]
    scale_factor: float = 1.0

    def __len__(self) -> int:
        return len(self.values)

    @property
    def n_missing(self) -> int:
        """Number of missing (NaN) observations."""
        return int(np.count_nonzero(~np.isfinite(self.values)))

    @property
    def valid(self) -> NDArrayb:
        return np.isfinite(self.values)

    def dropna(self) -> SpatiotemporalDataset:
        """Return a new dataset without the missing observations."""
        valid = self.valid
        return SpatiotemporalDataset(
            coords=_readonly(self.coords[valid, :]),
            times=self.times[valid],
            values=_readonly(self.values[valid]),
            station_ids=tuple(s for s, v in zip(self.station_ids, valid) if v),
            scale_factor=self.scale_factor,
        )

    def to_dataframe(self) -> pd.DataFrame:
        """Long-format table with columns "station", "time", "x", "y" and "value" (scaled)."""
        return pd.DataFrame(
            {
                "station": list(self.station_ids),
                "time": self.times.values,
                "x": self.coords[:, 0],
                "y": self.coords[:, 1],
                "value": self.values,
            }
        )

    def to_geodataframe(self, crs: Any = None) -> gpd.GeoDataFrame:
        """
        Long-format table with point geometries of the stations.

        :param crs: Projected coordinate reference system of the coordinates, if known.
        """
        df = self.to_dataframe()
        return gpd.GeoDataFrame(df, geometry=gpd.points_from_xy(df.x, df.y), crs=crs)


def _parse_times(times: ArrayLike) -> pd.DatetimeIndex:
    """Parse timestamps, raising a ValueError for any unparsable or missing value."""
    try:
        parsed = pd.DatetimeIndex(pd.to_datetime(pd.Series(times), errors="raise"))
    except (ValueError, TypeError, OverflowError) as e:
        raise ValueError(f"Could not parse timestamps: {e}") from e

    if parsed.hasnans:
        ind = np.flatnonzero(parsed.isna())
        raise ValueError(f"Could not parse timestamps: missing or invalid values at positions {list(ind[:10])}.")

    return parsed.rename("time")


def build_dataset(
    coords: ArrayLike,
    times: ArrayLike,
    values: ArrayLike,
    station_ids: Sequence[str] | None = None,
    scale_factor: float = 1.0,
) -> SpatiotemporalDataset:
    """
    Build a spatiotemporal dataset from parallel arrays of coordinates, timestamps and values.

    Values are divided by the scale factor to bring them into a numerically convenient range for the fitting of
    variogram models. This is a preconditioning step only: semivariances and fit losses computed downstream are in
    the scaled unit (i.e., multiplied by 1 / scale_factor**2 compared to the original unit).

    :param coords: Planar coordinates, shape (N, 2).
    :param times: Timestamps (N,), anything pandas can parse as dates.
    :param values: Observed values (N,), NaN for missing.
    :param station_ids: Station identifiers (N,), defaults to one identifier per distinct coordinate.
    :param scale_factor: Strictly positive divisor applied to the values.

    :raises ValueError: If the lengths mismatch, if a timestamp is unparsable, if coordinates are not finite, or if
        the scale factor is not strictly positive.

    :return: Spatiotemporal dataset.
    """

    coords_arr = np.asarray(coords, dtype=float)
    if coords_arr.ndim != 2 or coords_arr.shape[1] != 2:
        raise ValueError(f"Coordinates must have a shape (N, 2), got {coords_arr.shape}.")
    if not np.all(np.isfinite(coords_arr)):
        raise ValueError("Coordinates must all be finite.")

    values_arr = np.asarray(values, dtype=float).ravel()
    n = coords_arr.shape[0]
    if len(values_arr) != n or len(times) != n:
        raise ValueError(
            f"Coordinates, timestamps and values must have the same length, got {n}, {len(times)} and "
            f"{len(values_arr)}."
        )
    if station_ids is not None and len(station_ids) != n:
        raise ValueError(f"Station identifiers must have the same length as the values, got {len(station_ids)}.")

    if not np.isfinite(scale_factor) or scale_factor <= 0:
        raise ValueError(f"The scale factor must be finite and strictly positive, got {scale_factor}.")

    parsed_times = _parse_times(times)

    if station_ids is None:
        _, inverse = np.unique(coords_arr, axis=0, return_inverse=True)
        station_ids = [f"S{i + 1:02d}" for i in np.ravel(inverse)]

    logging.info("Building dataset of %d observations, values scaled by 1/%g.", n, scale_factor)

    return SpatiotemporalDataset(
        coords=_readonly(coords_arr),
        times=parsed_times,
        values=_readonly(values_arr / scale_factor),
        station_ids=tuple(str(s) for s in station_ids),
        scale_factor=float(scale_factor),
    )


def dataset_from_dataframe(
    df: pd.DataFrame,
    x: str = "x",
    y: str = "y",
    time: str = "time",
    value: str = "value",
    station: str | None = "station",
    scale_factor: float = 1.0,
) -> SpatiotemporalDataset:
    """
    Build a spatiotemporal dataset from a long-format dataframe, such as the output of the simulation.

    :param df: Dataframe with one observation per row.
    :param x: Column of X coordinates.
    :param y: Column of Y coordinates.
    :param time: Column of timestamps.
    :param value: Column of observed values.
    :param station: Column of station identifiers, if any.
    :param scale_factor: Strictly positive divisor applied to the values.

    :return: Spatiotemporal dataset.
    """

    expected = [x, y, time, value] + ([station] if station is not None else [])
    for col in expected:
        if col not in df.columns:
            raise ValueError(f'The expected column "{col}" is not part of the provided dataframe.')

    return build_dataset(
        coords=df[[x, y]].to_numpy(dtype=float),
        times=df[time].to_numpy(),
        values=df[value].to_numpy(dtype=float),
        station_ids=df[station].astype(str).tolist() if station is not None else None,
        scale_factor=scale_factor,
    )
