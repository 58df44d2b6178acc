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

"""Simulation of synthetic station x time datasets with a designed spatial and temporal structure."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd

from stvario._typing import NDArrayf


@dataclass(frozen=True)
class Station:
    """A measurement station with planar coordinates (projected units, e.g. metres)."""

    station_id: str
    x: float
    y: float


@dataclass(frozen=True, eq=False)
class SimulatedData:
    """
    Output of the simulation: the stations, the timestamps and the long-format station x time table.

    The table has one row per station and timestamp (station-major ordering) with the columns "station", "time",
    "x", "y", "spatial_trend", "temporal_trend" and "value".
    """

    stations: tuple[Station, ...]
    times: pd.DatetimeIndex
    data: pd.DataFrame

    @property
    def coords(self) -> NDArrayf:
        """Coordinates of every observation, shape (N, 2)."""
        return self.data[["x", "y"]].to_numpy(dtype=float)


def _rng(random_state: int | np.random.Generator | None) -> np.random.Generator:
    if isinstance(random_state, np.random.Generator):
        return random_state
    return np.random.default_rng(random_state)


def _normalize(values: NDArrayf, name: str) -> NDArrayf:
    """Scale non-negative values to [0, 1] by their maximum, refusing a zero-range denominator."""

    vmax = np.max(values)
    if not np.isfinite(vmax) or vmax <= 0:
        raise ValueError(
            f"Cannot normalize the {name}: its range is zero (all {name} values are identical), "
            f"the normalization would produce non-finite values."
        )
    return values / vmax


def generate_stations(
    n_stations: int,
    bbox: Sequence[float] = (0.0, 0.0, 50000.0, 50000.0),
    random_state: int | np.random.Generator | None = None,
) -> tuple[Station, ...]:
    """
    Draw station positions uniformly within a bounding box.

    :param n_stations: Number of stations.
    :param bbox: Bounding box (xmin, ymin, xmax, ymax) in projected units.
    :param random_state: Seed or random generator.

    :return: Stations, identified as "S01", "S02", ...
    """

    if n_stations < 1:
        raise ValueError(f"The number of stations must be at least 1, got {n_stations}.")
    if len(bbox) != 4:
        raise ValueError("The bounding box must be given as (xmin, ymin, xmax, ymax).")
    xmin, ymin, xmax, ymax = (float(b) for b in bbox)
    if xmax < xmin or ymax < ymin:
        raise ValueError(f"Invalid bounding box {tuple(bbox)}: maximum coordinates are below minimum coordinates.")

    rng = _rng(random_state)
    x = rng.uniform(xmin, xmax, size=n_stations)
    y = rng.uniform(ymin, ymax, size=n_stations)

    width = max(2, len(str(n_stations)))
    return tuple(Station(f"S{i + 1:0{width}d}", float(x[i]), float(y[i])) for i in range(n_stations))


def generate_times(start: str | pd.Timestamp = "2023-01-02", step: str = "7D", n_steps: int = 5) -> pd.DatetimeIndex:
    """
    Regular sequence of timestamps.

    :param start: First timestamp.
    :param step: Time step, as a pandas timedelta string (e.g., "7D" for weekly).
    :param n_steps: Number of timestamps.

    :return: Timestamps.
    """

    if n_steps < 1:
        raise ValueError(f"The number of time steps must be at least 1, got {n_steps}.")
    try:
        start = pd.Timestamp(start)
        delta = pd.Timedelta(step)
    except ValueError as e:
        raise ValueError(f"Could not parse the start date '{start}' or time step '{step}': {e}") from e
    if delta <= pd.Timedelta(0):
        raise ValueError(f"The time step must be strictly positive, got {step}.")

    return pd.DatetimeIndex([start + i * delta for i in range(n_steps)], name="time")


def simulate_spacetime_data(
    n_stations: int = 10,
    bbox: Sequence[float] = (0.0, 0.0, 50000.0, 50000.0),
    start: str | pd.Timestamp = "2023-01-02",
    step: str = "7D",
    n_steps: int = 5,
    random_state: int | None = 41,
    baseline: float = 50.0,
    space_weight: float = 20.0,
    time_weight: float = 10.0,
    interaction_weight: float = 5.0,
    trend_noise: float = 0.05,
    noise: float = 1.0,
    missing_fraction: float = 0.0,
) -> SimulatedData:
    """
    Simulate a full station x time grid with a trend + noise signal.

    For each row, a spatial trend (distance of the station to the lower-left corner of the station set, scaled to
    [0, 1]) and a temporal trend (time elapsed since the first timestamp, scaled to [0, 1]) are both perturbed by
    Gaussian noise, and the observation is:

    value = baseline + space_weight * s**2 + time_weight * t**2 + interaction_weight * s * t + noise

    The random draws always happen in the same order, so that the same seed gives identical outputs.

    :param n_stations: Number of stations.
    :param bbox: Bounding box (xmin, ymin, xmax, ymax) of the stations.
    :param start: First timestamp.
    :param step: Time step as a pandas timedelta string.
    :param n_steps: Number of timestamps.
    :param random_state: Random seed.
    :param baseline: Constant value of the signal.
    :param space_weight: Weight of the squared spatial trend.
    :param time_weight: Weight of the squared temporal trend.
    :param interaction_weight: Weight of the space-time interaction term.
    :param trend_noise: Standard deviation of the Gaussian noise on each scaled trend.
    :param noise: Standard deviation of the Gaussian measurement noise.
    :param missing_fraction: Share of observations to set as missing (NaN), between 0 and 1.

    :raises ValueError: If all stations share the same position, or if there is a single timestamp.

    :return: Simulated stations, timestamps and long-format data table.
    """

    if not 0 <= missing_fraction < 1:
        raise ValueError(f"The missing fraction must be in [0, 1), got {missing_fraction}.")
    if trend_noise < 0 or noise < 0:
        raise ValueError("Noise standard deviations must be non-negative.")

    rng = np.random.default_rng(random_state)
    stations = generate_stations(n_stations, bbox=bbox, random_state=rng)
    times = generate_times(start=start, step=step, n_steps=n_steps)

    # Station-major Cartesian product
    ids = np.repeat([s.station_id for s in stations], n_steps)
    x = np.repeat([s.x for s in stations], n_steps)
    y = np.repeat([s.y for s in stations], n_steps)
    t = np.tile(times.values, n_stations)

    dist = np.sqrt((x - np.min(x)) ** 2 + (y - np.min(y)) ** 2)
    elapsed = (pd.DatetimeIndex(t) - times[0]).total_seconds().to_numpy()

    nrows = len(ids)
    spatial_trend = _normalize(dist, "station distances") + rng.normal(0, trend_noise, size=nrows)
    temporal_trend = _normalize(elapsed, "elapsed times") + rng.normal(0, trend_noise, size=nrows)

    value = (
        baseline
        + space_weight * spatial_trend**2
        + time_weight * temporal_trend**2
        + interaction_weight * spatial_trend * temporal_trend
        + rng.normal(0, noise, size=nrows)
    )

    n_missing = int(np.floor(missing_fraction * nrows))
    if n_missing > 0:
        value[rng.choice(nrows, size=n_missing, replace=False)] = np.nan

    data = pd.DataFrame(
        {
            "station": ids,
            "time": t,
            "x": x,
            "y": y,
            "spatial_trend": spatial_trend,
            "temporal_trend": temporal_trend,
            "value": value,
        }
    )

    logging.info(
        "Simulated %d observations for %d stations and %d timestamps (%d missing).",
        nrows,
        n_stations,
        n_steps,
        n_missing,
    )

    return SimulatedData(stations=stations, times=times, data=data)


def export_observations(sim: SimulatedData, path: str | os.PathLike[str]) -> None:
    """
    Export the simulated observations as flat rows (station, time, x, y, value), one row per observation.

    :param sim: Simulated data.
    :param path: Path of the CSV file to write.
    """

    sim.data[["station", "time", "x", "y", "value"]].to_csv(path, index=False, date_format="%Y-%m-%dT%H:%M:%S")
    logging.debug("Observations written to %s", path)
