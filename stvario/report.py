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

"""Comparison of fitted spatiotemporal variogram models and plotting of empirical and modelled surfaces."""
from __future__ import annotations

import math
from typing import Sequence

import matplotlib
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from stvario.fit import FitResult
from stvario.variogram import _check_empirical_variogram


def compare_fits(results: Sequence[FitResult]) -> pd.DataFrame:
    """
    Rank fitted models by their loss.

    :param results: Fit results on the same empirical variogram.

    :return: Table with one row per model and the columns "model", "family", "loss", "sse", "converged" and "nfev",
        sorted by ascending loss (non-finite losses last).
    """

    names = [r.name for r in results]
    if len(set(names)) != len(names):
        raise ValueError("Model names must be unique, got: " + ", ".join(names))

    df = pd.DataFrame(
        {
            "model": names,
            "family": [r.family for r in results],
            "loss": [r.loss for r in results],
            "sse": [r.sse for r in results],
            "converged": [r.converged for r in results],
            "nfev": [r.nfev for r in results],
        }
    )
    df["loss"] = df["loss"].astype("float64").where(np.isfinite(df["loss"].astype("float64")))

    return df.sort_values("loss", kind="stable", na_position="last").reset_index(drop=True)


def fitted_parameters(results: Sequence[FitResult]) -> pd.DataFrame:
    """Long table of the fitted parameters, with the columns "model", "parameter" and "value"."""

    rows = [
        {"model": r.name, "parameter": pname, "value": float(value)}
        for r in results
        for pname, value in zip(r.param_names, r.params)
    ]
    return pd.DataFrame(rows, columns=["model", "parameter", "value"])


def variogram_surface(empirical_variogram: pd.DataFrame, column: str = "gamma") -> pd.DataFrame:
    """
    Pivot an empirical variogram into a matrix of spatial lags x temporal lags.

    :param empirical_variogram: Empirical variogram (or prediction of a model on its bins).
    :param column: Column to pivot.

    :return: Matrix with the middle of spatial lag bins as index and temporal lags as columns, NaN for empty bins.
    """

    _check_empirical_variogram(empirical_variogram)
    if column not in empirical_variogram.columns:
        raise ValueError(f'The variable "{column}" is not part of the provided dataframe column names.')

    surface = empirical_variogram.pivot_table(
        index="spacelag", columns="timelag", values=column, aggfunc="first", dropna=False
    )
    return surface.sort_index(axis=0).sort_index(axis=1)


def predicted_variogram(empirical_variogram: pd.DataFrame, result: FitResult) -> pd.DataFrame:
    """Copy of the empirical variogram with the semivariance replaced by the prediction of a fitted model."""

    _check_empirical_variogram(empirical_variogram)
    df = empirical_variogram.copy()
    df["gamma"] = result.model(df["dist"].to_numpy(dtype=float), df["timelag"].to_numpy(dtype=float))
    return df


def model_surfaces(empirical_variogram: pd.DataFrame, results: Sequence[FitResult]) -> dict[str, pd.DataFrame]:
    """
    Matrices of spatial lags x temporal lags for the empirical variogram (key "empirical") and each fitted model.
    """

    surfaces = {"empirical": variogram_surface(empirical_variogram)}
    for result in results:
        surfaces[result.name] = variogram_surface(predicted_variogram(empirical_variogram, result))
    return surfaces


def _check_not_empty(empirical_variogram: pd.DataFrame) -> None:
    _check_empirical_variogram(empirical_variogram)
    if len(empirical_variogram) == 0:
        raise ValueError("The empirical variogram is empty, nothing to plot.")


def _surfaces_to_plot(
    empirical_variogram: pd.DataFrame, results: Sequence[FitResult] | None
) -> dict[str, pd.DataFrame]:
    if results is None:
        return {"empirical": variogram_surface(empirical_variogram)}
    return model_surfaces(empirical_variogram, results)


def plot_variogram_map(
    empirical_variogram: pd.DataFrame,
    results: Sequence[FitResult] | None = None,
    cmap: matplotlib.colors.Colormap = plt.cm.viridis,
    ncols: int = 3,
    xlabel: str = "Spatial lag",
    ylabel: str = "Time lag",
    out_fname: str | None = None,
) -> matplotlib.figure.Figure:
    """
    Plot the empirical variogram, and optionally the fitted models, as 2D maps of semivariance with spatial lag on
    the X-axis and temporal lag on the Y-axis. All panels share the same color scale.

    :param empirical_variogram: Empirical variogram.
    :param results: Fit results to plot next to the empirical variogram.
    :param cmap: Colormap.
    :param ncols: Number of panel columns.
    :param xlabel: Label of X-axis.
    :param ylabel: Label of Y-axis.
    :param out_fname: File to save the plot to.

    :return: Figure.
    """

    _check_not_empty(empirical_variogram)
    frames = {"empirical": empirical_variogram}
    if results is not None:
        frames.update({r.name: predicted_variogram(empirical_variogram, r) for r in results})
    ncols = min(ncols, len(frames))
    nrows = math.ceil(len(frames) / ncols)

    vmin = min(np.nanmin(df.gamma) for df in frames.values())
    vmax = max(np.nanmax(df.gamma) for df in frames.values())

    # Edges of all spatial bins up to the last non-empty one, and unit temporal bins centered on the lags
    bin_width = empirical_variogram.lag_upper.values[0] - empirical_variogram.lag_lower.values[0]
    nbins = int(empirical_variogram["bin"].max()) + 1
    lag_edges = np.arange(nbins + 1) * bin_width
    tlags = np.unique(empirical_variogram.timelag)
    tedges = np.concatenate([tlags - 0.5, [tlags[-1] + 0.5]])

    fig, axes = plt.subplots(nrows, ncols, figsize=(4 * ncols, 3.5 * nrows), squeeze=False)
    for ax, (name, df) in zip(axes.ravel(), frames.items()):
        # Pivot on all bins so that empty spatial bins show as gaps
        surface = df.pivot_table(index="bin", columns="timelag", values="gamma", aggfunc="first", dropna=False)
        surface = surface.reindex(index=np.arange(nbins), columns=tlags)
        mesh = ax.pcolormesh(
            lag_edges, tedges, np.ma.masked_invalid(surface.values.T), cmap=cmap, vmin=vmin, vmax=vmax
        )
        ax.set_title(name)
        ax.set_xlabel(xlabel)
        ax.set_ylabel(ylabel)
    for ax in axes.ravel()[len(frames) :]:
        ax.axis("off")

    fig.colorbar(mesh, ax=axes.ravel().tolist(), label="Semivariance")

    if out_fname is not None:
        fig.savefig(out_fname)

    return fig


def plot_variogram_wireframe(
    empirical_variogram: pd.DataFrame,
    results: Sequence[FitResult] | None = None,
    ncols: int = 3,
    xlabel: str = "Spatial lag",
    ylabel: str = "Time lag",
    out_fname: str | None = None,
) -> matplotlib.figure.Figure:
    """
    Plot the empirical variogram, and optionally the fitted models, as 3D wireframes of semivariance against spatial
    and temporal lags.

    :param empirical_variogram: Empirical variogram.
    :param results: Fit results to plot next to the empirical variogram.
    :param ncols: Number of panel columns.
    :param xlabel: Label of X-axis.
    :param ylabel: Label of Y-axis.
    :param out_fname: File to save the plot to.

    :return: Figure.
    """

    _check_not_empty(empirical_variogram)
    surfaces = _surfaces_to_plot(empirical_variogram, results)
    ncols = min(ncols, len(surfaces))
    nrows = math.ceil(len(surfaces) / ncols)
    zmax = max(np.nanmax(s.values) for s in surfaces.values())

    fig = plt.figure(figsize=(4 * ncols, 3.5 * nrows))
    for i, (name, surface) in enumerate(surfaces.items()):
        ax = fig.add_subplot(nrows, ncols, i + 1, projection="3d")
        xx, yy = np.meshgrid(surface.index.to_numpy(dtype=float), surface.columns.to_numpy(dtype=float), indexing="ij")
        ax.plot_wireframe(xx, yy, surface.to_numpy(dtype=float), color="black", linewidth=0.7)
        ax.set_zlim((0, 1.05 * zmax))
        ax.set_title(name)
        ax.set_xlabel(xlabel)
        ax.set_ylabel(ylabel)
        ax.set_zlabel("Semivariance")

    if out_fname is not None:
        fig.savefig(out_fname)

    return fig


def plot_variogram_lines(
    empirical_variogram: pd.DataFrame,
    results: Sequence[FitResult] | None = None,
    ax: matplotlib.axes.Axes | None = None,
    xlabel: str = "Spatial lag",
    ylabel: str = "Semivariance",
    out_fname: str | None = None,
) -> None:
    """
    Plot the semivariance against spatial lag, with one color per temporal lag. Empirical bins are shown as crosses
    and fitted models, if passed, as lines with one line style per model.

    :param empirical_variogram: Empirical variogram.
    :param results: Fit results to plot.
    :param ax: Plotting ax to use, creates a new one by default.
    :param xlabel: Label of X-axis.
    :param ylabel: Label of Y-axis.
    :param out_fname: File to save the plot to.
    """

    _check_not_empty(empirical_variogram)

    # Create axes if they are not passed
    if ax is None:
        fig = plt.figure(figsize=(8, 5))
        ax = plt.subplot(111)
    elif isinstance(ax, matplotlib.axes.Axes):
        fig = ax.figure
    else:
        raise ValueError("ax must be a matplotlib.axes.Axes instance or None")

    tlags = np.unique(empirical_variogram.timelag)
    colors = plt.cm.viridis(np.linspace(0, 0.9, len(tlags)))
    linestyles = ["solid", "dashed", "dotted", "dashdot", (0, (5, 1))]
    x = np.linspace(0, np.max(empirical_variogram.lag_upper), 200)

    for color, u in zip(colors, tlags):
        df_u = empirical_variogram[empirical_variogram.timelag == u]
        ax.scatter(df_u.dist, df_u.gamma, marker="x", color=color, label=f"Time lag {u}")
        if results is not None:
            for i, result in enumerate(results):
                ax.plot(x, result.model(x, np.full_like(x, u)), color=color, linestyle=linestyles[i % len(linestyles)])

    # Legend entries for the model line styles
    if results is not None:
        for i, result in enumerate(results):
            ax.plot([], [], color="black", linestyle=linestyles[i % len(linestyles)], label=result.name)

    ax.set_xlabel(xlabel)
    ax.set_ylabel(ylabel)
    ax.set_xlim((0, np.max(empirical_variogram.lag_upper)))
    ax.set_ylim(bottom=0)
    ax.legend(loc="lower right", fontsize="small")

    if out_fname is not None:
        fig.savefig(out_fname)
