"""Functions to test the empirical spatiotemporal variogram."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest
from scipy.spatial.distance import pdist, squareform

import stvario
from stvario.dataset import build_dataset
from stvario.variogram import (
    EMPIRICAL_COLUMNS,
    LagBin,
    lag_bins,
    load_empirical_variogram,
    marginal_variograms,
    max_pairwise_distance,
    sample_spacetime_variogram,
    save_empirical_variogram,
)


def _small_dataset(values: list[float] | None = None) -> stvario.SpatiotemporalDataset:
    """Two stations 1000 m apart, observed at two weekly timestamps."""
    coords = [[0.0, 0.0], [0.0, 0.0], [1000.0, 0.0], [1000.0, 0.0]]
    times = ["2023-01-02", "2023-01-09", "2023-01-02", "2023-01-09"]
    if values is None:
        values = [1.0, 2.0, 3.0, 5.0]
    return build_dataset(coords, times, values)


class TestEmpiricalVariogram:
    def test_sample_small_case(self) -> None:
        """Check the bins and semivariances against values computed by hand"""

        df = sample_spacetime_variogram(_small_dataset(), bin_width=600, tlags=[0, 1], time_unit="weeks")

        assert list(df.columns) == EMPIRICAL_COLUMNS
        # Pairs: (0,1) h=0 u=1, (0,2) h=1000 u=0, (0,3) h=1000 u=1, (1,2) h=1000 u=1, (1,3) h=1000 u=0, (2,3) h=0 u=1
        assert list(zip(df["bin"], df["timelag"])) == [(0, 1), (1, 0), (1, 1)]
        assert list(df["np"]) == [2, 2, 2]
        # Cutoff is the maximum distance, 1000, covered by two bins of 600
        assert np.array_equal(df["lag_lower"], [0, 600, 600])
        assert np.array_equal(df["lag_upper"], [600, 1200, 1200])
        assert np.array_equal(df["spacelag"], [300, 900, 900])
        assert np.array_equal(df["dist"], [0, 1000, 1000])
        # Matheron: 1/(2N) sum of squared differences
        assert df["gamma"].values == pytest.approx([(1 + 4) / 4, (4 + 9) / 4, (16 + 1) / 4])

    def test_sample_other_units(self) -> None:
        """Check that the temporal lags follow the time unit"""

        df = sample_spacetime_variogram(_small_dataset(), bin_width=600, tlags=[0, 7], time_unit="days")
        assert sorted(set(df["timelag"])) == [0, 7]
        assert np.allclose(df["avg_timelag"], df["timelag"])

        df_cut = sample_spacetime_variogram(_small_dataset(), bin_width=600, cutoff=500, tlags=[0, 1])
        assert list(df_cut["bin"]) == [0]

    def test_scenario_default(self, dataset: stvario.SpatiotemporalDataset, empirical_variogram: pd.DataFrame) -> None:
        """Check the empirical variogram of the default scenario"""

        df = empirical_variogram

        assert not df.empty
        assert set(df["timelag"]).issubset(set(range(0, 6)))
        # Five weekly timestamps only give lags up to 4
        assert df["timelag"].max() == 4
        assert np.all(df["dist"] <= max_pairwise_distance(dataset.coords) + 1e-6)
        assert np.all(df["dist"] >= df["lag_lower"]) and np.all(df["dist"] <= df["lag_upper"])
        assert np.all(df["gamma"] >= 0)
        assert np.all(df["np"] > 0)

        # All pairs are counted once: n(n-1)/2 pairs with lags in 0..4
        assert df["np"].sum() == len(dataset) * (len(dataset) - 1) // 2

        # Sorted by bin then temporal lag
        assert df.equals(df.sort_values(["bin", "timelag"]).reset_index(drop=True))

    def test_order_independence(self, simulated_data, empirical_variogram: pd.DataFrame) -> None:  # type: ignore
        """Check that shuffling observations does not change the variogram"""

        df_shuffled = simulated_data.data.sample(frac=1, random_state=42)
        ds_shuffled = stvario.dataset.dataset_from_dataframe(df_shuffled, scale_factor=10.0)
        df = sample_spacetime_variogram(ds_shuffled, bin_width=5000, tlags=range(0, 6))

        assert np.array_equal(df[["bin", "timelag", "np"]].values, empirical_variogram[["bin", "timelag", "np"]].values)
        assert np.allclose(df["gamma"], empirical_variogram["gamma"])
        assert np.allclose(df["dist"], empirical_variogram["dist"])

    def test_near_lags_closer_to_nugget(self) -> None:
        """Check that the semivariance at the smallest lags is closer to the nugget than to the sill"""

        # Exponential spatial covariance with a nugget, one independent realization per timestamp
        nugget, psill, vrange = 0.1, 1.0, 20000.0
        rng = np.random.default_rng(42)
        coords = rng.uniform(0, 50000, size=(60, 2))
        cov = psill * np.exp(-3 * squareform(pdist(coords)) / vrange) + nugget * np.eye(60)
        field = np.linalg.cholesky(cov) @ rng.standard_normal((60, 20))
        times = pd.date_range("2023-01-02", periods=20, freq="7D")

        ds = build_dataset(np.tile(coords, (20, 1)), times.repeat(60), field.T.ravel())
        df = sample_spacetime_variogram(ds, bin_width=2000, tlags=[0])

        sill = nugget + psill
        gamma_near = df["gamma"].iloc[0]
        assert df["lag_upper"].iloc[0] <= 4000
        assert abs(gamma_near - nugget) < abs(gamma_near - sill)

        # Beyond twice the range, the semivariance is closer to the sill
        far = df["lag_lower"] >= 2 * vrange
        gamma_far = np.average(df["gamma"][far], weights=df["np"][far])
        assert abs(gamma_far - sill) < abs(gamma_far - nugget)

    def test_increases_with_lags(self, empirical_variogram: pd.DataFrame) -> None:
        """Check that the semivariance increases with lags on the designed trend"""

        spatial, temporal = marginal_variograms(empirical_variogram)

        assert (spatial["timelag"] == 0).all()
        assert (temporal["bin"] == empirical_variogram["bin"].min()).all()
        assert temporal["gamma"].iloc[0] < temporal["gamma"].iloc[-1]
        assert spatial["gamma"].iloc[0] < spatial["gamma"].max()

    @pytest.mark.parametrize("estimator", ["matheron", "cressie", "dowd"])  # type: ignore
    def test_estimators(self, dataset: stvario.SpatiotemporalDataset, estimator: str) -> None:

        df = sample_spacetime_variogram(dataset, bin_width=5000, estimator=estimator)
        assert np.all(np.isfinite(df["gamma"]))
        assert np.all(df["gamma"] >= 0)

    def test_missing_values(self) -> None:
        """Check the two policies for missing observations"""

        ds = _small_dataset(values=[1.0, np.nan, 3.0, 5.0])

        df_skip = sample_spacetime_variogram(ds, bin_width=600, tlags=[0, 1])
        assert np.all(np.isfinite(df_skip["gamma"]))
        assert df_skip["np"].sum() == 3

        df_keep = sample_spacetime_variogram(ds, bin_width=600, tlags=[0, 1], skip_missing=False)
        assert df_keep["np"].sum() == 6
        # Every bin has a pair involving the missing observation
        assert len(df_keep) == 3
        assert np.isnan(df_keep["gamma"]).all()

    @pytest.mark.parametrize(
        "kwargs, match",
        [
            pytest.param({"bin_width": 0}, "bin width", id="bin_width_zero"),
            pytest.param({"bin_width": -10}, "bin width", id="bin_width_negative"),
            pytest.param({"cutoff": 0}, "cutoff", id="cutoff_zero"),
            pytest.param({"tlags": []}, "temporal lag", id="tlags_empty"),
            pytest.param({"tlags": [-1, 0]}, "non-negative integers", id="tlags_negative"),
            pytest.param({"tlags": [0.5]}, "non-negative integers", id="tlags_float"),
            pytest.param({"time_unit": "fortnights"}, "Time unit", id="time_unit"),
            pytest.param({"estimator": "genton"}, "Estimator", id="estimator"),
        ],
    )  # type: ignore
    def test_sample_errors(self, kwargs: dict, match: str) -> None:  # type: ignore

        args = {"bin_width": 600}
        args.update(kwargs)
        with pytest.raises(ValueError, match=match):
            sample_spacetime_variogram(_small_dataset(), **args)

    def test_identical_positions(self) -> None:

        ds = build_dataset([[5.0, 5.0], [5.0, 5.0]], ["2023-01-02", "2023-01-09"], [1.0, 2.0])
        with pytest.raises(ValueError, match="maximum distance between stations is zero"):
            sample_spacetime_variogram(ds, bin_width=100)

    def test_lag_bins(self, empirical_variogram: pd.DataFrame) -> None:

        bins = lag_bins(empirical_variogram)

        assert len(bins) == len(empirical_variogram)
        assert isinstance(bins[0], LagBin)
        assert bins[0].bin == empirical_variogram["bin"].iloc[0]
        assert bins[-1].gamma == empirical_variogram["gamma"].iloc[-1]

    def test_save_load_empirical_variogram(self, empirical_variogram: pd.DataFrame, tmp_path) -> None:  # type: ignore
        """Check that a saved variogram loads back identically"""

        path = tmp_path / "empirical_variogram.csv"
        save_empirical_variogram(empirical_variogram, path)
        df = load_empirical_variogram(path)

        pd.testing.assert_frame_equal(df, empirical_variogram)

        with pytest.raises(FileNotFoundError):
            load_empirical_variogram(tmp_path / "does_not_exist.csv")

        with pytest.raises(ValueError, match="gamma"):
            save_empirical_variogram(empirical_variogram.drop(columns="gamma"), path)
