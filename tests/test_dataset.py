"""Functions to test the building of spatiotemporal datasets."""

from __future__ import annotations

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest

import stvario
from stvario.dataset import build_dataset, dataset_from_dataframe
from stvario.simulation import SimulatedData


class TestDataset:

    coords = np.array([[0.0, 0.0], [1000.0, 0.0], [0.0, 1000.0]])
    times = ["2023-01-02", "2023-01-09", "2023-01-16"]
    values = np.array([10.0, 20.0, np.nan])

    def test_build_dataset(self) -> None:
        """Check the content of a dataset built from arrays"""

        ds = build_dataset(self.coords, self.times, self.values, scale_factor=10.0)

        assert len(ds) == 3
        assert ds.scale_factor == 10.0
        assert np.array_equal(ds.values[:2], [1.0, 2.0])
        assert ds.n_missing == 1
        assert ds.times[1] == pd.Timestamp("2023-01-09")
        # One default identifier per distinct position
        assert len(set(ds.station_ids)) == 3

        # Arrays cannot be modified after construction
        with pytest.raises(ValueError):
            ds.values[0] = 5.0
        with pytest.raises(ValueError):
            ds.coords[0, 0] = 5.0

    def test_build_dataset_keeps_order(self, simulated_data: SimulatedData) -> None:

        ds = dataset_from_dataframe(simulated_data.data)

        assert list(ds.station_ids) == simulated_data.data["station"].tolist()
        assert np.array_equal(ds.values, simulated_data.data["value"].to_numpy())
        assert np.array_equal(ds.coords, simulated_data.coords)

    @pytest.mark.parametrize(
        "kwargs, match",
        [
            pytest.param({"coords": np.zeros((3, 3))}, "shape", id="coords_shape"),
            pytest.param({"values": np.ones(2)}, "same length", id="values_length"),
            pytest.param({"times": ["2023-01-02", "2023-01-09"]}, "same length", id="times_length"),
            pytest.param({"times": ["2023-01-02", "not a date", "2023-01-16"]}, "parse", id="times_unparsable"),
            pytest.param({"times": ["2023-01-02", None, "2023-01-16"]}, "parse", id="times_missing"),
            pytest.param({"coords": [[0, 0], [np.nan, 0], [1, 1]]}, "finite", id="coords_nan"),
            pytest.param({"scale_factor": 0}, "scale factor", id="scale_zero"),
            pytest.param({"scale_factor": -2.0}, "scale factor", id="scale_negative"),
            pytest.param({"station_ids": ["a"]}, "Station identifiers", id="station_ids_length"),
        ],
    )  # type: ignore
    def test_build_dataset_errors(self, kwargs: dict, match: str) -> None:  # type: ignore
        """Check that invalid inputs raise a ValueError"""

        args = {"coords": self.coords, "times": self.times, "values": self.values}
        args.update(kwargs)
        with pytest.raises(ValueError, match=match):
            build_dataset(**args)

    def test_dropna(self) -> None:

        ds = build_dataset(self.coords, self.times, self.values, station_ids=["a", "b", "c"])
        ds_valid = ds.dropna()

        assert len(ds_valid) == 2
        assert ds_valid.n_missing == 0
        assert ds_valid.station_ids == ("a", "b")
        assert len(ds_valid.times) == 2
        # The original is untouched
        assert len(ds) == 3

    def test_to_dataframe(self, dataset: stvario.SpatiotemporalDataset) -> None:

        df = dataset.to_dataframe()
        assert list(df.columns) == ["station", "time", "x", "y", "value"]
        assert len(df) == len(dataset)

        gdf = dataset.to_geodataframe()
        assert isinstance(gdf, gpd.GeoDataFrame)
        assert np.allclose(gdf.geometry.x.values, dataset.coords[:, 0])
        assert np.allclose(gdf.geometry.y.values, dataset.coords[:, 1])

    def test_dataset_from_dataframe_missing_column(self, simulated_data: SimulatedData) -> None:

        with pytest.raises(ValueError, match="expected column"):
            dataset_from_dataframe(simulated_data.data.drop(columns="value"))
