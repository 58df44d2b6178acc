from typing import Callable

import matplotlib
import pandas as pd
import pytest

import stvario
from stvario.simulation import SimulatedData

matplotlib.use("Agg")


@pytest.fixture(scope="session")  # type: ignore
def simulated_data() -> SimulatedData:
    """Default scenario: 10 stations, 5 weekly timestamps, seed 41."""
    return stvario.simulation.simulate_spacetime_data(n_stations=10, n_steps=5, step="7D", random_state=41)


@pytest.fixture(scope="session")  # type: ignore
def dataset(simulated_data: SimulatedData) -> stvario.SpatiotemporalDataset:
    return stvario.dataset.dataset_from_dataframe(simulated_data.data, scale_factor=10.0)


@pytest.fixture(scope="session")  # type: ignore
def empirical_variogram(dataset: stvario.SpatiotemporalDataset) -> pd.DataFrame:
    return stvario.sample_spacetime_variogram(dataset, bin_width=5000, tlags=range(0, 6), time_unit="weeks")


@pytest.fixture()  # type: ignore
def get_study_config(tmp_path) -> Callable[..., dict]:  # type: ignore
    def _get_study_config(**kwargs: dict) -> dict:  # type: ignore
        """Minimal study configuration writing to a temporary folder, updated by section"""
        config = {
            "simulation": {"n_stations": 10, "n_steps": 5, "random_state": 41},
            "variogram": {"bin_width": 5000.0},
            "outputs": {"path": str(tmp_path / "outputs")},
        }
        for section, params in kwargs.items():
            config.setdefault(section, {}).update(params)
        return config

    return _get_study_config
