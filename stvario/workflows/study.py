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
Variogram study class from workflows: simulation, empirical variogram, fit and comparison of the model families.
"""
import logging
from typing import Any, Dict

import pandas as pd
import yaml  # type: ignore

from stvario.dataset import SpatiotemporalDataset, dataset_from_dataframe
from stvario.fit import FitResult, fit_all, save_fit_results
from stvario.models import STVariogramModel
from stvario.simulation import SimulatedData, export_observations, simulate_spacetime_data
from stvario.variogram import sample_spacetime_variogram, save_empirical_variogram
from stvario.workflows.schemas import STUDY_SCHEMA
from stvario.workflows.workflows import Workflows


class VariogramStudy(Workflows):
    """
    Variogram study class from workflows.
    """

    title = "Spatiotemporal variogram study"

    def __init__(self, config: str | Dict[str, Any]):
        """
        Initialize VariogramStudy class
        :param config: Path to a user configuration file or configuration dictionary
        """

        self.schema = STUDY_SCHEMA

        super().__init__(config)

        # Starting models are built early to fail before any computation
        self.models = {
            name: STVariogramModel.from_dict(params, family=name) for name, params in self.config["models"].items()
        }

        self.save_config()
        # A null random_state requests an unseeded simulation
        self.config = {
            section: params if section == "simulation" else self.remove_none(params)
            for section, params in self.config.items()
        }

    def simulate(self) -> SimulatedData:
        """
        Simulate the observations and save them as a table
        :return: Simulated data
        """
        cfg = self.config["simulation"]
        sim = simulate_spacetime_data(**cfg)
        export_observations(sim, self.outputs_folder / "tables" / "observations.csv")
        logging.info("Simulated %d observations at %d stations", len(sim.data), len(sim.stations))
        return sim

    def build(self, sim: SimulatedData) -> SpatiotemporalDataset:
        """
        Build the spatiotemporal dataset from the simulated observations
        :param sim: Simulated data
        :return: Dataset
        """
        dataset = dataset_from_dataframe(sim.data, scale_factor=self.config["dataset"]["scale_factor"])
        if self.level > 1:
            dataset.to_geodataframe().to_file(self.outputs_folder / "tables" / "observations.geojson", driver="GeoJSON")
        return dataset

    def sample(self, dataset: SpatiotemporalDataset) -> pd.DataFrame:
        """
        Sample the empirical variogram and save it as a table
        :param dataset: Dataset
        :return: Empirical variogram
        """
        empirical_variogram = sample_spacetime_variogram(dataset, **self.config["variogram"])
        save_empirical_variogram(empirical_variogram, self.outputs_folder / "tables" / "empirical_variogram.csv")
        return empirical_variogram

    def fit(self, empirical_variogram: pd.DataFrame) -> list[FitResult]:
        """
        Fit all the model families and save the fitted models
        :param empirical_variogram: Empirical variogram
        :return: Fit results
        """
        results = fit_all(empirical_variogram, self.models, **self.config["fit"])
        save_fit_results(results, self.outputs_folder / "fitted_models.yaml")
        return results

    def run(self) -> pd.DataFrame:
        """
        Run the variogram study
        :return: Comparison of the fitted models
        """

        sim = self.simulate()
        dataset = self.build(sim)
        empirical_variogram = self.sample(dataset)
        results = self.fit(empirical_variogram)

        self.dico_to_show = [
            ("Simulation", self.floats_process(self.config["simulation"])),
            (
                "Dataset",
                {
                    "Number of observations": len(dataset),
                    "Missing observations": dataset.n_missing,
                    "Scale factor": dataset.scale_factor,
                },
            ),
            ("Empirical variogram", self.floats_process(self.config["variogram"])),
            ("Fit", self.config["fit"]),
        ]
        comparison, _, _ = self.generate_comparison(empirical_variogram, results)

        yaml_str = yaml.dump(
            self.floats_process(comparison.to_dict(orient="records")), sort_keys=False, Dumper=self.NoAliasDumper
        )
        logging.info("Model comparison:\n%s", yaml_str)

        return comparison
