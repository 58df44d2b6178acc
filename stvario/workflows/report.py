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
Report class from workflows: reproduce the tables and plots of a variogram study without computation.
"""
import logging
from typing import Any, Dict

import pandas as pd

from stvario.fit import FitResult, load_fit_results
from stvario.variogram import load_empirical_variogram
from stvario.workflows.schemas import REPORT_SCHEMA
from stvario.workflows.workflows import Workflows


class Report(Workflows):
    """
    Report class from workflows.
    """

    title = "Spatiotemporal variogram report"

    def __init__(self, config: str | Dict[str, Any]):
        """
        Initialize Report class
        :param config: Path to a user configuration file or configuration dictionary
        """

        self.schema = REPORT_SCHEMA

        super().__init__(config)

    def load(self) -> tuple[pd.DataFrame, list[FitResult]]:
        """
        Load the empirical variogram and the fitted models of the outputs folder
        :return: Empirical variogram, fit results
        """
        empirical_variogram = load_empirical_variogram(self.outputs_folder / "tables" / "empirical_variogram.csv")
        results = load_fit_results(self.outputs_folder / "fitted_models.yaml")
        logging.info("Loaded %d bins and %d fitted models", len(empirical_variogram), len(results))
        return empirical_variogram, results

    def run(self) -> pd.DataFrame:
        """
        Run the report
        :return: Comparison of the fitted models
        """
        empirical_variogram, results = self.load()
        self.dico_to_show = [
            (
                "Empirical variogram",
                {"Number of bins": len(empirical_variogram), "Number of pairs": int(empirical_variogram["np"].sum())},
            )
        ]
        comparison, _, _ = self.generate_comparison(empirical_variogram, results)
        return comparison
