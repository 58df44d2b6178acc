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
Workflow class
"""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import yaml  # type: ignore
from yaml.dumper import SafeDumper  # type: ignore

from stvario.fit import FitResult
from stvario.report import (
    compare_fits,
    fitted_parameters,
    plot_variogram_lines,
    plot_variogram_map,
    plot_variogram_wireframe,
)
from stvario.workflows.schemas import validate_configuration


class Workflows(ABC):
    """
    Abstract Class for workflows
    """

    schema: Dict[str, Any]

    def __init__(self, user_config: str | Dict[str, Any]) -> None:
        """
        Initialize the workflows class
        :param user_config: str path to a config file or dict as config
        :return: None
        """

        # Load configuration
        if isinstance(user_config, str):
            if not os.path.isfile(user_config):
                raise FileNotFoundError(f"{user_config} does not exist")
            self.config_path = user_config
            config_not_verify = self.load_config()
        elif isinstance(user_config, dict):
            config_not_verify = user_config
        else:
            raise ValueError(
                "The configuration should be provided either as a path to the configuration file"
                " or as a dictionary containing the configuration details."
            )

        self.config = validate_configuration(config_not_verify, self.schema)
        self.level = self.config["outputs"]["level"]

        self.outputs_folder = Path(self.config["outputs"]["path"])
        self.outputs_folder.mkdir(parents=True, exist_ok=True)
        logging.info(f"Outputs will be saved at {self.outputs_folder.absolute()}")

        for folder in ["plots", "tables"]:
            Path(self.outputs_folder / folder).mkdir(parents=True, exist_ok=True)

        self.dico_to_show: list[tuple[str, Any]] = []

    class NoAliasDumper(SafeDumper):  # type: ignore
        """
        NoAliasDumper to avoid id in YAML file
        """

        def ignore_aliases(self, data: Any) -> bool:
            """
            avoid id in YAML file
            """
            return True

    def load_config(self) -> Dict[str, Any]:
        """
        Load a configuration file
        :return: Configuration dictionary
        """
        if not os.path.exists(self.config_path):
            raise FileNotFoundError(f"File not found : {self.config_path}")
        with open(self.config_path) as f:
            return yaml.safe_load(f)

    def save_config(self) -> None:
        """
        Save the completed configuration next to the outputs
        """
        yaml_str = yaml.dump(self.config, allow_unicode=True, sort_keys=False, Dumper=self.NoAliasDumper)
        Path(self.outputs_folder / "used_config.yaml").write_text(yaml_str, encoding="utf-8")

    def floats_process(self, dict_with_floats: Dict[str, Any] | Any) -> Dict[str, Any]:  # type: ignore
        """
        Allows rounding all floats present in a dictionary to four significant digits
        :param dict_with_floats: Dictionary with float
        :return: Dictionary with floats
        """
        if isinstance(dict_with_floats, dict):
            return {k: self.floats_process(v) for k, v in dict_with_floats.items()}
        elif isinstance(dict_with_floats, list):
            return [self.floats_process(elem) for elem in dict_with_floats]  # type: ignore
        elif isinstance(dict_with_floats, tuple):
            return tuple(self.floats_process(elem) for elem in dict_with_floats)  # type: ignore
        elif isinstance(dict_with_floats, (float, np.floating)):
            return float(f"{float(dict_with_floats):.4g}")  # type: ignore
        else:
            return dict_with_floats

    def remove_none(self, dico: Union[Dict[str, Any], List[Any]]) -> Union[Dict[str, Any], List[Any]]:
        """
        Recursively remove all keys whose values are None from a dictionary
        :param dico: dictionary to clean
        :return: cleaned dictionary
        """
        if isinstance(dico, dict):
            return {k: self.remove_none(v) for k, v in dico.items() if v is not None}
        elif isinstance(dico, list):
            return [self.remove_none(v) for v in dico if v is not None]
        else:
            return dico

    def save_table(self, df: pd.DataFrame, file_name: str) -> None:
        """
        Save a table into a CSV file of the tables folder
        :param df: Table
        :param file_name: Name of csv file, without extension
        """
        df.to_csv(self.outputs_folder / "tables" / f"{file_name}.csv", index=False)

    def generate_plots(self, empirical_variogram: pd.DataFrame, results: Sequence[FitResult]) -> list[str]:
        """
        Generate the plots of the empirical variogram and fitted models
        :param empirical_variogram: Empirical variogram
        :param results: Fit results
        :return: Names of the generated plots
        """
        plots_folder = self.outputs_folder / "plots"

        plot_variogram_map(empirical_variogram, results, out_fname=str(plots_folder / "variogram_map.png"))
        plt.close()
        plot_variogram_lines(empirical_variogram, results, out_fname=str(plots_folder / "variogram_lines.png"))
        plt.close()
        names = ["variogram_map", "variogram_lines"]

        if self.level > 1:
            plot_variogram_wireframe(
                empirical_variogram, results, out_fname=str(plots_folder / "variogram_wireframe.png")
            )
            plt.close()
            names.append("variogram_wireframe")

        return names

    def generate_comparison(
        self, empirical_variogram: pd.DataFrame, results: Sequence[FitResult]
    ) -> tuple[pd.DataFrame, pd.DataFrame, list[str]]:
        """
        Compare the fitted models and render the tables and plots of the report
        :param empirical_variogram: Empirical variogram
        :param results: Fit results
        :return: Comparison table, fitted parameters table, names of the plots
        """
        comparison = compare_fits(results)
        parameters = fitted_parameters(results)
        self.save_table(comparison, "model_comparison")
        self.save_table(parameters, "fitted_parameters")

        if comparison["converged"].all():
            logging.info("Best model: %s (RMSE %.4g)", comparison["model"].iloc[0], comparison["loss"].iloc[0])
        else:
            not_converged = comparison.loc[~comparison["converged"], "model"].tolist()
            logging.warning("Models that did not converge: %s", ", ".join(not_converged))

        plots = self.generate_plots(empirical_variogram, results)
        self.dico_to_show.append(("Model comparison", comparison))
        self.dico_to_show.append(("Fitted parameters", self.floats_process(self._parameters_by_model(results))))
        self.create_html(self.dico_to_show, plots)

        return comparison, parameters, plots

    @staticmethod
    def _parameters_by_model(results: Sequence[FitResult]) -> Dict[str, Dict[str, float]]:
        return {r.name: {n: float(v) for n, v in zip(r.param_names, r.params)} for r in results}

    def create_html(self, list_dict: list[tuple[str, Any]], plots: list[str]) -> None:
        """
        Create HTML page from png files and tables
        :param list_dict: list containing tuples of title and dictionaries or dataframes
        :param plots: names of the png files of the plots folder
        :return: None
        """

        html = "<html>\n<head><meta charset='UTF-8'><title>" + self.title + "</title></head>\n<body>\n"
        html += f"<h1>{self.title}</h1>\n"

        for title, content in list_dict:
            html += "<div style='clear: both; margin-bottom: 30px;'>\n"
            html += f"<h2>{title}</h2>\n"
            if isinstance(content, pd.DataFrame):
                html += content.to_html(index=False, float_format=lambda v: f"{v:.4g}", na_rep="NaN") + "\n"
            else:
                html += "<table border='1' cellspacing='0' cellpadding='5'>\n"
                for key, value in content.items():
                    html += f"<tr><td>{key}</td><td>{value}</td></tr>\n"
                html += "</table>\n"
            html += "</div>\n"

        html += "<h2>Variograms</h2>\n"
        for name in plots:
            html += f"<img src='plots/{name}.png' alt='{name}' style='max-width: 100%; margin: 10px;'>\n"

        html += "</body>\n</html>"

        with open(self.outputs_folder / "report.html", "w", encoding="utf-8") as f:
            f.write(html)

    @property
    @abstractmethod
    def title(self) -> str:
        """Title of the HTML report"""

    @abstractmethod
    def run(self) -> Any:
        """
        Run the workflow
        """
