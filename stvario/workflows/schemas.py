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
Schema constants and validation function
"""
import copy
import os
from typing import Any, Dict

from cerberus import Validator

from stvario.fit import SUPPORTED_METHODS, SUPPORTED_WEIGHTINGS
from stvario.models import SUPPORTED_MODELS, VariogramFamily
from stvario.variogram import SUPPORTED_ESTIMATORS, TIME_UNITS


class CustomValidator(Validator):  # type: ignore
    def _validate_path_exists(self, path_exists: bool, field: str, value: str) -> bool:
        """
        {'type': 'boolean'}
        """
        if value is not None:
            if path_exists and not os.path.exists(value):
                self._error(field, f"Path does not exist: {value}")
        return True

    def _validate_positive(self, positive: bool, field: str, value: float) -> bool:
        """
        {'type': 'boolean'}
        """
        if positive and value is not None and value <= 0:
            self._error(field, "must be strictly positive")
        return True


MODEL_NAMES = SUPPORTED_MODELS + [m[0:3] for m in SUPPORTED_MODELS]

FAMILIES = [f.value for f in VariogramFamily]


def make_marginal_variogram(required: bool = False) -> Dict[str, Any]:
    """
    Create a single-distance variogram schema to avoid repetition for the space, time and joint components
    :param required: is the component required
    """
    return {
        "type": "dict",
        "required": required,
        "schema": {
            "model": {"type": "string", "allowed": MODEL_NAMES, "default": "exponential"},
            "psill": {"type": "number", "required": True, "positive": True},
            "range": {"type": "number", "required": True, "positive": True},
            "nugget": {"type": "number", "min": 0, "default": 0.0},
        },
    }


MODEL_SCHEMA = {
    "space": make_marginal_variogram(),
    "time": make_marginal_variogram(),
    "joint": make_marginal_variogram(),
    "stani": {"type": "number", "positive": True},
    "k": {"type": "number", "min": 0},
    "nugget": {"type": "number", "min": 0},
}

# Starting parameters on the scale of the default simulation (values scaled by 1/10, distances in metres, weeks)
DEFAULT_MODELS = {
    "separable": {
        "space": {"model": "exponential", "psill": 1.0, "range": 5000.0, "nugget": 0.1},
        "time": {"model": "exponential", "psill": 1.0, "range": 2.0, "nugget": 0.1},
    },
    "metric": {
        "joint": {"model": "exponential", "psill": 1.0, "range": 20000.0, "nugget": 0.1},
        "stani": 5000.0,
    },
    "productSum": {
        "space": {"model": "exponential", "psill": 0.5, "range": 5000.0, "nugget": 0.1},
        "time": {"model": "exponential", "psill": 0.5, "range": 2.0, "nugget": 0.1},
        "k": 0.5,
    },
    "sumMetric": {
        "space": {"model": "exponential", "psill": 0.3, "range": 5000.0, "nugget": 0.05},
        "time": {"model": "exponential", "psill": 0.3, "range": 2.0, "nugget": 0.05},
        "joint": {"model": "exponential", "psill": 0.3, "range": 20000.0, "nugget": 0.05},
        "stani": 5000.0,
    },
    "simpleSumMetric": {
        "space": {"model": "exponential", "psill": 0.3, "range": 5000.0},
        "time": {"model": "exponential", "psill": 0.3, "range": 2.0},
        "joint": {"model": "exponential", "psill": 0.3, "range": 20000.0},
        "nugget": 0.1,
        "stani": 5000.0,
    },
}

SIMULATION_SCHEMA = {
    "type": "dict",
    "default_setter": lambda doc: {},
    "schema": {
        "n_stations": {"type": "integer", "min": 2, "default": 10},
        "bbox": {
            "type": "list",
            "minlength": 4,
            "maxlength": 4,
            "schema": {"type": "number"},
            "default": [0.0, 0.0, 50000.0, 50000.0],
        },
        "start": {"type": "string", "default": "2023-01-02"},
        "step": {"type": "string", "default": "7D"},
        "n_steps": {"type": "integer", "min": 2, "default": 5},
        "random_state": {"type": "integer", "nullable": True, "default": 41},
        "baseline": {"type": "number", "default": 50.0},
        "space_weight": {"type": "number", "default": 20.0},
        "time_weight": {"type": "number", "default": 10.0},
        "interaction_weight": {"type": "number", "default": 5.0},
        "trend_noise": {"type": "number", "min": 0, "default": 0.05},
        "noise": {"type": "number", "min": 0, "default": 1.0},
        "missing_fraction": {"type": "number", "min": 0, "max": 0.99, "default": 0.0},
    },
}

DATASET_SCHEMA = {
    "type": "dict",
    "default_setter": lambda doc: {},
    "schema": {
        "scale_factor": {"type": "number", "positive": True, "default": 10.0},
    },
}

VARIOGRAM_SCHEMA = {
    "type": "dict",
    "default_setter": lambda doc: {},
    "schema": {
        "bin_width": {"type": "number", "positive": True, "default": 5000.0},
        "cutoff": {"type": "number", "positive": True, "nullable": True, "default": None},
        "tlags": {
            "type": "list",
            "minlength": 1,
            "schema": {"type": "integer", "min": 0},
            "default": [0, 1, 2, 3, 4, 5],
        },
        "time_unit": {"type": "string", "allowed": list(TIME_UNITS), "default": "weeks"},
        "estimator": {"type": "string", "allowed": SUPPORTED_ESTIMATORS, "default": "matheron"},
        "skip_missing": {"type": "boolean", "default": True},
    },
}

MODELS_SCHEMA = {
    "type": "dict",
    "default_setter": lambda doc: copy.deepcopy(DEFAULT_MODELS),
    "minlength": 1,
    "keysrules": {"type": "string", "allowed": FAMILIES},
    "valuesrules": {"type": "dict", "schema": MODEL_SCHEMA},
}

FIT_SCHEMA = {
    "type": "dict",
    "default_setter": lambda doc: {},
    "schema": {
        "method": {"type": "string", "allowed": SUPPORTED_METHODS, "default": "trf"},
        "weighting": {"type": "string", "allowed": SUPPORTED_WEIGHTINGS, "default": "none"},
        "max_nfev": {"type": "integer", "min": 1, "nullable": True, "default": None},
    },
}

OUTPUTS_SCHEMA = {
    "type": "dict",
    "default_setter": lambda doc: {"path": "outputs", "level": 1},
    "schema": {
        "path": {"type": "string", "default": "outputs"},
        "level": {"type": "integer", "default": 1, "required": False, "allowed": [1, 2]},
    },
}

STUDY_SCHEMA = {
    "simulation": SIMULATION_SCHEMA,
    "dataset": DATASET_SCHEMA,
    "variogram": VARIOGRAM_SCHEMA,
    "models": MODELS_SCHEMA,
    "fit": FIT_SCHEMA,
    "outputs": OUTPUTS_SCHEMA,
}

REPORT_SCHEMA = {
    "outputs": {
        "type": "dict",
        "required": True,
        "schema": {
            "path": {"type": "string", "required": True, "path_exists": True},
            "level": {"type": "integer", "default": 1, "required": False, "allowed": [1, 2]},
        },
    },
}


def validate_configuration(user_config: Dict[str, Any], schema: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate the configuration:
    :param user_config: Configuration dict
    :param schema: Schema dict for validating configuration
    :return: Completed configuration dictionary
    """
    validator = CustomValidator(schema)
    if not validator.validate(user_config):
        for field, errors in validator.errors.items():
            raise ValueError(f"User configuration mistakes in '{field}': {errors}")

    return validator.document


COMPLETE_CONFIG = {
    "simulation": {
        "n_stations": 10,
        "bbox": [0.0, 0.0, 50000.0, 50000.0],
        "start": "2023-01-02",
        "step": "7D",
        "n_steps": 5,
        "random_state": 41,
        "baseline": 50.0,
        "space_weight": 20.0,
        "time_weight": 10.0,
        "interaction_weight": 5.0,
        "trend_noise": 0.05,
        "noise": 1.0,
        "missing_fraction": 0.0,
    },
    "dataset": {"scale_factor": 10.0},
    "variogram": {
        "bin_width": 5000.0,
        "cutoff": None,
        "tlags": [0, 1, 2, 3, 4, 5],
        "time_unit": "weeks",
        "estimator": "matheron",
        "skip_missing": True,
    },
    "models": copy.deepcopy(DEFAULT_MODELS),
    "fit": {"method": "trf", "weighting": "none", "max_nfev": None},
    "outputs": {"path": "outputs", "level": 1},
}
