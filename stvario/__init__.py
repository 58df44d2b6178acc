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

from stvario import dataset, fit, models, report, simulation, variogram  # noqa
from stvario._version import __version__  # noqa
from stvario.dataset import SpatiotemporalDataset, build_dataset  # noqa
from stvario.fit import FitResult, fit_spacetime_variogram  # noqa
from stvario.models import MarginalVariogram, STVariogramModel, VariogramFamily  # noqa
from stvario.variogram import sample_spacetime_variogram  # noqa
