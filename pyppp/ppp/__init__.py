# Copyright 2024 inuex35
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Precise Point Positioning estimation.

- **Stochastic models**: constant, white noise, random walk and phase
  ambiguity propagation rules
- **DynamicStateManager**: state vector and covariance that grow and shrink
  with the tracked satellites and constellations
- **KalmanCore**: predict/update recursion
- **ConvergenceTracker**: sliding-window convergence and TTFC log
- **SolverPPP**: per-epoch orchestration, the main entry point
- **LeastSquaresSolver**: epoch-wise weighted least squares alternative
"""

from .config import SolverConfig
from .convergence import ConvergenceTracker
from .equations import EquationSet, build_equations, usable_satellites
from .kalman import KalmanCore, measurement_covariance
from .least_squares import LeastSquaresSolver
from .solver import SolverPPP
from .state_manager import DynamicStateManager, ReconcileReport, SatelliteTrack
from .stochastic import (ConstantModel, PhaseAmbiguityModel, RandomWalkModel,
                         StochasticModel, WhiteNoiseModel, build_model)

__all__ = [
    'SolverConfig',
    'ConvergenceTracker',
    'EquationSet', 'build_equations', 'usable_satellites',
    'KalmanCore', 'measurement_covariance',
    'LeastSquaresSolver',
    'SolverPPP',
    'DynamicStateManager', 'ReconcileReport', 'SatelliteTrack',
    'ConstantModel', 'PhaseAmbiguityModel', 'RandomWalkModel',
    'StochasticModel', 'WhiteNoiseModel', 'build_model',
]
