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

"""Typed failures raised by the PPP solver.

A failed call never changes the persistent filter state. The solver only
signals; skipping the epoch, aborting the run or logging and continuing is
left to the caller.
"""

from enum import Enum
from typing import Optional

import numpy as np


class SolverStatus(Enum):
    """Outcome of one solver call"""
    OK = 0
    DIMENSION_MISMATCH = 1
    SINGULAR_INNOVATION = 2
    NUMERICAL_FAILURE = 3
    INVALID_REQUEST = 4
    INSUFFICIENT_SATELLITES = 5


class SolverError(Exception):
    """Base class for solver failures"""

    status = SolverStatus.NUMERICAL_FAILURE


class DimensionMismatch(SolverError, ValueError):
    """Prefit, design matrix, weights and state do not agree in size"""

    status = SolverStatus.DIMENSION_MISMATCH


class NumericalFailure(SolverError):
    """A matrix needed by the estimator could not be factorized"""

    status = SolverStatus.NUMERICAL_FAILURE


class SingularInnovation(NumericalFailure):
    """Innovation covariance (or the weights feeding it) is not invertible.

    Parameters
    ----------
    message : str
        Description of the failure
    predicted_state : np.ndarray, optional
        State vector after the predict step
    predicted_covariance : np.ndarray, optional
        Covariance matrix after the predict step
    """

    status = SolverStatus.SINGULAR_INNOVATION

    def __init__(self, message: str,
                 predicted_state: Optional[np.ndarray] = None,
                 predicted_covariance: Optional[np.ndarray] = None):
        super().__init__(message)
        self.predicted_state = predicted_state
        self.predicted_covariance = predicted_covariance


class InvalidRequest(SolverError):
    """A quantity was queried in a lifecycle state where it does not exist"""

    status = SolverStatus.INVALID_REQUEST


class InsufficientSatellites(SolverError):
    """Fewer usable satellites than the configured minimum"""

    status = SolverStatus.INSUFFICIENT_SATELLITES
