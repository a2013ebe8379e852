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

"""Epoch-wise weighted least squares, an alternative to the PPP Kalman filter.

Each epoch is solved on its own: x = (H^T W H)^-1 H^T W z. The state layout
(head unknowns, ISBs, one ambiguity per phase satellite) comes from the same
DynamicStateManager and equation builder as SolverPPP, so both strategies
accept the same epoch records.
"""

import copy
import logging
from typing import Optional

import numpy as np
from scipy import linalg

from ..core.data_structures import EpochRecord
from ..core.errors import (DimensionMismatch, InsufficientSatellites,
                           NumericalFailure, SolverError, SolverStatus)
from ..logger import StationLoggerAdapter
from .config import SolverConfig
from .equations import build_equations, usable_satellites, write_postfits
from .kalman import check_dimensions
from .state_manager import DynamicStateManager

logger = logging.getLogger(__name__)


class LeastSquaresSolver:
    """
    Weighted least-squares solver with the PPP equation layout

    Parameters:
    -----------
    config : SolverConfig, optional
        Shared solver configuration (constellations, coordinate frame,
        weight factor, minimum satellites)
    name : str
        Identifier used in log messages

    Attributes:
    -----------
    solution : np.ndarray
        Estimates of the last solved epoch
    covariance : np.ndarray
        Formal covariance (H^T W H)^-1 of the last solved epoch
    postfit_residuals : np.ndarray
        z - H x of the last solved epoch
    """

    def __init__(self, config: Optional[SolverConfig] = None, name: str = 'lms'):
        self.config = copy.deepcopy(config or SolverConfig()).validate()
        self.name = name
        self.log = StationLoggerAdapter(logger, name)
        self.state = DynamicStateManager(
            ambiguity_model=self.config.ambiguity_model,
            isb_models=self.config.isb_model_map(),
            isb_prior=(0.0, self.config.isb_sigma ** 2),
            reference_system=self.config.reference_system)
        self.solution = None
        self.covariance = None
        self.postfit_residuals = None

    def compute(self,
                prefit: np.ndarray,
                design_matrix: np.ndarray,
                weights: np.ndarray,
                phase_mask: Optional[np.ndarray] = None) -> SolverStatus:
        """
        Solve one equation system

        Parameters:
        -----------
        prefit : np.ndarray
            Prefit residuals, shape (m,)
        design_matrix : np.ndarray
            Design matrix, shape (m, n)
        weights : np.ndarray
            Weight vector (m,) or weight matrix (m, m)
        phase_mask : np.ndarray, optional
            Boolean mask of phase rows; their weight is multiplied by the
            weight factor

        Returns:
        --------
        SolverStatus
            SolverStatus.OK

        Raises:
        -------
        DimensionMismatch
            If sizes are inconsistent
        NumericalFailure
            If the normal matrix is singular
        """
        z = np.asarray(prefit, dtype=float).reshape(-1)
        H = np.asarray(design_matrix, dtype=float)
        W = np.asarray(weights, dtype=float)
        check_dimensions(z, H, W, H.shape[1] if H.ndim == 2 else -1)
        if len(z) < H.shape[1]:
            raise DimensionMismatch(
                f"{len(z)} equations cannot determine {H.shape[1]} unknowns")

        scale = np.ones(len(z))
        if phase_mask is not None:
            scale[np.asarray(phase_mask, dtype=bool)] = self.config.weight_factor

        if W.ndim == 1:
            WH = (W * scale)[:, None] * H
        else:
            s = np.sqrt(scale)
            WH = (s[:, None] * W * s[None, :]) @ H
        N = H.T @ WH
        b = WH.T @ z

        try:
            cho = linalg.cho_factor(N)
        except (linalg.LinAlgError, ValueError) as e:
            raise NumericalFailure(f"Normal matrix is singular: {e}") from e

        x = linalg.cho_solve(cho, b)
        self.solution = x
        self.covariance = linalg.cho_solve(cho, np.eye(len(x)))
        self.postfit_residuals = z - H @ x
        return SolverStatus.OK

    def process(self, epoch: EpochRecord) -> SolverStatus:
        """Solve one epoch record and write postfit residuals back into it"""
        usable = usable_satellites(epoch, self.config.enabled_systems)
        if len(usable) < self.config.min_satellites:
            raise InsufficientSatellites(
                f"{len(usable)} usable satellites, at least {self.config.min_satellites} required")

        snap = self.state.snapshot()
        try:
            # Every epoch is independent: rebuild the layout from scratch
            self.state.clear()
            self.state.initialize(*self.config.head_layout())
            slips = {sat: data.cycle_slip for sat, data in usable.items() if data.has_phase}
            self.state.reconcile(slips, {data.system for data in usable.values()})
            equations = build_equations(usable, self.state)
            self.compute(equations.prefit, equations.H, equations.weights, equations.phase_mask)
        except SolverError as e:
            self.state.restore(snap)
            self.log.warning(f"epoch {epoch.time} rejected: {e}")
            raise

        write_postfits(usable, equations, self.postfit_residuals)
        self.log.debug(f"epoch {epoch.time}: {len(usable)} satellites solved")
        return SolverStatus.OK

    @property
    def unknowns(self):
        return self.state.labels

    def get_solution(self, var) -> float:
        return float(self.solution[self.state.index_of(var)])

    def get_variance(self, var) -> float:
        i = self.state.index_of(var)
        return float(self.covariance[i, i])
