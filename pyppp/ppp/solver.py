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

"""Precise Point Positioning solver based on a dynamic-dimension Kalman filter"""

import copy
import logging
from typing import Dict, Iterable, List, Mapping, Optional

import numpy as np
import pandas as pd

from ..core.data_structures import (ISB_TYPES, EpochRecord, StateKey,
                                    StateType, coordinate_types)
from ..core.errors import (DimensionMismatch, InsufficientSatellites,
                           InvalidRequest, SolverError, SolverStatus)
from ..logger import StationLoggerAdapter
from .config import SolverConfig
from .convergence import ConvergenceTracker
from .equations import build_equations, usable_satellites, write_postfits
from .kalman import KalmanCore, check_dimensions
from .state_manager import DynamicStateManager
from .stochastic import PhaseAmbiguityModel, StochasticModel

logger = logging.getLogger(__name__)


class SolverPPP:
    """
    PPP solver estimating coordinates, wet troposphere, receiver clock,
    inter-system biases and phase ambiguities epoch by epoch.

    The solver keeps its filter state between calls, so one instance must
    process exactly one data stream. Independent instances share nothing
    and may run in parallel.

    Each call is transactional: when it raises, the state, covariance and
    convergence window are exactly as before the call.

    Default stochastic models:
        - coordinates: constant
        - wet troposphere: random walk, q' = 3e-8 m^2/s
        - receiver clock: white noise, sigma = 3e5 m
        - phase ambiguities: constant between cycle slips, white noise on a slip
        - inter-system biases: random walk

    Parameters:
    -----------
    config : SolverConfig, optional
        Solver configuration
    name : str
        Identifier of this instance (station or run), used in log messages

    Examples:
        >>> solver = SolverPPP(SolverConfig(use_galileo=True), name='EBRE')
        >>> for epoch in epochs:
        ...     try:
        ...         solver.process(epoch)
        ...     except SolverError as e:
        ...         continue
        ...     print(solver.get_solution(StateType.DX), solver.converged)
    """

    def __init__(self, config: Optional[SolverConfig] = None, name: str = 'ppp'):
        self.config = copy.deepcopy(config or SolverConfig()).validate()
        self.name = name
        self.log = StationLoggerAdapter(logger, name)
        self.kalman = KalmanCore()
        self.tracker = ConvergenceTracker(self.config.buffer_size)
        self._history: List[Dict] = []
        self._last_time: Optional[float] = None
        self._epochs = 0
        self._pending = None
        self.postfit_residuals: Optional[np.ndarray] = None
        self._phi: Optional[np.ndarray] = None
        self._q: Optional[np.ndarray] = None
        self._new_state()

    def __repr__(self):
        return f"SolverPPP(name={self.name!r}, unknowns={self.num_unknowns})"

    def _new_state(self):
        cfg = self.config
        self.state = DynamicStateManager(
            ambiguity_model=cfg.ambiguity_model,
            isb_models=cfg.isb_model_map(),
            isb_prior=(0.0, cfg.isb_sigma ** 2),
            reference_system=cfg.reference_system)

    def _ensure_initialized(self):
        if not self.state.initialized:
            self.state.initialize(*self.config.head_layout())
            self.log.debug(f"filter initialized with {self.state.dimension} head states")

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_neu(self, use_neu: bool) -> 'SolverPPP':
        """Estimate dLat/dLon/dH (True) or dx/dy/dz (False); restarts the filter"""
        if use_neu != self.config.use_neu:
            self.config.use_neu = use_neu
            self._restart("coordinate frame changed")
        return self

    def set_sat_system(self, use_gps: bool = True, use_glonass: bool = False,
                       use_beidou: bool = False, use_galileo: bool = False) -> 'SolverPPP':
        """Select the constellations to process; restarts the filter"""
        previous = (self.config.use_gps, self.config.use_glonass,
                    self.config.use_galileo, self.config.use_beidou)
        self.config.use_gps = use_gps
        self.config.use_glonass = use_glonass
        self.config.use_beidou = use_beidou
        self.config.use_galileo = use_galileo
        try:
            self.config.validate()
        except ValueError:
            (self.config.use_gps, self.config.use_glonass,
             self.config.use_galileo, self.config.use_beidou) = previous
            raise
        if previous != (use_gps, use_glonass, use_galileo, use_beidou):
            self._restart("constellation selection changed")
        return self

    def set_coordinates_model(self, model: StochasticModel) -> 'SolverPPP':
        """
        Use one model for all three coordinates

        Intended for constant or white noise coordinates. For a random walk
        on the coordinates configure each axis on its own.
        """
        for axis in range(3):
            self._set_coordinate_model(axis, model)
        return self

    def set_x_coordinates_model(self, model: StochasticModel) -> 'SolverPPP':
        return self._set_coordinate_model(0, model)

    def set_y_coordinates_model(self, model: StochasticModel) -> 'SolverPPP':
        return self._set_coordinate_model(1, model)

    def set_z_coordinates_model(self, model: StochasticModel) -> 'SolverPPP':
        return self._set_coordinate_model(2, model)

    def _set_coordinate_model(self, axis: int, model: StochasticModel) -> 'SolverPPP':
        self.config.coordinate_models[axis] = model
        if not self.config.kinematic:
            self._apply_head_model(coordinate_types(self.config.use_neu)[axis], model)
        return self

    def get_coordinates_models(self) -> List[StochasticModel]:
        return self.config.effective_coordinate_models()

    def set_troposphere_model(self, model: StochasticModel) -> 'SolverPPP':
        self.config.troposphere_model = model
        return self._apply_head_model(StateType.WET_MAP, model)

    def get_troposphere_model(self) -> StochasticModel:
        return self.config.troposphere_model

    def set_receiver_clock_model(self, model: StochasticModel) -> 'SolverPPP':
        self.config.clock_model = model
        return self._apply_head_model(StateType.CDT, model)

    def get_receiver_clock_model(self) -> StochasticModel:
        return self.config.clock_model

    def set_phase_biases_model(self, model: PhaseAmbiguityModel) -> 'SolverPPP':
        """Replace the ambiguity model; it must be a PhaseAmbiguityModel"""
        if not isinstance(model, PhaseAmbiguityModel):
            raise ValueError("Phase biases must use a PhaseAmbiguityModel")
        self.config.ambiguity_model = model
        self.state.set_ambiguity_model(model)
        return self

    def get_phase_biases_model(self) -> PhaseAmbiguityModel:
        return self.config.ambiguity_model

    def set_isb_model(self, system: int, model: StochasticModel) -> 'SolverPPP':
        """Set the inter-system bias model of GLONASS, Galileo or BeiDou"""
        if system not in ISB_TYPES:
            raise ValueError(f"No inter-system bias for system {system}")
        self.config.isb_models[system] = model
        if system in self.state.isb_models:
            self.state.isb_models[system] = model
        return self._apply_head_model(ISB_TYPES[system], model)

    def get_isb_model(self, system: int) -> StochasticModel:
        return self.config.isb_models[system]

    def set_kinematic(self, kinematic: bool = True, sigma_x: float = 100.0,
                      sigma_y: float = 100.0, sigma_z: float = 100.0) -> 'SolverPPP':
        """Switch coordinates between white noise (kinematic) and their configured models"""
        self.config.kinematic = kinematic
        self.config.kinematic_sigmas = (sigma_x, sigma_y, sigma_z)
        coords = coordinate_types(self.config.use_neu)
        for key, model in zip(coords, self.config.effective_coordinate_models()):
            self._apply_head_model(key, model)
        return self

    def set_weight_factor(self, factor: float) -> 'SolverPPP':
        """
        Set the code_sigma/phase_sigma ratio

        A code sigma of 1 m and a phase sigma of 1 cm give factor 100; the
        stored variance ratio is factor**2.
        """
        if factor <= 0.0:
            raise ValueError(f"Weight factor must be positive: {factor}")
        self.config.weight_factor = factor * factor
        return self

    def get_weight_factor(self) -> float:
        """Code_sigma/phase_sigma ratio"""
        return float(np.sqrt(self.config.weight_factor))

    def set_buffer_size(self, size: int) -> 'SolverPPP':
        self.tracker.resize(size)
        self.config.buffer_size = size
        return self

    def _apply_head_model(self, key: StateType, model: StochasticModel) -> 'SolverPPP':
        if self.state.initialized and key in self.state:
            self.state.set_model(key, model)
        return self

    def _restart(self, reason: str):
        self.log.info(f"filter restarted: {reason}")
        self._new_state()
        self.tracker.reset()
        self._pending = None

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def prepare_epoch(self, slip_flags: Mapping[int, bool],
                      systems: Optional[Iterable[int]] = None) -> 'SolverPPP':
        """
        Register the satellites of the next compute() call

        The state is reconciled with these satellites inside that call, so
        the design matrix passed to compute() must follow the reconciled
        layout (see expected_unknowns()).

        Parameters:
        -----------
        slip_flags : Mapping[int, bool]
            Satellites with a phase ambiguity -> cycle slip flag
        systems : Iterable[int], optional
            Systems contributing measurements (for inter-system biases)
        """
        self._pending = (dict(slip_flags), None if systems is None else set(systems))
        return self

    def expected_unknowns(self) -> List[StateKey]:
        """State layout the next compute() call will use"""
        if self._pending is None:
            if not self.state.initialized:
                return list(self.config.head_layout()[0])
            return self.state.labels
        snap = self.state.snapshot()
        try:
            self._ensure_initialized()
            self.state.reconcile(*self._pending)
            return self.state.labels
        finally:
            self.state.restore(snap)

    def compute(self,
                prefit: np.ndarray,
                design_matrix: np.ndarray,
                weights: np.ndarray,
                phase_mask: Optional[np.ndarray] = None,
                time: Optional[float] = None,
                phi: Optional[np.ndarray] = None,
                q: Optional[np.ndarray] = None,
                passed: Optional[bool] = None) -> SolverStatus:
        """
        Solve one epoch's equation system

        Parameters:
        -----------
        prefit : np.ndarray
            Prefit residuals, shape (m,)
        design_matrix : np.ndarray
            Design matrix, shape (m, n), columns in state order
        weights : np.ndarray
            Weight vector (m,) or weight matrix (m, m). These are weights,
            not measurement variances.
        phase_mask : np.ndarray, optional
            Boolean mask of phase rows; their variance is divided by the
            weight factor
        time : float, optional
            Epoch time (s); drives random walk noise and TTFC
        phi, q : np.ndarray, optional
            Explicit transition and process noise diagonals overriding the
            stochastic models for this epoch
        passed : bool, optional
            Convergence indicator of this epoch; by default the formal
            position sigma is compared with the configured threshold

        Returns:
        --------
        SolverStatus
            SolverStatus.OK

        Raises:
        -------
        DimensionMismatch, SingularInnovation
            The epoch is rejected and the filter state left unchanged
        """
        snap = self._snapshot()
        pending, self._pending = self._pending, None
        num_sats = None
        try:
            self._ensure_initialized()
            if pending is not None:
                self.state.reconcile(*pending)
                num_sats = len(pending[0])

            z = np.asarray(prefit, dtype=float).reshape(-1)
            H = np.asarray(design_matrix, dtype=float)
            W = np.asarray(weights, dtype=float)
            check_dimensions(z, H, W, self.state.dimension)
            if phase_mask is not None:
                phase_mask = np.asarray(phase_mask, dtype=bool).reshape(-1)
                if len(phase_mask) != len(z):
                    raise DimensionMismatch(
                        f"Phase mask has {len(phase_mask)} entries, expected {len(z)}")

            postfit = self._filter(z, H, W, phase_mask, time, phi, q)
        except SolverError as e:
            self._restore(snap)
            self._pending = pending
            self.log.warning(f"epoch {time} rejected: {e}")
            raise

        self._commit(time, passed, num_sats)
        self.postfit_residuals = postfit
        return SolverStatus.OK

    def process(self, epoch: EpochRecord, passed: Optional[bool] = None) -> SolverStatus:
        """
        Solve one epoch and write postfit residuals back into it

        Satellites of disabled constellations are ignored. Satellites
        without a phase prefit contribute a code equation only.

        Parameters:
        -----------
        epoch : EpochRecord
            Epoch equations; postfit_code/postfit_phase of the used
            satellites are filled in on success
        passed : bool, optional
            Convergence indicator of this epoch (see compute())

        Returns:
        --------
        SolverStatus
            SolverStatus.OK

        Raises:
        -------
        InsufficientSatellites, DimensionMismatch, SingularInnovation
            The epoch is rejected and the filter state left unchanged
        """
        self._pending = None
        usable = usable_satellites(epoch, self.config.enabled_systems)
        if len(usable) < self.config.min_satellites:
            self.log.warning(f"epoch {epoch.time}: only {len(usable)} usable satellites")
            raise InsufficientSatellites(
                f"{len(usable)} usable satellites, at least {self.config.min_satellites} required")

        snap = self._snapshot()
        try:
            self._ensure_initialized()
            slips = {sat: data.cycle_slip for sat, data in usable.items() if data.has_phase}
            self.state.reconcile(slips, {data.system for data in usable.values()})
            equations = build_equations(usable, self.state)
            postfit = self._filter(equations.prefit, equations.H, equations.weights,
                                   equations.phase_mask, epoch.time, None, None)
        except SolverError as e:
            self._restore(snap)
            self.log.warning(f"epoch {epoch.time} rejected: {e}")
            raise

        self._commit(epoch.time, passed, len(usable))
        self.postfit_residuals = postfit
        write_postfits(usable, equations, postfit)
        return SolverStatus.OK

    def _filter(self, z, H, W, phase_mask, time, phi, q) -> np.ndarray:
        """Predict and update on a copy; returns postfit residuals"""
        n = self.state.dimension
        if phi is None or q is None:
            phi_m, q_m = self.state.propagation(self._dt(time))
            phi = phi_m if phi is None else phi
            q = q_m if q is None else q

        self.kalman.reset(self.state.x, self.state.P)
        if len(np.ravel(phi)) != n or len(np.ravel(q)) != n:
            raise DimensionMismatch(f"Transition and noise must have {n} entries")
        self.kalman.predict(phi, q)
        self.kalman.update(z, H, W, phase_mask, self.config.weight_factor)
        return self.kalman.postfit

    def _dt(self, time: Optional[float]) -> float:
        if time is None or self._last_time is None:
            return 0.0
        return time - self._last_time

    def _snapshot(self):
        return self.state.snapshot(), self._last_time

    def _restore(self, snap):
        state, self._last_time = snap
        self.state.restore(state)

    def _commit(self, time: Optional[float], passed: Optional[bool], num_sats: Optional[int]):
        self.state.x = self.kalman.x.copy()
        self.state.P = self.kalman.P.copy()
        self._phi = self.kalman.phi.copy()
        self._q = self.kalman.q.copy()
        if time is not None:
            self._last_time = time
        t = float(time) if time is not None else float(self._epochs)
        self._epochs += 1

        if passed is None:
            passed = self.position_sigma() < self.config.position_sigma_threshold
        converged = self.tracker.update(passed, t)

        row = {'time': t}
        for key in self.state.head:
            i = self.state.index_of(key)
            row[key.value] = float(self.state.x[i])
            row[f"sigma_{key.value}"] = float(np.sqrt(max(self.state.P[i, i], 0.0)))
        row['num_sats'] = num_sats
        row['num_ambiguities'] = len(self.state.satellites)
        row['converged'] = converged
        self._history.append(row)

    def reset(self, state: Optional[np.ndarray] = None,
              covariance: Optional[np.ndarray] = None) -> 'SolverPPP':
        """
        Reset the filter

        Without arguments the whole state is discarded and the next epoch
        starts from the configured priors. With a head state and covariance
        (wet troposphere, coordinates, clock and existing ISBs: 5x1/5x5 for
        a single constellation, 6x1/6x6 with one ISB) the head is
        overwritten and all ambiguities are cleared, so every satellite
        restarts as a new ambiguity. The convergence window is always
        cleared; the TTFC log is kept.
        """
        if state is None and covariance is None:
            self.state.clear()
        elif state is None or covariance is None:
            raise ValueError("Both state and covariance are required")
        else:
            snap = self.state.snapshot()
            try:
                self._ensure_initialized()
                self.state.set_head(state, covariance)
            except SolverError:
                self.state.restore(snap)
                raise
        self.tracker.reset()
        self._pending = None
        self.log.info("filter reset")
        return self

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    @property
    def unknowns(self) -> List[StateKey]:
        return self.state.labels

    @property
    def num_unknowns(self) -> int:
        return self.state.dimension

    @property
    def solution(self) -> np.ndarray:
        if not self.state.initialized:
            raise InvalidRequest("No solution available")
        return self.state.x.copy()

    @property
    def covariance(self) -> np.ndarray:
        if not self.state.initialized:
            raise InvalidRequest("No covariance available")
        return self.state.P.copy()

    def get_solution(self, var) -> float:
        """Estimate of a head variable, an Ambiguity or a satellite's ambiguity"""
        return self.state.value(var)

    def get_variance(self, var) -> float:
        """Formal variance of a head variable, an Ambiguity or a satellite's ambiguity"""
        return self.state.variance(var)

    def position_sigma(self) -> float:
        """Formal 3D position sigma (m)"""
        return float(np.sqrt(sum(self.get_variance(key)
                                 for key in coordinate_types(self.config.use_neu))))

    @property
    def phi(self) -> Optional[np.ndarray]:
        """Transition diagonal of the last successful epoch"""
        return None if self._phi is None else self._phi.copy()

    @property
    def q(self) -> Optional[np.ndarray]:
        """Process noise diagonal of the last successful epoch"""
        return None if self._q is None else self._q.copy()

    @property
    def converged(self) -> bool:
        return self.tracker.converged

    def get_converged(self) -> bool:
        return self.tracker.converged

    def get_ttfc(self) -> List[float]:
        return list(self.tracker.ttfc)

    def ttfc_series(self) -> pd.Series:
        return self.tracker.ttfc_series()

    def solution_history(self) -> pd.DataFrame:
        """One row per processed epoch with head estimates, sigmas and status"""
        return pd.DataFrame(self._history)
