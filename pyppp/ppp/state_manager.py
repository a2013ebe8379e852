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

"""Dynamic-dimension state vector and covariance of the PPP filter.

The state vector is a fixed head (wet troposphere, coordinates, receiver
clock and the inter-system biases introduced so far) followed by one phase
ambiguity per tracked satellite. Before every prediction the manager
reconciles the previous epoch's (x, P) with the current satellite set:

- satellites seen for the first time get a new ambiguity with the prior
  variance and no correlation with the existing states
- satellites missing from the epoch are dropped; if they come back they
  start again as new ambiguities
- satellites flagged with a cycle slip get their ambiguity reset
- constellations contributing for the first time get an inter-system bias
  appended to the head

Existing entries keep their values and covariances exactly; only rows and
columns are inserted or removed.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from ..core.constants import SYS_GPS, sat2sys
from ..core.data_structures import ISB_TYPES, Ambiguity, StateKey, StateType
from ..core.errors import DimensionMismatch, InvalidRequest
from ..core.satellite_numbering import sat_to_id
from .stochastic import PhaseAmbiguityModel, StochasticModel

logger = logging.getLogger(__name__)


@dataclass
class SatelliteTrack:
    """Tracking record of one satellite for the current epoch"""
    sat: int
    system: int
    active: bool
    index: Optional[int] = None
    cycle_slip: bool = False


class ReconcileReport(NamedTuple):
    """What a reconciliation step changed"""
    added: List[int]
    dropped: List[int]
    reset: List[int]
    new_isb: List[StateType]


class StateSnapshot(NamedTuple):
    labels: Tuple[StateKey, ...]
    models: Tuple[StochasticModel, ...]
    head_size: int
    x: Optional[np.ndarray]
    P: Optional[np.ndarray]
    systems: Dict[int, int]
    slips: frozenset
    initialized: bool


class DynamicStateManager:
    """
    State vector, covariance and per-variable stochastic models of the filter

    Parameters:
    -----------
    ambiguity_model : PhaseAmbiguityModel
        Model shared by all ambiguities; its sigma is the prior of new
        ambiguities and the reset value after a cycle slip
    isb_models : Dict[int, StochasticModel]
        System ID -> model of the inter-system bias of that constellation.
        Only systems listed here can get an ISB.
    isb_prior : Tuple[float, float]
        Initial value and variance of a new inter-system bias
    reference_system : int
        Constellation the receiver clock refers to; it never gets an ISB
    """

    def __init__(self,
                 ambiguity_model: Optional[PhaseAmbiguityModel] = None,
                 isb_models: Optional[Dict[int, StochasticModel]] = None,
                 isb_prior: Tuple[float, float] = (0.0, 1.0e4),
                 reference_system: int = SYS_GPS):
        self.ambiguity_model = ambiguity_model or PhaseAmbiguityModel()
        self.isb_models = dict(isb_models or {})
        self.isb_prior = isb_prior
        self.reference_system = reference_system

        self._labels: List[StateKey] = []
        self._models: List[StochasticModel] = []
        self._index: Dict[StateKey, int] = {}
        self._head_size = 0
        self._systems: Dict[int, int] = {}
        self._slips = frozenset()
        self.x: Optional[np.ndarray] = None
        self.P: Optional[np.ndarray] = None
        self.initialized = False

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    @property
    def dimension(self) -> int:
        return len(self._labels)

    @property
    def head_size(self) -> int:
        return self._head_size

    @property
    def labels(self) -> List[StateKey]:
        """Ordered identities of the state vector"""
        return list(self._labels)

    @property
    def head(self) -> List[StateType]:
        return list(self._labels[:self._head_size])

    @property
    def models(self) -> List[StochasticModel]:
        return list(self._models)

    @property
    def satellites(self) -> List[int]:
        """Satellites with an ambiguity state, in state order"""
        return [key.sat for key in self._labels[self._head_size:]]

    @property
    def isb_systems(self) -> List[int]:
        """Systems owning an ISB state, in state order"""
        by_type = {t: s for s, t in ISB_TYPES.items()}
        return [by_type[key] for key in self.head if key in by_type]

    def index_of(self, key) -> int:
        """
        State index of a variable

        Parameters:
        -----------
        key : StateType, Ambiguity or int
            Head variable, ambiguity, or satellite number (ambiguity)

        Returns:
        --------
        int
            Position in the state vector
        """
        if isinstance(key, (int, np.integer)) and not isinstance(key, bool):
            key = Ambiguity(int(key))
        try:
            return self._index[key]
        except KeyError:
            raise InvalidRequest(f"Variable {key} is not part of the state") from None

    def __contains__(self, key) -> bool:
        if isinstance(key, (int, np.integer)) and not isinstance(key, bool):
            key = Ambiguity(int(key))
        return key in self._index

    def value(self, key) -> float:
        self._check_initialized()
        return float(self.x[self.index_of(key)])

    def variance(self, key) -> float:
        self._check_initialized()
        i = self.index_of(key)
        return float(self.P[i, i])

    def tracking_records(self) -> List[SatelliteTrack]:
        """Tracking records of every satellite seen since initialization"""
        records = []
        for sat, system in sorted(self._systems.items()):
            key = Ambiguity(sat)
            records.append(SatelliteTrack(
                sat=sat,
                system=system,
                active=key in self._index,
                index=self._index.get(key),
                cycle_slip=sat in self._slips))
        return records

    def _rebuild_index(self):
        self._index = {key: i for i, key in enumerate(self._labels)}

    def _check_initialized(self):
        if not self.initialized:
            raise InvalidRequest("State has not been initialized")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self,
                   head: Sequence[StateType],
                   models: Sequence[StochasticModel],
                   values: Sequence[float],
                   variances: Sequence[float]):
        """
        Create the head block with its priors; the ambiguity tail starts empty

        Parameters:
        -----------
        head : Sequence[StateType]
            Head variables in state order
        models : Sequence[StochasticModel]
            One model per head variable
        values, variances : Sequence[float]
            Prior value and variance per head variable
        """
        n = len(head)
        if not (len(models) == len(values) == len(variances) == n):
            raise DimensionMismatch(
                f"Head of size {n} needs {n} models, values and variances")
        if len(set(head)) != n:
            raise ValueError(f"Duplicate head variables: {list(head)}")

        self._labels = list(head)
        self._models = list(models)
        self._head_size = n
        self._systems = {}
        self._slips = frozenset()
        self.x = np.asarray(values, dtype=float).copy()
        self.P = np.diag(np.asarray(variances, dtype=float))
        self._rebuild_index()
        self.initialized = True
        logger.debug(f"State initialized: {[str(getattr(k, 'value', k)) for k in head]}")

    def set_head(self, state: np.ndarray, covariance: np.ndarray):
        """
        Overwrite the head block and clear the ambiguity tail

        Parameters:
        -----------
        state : np.ndarray
            New head state, shape (head_size,)
        covariance : np.ndarray
            New head covariance, shape (head_size, head_size)
        """
        self._check_initialized()
        state = np.asarray(state, dtype=float).reshape(-1)
        covariance = np.asarray(covariance, dtype=float)
        n = self._head_size
        if state.shape != (n,) or covariance.shape != (n, n):
            raise DimensionMismatch(
                f"Reset needs a {n}x1 state and a {n}x{n} covariance, "
                f"got {state.shape} and {covariance.shape}")

        self._labels = self._labels[:n]
        self._models = self._models[:n]
        self._slips = frozenset()
        self.x = state.copy()
        self.P = covariance.copy()
        self._rebuild_index()

    def clear(self):
        """Discard the whole state; the next epoch starts from the priors"""
        self._labels = []
        self._models = []
        self._index = {}
        self._head_size = 0
        self._systems = {}
        self._slips = frozenset()
        self.x = None
        self.P = None
        self.initialized = False

    def set_model(self, key: StateType, model: StochasticModel):
        """Replace the stochastic model of a head variable already in the state"""
        i = self.index_of(key)
        if i >= self._head_size:
            raise ValueError("Ambiguity models are shared; use set_ambiguity_model()")
        self._models[i] = model

    def set_ambiguity_model(self, model: PhaseAmbiguityModel):
        """Replace the model of all current and future ambiguities"""
        self.ambiguity_model = model
        for i in range(self._head_size, len(self._models)):
            self._models[i] = model

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            labels=tuple(self._labels),
            models=tuple(self._models),
            head_size=self._head_size,
            x=None if self.x is None else self.x.copy(),
            P=None if self.P is None else self.P.copy(),
            systems=dict(self._systems),
            slips=self._slips,
            initialized=self.initialized)

    def restore(self, snap: StateSnapshot):
        self._labels = list(snap.labels)
        self._models = list(snap.models)
        self._head_size = snap.head_size
        self.x = None if snap.x is None else snap.x.copy()
        self.P = None if snap.P is None else snap.P.copy()
        self._systems = dict(snap.systems)
        self._slips = snap.slips
        self.initialized = snap.initialized
        self._rebuild_index()

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self,
                  slip_flags: Mapping[int, bool],
                  systems: Optional[Iterable[int]] = None) -> ReconcileReport:
        """
        Adapt state and covariance to the satellites of the current epoch

        Parameters:
        -----------
        slip_flags : Mapping[int, bool]
            Satellites carrying a phase ambiguity this epoch -> cycle slip flag
        systems : Iterable[int], optional
            Systems contributing measurements this epoch (code-only
            satellites included). Defaults to the systems of slip_flags.

        Returns:
        --------
        ReconcileReport
            Satellites added, dropped and reset, and ISBs created
        """
        self._check_initialized()
        current = set(int(s) for s in slip_flags)
        if systems is None:
            systems = {sat2sys(s) for s in current}

        new_isb = self._add_isbs(systems)

        tracked = self.satellites
        dropped = [s for s in tracked if s not in current]
        kept = [s for s in tracked if s in current]
        added = sorted(current.difference(tracked))
        reset = [s for s in kept if slip_flags[s]]

        # Compact: head plus surviving ambiguities, in their previous order
        old_idx = np.array(list(range(self._head_size)) +
                           [self._index[Ambiguity(s)] for s in kept], dtype=int)
        n_keep = len(old_idx)
        n_new = n_keep + len(added)
        prior_var = self.ambiguity_model.variance

        x = np.zeros(n_new)
        P = np.zeros((n_new, n_new))
        x[:n_keep] = self.x[old_idx]
        P[:n_keep, :n_keep] = self.P[np.ix_(old_idx, old_idx)]

        # Append new ambiguities: zero value, prior variance, uncorrelated
        for k in range(n_keep, n_new):
            P[k, k] = prior_var

        labels = self._labels[:self._head_size] + [Ambiguity(s) for s in kept + added]
        models = self._models[:self._head_size] + [self.ambiguity_model] * (len(kept) + len(added))

        self._labels = labels
        self._models = models
        self.x = x
        self.P = P
        self._rebuild_index()

        for sat in reset:
            self._reset_entry(self._index[Ambiguity(sat)], 0.0, prior_var)

        self._slips = frozenset(s for s in current if slip_flags[s])
        self._systems.update((s, sat2sys(s)) for s in current)

        for sat in added:
            logger.debug(f"New ambiguity: {sat_to_id(sat)}")
        for sat in dropped:
            logger.debug(f"Dropped ambiguity: {sat_to_id(sat)}")
        for sat in reset:
            logger.debug(f"Cycle slip, ambiguity reset: {sat_to_id(sat)}")

        return ReconcileReport(added=added, dropped=dropped, reset=reset, new_isb=new_isb)

    def _add_isbs(self, systems: Iterable[int]) -> List[StateType]:
        """Append an ISB to the head for each constellation seen for the first time"""
        created = []
        for system in sorted(set(systems)):
            if system == self.reference_system or system not in self.isb_models:
                continue
            key = ISB_TYPES.get(system)
            if key is None or key in self._index:
                continue

            pos = self._head_size
            value, var = self.isb_prior
            self.x = np.insert(self.x, pos, value)
            self.P = np.insert(np.insert(self.P, pos, 0.0, axis=0), pos, 0.0, axis=1)
            self.P[pos, pos] = var
            self._labels.insert(pos, key)
            self._models.insert(pos, self.isb_models[system])
            self._head_size += 1
            self._rebuild_index()
            created.append(key)
            logger.debug(f"New inter-system bias: {key.value}")
        return created

    def _reset_entry(self, i: int, value: float, variance: float):
        self.x[i] = value
        self.P[i, :] = 0.0
        self.P[:, i] = 0.0
        self.P[i, i] = variance

    # ------------------------------------------------------------------
    # Propagation
    # ------------------------------------------------------------------

    def propagation(self, dt: float) -> Tuple[np.ndarray, np.ndarray]:
        """
        Diagonals of the transition and process noise matrices

        Parameters:
        -----------
        dt : float
            Time elapsed since the previous epoch (s)

        Returns:
        --------
        phi : np.ndarray
            Transition factor per state
        q : np.ndarray
            Process noise variance per state
        """
        n = self.dimension
        phi = np.empty(n)
        q = np.empty(n)
        for i, (key, model) in enumerate(zip(self._labels, self._models)):
            slip = isinstance(key, Ambiguity) and key.sat in self._slips
            phi[i], q[i] = model.propagate(dt, cycle_slip=slip)
        return phi, q
