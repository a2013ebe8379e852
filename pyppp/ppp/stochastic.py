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

"""Stochastic models driving the time update of each state variable.

Every model exposes one operation, ``propagate(dt, cycle_slip=False)``,
returning the scalar state transition ``phi`` and process noise ``q`` used
to build the diagonal transition and noise matrices:

    x' = phi * x
    P' = phi * P * phi + q

Models are immutable value objects. They keep no epoch history, so the
elapsed time is always supplied by the caller.
"""

from dataclasses import dataclass
from typing import Any, Dict, Tuple, Union

from ..core.constants import SIGMA_AMBIGUITY


class StochasticModel:
    """Base class of the stochastic models"""

    kind = 'base'

    #: True for models whose propagation depends on the previous state
    #: (random walk). Such an instance should not be shared across axes.
    state_aware = False

    def propagate(self, dt: float, cycle_slip: bool = False) -> Tuple[float, float]:
        """
        Transition and process noise over an elapsed time

        Parameters:
        -----------
        dt : float
            Time elapsed since the previous epoch (s)
        cycle_slip : bool
            Cycle slip flag of the satellite owning the variable; only
            meaningful for phase ambiguities

        Returns:
        --------
        phi : float
            State transition factor
        q : float
            Process noise variance
        """
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.kind}


@dataclass(frozen=True)
class ConstantModel(StochasticModel):
    """Constant variable: only measurement updates change it"""

    kind = 'constant'

    def propagate(self, dt: float, cycle_slip: bool = False) -> Tuple[float, float]:
        return 1.0, 0.0


@dataclass(frozen=True)
class WhiteNoiseModel(StochasticModel):
    """White noise variable: forgotten at every epoch.

    Parameters
    ----------
    sigma : float
        Standard deviation the variable is reset to (m)
    """
    sigma: float = 1.0

    kind = 'white_noise'

    def __post_init__(self):
        if self.sigma < 0.0:
            raise ValueError(f"White noise sigma must be non-negative: {self.sigma}")

    def propagate(self, dt: float, cycle_slip: bool = False) -> Tuple[float, float]:
        return 0.0, self.sigma * self.sigma

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.kind, 'sigma': self.sigma}


@dataclass(frozen=True)
class RandomWalkModel(StochasticModel):
    """Random walk variable: variance grows linearly with time.

    Parameters
    ----------
    qprime : float
        Process spectral density (m^2/s)
    """
    qprime: float = 0.0

    kind = 'random_walk'
    state_aware = True

    def __post_init__(self):
        if self.qprime < 0.0:
            raise ValueError(f"Random walk qprime must be non-negative: {self.qprime}")

    def propagate(self, dt: float, cycle_slip: bool = False) -> Tuple[float, float]:
        return 1.0, self.qprime * abs(dt)

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.kind, 'qprime': self.qprime}


@dataclass(frozen=True)
class PhaseAmbiguityModel(StochasticModel):
    """Carrier-phase ambiguity: constant between cycle slips, white noise on a slip.

    Parameters
    ----------
    sigma : float
        Standard deviation the ambiguity is reset to on a cycle slip (m);
        also used as the prior of newly tracked satellites
    """
    sigma: float = SIGMA_AMBIGUITY

    kind = 'phase_ambiguity'

    def __post_init__(self):
        if self.sigma <= 0.0:
            raise ValueError(f"Ambiguity sigma must be positive: {self.sigma}")

    @property
    def variance(self) -> float:
        return self.sigma * self.sigma

    def propagate(self, dt: float, cycle_slip: bool = False) -> Tuple[float, float]:
        if cycle_slip:
            return 0.0, self.variance
        return 1.0, 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.kind, 'sigma': self.sigma}


MODEL_TYPES = {
    ConstantModel.kind: ConstantModel,
    WhiteNoiseModel.kind: WhiteNoiseModel,
    RandomWalkModel.kind: RandomWalkModel,
    PhaseAmbiguityModel.kind: PhaseAmbiguityModel,
}


def build_model(entry: Union[StochasticModel, str, Dict[str, Any]]) -> StochasticModel:
    """
    Build a stochastic model from a configuration entry

    Parameters:
    -----------
    entry : StochasticModel, str or dict
        A model instance (returned as is), a type name such as
        'constant', or a dict like {'type': 'random_walk', 'qprime': 3e-8}

    Returns:
    --------
    StochasticModel
        The configured model
    """
    if isinstance(entry, StochasticModel):
        return entry
    if isinstance(entry, str):
        entry = {'type': entry}
    if not isinstance(entry, dict) or 'type' not in entry:
        raise ValueError(f"Invalid stochastic model entry: {entry!r}")

    params = dict(entry)
    kind = params.pop('type').lower()
    if kind not in MODEL_TYPES:
        raise ValueError(f"Unknown stochastic model: {kind}")
    return MODEL_TYPES[kind](**params)
