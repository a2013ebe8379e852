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

"""Configuration of the PPP solver"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Tuple

from ..core.constants import (BUFFER_SIZE, MIN_SATELLITES, PPP_SYSTEMS,
                              QPRIME_ISB, QPRIME_TROPO, SIGMA_AMBIGUITY,
                              SIGMA_CLOCK, SIGMA_KINEMATIC, STD_CLOCK,
                              STD_COORD, STD_ISB, STD_TROPO, SYS_BDS, SYS_GAL,
                              SYS_GLO, SYS_GPS, THRES_POS_SIGMA, WEIGHT_FACTOR,
                              char2sys, sys2char)
from ..core.data_structures import StateType, coordinate_types
from .stochastic import (ConstantModel, PhaseAmbiguityModel, RandomWalkModel,
                         StochasticModel, WhiteNoiseModel, build_model)


def _default_isb_models():
    return {sys: RandomWalkModel(QPRIME_ISB) for sys in (SYS_GLO, SYS_GAL, SYS_BDS)}


@dataclass
class SolverConfig:
    """
    Settings of the PPP solver, applied before or between runs

    Attributes:
        use_neu: Estimate dLat/dLon/dH instead of dx/dy/dz
        use_gps, use_glonass, use_galileo, use_beidou: Constellations to use.
            The first enabled one (in that order) is the clock reference.
        coordinate_models: One stochastic model per coordinate axis
        troposphere_model: Model of the zenith wet delay
        clock_model: Model of the receiver clock
        ambiguity_model: Model of the phase ambiguities
        isb_models: System ID -> model of its inter-system bias
        kinematic: Replace coordinate models by white noise
        kinematic_sigmas: White noise sigma per axis in kinematic mode (m)
        tropo_sigma, coord_sigma, clock_sigma, isb_sigma: Initial sigmas (m)
        weight_factor: Code/phase variance ratio
        buffer_size: Convergence window length (epochs)
        position_sigma_threshold: Formal 3D position sigma counted as a
            passing epoch when the caller supplies no indicator (m)
        min_satellites: Minimum usable satellites per processed epoch
    """
    use_neu: bool = False
    use_gps: bool = True
    use_glonass: bool = False
    use_galileo: bool = False
    use_beidou: bool = False
    coordinate_models: List[StochasticModel] = field(
        default_factory=lambda: [ConstantModel(), ConstantModel(), ConstantModel()])
    troposphere_model: StochasticModel = field(default_factory=lambda: RandomWalkModel(QPRIME_TROPO))
    clock_model: StochasticModel = field(default_factory=lambda: WhiteNoiseModel(SIGMA_CLOCK))
    ambiguity_model: PhaseAmbiguityModel = field(default_factory=lambda: PhaseAmbiguityModel(SIGMA_AMBIGUITY))
    isb_models: Dict[int, StochasticModel] = field(default_factory=_default_isb_models)
    kinematic: bool = False
    kinematic_sigmas: Tuple[float, float, float] = (SIGMA_KINEMATIC, SIGMA_KINEMATIC, SIGMA_KINEMATIC)
    tropo_sigma: float = STD_TROPO
    coord_sigma: float = STD_COORD
    clock_sigma: float = STD_CLOCK
    isb_sigma: float = STD_ISB
    weight_factor: float = WEIGHT_FACTOR
    buffer_size: int = BUFFER_SIZE
    position_sigma_threshold: float = THRES_POS_SIGMA
    min_satellites: int = MIN_SATELLITES

    @property
    def enabled_systems(self) -> List[int]:
        flags = {
            SYS_GPS: self.use_gps,
            SYS_GLO: self.use_glonass,
            SYS_GAL: self.use_galileo,
            SYS_BDS: self.use_beidou,
        }
        return [sys for sys in PPP_SYSTEMS if flags[sys]]

    @property
    def reference_system(self) -> int:
        systems = self.enabled_systems
        if not systems:
            raise ValueError("No satellite system enabled")
        return systems[0]

    def effective_coordinate_models(self) -> List[StochasticModel]:
        """Coordinate models after applying the kinematic switch"""
        if self.kinematic:
            return [WhiteNoiseModel(s) for s in self.kinematic_sigmas]
        return list(self.coordinate_models)

    def head_layout(self):
        """
        Initial head variables with their models and priors

        Returns:
        --------
        head : list of StateType
        models : list of StochasticModel
        values : list of float
        variances : list of float
        """
        coords = coordinate_types(self.use_neu)
        head = [StateType.WET_MAP, *coords, StateType.CDT]
        models = [self.troposphere_model, *self.effective_coordinate_models(), self.clock_model]
        values = [0.0] * len(head)
        variances = ([self.tropo_sigma ** 2] + [self.coord_sigma ** 2] * 3 +
                     [self.clock_sigma ** 2])
        return head, models, values, variances

    def isb_model_map(self) -> Dict[int, StochasticModel]:
        """ISB models of the enabled, non-reference systems"""
        ref = self.reference_system
        return {sys: self.isb_models[sys] for sys in self.enabled_systems
                if sys != ref and sys in self.isb_models}

    def validate(self) -> 'SolverConfig':
        """Check consistency; raises ValueError"""
        if not self.enabled_systems:
            raise ValueError("No satellite system enabled")
        if len(self.coordinate_models) != 3:
            raise ValueError("Exactly three coordinate models are required")
        if len(self.kinematic_sigmas) != 3:
            raise ValueError("Exactly three kinematic sigmas are required")
        if not isinstance(self.ambiguity_model, PhaseAmbiguityModel):
            raise ValueError("Ambiguities must use a PhaseAmbiguityModel")
        if self.weight_factor <= 0.0:
            raise ValueError(f"Weight factor must be positive: {self.weight_factor}")
        if self.buffer_size < 1:
            raise ValueError(f"Buffer size must be positive: {self.buffer_size}")
        if self.min_satellites < 1:
            raise ValueError(f"Minimum satellites must be positive: {self.min_satellites}")
        for name in ('tropo_sigma', 'coord_sigma', 'clock_sigma', 'isb_sigma'):
            if getattr(self, name) <= 0.0:
                raise ValueError(f"{name} must be positive")
        return self

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'SolverConfig':
        """
        Build a configuration from a plain dictionary

        Model entries accept anything build_model() accepts; ISB models are
        keyed by system character ('R', 'E', 'C') or system ID.

        Example config:
        {
            'use_galileo': True,
            'troposphere_model': {'type': 'random_walk', 'qprime': 3e-8},
            'coordinate_models': ['constant', 'constant', 'constant'],
            'isb_models': {'E': {'type': 'constant'}},
            'weight_factor': 10000.0
        }
        """
        known = {f.name for f in fields(cls)}
        unknown = set(config) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

        kwargs = dict(config)
        if 'coordinate_models' in kwargs:
            kwargs['coordinate_models'] = [build_model(m) for m in kwargs['coordinate_models']]
        for name in ('troposphere_model', 'clock_model', 'ambiguity_model'):
            if name in kwargs:
                kwargs[name] = build_model(kwargs[name])
        if 'isb_models' in kwargs:
            isb = _default_isb_models()
            for key, entry in kwargs['isb_models'].items():
                sys = char2sys(key) if isinstance(key, str) else int(key)
                if sys not in isb:
                    raise ValueError(f"No inter-system bias for system {key!r}")
                isb[sys] = build_model(entry)
            kwargs['isb_models'] = isb
        if 'kinematic_sigmas' in kwargs:
            kwargs['kinematic_sigmas'] = tuple(kwargs['kinematic_sigmas'])

        return cls(**kwargs).validate()

    def to_dict(self) -> Dict[str, Any]:
        out = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == 'coordinate_models':
                value = [m.to_dict() for m in value]
            elif isinstance(value, StochasticModel):
                value = value.to_dict()
            elif f.name == 'isb_models':
                value = {sys2char(sys): m.to_dict() for sys, m in value.items()}
            elif f.name == 'kinematic_sigmas':
                value = list(value)
            out[f.name] = value
        return out
