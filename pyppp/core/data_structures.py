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

"""Core data structures exchanged between the PPP solver and its callers"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union

from .constants import (DEFAULT_WEIGHT, SYS_BDS, SYS_GAL, SYS_GLO, SYS_NONE,
                        sat2sys)
from .satellite_numbering import id_to_sat, sat_to_id


class StateType(Enum):
    """Identity of the scalar unknowns in the fixed head of the state vector.

    Attributes
    ----------
    WET_MAP : str
        Zenith wet tropospheric delay (m)
    DX, DY, DZ : str
        ECEF coordinate corrections (m)
    DLAT, DLON, DH : str
        Local-level (north, east, up) coordinate corrections (m)
    CDT : str
        Receiver clock offset (m)
    ISB_GLO, ISB_GAL, ISB_BDS : str
        Inter-system biases of GLONASS, Galileo and BeiDou w.r.t. the
        reference constellation (m)
    """
    WET_MAP = 'wetMap'
    DX = 'dx'
    DY = 'dy'
    DZ = 'dz'
    DLAT = 'dLat'
    DLON = 'dLon'
    DH = 'dH'
    CDT = 'cdt'
    ISB_GLO = 'ISB_GLO'
    ISB_GAL = 'ISB_GAL'
    ISB_BDS = 'ISB_BDS'


XYZ_TYPES = (StateType.DX, StateType.DY, StateType.DZ)
NEU_TYPES = (StateType.DLAT, StateType.DLON, StateType.DH)

ISB_TYPES = {
    SYS_GLO: StateType.ISB_GLO,
    SYS_GAL: StateType.ISB_GAL,
    SYS_BDS: StateType.ISB_BDS,
}


def coordinate_types(use_neu: bool = False):
    """Return the three coordinate unknowns for the chosen frame"""
    return NEU_TYPES if use_neu else XYZ_TYPES


@dataclass(frozen=True, order=True)
class Ambiguity:
    """Carrier-phase ambiguity unknown of one satellite (m)"""
    sat: int

    def __str__(self):
        return f"amb_{sat_to_id(self.sat)}"


StateKey = Union[StateType, Ambiguity]


@dataclass
class SatelliteData:
    """Measurement equations and results of one satellite at one epoch.

    Attributes
    ----------
    sat : int
        Satellite number using internal satellite numbering. A RINEX-style
        ID such as 'G05' is converted on construction.
    prefit_code : float
        Code prefit residual (observed minus computed, m)
    prefit_phase : float, optional
        Phase prefit residual (m); None when no phase is available
    partials : Dict[StateType, float]
        Partial derivatives of the measurement w.r.t. head unknowns. A
        missing CDT entry defaults to 1.0, any other missing entry to 0.0.
        ISB coefficients are filled in by the solver from the system.
    weight : float
        Code weight (1/m^2); phase rows are scaled by the weight factor
    cycle_slip : bool
        True if a cycle slip was flagged for this satellite at this epoch
    system : int
        Satellite system ID (derived from sat in __post_init__)
    postfit_code, postfit_phase : float, optional
        Postfit residuals written back by the solver
    """
    sat: Union[int, str]
    prefit_code: float
    prefit_phase: Optional[float] = None
    partials: Dict[StateType, float] = field(default_factory=dict)
    weight: float = DEFAULT_WEIGHT
    cycle_slip: bool = False
    system: int = field(init=False, default=SYS_NONE)
    postfit_code: Optional[float] = None
    postfit_phase: Optional[float] = None

    def __post_init__(self):
        if isinstance(self.sat, str):
            sat = id_to_sat(self.sat)
            if sat == 0:
                raise ValueError(f"Unknown satellite ID: {self.sat!r}")
            self.sat = sat
        self.system = sat2sys(self.sat)

    @property
    def has_phase(self) -> bool:
        """True if a phase equation is available"""
        return self.prefit_phase is not None

    def coefficient(self, var: StateType) -> float:
        """Design matrix coefficient of this satellite for a head unknown"""
        if var is StateType.CDT:
            return self.partials.get(var, 1.0)
        return self.partials.get(var, 0.0)


@dataclass
class EpochRecord:
    """All satellite equations of one epoch.

    Attributes
    ----------
    time : float
        Epoch time (s, any continuous time scale such as GPST seconds)
    satellites : Dict[int, SatelliteData]
        Satellite number -> equations and results
    station : str
        Receiver/station identifier, used only for logging
    """
    time: float
    satellites: Dict[int, SatelliteData] = field(default_factory=dict)
    station: str = ''

    def add(self, data: SatelliteData) -> 'EpochRecord':
        """Add (or replace) the equations of one satellite"""
        self.satellites[data.sat] = data
        return self

    @property
    def sats(self) -> List[int]:
        """Satellite numbers in ascending order"""
        return sorted(self.satellites)

    @property
    def num_sats(self) -> int:
        return len(self.satellites)

    def slip_flags(self) -> Dict[int, bool]:
        """Satellite number -> cycle slip flag"""
        return {sat: data.cycle_slip for sat, data in self.satellites.items()}

    def remove_satellites(self, sats) -> 'EpochRecord':
        """Drop the given satellites from the record"""
        for sat in sats:
            self.satellites.pop(sat, None)
        return self
