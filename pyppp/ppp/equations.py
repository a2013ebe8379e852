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

"""Equation system of one epoch: prefit residuals, design matrix and weights.

Rows are all code equations followed by all phase equations, each block in
ascending satellite order. Columns follow the state layout of a
DynamicStateManager. A code row has the satellite's partials in the head
columns and 1.0 in the ISB column of its constellation; a phase row has
the same plus 1.0 in the satellite's ambiguity column.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

import numpy as np

from ..core.data_structures import ISB_TYPES, Ambiguity, EpochRecord, SatelliteData
from ..core.satellite_numbering import sat_to_id

logger = logging.getLogger(__name__)

CODE = 'code'
PHASE = 'phase'


@dataclass
class EquationSet:
    """Linearized equations of one epoch"""
    prefit: np.ndarray
    H: np.ndarray
    weights: np.ndarray
    phase_mask: np.ndarray
    rows: List[Tuple[int, str]]

    @property
    def num_rows(self) -> int:
        return len(self.prefit)


def usable_satellites(epoch: EpochRecord, systems: Iterable[int]) -> Dict[int, SatelliteData]:
    """
    Satellites of the epoch belonging to enabled constellations

    Parameters:
    -----------
    epoch : EpochRecord
        Epoch equations
    systems : Iterable[int]
        Enabled system IDs

    Returns:
    --------
    Dict[int, SatelliteData]
        Satellite number -> data, for usable satellites only
    """
    systems = set(systems)
    usable = {}
    for sat in epoch.sats:
        data = epoch.satellites[sat]
        if data.system in systems:
            usable[sat] = data
        else:
            logger.debug(f"Satellite {sat_to_id(sat)} ignored: system not enabled")
    return usable


def build_equations(satellites: Dict[int, SatelliteData], state) -> EquationSet:
    """
    Build the equation system of one epoch against the current state layout

    Parameters:
    -----------
    satellites : Dict[int, SatelliteData]
        Usable satellites of the epoch
    state : DynamicStateManager
        Reconciled state whose labels define the columns

    Returns:
    --------
    EquationSet
        Prefit vector, design matrix, weight vector, phase mask and the
        (satellite, 'code'/'phase') identity of every row
    """
    labels = state.labels
    n = len(labels)
    head = state.head
    isb_columns = {sys: state.index_of(key) for sys, key in ISB_TYPES.items()
                   if key in head}

    sats = sorted(satellites)
    phase_sats = [s for s in sats if satellites[s].has_phase]
    m = len(sats) + len(phase_sats)

    prefit = np.zeros(m)
    H = np.zeros((m, n))
    weights = np.zeros(m)
    phase_mask = np.zeros(m, dtype=bool)
    rows = []

    def fill_geometry(row, data):
        for j, key in enumerate(head):
            if key in ISB_TYPES.values():
                continue
            H[row, j] = data.coefficient(key)
        if data.system in isb_columns:
            H[row, isb_columns[data.system]] = 1.0

    for row, sat in enumerate(sats):
        data = satellites[sat]
        fill_geometry(row, data)
        prefit[row] = data.prefit_code
        weights[row] = data.weight
        rows.append((sat, CODE))

    for k, sat in enumerate(phase_sats):
        row = len(sats) + k
        data = satellites[sat]
        fill_geometry(row, data)
        H[row, state.index_of(Ambiguity(sat))] = 1.0
        prefit[row] = data.prefit_phase
        weights[row] = data.weight
        phase_mask[row] = True
        rows.append((sat, PHASE))

    return EquationSet(prefit=prefit, H=H, weights=weights,
                       phase_mask=phase_mask, rows=rows)


def write_postfits(satellites: Dict[int, SatelliteData], equations: EquationSet,
                   postfit: np.ndarray):
    """Store postfit residuals back into the satellite records"""
    for (sat, kind), value in zip(equations.rows, postfit):
        if kind == CODE:
            satellites[sat].postfit_code = float(value)
        else:
            satellites[sat].postfit_phase = float(value)
