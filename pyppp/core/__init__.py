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

"""Core definitions shared by the PPP solver.

- **Constants**: system IDs and solver defaults (weight factor, stochastic
  model parameters, initial sigmas, convergence settings)
- **Satellite Numbering**: one internal number per satellite across all
  constellations, used to key ambiguity states
- **Data Structures**: state variable identities and the per-epoch
  measurement record the solver reads from and writes back to
- **Errors**: typed solver failures

Example Usage:
    >>> from pyppp.core import *
    >>>
    >>> epoch = EpochRecord(time=0.0)
    >>> epoch.add(SatelliteData(sat=5, prefit_code=1.2, prefit_phase=0.8))
"""

from .constants import *
from .data_structures import *
from .errors import *
from .satellite_numbering import id_to_sat, prn_to_sat, sat_to_id, sat_to_prn
