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

"""GNSS Constants and PPP Solver Parameters"""

# GNSS System IDs
SYS_NONE = 0x00   # invalid / unknown
SYS_GPS = 0x01    # GPS
SYS_GLO = 0x02    # GLONASS
SYS_GAL = 0x04    # Galileo
SYS_BDS = 0x08    # BeiDou
SYS_QZS = 0x10    # QZSS
SYS_SBS = 0x20    # SBAS
SYS_IRN = 0x40    # IRNSS

# Constellations the PPP solver can combine. The first enabled one is the
# time reference; each further one gets an inter-system bias.
PPP_SYSTEMS = (SYS_GPS, SYS_GLO, SYS_GAL, SYS_BDS)

# ============================================================================
# MEASUREMENT WEIGHTING
# ============================================================================
WEIGHT_FACTOR = 10000.0      # code/phase variance ratio (phase sigma = code sigma / 100)
DEFAULT_WEIGHT = 1.0         # weight for satellites without an assigned weight

# ============================================================================
# STOCHASTIC MODEL DEFAULTS
# ============================================================================
QPRIME_TROPO = 3.0e-8        # wet troposphere random walk (m^2/s)
QPRIME_ISB = 3.0e-8          # inter-system bias random walk (m^2/s)
SIGMA_CLOCK = 3.0e5          # receiver clock white noise (m)
SIGMA_AMBIGUITY = 2.0e7      # phase ambiguity reset sigma (m)
SIGMA_KINEMATIC = 100.0      # coordinate white noise in kinematic mode (m)

# ============================================================================
# INITIAL STATE STANDARD DEVIATIONS
# ============================================================================
STD_TROPO = 0.5              # wet troposphere (m)
STD_COORD = 100.0            # coordinate corrections (m)
STD_CLOCK = 3.0e5            # receiver clock (m)
STD_ISB = 100.0              # inter-system bias (m)

# ============================================================================
# CONVERGENCE
# ============================================================================
BUFFER_SIZE = 100            # convergence window length (epochs)
THRES_POS_SIGMA = 0.1        # formal 3D position sigma counted as a pass (m)
MIN_SATELLITES = 4           # minimum usable satellites per epoch


def sat2sys(sat):
    """Get satellite system from satellite number

    Uses unified satellite numbering from satellite_numbering.py
    """
    from .satellite_numbering import SATELLITE_RANGES

    if sat <= 0 or sat > 255:
        return SYS_NONE

    for sys_id, ranges in SATELLITE_RANGES.items():
        for start, end in ranges:
            if start <= sat <= end:
                return sys_id

    return SYS_NONE


def sys2char(sys):
    """Convert system ID to character"""
    syschar = {
        SYS_GPS: 'G',
        SYS_GLO: 'R',
        SYS_GAL: 'E',
        SYS_BDS: 'C',
        SYS_QZS: 'J',
        SYS_SBS: 'S',
        SYS_IRN: 'I'
    }
    return syschar.get(sys, ' ')


def char2sys(c):
    """Convert character to system ID"""
    charmap = {
        'G': SYS_GPS,
        'R': SYS_GLO,
        'E': SYS_GAL,
        'C': SYS_BDS,
        'J': SYS_QZS,
        'S': SYS_SBS,
        'I': SYS_IRN
    }
    return charmap.get(c.upper(), SYS_NONE)
