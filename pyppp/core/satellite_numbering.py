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

"""Unified satellite numbering used to key ambiguity states.

Every satellite is identified by one internal number so that the solver can
keep a single identity -> state-index table across constellations:

- GPS (G): 1-32
- SBAS (S): 33-64, 133-140
- GLONASS (R): 65-88
- Galileo (E): 97-132
- BeiDou (C): 141-203
- QZSS (J): 210-216
- IRNSS (I): 230-243
"""

# Duplicated from constants.py to avoid circular import
SYS_NONE = 0x00
SYS_GPS = 0x01
SYS_GLO = 0x02
SYS_GAL = 0x04
SYS_BDS = 0x08
SYS_QZS = 0x10
SYS_SBS = 0x20
SYS_IRN = 0x40

SATELLITE_RANGES = {
    SYS_GPS: [(1, 32)],
    SYS_SBS: [(33, 64), (133, 140)],
    SYS_GLO: [(65, 88)],
    SYS_GAL: [(97, 132)],
    SYS_BDS: [(141, 203)],
    SYS_QZS: [(210, 216)],
    SYS_IRN: [(230, 243)],
}

SYS_TO_CHAR = {
    SYS_GPS: 'G',
    SYS_GLO: 'R',
    SYS_GAL: 'E',
    SYS_BDS: 'C',
    SYS_QZS: 'J',
    SYS_SBS: 'S',
    SYS_IRN: 'I',
}

CHAR_TO_SYS = {v: k for k, v in SYS_TO_CHAR.items()}


def prn_to_sat(system_char, prn):
    """Convert system character and PRN to internal satellite number.

    Parameters
    ----------
    system_char : str
        Single character system identifier ('G', 'R', 'E', 'C', 'J', 'S', 'I')
    prn : int
        PRN number within the constellation

    Returns
    -------
    int
        Internal satellite number, or 0 if invalid PRN or system

    Examples
    --------
    >>> prn_to_sat('G', 1)
    1
    >>> prn_to_sat('R', 1)
    65
    >>> prn_to_sat('X', 1)
    0
    """
    if system_char == 'G':
        if 1 <= prn <= 32:
            return prn
    elif system_char == 'R':
        if 1 <= prn <= 24:
            return prn + 64
    elif system_char == 'E':
        if 1 <= prn <= 36:
            return prn + 96
    elif system_char == 'C':
        if 1 <= prn <= 63:
            return prn + 140
    elif system_char == 'J':
        if 1 <= prn <= 7:
            return prn + 209
    elif system_char == 'S':
        if 120 <= prn <= 151:
            return prn - 87
        elif 152 <= prn <= 159:
            return prn - 19
    elif system_char == 'I':
        if 1 <= prn <= 14:
            return prn + 229

    return 0


def sat_to_prn(sat):
    """Convert internal satellite number to constellation-specific PRN.

    Returns 0 for numbers outside every constellation range.
    """
    if sat <= 0 or sat > 255:
        return 0
    elif 1 <= sat <= 32:
        return sat
    elif 33 <= sat <= 64:
        return sat - 33 + 120
    elif 65 <= sat <= 88:
        return sat - 64
    elif 97 <= sat <= 132:
        return sat - 96
    elif 133 <= sat <= 140:
        return sat - 133 + 152
    elif 141 <= sat <= 203:
        return sat - 140
    elif 210 <= sat <= 216:
        return sat - 209
    elif 230 <= sat <= 243:
        return sat - 229
    else:
        return 0


def sat_to_id(sat):
    """Format an internal satellite number as a RINEX-style ID ('G05')."""
    for sys_id, ranges in SATELLITE_RANGES.items():
        for start, end in ranges:
            if start <= sat <= end:
                return f"{SYS_TO_CHAR[sys_id]}{sat_to_prn(sat):02d}"
    return f"?{sat:02d}"


def id_to_sat(sat_id):
    """Parse a RINEX-style satellite ID ('G05', 'E11') to a satellite number.

    Returns 0 if the ID cannot be parsed.
    """
    if not sat_id or len(sat_id) < 2:
        return 0
    try:
        prn = int(sat_id[1:])
    except ValueError:
        return 0
    return prn_to_sat(sat_id[0].upper(), prn)
