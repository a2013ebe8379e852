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

"""
PyPPP - Precise Point Positioning Kalman solver

Estimates receiver coordinates, zenith wet tropospheric delay, receiver clock,
inter-system biases and carrier-phase ambiguities from per-epoch GNSS
measurement equations, with a state vector that follows the tracked
satellites and pluggable stochastic models per variable.
"""

__version__ = "1.0.0"
__author__ = "PyINS Development Team"
__title__ = "pyppp"
__description__ = "Dynamic-dimension Kalman filter for GNSS Precise Point Positioning"

from .core import *
from .ppp import *
