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

"""Sliding-window convergence decision and time-to-first-convergence log"""

import logging
from collections import deque
from typing import List, Optional

import pandas as pd

from ..core.constants import BUFFER_SIZE
from ..core.errors import InvalidRequest

logger = logging.getLogger(__name__)


class ConvergenceTracker:
    """
    Declares convergence once the last N epochs all passed a quality check

    The pass/fail indicator of each epoch comes from the caller. Every
    transition from not converged to converged records the time elapsed
    since the first processed epoch, so a run with resets can log several
    convergence events.

    Parameters:
    -----------
    buffer_size : int
        Number of consecutive passing epochs required
    """

    def __init__(self, buffer_size: int = BUFFER_SIZE):
        if buffer_size < 1:
            raise ValueError(f"Buffer size must be positive: {buffer_size}")
        self.buffer_size = buffer_size
        self._window = deque(maxlen=buffer_size)
        self._converged = False
        self._valid = False
        self.start_time: Optional[float] = None
        self.ttfc: List[float] = []

    def resize(self, buffer_size: int):
        """Change the window length, keeping the most recent indicators"""
        if buffer_size < 1:
            raise ValueError(f"Buffer size must be positive: {buffer_size}")
        self.buffer_size = buffer_size
        self._window = deque(self._window, maxlen=buffer_size)

    def update(self, passed: bool, time: float) -> bool:
        """
        Add one epoch's indicator and re-evaluate convergence

        Parameters:
        -----------
        passed : bool
            Quality check result of this epoch
        time : float
            Epoch time (s)

        Returns:
        --------
        bool
            Converged flag after this epoch
        """
        if self.start_time is None:
            self.start_time = time

        self._window.append(bool(passed))
        self._valid = True

        now = len(self._window) == self.buffer_size and all(self._window)
        if now and not self._converged:
            elapsed = time - self.start_time
            self.ttfc.append(elapsed)
            logger.info(f"Solution converged after {elapsed:.1f} s")
        elif self._converged and not now:
            logger.info("Solution lost convergence")
        self._converged = now
        return now

    @property
    def converged(self) -> bool:
        """Converged flag; invalid before the first epoch and right after a reset"""
        if not self._valid:
            raise InvalidRequest("No epoch processed since start or last reset")
        return self._converged

    @property
    def window(self) -> List[bool]:
        return list(self._window)

    def reset(self):
        """Clear the window and the converged flag; the TTFC log is kept"""
        self._window.clear()
        self._converged = False
        self._valid = False

    def ttfc_series(self) -> pd.Series:
        """Time-to-first-convergence events as a pandas Series"""
        return pd.Series(self.ttfc, name='ttfc', dtype=float)
