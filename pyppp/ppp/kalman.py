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

"""Kalman predict/update recursion with diagonal transition and process noise"""

import logging
from typing import Optional, Tuple

import numpy as np
from scipy import linalg

from ..core.constants import WEIGHT_FACTOR
from ..core.errors import DimensionMismatch, SingularInnovation

logger = logging.getLogger(__name__)


def check_dimensions(prefit: np.ndarray, H: np.ndarray, weights: np.ndarray, n: int):
    """
    Validate the sizes of one epoch's equation system

    Parameters:
    -----------
    prefit : np.ndarray
        Prefit residuals, shape (m,)
    H : np.ndarray
        Design matrix, shape (m, n)
    weights : np.ndarray
        Weight vector (m,) or weight matrix (m, m)
    n : int
        Length of the state vector

    Raises:
    -------
    DimensionMismatch
        If any size disagrees
    """
    if H.ndim != 2:
        raise DimensionMismatch(f"Design matrix must be 2-D, got {H.ndim}-D")
    m = len(prefit)
    if H.shape[1] != n:
        raise DimensionMismatch(
            f"Design matrix has {H.shape[1]} columns, state has {n} variables")
    if H.shape[0] != m:
        raise DimensionMismatch(
            f"Design matrix has {H.shape[0]} rows, prefit vector has {m} entries")
    if weights.ndim == 1:
        if len(weights) != m:
            raise DimensionMismatch(
                f"Weight vector has {len(weights)} entries, expected {m}")
    elif weights.ndim == 2:
        if weights.shape != (m, m):
            raise DimensionMismatch(
                f"Weight matrix is {weights.shape}, expected ({m}, {m})")
    else:
        raise DimensionMismatch(f"Weights must be 1-D or 2-D, got {weights.ndim}-D")


def measurement_covariance(weights: np.ndarray,
                           phase_mask: Optional[np.ndarray] = None,
                           weight_factor: float = WEIGHT_FACTOR) -> np.ndarray:
    """
    Measurement noise covariance from measurement weights

    Code rows get variance 1/weight, phase rows 1/(weight * weight_factor).
    A weight vector yields the diagonal of R; a weight matrix yields the full
    matrix inv(W) with phase rows and columns scaled accordingly.

    Parameters:
    -----------
    weights : np.ndarray
        Weight vector (m,) or symmetric weight matrix (m, m)
    phase_mask : np.ndarray, optional
        Boolean mask of phase rows, shape (m,)
    weight_factor : float
        Code/phase variance ratio

    Returns:
    --------
    np.ndarray
        Diagonal of R (m,) for a weight vector, full R (m, m) otherwise

    Raises:
    -------
    SingularInnovation
        If the weights cannot be inverted
    """
    m = weights.shape[0]
    scale = np.ones(m)
    if phase_mask is not None:
        scale[np.asarray(phase_mask, dtype=bool)] = 1.0 / weight_factor

    if weights.ndim == 1:
        if not np.all(np.isfinite(weights)) or np.any(weights <= 0.0):
            raise SingularInnovation("Weight vector has zero, negative or non-finite entries")
        return scale / weights

    try:
        R = linalg.inv(weights)
    except (linalg.LinAlgError, ValueError) as e:
        raise SingularInnovation(f"Weight matrix is singular: {e}") from e
    if not np.all(np.isfinite(R)):
        raise SingularInnovation("Weight matrix is singular")
    s = np.sqrt(scale)
    return s[:, None] * R * s[None, :]


class KalmanCore:
    """
    Kalman filter over a state whose transition and noise matrices are diagonal

    Parameters:
    -----------
    x : np.ndarray, optional
        Initial state vector
    P : np.ndarray, optional
        Initial covariance matrix

    Attributes:
    -----------
    phi : np.ndarray
        Transition diagonal used by the last prediction
    q : np.ndarray
        Process noise diagonal used by the last prediction
    """

    def __init__(self, x: Optional[np.ndarray] = None, P: Optional[np.ndarray] = None):
        self.x = None
        self.P = None
        self.phi = None
        self.q = None
        self.postfit = None
        if x is not None and P is not None:
            self.reset(x, P)

    def reset(self, x: np.ndarray, P: np.ndarray):
        """Load a new state and covariance"""
        x = np.asarray(x, dtype=float).reshape(-1)
        P = np.asarray(P, dtype=float)
        if P.shape != (len(x), len(x)):
            raise DimensionMismatch(
                f"Covariance {P.shape} does not match state of length {len(x)}")
        self.x = x.copy()
        self.P = P.copy()

    @property
    def dimension(self) -> int:
        return 0 if self.x is None else len(self.x)

    def predict(self, phi: np.ndarray, q: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Time update x' = Phi x, P' = Phi P Phi^T + Q with diagonal Phi and Q

        Parameters:
        -----------
        phi : np.ndarray
            Transition diagonal, shape (n,)
        q : np.ndarray
            Process noise diagonal, shape (n,)

        Returns:
        --------
        x, P : np.ndarray
            Predicted state and covariance
        """
        phi = np.asarray(phi, dtype=float).reshape(-1)
        q = np.asarray(q, dtype=float).reshape(-1)
        n = self.dimension
        if len(phi) != n or len(q) != n:
            raise DimensionMismatch(
                f"Transition ({len(phi)}) and noise ({len(q)}) must match state size {n}")

        self.x = phi * self.x
        self.P = phi[:, None] * self.P * phi[None, :]
        self.P[np.diag_indices(n)] += q
        self.phi = phi
        self.q = q
        return self.x, self.P

    def update(self,
               prefit: np.ndarray,
               H: np.ndarray,
               weights: np.ndarray,
               phase_mask: Optional[np.ndarray] = None,
               weight_factor: float = WEIGHT_FACTOR) -> Tuple[np.ndarray, np.ndarray]:
        """
        Measurement update with prefit residuals z and design matrix H

        S = H P H^T + R, K = P H^T S^-1, x = x + K (z - H x), P = (I - K H) P.
        On failure x and P keep their predicted values.

        Parameters:
        -----------
        prefit : np.ndarray
            Prefit residuals z, shape (m,)
        H : np.ndarray
            Design matrix, shape (m, n)
        weights : np.ndarray
            Weight vector (m,) or weight matrix (m, m). The vector form is
            the cheaper path and equivalent to diag(weights).
        phase_mask : np.ndarray, optional
            Boolean mask of phase rows
        weight_factor : float
            Code/phase variance ratio applied to phase rows

        Returns:
        --------
        x, P : np.ndarray
            Updated state and covariance

        Raises:
        -------
        DimensionMismatch
            If sizes are inconsistent
        SingularInnovation
            If the weights or the innovation covariance cannot be inverted
        """
        z = np.asarray(prefit, dtype=float).reshape(-1)
        H = np.asarray(H, dtype=float)
        W = np.asarray(weights, dtype=float)
        check_dimensions(z, H, W, self.dimension)

        try:
            R = measurement_covariance(W, phase_mask, weight_factor)
        except SingularInnovation as e:
            raise SingularInnovation(str(e), self.x.copy(), self.P.copy()) from e

        PHt = self.P @ H.T
        S = H @ PHt
        if R.ndim == 1:
            S[np.diag_indices(len(z))] += R
        else:
            S += R
        S = 0.5 * (S + S.T)

        # S spans clock/ambiguity terms near 1e11 and phase variances near 1e-6
        try:
            S_inv = linalg.inv(S)
        except (linalg.LinAlgError, ValueError) as e:
            raise SingularInnovation(f"Innovation covariance is singular: {e}",
                                     self.x.copy(), self.P.copy()) from e
        if not np.all(np.isfinite(S_inv)):
            raise SingularInnovation("Innovation covariance is singular",
                                     self.x.copy(), self.P.copy())

        K = PHt @ S_inv
        if not np.all(np.isfinite(K)):
            raise SingularInnovation("Kalman gain is not finite",
                                     self.x.copy(), self.P.copy())

        x = self.x + K @ (z - H @ self.x)
        P = (np.eye(self.dimension) - K @ H) @ self.P
        P = 0.5 * (P + P.T)

        self.x = x
        self.P = P
        self.postfit = z - H @ x
        return self.x, self.P
