#!/usr/bin/env python3
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

"""Test suite for the PPP solver"""

import unittest
import numpy as np
import pandas as pd
from pyppp.core.constants import SYS_GAL
from pyppp.core.data_structures import StateType, Ambiguity, SatelliteData, EpochRecord
from pyppp.core.errors import (
    SolverStatus, DimensionMismatch, SingularInnovation, InvalidRequest,
    InsufficientSatellites
)
from pyppp.ppp.config import SolverConfig
from pyppp.ppp.solver import SolverPPP
from pyppp.ppp.stochastic import (
    WhiteNoiseModel, RandomWalkModel, ConstantModel, PhaseAmbiguityModel
)

# Satellite number -> (azimuth, elevation) in degrees
GPS_SATS = {
    1: (0.0, 15.0), 3: (45.0, 60.0), 6: (90.0, 30.0), 9: (135.0, 75.0),
    12: (180.0, 20.0), 17: (225.0, 45.0), 22: (270.0, 35.0), 28: (315.0, 85.0),
}
GAL_SATS = {100: (20.0, 40.0), 104: (160.0, 55.0), 110: (300.0, 25.0)}

TRUTH = {StateType.DX: 0.5, StateType.DY: -0.3, StateType.DZ: 0.8, StateType.WET_MAP: 0.1}
ISB_GAL = 2.0
INTERVAL = 30.0


def ambiguity_truth(sat):
    return 0.7 * sat - 9.0


def clock_truth(k):
    return 500.0 + 10.0 * k


def make_epoch(k, sats=GPS_SATS, rng=None, code_sigma=0.1, phase_sigma=0.001,
               truth=TRUTH, slips=(), weight=100.0, code_only=()):
    """Simulated prefit residuals of a static receiver at epoch k"""
    epoch = EpochRecord(time=k * INTERVAL)
    for sat, (az, el) in sats.items():
        az, el = np.radians(az), np.radians(el)
        los = np.array([np.cos(el) * np.sin(az), np.cos(el) * np.cos(az), np.sin(el)])
        partials = {
            StateType.DX: -los[0],
            StateType.DY: -los[1],
            StateType.DZ: -los[2],
            StateType.WET_MAP: 1.0 / np.sin(el),
        }
        geom = sum(partials[key] * truth[key] for key in partials) + clock_truth(k)
        if sat >= 97:
            geom += ISB_GAL
        code_noise = phase_noise = 0.0
        if rng is not None:
            code_noise = rng.normal(0.0, code_sigma)
            phase_noise = rng.normal(0.0, phase_sigma)
        phase = None
        if sat not in code_only:
            phase = geom + ambiguity_truth(sat) + phase_noise
        epoch.add(SatelliteData(sat=sat, prefit_code=geom + code_noise,
                                prefit_phase=phase, partials=partials,
                                weight=weight, cycle_slip=sat in slips))
    return epoch


def solver_config(**kwargs):
    params = dict(
        clock_model=WhiteNoiseModel(1.0e3),
        clock_sigma=1.0e3,
        coord_sigma=10.0,
        buffer_size=5,
        position_sigma_threshold=1.0,
    )
    params.update(kwargs)
    return SolverConfig(**params)


class TestSolverPPP(unittest.TestCase):
    """Test epoch processing of a static receiver"""

    def setUp(self):
        self.solver = SolverPPP(solver_config(), name='TEST')

    def run_epochs(self, n, **kwargs):
        for k in range(n):
            self.assertEqual(self.solver.process(make_epoch(k, **kwargs)), SolverStatus.OK)

    def test_noise_free_static(self):
        self.run_epochs(10)
        for key in (StateType.DX, StateType.DY, StateType.DZ, StateType.WET_MAP):
            self.assertAlmostEqual(self.solver.get_solution(key), TRUTH[key], delta=0.05)
        self.assertAlmostEqual(self.solver.get_solution(StateType.CDT), clock_truth(9), delta=0.2)
        for sat in GPS_SATS:
            self.assertAlmostEqual(self.solver.get_solution(sat), ambiguity_truth(sat), delta=0.2)

    def test_noisy_static_convergence(self):
        rng = np.random.default_rng(1)
        sigmas = []
        for k in range(10):
            self.solver.process(make_epoch(k, rng=rng, code_sigma=0.05))
            sigmas.append(self.solver.position_sigma())
        self.assertTrue(self.solver.converged)
        self.assertEqual(len(self.solver.get_ttfc()), 1)
        self.assertLessEqual(self.solver.get_ttfc()[0], 9 * INTERVAL)
        self.assertLess(sigmas[-1], sigmas[0])
        for key in (StateType.DX, StateType.DY, StateType.DZ):
            self.assertAlmostEqual(self.solver.get_solution(key), TRUTH[key], delta=0.5)

    def test_default_configuration(self):
        """Shipped defaults: clock sigma 3e5 m, ambiguity sigma 2e7 m"""
        for weight in (1.0, 100.0):
            solver = SolverPPP(name='DEFAULT')
            for k in range(20):
                self.assertEqual(solver.process(make_epoch(k, weight=weight)), SolverStatus.OK)
            self.assertEqual(solver.num_unknowns, 5 + len(GPS_SATS))
            for key in (StateType.DX, StateType.DY, StateType.DZ):
                self.assertAlmostEqual(solver.get_solution(key), TRUTH[key], delta=0.3)

    def test_four_satellites_static(self):
        """Four satellites with a tightly constrained troposphere"""
        sats = {5: (0.0, 89.0), 11: (0.0, 20.0), 18: (120.0, 20.0), 24: (240.0, 20.0)}
        truth = dict(TRUTH)
        truth[StateType.WET_MAP] = 0.0
        solver = SolverPPP(solver_config(tropo_sigma=0.01,
                                         troposphere_model=RandomWalkModel(1e-10),
                                         ambiguity_model=PhaseAmbiguityModel(100.0)))
        rng = np.random.default_rng(7)
        converged = []
        for k in range(10):
            solver.process(make_epoch(k, sats=sats, rng=rng, truth=truth))
            converged.append(solver.converged)
        self.assertTrue(converged[-1])
        self.assertLess(converged.index(True), 9)
        for key in (StateType.DX, StateType.DY, StateType.DZ):
            self.assertAlmostEqual(solver.get_solution(key), truth[key], delta=0.3)

        # A singular weight matrix is rejected without touching the state
        x0 = solver.solution
        n = solver.num_unknowns
        H = np.zeros((8, n))
        H[:, 4] = 1.0
        with self.assertRaises(SingularInnovation):
            solver.compute(np.zeros(8), H, np.zeros((8, 8)), time=10 * INTERVAL)
        np.testing.assert_array_equal(solver.solution, x0)
        self.assertTrue(solver.converged)

    def test_ttfc_with_explicit_indicator(self):
        for k in range(7):
            self.solver.process(make_epoch(k), passed=True)
            self.assertEqual(self.solver.converged, k >= 4)
        self.assertEqual(self.solver.get_ttfc(), [4 * INTERVAL])
        self.assertEqual(list(self.solver.ttfc_series()), [4 * INTERVAL])
        self.solver.process(make_epoch(7), passed=False)
        self.assertFalse(self.solver.get_converged())

    def test_state_layout(self):
        self.run_epochs(1)
        unknowns = self.solver.unknowns
        self.assertEqual(unknowns[:5], [StateType.WET_MAP, StateType.DX, StateType.DY,
                                        StateType.DZ, StateType.CDT])
        self.assertEqual(unknowns[5:], [Ambiguity(s) for s in sorted(GPS_SATS)])
        self.assertEqual(self.solver.num_unknowns, 5 + len(GPS_SATS))
        self.assertEqual(self.solver.solution.shape, (13,))
        self.assertEqual(self.solver.covariance.shape, (13, 13))

    def test_postfit_write_back(self):
        epoch = make_epoch(0)
        self.solver.process(epoch)
        for data in epoch.satellites.values():
            self.assertIsNotNone(data.postfit_code)
            self.assertIsNotNone(data.postfit_phase)
            self.assertLess(abs(data.postfit_phase), 0.01)
        self.assertEqual(len(self.solver.postfit_residuals), 2 * len(GPS_SATS))

    def test_code_only_satellite(self):
        epoch = make_epoch(0, code_only=(28,))
        self.solver.process(epoch)
        self.assertNotIn(Ambiguity(28), self.solver.unknowns)
        self.assertIsNotNone(epoch.satellites[28].postfit_code)
        self.assertIsNone(epoch.satellites[28].postfit_phase)

    def test_satellite_set_changes(self):
        self.run_epochs(3)
        sats = dict(GPS_SATS)
        del sats[12]
        self.solver.process(make_epoch(3, sats=sats))
        self.assertNotIn(Ambiguity(12), self.solver.unknowns)
        with self.assertRaises(InvalidRequest):
            self.solver.get_solution(12)
        self.solver.process(make_epoch(4))
        self.assertEqual(self.solver.unknowns[-1], Ambiguity(12))

    def test_cycle_slip(self):
        self.run_epochs(5)
        before = self.solver.get_variance(6)
        self.solver.process(make_epoch(5, slips=(6,)))
        self.assertGreater(self.solver.get_variance(6), before)
        self.assertEqual(self.solver.unknowns.index(Ambiguity(6)), 7)
        self.assertAlmostEqual(self.solver.get_solution(6), ambiguity_truth(6), delta=0.5)

    def test_disabled_constellation_ignored(self):
        sats = dict(GPS_SATS)
        sats.update(GAL_SATS)
        self.solver.process(make_epoch(0, sats=sats))
        self.assertNotIn(StateType.ISB_GAL, self.solver.unknowns)
        self.assertNotIn(Ambiguity(100), self.solver.unknowns)

    def test_inter_system_bias(self):
        solver = SolverPPP(solver_config(use_galileo=True))
        sats = dict(GPS_SATS)
        sats.update(GAL_SATS)
        solver.process(make_epoch(0))
        self.assertNotIn(StateType.ISB_GAL, solver.unknowns)
        for k in range(1, 10):
            solver.process(make_epoch(k, sats=sats))
        self.assertEqual(solver.unknowns[5], StateType.ISB_GAL)
        self.assertAlmostEqual(solver.get_solution(StateType.ISB_GAL), ISB_GAL, delta=0.1)

    def test_insufficient_satellites(self):
        sats = {sat: GPS_SATS[sat] for sat in (1, 3, 6)}
        with self.assertRaises(InsufficientSatellites):
            self.solver.process(make_epoch(0, sats=sats))
        sats.update(GAL_SATS)
        with self.assertRaises(InsufficientSatellites):
            self.solver.process(make_epoch(0, sats=sats))
        with self.assertRaises(InvalidRequest):
            self.solver.solution

    def test_failed_epoch_leaves_state_unchanged(self):
        self.run_epochs(3)
        x0 = self.solver.solution
        P0 = self.solver.covariance
        unknowns = self.solver.unknowns
        converged = self.solver.converged

        sats = dict(GPS_SATS)
        sats.update({30: (10.0, 50.0), 31: (200.0, 50.0)})
        with self.assertRaises(SingularInnovation):
            self.solver.process(make_epoch(3, sats=sats, weight=0.0))

        np.testing.assert_array_equal(self.solver.solution, x0)
        np.testing.assert_array_equal(self.solver.covariance, P0)
        self.assertEqual(self.solver.unknowns, unknowns)
        self.assertEqual(self.solver.converged, converged)
        self.assertEqual(len(self.solver.solution_history()), 3)

    def test_singular_weight_matrix(self):
        self.run_epochs(2)
        x0 = self.solver.solution
        P0 = self.solver.covariance
        n = self.solver.num_unknowns
        H = np.zeros((6, n))
        H[:, 4] = 1.0
        with self.assertRaises(SingularInnovation):
            self.solver.compute(np.zeros(6), H, np.zeros((6, 6)), time=60.0)
        np.testing.assert_array_equal(self.solver.solution, x0)
        np.testing.assert_array_equal(self.solver.covariance, P0)

    def test_compute_dimension_mismatch(self):
        self.run_epochs(1)
        x0 = self.solver.solution
        n = self.solver.num_unknowns
        with self.assertRaises(DimensionMismatch):
            self.solver.compute(np.zeros(6), np.zeros((6, n - 1)), np.ones(6))
        with self.assertRaises(DimensionMismatch):
            self.solver.compute(np.zeros(6), np.zeros((6, n)), np.ones(5))
        with self.assertRaises(DimensionMismatch):
            self.solver.compute(np.zeros(6), np.zeros((6, n)), np.ones(6),
                                phase_mask=np.zeros(4, dtype=bool))
        with self.assertRaises(DimensionMismatch):
            self.solver.compute(np.zeros(6), np.zeros((6, n)), np.ones(6),
                                phi=np.ones(n - 1), q=np.zeros(n - 1))
        np.testing.assert_array_equal(self.solver.solution, x0)

    def test_compute_code_only_system(self):
        """compute() accepts a caller-built equation system"""
        self.assertEqual(self.solver.expected_unknowns()[4], StateType.CDT)
        epoch = make_epoch(0)
        rows = [epoch.satellites[s] for s in epoch.sats]
        head = self.solver.expected_unknowns()
        H = np.array([[d.coefficient(key) for key in head] for d in rows])
        z = np.array([d.prefit_code for d in rows])
        status = self.solver.compute(z, H, 100.0 * np.ones(len(rows)), time=0.0)
        self.assertEqual(status, SolverStatus.OK)
        self.assertEqual(self.solver.num_unknowns, 5)
        self.assertAlmostEqual(self.solver.get_solution(StateType.DX), TRUTH[StateType.DX],
                               delta=0.2)

    def test_prepare_epoch(self):
        self.run_epochs(1)
        before = self.solver.unknowns
        self.solver.prepare_epoch({1: False, 3: False, 40: False})
        expected = self.solver.expected_unknowns()
        self.assertEqual(self.solver.unknowns, before)
        self.assertEqual(expected[5:], [Ambiguity(1), Ambiguity(3), Ambiguity(40)])

    def test_failed_compute_keeps_prepared_layout(self):
        self.run_epochs(1)
        self.solver.prepare_epoch({1: False, 3: False, 40: False})
        expected = self.solver.expected_unknowns()
        n = len(expected)
        with self.assertRaises(DimensionMismatch):
            self.solver.compute(np.zeros(1), np.zeros((1, n + 1)), np.ones(1), time=30.0)
        self.assertEqual(self.solver.expected_unknowns(), expected)

        H = np.zeros((1, n))
        H[0, 1] = 1.0
        self.solver.compute(np.array([0.5]), H, np.array([1.0]), time=30.0)
        self.assertEqual(self.solver.unknowns, expected)

    def test_explicit_transition(self):
        self.run_epochs(1)
        n = self.solver.num_unknowns
        phi = np.ones(n)
        q = np.zeros(n)
        H = np.zeros((1, n))
        H[0, 1] = 1.0
        self.solver.compute(np.array([0.5]), H, np.array([1.0]), time=30.0, phi=phi, q=q)
        np.testing.assert_array_equal(self.solver.phi, phi)
        np.testing.assert_array_equal(self.solver.q, q)

    def test_transition_from_models(self):
        self.run_epochs(2)
        phi = self.solver.phi
        q = self.solver.q
        np.testing.assert_array_equal(phi[:5], [1.0, 1.0, 1.0, 1.0, 0.0])
        self.assertAlmostEqual(q[0], 3e-8 * INTERVAL)
        self.assertAlmostEqual(q[4], 1.0e6)

    def test_reset_full(self):
        self.run_epochs(6)
        ttfc = self.solver.get_ttfc()
        self.solver.reset()
        with self.assertRaises(InvalidRequest):
            self.solver.solution
        with self.assertRaises(InvalidRequest):
            self.solver.converged
        self.assertEqual(self.solver.get_ttfc(), ttfc)
        self.solver.process(make_epoch(6))
        self.assertEqual(self.solver.num_unknowns, 5 + len(GPS_SATS))
        self.assertFalse(self.solver.converged)

    def test_reset_head(self):
        self.run_epochs(3)
        state = np.array([0.1, 0.5, -0.3, 0.8, 0.0])
        cov = np.diag([0.01, 0.01, 0.01, 0.01, 1.0e6])
        self.solver.reset(state, cov)
        self.assertEqual(self.solver.num_unknowns, 5)
        self.assertEqual(self.solver.get_solution(StateType.DY), -0.3)
        self.solver.process(make_epoch(3))
        self.assertEqual(self.solver.num_unknowns, 5 + len(GPS_SATS))

    def test_reset_wrong_size(self):
        self.run_epochs(1)
        unknowns = self.solver.unknowns
        with self.assertRaises(DimensionMismatch):
            self.solver.reset(np.zeros(6), np.eye(6))
        self.assertEqual(self.solver.unknowns, unknowns)
        with self.assertRaises(ValueError):
            self.solver.reset(np.zeros(5))

    def test_solution_history(self):
        self.run_epochs(4)
        history = self.solver.solution_history()
        self.assertIsInstance(history, pd.DataFrame)
        self.assertEqual(len(history), 4)
        for column in ('time', 'dx', 'sigma_dx', 'wetMap', 'cdt', 'num_sats', 'converged'):
            self.assertIn(column, history.columns)
        self.assertEqual(list(history['time']), [0.0, 30.0, 60.0, 90.0])
        self.assertTrue((history['num_sats'] == len(GPS_SATS)).all())


class TestSolverSettings(unittest.TestCase):
    """Test configuration setters"""

    def setUp(self):
        self.solver = SolverPPP(solver_config())

    def test_weight_factor(self):
        self.solver.set_weight_factor(50.0)
        self.assertAlmostEqual(self.solver.get_weight_factor(), 50.0)
        self.assertAlmostEqual(self.solver.config.weight_factor, 2500.0)
        with self.assertRaises(ValueError):
            self.solver.set_weight_factor(0.0)

    def test_solvers_do_not_share_config(self):
        config = solver_config()
        a = SolverPPP(config, name='A')
        b = SolverPPP(config, name='B')
        a.set_weight_factor(10.0)
        a.set_z_coordinates_model(RandomWalkModel(1e-4))
        a.set_isb_model(SYS_GAL, ConstantModel())
        self.assertAlmostEqual(b.get_weight_factor(), 100.0)
        self.assertEqual(b.get_coordinates_models()[2], ConstantModel())
        self.assertNotEqual(b.get_isb_model(SYS_GAL), ConstantModel())
        self.assertAlmostEqual(config.weight_factor, 1.0e4)

    def test_default_weight_factor(self):
        self.assertAlmostEqual(SolverPPP().get_weight_factor(), 100.0)

    def test_set_neu(self):
        self.solver.process(make_epoch(0))
        self.solver.set_neu(True)
        self.assertFalse(self.solver.state.initialized)
        self.solver.process(make_epoch(1))
        self.assertEqual(self.solver.unknowns[1:4],
                         [StateType.DLAT, StateType.DLON, StateType.DH])

    def test_set_sat_system(self):
        self.solver.set_sat_system(use_gps=True, use_galileo=True)
        self.assertTrue(self.solver.config.use_galileo)
        with self.assertRaises(ValueError):
            self.solver.set_sat_system(use_gps=False)
        self.assertTrue(self.solver.config.use_gps)

    def test_kinematic(self):
        self.solver.set_kinematic(True, 5.0, 5.0, 10.0)
        self.assertEqual(self.solver.get_coordinates_models(),
                         [WhiteNoiseModel(5.0), WhiteNoiseModel(5.0), WhiteNoiseModel(10.0)])
        self.solver.process(make_epoch(0))
        self.solver.process(make_epoch(1))
        np.testing.assert_array_equal(self.solver.phi[1:4], 0.0)
        self.solver.set_kinematic(False)
        self.assertEqual(self.solver.get_coordinates_models(), [ConstantModel()] * 3)

    def test_model_setters(self):
        self.solver.process(make_epoch(0))
        self.solver.set_troposphere_model(RandomWalkModel(1e-6))
        self.solver.set_receiver_clock_model(WhiteNoiseModel(10.0))
        self.solver.set_z_coordinates_model(RandomWalkModel(1e-4))
        self.assertEqual(self.solver.get_troposphere_model(), RandomWalkModel(1e-6))
        self.assertEqual(self.solver.get_receiver_clock_model(), WhiteNoiseModel(10.0))
        models = self.solver.state.models
        self.assertEqual(models[0], RandomWalkModel(1e-6))
        self.assertEqual(models[3], RandomWalkModel(1e-4))
        self.assertEqual(models[4], WhiteNoiseModel(10.0))

    def test_phase_biases_model(self):
        with self.assertRaises(ValueError):
            self.solver.set_phase_biases_model(WhiteNoiseModel(1.0))

    def test_isb_model(self):
        self.solver.set_isb_model(SYS_GAL, ConstantModel())
        self.assertEqual(self.solver.get_isb_model(SYS_GAL), ConstantModel())
        with self.assertRaises(ValueError):
            self.solver.set_isb_model(1, ConstantModel())

    def test_buffer_size(self):
        self.solver.set_buffer_size(2)
        self.solver.process(make_epoch(0), passed=True)
        self.solver.process(make_epoch(1), passed=True)
        self.assertTrue(self.solver.converged)


if __name__ == '__main__':
    unittest.main()
