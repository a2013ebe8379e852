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

"""Test suite for stochastic models"""

import unittest
from pyppp.ppp.stochastic import (
    StochasticModel, ConstantModel, WhiteNoiseModel, RandomWalkModel,
    PhaseAmbiguityModel, build_model
)


class TestStochasticModels(unittest.TestCase):
    """Test transition and process noise of each model"""

    def test_constant(self):
        self.assertEqual(ConstantModel().propagate(30.0), (1.0, 0.0))
        self.assertEqual(ConstantModel().propagate(30.0, cycle_slip=True), (1.0, 0.0))

    def test_white_noise(self):
        phi, q = WhiteNoiseModel(2.0).propagate(30.0)
        self.assertEqual(phi, 0.0)
        self.assertEqual(q, 4.0)

    def test_random_walk(self):
        phi, q = RandomWalkModel(3e-8).propagate(30.0)
        self.assertEqual(phi, 1.0)
        self.assertAlmostEqual(q, 9e-7)

    def test_random_walk_zero_dt(self):
        """No elapsed time adds no noise"""
        self.assertEqual(RandomWalkModel(3e-8).propagate(0.0), (1.0, 0.0))

    def test_random_walk_backwards(self):
        """Noise grows with the elapsed time magnitude"""
        _, q = RandomWalkModel(1e-4).propagate(-10.0)
        self.assertAlmostEqual(q, 1e-3)

    def test_phase_ambiguity(self):
        model = PhaseAmbiguityModel(10.0)
        self.assertEqual(model.propagate(30.0), (1.0, 0.0))
        self.assertEqual(model.propagate(30.0, cycle_slip=True), (0.0, 100.0))
        self.assertEqual(model.variance, 100.0)

    def test_state_aware(self):
        self.assertTrue(RandomWalkModel().state_aware)
        self.assertFalse(WhiteNoiseModel().state_aware)
        self.assertFalse(ConstantModel().state_aware)

    def test_invalid_parameters(self):
        with self.assertRaises(ValueError):
            WhiteNoiseModel(-1.0)
        with self.assertRaises(ValueError):
            RandomWalkModel(-1e-8)
        with self.assertRaises(ValueError):
            PhaseAmbiguityModel(0.0)

    def test_base_not_implemented(self):
        with self.assertRaises(NotImplementedError):
            StochasticModel().propagate(1.0)

    def test_value_semantics(self):
        self.assertEqual(WhiteNoiseModel(3.0), WhiteNoiseModel(3.0))
        self.assertNotEqual(WhiteNoiseModel(3.0), RandomWalkModel(3.0))


class TestBuildModel(unittest.TestCase):
    """Test building models from configuration entries"""

    def test_from_name(self):
        self.assertEqual(build_model('constant'), ConstantModel())
        self.assertEqual(build_model('WHITE_NOISE'), WhiteNoiseModel())

    def test_from_dict(self):
        model = build_model({'type': 'random_walk', 'qprime': 3e-8})
        self.assertEqual(model, RandomWalkModel(3e-8))

    def test_from_to_dict(self):
        model = PhaseAmbiguityModel(50.0)
        self.assertEqual(build_model(model.to_dict()), model)

    def test_instance_passthrough(self):
        model = WhiteNoiseModel(5.0)
        self.assertIs(build_model(model), model)

    def test_unknown(self):
        with self.assertRaises(ValueError):
            build_model('kalman')
        with self.assertRaises(ValueError):
            build_model({'sigma': 1.0})
        with self.assertRaises(ValueError):
            build_model(42)


if __name__ == '__main__':
    unittest.main()
