"""
Tests for the measurement set and the measurement model builder.
"""

import unittest

import numpy as np

from pstate.consts import PQ
from pstate.errors import MissingSlackBus, UnknownLabel
from pstate.network import Network
from pstate.se.functions import FUNCTIONS, Admittance, Row
from pstate.se.measurement import Measurements
from pstate.se.model import build_model, pmu_variance
from pstate.utils.cases import three_bus


class TestMeasurements(unittest.TestCase):

    def setUp(self):
        self.net, self.true = three_bus()
        self.m = Measurements(self.net, seed=7)

    def test_default_labels(self):
        self.assertEqual(self.m.add_voltmeter('Bus 1', mean=1.0), 'Voltmeter 1')
        self.assertEqual(self.m.add_voltmeter('Bus 2', mean=1.0), 'Voltmeter 2')
        self.assertEqual(self.m.add_pmu(bus='Bus 1', magnitude=1.0, angle=0.0), 'PMU 1')
        self.assertEqual(self.m.add_wattmeter(bus='Bus 2', mean=0.1, label='P2'), 'P2')
        self.assertEqual(self.m.n_devices, 4)
        self.assertEqual(self.m.nm, 5)

    def test_invalid_input(self):
        self.m.add_voltmeter('Bus 1', mean=1.0, label='V1')
        with self.assertRaises(ValueError):
            self.m.add_voltmeter('Bus 2', mean=1.0, label='V1')
        with self.assertRaises(ValueError):
            self.m.add_voltmeter('Bus 2', mean=1.0, variance=0.0)
        with self.assertRaises(ValueError):
            self.m.add_wattmeter(bus='Bus 1', branch='Branch 1', mean=0.0)
        with self.assertRaises(ValueError):
            self.m.add_wattmeter(mean=0.0)
        with self.assertRaises(ValueError):
            self.m.add_ammeter('Branch 1', end='middle', mean=0.1)
        with self.assertRaises(ValueError):
            self.m.add_varmeter(bus='Bus 1')
        with self.assertRaises(ValueError):
            self.m.add_pmu(bus='Bus 1', magnitude=1.0)
        with self.assertRaises(UnknownLabel):
            self.m.add_voltmeter('Bus 9', mean=1.0)

    def test_exact_values(self):
        adm = Admittance(self.net)
        V, T = self.true.magnitude, self.true.angle

        self.m.add_wattmeter(bus='Bus 2', voltage=self.true)
        self.m.add_varmeter(branch='Branch 3', end='to', voltage=self.true)
        self.m.add_ammeter('Branch 1', end='from', voltage=self.true)
        self.m.add_pmu(branch='Branch 2', end='to', voltage=self.true)

        self.assertAlmostEqual(self.m.wattmeter.mean[0], FUNCTIONS[Row.PI][0](adm, V, T, 1))
        self.assertAlmostEqual(self.m.varmeter.mean[0], FUNCTIONS[Row.QJI][0](adm, V, T, 2))
        self.assertAlmostEqual(self.m.ammeter.mean[0], FUNCTIONS[Row.IIJ][0](adm, V, T, 0))
        self.assertAlmostEqual(self.m.pmu.magnitude_mean[0], FUNCTIONS[Row.IJI][0](adm, V, T, 1))
        self.assertAlmostEqual(self.m.pmu.angle_mean[0], FUNCTIONS[Row.PSI_JI][0](adm, V, T, 1))

    def test_seeded_noise(self):
        other = Measurements(self.net, seed=7)
        for meas in (self.m, other):
            meas.add_voltmeter('Bus 2', voltage=self.true, noise=True)
            meas.add_wattmeter(bus='Bus 3', voltage=self.true, noise=True)

        self.assertEqual(self.m.voltmeter.mean, other.voltmeter.mean)
        self.assertEqual(self.m.wattmeter.mean, other.wattmeter.mean)
        self.assertNotEqual(self.m.voltmeter.mean[0], self.true.magnitude[1])

    def test_find(self):
        label = self.m.add_varmeter(bus='Bus 3', mean=0.1)
        meter, uid = self.m.find(label)
        self.assertIs(meter, self.m.varmeter)
        self.assertEqual(uid, 0)
        with self.assertRaises(UnknownLabel):
            self.m.find('nothing')
        with self.assertRaises(UnknownLabel):
            self.m.varmeter.uid('nothing')

    def test_status(self):
        for label in self.net.bus.label:
            self.m.add_voltmeter(label, voltage=self.true)
            self.m.add_wattmeter(bus=label, voltage=self.true)

        self.m.status(inservice=4)
        on = int(np.sum(self.m.voltmeter.in_service())) + int(np.sum(self.m.wattmeter.in_service()))
        self.assertEqual(on, 4)

        self.m.status(device='wattmeter', outservice=3)
        self.assertEqual(int(np.sum(self.m.wattmeter.in_service())), 0)

        self.m.status(redundancy=1.0)
        on = int(np.sum(self.m.voltmeter.in_service())) + int(np.sum(self.m.wattmeter.in_service()))
        self.assertEqual(on, 5)

        with self.assertRaises(ValueError):
            self.m.status(inservice=1, outservice=1)
        with self.assertRaises(ValueError):
            self.m.status(inservice=10)


class TestModel(unittest.TestCase):

    def setUp(self):
        self.net, self.true = three_bus()
        self.m = Measurements(self.net)

    def test_missing_slack(self):
        net = Network()
        net.add_bus('A', type=PQ)
        net.add_bus('B', type=PQ)
        net.add_branch('AB', 'A', 'B', x=0.1)
        m = Measurements(net)
        m.add_voltmeter('A', mean=1.0)
        with self.assertRaises(MissingSlackBus):
            build_model(net, m)

    def test_row_order(self):
        m = self.m
        m.add_pmu(bus='Bus 1', voltage=self.true, polar=True)
        m.add_varmeter(bus='Bus 2', voltage=self.true)
        m.add_wattmeter(branch='Branch 1', voltage=self.true)
        m.add_voltmeter('Bus 3', voltage=self.true)
        m.add_voltmeter('Bus 2', voltage=self.true)

        model = build_model(self.net, m)

        self.assertEqual(model.m, 6)
        np.testing.assert_array_equal(model.range, [0, 2, 2, 3, 4, 6])
        np.testing.assert_array_equal(model.type, [Row.V, Row.V, Row.PIJ, Row.QI,
                                                   Row.PMU_V, Row.PMU_T])
        np.testing.assert_array_equal(model.index, [2, 1, 0, 1, 0, 0])
        self.assertEqual(model.label(1), 'Voltmeter: Voltmeter 2')
        self.assertEqual(model.label(5), 'PMU: PMU 1')
        self.assertEqual(model.rows_of('PMU 1'), [4, 5])

    def test_jacobian_pattern(self):
        m = self.m
        m.add_wattmeter(bus='Bus 2', voltage=self.true)
        m.add_wattmeter(branch='Branch 2', end='to', voltage=self.true)
        m.add_pmu(bus='Bus 3', voltage=self.true)
        m.add_pmu(bus='Bus 3', voltage=self.true, polar=True)

        model = build_model(self.net, m)
        counts = np.diff(model.ptr)

        # injection at a bus with two neighbours, branch flow, rectangular and polar PMU rows
        np.testing.assert_array_equal(counts, [6, 4, 2, 2, 1, 1])
        np.testing.assert_array_equal(model.type, [Row.PI, Row.PJI, Row.RE_V, Row.IM_V,
                                                   Row.PMU_V, Row.PMU_T])
        self.assertEqual(model.jacobian().shape, (6, 6))

    def test_rectangular_pmu(self):
        mag, ang = 1.01, -0.2
        self.m.add_pmu(bus='Bus 2', magnitude=mag, angle=ang, variance_magnitude=1e-4,
                       variance_angle=4e-4)
        model = build_model(self.net, self.m)

        np.testing.assert_allclose(model.mean, [mag * np.cos(ang), mag * np.sin(ang)])
        var_re, var_im, cov = pmu_variance(mag, ang, 1e-4, 4e-4)
        np.testing.assert_allclose(model.variance, [var_re, var_im])
        np.testing.assert_allclose(model.precision().toarray(), np.diag([1 / var_re, 1 / var_im]))
        self.assertFalse(model.correlated)
        self.assertEqual(model.partner(0), 1)
        self.assertEqual(model.partner(1), 0)

    def test_correlated_pmu(self):
        mag, ang = 1.01, -0.2
        self.m.add_voltmeter('Bus 1', mean=1.0)
        self.m.add_pmu(bus='Bus 2', magnitude=mag, angle=ang, variance_magnitude=1e-4,
                       variance_angle=4e-4, correlated=True)
        model = build_model(self.net, self.m)

        var_re, var_im, cov = pmu_variance(mag, ang, 1e-4, 4e-4)
        covariance = np.array([[var_re, cov], [cov, var_im]])
        W = model.precision().toarray()
        np.testing.assert_allclose(W[1:, 1:] @ covariance, np.eye(2), atol=1e-10)
        self.assertEqual(W[0, 1], 0.0)
        self.assertTrue(model.correlated)

    def test_polar_pmu_ignores_correlation(self):
        self.m.add_pmu(bus='Bus 2', magnitude=1.0, angle=0.1, polar=True, correlated=True)
        model = build_model(self.net, self.m)
        self.assertFalse(model.correlated)
        self.assertIsNone(model.partner(0))

    def test_variance_propagation(self):
        """First-order propagation matches a Monte Carlo estimate."""
        rng = np.random.default_rng(3)
        mag, ang, vm, va = 1.0, 0.6, 1e-4, 4e-4
        m = mag + rng.normal(0, np.sqrt(vm), 200000)
        a = ang + rng.normal(0, np.sqrt(va), 200000)
        sample = np.cov(m * np.cos(a), m * np.sin(a))

        var_re, var_im, cov = pmu_variance(mag, ang, vm, va)
        np.testing.assert_allclose([var_re, var_im, cov],
                                   [sample[0, 0], sample[1, 1], sample[0, 1]], rtol=0.05, atol=2e-6)

    def test_out_of_service(self):
        self.m.add_voltmeter('Bus 2', mean=0.98, status=0)
        self.m.add_pmu(bus='Bus 3', magnitude=1.0, angle=0.0, status=0)
        model = build_model(self.net, self.m)

        np.testing.assert_array_equal(model.type, [Row.OFF] * 3)
        np.testing.assert_array_equal(model.mean, np.zeros(3))

        model.evaluate(self.true)
        np.testing.assert_array_equal(model.residual, np.zeros(3))
        np.testing.assert_array_equal(model.jac, np.zeros(len(model.jac)))

    def test_evaluate_and_disable(self):
        for label in self.net.bus.label:
            self.m.add_wattmeter(bus=label, voltage=self.true)
        self.m.add_voltmeter('Bus 1', voltage=self.true)
        model = build_model(self.net, self.m)

        model.evaluate(self.true)
        np.testing.assert_allclose(model.residual, np.zeros(4), atol=1e-12)
        self.assertAlmostEqual(model.objective(), 0.0, places=20)

        pattern = model.gain_pattern()
        model.disable(1)
        self.assertEqual(model.type[1], Row.OFF)
        self.assertEqual(model.precision()[1, 1], 0.0)
        self.assertTrue(np.all(model.jac[model.ptr[1]:model.ptr[2]] == 0))
        self.assertIs(model.gain_pattern(), pattern)

    def test_gain_pattern_covers_gain(self):
        for label in self.net.bus.label:
            self.m.add_wattmeter(bus=label, voltage=self.true)
            self.m.add_varmeter(bus=label, voltage=self.true)
        self.m.add_voltmeter('Bus 1', voltage=self.true)
        model = build_model(self.net, self.m)
        model.evaluate(self.true)

        H = model.jacobian().toarray()
        H[:, model.slack] = 0.0
        G = H.T @ model.precision().toarray() @ H
        G[model.slack, model.slack] = 1.0

        row, col = model.gain_pattern()
        mask = np.zeros(G.shape, dtype=bool)
        mask[row, col] = True
        self.assertTrue(np.all(mask[G != 0]))


if __name__ == '__main__':
    unittest.main()
