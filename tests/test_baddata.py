"""
Tests for the largest normalized residual test.
"""

import unittest

import numpy as np

from pstate.se.algorithms import gauss_newton, wls
from pstate.se.baddata import normalized_residuals, residual_covariance, residual_test
from pstate.se.functions import Row
from pstate.se.measurement import Measurements
from pstate.utils.cases import ieee14, three_bus


def full_set(net, true):
    m = Measurements(net)
    for label in net.bus.label:
        m.add_voltmeter(label, voltage=true)
        m.add_wattmeter(bus=label, voltage=true)
        m.add_varmeter(bus=label, voltage=true)
    for label in net.branch.label:
        for end in ('from', 'to'):
            m.add_wattmeter(branch=label, end=end, voltage=true)
            m.add_varmeter(branch=label, end=end, voltage=true)
    return m


class TestResidualCovariance(unittest.TestCase):

    def test_against_dense(self):
        net, true = ieee14()
        m = full_set(net, true)
        m.add_pmu(bus='Bus 4', voltage=true, correlated=True)
        analysis = gauss_newton(net, m)
        wls(analysis)

        c = residual_covariance(analysis)

        model = analysis.model
        H = model.jacobian().toarray()
        H[:, model.slack] = 0.0
        W = model.precision().toarray()
        G = H.T @ W @ H
        G[model.slack, model.slack] = 1.0
        expected = np.diag(H @ np.linalg.solve(G, H.T))

        np.testing.assert_allclose(c, expected, rtol=1e-8, atol=1e-14)


class TestResidualTest(unittest.TestCase):

    def setUp(self):
        self.net, self.true = ieee14()
        self.m = full_set(self.net, self.true)

    def test_single_gross_error(self):
        uid = self.m.wattmeter.uid('Wattmeter 4')
        self.m.wattmeter.mean[uid] += 10 * np.sqrt(self.m.wattmeter.variance[uid])

        analysis = gauss_newton(self.net, self.m)
        self.assertTrue(wls(analysis)['converged'])

        out = residual_test(analysis, threshold=4.0)
        self.assertTrue(out['detect'])
        self.assertEqual(out['label'], 'Wattmeter: Wattmeter 4')
        self.assertGreater(out['max_normalized_residual'], 4.0)

        row = out['index']
        self.assertEqual(analysis.model.type[row], Row.OFF)
        self.assertEqual(self.m.wattmeter.status[uid], 0)

        self.assertTrue(wls(analysis)['converged'])
        np.testing.assert_allclose(analysis.voltage.magnitude, self.true.magnitude, atol=1e-6)

        again = residual_test(analysis, threshold=4.0)
        self.assertFalse(again['detect'])
        self.assertLess(again['max_normalized_residual'], 4.0)

    def test_clean_data(self):
        analysis = gauss_newton(self.net, self.m)
        wls(analysis)
        out = residual_test(analysis)
        self.assertFalse(out['detect'])

        rn = normalized_residuals(analysis)
        self.assertEqual(len(rn), analysis.model.m)
        self.assertLess(np.max(rn), 1e-3)

    def test_correlated_pmu(self):
        """Residual variances of a correlated pair use the inverse precision diagonal."""
        self.m.add_pmu(bus='Bus 4', voltage=self.true, correlated=True)
        self.m.pmu.magnitude_mean[0] += 0.01

        analysis = gauss_newton(self.net, self.m)
        self.assertTrue(wls(analysis)['converged'])
        rn = normalized_residuals(analysis)

        model = analysis.model
        H = model.jacobian().toarray()
        H[:, model.slack] = 0.0
        W = model.precision().toarray()
        G = H.T @ W @ H
        G[model.slack, model.slack] = 1.0
        omega = 1.0 / np.diag(W) - np.diag(H @ np.linalg.solve(G, H.T))
        expected = np.abs(model.residual) / np.sqrt(np.abs(omega))

        rows = model.rows_of(self.m.pmu.label[0])
        self.assertEqual(len(rows), 2)
        self.assertGreater(W[rows[0], rows[1]] ** 2, 0.0)
        np.testing.assert_allclose(rn[rows], expected[rows], rtol=1e-6)
        # normalizing by the marginal variance gives noticeably different values
        c = np.diag(H @ np.linalg.solve(G, H.T))
        marginal = np.abs(model.residual) / np.sqrt(np.abs(model.variance - c))
        self.assertFalse(np.allclose(rn[rows], marginal[rows], rtol=1e-3))

    def test_out_of_service_rows_ignored(self):
        uid = self.m.varmeter.uid('Varmeter 2')
        self.m.varmeter.mean[uid] += 1.0
        self.m.varmeter.set_status(uid, 0)

        analysis = gauss_newton(self.net, self.m)
        wls(analysis)
        rn = normalized_residuals(analysis)
        row = analysis.model.rows_of('Varmeter 2')[0]
        self.assertEqual(rn[row], 0.0)
        self.assertFalse(residual_test(analysis)['detect'])


class TestCriticalMeasurements(unittest.TestCase):

    def test_exactly_determined(self):
        net, true = three_bus()
        m = Measurements(net)
        for label in net.bus.label:
            m.add_voltmeter(label, voltage=true)
        m.add_wattmeter(branch='Branch 1', voltage=true)
        m.add_wattmeter(branch='Branch 2', voltage=true)
        m.wattmeter.mean[0] += 0.5

        analysis = gauss_newton(net, m)
        self.assertTrue(wls(analysis)['converged'])

        self.assertTrue(np.all(normalized_residuals(analysis) == 0.0))
        out = residual_test(analysis)
        self.assertFalse(out['detect'])
        self.assertIsNone(out['index'])
        self.assertEqual(out['label'], '')


class TestPhasorRemoval(unittest.TestCase):

    def setUp(self):
        self.net, self.true = three_bus()
        self.m = full_set(self.net, self.true)

    def test_rectangular_pmu(self):
        self.m.add_pmu(bus='Bus 2', voltage=self.true)
        label = self.m.add_pmu(bus='Bus 3', voltage=self.true)
        self.m.pmu.magnitude_mean[1] += 0.1

        analysis = gauss_newton(self.net, self.m)
        wls(analysis)
        out = residual_test(analysis)

        self.assertTrue(out['detect'])
        self.assertEqual(out['label'], f'PMU: {label}')
        for row in analysis.model.rows_of(label):
            self.assertEqual(analysis.model.type[row], Row.OFF)
        self.assertEqual(self.m.pmu.magnitude_status[1], 0)
        self.assertEqual(self.m.pmu.angle_status[1], 0)
        self.assertEqual(self.m.pmu.magnitude_status[0], 1)

    def test_polar_pmu(self):
        label = self.m.add_pmu(bus='Bus 3', voltage=self.true, polar=True)
        self.m.pmu.magnitude_mean[0] += 0.1

        analysis = gauss_newton(self.net, self.m)
        wls(analysis)
        out = residual_test(analysis)

        self.assertTrue(out['detect'])
        magnitude_row, angle_row = analysis.model.rows_of(label)
        self.assertEqual(out['index'], magnitude_row)
        self.assertEqual(analysis.model.type[magnitude_row], Row.OFF)
        self.assertEqual(analysis.model.type[angle_row], Row.PMU_T)
        self.assertEqual(self.m.pmu.magnitude_status[0], 0)
        self.assertEqual(self.m.pmu.angle_status[0], 1)


if __name__ == '__main__':
    unittest.main()
