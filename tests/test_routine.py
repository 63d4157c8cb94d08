"""
Tests for the state estimation routine and the top-level helpers.
"""

import logging
import os
import tempfile
import unittest

import numpy as np

import pstate
from pstate.routines.se import SE
from pstate.se.measurement import Measurements
from pstate.utils.cases import ieee14


def noisy_set(net, true, seed):
    m = Measurements(net, seed=seed)
    for label in net.bus.label:
        m.add_voltmeter(label, voltage=true, noise=True)
        m.add_wattmeter(bus=label, voltage=true, noise=True)
        m.add_varmeter(bus=label, voltage=true, noise=True)
    for label in net.branch.label:
        m.add_wattmeter(branch=label, voltage=true, noise=True)
        m.add_varmeter(branch=label, voltage=true, noise=True)
    return m


class TestSE(unittest.TestCase):

    def setUp(self):
        self.net, self.true = ieee14()
        self.m = noisy_set(self.net, self.true, seed=3)

    def test_run(self):
        se = SE(self.net, self.m)
        self.assertTrue(se.run())
        self.assertTrue(se.converged)
        self.assertGreater(se.exec_time, 0.0)

        np.testing.assert_allclose(se.v_est, self.true.magnitude, atol=0.01)
        np.testing.assert_allclose(se.a_est, self.true.angle, atol=0.01)
        self.assertIs(se.voltage, se.analysis.voltage)
        self.assertEqual(se.n_active, self.m.nm)

    def test_chi_squared(self):
        se = SE(self.net, self.m)
        se.config.report = 0
        with self.assertRaises(RuntimeError):
            se.chi_squared_test()

        se.run()
        passed, J, threshold, dof = se.chi_squared_test(confidence=0.999)
        self.assertEqual(dof, self.m.nm - (2 * self.net.bus.n - 1))
        self.assertTrue(passed)
        self.assertLess(J, threshold)

    def test_bad_data(self):
        uid = self.m.varmeter.uid('Varmeter 20')
        self.m.varmeter.mean[uid] += 0.3

        se = SE(self.net, self.m)
        se.config.bad_data = 1
        self.assertTrue(se.run())

        self.assertEqual(len(se.bad), 1)
        self.assertEqual(se.bad[0]['label'], 'Varmeter: Varmeter 20')
        self.assertEqual(self.m.varmeter.status[uid], 0)
        self.assertEqual(se.n_active, self.m.nm - 1)

    def test_orthogonal(self):
        se = SE(self.net, self.m)
        se.config.method = 'orthogonal'
        self.assertTrue(se.run())

        reference = SE(self.net, self.m)
        reference.run()
        np.testing.assert_allclose(se.v_est, reference.v_est, atol=1e-7)
        np.testing.assert_allclose(se.a_est, reference.a_est, atol=1e-7)

    def test_invalid_choice(self):
        se = SE(self.net, self.m)
        se.config.factorization = 'svd'
        with self.assertRaises(ValueError):
            se.run()

    def test_missing_measurements(self):
        with self.assertRaises(ValueError):
            SE(self.net).init()

    def test_not_converged(self):
        se = SE(self.net, self.m)
        se.config.max_iter = 1
        with self.assertLogs('pstate.routines.se', level='WARNING'):
            self.assertFalse(se.run())

    def test_report(self):
        se = SE(self.net, self.m)
        with self.assertLogs('pstate.routines.se', level='INFO') as cm:
            se.run()
        self.assertTrue(any('SE Report' in line for line in cm.output))
        self.assertTrue(any('Bus 14' in line for line in cm.output))


class TestMain(unittest.TestCase):

    def test_run(self):
        net, true = ieee14()
        m = noisy_set(net, true, seed=5)
        with self.assertLogs('pstate', level='INFO') as cm:
            se = pstate.run(net, m, config_option=['SE.report=0', 'SE.factorization=ldlt'])
        self.assertTrue(any('Session: ' in line for line in cm.output))
        self.assertTrue(se.converged)
        self.assertEqual(se.analysis.sparselib, 'cholmod')

    def test_config_logger(self):
        with tempfile.TemporaryDirectory() as path:
            logfile = os.path.join(path, 'pstate.log')
            pstate.config_logger(logfile=logfile, stream=False)

            logger = logging.getLogger('pstate')
            logger.debug('written to file')

            handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
            for h in handlers:
                h.flush()
                h.close()
                logger.removeHandler(h)

            with open(logfile) as f:
                self.assertIn('written to file', f.read())


if __name__ == '__main__':
    unittest.main()
