"""
Tests for configurations.
"""

import configparser
import os
import tempfile
import unittest

from pstate.core.config import Config
from pstate.routines.se import SE
from pstate.utils.cases import three_bus
from pstate.utils.configmgr import find_config, load_config, parse_options


class TestConfig(unittest.TestCase):

    def test_add_keeps_existing(self):
        config = Config('SE', tol=1e-6)
        config.add(tol=1e-8, max_iter=20)
        self.assertEqual(config.tol, 1e-6)
        self.assertEqual(config.max_iter, 20)
        self.assertEqual(list(config.as_dict(refresh=True)), ['tol', 'max_iter'])

    def test_load_from_parser(self):
        conf = configparser.ConfigParser()
        conf.read_dict({'SE': {'max_iter': '5', 'threshold': '3.5', 'method': 'orthogonal'}})

        config = Config('SE')
        config.load(conf)
        config.add(max_iter=20, threshold=4.0, method='normal')

        self.assertEqual(config.max_iter, 5)
        self.assertEqual(config.threshold, 3.5)
        self.assertEqual(config.method, 'orthogonal')

    def test_check(self):
        config = Config('SE', method='newton')
        config.add_extra('_alt', method=('normal', 'orthogonal'))
        with self.assertRaises(ValueError):
            config.check()

        config.method = 'normal'
        self.assertTrue(config.check())

    def test_invalid_extra(self):
        config = Config('SE', tol=1e-8)
        with self.assertLogs('pstate.core.config', level='WARNING'):
            config.add_extra('_help', nothing='no such field')
        self.assertNotIn('nothing', config._help)

    def test_doc(self):
        config = Config('SE', tol=1e-8)
        config.add_extra('_help', tol='tolerance')
        text = config.doc()
        self.assertIn('[SE]', text)
        self.assertIn('tolerance', text)
        self.assertEqual(Config('empty').doc(), '')


class TestConfigOption(unittest.TestCase):
    """
    Tests for ``SECTION.FIELD=VALUE`` overrides.
    """

    def test_bad_format(self):
        conf = configparser.ConfigParser()
        self.assertRaises(ValueError, parse_options, conf, ["SE = 1"])
        self.assertRaises(ValueError, parse_options, conf, ["System.SE.tol = 1"])
        self.assertRaises(ValueError, parse_options, conf, ["SE.tol == 1"])

    def test_options(self):
        conf = load_config(options=["SE.max_iter=3", "SE.method = orthogonal"])
        self.assertEqual(conf['SE']['max_iter'], '3')
        self.assertEqual(conf['SE']['method'], 'orthogonal')

        net, _ = three_bus()
        se = SE(net, config=conf)
        self.assertEqual(se.config.max_iter, 3)
        self.assertEqual(se.config.method, 'orthogonal')
        self.assertEqual(se.config.tol, 1e-8)

    def test_config_file(self):
        with tempfile.TemporaryDirectory() as path:
            with open(os.path.join(path, 'pstate.rc'), 'w') as f:
                f.write('[SE]\nthreshold = 3.0\nbad_data = 1\n')

            self.assertEqual(find_config(path), os.path.join(path, 'pstate.rc'))

            conf = load_config(path, options=["SE.threshold=5"])
            se = SE(three_bus()[0], config=conf)
            self.assertEqual(se.config.threshold, 5)
            self.assertEqual(se.config.bad_data, 1)

            conf = load_config(os.path.join(path, 'pstate.rc'))
            self.assertEqual(conf['SE']['threshold'], '3.0')

    def test_missing_file(self):
        with tempfile.TemporaryDirectory() as path:
            self.assertIsNone(find_config(path, file_name='missing.rc'))


if __name__ == '__main__':
    unittest.main()
