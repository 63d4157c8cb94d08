"""
Minimal setup.py shim for backwards compatibility.

All configuration is defined in pyproject.toml. This file only supplies
the version read from ``pstate/_version.py``.
"""

import sys
import os

# Enforce minimum Python version
if sys.version_info < (3, 9):
    error = """
pstate requires Python 3.9 or later.

Current Python version: {}.{}
Required: Python >= 3.9
""".format(sys.version_info.major, sys.version_info.minor)
    sys.exit(error)

from setuptools import setup

version_file = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'pstate', '_version.py')
version = "0.0.0+unknown"
if os.path.exists(version_file):
    with open(version_file) as f:
        for line in f:
            if line.startswith('__version__'):
                version = line.split('=')[1].strip().strip('"').strip("'")
                break

setup(
    version=version,
)
