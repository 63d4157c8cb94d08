"""
Import subpackage classes
"""

from pstate.core.config import Config  # NOQA
