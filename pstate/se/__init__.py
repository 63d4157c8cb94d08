"""
AC state estimation package.

Provides the measurement set, the measurement model builder, Gauss-Newton
WLS, bad data detection and observability analysis.
"""

from pstate.se.measurement import Measurements  # noqa
from pstate.se.model import build_model, MeasurementModel  # noqa
from pstate.se.algorithms import GaussNewton, Orthogonal, gauss_newton, wls  # noqa
from pstate.se.baddata import residual_test  # noqa
from pstate.se.observability import (Island, island_topological,  # noqa
                                     island_topological_flow, reduced_coefficient,
                                     restoration_gram)
