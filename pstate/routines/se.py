"""
Static state estimation routine.
"""

import logging
from collections import OrderedDict

import numpy as np

from pstate.consts import rad2deg
from pstate.routines.base import BaseRoutine
from pstate.se.algorithms import gauss_newton, wls
from pstate.se.baddata import residual_test
from pstate.se.functions import Row
from pstate.utils.misc import elapsed

logger = logging.getLogger(__name__)


class SE(BaseRoutine):
    """
    State estimation routine.

    Estimates bus voltage magnitudes and angles from a measurement set with
    Gauss-Newton WLS, then optionally removes bad data by the largest
    normalized residual test and re-solves.

    Examples
    --------
    Basic usage with a stock network::

        from pstate.utils.cases import ieee14
        net, true = ieee14()
        m = Measurements(net, seed=1)
        m.add_voltmeter('Bus 1', voltage=true, noise=True)
        ...
        se = SE(net, m)
        se.run()
        se.voltage.magnitude
    """

    def __init__(self, network=None, measurements=None, config=None):
        super().__init__(network, measurements, config)
        self.config.add(OrderedDict((('tol', 1e-8),
                                     ('max_iter', 20),
                                     ('method', 'normal'),
                                     ('factorization', 'lu'),
                                     ('sparselib', 'klu'),
                                     ('flat_start', 1),
                                     ('bad_data', 0),
                                     ('threshold', 4.0),
                                     ('max_bad', 10),
                                     ('critical', 1e-10),
                                     ('report', 1),
                                     )))
        self.config.add_extra("_help",
                              tol="convergence tolerance on max |dx|",
                              max_iter="max number of Gauss-Newton iterations",
                              method="normal equations or orthogonal (QR of the scaled Jacobian)",
                              factorization="gain matrix factorization",
                              sparselib="sparse library for LU",
                              flat_start="use flat start (1.0 pu, 0 rad) as initial guess",
                              bad_data="run the largest normalized residual test",
                              threshold="normalized residual threshold",
                              max_bad="max number of measurements removed as bad data",
                              critical="relative residual variance marking a critical measurement",
                              report="log the estimation report",
                              )
        self.config.add_extra("_alt",
                              tol="float",
                              max_iter=">=1",
                              method=('normal', 'orthogonal'),
                              factorization=('lu', 'ldlt', 'qr'),
                              sparselib=('klu', 'umfpack', 'spsolve'),
                              flat_start=(0, 1),
                              bad_data=(0, 1),
                              threshold=">0",
                              max_bad=">=0",
                              critical=">0",
                              report=(0, 1),
                              )

        self.converged = False
        self.result = None
        self.analysis = None
        self.bad = []   # residual test outcomes that removed a measurement

    def summary(self):
        """Print SE configuration summary."""
        method = self.config.method
        if method == 'normal':
            method = f'normal equations, {self.config.factorization.upper()}'
            if self.config.factorization == 'lu':
                method += f' ({self.config.sparselib.upper()})'

        out = ['',
               '-> State Estimation',
               f'{"Method":>16s}: WLS, {method}',
               f'{"Tolerance":>16s}: {self.config.tol}',
               f'{"Max iterations":>16s}: {self.config.max_iter}',
               f'{"Bad data":>16s}: {"on" if self.config.bad_data else "off"}',
               ]
        logger.info('\n'.join(out))

    def init(self, measurements=None):
        """
        Check the config and create the Gauss-Newton session.

        Parameters
        ----------
        measurements : Measurements or None
            Replaces the measurement set given at construction.
        """
        self.config.check()

        if measurements is not None:
            self.measurements = measurements
        if self.measurements is None:
            raise ValueError("SE needs a measurement set.")

        self.analysis = gauss_newton(self.network, self.measurements,
                                     method=self.config.method,
                                     factorization=self.config.factorization,
                                     sparselib=self.config.sparselib)

        if self.config.flat_start:
            n = self.network.bus.n
            flat = self.network.initial_voltage()
            flat.magnitude[:] = np.ones(n)
            flat.angle[:] = np.zeros(n)
            self.analysis.set_initial_point(flat)

        self.bad = []
        return True

    def run(self, measurements=None, **kwargs):
        """
        Run static state estimation.

        Parameters
        ----------
        measurements : Measurements or None
            Measurement data. The set given at construction if None.

        Returns
        -------
        bool
            Convergence status.
        """
        self.summary()

        t0, _ = elapsed()
        self.init(measurements=measurements)

        self.result = wls(self.analysis, tol=self.config.tol, max_iter=self.config.max_iter)

        if self.config.bad_data and self.result['converged']:
            self._remove_bad_data()

        self.converged = self.result['converged']

        t1, s1 = elapsed(t0)
        self.exec_time = t1 - t0

        if self.converged:
            logger.info('SE converged in %d iterations in %s.', self.result['n_iter'], s1)
        else:
            logger.warning('SE did not converge after %d iterations.', self.result['n_iter'])

        if self.config.report:
            self.report()

        return self.converged

    def _remove_bad_data(self):
        """
        Remove measurements one at a time while the residual test detects bad data.
        """
        for _ in range(int(self.config.max_bad)):
            outcome = residual_test(self.analysis, threshold=self.config.threshold,
                                    critical=self.config.critical)
            if not outcome['detect']:
                return

            self.bad.append(outcome)
            self.result = wls(self.analysis, tol=self.config.tol, max_iter=self.config.max_iter)
            if not self.result['converged']:
                return

        logger.warning('Bad data removal stopped after %d measurements.', len(self.bad))

    def report(self):
        """Log a summary of SE results."""
        if self.result is None:
            return

        n = self.network.bus.n
        nm = self.n_active
        r = self.result

        out = ['',
               '-> SE Report',
               f'{"Converged":>16s}: {r["converged"]}',
               f'{"Iterations":>16s}: {r["n_iter"]}',
               f'{"Objective J":>16s}: {r["J"]:.6g}',
               f'{"Measurements":>16s}: {nm}',
               f'{"States":>16s}: {2 * n - 1}',
               f'{"Redundancy":>16s}: {nm / (2 * n - 1):.2f}x',
               ]
        for outcome in self.bad:
            out.append(f'{"Bad data":>16s}: {outcome["label"]} '
                       f'(rN = {outcome["max_normalized_residual"]:.4g})')

        if r['converged']:
            out.append('')
            out.append(f'{"Bus":>16s}  {"V [pu]":>10s}  {"a [deg]":>10s}')
            for i, label in enumerate(self.network.bus.label):
                out.append(f'{label:>16s}  {self.v_est[i]:>10.5f}  {self.a_est[i] * rad2deg:>10.4f}')

        logger.info('\n'.join(out))

    def chi_squared_test(self, confidence=0.95):
        """
        Perform chi-squared test on the SE result.

        Returns
        -------
        tuple
            (passed, J, threshold, dof) where dof = nm - (2n - 1).
        """
        from scipy.stats import chi2

        if self.result is None:
            raise RuntimeError("No SE result available. Run SE first.")

        nm = self.n_active
        n_state = 2 * self.network.bus.n - 1
        dof = nm - n_state

        if dof <= 0:
            logger.warning("Degrees of freedom <= 0 (nm=%d, n_state=%d). "
                           "System may be unobservable.", nm, n_state)
            return (False, self.result['J'], float('inf'), dof)

        threshold = chi2.ppf(confidence, dof)
        passed = self.result['J'] < threshold
        return (passed, self.result['J'], threshold, dof)

    # ------------------------------------------------------------------
    #  Properties for convenient result access
    # ------------------------------------------------------------------

    @property
    def n_active(self):
        """Number of in-service measurement rows."""
        if self.analysis is None:
            return 0
        return int(np.sum(self.analysis.model.type != Row.OFF))

    @property
    def voltage(self):
        """Estimated bus voltages."""
        if self.analysis is None:
            return None
        return self.analysis.voltage

    @property
    def v_est(self):
        """Estimated bus voltage magnitudes."""
        if self.analysis is None:
            return None
        return self.analysis.voltage.magnitude

    @property
    def a_est(self):
        """Estimated bus voltage angles (radians)."""
        if self.analysis is None:
            return None
        return self.analysis.voltage.angle
