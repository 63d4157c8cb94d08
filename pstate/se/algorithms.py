"""
State estimation algorithms.

``GaussNewton`` solves the nonlinear weighted least squares problem::

    min  (z - h(x))^T  W  (z - h(x))

one iteration at a time through the normal equation::

    G  dx = H^T  W  r

where ``G = H^T W H`` is the gain matrix and ``r = z - h(x)``. The
``Orthogonal`` variant QR-factorizes ``W^(1/2) H`` instead of forming ``G``.

``wls`` drives either of them to convergence and returns a dict with
``converged``, ``n_iter``, ``increment``, ``residuals`` and ``J``.
"""

import logging

import numpy as np
import scipy.sparse as sp

from pstate.errors import CorrelatedPrecisionNotOrthogonalCompatible, MissingSlackBus
from pstate.linsolvers.scipy import csc_to_spmatrix
from pstate.linsolvers.solverbase import Solver
from pstate.se.model import build_model

logger = logging.getLogger(__name__)

# factorization name -> sparse library
FACTORIZATIONS = {'lu': None, 'ldlt': 'cholmod', 'qr': 'qr'}


class GaussNewton:
    """
    Gauss-Newton iteration of nonlinear WLS state estimation.

    The session owns the measurement model, the voltage estimate and the
    linear solver. The symbolic factorization of the gain matrix is computed
    on the first iteration and reused afterwards; ``reset()`` discards it.

    Parameters
    ----------
    network : pstate.network.Network
    measurements : pstate.se.measurement.Measurements
    factorization : str
        ``'lu'`` (default), ``'ldlt'`` or ``'qr'``.
    sparselib : str
        LU library: ``'klu'`` (default), ``'umfpack'`` or ``'spsolve'``.
    model : MeasurementModel or None
        A model built earlier for the same inputs.
    """

    method = 'normal'

    def __init__(self, network, measurements, factorization='lu', sparselib='klu', model=None):
        if factorization not in FACTORIZATIONS:
            raise ValueError(f"Unknown factorization {factorization!r}; "
                             f"choose from {list(FACTORIZATIONS)}.")

        self.network = network
        self.measurements = measurements
        self.model = model if model is not None else build_model(network, measurements)

        self.factorization = factorization
        self.sparselib = FACTORIZATIONS[factorization] or sparselib
        self.solver = Solver(self.sparselib)

        self.voltage = network.initial_voltage()
        self.increment = np.zeros(2 * network.bus.n)
        self.objective = 0.0
        self.iteration = 0

    @property
    def n(self):
        return self.model.n

    def reset(self):
        """Discard cached factorizations; the next iteration refactorizes from scratch."""
        self.solver.clear()

    def set_initial_point(self, source=None):
        """
        Reset the voltage estimate.

        Parameters
        ----------
        source : Voltage, GaussNewton or None
            Copy voltages from another state or session; the network's stored
            voltages are used when ``None``.
        """
        if source is None:
            voltage = self.network.initial_voltage()
        elif isinstance(source, GaussNewton):
            voltage = source.voltage.copy()
        else:
            voltage = source.copy()

        if voltage.n != self.n:
            raise ValueError(f"Initial point has {voltage.n} buses, expected {self.n}.")

        self.voltage = voltage
        self.iteration = 0

    def _check_network(self):
        slack = self.network.slack
        if slack is None:
            raise MissingSlackBus()
        if slack != self.model.slack:
            raise MissingSlackBus("The slack bus changed after the model was built. "
                                  "Rebuild the measurement model.")
        if self.network.revision != self.model.revision:
            raise ValueError("The network changed after the model was built. "
                             "Rebuild the measurement model.")

    def normal_equation(self):
        """
        Evaluate the Jacobian, residuals and objective at the current estimate.
        """
        self._check_network()
        self.model.evaluate(self.voltage)
        self.objective = self.model.objective()

    def iterate(self):
        """
        Perform one Gauss-Newton iteration and update the estimate in place.

        Returns
        -------
        float
            Maximum absolute state increment.

        Raises
        ------
        SingularGainMatrix
            If the gain matrix cannot be factorized.
        """
        self.normal_equation()
        model = self.model
        slack = model.slack

        # neutralize the slack angle column
        at_slack = np.flatnonzero(model.col == slack)
        saved = model.jac[at_slack].copy()
        model.jac[at_slack] = 0.0

        try:
            dx = self._step()
        finally:
            model.jac[at_slack] = saved

        dx[slack] = 0.0
        self.increment = dx

        n = self.n
        self.voltage.angle += dx[:n]
        self.voltage.magnitude += dx[n:]
        self.iteration += 1

        max_dx = float(np.max(np.abs(dx)))
        logger.debug("WLS iter %d: max|dx| = %.6g, J = %.6g", self.iteration, max_dx, self.objective)
        return max_dx

    def gain(self):
        """
        Gain matrix ``H^T W H`` at the last evaluation, slack column zeroed
        and slack diagonal set to one.
        """
        model = self.model
        H = model.jacobian()
        W = model.precision()
        G = sp.csc_matrix(H.T @ W @ H)
        unit = sp.csc_matrix(([1.0], ([model.slack], [model.slack])), shape=G.shape)
        return sp.csc_matrix(G + unit), H, W

    def _step(self):
        G, H, W = self.gain()
        rhs = H.T @ (W @ self.model.residual)

        A = csc_to_spmatrix(G, self.model.gain_pattern())
        return np.array(self.solver.solve(A, rhs), dtype=float)


class Orthogonal(GaussNewton):
    """
    Gauss-Newton iteration solved by QR factorization of the scaled Jacobian.

    Rows of the Jacobian and the residuals are scaled by the square root of
    the precision. The slack column is dropped and the least-squares problem
    is solved without forming the orthogonal factor.

    Raises
    ------
    CorrelatedPrecisionNotOrthogonalCompatible
        If any PMU has correlated errors.
    """

    method = 'orthogonal'

    def __init__(self, network, measurements, model=None, **kwargs):
        kwargs.pop('factorization', None)
        kwargs.pop('sparselib', None)
        super().__init__(network, measurements, factorization='qr', model=model)

        if self.model.correlated:
            raise CorrelatedPrecisionNotOrthogonalCompatible()

    def _step(self):
        model = self.model
        H = model.jacobian()
        scale = np.sqrt(model.precision().diagonal())

        keep = np.flatnonzero(np.arange(2 * self.n) != model.slack)
        A = sp.csc_matrix(sp.diags(scale) @ H)[:, keep]
        b = scale * model.residual

        dx = np.zeros(2 * self.n)
        dx[keep] = self.solver.solve(csc_to_spmatrix(A), b)
        return dx


def gauss_newton(network, measurements, method='normal', factorization='lu', sparselib='klu'):
    """
    Create a Gauss-Newton estimation session.

    Parameters
    ----------
    method : str
        ``'normal'`` for normal equations or ``'orthogonal'`` for QR of the
        scaled Jacobian.
    """
    if method == 'orthogonal':
        return Orthogonal(network, measurements)
    if method != 'normal':
        raise ValueError(f"Unknown method {method!r}.")
    return GaussNewton(network, measurements, factorization=factorization, sparselib=sparselib)


def wls(analysis, tol=1e-8, max_iter=20):
    """
    Iterate a Gauss-Newton session until the increment falls below ``tol``.

    Parameters
    ----------
    analysis : GaussNewton
        Estimation session. Its voltage estimate is updated in place.
    tol : float
        Convergence tolerance on max absolute state correction.
    max_iter : int
        Maximum number of Gauss-Newton iterations.

    Returns
    -------
    dict
        ``converged``   : bool
        ``n_iter``      : number of iterations
        ``increment``   : last max absolute increment
        ``residuals``   : measurement residuals at the last evaluation
        ``J``           : objective at the last evaluation
    """
    max_dx = np.inf
    for k in range(max_iter):
        max_dx = analysis.iterate()

        if not max_dx < tol:
            continue

        logger.info("WLS converged in %d iterations, J = %.6g", k + 1, analysis.objective)
        return dict(converged=True, n_iter=k + 1, increment=max_dx,
                    residuals=analysis.model.residual.copy(), J=analysis.objective)

    logger.warning("WLS did not converge after %d iterations, J = %.6g", max_iter, analysis.objective)
    return dict(converged=False, n_iter=max_iter, increment=max_dx,
                residuals=analysis.model.residual.copy(), J=analysis.objective)
