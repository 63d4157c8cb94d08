"""
Bad data detection by the largest normalized residual test.
"""

import logging

import numpy as np
import scipy.sparse as sp

from pstate.errors import SingularGainMatrix
from pstate.linsolvers.sparseinv import sparse_inverse
from pstate.se.functions import Row

logger = logging.getLogger(__name__)


def residual_covariance(analysis):
    """
    Diagonal of ``J inv(G) J^T`` at the current estimate.

    The slack column is dropped from the Jacobian and the gain matrix gets a
    unit slack diagonal, as in the Gauss-Newton iteration. Only the entries
    of ``inv(G)`` on the Cholesky pattern of ``G`` are computed.

    Parameters
    ----------
    analysis : pstate.se.algorithms.GaussNewton

    Returns
    -------
    numpy.ndarray
        One value per measurement row.
    """
    model = analysis.model
    model.evaluate(analysis.voltage)

    keep = np.ones(2 * model.n)
    keep[model.slack] = 0.0
    H = sp.csc_matrix(model.jacobian() @ sp.diags(keep))
    W = model.precision()

    G = sp.csc_matrix(H.T @ W @ H)
    G = G + sp.csc_matrix(([1.0], ([model.slack], [model.slack])), shape=G.shape)

    prow, pcol = model.gain_pattern()
    pattern = sp.csc_matrix((np.ones(len(prow)), (prow, pcol)), shape=G.shape)

    Ginv = sparse_inverse(G, pattern)
    return np.asarray(H.multiply(H @ Ginv).sum(axis=1)).ravel()


def normalized_residuals(analysis, critical=1e-10):
    """
    Normalized residuals ``|r_i| / sqrt(|1 / W_ii - c_ii|)``.

    ``W_ii`` is the diagonal of the precision matrix and ``c_ii`` the
    diagonal of ``J inv(G) J^T``. Out-of-service rows, rows with a zero
    residual and critical rows, whose residual variance is below
    ``critical / W_ii``, get a zero value.

    Returns
    -------
    numpy.ndarray
    """
    model = analysis.model
    c = residual_covariance(analysis)

    w = model.precision().diagonal()
    sigma2 = np.zeros(model.m)
    np.divide(1.0, w, out=sigma2, where=w != 0.0)
    omega = sigma2 - c

    inservice = (model.type != Row.OFF) & (w != 0.0)
    critical_rows = inservice & ~(np.abs(omega) > critical * sigma2)

    rn = np.zeros(model.m)
    active = inservice & ~critical_rows & (model.residual != 0.0)
    rn[active] = np.abs(model.residual[active]) / np.sqrt(np.abs(omega[active]))

    n_critical = int(np.sum(critical_rows))
    if n_critical:
        logger.debug('%d critical measurement(s) excluded from the residual test.', n_critical)
    return rn


def remove(analysis, row):
    """
    Take the measurement behind ``row`` out of service.

    The row is disabled in the model together with the other row of a
    rectangular PMU, the device status in the measurement set is cleared,
    and the cached symbolic factorization is discarded.
    """
    model = analysis.model
    meter, uid = model.meter_of(row)

    model.disable(row)
    partner = model.partner(row)

    if meter is model.measurements.pmu:
        if partner is not None:
            model.disable(partner)
            meter.set_status(uid, 0)
        elif row == model.rows_of(meter.label[uid])[0]:
            meter.magnitude_status[uid] = 0
        else:
            meter.angle_status[uid] = 0
    else:
        meter.set_status(uid, 0)

    analysis.reset()


def residual_test(analysis, threshold=4.0, critical=1e-10):
    """
    Largest normalized residual test.

    Finds the row with the largest normalized residual. If it exceeds
    ``threshold``, the measurement is taken out of service and the session
    must be iterated again.

    Parameters
    ----------
    analysis : pstate.se.algorithms.GaussNewton
        Session holding a converged estimate.
    threshold : float
        Detection threshold.
    critical : float
        Relative tolerance below which a residual variance marks a critical
        measurement.

    Returns
    -------
    dict
        ``detect`` : bool
        ``index`` : row of the largest normalized residual, or ``None``
        ``label`` : ``'<class>: <label>'`` of that row, or ``''``
        ``max_normalized_residual`` : float
    """
    model = analysis.model
    out = dict(detect=False, index=None, label='', max_normalized_residual=0.0)

    try:
        rn = normalized_residuals(analysis, critical=critical)
    except SingularGainMatrix:
        logger.warning('Residual test skipped: the gain matrix is singular.')
        return out

    if model.m == 0 or not np.any(rn > 0):
        return out

    row = int(np.argmax(rn))
    out['index'] = row
    out['label'] = model.label(row)
    out['max_normalized_residual'] = float(rn[row])

    if rn[row] > threshold:
        out['detect'] = True
        logger.info('Bad data <%s> removed, normalized residual %.4g.', out['label'], rn[row])
        remove(analysis, row)

    return out
