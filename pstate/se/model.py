"""
Measurement model of AC state estimation.

``build_model`` compiles a network and a measurement set into a Jacobian
sparsity arena, the mean vector, the precision matrix and per-row tags.
"""

import logging

import numpy as np
import scipy.sparse as sp

from pstate.errors import MissingSlackBus, UnknownLabel
from pstate.se.functions import FUNCTIONS, Admittance, Row, columns

logger = logging.getLogger(__name__)


def pmu_variance(magnitude, angle, variance_magnitude, variance_angle):
    """
    Propagate polar PMU variances to the real and imaginary parts.

    Returns
    -------
    tuple of float
        ``(variance_real, variance_imag, covariance)``
    """
    s, c = np.sin(angle), np.cos(angle)
    var_re = variance_magnitude * c ** 2 + variance_angle * (magnitude * s) ** 2
    var_im = variance_magnitude * s ** 2 + variance_angle * (magnitude * c) ** 2
    cov = s * c * (variance_magnitude - variance_angle * magnitude ** 2)
    return var_re, var_im, cov


class MeasurementModel:
    """
    Compiled measurement model owned by one estimation session.

    The Jacobian is kept as an arena of ``(row, col, value)`` triplets ordered
    row by row; ``ptr[r]:ptr[r + 1]`` addresses the entries of row ``r``. Row
    count and order never change after building. Taking a measurement out of
    service only changes values and tags.

    Attributes
    ----------
    type : numpy.ndarray
        ``Row`` code per row, ``Row.OFF`` for out-of-service rows.
    index : numpy.ndarray
        Bus or branch anchor per row.
    device : numpy.ndarray
        Position of the source device within its class.
    range : numpy.ndarray
        First row of the voltmeter, ammeter, wattmeter, varmeter and PMU
        blocks, followed by the row count.
    """

    def __init__(self, network, measurements):
        self.network = network
        self.measurements = measurements
        self.revision = network.revision

        self.slack = network.slack
        self.n = network.bus.n
        self.adm = Admittance(network)

        self.row = None
        self.col = None
        self.ptr = None
        self.jac = None

        self.mean = None
        self.residual = None
        self.variance = None
        self.type = None
        self.index = None
        self.device = None
        self.range = None
        self.correlated = False

        # precision matrix triplets
        self._prow = None
        self._pcol = None
        self._pval = None

        self._gain_pattern = None

    @property
    def m(self):
        """Number of rows."""
        return len(self.mean)

    @property
    def meters(self):
        return self.measurements.meters

    def jacobian(self):
        """Jacobian as a ``scipy.sparse.csc_matrix``."""
        return sp.csc_matrix((self.jac, (self.row, self.col)), shape=(self.m, 2 * self.n))

    def precision(self):
        """Precision matrix as a ``scipy.sparse.csc_matrix``."""
        return sp.csc_matrix((self._pval, (self._prow, self._pcol)), shape=(self.m, self.m))

    def meter_of(self, row):
        """Return ``(meter, uid)`` of the device behind ``row``."""
        block = int(np.searchsorted(self.range, row, side='right')) - 1
        return self.meters[block], int(self.device[row])

    def label(self, row):
        """Human-readable ``'<class>: <label>'`` of a row."""
        meter, uid = self.meter_of(row)
        return f'{meter.name}: {meter.label[uid]}'

    def rows_of(self, label):
        """
        Rows belonging to the device ``label``.

        Raises
        ------
        UnknownLabel
            If no device has the label.
        """
        meter, uid = self.measurements.find(label)
        block = self.meters.index(meter)
        lo, hi = self.range[block], self.range[block + 1]
        rows = lo + np.flatnonzero(self.device[lo:hi] == uid)
        if len(rows) == 0:
            raise UnknownLabel(label, 'measurement model')
        return rows.tolist()

    def partner(self, row):
        """The other row of a rectangular PMU, or ``None``."""
        meter, uid = self.meter_of(row)
        if meter is not self.measurements.pmu or meter.polar[uid]:
            return None
        start = self.range[4]
        return row + 1 if (row - start) % 2 == 0 else row - 1

    def evaluate(self, voltage):
        """
        Recompute Jacobian values and residuals at ``voltage``.

        Rows tagged ``Row.OFF`` keep zero values and residuals.
        """
        V, T = voltage.magnitude, voltage.angle
        adm = self.adm

        for r in range(self.m):
            tag = self.type[r]
            if tag == Row.OFF:
                continue
            value, derivative = FUNCTIONS[Row(int(tag))]
            k = self.index[r]
            self.jac[self.ptr[r]:self.ptr[r + 1]] = derivative(adm, V, T, k)
            self.residual[r] = self.mean[r] - value(adm, V, T, k)

    def objective(self):
        """Weighted sum of squared residuals ``r^T W r``."""
        return float(self.residual @ (self.precision() @ self.residual))

    def disable(self, row):
        """
        Take ``row`` out of service: zero its Jacobian entries, mean, residual
        and precision entries, and tag it ``Row.OFF``.
        """
        self.type[row] = Row.OFF
        self.mean[row] = 0.0
        self.residual[row] = 0.0
        self.jac[self.ptr[row]:self.ptr[row + 1]] = 0.0
        self._pval[(self._prow == row) | (self._pcol == row)] = 0.0

    def gain_pattern(self):
        """
        Structural nonzero positions of the gain matrix.

        Computed from the full arena with the slack column removed, plus the
        slack diagonal, so it does not depend on values or statuses.

        Returns
        -------
        tuple of numpy.ndarray
            ``(row, col)`` positions.
        """
        if self._gain_pattern is None:
            keep = self.col != self.slack
            Js = sp.csc_matrix((np.ones(int(np.sum(keep))), (self.row[keep], self.col[keep])),
                               shape=(self.m, 2 * self.n))
            Ps = sp.csc_matrix((np.ones(len(self._prow)), (self._prow, self._pcol)),
                               shape=(self.m, self.m))
            G = (Js.T @ Ps @ Js).tocoo()

            row = np.concatenate([G.row, [self.slack]])
            col = np.concatenate([G.col, [self.slack]])
            self._gain_pattern = (row, col)

        return self._gain_pattern


def build_model(network, measurements):
    """
    Compile a network and a measurement set into a ``MeasurementModel``.

    Device classes are laid out in the order voltmeter, ammeter, wattmeter,
    varmeter, PMU; devices keep their insertion order within a class. A PMU
    adds two rows. Out-of-service devices keep their rows with a zero mean
    and tag ``Row.OFF``.

    Parameters
    ----------
    network : pstate.network.Network
        The nodal admittance matrix is built on demand.
    measurements : pstate.se.measurement.Measurements

    Returns
    -------
    MeasurementModel

    Raises
    ------
    MissingSlackBus
        If the network has no slack bus.
    """
    if network.slack is None:
        raise MissingSlackBus()

    model = MeasurementModel(network, measurements)
    adm = model.adm

    rows, cols, ptr = [], [], [0]
    mean, variance, tags, index, device = [], [], [], [], []
    prow, pcol, pval = [], [], []
    block = []

    def emit(tag, k, status, value, uid):
        r = len(mean)
        cs = columns(adm, tag, k)
        rows.extend([r] * len(cs))
        cols.extend(cs)
        ptr.append(len(cols))
        tags.append(int(tag) if status else int(Row.OFF))
        index.append(k)
        device.append(uid)
        mean.append(value if status else 0.0)
        return r

    def diagonal(r, var):
        variance.append(var)
        prow.append(r)
        pcol.append(r)
        pval.append(1.0 / var)

    volt = measurements.voltmeter
    block.append(len(mean))
    for uid in range(volt.n):
        r = emit(Row.V, volt.index[uid], volt.status[uid], volt.mean[uid], uid)
        diagonal(r, volt.variance[uid])

    amp = measurements.ammeter
    block.append(len(mean))
    for uid in range(amp.n):
        tag = Row.IIJ if amp.location[uid] == 'from' else Row.IJI
        r = emit(tag, amp.index[uid], amp.status[uid], amp.mean[uid], uid)
        diagonal(r, amp.variance[uid])

    for meter, bus_tag, from_tag, to_tag in ((measurements.wattmeter, Row.PI, Row.PIJ, Row.PJI),
                                             (measurements.varmeter, Row.QI, Row.QIJ, Row.QJI)):
        block.append(len(mean))
        for uid in range(meter.n):
            tag = {'bus': bus_tag, 'from': from_tag, 'to': to_tag}[meter.location[uid]]
            r = emit(tag, meter.index[uid], meter.status[uid], meter.mean[uid], uid)
            diagonal(r, meter.variance[uid])

    pmu = measurements.pmu
    block.append(len(mean))
    for uid in range(pmu.n):
        k = pmu.index[uid]
        location = pmu.location[uid]
        mag, ang = pmu.magnitude_mean[uid], pmu.angle_mean[uid]
        var_mag, var_ang = pmu.magnitude_variance[uid], pmu.angle_variance[uid]

        if pmu.polar[uid]:
            if location == 'bus':
                tags_pair = (Row.PMU_V, Row.PMU_T)
            elif location == 'from':
                tags_pair = (Row.IIJ, Row.PSI_IJ)
            else:
                tags_pair = (Row.IJI, Row.PSI_JI)

            r = emit(tags_pair[0], k, pmu.magnitude_status[uid], mag, uid)
            diagonal(r, var_mag)
            r = emit(tags_pair[1], k, pmu.angle_status[uid], ang, uid)
            diagonal(r, var_ang)
            continue

        if location == 'bus':
            tags_pair = (Row.RE_V, Row.IM_V)
        elif location == 'from':
            tags_pair = (Row.RE_IIJ, Row.IM_IIJ)
        else:
            tags_pair = (Row.RE_IJI, Row.IM_IJI)

        status = pmu.magnitude_status[uid] * pmu.angle_status[uid]
        var_re, var_im, cov = pmu_variance(mag, ang, var_mag, var_ang)
        r = emit(tags_pair[0], k, status, mag * np.cos(ang), uid)
        emit(tags_pair[1], k, status, mag * np.sin(ang), uid)

        if pmu.correlated[uid]:
            model.correlated = True
            det = var_re * var_im - cov ** 2
            variance.extend([var_re, var_im])
            prow.extend([r, r, r + 1, r + 1])
            pcol.extend([r, r + 1, r, r + 1])
            pval.extend([var_im / det, -cov / det, -cov / det, var_re / det])
        else:
            diagonal(r, var_re)
            diagonal(r + 1, var_im)

    block.append(len(mean))

    model.row = np.array(rows, dtype=int)
    model.col = np.array(cols, dtype=int)
    model.ptr = np.array(ptr, dtype=int)
    model.jac = np.zeros(len(rows))

    model.mean = np.array(mean, dtype=float)
    model.residual = np.zeros(len(mean))
    model.variance = np.array(variance, dtype=float)
    model.type = np.array(tags, dtype=np.int8)
    model.index = np.array(index, dtype=int)
    model.device = np.array(device, dtype=int)
    model.range = np.array(block, dtype=int)

    model._prow = np.array(prow, dtype=int)
    model._pcol = np.array(pcol, dtype=int)
    model._pval = np.array(pval, dtype=float)

    logger.debug('Measurement model: %d rows, %d Jacobian entries, %d states.',
                 model.m, len(rows), 2 * model.n)
    return model
