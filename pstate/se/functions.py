"""
Measurement functions of AC state estimation and their analytic derivatives.

Every Jacobian row carries a ``Row`` tag. ``FUNCTIONS`` maps a tag to a pair
``(value, derivative)`` where

- ``value(adm, V, T, k)`` returns the measurement function at anchor ``k``;
- ``derivative(adm, V, T, k)`` returns the partial derivatives in the order
  of ``columns(adm, tag, k)``.

``V`` and ``T`` are bus voltage magnitudes and angles. Branch functions use
the unified pi model with the off-nominal tap ``tau`` and phase shift ``phi``
on the from side, where ``theta_ij = theta_i - theta_j - phi``.
"""

from enum import IntEnum

import numpy as np


class Row(IntEnum):
    """
    Measurement function families. ``OFF`` marks an out-of-service row.
    """
    OFF = 0
    V = 1          # voltmeter magnitude
    IIJ = 2        # current magnitude at the from end
    IJI = 3        # current magnitude at the to end
    PI = 4         # active injection
    PIJ = 5        # active flow at the from end
    PJI = 6        # active flow at the to end
    QI = 7         # reactive injection
    QIJ = 8
    QJI = 9
    PMU_V = 10     # phasor magnitude at a bus
    PMU_T = 11     # phasor angle at a bus
    PSI_IJ = 12    # current angle at the from end
    PSI_JI = 13
    RE_V = 14      # rectangular voltage phasor
    IM_V = 15
    RE_IIJ = 16    # rectangular current phasor at the from end
    RE_IJI = 17
    IM_IIJ = 18
    IM_IJI = 19


BUS_ROWS = {Row.V, Row.PI, Row.QI, Row.PMU_V, Row.PMU_T, Row.RE_V, Row.IM_V}


class Admittance:
    """
    Nodal admittance rows and pi-model branch coefficients of a network.

    Out-of-service branches keep their position with zero admittance.

    Parameters
    ----------
    network : pstate.network.Network
        The admittance matrix is built if it does not exist.
    """

    def __init__(self, network):
        Y = network.y
        n = network.bus.n
        self.n = n
        self.Y = Y

        diag = Y.diagonal()
        self.Gd = diag.real.copy()
        self.Bd = diag.imag.copy()

        # neighbours of each bus, always including the bus itself
        self.neighbour = []
        self.G = []
        self.B = []
        for i in range(n):
            lo, hi = Y.indptr[i], Y.indptr[i + 1]
            cols = Y.indices[lo:hi]
            vals = Y.data[lo:hi]
            if i not in cols:
                cols = np.append(cols, i)
                vals = np.append(vals, 0j)
            self.neighbour.append(np.array(cols, dtype=int))
            self.G.append(vals.real.copy())
            self.B.append(vals.imag.copy())

        br = network.branch
        u = np.array(br.u, dtype=float)
        y = u / (np.array(br.r, dtype=float) + 1j * np.array(br.x, dtype=float))

        self.fr = np.array(br.fr, dtype=int)
        self.to = np.array(br.to, dtype=int)
        self.g = y.real
        self.b = y.imag
        self.gs = u * np.array(br.g, dtype=float) / 2
        self.bs = u * np.array(br.b, dtype=float) / 2
        self.tinv = 1 / np.array(br.tap, dtype=float)
        self.phi = np.array(br.phi, dtype=float)


def columns(adm, tag, k):
    """
    State columns touched by a row of family ``tag`` anchored at ``k``.

    Angles occupy columns ``0..n-1`` and magnitudes ``n..2n-1``.
    """
    n = adm.n
    if tag in (Row.V, Row.PMU_V):
        return [k + n]
    if tag == Row.PMU_T:
        return [k]
    if tag in (Row.RE_V, Row.IM_V):
        return [k, k + n]
    if tag in (Row.PI, Row.QI):
        out = []
        for j in adm.neighbour[k]:
            out.extend((j, j + n))
        return out

    i, j = adm.fr[k], adm.to[k]
    return [i, j, i + n, j + n]


# --- bus voltage ---

def v_value(adm, V, T, k):
    return V[k]


def v_derivative(adm, V, T, k):
    return np.ones(1)


def t_value(adm, V, T, k):
    return T[k]


def re_v_value(adm, V, T, k):
    return V[k] * np.cos(T[k])


def re_v_derivative(adm, V, T, k):
    return np.array([-V[k] * np.sin(T[k]), np.cos(T[k])])


def im_v_value(adm, V, T, k):
    return V[k] * np.sin(T[k])


def im_v_derivative(adm, V, T, k):
    return np.array([V[k] * np.cos(T[k]), np.sin(T[k])])


# --- bus injection ---

def _injection(adm, V, T, i):
    j = adm.neighbour[i]
    tij = T[i] - T[j]
    return j, adm.G[i], adm.B[i], np.sin(tij), np.cos(tij)


def pi_value(adm, V, T, i):
    j, G, B, s, c = _injection(adm, V, T, i)
    return V[i] * np.sum(V[j] * (G * c + B * s))


def qi_value(adm, V, T, i):
    j, G, B, s, c = _injection(adm, V, T, i)
    return V[i] * np.sum(V[j] * (G * s - B * c))


def _interleave(dtheta, dv):
    out = np.empty(2 * len(dtheta))
    out[0::2] = dtheta
    out[1::2] = dv
    return out


def pi_derivative(adm, V, T, i):
    j, G, B, s, c = _injection(adm, V, T, i)
    P = V[i] * np.sum(V[j] * (G * c + B * s))
    Q = V[i] * np.sum(V[j] * (G * s - B * c))

    dtheta = V[i] * V[j] * (G * s - B * c)
    dv = V[i] * (G * c + B * s)

    own = j == i
    dtheta[own] = -Q - adm.Bd[i] * V[i] ** 2
    dv[own] = P / V[i] + adm.Gd[i] * V[i]
    return _interleave(dtheta, dv)


def qi_derivative(adm, V, T, i):
    j, G, B, s, c = _injection(adm, V, T, i)
    P = V[i] * np.sum(V[j] * (G * c + B * s))
    Q = V[i] * np.sum(V[j] * (G * s - B * c))

    dtheta = -V[i] * V[j] * (G * c + B * s)
    dv = V[i] * (G * s - B * c)

    own = j == i
    dtheta[own] = P - adm.Gd[i] * V[i] ** 2
    dv[own] = Q / V[i] - adm.Bd[i] * V[i]
    return _interleave(dtheta, dv)


# --- branch power flow ---

def _branch(adm, V, T, k):
    i, j = adm.fr[k], adm.to[k]
    tij = T[i] - T[j] - adm.phi[k]
    return V[i], V[j], np.sin(tij), np.cos(tij)


def pij_value(adm, V, T, k):
    Vi, Vj, s, c = _branch(adm, V, T, k)
    A = adm.tinv[k] ** 2 * (adm.g[k] + adm.gs[k])
    B = adm.tinv[k] * adm.g[k]
    C = adm.tinv[k] * adm.b[k]
    return A * Vi ** 2 - (B * c + C * s) * Vi * Vj


def pij_derivative(adm, V, T, k):
    Vi, Vj, s, c = _branch(adm, V, T, k)
    A = adm.tinv[k] ** 2 * (adm.g[k] + adm.gs[k])
    B = adm.tinv[k] * adm.g[k]
    C = adm.tinv[k] * adm.b[k]
    dti = (B * s - C * c) * Vi * Vj
    return np.array([dti, -dti,
                     2 * A * Vi - (B * c + C * s) * Vj,
                     -(B * c + C * s) * Vi])


def pji_value(adm, V, T, k):
    Vi, Vj, s, c = _branch(adm, V, T, k)
    A = adm.g[k] + adm.gs[k]
    B = adm.tinv[k] * adm.g[k]
    C = adm.tinv[k] * adm.b[k]
    return A * Vj ** 2 - (B * c - C * s) * Vi * Vj


def pji_derivative(adm, V, T, k):
    Vi, Vj, s, c = _branch(adm, V, T, k)
    A = adm.g[k] + adm.gs[k]
    B = adm.tinv[k] * adm.g[k]
    C = adm.tinv[k] * adm.b[k]
    dti = (B * s + C * c) * Vi * Vj
    return np.array([dti, -dti,
                     -(B * c - C * s) * Vj,
                     2 * A * Vj - (B * c - C * s) * Vi])


def qij_value(adm, V, T, k):
    Vi, Vj, s, c = _branch(adm, V, T, k)
    A = adm.tinv[k] ** 2 * (adm.b[k] + adm.bs[k])
    B = adm.tinv[k] * adm.g[k]
    C = adm.tinv[k] * adm.b[k]
    return -A * Vi ** 2 - (B * s - C * c) * Vi * Vj


def qij_derivative(adm, V, T, k):
    Vi, Vj, s, c = _branch(adm, V, T, k)
    A = adm.tinv[k] ** 2 * (adm.b[k] + adm.bs[k])
    B = adm.tinv[k] * adm.g[k]
    C = adm.tinv[k] * adm.b[k]
    dti = -(B * c + C * s) * Vi * Vj
    return np.array([dti, -dti,
                     -2 * A * Vi - (B * s - C * c) * Vj,
                     -(B * s - C * c) * Vi])


def qji_value(adm, V, T, k):
    Vi, Vj, s, c = _branch(adm, V, T, k)
    A = adm.b[k] + adm.bs[k]
    B = adm.tinv[k] * adm.g[k]
    C = adm.tinv[k] * adm.b[k]
    return -A * Vj ** 2 + (B * s + C * c) * Vi * Vj


def qji_derivative(adm, V, T, k):
    Vi, Vj, s, c = _branch(adm, V, T, k)
    A = adm.b[k] + adm.bs[k]
    B = adm.tinv[k] * adm.g[k]
    C = adm.tinv[k] * adm.b[k]
    dti = (B * c - C * s) * Vi * Vj
    return np.array([dti, -dti,
                     (B * s + C * c) * Vj,
                     -2 * A * Vj + (B * s + C * c) * Vi])


# --- branch current magnitude ---

def _iij_coefficients(adm, k):
    t = adm.tinv[k]
    g, b, gs, bs = adm.g[k], adm.b[k], adm.gs[k], adm.bs[k]
    A = t ** 4 * ((g + gs) ** 2 + (b + bs) ** 2)
    B = t ** 2 * (g ** 2 + b ** 2)
    C = t ** 3 * (g * (g + gs) + b * (b + bs))
    D = t ** 3 * (g * bs - b * gs)
    return A, B, C, D


def _iji_coefficients(adm, k):
    t = adm.tinv[k]
    g, b, gs, bs = adm.g[k], adm.b[k], adm.gs[k], adm.bs[k]
    A = t ** 2 * (g ** 2 + b ** 2)
    B = (g + gs) ** 2 + (b + bs) ** 2
    C = t * (g * (g + gs) + b * (b + bs))
    D = t * (g * bs - gs * b)
    return A, B, C, D


def iij_value(adm, V, T, k):
    Vi, Vj, s, c = _branch(adm, V, T, k)
    A, B, C, D = _iij_coefficients(adm, k)
    return np.sqrt(A * Vi ** 2 + B * Vj ** 2 - 2 * Vi * Vj * (C * c - D * s))


def iij_derivative(adm, V, T, k):
    Vi, Vj, s, c = _branch(adm, V, T, k)
    A, B, C, D = _iij_coefficients(adm, k)
    Iinv = 1 / np.sqrt(A * Vi ** 2 + B * Vj ** 2 - 2 * Vi * Vj * (C * c - D * s))
    dti = Iinv * (C * s + D * c) * Vi * Vj
    return np.array([dti, -dti,
                     Iinv * (A * Vi - (C * c - D * s) * Vj),
                     Iinv * (B * Vj - (C * c - D * s) * Vi)])


def iji_value(adm, V, T, k):
    Vi, Vj, s, c = _branch(adm, V, T, k)
    A, B, C, D = _iji_coefficients(adm, k)
    return np.sqrt(A * Vi ** 2 + B * Vj ** 2 - 2 * Vi * Vj * (C * c + D * s))


def iji_derivative(adm, V, T, k):
    Vi, Vj, s, c = _branch(adm, V, T, k)
    A, B, C, D = _iji_coefficients(adm, k)
    Iinv = 1 / np.sqrt(A * Vi ** 2 + B * Vj ** 2 - 2 * Vi * Vj * (C * c + D * s))
    dti = Iinv * (C * s - D * c) * Vi * Vj
    return np.array([dti, -dti,
                     Iinv * (A * Vi - (C * c + D * s) * Vj),
                     Iinv * (B * Vj - (C * c + D * s) * Vi)])


# --- branch current phasor, rectangular ---

def _rect_ij(adm, V, T, k):
    """Coefficients and trigonometry of the from-end current phasor."""
    t = adm.tinv[k]
    i, j = adm.fr[k], adm.to[k]
    A = t ** 2 * (adm.g[k] + adm.gs[k])
    B = t ** 2 * (adm.b[k] + adm.bs[k])
    C = t * adm.g[k]
    D = t * adm.b[k]
    beta = T[j] + adm.phi[k]
    return (A, B, C, D, V[i], V[j],
            np.sin(T[i]), np.cos(T[i]), np.sin(beta), np.cos(beta))


def _rect_ji(adm, V, T, k):
    """Coefficients and trigonometry of the to-end current phasor."""
    t = adm.tinv[k]
    i, j = adm.fr[k], adm.to[k]
    A = adm.g[k] + adm.gs[k]
    B = adm.b[k] + adm.bs[k]
    C = t * adm.g[k]
    D = t * adm.b[k]
    alpha = T[i] - adm.phi[k]
    return (A, B, C, D, V[i], V[j],
            np.sin(alpha), np.cos(alpha), np.sin(T[j]), np.cos(T[j]))


def re_iij_value(adm, V, T, k):
    A, B, C, D, Vi, Vj, si, ci, sj, cj = _rect_ij(adm, V, T, k)
    return (A * ci - B * si) * Vi - (C * cj - D * sj) * Vj


def re_iij_derivative(adm, V, T, k):
    A, B, C, D, Vi, Vj, si, ci, sj, cj = _rect_ij(adm, V, T, k)
    return np.array([-(A * si + B * ci) * Vi,
                     (C * sj + D * cj) * Vj,
                     A * ci - B * si,
                     -C * cj + D * sj])


def im_iij_value(adm, V, T, k):
    A, B, C, D, Vi, Vj, si, ci, sj, cj = _rect_ij(adm, V, T, k)
    return (A * si + B * ci) * Vi - (C * sj + D * cj) * Vj


def im_iij_derivative(adm, V, T, k):
    A, B, C, D, Vi, Vj, si, ci, sj, cj = _rect_ij(adm, V, T, k)
    return np.array([(A * ci - B * si) * Vi,
                     (-C * cj + D * sj) * Vj,
                     A * si + B * ci,
                     -C * sj - D * cj])


def re_iji_value(adm, V, T, k):
    A, B, C, D, Vi, Vj, si, ci, sj, cj = _rect_ji(adm, V, T, k)
    return (A * cj - B * sj) * Vj - (C * ci - D * si) * Vi


def re_iji_derivative(adm, V, T, k):
    A, B, C, D, Vi, Vj, si, ci, sj, cj = _rect_ji(adm, V, T, k)
    return np.array([(C * si + D * ci) * Vi,
                     -(A * sj + B * cj) * Vj,
                     -C * ci + D * si,
                     A * cj - B * sj])


def im_iji_value(adm, V, T, k):
    A, B, C, D, Vi, Vj, si, ci, sj, cj = _rect_ji(adm, V, T, k)
    return (A * sj + B * cj) * Vj - (C * si + D * ci) * Vi


def im_iji_derivative(adm, V, T, k):
    A, B, C, D, Vi, Vj, si, ci, sj, cj = _rect_ji(adm, V, T, k)
    return np.array([(-C * ci + D * si) * Vi,
                     (A * cj - B * sj) * Vj,
                     -C * si - D * ci,
                     A * sj + B * cj])


# --- branch current angle ---

def psi_ij_value(adm, V, T, k):
    return np.arctan2(im_iij_value(adm, V, T, k), re_iij_value(adm, V, T, k))


def psi_ij_derivative(adm, V, T, k):
    re, im = re_iij_value(adm, V, T, k), im_iij_value(adm, V, T, k)
    return (re * im_iij_derivative(adm, V, T, k) - im * re_iij_derivative(adm, V, T, k)) / (re ** 2 + im ** 2)


def psi_ji_value(adm, V, T, k):
    return np.arctan2(im_iji_value(adm, V, T, k), re_iji_value(adm, V, T, k))


def psi_ji_derivative(adm, V, T, k):
    re, im = re_iji_value(adm, V, T, k), im_iji_value(adm, V, T, k)
    return (re * im_iji_derivative(adm, V, T, k) - im * re_iji_derivative(adm, V, T, k)) / (re ** 2 + im ** 2)


FUNCTIONS = {
    Row.V: (v_value, v_derivative),
    Row.IIJ: (iij_value, iij_derivative),
    Row.IJI: (iji_value, iji_derivative),
    Row.PI: (pi_value, pi_derivative),
    Row.PIJ: (pij_value, pij_derivative),
    Row.PJI: (pji_value, pji_derivative),
    Row.QI: (qi_value, qi_derivative),
    Row.QIJ: (qij_value, qij_derivative),
    Row.QJI: (qji_value, qji_derivative),
    Row.PMU_V: (v_value, v_derivative),
    Row.PMU_T: (t_value, v_derivative),
    Row.PSI_IJ: (psi_ij_value, psi_ij_derivative),
    Row.PSI_JI: (psi_ji_value, psi_ji_derivative),
    Row.RE_V: (re_v_value, re_v_derivative),
    Row.IM_V: (im_v_value, im_v_derivative),
    Row.RE_IIJ: (re_iij_value, re_iij_derivative),
    Row.RE_IJI: (re_iji_value, re_iji_derivative),
    Row.IM_IIJ: (im_iij_value, im_iij_derivative),
    Row.IM_IJI: (im_iji_value, im_iji_derivative),
}


def power_injection(adm, voltage):
    """
    Complex power injected at every bus, ``S = V conj(Y V)``.
    """
    Vc = voltage.phasor
    return Vc * np.conj(adm.Y @ Vc)


def branch_current(adm, voltage):
    """
    Complex currents leaving the from end and the to end of every branch.

    Returns
    -------
    tuple of numpy.ndarray
        ``(Iij, Iji)``
    """
    Vc = voltage.phasor
    y = adm.g + 1j * adm.b
    ysh = adm.gs + 1j * adm.bs
    shift = np.exp(1j * adm.phi)

    Vi, Vj = Vc[adm.fr], Vc[adm.to]
    Iij = adm.tinv ** 2 * (y + ysh) * Vi - adm.tinv * y * shift * Vj
    Iji = -adm.tinv * y * np.conj(shift) * Vi + (y + ysh) * Vj
    return Iij, Iji


def branch_power(adm, voltage):
    """
    Complex power flowing out of the from end and the to end of every branch.

    Returns
    -------
    tuple of numpy.ndarray
        ``(Sij, Sji)``
    """
    Vc = voltage.phasor
    Iij, Iji = branch_current(adm, voltage)
    return Vc[adm.fr] * np.conj(Iij), Vc[adm.to] * np.conj(Iji)
