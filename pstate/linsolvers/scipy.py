"""
Scipy linear solvers: SuperLU and a sparse Givens QR.
"""

import heapq
import logging
import math

import numpy as np

from kvxopt import spmatrix
from scipy.sparse import csc_matrix, csr_matrix
from scipy.sparse.csgraph import reverse_cuthill_mckee
from scipy.sparse.linalg import spsolve, splu

from pstate.errors import SingularGainMatrix

logger = logging.getLogger(__name__)


class SciPySolver:
    """
    Base class for scipy family solvers.
    """

    def solve(self, A, b):
        """
        Solve linear systems.

        Parameters
        ----------
        A : kvxopt.spmatrix
            Sparse matrix
        b : numpy.ndarray
            Dense 1-dimensional array

        Returns
        -------
        np.ndarray
            Solution x to `Ax = b`

        """
        raise NotImplementedError

    def linsolve(self, A, b):
        """
        Exactly same functionality as `solve`.
        """
        return self.solve(A, b)

    def clear(self):
        pass


class SpSolve(SciPySolver):
    """
    scipy.sparse.linalg.splu solver.

    SuperLU offers no separate symbolic step, so ``A`` is factorized on
    every call.
    """

    def __init__(self):
        self.lu = None

    def solve(self, A, b):

        A_csc = spmatrix_to_csc(A)
        try:
            self.lu = splu(A_csc)
        except RuntimeError as e:
            logger.error('Gain matrix is singular: %s', e)
            raise SingularGainMatrix(str(e))

        x = self.lu.solve(np.ravel(b))
        return x

    def linsolve(self, A, b):
        """
        Solve using `spsolve`.
        """

        A_csc = spmatrix_to_csc(A)
        b = np.ravel(b)
        return spsolve(A_csc, b)

    def clear(self):
        self.lu = None


class QRSolver(SciPySolver):
    """
    Sparse QR solver for square or tall matrices.

    Rows of ``A`` are rotated one at a time into the upper triangular factor
    ``R`` by Givens rotations, and ``b`` is rotated along, so ``Q`` is never
    formed. ``R`` is kept row by row as ``{column: value}`` dictionaries and
    never holds more than its structural nonzeros. The result is the
    least-squares solution when ``A`` has more rows than columns.

    Columns are ordered by reverse Cuthill-McKee on the pattern of ``A^T A``
    to limit fill. The ordering is computed on the first call after
    ``clear()`` and reused while the column count is unchanged.

    Attributes
    ----------
    order : numpy.ndarray or None
        Cached column ordering; ``order[k]`` is the column of ``A`` placed
        at position ``k``.
    R : list of dict
        Rows of the last triangular factor, in the permuted column order.
    """

    def __init__(self):
        self.order = None
        self.R = None

    def clear(self):
        self.order = None
        self.R = None

    @staticmethod
    def ordering(A):
        """
        Fill-reducing column ordering of ``A`` from the pattern of ``A^T A``.
        """
        S = abs(A)
        S = csr_matrix(S.T @ S)
        return np.asarray(reverse_cuthill_mckee(S, symmetric_mode=True), dtype=int)

    def solve(self, A, b):
        A_csc = spmatrix_to_csc(A)
        if self.order is None or len(self.order) != A_csc.shape[1]:
            self.order = self.ordering(A_csc)
            logger.debug('QRSolver: new column ordering.')
        return self._solve(A_csc, b, self.order)

    def linsolve(self, A, b):
        A_csc = spmatrix_to_csc(A)
        return self._solve(A_csc, b, self.ordering(A_csc))

    def _solve(self, A, b, order):
        m, n = A.shape
        if m < n:
            logger.error('QR solver received a wide %d-by-%d matrix.', m, n)
            raise SingularGainMatrix('Matrix has fewer rows than columns.')

        b = np.ravel(np.asarray(b, dtype=float))
        Ap = csr_matrix(A[:, order])
        Ap.sum_duplicates()

        R = [None] * n
        qtb = np.zeros(n)

        for i in range(m):
            lo, hi = Ap.indptr[i], Ap.indptr[i + 1]
            row = {int(j): float(v) for j, v in zip(Ap.indices[lo:hi], Ap.data[lo:hi]) if v != 0.0}
            beta = float(b[i])

            heap = list(row)
            heapq.heapify(heap)
            while heap:
                k = heapq.heappop(heap)
                w = row.pop(k)
                if w == 0.0:
                    continue

                Rk = R[k]
                if Rk is None:
                    # row becomes row k of R
                    row[k] = w
                    R[k] = row
                    qtb[k] = beta
                    break

                rho = math.hypot(Rk[k], w)
                c, s = Rk[k] / rho, w / rho
                for j, v in Rk.items():
                    if j == k:
                        continue
                    if j not in row:
                        row[j] = 0.0
                        heapq.heappush(heap, j)
                    x = row[j]
                    Rk[j] = c * v + s * x
                    row[j] = c * x - s * v
                Rk[k] = rho

                t = qtb[k]
                qtb[k] = c * t + s * beta
                beta = c * beta - s * t

        self.R = R

        diag = np.array([abs(Rk[k]) if Rk is not None else 0.0 for k, Rk in enumerate(R)])
        tol = max(m, n) * np.finfo(float).eps * (diag.max() if n else 0.0)
        if n and np.any(diag <= tol):
            logger.error('Matrix is rank deficient at columns %s.',
                         sorted(order[diag <= tol].tolist()))
            raise SingularGainMatrix('Matrix is rank deficient.')

        x = np.zeros(n)
        for k in range(n - 1, -1, -1):
            Rk = R[k]
            acc = qtb[k]
            for j, v in Rk.items():
                if j != k:
                    acc -= v * x[j]
            x[k] = acc / Rk[k]

        out = np.zeros(n)
        out[order] = x
        return out

def spmatrix_to_csc(A):
    """
    Convert A of ``kvxopt.spmatrix`` to ``scipy.sparse.csc_matrix``.

    Parameters
    ----------
    A : kvxopt.spmatrix
        Sparse matrix

    Returns
    -------
    scipy.sparse.csc_matrix
        Converted csc_matrix

    """
    ccs = A.CCS
    size = A.size
    data = np.array(ccs[2]).ravel()
    indices = np.array(ccs[1]).ravel()
    indptr = np.array(ccs[0]).ravel()
    return csc_matrix((data, indices, indptr), shape=size)


def csc_to_spmatrix(A, pattern=None):
    """
    Convert a ``scipy.sparse`` matrix to ``kvxopt.spmatrix``.

    Parameters
    ----------
    A : scipy.sparse matrix
        Real sparse matrix
    pattern : tuple of (row, col) arrays, optional
        Positions that must be stored even when their value is zero, so that
        the nonzero structure stays fixed across calls.

    Returns
    -------
    kvxopt.spmatrix
        Converted matrix with explicit zeros at ``pattern``
    """
    coo = A.tocoo()
    data = coo.data.tolist()
    row = coo.row.tolist()
    col = coo.col.tolist()

    if pattern is not None:
        prow, pcol = pattern
        data += [0.0] * len(prow)
        row += np.asarray(prow, dtype=int).tolist()
        col += np.asarray(pcol, dtype=int).tolist()

    return spmatrix(data, row, col, A.shape, 'd')
