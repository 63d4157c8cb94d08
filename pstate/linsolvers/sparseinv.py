"""
Selected entries of the inverse of a sparse matrix.

The inverse is computed only at the positions of the symbolic Cholesky
pattern of ``A + A^T`` (Takahashi equations), which include every nonzero
position of ``A``. The dense inverse is never formed.
"""

import logging

import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import splu

from pstate.errors import SingularGainMatrix

logger = logging.getLogger(__name__)


def etree(A):
    """
    Elimination tree of a structurally symmetric matrix.

    Only the strictly upper triangle of ``A`` is referenced.

    Parameters
    ----------
    A : scipy.sparse matrix
        Square matrix with symmetric nonzero pattern.

    Returns
    -------
    numpy.ndarray
        ``parent[i]`` is the parent of node ``i`` or -1 for a root.
    """
    A = sp.csc_matrix(A)
    n = A.shape[1]
    Ap, Ai = A.indptr, A.indices

    parent = np.full(n, -1, dtype=int)
    ancestor = np.full(n, -1, dtype=int)

    for k in range(n):
        for p in range(Ap[k], Ap[k + 1]):
            i = Ai[p]
            # climb from i to the root of its subtree, compressing the path to k
            while i != -1 and i < k:
                inext = ancestor[i]
                ancestor[i] = k
                if inext == -1:
                    parent[i] = k
                i = inext

    return parent


def symbfact(A, parent):
    """
    Nonzero pattern of the Cholesky factor of ``A``, returned as the upper
    triangular matrix ``R = L^T`` with unit values.

    Parameters
    ----------
    A : scipy.sparse matrix
        Structurally symmetric square matrix.
    parent : numpy.ndarray
        Elimination tree from ``etree(A)``.

    Returns
    -------
    scipy.sparse.csc_matrix
        Upper triangular pattern including the diagonal.
    """
    A = sp.csc_matrix(A)
    n = A.shape[1]
    Ap, Ai = A.indptr, A.indices

    mark = np.full(n, -1, dtype=int)
    rows = []
    cols = []

    for k in range(n):
        mark[k] = k
        for p in range(Ap[k], Ap[k + 1]):
            i = Ai[p]
            if i > k:
                continue
            # row subtree of k: walk up the etree until a marked node
            while mark[i] != k:
                rows.append(i)
                cols.append(k)
                mark[i] = k
                i = parent[i]

    rows.extend(range(n))
    cols.extend(range(n))

    return sp.csc_matrix((np.ones(len(rows)), (rows, cols)), shape=(n, n))


def sparseinv(L, U, d, Z):
    """
    Compute ``inv(L D U)`` at the nonzero positions of ``Z``.

    Parameters
    ----------
    L : scipy.sparse.csc_matrix
        Strictly lower triangular part of the unit lower factor, sorted indices.
    U : scipy.sparse.csc_matrix
        Transpose of the strictly upper part of the unit upper factor
        (column ``k`` holds row ``k`` of the upper factor), sorted indices.
    d : numpy.ndarray
        Diagonal of the factorization.
    Z : scipy.sparse.csc_matrix
        Symmetric pattern with sorted indices and a full diagonal. It must
        contain the pattern of ``L + L^T`` and ``U + U^T``.

    Returns
    -------
    scipy.sparse.csc_matrix
        The inverse restricted to the pattern of ``Z``.
    """
    n = Z.shape[0]
    Zp, Zi = Z.indptr, Z.indices
    Zx = np.zeros(len(Zi))

    Lp, Li, Lx = L.indptr, L.indices, L.data
    Up, Ui, Ux = U.indptr, U.indices, U.data

    zdiag = np.empty(n, dtype=int)
    for j in range(n):
        hit = np.flatnonzero(Zi[Zp[j]:Zp[j + 1]] == j)
        if len(hit) == 0:
            raise ValueError(f"Pattern has no diagonal entry in column {j}.")
        zdiag[j] = Zp[j] + hit[0]
        Zx[zdiag[j]] = 1.0 / d[j]

    # last unconsumed entry of each column of L
    lmunch = Lp[1:] - 1
    z = np.zeros(n)

    for j in range(n - 1, -1, -1):

        # scatter the lower part of column j, computed by earlier updates
        for p in range(zdiag[j], Zp[j + 1]):
            z[Zi[p]] = Zx[p]

        # upper part of column j: z(k) = -U(k, k+1:n) z(k+1:n)
        for p in range(zdiag[j] - 1, Zp[j] - 1, -1):
            k = Zi[p]
            zkj = 0.0
            for up in range(Up[k], Up[k + 1]):
                i = Ui[up]
                if i > k and z[i] != 0:
                    zkj -= Ux[up] * z[i]
            z[k] = zkj

        # lower part of earlier columns: Z(k:n, k) -= Z(k:n, j) L(j, k)
        for p in range(zdiag[j] - 1, Zp[j] - 1, -1):
            k = Zi[p]
            lm = lmunch[k]
            if lm < Lp[k] or Li[lm] != j:
                continue
            ljk = Lx[lm]
            lmunch[k] -= 1
            for zp in range(zdiag[k], Zp[k + 1]):
                Zx[zp] -= z[Zi[zp]] * ljk

        # gather column j and clear the workspace
        for p in range(Zp[j], Zp[j + 1]):
            i = Zi[p]
            Zx[p] = z[i]
            z[i] = 0.0

    return sp.csc_matrix((Zx, Zi.copy(), Zp.copy()), shape=(n, n))


def sparse_inverse(A, pattern=None):
    """
    Entries of ``inv(A)`` needed to evaluate ``J inv(A) J^T`` on the diagonal.

    ``A`` is factorized by SuperLU with a symmetric fill-reducing ordering
    and diagonal pivoting. The inverse is then evaluated at every position of
    the Cholesky pattern of the permuted ``|A| + |A|^T``.

    Parameters
    ----------
    A : scipy.sparse matrix
        Square nonsingular matrix.
    pattern : scipy.sparse matrix, optional
        Additional structural pattern (positive values) to include, such as
        entries of ``A`` that cancelled to zero numerically.

    Returns
    -------
    scipy.sparse.csc_matrix
        Matrix equal to ``inv(A)`` on its stored positions.

    Raises
    ------
    SingularGainMatrix
        If ``A`` is exactly singular.
    """
    A = sp.csc_matrix(A)
    n = A.shape[0]

    try:
        lu = splu(A, permc_spec='MMD_AT_PLUS_A', diag_pivot_thresh=0.0,
                  options=dict(SymmetricMode=True))
    except RuntimeError as e:
        logger.error('Gain matrix is singular: %s', e)
        raise SingularGainMatrix(str(e))

    perm_r, perm_c = lu.perm_r, lu.perm_c
    p = np.argsort(perm_r)
    q = np.argsort(perm_c)

    L = sp.tril(lu.L, k=-1, format='csc')
    L.eliminate_zeros()
    L.sort_indices()

    U = sp.csc_matrix(lu.U)
    d = U.diagonal().copy()
    if np.any(d == 0):
        logger.error('Gain matrix is singular: zero pivot in the LU factorization.')
        raise SingularGainMatrix('Zero pivot in the LU factorization.')

    # rows of the unit upper factor stored as columns
    Ut = sp.csc_matrix(sp.triu(U, k=1).T)
    Ut = sp.csc_matrix(Ut @ sp.diags(1.0 / d))
    Ut.eliminate_zeros()
    Ut.sort_indices()

    S = abs(A)
    if pattern is not None:
        S = S + abs(sp.csc_matrix(pattern))
    S = sp.csc_matrix(S[p][:, q])
    S = sp.csc_matrix(S + S.T)
    S.sort_indices()

    parent = etree(S)
    R = symbfact(S, parent)
    Z = sp.csc_matrix(R + R.T)
    Z.sort_indices()

    logger.debug('Sparse inverse: n=%d, nnz(L+U)=%d, nnz(pattern)=%d.',
                 n, L.nnz + Ut.nnz + n, Z.nnz)

    Zx = sparseinv(L, Ut, d, Z)
    return sp.csc_matrix(Zx[perm_c][:, perm_r])
