"""
Tests for the sparse partial inverse.
"""

import unittest

import numpy as np
import scipy.sparse as sp

from pstate.errors import SingularGainMatrix
from pstate.linsolvers.sparseinv import etree, sparse_inverse, symbfact
from pstate.se.measurement import Measurements
from pstate.se.model import build_model
from pstate.utils.cases import ieee14


def tridiagonal(n):
    return sp.diags([np.full(n - 1, -1.0), np.full(n, 4.0), np.full(n - 1, -1.0)],
                    [-1, 0, 1], format='csc')


class TestSymbolic(unittest.TestCase):

    def test_etree_tridiagonal(self):
        parent = etree(tridiagonal(5))
        np.testing.assert_array_equal(parent, [1, 2, 3, 4, -1])

    def test_etree_arrow(self):
        # dense last row and column: every node hangs off the last one
        A = sp.lil_matrix(np.eye(5) * 5)
        A[4, :] = 1.0
        A[:, 4] = 1.0
        A[4, 4] = 5.0
        parent = etree(sp.csc_matrix(A))
        np.testing.assert_array_equal(parent, [4, 4, 4, 4, -1])

    def test_symbfact_fill(self):
        # arrow pointing to the first node fills the whole factor
        A = sp.lil_matrix(np.eye(4) * 5)
        A[0, :] = 1.0
        A[:, 0] = 1.0
        A[0, 0] = 5.0
        A = sp.csc_matrix(A)

        R = symbfact(A, etree(A))
        np.testing.assert_array_equal(R.toarray() != 0, np.triu(np.ones((4, 4))) != 0)

    def test_symbfact_no_fill(self):
        A = tridiagonal(6)
        R = symbfact(A, etree(A))
        self.assertEqual(R.nnz, 11)
        np.testing.assert_array_equal(R.toarray() != 0,
                                      (np.triu(np.ones((6, 6))) - np.triu(np.ones((6, 6)), 2)) != 0)


class TestSparseInverse(unittest.TestCase):

    def check(self, A, pattern=None):
        Z = sparse_inverse(A, pattern)
        dense = np.linalg.inv(A.toarray())

        Zc = sp.coo_matrix(Z)
        np.testing.assert_allclose(Zc.data, dense[Zc.row, Zc.col], rtol=1e-9, atol=1e-12)

        # every nonzero position of A is computed
        stored = set(zip(Zc.row.tolist(), Zc.col.tolist()))
        Ac = sp.coo_matrix(A)
        self.assertTrue(set(zip(Ac.row.tolist(), Ac.col.tolist())) <= stored)
        return Z

    def test_tridiagonal(self):
        self.check(tridiagonal(7))

    def test_unsymmetric_values(self):
        rng = np.random.default_rng(5)
        n = 12
        S = sp.random(n, n, density=0.2, random_state=5)
        S = sp.csc_matrix((S + S.T) != 0, dtype=float)
        A = S.multiply(rng.uniform(-1, 1, size=(n, n))) + sp.eye(n) * (n + 2)
        self.check(sp.csc_matrix(A))

    def test_gain_matrix(self):
        net, true = ieee14()
        m = Measurements(net)
        for label in net.bus.label:
            m.add_voltmeter(label, voltage=true)
            m.add_wattmeter(bus=label, voltage=true)
            m.add_varmeter(bus=label, voltage=true)
        model = build_model(net, m)
        model.evaluate(true)

        H = model.jacobian().tolil()
        H[:, model.slack] = 0.0
        H = sp.csc_matrix(H)
        G = sp.csc_matrix(H.T @ model.precision() @ H)
        G = G + sp.csc_matrix(([1.0], ([model.slack], [model.slack])), shape=G.shape)

        row, col = model.gain_pattern()
        pattern = sp.csc_matrix((np.ones(len(row)), (row, col)), shape=G.shape)
        Z = self.check(sp.csc_matrix(G), pattern)

        np.testing.assert_allclose(Z.diagonal(), np.diag(np.linalg.inv(G.toarray())), rtol=1e-9)

    def test_singular(self):
        A = sp.csc_matrix(np.array([[2.0, 1.0, 0.0],
                                    [1.0, 2.0, 0.0],
                                    [0.0, 0.0, 0.0]]))
        with self.assertRaises(SingularGainMatrix):
            sparse_inverse(A, sp.eye(3))


if __name__ == '__main__':
    unittest.main()
