"""
SuiteSparse factorizations of the gain matrix through ``kvxopt``.

The gain matrix of a Gauss-Newton session keeps one nonzero pattern for the
life of the session, so the symbolic analysis is done once and only the
numeric factorization is repeated per iteration.
"""

import logging

import numpy as np
from kvxopt import matrix, umfpack, klu, cholmod

from pstate.errors import SingularGainMatrix

logger = logging.getLogger(__name__)


def _column(b):
    b = np.ravel(b)
    return matrix(b.tolist(), (len(b), 1), 'd')


class SuiteSparseSolver:
    """
    Gain matrix solver with a cached symbolic factorization.

    Subclasses supply ``_symbolic``, ``_numeric`` and ``_solve`` for one
    SuiteSparse package.

    Attributes
    ----------
    F
        Symbolic factorization, or ``None`` until the first solve.
    N
        Numeric factorization of the last solve.
    factorize : bool
        ``True`` when the next solve must redo the symbolic analysis.
    """

    def __init__(self):
        self.A = None
        self.b = None
        self.F = None
        self.N = None
        self.factorize = True

    def clear(self):
        """
        Drop the cached factorizations, e.g. after a measurement has been
        taken out of service.
        """
        self.A = None
        self.b = None
        self.F = None
        self.N = None
        self.factorize = True

    def _symbolic(self, A):
        raise NotImplementedError

    def _numeric(self, A, F):
        raise NotImplementedError

    def _solve(self, A, F, N, b):
        """Solve in place: the solution overwrites ``b``."""
        raise NotImplementedError

    def solve(self, A, b):
        """
        Solve ``A x = b`` with the cached symbolic factorization.

        The symbolic factorization is computed on the first call after
        ``clear()``. Later calls only refactorize numerically, which requires
        ``A`` to keep its nonzero pattern; a mismatch triggers a new
        symbolic factorization.

        Parameters
        ----------
        A : kvxopt.spmatrix
            Gain matrix with a fixed structural pattern.
        b : numpy.ndarray
            Right-hand side.

        Returns
        -------
        numpy.ndarray
            The solution in a 1-D ndarray

        Raises
        ------
        SingularGainMatrix
            If the numeric factorization fails.
        """
        self.A = A
        self.b = _column(b)

        if self.factorize is True:
            self.F = self._symbolic(self.A)
            self.factorize = False
            logger.debug('%s: new symbolic factorization.', self.__class__.__name__)

        try:
            try:
                self.N = self._numeric(self.A, self.F)
            except ValueError:
                logger.debug('Gain matrix pattern changed, redoing the symbolic factorization.')
                self.F = self._symbolic(self.A)
                self.N = self._numeric(self.A, self.F)

            self._solve(self.A, self.F, self.N, self.b)
        except ArithmeticError:
            self._singular()

        return np.ravel(np.array(self.b))

    def _singular(self):
        logger.error('Gain matrix is singular.')

        # zero diagonals point at unobserved state variables
        zero_diag = [i for i in range(self.A.size[0]) if self.A[i, i] == 0.0]
        if zero_diag:
            logger.error('Zero diagonal elements at states: {}'.format(zero_diag))
        raise SingularGainMatrix('Gain matrix is singular. The measurement set may be unobservable.')

    def linsolve(self, A, b):
        """
        Solve ``A x = b`` with fresh symbolic and numeric factorizations.

        Nothing is cached, so this is slower than ``solve`` inside an
        iteration loop.
        """
        F = self._symbolic(A)
        x = _column(b)
        try:
            N = self._numeric(A, F)
            self._solve(A, F, N, x)
        except ArithmeticError:
            self.A = A
            self._singular()
        return np.ravel(np.array(x))


class UMFPACKSolver(SuiteSparseSolver):
    """
    LU factorization by ``kvxopt.umfpack``.
    """

    def _symbolic(self, A):
        return umfpack.symbolic(A)

    def _numeric(self, A, F):
        return umfpack.numeric(A, F)

    def _solve(self, A, F, N, b):
        umfpack.solve(A, N, b)


class KLUSolver(SuiteSparseSolver):
    """
    LU factorization by ``kvxopt.klu``.
    """

    def _symbolic(self, A):
        return klu.symbolic(A)

    def _numeric(self, A, F):
        return klu.numeric(A, F)

    def _solve(self, A, F, N, b):
        klu.solve(A, F, N, b)


class CHOLMODSolver(SuiteSparseSolver):
    """
    CHOLMOD solver computing a simplicial ``LDL^T`` factorization.

    Only the lower triangle of ``A`` is referenced; ``A`` must be symmetric
    positive definite.
    """

    def _symbolic(self, A):
        # kvxopt keeps CHOLMOD options module-wide
        saved = cholmod.options.get('supernodal')
        cholmod.options['supernodal'] = 0
        try:
            return cholmod.symbolic(A)
        finally:
            if saved is None:
                del cholmod.options['supernodal']
            else:
                cholmod.options['supernodal'] = saved

    def _numeric(self, A, F):
        cholmod.numeric(A, F)
        return F

    def _solve(self, A, F, N, b):
        cholmod.solve(N, b)
