from pstate.linsolvers.scipy import SpSolve, QRSolver
from pstate.linsolvers.suitesparse import UMFPACKSolver, KLUSolver, CHOLMODSolver


class Solver:
    """
    Sparse matrix solver class.

    This class wraps UMFPACK, KLU, CHOLMOD, SciPy SuperLU and sparse QR solvers
    to provide an unified interface for solving linear equations ``Ax = b``.

    Provides methods ``solve``, ``linsolve`` and ``clear``.
    """

    def __init__(self, sparselib='klu'):

        # solvers
        self.umfpack = UMFPACKSolver()
        self.klu = KLUSolver()
        self.cholmod = CHOLMODSolver()
        self.spsolve = SpSolve()
        self.qr = QRSolver()

        # KLU as failsafe
        if sparselib not in self.__dict__:
            self.sparselib = 'klu'
        else:
            self.sparselib = sparselib

        self.worker = self.__dict__[self.sparselib]

    def solve(self, A, b):
        """
        Solve linear equations and cache factorizations if possible.

        Parameters
        ----------
        A : kvxopt.spmatrix
            Sparse N-by-N matrix. The QR solver also accepts M-by-N with M > N.
        b : numpy.ndarray
            Dense array of size M

        Returns
        -------
        numpy.ndarray
            Dense 1-D array of size N
        """
        return self.worker.solve(A, b)

    def linsolve(self, A, b):
        """
        Solve linear equations without caching facorization. Performs full factorization each call.

        Parameters
        ----------
        A : kvxopt.spmatrix
            Sparse N-by-N matrix
        b : numpy.ndarray
            Dense array of size N

        Returns
        -------
        numpy.ndarray
            Dense 1-D array of size N
        """
        return self.worker.linsolve(A, b)

    def clear(self):
        """
        Remove all cached objects.
        """
        self.worker.clear()
