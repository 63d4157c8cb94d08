from pstate.linsolvers.solverbase import Solver  # NOQA
from pstate.linsolvers.sparseinv import sparse_inverse  # NOQA
