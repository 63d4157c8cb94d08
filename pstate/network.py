"""
Network model consumed by the state estimation core.

Holds bus and branch records, their labels, the slack designation and the
nodal admittance matrix.
"""

import logging
from collections import OrderedDict

import numpy as np
from kvxopt import spmatrix

from pstate.consts import PQ, PV, SLACK
from pstate.errors import UnknownLabel
from pstate.linsolvers.scipy import spmatrix_to_csc

logger = logging.getLogger(__name__)


class Voltage:
    """
    Bus voltage magnitudes (pu) and angles (rad).
    """

    def __init__(self, magnitude, angle):
        self.magnitude = np.array(magnitude, dtype=float)
        self.angle = np.array(angle, dtype=float)

        if self.magnitude.shape != self.angle.shape:
            raise ValueError("Voltage magnitude and angle must have the same length.")

    @property
    def n(self):
        return len(self.magnitude)

    @property
    def phasor(self):
        """Complex bus voltages."""
        return self.magnitude * np.exp(1j * self.angle)

    def copy(self):
        return Voltage(self.magnitude.copy(), self.angle.copy())

    def __repr__(self):
        return f'Voltage(n={self.n})'


class Bus:
    """
    Bus records stored in parallel lists.
    """

    def __init__(self):
        self.labels = OrderedDict()   # label -> uid
        self.type = []
        self.pd = []
        self.qd = []
        self.gs = []
        self.bs = []
        self.v0 = []
        self.a0 = []

    @property
    def n(self):
        return len(self.type)

    @property
    def label(self):
        return list(self.labels.keys())

    def uid(self, label):
        """Return the 0-based position of the bus with ``label``."""
        try:
            return self.labels[label]
        except KeyError:
            raise UnknownLabel(label, 'Bus')


class Branch:
    """
    Branch records (lines and transformers) stored in parallel lists.

    Series admittance is ``1 / (r + jx)``. The total charging admittance
    ``g + jb`` is split into halves at both ends. ``tap`` and ``phi`` describe
    an off-nominal transformer on the from side.
    """

    def __init__(self):
        self.labels = OrderedDict()
        self.fr = []
        self.to = []
        self.r = []
        self.x = []
        self.g = []
        self.b = []
        self.tap = []
        self.phi = []
        self.u = []

    @property
    def n(self):
        return len(self.fr)

    @property
    def label(self):
        return list(self.labels.keys())

    def uid(self, label):
        """Return the 0-based position of the branch with ``label``."""
        try:
            return self.labels[label]
        except KeyError:
            raise UnknownLabel(label, 'Branch')


class Network:
    """
    Buses, branches and the nodal admittance matrix of a power network.

    Parameters
    ----------
    name : str
        Name used in log messages.

    Examples
    --------
    A two-bus network::

        net = Network()
        net.add_bus('Bus 1', type=SLACK)
        net.add_bus('Bus 2', pd=0.5, qd=0.1)
        net.add_branch('Line 1-2', 'Bus 1', 'Bus 2', r=0.01, x=0.1, b=0.02)
    """

    def __init__(self, name='network'):
        self.name = name
        self.bus = Bus()
        self.branch = Branch()

        self.Y = None      # nodal admittance, scipy.sparse.csr_matrix
        self.revision = 0  # bumped on every topology or slack change

    def add_bus(self, label=None, type=PQ, pd=0.0, qd=0.0, gs=0.0, bs=0.0,
                v0=1.0, a0=0.0):
        """
        Add a bus and return its 0-based index.

        Parameters
        ----------
        label : str or None
            Unique label. ``'Bus <n>'`` is used when ``None``.
        type : int
            ``PQ`` (1), ``PV`` (2) or ``SLACK`` (3).
        pd, qd : float
            Active and reactive demand in pu.
        gs, bs : float
            Shunt conductance and susceptance in pu.
        v0, a0 : float
            Voltage magnitude (pu) and angle (rad) used as initial point.
        """
        if label is None:
            label = f'Bus {self.bus.n + 1}'
        if label in self.bus.labels:
            raise ValueError(f"Bus label <{label}> already exists.")
        if type not in (PQ, PV, SLACK):
            raise ValueError(f"Invalid bus type {type}.")

        if type == SLACK:
            self._clear_slack()

        uid = self.bus.n
        self.bus.labels[label] = uid
        self.bus.type.append(type)
        self.bus.pd.append(float(pd))
        self.bus.qd.append(float(qd))
        self.bus.gs.append(float(gs))
        self.bus.bs.append(float(bs))
        self.bus.v0.append(float(v0))
        self.bus.a0.append(float(a0))

        self.Y = None
        self.revision += 1
        return uid

    def add_branch(self, label=None, fr=None, to=None, r=0.0, x=0.0, g=0.0, b=0.0,
                   tap=1.0, phi=0.0, u=1):
        """
        Add a branch between buses ``fr`` and ``to`` (labels) and return its index.

        ``tap`` of zero is taken as nominal, as in MATPOWER case files.
        """
        if label is None:
            label = f'Branch {self.branch.n + 1}'
        if label in self.branch.labels:
            raise ValueError(f"Branch label <{label}> already exists.")

        i = self.bus.uid(fr)
        j = self.bus.uid(to)
        if i == j:
            raise ValueError(f"Branch <{label}> connects bus <{fr}> to itself.")
        if r == 0 and x == 0:
            raise ValueError(f"Branch <{label}> has zero series impedance.")

        uid = self.branch.n
        self.branch.labels[label] = uid
        self.branch.fr.append(i)
        self.branch.to.append(j)
        self.branch.r.append(float(r))
        self.branch.x.append(float(x))
        self.branch.g.append(float(g))
        self.branch.b.append(float(b))
        self.branch.tap.append(float(tap) if tap else 1.0)
        self.branch.phi.append(float(phi))
        self.branch.u.append(int(u))

        self.Y = None
        self.revision += 1
        return uid

    def bus_index(self, label):
        """0-based index of bus ``label``; raises ``UnknownLabel``."""
        return self.bus.uid(label)

    def branch_index(self, label):
        """0-based index of branch ``label``; raises ``UnknownLabel``."""
        return self.branch.uid(label)

    def set_branch_status(self, label, u):
        """Switch a branch in or out of service; invalidates the admittance matrix."""
        self.branch.u[self.branch.uid(label)] = int(u)
        self.Y = None
        self.revision += 1

    @property
    def slack(self):
        """0-based index of the slack bus, or ``None``."""
        for uid, bus_type in enumerate(self.bus.type):
            if bus_type == SLACK:
                return uid
        return None

    def set_slack(self, label):
        """Make bus ``label`` the slack bus; the previous slack becomes PV."""
        uid = self.bus.uid(label)
        self._clear_slack()
        self.bus.type[uid] = SLACK
        self.revision += 1
        logger.debug('Slack bus set to <%s>.', label)

    def _clear_slack(self):
        for uid, bus_type in enumerate(self.bus.type):
            if bus_type == SLACK:
                self.bus.type[uid] = PV

    def build_y(self):
        """
        Build the nodal admittance matrix from in-service branches and bus shunts.

        The matrix is stored in ``self.Y`` as a ``scipy.sparse.csr_matrix``.
        Row ``i`` lists the neighbours of bus ``i`` in the admittance graph.

        Returns
        -------
        Y : scipy.sparse.csr_matrix
            Nodal admittance matrix.
        """
        nb = self.bus.n
        br = self.branch

        on = np.flatnonzero(np.array(br.u, dtype=int))
        fr = np.array(br.fr, dtype=int)[on].tolist()
        to = np.array(br.to, dtype=int)[on].tolist()

        r = np.array(br.r, dtype=float)[on]
        x = np.array(br.x, dtype=float)[on]
        ysh = (np.array(br.g, dtype=float)[on] + 1j * np.array(br.b, dtype=float)[on]) / 2
        y12 = 1 / (r + 1j * x)
        m = np.array(br.tap, dtype=float)[on] * np.exp(1j * np.array(br.phi, dtype=float)[on])
        m2 = np.abs(m) ** 2
        mconj = np.conj(m)

        diag = (np.array(self.bus.gs, dtype=float) + 1j * np.array(self.bus.bs, dtype=float))
        Y = spmatrix(diag.tolist(), list(range(nb)), list(range(nb)), (nb, nb), 'z')

        if len(on) > 0:
            Y += spmatrix(((y12 + ysh) / m2).tolist(), fr, fr, (nb, nb), 'z')
            Y -= spmatrix((y12 / mconj).tolist(), fr, to, (nb, nb), 'z')
            Y -= spmatrix((y12 / m).tolist(), to, fr, (nb, nb), 'z')
            Y += spmatrix((y12 + ysh).tolist(), to, to, (nb, nb), 'z')

        self.Y = spmatrix_to_csc(Y).tocsr()
        self.Y.sort_indices()

        logger.debug('Nodal admittance matrix of <%s> built: %d buses, %d in-service branches.',
                     self.name, nb, len(on))
        return self.Y

    @property
    def y(self):
        """Nodal admittance matrix, built on demand."""
        if self.Y is None:
            self.build_y()
        return self.Y

    def initial_voltage(self):
        """Return the stored bus voltages as a ``Voltage``."""
        return Voltage(self.bus.v0, self.bus.a0)

    def summary(self):
        """Log the number of buses and branches."""
        n_on = int(np.sum(self.branch.u)) if self.branch.n else 0
        out = ['',
               f'-> Network <{self.name}>',
               f'{"Buses":>16s}: {self.bus.n}',
               f'{"Branches":>16s}: {self.branch.n} ({n_on} in service)',
               f'{"Slack":>16s}: {self.bus.label[self.slack] if self.slack is not None else "none"}',
               ]
        logger.info('\n'.join(out))
