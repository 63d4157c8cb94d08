"""
Topological observability analysis and restoration.

Islands are found from the active power measurements, assuming that active
and reactive power meters come in pairs. Flow measurements connect buses into
flow islands; injection measurements on tie buses then merge the islands.
"""

import logging
from itertools import combinations

import numpy as np
import scipy.linalg
import scipy.sparse as sp

logger = logging.getLogger(__name__)


class Island:
    """
    Partition of buses into observable islands.

    Attributes
    ----------
    island : list of list of int
        Bus indices of each island.
    bus : numpy.ndarray
        Island index of each bus.
    tie_bus : set
        Buses at the ends of tie branches.
    tie_branch : set
        In-service branches whose ends lie in different islands.
    tie_injection : set
        Buses with an in-service injection measurement that have not been
        used to merge islands.
    """

    def __init__(self):
        self.island = []
        self.bus = np.zeros(0, dtype=int)
        self.tie_bus = set()
        self.tie_branch = set()
        self.tie_injection = set()

    @property
    def n(self):
        """Number of islands."""
        return len(self.island)

    def relabel(self):
        """Renumber islands by their smallest bus and rebuild the bus lists."""
        order = {}
        for i in range(len(self.bus)):
            order.setdefault(int(self.bus[i]), len(order))

        self.bus = np.array([order[int(k)] for k in self.bus], dtype=int)
        self.island = [[] for _ in range(len(order))]
        for i, k in enumerate(self.bus):
            self.island[k].append(i)

    def as_dict(self):
        return dict(islands=[list(isl) for isl in self.island],
                    bus=self.bus.tolist(),
                    ties=dict(bus=sorted(self.tie_bus),
                              branch=sorted(self.tie_branch),
                              injection=sorted(self.tie_injection)))

    def summary(self, network=None):
        out = ['', '-> Observable islands',
               f'{"Islands":>16s}: {self.n}',
               f'{"Tie branches":>16s}: {len(self.tie_branch)}',
               f'{"Tie injections":>16s}: {len(self.tie_injection)}',
               ]
        if network is not None and self.n <= 20:
            for k, isl in enumerate(self.island):
                names = ', '.join(network.bus.label[i] for i in isl)
                out.append(f'{"Island " + str(k + 1):>16s}: {names}')
        logger.info('\n'.join(out))

    def __repr__(self):
        return f'Island(n={self.n})'


def adjacency(network):
    """
    Neighbours of every bus in the nodal admittance graph, including the bus.
    """
    Y = network.y.copy()
    Y.eliminate_zeros()

    out = []
    for i in range(network.bus.n):
        cols = set(Y.indices[Y.indptr[i]:Y.indptr[i + 1]].tolist())
        cols.add(i)
        out.append(sorted(cols))
    return out


def connected_components(network, measurements):
    """
    Flow islands: connected components of the graph of in-service branches
    carrying an in-service branch wattmeter.
    """
    n = network.bus.n
    branch = network.branch
    watt = measurements.wattmeter

    edges = [[] for _ in range(n)]
    for uid in range(watt.n):
        if watt.location[uid] == 'bus' or watt.status[uid] != 1:
            continue
        k = watt.index[uid]
        if branch.u[k] != 1:
            continue
        i, j = branch.fr[k], branch.to[k]
        edges[i].append(j)
        edges[j].append(i)

    observe = Island()
    observe.bus = np.full(n, -1, dtype=int)
    comp = 0
    for start in range(n):
        if observe.bus[start] != -1:
            continue
        stack = [start]
        while stack:
            v = stack.pop()
            if observe.bus[v] != -1:
                continue
            observe.bus[v] = comp
            stack.extend(w for w in edges[v] if observe.bus[w] == -1)
        comp += 1

    observe.relabel()
    return observe


def tie_bus_branch(network, observe):
    """Recompute tie branches and tie buses of the current partition."""
    branch = network.branch
    observe.tie_bus = set()
    observe.tie_branch = set()

    for k in range(branch.n):
        if branch.u[k] != 1:
            continue
        i, j = branch.fr[k], branch.to[k]
        if observe.bus[i] != observe.bus[j]:
            observe.tie_branch.add(k)
            observe.tie_bus.update((i, j))


def tie_injection(observe, measurements):
    """Collect tie buses carrying an in-service injection wattmeter."""
    watt = measurements.wattmeter
    observe.tie_injection = set()

    for uid in range(watt.n):
        k = watt.index[uid]
        if watt.location[uid] == 'bus' and watt.status[uid] == 1 and k in observe.tie_bus:
            observe.tie_injection.add(k)


def _merge(observe, islands):
    """Merge the listed islands into the first one."""
    target = islands[0]
    for k in islands[1:]:
        observe.bus[observe.bus == k] = target


def merge_pairs(observe, neighbours):
    """
    Merge islands joined by an injection that touches exactly one other island.

    Injections touching no other island are dropped as well. The scan repeats
    until a full pass changes nothing.
    """
    merged = False
    changed = True
    while changed:
        changed = False
        for i in sorted(observe.tie_injection):
            own = observe.bus[i]
            touched = set(int(observe.bus[j]) for j in neighbours[i]) - {int(own)}

            if len(touched) > 1:
                continue
            if len(touched) == 1:
                _merge(observe, [int(own), touched.pop()])
                merged = True
                logger.debug('Injection at bus %d merges a pair of islands.', i)

            observe.tie_injection.discard(i)
            changed = True

    if merged:
        observe.relabel()


def decision_tree(incident, max_combination=None):
    """
    Smallest combination of ``t >= 2`` injections whose islands, own island
    included, number exactly ``t + 1``.

    Parameters
    ----------
    incident : list of set
        Islands touched by each unresolved injection.
    max_combination : int or None
        Largest ``t`` to try.

    Returns
    -------
    tuple or None
        Positions in ``incident`` of the first combination found.
    """
    t_max = len(incident)
    if max_combination is not None:
        t_max = min(t_max, max_combination)

    for t in range(2, t_max + 1):
        for combination in combinations(range(len(incident)), t):
            union = set().union(*(incident[k] for k in combination))
            if len(union) == t + 1:
                return combination
    return None


def merge_flow_islands(network, observe, neighbours, max_combination=None):
    """
    Merge islands jointly resolved by combinations of injections.
    """
    while True:
        buses = sorted(observe.tie_injection)
        incident = [set(int(observe.bus[j]) for j in neighbours[i]) for i in buses]

        found = decision_tree(incident, max_combination=max_combination)
        if found is None:
            break

        islands = sorted(set().union(*(incident[k] for k in found)))
        _merge(observe, islands)
        observe.relabel()
        logger.debug('Injections at buses %s merge %d islands.',
                     [buses[k] for k in found], len(islands))

        for i in buses:
            if len(set(int(observe.bus[j]) for j in neighbours[i])) == 1:
                observe.tie_injection.discard(i)

        merge_pairs(observe, neighbours)

    tie_bus_branch(network, observe)


def island_topological_flow(network, measurements):
    """
    Flow observable islands merged by injections touching a single island.

    Parameters
    ----------
    network : pstate.network.Network
    measurements : pstate.se.measurement.Measurements

    Returns
    -------
    Island
    """
    neighbours = adjacency(network)

    observe = connected_components(network, measurements)
    tie_bus_branch(network, observe)
    tie_injection(observe, measurements)

    merge_pairs(observe, neighbours)
    tie_bus_branch(network, observe)

    logger.debug('Flow observable islands: %d.', observe.n)
    return observe


def island_topological(network, measurements, max_combination=None):
    """
    Maximal observable islands.

    Extends ``island_topological_flow`` with a combinatorial search over the
    unresolved injections: the smallest combination of ``t`` injections that
    touches exactly ``t + 1`` islands merges them. The search is exponential
    in the number of unresolved injections; ``max_combination`` bounds ``t``.

    Returns
    -------
    Island
    """
    neighbours = adjacency(network)

    observe = connected_components(network, measurements)
    tie_bus_branch(network, observe)
    tie_injection(observe, measurements)

    merge_pairs(observe, neighbours)
    merge_flow_islands(network, observe, neighbours, max_combination=max_combination)

    if observe.n > 1:
        logger.warning('Network is not observable: %d islands remain.', observe.n)
    else:
        logger.debug('Network is observable.')
    return observe


class _Reduced:
    """Row-wise builder of the reduced coefficient matrix."""

    def __init__(self):
        self.row = []
        self.col = []
        self.val = []
        self.m = 0

    def tie(self, observe, neighbours, i):
        own = observe.bus[i]
        touched = [int(observe.bus[j]) for j in neighbours[i] if observe.bus[j] != own]
        for k in touched:
            self._push(k, -1.0)
        self._push(int(own), float(len(touched)))
        self.m += 1

    def direct(self, island):
        self._push(int(island), 1.0)
        self.m += 1

    def indirect(self, fr_island, to_island):
        self._push(int(fr_island), 1.0)
        self._push(int(to_island), -1.0)
        self.m += 1

    def _push(self, col, val):
        self.row.append(self.m)
        self.col.append(col)
        self.val.append(val)

    def matrix(self, n_islands):
        return sp.csr_matrix((self.val, (self.row, self.col)), shape=(self.m, n_islands))


def reduced_coefficient(network, measurements, pseudo, islands):
    """
    Reduced coefficient matrix of a partition, with islands as columns.

    The leading rows describe the measured set: one row per tie injection, a
    direct row per in-service bus PMU and a direct row for the slack island.
    They are followed by one row per usable pseudo-measurement: injection
    wattmeters on tie buses, flow wattmeters on tie branches and bus PMUs.

    Returns
    -------
    A : scipy.sparse.csr_matrix
    n_tie : int
        Number of leading rows from the measured set.
    candidates : list of tuple
        ``(meter, uid)`` of the pseudo-measurement behind each following row.
    """
    neighbours = adjacency(network)
    branch = network.branch
    reduced = _Reduced()

    for i in sorted(islands.tie_injection):
        reduced.tie(islands, neighbours, i)

    pmu = measurements.pmu
    for uid in range(pmu.n):
        if pmu.location[uid] == 'bus' and pmu.magnitude_status[uid] == 1 and pmu.angle_status[uid] == 1:
            reduced.direct(islands.bus[pmu.index[uid]])

    reduced.direct(islands.bus[network.slack])
    n_tie = reduced.m

    candidates = []
    watt = pseudo.wattmeter
    for uid in range(watt.n):
        if watt.status[uid] != 1:
            continue
        k = watt.index[uid]
        if watt.location[uid] == 'bus':
            if k in islands.tie_bus:
                reduced.tie(islands, neighbours, k)
                candidates.append((watt, uid))
        elif k in islands.tie_branch and branch.u[k] == 1:
            reduced.indirect(islands.bus[branch.fr[k]], islands.bus[branch.to[k]])
            candidates.append((watt, uid))

    pmu = pseudo.pmu
    for uid in range(pmu.n):
        if pmu.location[uid] == 'bus' and pmu.magnitude_status[uid] == 1 and pmu.angle_status[uid] == 1:
            reduced.direct(islands.bus[pmu.index[uid]])
            candidates.append((pmu, uid))

    return reduced.matrix(islands.n), n_tie, candidates


def _restore(network, measurements, pseudo, meter, uid):
    """Copy a pseudo-measurement into the measurement set; return its labels."""
    location = meter.location[uid]
    k = meter.index[uid]
    if location == 'bus':
        anchor = dict(bus=network.bus.label[k])
    else:
        anchor = dict(branch=network.branch.label[k], end=location)

    if meter is pseudo.pmu:
        label = measurements.add_pmu(magnitude=meter.magnitude_mean[uid], angle=meter.angle_mean[uid],
                                     variance_magnitude=meter.magnitude_variance[uid],
                                     variance_angle=meter.angle_variance[uid], status=1,
                                     polar=meter.polar[uid], correlated=meter.correlated[uid],
                                     label=meter.label[uid], noise=False, **anchor)
        return [label]

    labels = [measurements.add_wattmeter(mean=meter.mean[uid], variance=meter.variance[uid],
                                         status=1, label=meter.label[uid], noise=False, **anchor)]

    # the paired varmeter shares the position of the wattmeter
    var = pseudo.varmeter
    if uid < var.n and var.location[uid] == location and var.index[uid] == k:
        labels.append(measurements.add_varmeter(mean=var.mean[uid], variance=var.variance[uid],
                                                status=1, label=var.label[uid], noise=False,
                                                **anchor))
    return labels


def restoration_gram(network, measurements, pseudo, islands, threshold=1e-5):
    """
    Restore observability from a pool of pseudo-measurements.

    The reduced coefficient matrix ``A`` of ``islands`` gives the Gram matrix
    ``A A^T``. A pseudo-measurement is accepted when its diagonal entry in the
    R factor of the QR factorization of the Gram matrix exceeds ``threshold``,
    meaning it is not linearly dependent on the rows before it. Accepted
    wattmeters bring their paired varmeters along. Accepted devices are added
    to ``measurements`` in service, with their pseudo mean and variance and
    no noise.

    Parameters
    ----------
    network : pstate.network.Network
    measurements : pstate.se.measurement.Measurements
        Measurement set to extend. Labels must differ from those in ``pseudo``.
    pseudo : pstate.se.measurement.Measurements
        Pool of pseudo-measurements on the same network.
    islands : Island
        Partition from ``island_topological`` or ``island_topological_flow``.
    threshold : float
        Zero pivot threshold.

    Returns
    -------
    list of str
        Labels of the devices added to ``measurements``.
    """
    A, n_tie, candidates = reduced_coefficient(network, measurements, pseudo, islands)
    if not candidates:
        logger.warning('No pseudo-measurement can connect the islands.')
        return []

    gram = (A @ A.T).toarray()
    R = scipy.linalg.qr(gram, mode='r')[0]
    pivots = np.abs(np.diag(R))

    added = []
    for pos, (meter, uid) in enumerate(candidates):
        if pivots[n_tie + pos] > threshold:
            added.extend(_restore(network, measurements, pseudo, meter, uid))

    if added:
        logger.info('Restored observability with pseudo-measurements: %s.', ', '.join(added))
    return added
