"""
Measurement containers for state estimation.
"""

import logging
from collections import OrderedDict

import numpy as np

from pstate.errors import UnknownLabel
from pstate.se.functions import (Admittance, iij_value, iji_value, pi_value, pij_value,
                                 pji_value, psi_ij_value, psi_ji_value, qi_value,
                                 qij_value, qji_value)

logger = logging.getLogger(__name__)


def gaussian_noise(sigma, size, rng):
    """Default Gaussian noise: e ~ N(0, sigma^2)."""
    return rng.normal(0, sigma, size)


class Meter:
    """
    Parallel-list storage shared by all device classes.

    Each device has a unique label, an anchor ``index`` (bus or branch
    position) and a ``location`` of ``'bus'``, ``'from'`` or ``'to'``.
    """

    def __init__(self, name):
        self.name = name
        self.labels = OrderedDict()   # label -> uid
        self.index = []
        self.location = []

    @property
    def n(self):
        return len(self.index)

    @property
    def label(self):
        return list(self.labels.keys())

    def uid(self, label):
        """Return the 0-based position of the device with ``label``."""
        try:
            return self.labels[label]
        except KeyError:
            raise UnknownLabel(label, self.name)

    def _add_label(self, label):
        if label is None:
            label = f'{self.name} {self.n + 1}'
        label = str(label)
        if label in self.labels:
            raise ValueError(f"{self.name} label <{label}> already exists.")
        self.labels[label] = self.n
        return label

    def set_status(self, uid, status):
        raise NotImplementedError

    def in_service(self):
        raise NotImplementedError


class ScalarMeter(Meter):
    """
    Device producing one scalar measurement with mean, variance and status.
    """

    def __init__(self, name):
        super().__init__(name)
        self.mean = []
        self.variance = []
        self.status = []

    def append(self, label, index, location, mean, variance, status):
        self._add_label(label)
        self.index.append(int(index))
        self.location.append(location)
        self.mean.append(float(mean))
        self.variance.append(float(variance))
        self.status.append(int(status))

    def set_status(self, uid, status):
        self.status[uid] = int(status)

    def in_service(self):
        return np.array(self.status, dtype=int) == 1


class Voltmeter(ScalarMeter):
    """Bus voltage magnitude meters."""

    def __init__(self):
        super().__init__('Voltmeter')


class Ammeter(ScalarMeter):
    """Branch current magnitude meters at the from or to end."""

    def __init__(self):
        super().__init__('Ammeter')


class Wattmeter(ScalarMeter):
    """Active power meters for bus injections or branch flows."""

    def __init__(self):
        super().__init__('Wattmeter')


class Varmeter(ScalarMeter):
    """Reactive power meters for bus injections or branch flows."""

    def __init__(self):
        super().__init__('Varmeter')


class PMU(Meter):
    """
    Phasor measurement units for bus voltages or branch currents.

    A PMU yields two rows. In polar mode they are the magnitude and the
    angle. Otherwise they are the real and imaginary parts, whose errors may
    be declared ``correlated``.
    """

    def __init__(self):
        super().__init__('PMU')
        self.magnitude_mean = []
        self.magnitude_variance = []
        self.magnitude_status = []
        self.angle_mean = []
        self.angle_variance = []
        self.angle_status = []
        self.polar = []
        self.correlated = []

    def append(self, label, index, location, magnitude, angle, variance_magnitude,
               variance_angle, status, polar, correlated):
        self._add_label(label)
        self.index.append(int(index))
        self.location.append(location)
        self.magnitude_mean.append(float(magnitude))
        self.angle_mean.append(float(angle))
        self.magnitude_variance.append(float(variance_magnitude))
        self.angle_variance.append(float(variance_angle))
        self.magnitude_status.append(int(status))
        self.angle_status.append(int(status))
        self.polar.append(bool(polar))
        self.correlated.append(bool(correlated))

    def set_status(self, uid, status):
        self.magnitude_status[uid] = int(status)
        self.angle_status[uid] = int(status)

    def in_service(self):
        return ((np.array(self.magnitude_status, dtype=int) == 1) &
                (np.array(self.angle_status, dtype=int) == 1))


class Measurements:
    """
    Measurement set of a network: voltmeters, ammeters, wattmeters, varmeters
    and PMUs.

    Devices are added with the ``add_*`` methods, which take either a
    measured value or a ``Voltage`` state from which the exact value is
    computed. With ``noise=True``, Gaussian noise with the declared variance
    is added using the generator seeded by ``seed``.

    Parameters
    ----------
    network : pstate.network.Network
        Network whose bus and branch labels anchor the devices.
    seed : int or None
        Seed of the random generator used for noise and ``status()``.
    """

    def __init__(self, network, seed=None):
        self.network = network
        self.voltmeter = Voltmeter()
        self.ammeter = Ammeter()
        self.wattmeter = Wattmeter()
        self.varmeter = Varmeter()
        self.pmu = PMU()

        self.rng = np.random.default_rng(seed)

        self._adm = None
        self._adm_revision = -1

    @property
    def meters(self):
        """Device classes in model-building order."""
        return [self.voltmeter, self.ammeter, self.wattmeter, self.varmeter, self.pmu]

    @property
    def nm(self):
        """Number of scalar measurements, two per PMU."""
        return (self.voltmeter.n + self.ammeter.n + self.wattmeter.n +
                self.varmeter.n + 2 * self.pmu.n)

    @property
    def n_devices(self):
        return sum(meter.n for meter in self.meters)

    # ------------------------------------------------------------------
    #  Validation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_variance(variance, name='variance'):
        """Raise ValueError if the variance is non-positive."""
        if not variance > 0:
            raise ValueError(f"{name} must be positive.")

    @staticmethod
    def _check_end(end):
        if end not in ('from', 'to'):
            raise ValueError(f"end must be 'from' or 'to', not {end!r}.")

    def _anchor(self, bus, branch, end):
        """Resolve a bus or branch label into ``(index, location)``."""
        if (bus is None) == (branch is None):
            raise ValueError("Exactly one of bus and branch must be given.")
        if bus is not None:
            return self.network.bus.uid(bus), 'bus'
        self._check_end(end)
        return self.network.branch.uid(branch), end

    def _admittance(self):
        if self._adm is None or self._adm_revision != self.network.revision:
            self._adm = Admittance(self.network)
            self._adm_revision = self.network.revision
        return self._adm

    def _noisy(self, value, variance, noise):
        if noise:
            value = value + float(gaussian_noise(np.sqrt(variance), 1, self.rng)[0])
        return value

    # ------------------------------------------------------------------
    #  Exact values from a voltage state
    # ------------------------------------------------------------------

    def _exact(self, kind, index, location, voltage):
        adm = self._admittance()
        V, T = voltage.magnitude, voltage.angle

        if kind == 'v':
            return V[index]
        if kind == 'i':
            return (iij_value if location == 'from' else iji_value)(adm, V, T, index)
        if kind == 'p':
            if location == 'bus':
                return pi_value(adm, V, T, index)
            return (pij_value if location == 'from' else pji_value)(adm, V, T, index)
        if kind == 'q':
            if location == 'bus':
                return qi_value(adm, V, T, index)
            return (qij_value if location == 'from' else qji_value)(adm, V, T, index)
        if kind == 'phasor':
            if location == 'bus':
                return V[index], T[index]
            if location == 'from':
                return iij_value(adm, V, T, index), psi_ij_value(adm, V, T, index)
            return iji_value(adm, V, T, index), psi_ji_value(adm, V, T, index)

        raise ValueError(f"Unknown measurement kind {kind!r}.")

    def _scalar(self, meter, kind, index, location, mean, variance, status, label,
                voltage, noise):
        self._check_variance(variance)
        if mean is None:
            if voltage is None:
                raise ValueError("Either mean or voltage must be given.")
            mean = self._exact(kind, index, location, voltage)
        mean = self._noisy(mean, variance, noise)

        meter.append(label, index, location, mean, variance, status)
        return meter.label[-1]

    # ------------------------------------------------------------------
    #  Device wrappers
    # ------------------------------------------------------------------

    def add_voltmeter(self, bus, mean=None, variance=1e-4, status=1, label=None,
                      voltage=None, noise=False):
        """
        Add a bus voltage magnitude meter and return its label.

        Parameters
        ----------
        bus : str
            Bus label.
        mean : float or None
            Measured value in pu. Computed from ``voltage`` when ``None``.
        variance : float
            Measurement variance. Must be positive.
        status : int
            1 for in service, 0 for out of service.
        label : str or None
            Device label. ``'Voltmeter <n>'`` when ``None``.
        voltage : pstate.network.Voltage or None
            State used to compute ``mean``.
        noise : bool
            Add Gaussian noise with ``variance`` to the mean.
        """
        index = self.network.bus.uid(bus)
        return self._scalar(self.voltmeter, 'v', index, 'bus', mean, variance, status,
                            label, voltage, noise)

    def add_ammeter(self, branch, end='from', mean=None, variance=1e-4, status=1,
                    label=None, voltage=None, noise=False):
        """Add a branch current magnitude meter at the ``'from'`` or ``'to'`` end."""
        index, location = self._anchor(None, branch, end)
        return self._scalar(self.ammeter, 'i', index, location, mean, variance, status,
                            label, voltage, noise)

    def add_wattmeter(self, bus=None, branch=None, end='from', mean=None, variance=1e-4,
                      status=1, label=None, voltage=None, noise=False):
        """Add an active power meter for a bus injection or a branch flow."""
        index, location = self._anchor(bus, branch, end)
        return self._scalar(self.wattmeter, 'p', index, location, mean, variance, status,
                            label, voltage, noise)

    def add_varmeter(self, bus=None, branch=None, end='from', mean=None, variance=1e-4,
                     status=1, label=None, voltage=None, noise=False):
        """Add a reactive power meter for a bus injection or a branch flow."""
        index, location = self._anchor(bus, branch, end)
        return self._scalar(self.varmeter, 'q', index, location, mean, variance, status,
                            label, voltage, noise)

    def add_pmu(self, bus=None, branch=None, end='from', magnitude=None, angle=None,
                variance_magnitude=1e-5, variance_angle=1e-5, status=1, polar=False,
                correlated=False, label=None, voltage=None, noise=False):
        """
        Add a phasor measurement unit for a bus voltage or a branch current.

        Parameters
        ----------
        bus, branch : str or None
            Exactly one anchor label.
        end : str
            ``'from'`` or ``'to'`` for branch currents.
        magnitude, angle : float or None
            Measured phasor in pu and rad. Both are computed from ``voltage``
            when ``magnitude`` is ``None``.
        variance_magnitude, variance_angle : float
            Variances of the polar components.
        polar : bool
            Include the measurement as magnitude and angle rows instead of
            real and imaginary rows.
        correlated : bool
            Keep the covariance of the real and imaginary errors. Ignored
            when ``polar`` is set.
        """
        index, location = self._anchor(bus, branch, end)
        self._check_variance(variance_magnitude, 'variance_magnitude')
        self._check_variance(variance_angle, 'variance_angle')

        if magnitude is None:
            if voltage is None:
                raise ValueError("Either magnitude and angle or voltage must be given.")
            magnitude, angle = self._exact('phasor', index, location, voltage)
        elif angle is None:
            raise ValueError("A PMU needs both magnitude and angle.")

        magnitude = self._noisy(magnitude, variance_magnitude, noise)
        angle = self._noisy(angle, variance_angle, noise)

        self.pmu.append(label, index, location, magnitude, angle, variance_magnitude,
                        variance_angle, status, polar, correlated and not polar)
        return self.pmu.label[-1]

    # ------------------------------------------------------------------
    #  Lookup and configuration
    # ------------------------------------------------------------------

    def find(self, label):
        """
        Return ``(meter, uid)`` of the device with ``label``.

        Raises
        ------
        UnknownLabel
            If no device class holds ``label``.
        """
        for meter in self.meters:
            if label in meter.labels:
                return meter, meter.labels[label]
        raise UnknownLabel(label, 'measurement set')

    def status(self, device=None, inservice=None, outservice=None, redundancy=None):
        """
        Randomly choose which devices are in service.

        Exactly one keyword selects the mode: ``inservice`` devices in
        service, ``outservice`` devices out of service, or a ``redundancy``
        (in-service measurements per state variable ``2n - 1``), capped by the
        number of devices.

        Parameters
        ----------
        device : str or None
            ``'voltmeter'``, ``'ammeter'``, ``'wattmeter'``, ``'varmeter'`` or
            ``'pmu'``. All device classes when ``None``.
        """
        given = [item is not None for item in (inservice, outservice, redundancy)]
        if sum(given) != 1:
            raise ValueError("Use exactly one of inservice, outservice and redundancy.")

        meters = self.meters if device is None else [getattr(self, device)]
        pool = [(meter, uid) for meter in meters for uid in range(meter.n)]
        total = len(pool)

        if redundancy is not None:
            n_state = 2 * self.network.bus.n - 1
            inservice = int(round(min(redundancy, total / n_state) * n_state))
        elif outservice is not None:
            if outservice > total:
                raise ValueError(f"Only {total} devices are available.")
            inservice = total - outservice

        if inservice > total:
            raise ValueError(f"Only {total} devices are available.")

        chosen = set(self.rng.permutation(total)[:inservice].tolist())
        for pos, (meter, uid) in enumerate(pool):
            meter.set_status(uid, 1 if pos in chosen else 0)

        logger.debug('%d of %d devices set in service.', inservice, total)

    def summary(self):
        """Log device counts per class."""
        out = ['', '-> Measurements']
        for meter in self.meters:
            out.append(f'{meter.name:>16s}: {meter.n} ({int(np.sum(meter.in_service()))} in service)')
        logger.info('\n'.join(out))
