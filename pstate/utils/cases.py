"""
Stock test networks with known voltage solutions.

Each function returns ``(network, voltage)`` where ``voltage`` is the state
used to generate exact measurements. The networks store a flat start
(1.0 pu, 0 rad) as their initial voltages.
"""

import numpy as np

from pstate.consts import PQ, PV, SLACK, deg2rad
from pstate.network import Network, Voltage


def _build(name, bus_data, branch_data, base_mva=100.0):
    net = Network(name)
    vm, va = [], []
    for num, bus_type, pd, qd, gs, bs, v, a in bus_data:
        net.add_bus(f'Bus {num}', type=bus_type, pd=pd / base_mva, qd=qd / base_mva,
                    gs=gs / base_mva, bs=bs / base_mva)
        vm.append(v)
        va.append(a * deg2rad)

    for k, (fr, to, r, x, b, tap, phi) in enumerate(branch_data):
        net.add_branch(f'Branch {k + 1}', f'Bus {fr}', f'Bus {to}', r=r, x=x, b=b,
                       tap=tap, phi=phi * deg2rad)

    return net, Voltage(np.array(vm), np.array(va))


def three_bus():
    """
    Three buses in a loop. Branch 3 is a phase-shifting transformer.
    """
    bus_data = [
        # num, type, pd, qd, gs, bs, vm, va (deg)
        (1, SLACK, 0.0, 0.0, 0.0, 0.0, 1.02, 0.0),
        (2, PQ, 50.0, 20.0, 0.0, 0.0, 0.98, -2.9),
        (3, PQ, 80.0, 30.0, 0.0, 5.0, 0.97, -4.6),
    ]
    branch_data = [
        # fr, to, r, x, b, tap, phi (deg)
        (1, 2, 0.02, 0.06, 0.03, 1.0, 0.0),
        (2, 3, 0.03, 0.09, 0.02, 1.0, 0.0),
        (1, 3, 0.01, 0.08, 0.01, 0.98, 1.5),
    ]
    return _build('three_bus', bus_data, branch_data)


def ieee14():
    """
    IEEE 14-bus test system with the bus voltages of its power flow solution.
    """
    bus_data = [
        (1, SLACK, 0.0, 0.0, 0.0, 0.0, 1.060, 0.00),
        (2, PV, 21.7, 12.7, 0.0, 0.0, 1.045, -4.98),
        (3, PV, 94.2, 19.0, 0.0, 0.0, 1.010, -12.72),
        (4, PQ, 47.8, -3.9, 0.0, 0.0, 1.019, -10.33),
        (5, PQ, 7.6, 1.6, 0.0, 0.0, 1.020, -8.78),
        (6, PV, 11.2, 7.5, 0.0, 0.0, 1.070, -14.22),
        (7, PQ, 0.0, 0.0, 0.0, 0.0, 1.062, -13.37),
        (8, PV, 0.0, 0.0, 0.0, 0.0, 1.090, -13.36),
        (9, PQ, 29.5, 16.6, 0.0, 19.0, 1.056, -14.94),
        (10, PQ, 9.0, 5.8, 0.0, 0.0, 1.051, -15.10),
        (11, PQ, 3.5, 1.8, 0.0, 0.0, 1.057, -14.79),
        (12, PQ, 6.1, 1.6, 0.0, 0.0, 1.055, -15.07),
        (13, PQ, 13.5, 5.8, 0.0, 0.0, 1.050, -15.16),
        (14, PQ, 14.9, 5.0, 0.0, 0.0, 1.036, -16.04),
    ]
    branch_data = [
        (1, 2, 0.01938, 0.05917, 0.0528, 0.0, 0.0),
        (1, 5, 0.05403, 0.22304, 0.0492, 0.0, 0.0),
        (2, 3, 0.04699, 0.19797, 0.0438, 0.0, 0.0),
        (2, 4, 0.05811, 0.17632, 0.0340, 0.0, 0.0),
        (2, 5, 0.05695, 0.17388, 0.0346, 0.0, 0.0),
        (3, 4, 0.06701, 0.17103, 0.0128, 0.0, 0.0),
        (4, 5, 0.01335, 0.04211, 0.0, 0.0, 0.0),
        (4, 7, 0.0, 0.20912, 0.0, 0.978, 0.0),
        (4, 9, 0.0, 0.55618, 0.0, 0.969, 0.0),
        (5, 6, 0.0, 0.25202, 0.0, 0.932, 0.0),
        (6, 11, 0.09498, 0.19890, 0.0, 0.0, 0.0),
        (6, 12, 0.12291, 0.25581, 0.0, 0.0, 0.0),
        (6, 13, 0.06615, 0.13027, 0.0, 0.0, 0.0),
        (7, 8, 0.0, 0.17615, 0.0, 0.0, 0.0),
        (7, 9, 0.0, 0.11001, 0.0, 0.0, 0.0),
        (9, 10, 0.03181, 0.08450, 0.0, 0.0, 0.0),
        (9, 14, 0.12711, 0.27038, 0.0, 0.0, 0.0),
        (10, 11, 0.08205, 0.19207, 0.0, 0.0, 0.0),
        (12, 13, 0.22092, 0.19988, 0.0, 0.0, 0.0),
        (13, 14, 0.17093, 0.34802, 0.0, 0.0, 0.0),
    ]
    return _build('ieee14', bus_data, branch_data)
