"""
Logger setup and the top-level ``run`` helper.
"""

import logging
import platform
from time import strftime

import coloredlogs

from pstate.utils.configmgr import load_config

logger = logging.getLogger(__name__)


def config_logger(name='pstate',
                  logfile=None,
                  stream=True,
                  stream_level=logging.INFO
                  ):
    """
    Configure a logger for the pstate package with options for a `FileHandler`
    and a colored stream handler.

    Parameters
    ----------
    name : str, optional
        Base logger name, ``'pstate'`` by default. Changing this
        parameter will affect the loggers in modules and
        cause unexpected behaviours.
    logfile : str, optional
        Log file name for `FileHandler`. If ``None``, the `FileHandler`
        will not be created.
    stream : bool, optional
        Install a colored stream handler through ``coloredlogs`` if ``True``.
    stream_level : {10, 20, 30, 40, 50}, optional
        Stream handler verbosity level.

    Returns
    -------
    None

    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    # logging formatter
    fh_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    # file handler which logs debug messages
    if logfile is not None:
        fh = logging.FileHandler(logfile)
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(fh_formatter)
        logger.addHandler(fh)

    if stream is True:
        coloredlogs.install(level=stream_level, logger=logger, fmt='%(message)s')
        # coloredlogs resets the logger level to the stream level
        logger.setLevel(logging.DEBUG)

    globals()['logger'] = logger


def preamble():
    """
    Log the version and session time at the `logging.INFO` level.
    """
    from pstate import __version__ as version
    logger.info('pstate {ver} (Python {p} on {os})'
                .format(ver=version, p=platform.python_version(), os=platform.system()))

    logger.info('Session: ' + strftime("%m/%d/%Y %I:%M:%S %p"))
    logger.info('')


def run(network, measurements, config_path=None, config_option=None, **kwargs):
    """
    Run state estimation with options from ``pstate.rc`` and the command line.

    Parameters
    ----------
    network : pstate.network.Network
    measurements : pstate.se.measurement.Measurements
    config_path : str, optional
        Directory or file to read ``pstate.rc`` from.
    config_option : list of str, optional
        Overrides in the format ``SE.FIELD=VALUE``.
    kwargs
        Passed to ``SE.run``.

    Returns
    -------
    SE
        The routine after running.
    """
    from pstate.routines.se import SE

    preamble()
    conf = load_config(config_path, config_option)
    routine = SE(network, measurements, config=conf)
    routine.run(**kwargs)
    return routine
