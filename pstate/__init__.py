from pstate._version import __version__  # NOQA

from pstate import core       # NOQA
from pstate import linsolvers  # NOQA
from pstate import se         # NOQA
from pstate import routines   # NOQA
from pstate import utils      # NOQA

from pstate.main import config_logger, run  # NOQA
from pstate.network import Network, Voltage  # NOQA
from pstate.se import Measurements  # NOQA

__all__ = ['main', 'network', 'errors', 'consts',
           'core', 'linsolvers', 'se', 'routines', 'utils',
           '__version__']
