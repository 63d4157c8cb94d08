from .misc import elapsed  # NOQA
from .configmgr import load_config  # NOQA

__all__ = [
    'misc',
    'configmgr',
    'cases',
    'load_config',
]
