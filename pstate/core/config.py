import pprint
import logging
from collections import OrderedDict
from typing import Iterable

logger = logging.getLogger(__name__)


class Config:
    """
    A class for storing routine configurations.

    Fields are attributes. Values loaded from a config file take precedence
    over the defaults added afterwards.
    """

    def __init__(self, name, dct=None, **kwargs):
        """
        Constructor with a dictionary or keyword arguments
        """
        self._name = name
        self._dict = OrderedDict()
        self._help = OrderedDict()
        self._alt = OrderedDict()
        self.add(dct, **kwargs)

    def load(self, config):
        """
        Load from a ConfigParser object, ``config``.
        """
        if config is None:
            return
        if self._name in config:
            config_section = config[self._name]
            self.add(OrderedDict(config_section))

    def add(self, dct=None, **kwargs):
        """
        Add config fields from a dictionary or keyword args.

        Existing configs will NOT be overwritten.
        """
        if dct is not None:
            self._add(**dct)

        self._add(**kwargs)

    def add_extra(self, dest, dct=None, **kwargs):
        """
        Add ``_help`` or ``_alt`` entries for existing fields.
        """
        if dct is not None:
            kwargs.update(dct)
        for key, value in kwargs.items():
            if key not in self.__dict__:
                logger.warning(f"Config field name {key} for {dest} is invalid.")
                continue
            self.__dict__[dest][key] = value

    def _add(self, **kwargs):
        for key, val in kwargs.items():
            # skip existing entries that are already loaded (from config files)
            if key in self.__dict__:
                continue

            if isinstance(val, str):
                try:
                    val = int(val)
                except ValueError:
                    try:
                        val = float(val)
                    except ValueError:
                        pass

            self.__dict__[key] = val

    def as_dict(self, refresh=False):
        """
        Return the config fields and values in an ``OrderedDict``.

        Values are cached in `self._dict` unless refreshed.
        """
        if refresh is True or len(self._dict) == 0:
            out = []
            for key, val in self.__dict__.items():
                if not key.startswith('_'):
                    out.append((key, val))
            self._dict = OrderedDict(out)

        return self._dict

    def __repr__(self):
        return pprint.pformat(self.as_dict())

    def doc(self):
        """
        Plain-text table of the fields, values, help and accepted values.
        """
        fields = self.as_dict(refresh=True)
        if len(fields) == 0:
            return ''

        out = [f'Config Fields in [{self._name}]', '']
        out.append(f'{"Option":<16s}{"Value":<12s}{"Info":<44s}Acceptable values')
        for key, val in fields.items():
            alt = self._alt.get(key, '')
            out.append(f'{key:<16s}{str(val):<12s}{self._help.get(key, ""):<44s}{alt}')
        return '\n'.join(out)

    def check(self):
        """
        Check the validity of config values.
        """
        for key, val in self.as_dict(refresh=True).items():
            if key not in self._alt:
                continue

            _alt = self._alt[key]
            if not isinstance(_alt, Iterable):
                continue
            if isinstance(_alt, str):
                continue
            if val not in _alt:
                raise ValueError(f"[{self._name}].{key}={val} is not a choice from {_alt}.")

        return True
