"""
Config file lookup and command-line overrides.
"""

import os
import logging
import configparser
from typing import Optional, List

logger = logging.getLogger(__name__)


def find_config(path=None, file_name='pstate.rc'):
    """
    Return the path to the first ``pstate.rc`` found in ``path``, the working
    directory and ``~/.pstate``, or ``None``.
    """
    search_path = [path,
                   os.getcwd(),
                   os.path.join(os.path.expanduser('~'), ".pstate"),
                   ]

    for p in search_path:
        if p is None:
            continue

        if os.path.isfile(os.path.join(p, file_name)):
            return os.path.join(p, file_name)

    return None


def parse_options(conf, config_option: Optional[List[str]] = None):
    """
    Apply ``SECTION.FIELD=VALUE`` assignments to the ConfigParser ``conf``.
    """

    if not config_option:
        return conf

    for item in config_option:

        # each field follows the format `SECTION.FIELD = VALUE`

        if item.count('=') != 1:
            raise ValueError(
                'config_option "{}" must be an assignment expression'.format(item))

        field, value = item.split("=")

        if field.count('.') != 1:
            raise ValueError(
                'config_option LHS "{}" must use format SECTION.FIELD'.format(field))

        section, key = field.split(".")

        section = section.strip()
        key = key.strip()
        value = value.strip()

        if not conf.has_section(section):
            conf.add_section(section)
            logger.debug("New config section added: %s", section)

        conf.set(section, key, value)
        logger.debug("Config option set: %s.%s=%s", section, key, value)

    return conf


def load_config(path=None, options=None):
    """
    Load ``pstate.rc`` into a ConfigParser and apply option overrides.

    Parameters
    ----------
    path : str, optional
        A directory to search first, or the path to a config file.
    options : list of str, optional
        Overrides in the format ``SECTION.FIELD=VALUE``.

    Returns
    -------
    configparser.ConfigParser
    """
    conf = configparser.ConfigParser()

    if path is not None and os.path.isfile(path):
        conf_path = path
    else:
        conf_path = find_config(path)

    if conf_path is not None:
        conf.read(conf_path)
        logger.info('> Loaded config from file "%s"', conf_path)

    return parse_options(conf, options)
