"""
Base class for calculation routines.
"""

from typing import Optional

from pstate.core.config import Config


class BaseRoutine:
    """
    Base routine class.

    Provides references to the network, the measurement set and the config.
    """

    def __init__(self, network=None, measurements=None, config=None):
        self.network = network
        self.measurements = measurements

        self.config: Optional[Config] = self.create_config(self.class_name, config)

        self.exec_time = 0.0  # recorded time to execute the routine in seconds

    @property
    def class_name(self):
        return self.__class__.__name__

    def doc(self):
        """
        Routine documentation interface.
        """
        return self.config.doc()

    def init(self):
        """
        Routine initialization interface.
        """
        pass

    def run(self, **kwargs):
        """
        Routine main entry point.
        """
        raise NotImplementedError

    def summary(self, **kwargs):
        """
        Summary interface
        """
        raise NotImplementedError

    def report(self, **kwargs):
        """
        Report interface.
        """
        raise NotImplementedError

    def create_config(self, name, config_obj=None):

        config = Config(name)

        if config_obj is not None:
            config.load(config_obj)

        return config
