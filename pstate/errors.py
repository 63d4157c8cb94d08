"""
Exceptions raised by the state estimation core.
"""


class MissingSlackBus(ValueError):
    """
    Raised when a measurement model is built for a network without a slack bus.
    """

    def __init__(self, msg=None):
        if msg is None:
            msg = "The network has no slack bus. Designate one with Network.set_slack()."
        super().__init__(msg)


class SingularGainMatrix(ArithmeticError):
    """
    Raised when the gain matrix (or the scaled Jacobian) cannot be factorized.

    The usual cause is an unobservable measurement set.
    """
    pass


class CorrelatedPrecisionNotOrthogonalCompatible(ValueError):
    """
    Raised when the orthogonal method is requested for a measurement set with
    correlated phasor errors.
    """

    def __init__(self, msg=None):
        if msg is None:
            msg = ("The orthogonal method requires a diagonal precision matrix, "
                   "but some PMUs have correlated real and imaginary errors.")
        super().__init__(msg)


class UnknownLabel(KeyError):
    """
    Raised when a label is not found in a bus, branch or device label table.
    """

    def __init__(self, label, owner=''):
        self.label = label
        self.owner = owner
        super().__init__(label)

    def __str__(self):
        if self.owner:
            return f"Label <{self.label}> not found in {self.owner}."
        return f"Label <{self.label}> not found."
