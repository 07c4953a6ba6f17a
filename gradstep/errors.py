"""
Exceptions raised by gradstep.

Every error is fatal at the call that raised it: nothing is retried and
nothing is swallowed. Hosts catch GradstepError to show validation messages.
"""


class GradstepError(Exception):
    """Base class for every error raised by gradstep."""


class DimensionError(GradstepError, ValueError):
    """Two operands (or an operand and a layer) have incompatible shapes."""


class PreconditionError(GradstepError, RuntimeError):
    """A method was called before the call it depends on (e.g. backward before forward)."""


class UnknownPolicyError(GradstepError, ValueError):
    """An activation or loss name is not registered."""


class GraphError(GradstepError, ValueError):
    """The computation graph is malformed: missing output, cycle, dangling input, ..."""
