"""Exception types raised by the dynamics driver.

Every error is fatal for the single-shot pipeline: nothing here is caught and
retried. The classes exist so callers (and tests) can tell a bad model file
from a lifetime violation without parsing messages.
"""


class DriverError(Exception):
    """Base class for all driver errors."""


class ConfigurationError(DriverError):
    """Invalid or missing driver configuration."""


class ModelLoadError(DriverError, ValueError):
    """The mechanism description could not be parsed."""


class RuntimeStateError(DriverError, RuntimeError):
    """A runtime call was made outside the initialized window."""


class RootScopeError(DriverError, RuntimeError):
    """Root frames were pushed or popped out of stack order."""


class BufferResolutionError(DriverError, TypeError):
    """A container could not be resolved to flat numeric storage."""


class BorrowError(DriverError, RuntimeError):
    """A buffer was used after its borrow ended."""


class DynamicsError(DriverError, RuntimeError):
    """Arguments handed to a dynamics kernel do not fit the mechanism."""
