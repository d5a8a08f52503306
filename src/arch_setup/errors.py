class SetupError(Exception):
    """Base class for provisioning errors."""


class FatalError(SetupError):
    """A precondition of the whole run is violated; stop immediately."""


class StepError(SetupError):
    """A single step failed; the run records it and continues."""
