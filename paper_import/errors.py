"""Exception types raised by the import pipeline.

PreconditionError aborts a whole job before any unit work starts.
InferenceError subclasses are per-call failures: the orchestrator logs them
and carries on with the next unit.
"""


class ExtractionError(Exception):
    """Base class for import pipeline failures."""


class PreconditionError(ExtractionError):
    """A job precondition is unmet (input limits, missing collaborator)."""


class ServiceUnavailableError(PreconditionError):
    """A required collaborator is not running or not installed."""


class RasterizationError(ExtractionError):
    """The rasterization tool ran but did not produce usable pages."""


class InferenceError(ExtractionError):
    """A single inference call failed."""


class UnitTimeoutError(InferenceError, TimeoutError):
    """An inference call did not complete before its deadline."""


class UnitServiceError(InferenceError):
    """The inference service answered with an error or an unusable body."""
