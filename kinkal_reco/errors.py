from __future__ import annotations

__all__ = [
    "KinKalError",
    "ConstructionInconsistency",
    "GeometricSolveFailure",
    "ConfigurationConflict",
    "InvalidBasisDirection",
]


class KinKalError(Exception):
    """Base class for all errors raised by the fit core."""


class ConstructionInconsistency(KinKalError, ValueError):
    """A trajectory segment failed its self-consistency check at construction."""


class GeometricSolveFailure(KinKalError, RuntimeError):
    """A closest-approach (or similar) solve degenerated or did not converge,
    and its result was consumed anyway."""


class ConfigurationConflict(KinKalError, ValueError):
    """More than one updater of the same kind in a single iteration config."""


class InvalidBasisDirection(KinKalError, ValueError):
    """An unrecognized local-basis direction was requested."""
