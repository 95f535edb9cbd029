__all__ = [
    "KinKalError", "ConstructionInconsistency", "GeometricSolveFailure",
    "ConfigurationConflict", "InvalidBasisDirection",
    "ParamData", "WeightData", "FitState",
    "TimeRange", "LocalDir", "PiecewiseTrajectory",
    "Helix", "ParamIndex", "PARAM_NAMES", "PARAM_UNITS", "PARAM_TITLES",
    "Line", "ClosestApproach",
    "BField", "UniformBField", "CompositeBField", "GradBField",
    "DomainTuning", "range_in_tolerance", "split_domains",
    "D2T", "ConstantD2T", "DriftInfo",
    "Residual", "ResidualKind",
    "WireHitUpdater", "MetaIterConfig", "FitConfig", "load_config",
    "Direction", "Effect", "BFieldEffect", "Constraint", "WireHit", "LRAmbig",
    "KinematicFit", "FitStatus",
]

# Errors
from .errors import (
    KinKalError,
    ConstructionInconsistency,
    GeometricSolveFailure,
    ConfigurationConflict,
    InvalidBasisDirection,
)

# Parameter algebra
from .params import ParamData, WeightData, FitState

# Trajectories
from .trajectory import TimeRange, LocalDir, PiecewiseTrajectory
from .helix import Helix, ParamIndex, PARAM_NAMES, PARAM_UNITS, PARAM_TITLES
from .line import Line
from .poca import ClosestApproach

# Field
from .bfield import BField, UniformBField, CompositeBField, GradBField
from .domains import DomainTuning, range_in_tolerance, split_domains

# Measurements
from .d2t import D2T, ConstantD2T, DriftInfo
from .residual import Residual, ResidualKind

# Fit
from .config import WireHitUpdater, MetaIterConfig, FitConfig, load_config
from .effects import Direction, Effect, BFieldEffect, Constraint, WireHit, LRAmbig
from .fit import KinematicFit, FitStatus
