r"""
Fit configuration.

A fit is steered by a :class:`FitConfig` holding the global numerical
settings and a *schedule* of :class:`MetaIterConfig` entries, one per
meta-iteration. Each meta-iteration may carry hit updaters that refresh
hit state (ambiguity, activity) against the current reference trajectory.

Configurations can be loaded from JSON::

    {
      "deweight": 1e6,
      "seed_errors": [1, 1, 1, 1, 0.01, 1],
      "bfield_correction": true,
      "tolerance": 0.1,
      "domain_tuning": {"initial_step": 0.1},
      "schedule": [
        {"update_bfield_correction": true},
        {"update_bfield_correction": true,
         "wire_hit_updater": {"mindoca": 1.0, "maxdoca": 5.0}}
      ]
    }
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Type, Union

import orjson

from kinkal_reco.domains import DomainTuning
from kinkal_reco.errors import ConfigurationConflict

__all__ = ["WireHitUpdater", "MetaIterConfig", "FitConfig", "load_config"]


@dataclass(frozen=True)
class WireHitUpdater:
    r"""
    Wire-hit ambiguity and activity policy.

    Attributes
    ----------
    mindoca : float
        :math:`|d|` (mm) above which the left/right ambiguity is set from the
        sign of the distance; below it the hit is used without ambiguity.
    maxdoca : float
        :math:`|d|` (mm) beyond which the hit is deactivated.
    """
    mindoca: float
    maxdoca: float

    def __post_init__(self) -> None:
        if self.mindoca < 0.0 or self.maxdoca <= 0.0:
            raise ValueError(f"Invalid wire hit updater: mindoca={self.mindoca}, maxdoca={self.maxdoca}")


# JSON keys of the updater kinds known to the loader
_UPDATER_KEYS: Dict[str, Type] = {"wire_hit_updater": WireHitUpdater}


@dataclass(frozen=True)
class MetaIterConfig:
    """
    Settings of one meta-iteration.

    Attributes
    ----------
    iteration : int
        Schedule index, filled in by the fit.
    update_bfield_correction : bool
        Re-integrate field corrections against the current reference.
    hit_updaters : tuple
        Updater objects; at most one per type.

    Raises
    ------
    ConfigurationConflict
        If two updaters of the same type are supplied.
    """
    iteration: int = 0
    update_bfield_correction: bool = False
    hit_updaters: Tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "hit_updaters", tuple(self.hit_updaters))
        kinds = [type(u) for u in self.hit_updaters]
        dups = {k.__name__ for k in kinds if kinds.count(k) > 1}
        if dups:
            raise ConfigurationConflict(f"Multiple updaters of type {', '.join(sorted(dups))}")

    def updater(self, kind: Type) -> Optional[Any]:
        """The updater of type ``kind``, or ``None`` if hits of that kind stay frozen."""
        for upd in self.hit_updaters:
            if type(upd) is kind:
                return upd
        return None

    def with_iteration(self, iteration: int) -> "MetaIterConfig":
        return MetaIterConfig(iteration, self.update_bfield_correction, self.hit_updaters)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], iteration: int = 0) -> "MetaIterConfig":
        updaters = []
        for key, kind in _UPDATER_KEYS.items():
            value = data.get(key)
            if value is None:
                continue
            for entry in value if isinstance(value, list) else [value]:
                updaters.append(kind(**entry))
        unknown = set(data) - set(_UPDATER_KEYS) - {"update_bfield_correction", "iteration"}
        if unknown:
            raise KeyError(f"Unknown meta-iteration keys: {', '.join(sorted(unknown))}")
        return cls(int(data.get("iteration", iteration)),
                   bool(data.get("update_bfield_correction", False)),
                   tuple(updaters))


@dataclass(frozen=True)
class FitConfig:
    r"""
    Global fit settings.

    Attributes
    ----------
    deweight : float
        Factor applied to the seed covariance at the start of each sweep.
    seed_errors : tuple of float
        Per-parameter seed uncertainties, used when the reference carries no
        covariance.
    bfield_correction : bool
        Create field-correction effects over tolerance domains.
    tolerance : float
        Domain position-distortion tolerance (mm).
    append_buffer : float
        Minimum spacing (ns) between a field-correction segment and the start
        of the segment it follows.
    domain_tuning : DomainTuning
    schedule : tuple of MetaIterConfig
    """
    deweight: float = 1.0e6
    seed_errors: Tuple[float, ...] = (1.0, 1.0, 1.0, 1.0, 0.01, 1.0)
    bfield_correction: bool = False
    tolerance: float = 0.1
    append_buffer: float = 0.01
    domain_tuning: DomainTuning = field(default_factory=DomainTuning)
    schedule: Tuple[MetaIterConfig, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "seed_errors", tuple(float(x) for x in self.seed_errors))
        object.__setattr__(self, "schedule", tuple(
            m.with_iteration(i) for i, m in enumerate(self.schedule)))
        if len(self.seed_errors) != 6:
            raise ValueError(f"seed_errors needs 6 entries, got {len(self.seed_errors)}")
        if self.deweight <= 0.0:
            raise ValueError(f"deweight must be positive, got {self.deweight}")
        if self.tolerance <= 0.0:
            raise ValueError(f"tolerance must be positive, got {self.tolerance}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FitConfig":
        data = dict(data)
        tuning = DomainTuning(**data.pop("domain_tuning", {}))
        schedule = tuple(MetaIterConfig.from_dict(m, i)
                         for i, m in enumerate(data.pop("schedule", [])))
        known = {"deweight", "seed_errors", "bfield_correction", "tolerance", "append_buffer"}
        unknown = set(data) - known
        if unknown:
            raise KeyError(f"Unknown fit config keys: {', '.join(sorted(unknown))}")
        return cls(domain_tuning=tuning, schedule=schedule, **data)


def load_config(config_path: Union[str, Path]) -> FitConfig:
    r"""
    Load a :class:`FitConfig` from a JSON file parsed with :mod:`orjson`.

    Raises
    ------
    ValueError
        If the file cannot be read or parsed.
    """
    config_path = Path(config_path)
    try:
        data = orjson.loads(config_path.read_bytes())
    except (OSError, orjson.JSONDecodeError) as e:
        raise ValueError(f"Failed to parse {config_path}: {e}") from e
    return FitConfig.from_dict(data)
