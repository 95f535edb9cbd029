from __future__ import annotations

import abc
from typing import NamedTuple

__all__ = ["DriftInfo", "D2T", "ConstantD2T"]


class DriftInfo(NamedTuple):
    """Drift time (ns), its variance (ns^2) and the local drift speed (mm/ns)."""
    tdrift: float
    tdvar: float
    vdrift: float


class D2T(abc.ABC):
    r"""
    Distance-to-time relation of a drift cell.

    The drift position is given in wire-local polar coordinates
    :math:`(\rho, \phi)`; :math:`\rho` may be negative and :math:`\phi` is the
    azimuth with respect to the direction perpendicular to both the wire and
    the field, which carries any :math:`\mathbf{E}\times\mathbf{B}` dependence.
    """

    @abc.abstractmethod
    def distance_to_time(self, rho: float, phi: float) -> DriftInfo:
        ...


class ConstantD2T(D2T):
    """Constant drift velocity with a fixed time variance."""

    __slots__ = ("_vdrift", "_tvar")

    def __init__(self, vdrift: float, tvar: float) -> None:
        if vdrift <= 0.0:
            raise ValueError(f"Drift velocity must be positive, got {vdrift}")
        if tvar <= 0.0:
            raise ValueError(f"Drift time variance must be positive, got {tvar}")
        self._vdrift = float(vdrift)
        self._tvar = float(tvar)

    @property
    def vdrift(self) -> float:
        return self._vdrift

    @property
    def tvar(self) -> float:
        return self._tvar

    def distance_to_time(self, rho: float, phi: float) -> DriftInfo:
        return DriftInfo(rho / self._vdrift, self._tvar, self._vdrift)
