from __future__ import annotations

import abc

from kinkal_reco.effects.base import Effect

__all__ = ["Measurement"]


class Measurement(Effect):
    """Information-bearing effect: contributes to the fit chi-squared."""

    @property
    @abc.abstractmethod
    def ndof(self) -> int:
        ...

    @abc.abstractmethod
    def chisq(self, traj) -> float:
        """Chi-squared of this measurement against ``traj`` (0 if inactive)."""
