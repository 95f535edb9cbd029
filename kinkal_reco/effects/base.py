from __future__ import annotations

import abc
from enum import Enum
from typing import Dict, Optional

__all__ = ["Direction", "ProcessStatus", "EffectStatus", "Effect"]


class Direction(Enum):
    """Sweep direction in time."""
    FORWARDS = "forwards"
    BACKWARDS = "backwards"


class ProcessStatus(Enum):
    UNPROCESSED = "unprocessed"
    PROCESSED = "processed"


class EffectStatus:
    """Per-direction processing state of an effect, reset on every update."""

    __slots__ = ("_status",)

    def __init__(self) -> None:
        self._status: Dict[Direction, ProcessStatus] = {}
        self.reset()

    def reset(self) -> None:
        self._status = {d: ProcessStatus.UNPROCESSED for d in Direction}

    def mark(self, direction: Direction) -> None:
        self._status[direction] = ProcessStatus.PROCESSED

    def processed(self, direction: Direction) -> bool:
        return self._status[direction] is ProcessStatus.PROCESSED

    def __getitem__(self, direction: Direction) -> ProcessStatus:
        return self._status[direction]


class Effect(abc.ABC):
    r"""
    A point-localized contributor to the fit.

    Effects are ordered by :attr:`time` along the trajectory. Every fit
    iteration the engine calls :meth:`update` against the current reference,
    then :meth:`process` in a forward and a backward sweep, and finally
    :meth:`append` in time order to build the next trajectory. An inactive
    effect keeps its place in the chain but contributes nothing.

    Subclasses keep an :class:`EffectStatus` in ``self.status`` and mark
    each direction in :meth:`process`.
    """

    @property
    @abc.abstractmethod
    def time(self) -> float:
        """Time (ns) at which the effect acts."""

    @property
    @abc.abstractmethod
    def is_active(self) -> bool:
        ...

    @abc.abstractmethod
    def update(self, ref, config=None) -> None:
        """
        Refresh internal coefficients against a reference trajectory.

        Parameters
        ----------
        ref : PiecewiseTrajectory
            Current trajectory estimate.
        config : MetaIterConfig, optional
            Per-iteration options; without one only the cheap refresh runs.
        """

    @abc.abstractmethod
    def process(self, state, direction: Direction) -> None:
        """Fold this effect into a sweep accumulator (:class:`FitState`)."""

    @abc.abstractmethod
    def append(self, fit) -> None:
        """Add this effect's segment (if any) to the trajectory being rebuilt."""
