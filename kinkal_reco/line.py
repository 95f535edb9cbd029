from __future__ import annotations

from typing import Optional

import numpy as np

from kinkal_reco.trajectory import TimeRange

__all__ = ["Line"]


class Line:
    r"""
    Straight reference trajectory :math:`\mathbf{x}(t)=\mathbf{x}_0+\mathbf{v}\,(t-t_0)`.

    For a drift wire the velocity points toward the readout end with the
    signal propagation speed, and :math:`t_0` is the measured time at
    :math:`\mathbf{x}_0`.

    Parameters
    ----------
    pos0 : array_like, shape (3,)
        Reference point (mm).
    velocity : array_like, shape (3,)
        Velocity (mm/ns); must be non-zero.
    t0 : float
        Time at ``pos0`` (ns).
    trange : TimeRange, optional
    """

    __slots__ = ("_pos0", "_vel", "_t0", "_range")

    def __init__(self,
                 pos0: np.ndarray,
                 velocity: np.ndarray,
                 t0: float = 0.0,
                 trange: Optional[TimeRange] = None) -> None:
        self._pos0 = np.asarray(pos0, dtype=np.float64).reshape(3).copy()
        self._vel = np.asarray(velocity, dtype=np.float64).reshape(3).copy()
        if not np.linalg.norm(self._vel) > 0.0:
            raise ValueError("Line velocity must be non-zero")
        self._t0 = float(t0)
        self._range = trange if trange is not None else TimeRange()

    @property
    def t0(self) -> float:
        return self._t0

    @property
    def range(self) -> TimeRange:
        return self._range

    @property
    def pos0(self) -> np.ndarray:
        return self._pos0

    def speed(self, time: Optional[float] = None) -> float:
        return float(np.linalg.norm(self._vel))

    def direction(self, time: Optional[float] = None) -> np.ndarray:
        return self._vel / self.speed()

    def position(self, time: float) -> np.ndarray:
        return self._pos0 + self._vel * (float(time) - self._t0)

    def velocity(self, time: Optional[float] = None) -> np.ndarray:
        return self._vel.copy()

    def acceleration(self, time: Optional[float] = None) -> np.ndarray:
        return np.zeros(3)

    def __repr__(self) -> str:
        return f"Line(pos0={self._pos0.tolist()}, velocity={self._vel.tolist()}, t0={self._t0:.6g})"
