from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterator, List, Tuple

import numpy as np
import pandas as pd

__all__ = ["TimeRange", "LocalDir", "PiecewiseTrajectory"]

logger = logging.getLogger(__name__)


class LocalDir(IntEnum):
    """Local basis directions attached to the momentum at a point of a trajectory."""
    MOM = 0    # along the momentum
    PERP = 1   # perpendicular to the momentum, in the plane of the momentum and the field
    PHI = 2    # perpendicular to the momentum and to the field


@dataclass(frozen=True)
class TimeRange:
    r"""
    Closed validity interval :math:`[\,t_\text{low},\,t_\text{high}\,]` in ns.
    """
    low: float = float("-inf")
    high: float = float("inf")

    def __post_init__(self) -> None:
        if self.high < self.low:
            raise ValueError(f"Invalid time range [{self.low}, {self.high}]")

    @property
    def mid(self) -> float:
        return 0.5 * (self.low + self.high)

    @property
    def span(self) -> float:
        return self.high - self.low

    def in_range(self, time: float) -> bool:
        return self.low <= time <= self.high


class PiecewiseTrajectory:
    r"""
    Time-ordered, contiguous sequence of trajectory segments.

    For any :math:`t` exactly one piece is active: the latest piece whose
    low bound is :math:`\le t`. Times before the overall range resolve to the
    first piece and times after it to the last. Pieces are only ever added at
    the back (see :meth:`append`).

    Parameters
    ----------
    piece : Helix
        Initial segment; its range becomes the overall range.

    Notes
    -----
    Kinematic accessors (``position``, ``velocity``, ``momentum``, ...)
    delegate to :meth:`nearest_piece`.
    """

    __slots__ = ("_pieces", "_lows")

    def __init__(self, piece) -> None:
        self._pieces: List = [piece]
        self._lows: List[float] = [piece.range.low]

    # container protocol
    def __len__(self) -> int:
        return len(self._pieces)

    def __iter__(self) -> Iterator:
        return iter(self._pieces)

    def __getitem__(self, index: int):
        return self._pieces[index]

    @property
    def pieces(self) -> Tuple:
        return tuple(self._pieces)

    @property
    def front(self):
        return self._pieces[0]

    @property
    def back(self):
        return self._pieces[-1]

    @property
    def range(self) -> TimeRange:
        return TimeRange(self._pieces[0].range.low, self._pieces[-1].range.high)

    def append(self, piece) -> None:
        r"""
        Append a segment at the back of the trajectory.

        The back piece is truncated (or extended) to end where the new piece
        begins, so the intervals remain contiguous with no gaps or overlaps.
        The overall upper bound becomes the new piece's upper bound.

        Parameters
        ----------
        piece : Helix
            New segment; its low time must be strictly later than the low
            time of the current back piece.

        Raises
        ------
        ValueError
            If the new piece would start at or before the back piece's start.
        """
        back = self._pieces[-1]
        tlow = piece.range.low
        if not tlow > back.range.low:
            raise ValueError(
                f"Cannot append piece starting at {tlow}: back piece starts at {back.range.low}"
            )
        self._pieces[-1] = back.with_range(TimeRange(back.range.low, tlow))
        self._pieces.append(piece)
        self._lows.append(tlow)
        logger.debug("Appended piece at t=%.6g; %d pieces", tlow, len(self._pieces))

    def nearest_index(self, time: float) -> int:
        idx = int(np.searchsorted(self._lows, float(time), side="right")) - 1
        return min(max(idx, 0), len(self._pieces) - 1)

    def nearest_piece(self, time: float):
        return self._pieces[self.nearest_index(time)]

    # delegated kinematics
    def position(self, time: float) -> np.ndarray:
        return self.nearest_piece(time).position(time)

    def velocity(self, time: float) -> np.ndarray:
        return self.nearest_piece(time).velocity(time)

    def acceleration(self, time: float) -> np.ndarray:
        return self.nearest_piece(time).acceleration(time)

    def speed(self, time: float) -> float:
        return self.nearest_piece(time).speed(time)

    def momentum(self, time: float) -> np.ndarray:
        return self.nearest_piece(time).momentum(time)

    def momentum_mag(self, time: float) -> float:
        return self.nearest_piece(time).momentum_mag(time)

    def direction(self, time: float, mdir: LocalDir = LocalDir.MOM) -> np.ndarray:
        return self.nearest_piece(time).direction(time, mdir)

    def mom_deriv(self, time: float, mdir: LocalDir) -> np.ndarray:
        return self.nearest_piece(time).mom_deriv(time, mdir)

    def position_jacobian(self, time: float) -> np.ndarray:
        return self.nearest_piece(time).position_jacobian(time)

    def velocity_jacobian(self, time: float) -> np.ndarray:
        return self.nearest_piece(time).velocity_jacobian(time)

    def bnom(self, time: float = 0.0) -> np.ndarray:
        return self.nearest_piece(time).bnom(time)

    @property
    def charge(self) -> int:
        return self._pieces[0].charge

    @property
    def mass(self) -> float:
        return self._pieces[0].mass

    def to_frame(self) -> pd.DataFrame:
        """One row per piece: validity range and named parameters."""
        rows = []
        for piece in self._pieces:
            row = {"tlow": piece.range.low, "thigh": piece.range.high}
            row.update(piece.to_series().to_dict())
            rows.append(row)
        return pd.DataFrame(rows)

    def __repr__(self) -> str:
        r = self.range
        return f"PiecewiseTrajectory({len(self._pieces)} pieces, range=[{r.low:.6g}, {r.high:.6g}])"
