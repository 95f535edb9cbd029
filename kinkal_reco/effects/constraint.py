from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from kinkal_reco.effects.base import Direction, EffectStatus
from kinkal_reco.effects.measurement import Measurement
from kinkal_reco.kernels import invert_spd
from kinkal_reco.params import NPARAMS, ParamData, WeightData

__all__ = ["Constraint"]

logger = logging.getLogger(__name__)


class Constraint(Measurement):
    r"""
    Gaussian constraint on a subset of the parameters, applied in weight space.

    With :math:`m` the selected components, the masked covariance
    :math:`\mathbf{C}_{mm}` is inverted and embedded in a 6x6 weight matrix,

    .. math::

        \mathbf{W}_{mm} = \mathbf{C}_{mm}^{-1}, \qquad
        \mathbf{w} = \mathbf{W}\,\mathbf{p}_\text{target},

    with all other entries zero.

    Parameters
    ----------
    time : float
        Time at which the constraint acts (ns).
    params : ParamData
        Target parameters and their covariance.
    mask : sequence of bool, length 6
        Which parameter components are constrained.
    """

    __slots__ = ("_time", "_params", "_mask", "_wdata", "status")

    def __init__(self, time: float, params: ParamData, mask: Sequence[bool]) -> None:
        mask = np.asarray(mask, dtype=bool).reshape(NPARAMS)
        if not mask.any():
            raise ValueError("Constraint mask selects no parameters")
        self._time = float(time)
        self._params = params.copy()
        self._mask = mask
        idx = np.flatnonzero(mask)
        wmat = np.zeros((NPARAMS, NPARAMS))
        wmat[np.ix_(idx, idx)] = invert_spd(self._params.covariance[np.ix_(idx, idx)])
        self._wdata = WeightData(wmat @ self._params.parameters, wmat)
        self.status = EffectStatus()

    @property
    def time(self) -> float:
        return self._time

    @property
    def is_active(self) -> bool:
        return True

    @property
    def ndof(self) -> int:
        return int(self._mask.sum())

    @property
    def mask(self) -> np.ndarray:
        return self._mask.copy()

    @property
    def weights(self) -> WeightData:
        return self._wdata

    def update(self, ref, config=None) -> None:
        self.status.reset()

    def process(self, state, direction: Direction) -> None:
        state.append_weights(self._wdata)
        self.status.mark(direction)

    def append(self, fit) -> None:
        pass

    def chisq(self, traj) -> float:
        piece = traj.nearest_piece(self._time)
        dpar = piece.params.parameters - self._params.parameters
        return float(dpar @ self._wdata.weight_matrix @ dpar)

    def __repr__(self) -> str:
        return f"Constraint(time={self._time:.6g}, mask={self._mask.astype(int).tolist()})"
