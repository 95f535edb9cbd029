from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from kinkal_reco.kernels import invert_spd

__all__ = ["NPARAMS", "ParamData", "WeightData", "FitState"]

NPARAMS = 6


def _vec(x) -> np.ndarray:
    return np.array(x, dtype=np.float64).reshape(NPARAMS)


def _mat(x) -> np.ndarray:
    return np.array(x, dtype=np.float64).reshape(NPARAMS, NPARAMS)


@dataclass
class ParamData:
    r"""
    Gaussian state in **parameter space**: parameters :math:`\mathbf{p}` and
    covariance :math:`\mathbf{C}`.

    Attributes
    ----------
    parameters : ndarray, shape (6,)
    covariance : ndarray, shape (6, 6)
    """
    parameters: np.ndarray = field(default_factory=lambda: np.zeros(NPARAMS))
    covariance: np.ndarray = field(default_factory=lambda: np.zeros((NPARAMS, NPARAMS)))

    def __post_init__(self) -> None:
        self.parameters = _vec(self.parameters)
        self.covariance = _mat(self.covariance)

    def copy(self) -> "ParamData":
        return ParamData(self.parameters.copy(), self.covariance.copy())

    def diagonal(self) -> np.ndarray:
        """Parameter uncertainties (square root of the covariance diagonal)."""
        return np.sqrt(np.clip(np.diag(self.covariance), 0.0, None))

    def deweighted(self, factor: float) -> "ParamData":
        return ParamData(self.parameters.copy(), self.covariance * float(factor))

    def to_weights(self) -> "WeightData":
        wmat = invert_spd(self.covariance)
        return WeightData(wmat @ self.parameters, wmat)


@dataclass
class WeightData:
    r"""
    Gaussian state in **weight space**: :math:`\mathbf{W}=\mathbf{C}^{-1}` and
    :math:`\mathbf{w}=\mathbf{W}\mathbf{p}`. Independent information adds.
    """
    weights: np.ndarray = field(default_factory=lambda: np.zeros(NPARAMS))
    weight_matrix: np.ndarray = field(default_factory=lambda: np.zeros((NPARAMS, NPARAMS)))

    def __post_init__(self) -> None:
        self.weights = _vec(self.weights)
        self.weight_matrix = _mat(self.weight_matrix)

    def copy(self) -> "WeightData":
        return WeightData(self.weights.copy(), self.weight_matrix.copy())

    def to_params(self) -> ParamData:
        cov = invert_spd(self.weight_matrix)
        return ParamData(cov @ self.weights, cov)


class FitState:
    r"""
    Running accumulator of a single sweep.

    The state lives in whichever space the last contribution used and is
    converted lazily:

    - :meth:`append_params` (dead-reckoning transport) adds
      :math:`\Delta\mathbf{p}` and :math:`\Delta\mathbf{C}` in parameter space;
    - :meth:`append_weights` (information) adds :math:`\Delta\mathbf{w}` and
      :math:`\Delta\mathbf{W}` in weight space.

    Parameters
    ----------
    pdata : ParamData
        Starting state, typically a deweighted reference segment.
    """

    __slots__ = ("_pdata", "_wdata")

    def __init__(self, pdata: ParamData) -> None:
        self._pdata: Optional[ParamData] = pdata.copy()
        self._wdata: Optional[WeightData] = None

    @property
    def has_params(self) -> bool:
        return self._pdata is not None

    @property
    def params(self) -> ParamData:
        if self._pdata is None:
            self._pdata = self._wdata.to_params()
        return self._pdata

    @property
    def weights(self) -> WeightData:
        if self._wdata is None:
            self._wdata = self._pdata.to_weights()
        return self._wdata

    def append_params(self, delta: ParamData) -> None:
        pdata = self.params
        pdata.parameters = pdata.parameters + delta.parameters
        pdata.covariance = pdata.covariance + delta.covariance
        self._pdata = pdata
        self._wdata = None

    def append_weights(self, delta: WeightData) -> None:
        wdata = self.weights
        wdata.weights = wdata.weights + delta.weights
        wdata.weight_matrix = wdata.weight_matrix + delta.weight_matrix
        self._wdata = wdata
        self._pdata = None
