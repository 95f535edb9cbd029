from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from kinkal_reco.kernels import scalar_weight
from kinkal_reco.params import NPARAMS, WeightData

__all__ = ["ResidualKind", "Residual"]


class ResidualKind(Enum):
    TIME = "time"
    DISTANCE = "distance"


@dataclass
class Residual:
    r"""
    Scalar measurement residual linearised about a reference trajectory.

    Attributes
    ----------
    kind : ResidualKind
        Unit family of the residual (ns or mm).
    value : float
        Measurement minus prediction.
    variance : float
        Measurement variance.
    dRdP : ndarray, shape (6,)
        Derivative of the *prediction* with respect to the parameters,
        :math:`\mathbf{D} = -\partial r/\partial\mathbf{p}`.
    time : float
        Particle time the residual refers to.
    """
    kind: ResidualKind
    value: float
    variance: float
    dRdP: np.ndarray = field(default_factory=lambda: np.zeros(NPARAMS))
    time: float = 0.0

    def __post_init__(self) -> None:
        if not self.variance > 0.0:
            raise ValueError(f"Residual variance must be positive, got {self.variance}")
        self.dRdP = np.asarray(self.dRdP, dtype=np.float64).reshape(NPARAMS)

    @property
    def pull(self) -> float:
        return self.value / np.sqrt(self.variance)

    @property
    def chisq(self) -> float:
        return self.value * self.value / self.variance

    def weight_data(self, pref: np.ndarray) -> WeightData:
        r"""
        Information content in weight space about reference parameters
        :math:`\mathbf{p}_\text{ref}`:

        .. math::

            \mathbf{W} = \frac{\mathbf{D}\mathbf{D}^\top}{V}, \qquad
            \mathbf{w} = \mathbf{W}\,\mathbf{p}_\text{ref} + \frac{\mathbf{D}\,r}{V}.
        """
        wvec, wmat = scalar_weight(self.dRdP, float(self.value), float(self.variance),
                                   np.asarray(pref, dtype=np.float64))
        return WeightData(wvec, wmat)
