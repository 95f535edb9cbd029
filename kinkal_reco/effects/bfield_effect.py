from __future__ import annotations

import logging

import numpy as np

from kinkal_reco.effects.base import Direction, Effect, EffectStatus
from kinkal_reco.params import NPARAMS, ParamData
from kinkal_reco.trajectory import LocalDir, TimeRange

__all__ = ["BFieldEffect"]

logger = logging.getLogger(__name__)


class BFieldEffect(Effect):
    r"""
    Dead-reckoning correction for the difference between the field map and
    the nominal field over one domain.

    The integrated momentum deviation :math:`\Delta\mathbf{p}` over the
    domain is stored as a fraction of the momentum,
    :math:`\boldsymbol{\delta} = \Delta\mathbf{p}/|\mathbf{p}|`, and projected
    onto the local bend directions at the domain midpoint :math:`t_m`:

    .. math::

        \Delta\boldsymbol{\theta} =
            (\boldsymbol{\delta}\cdot\hat{\mathbf{u}}_\perp)\,
                \frac{\partial\boldsymbol{\theta}}{\partial\epsilon_\perp}
          + (\boldsymbol{\delta}\cdot\hat{\mathbf{u}}_\phi)\,
                \frac{\partial\boldsymbol{\theta}}{\partial\epsilon_\phi}.

    The correction carries no information and no noise; it is added going
    forwards and subtracted going backwards.

    Parameters
    ----------
    bfield : BField
        Borrowed field map; must outlive the effect.
    drange : TimeRange
        Domain covered by this correction.
    buffer : float, optional
        Minimum spacing (ns) between an appended segment and the start of the
        segment it follows.

    Notes
    -----
    The effect is inactive until updated with a config requesting a field
    correction.
    """

    __slots__ = ("_bfield", "_drange", "_buffer", "_dpfrac", "_correction", "_active", "status")

    def __init__(self, bfield, drange: TimeRange, buffer: float = 0.01) -> None:
        self._bfield = bfield
        self._drange = drange
        self._buffer = float(buffer)
        self._dpfrac = np.zeros(3)
        self._correction = np.zeros(NPARAMS)
        self._active = False
        self.status = EffectStatus()

    @property
    def time(self) -> float:
        return self._drange.mid

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def domain(self) -> TimeRange:
        return self._drange

    @property
    def dpfrac(self) -> np.ndarray:
        return self._dpfrac.copy()

    @property
    def correction(self) -> np.ndarray:
        return self._correction.copy()

    def update(self, ref, config=None) -> None:
        if config is not None and config.update_bfield_correction:
            self._active = True
            dp = self._bfield.integrate(ref, self._drange)
            self._dpfrac = dp / ref.momentum_mag(self.time)
            logger.debug("Field correction [%.6g, %.6g] iteration %d: dp=%s",
                         self._drange.low, self._drange.high, config.iteration, dp)
        time = self.time
        piece = ref.nearest_piece(time)
        # project the momentum change onto the local bend directions
        perp = piece.direction(time, LocalDir.PERP)
        phi = piece.direction(time, LocalDir.PHI)
        self._correction = (float(np.dot(self._dpfrac, perp)) * piece.mom_deriv(time, LocalDir.PERP)
                            + float(np.dot(self._dpfrac, phi)) * piece.mom_deriv(time, LocalDir.PHI))
        self.status.reset()

    def process(self, state, direction: Direction) -> None:
        if self._active:
            # the covariance is unchanged either way; only the parameter shift is signed
            sign = 1.0 if direction is Direction.FORWARDS else -1.0
            state.append_params(ParamData(sign * self._correction, np.zeros((NPARAMS, NPARAMS))))
        self.status.mark(direction)

    def append(self, fit) -> None:
        if not self._active:
            return
        back = fit.back
        tlow = max(self.time, back.range.low + self._buffer)
        newrange = TimeRange(tlow, max(tlow, fit.range.high))
        pdata = ParamData(back.params.parameters + self._correction, back.params.covariance)
        fit.append(back.with_params(pdata).with_range(newrange))

    def __repr__(self) -> str:
        return (f"BFieldEffect(domain=[{self._drange.low:.6g}, {self._drange.high:.6g}], "
                f"active={self._active}, dpfrac={self._dpfrac.tolist()})")
