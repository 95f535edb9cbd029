from __future__ import annotations

import logging
from enum import IntEnum
from typing import Optional

import numpy as np

from kinkal_reco.config import WireHitUpdater
from kinkal_reco.effects.base import Direction, EffectStatus
from kinkal_reco.effects.measurement import Measurement
from kinkal_reco.errors import GeometricSolveFailure
from kinkal_reco.poca import ClosestApproach
from kinkal_reco.residual import Residual, ResidualKind

__all__ = ["LRAmbig", "WireHit"]

logger = logging.getLogger(__name__)


class LRAmbig(IntEnum):
    """Side of the wire the particle passed; ``NULL`` uses the wire position only."""
    LEFT = -1
    NULL = 0
    RIGHT = 1


class WireHit(Measurement):
    r"""
    Drift-wire measurement, expressed through the closest approach between
    the particle trajectory and the wire.

    With a left/right assignment :math:`a=\pm1` the residual is in time:

    .. math::

        r = \Delta t - t_\text{drift}(a\,d, \phi), \qquad
        \mathbf{D} = \frac{a}{v_\text{drift}}\frac{\partial d}{\partial\mathbf{p}}
                     - \frac{\partial\Delta t}{\partial\mathbf{p}},

    where :math:`\phi` is the azimuth of the separation relative to
    :math:`\widehat{\mathbf{B}\times\hat{\mathbf{w}}}`. Without an assignment
    the residual is the distance itself, :math:`r=-d`, with the variance of
    a flat distribution of width ``mindoca``.

    Parameters
    ----------
    line : Line
        Local linear approximation of the wire; its velocity is the signal
        propagation toward the readout and its ``t0`` the measured time.
    d2t : D2T
        Borrowed distance-to-time relation.
    bfield : BField
        Borrowed field map (for the drift azimuth).
    cell_size : float
        Transverse cell size (mm), the initial null-ambiguity scale.
    ambig : LRAmbig, optional
    """

    __slots__ = ("_line", "_d2t", "_bfield", "_cell_size", "_ambig", "_null_var",
                 "_active", "_time", "_resid", "_wdata", "status")

    def __init__(self, line, d2t, bfield, cell_size: float, ambig: LRAmbig = LRAmbig.NULL) -> None:
        if cell_size <= 0.0:
            raise ValueError(f"Cell size must be positive, got {cell_size}")
        self._line = line
        self._d2t = d2t
        self._bfield = bfield
        self._cell_size = float(cell_size)
        self._ambig = LRAmbig(ambig)
        self._null_var = 0.0
        self.set_null_var(self._cell_size)
        self._active = True
        self._time: float = line.t0
        self._resid: Optional[Residual] = None
        self._wdata = None
        self.status = EffectStatus()

    @property
    def time(self) -> float:
        return self._time

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def ndof(self) -> int:
        return 1

    @property
    def wire(self):
        return self._line

    @property
    def cell_size(self) -> float:
        return self._cell_size

    @property
    def ambig(self) -> LRAmbig:
        return self._ambig

    def set_ambig(self, ambig: LRAmbig) -> None:
        self._ambig = LRAmbig(ambig)

    @property
    def null_var(self) -> float:
        return self._null_var

    def set_null_var(self, mindoca: float) -> None:
        self._null_var = mindoca * mindoca / 3.0

    @property
    def last_residual(self) -> Optional[Residual]:
        """Residual computed at the last update."""
        return self._resid

    def closest_approach(self, traj) -> ClosestApproach:
        hint = None if self._resid is None else self._resid.time
        return ClosestApproach(traj, self._line, hint=hint)

    def residual(self, traj) -> Residual:
        return self.residual_from_poca(self.closest_approach(traj))

    def residual_from_poca(self, poca: ClosestApproach) -> Residual:
        """
        Residual for a given closest approach.

        Raises
        ------
        GeometricSolveFailure
            If ``poca`` is not usable.
        """
        if not poca.usable:
            raise GeometricSolveFailure("POCA failure")
        if self._ambig != LRAmbig.NULL:
            iambig = int(self._ambig)
            rho = poca.doca * iambig
            bvec = self._bfield.field_vect(poca.particle_point)
            # direction perpendicular to the wire and the field
            pdir = np.cross(bvec, self._line.direction())
            pmag = float(np.linalg.norm(pdir))
            dvec = poca.delta
            dmag = float(np.linalg.norm(dvec))
            phi = 0.0
            if dmag > 0.0 and pmag > 0.0:
                phi = float(np.arcsin(np.clip(np.dot(dvec / dmag, pdir / pmag), -1.0, 1.0)))
            drift = self._d2t.distance_to_time(rho, phi)
            dRdP = poca.dDdP * iambig / drift.vdrift - poca.dTdP
            return Residual(ResidualKind.TIME, poca.delta_t - drift.tdrift, drift.tdvar, dRdP,
                            poca.particle_time)
        return Residual(ResidualKind.DISTANCE, -poca.doca, self._null_var, poca.dDdP,
                        poca.particle_time)

    def update(self, ref, config=None) -> None:
        poca = self.closest_approach(ref)
        updater = config.updater(WireHitUpdater) if config is not None else None
        if updater is not None:
            doca = poca.doca
            if abs(doca) > updater.mindoca:
                self._ambig = LRAmbig.RIGHT if doca > 0.0 else LRAmbig.LEFT
            else:
                self._ambig = LRAmbig.NULL
                self.set_null_var(min(self._cell_size, updater.mindoca))
            active = abs(doca) < updater.maxdoca
            if active != self._active:
                logger.warning("Wire hit at t=%.6g %s: doca=%.4g", self._time,
                               "reactivated" if active else "deactivated", doca)
            self._active = active
        self._resid = self.residual_from_poca(poca)
        self._time = self._resid.time
        piece = ref.nearest_piece(self._time)
        self._wdata = self._resid.weight_data(piece.params.parameters)
        self.status.reset()

    def process(self, state, direction: Direction) -> None:
        if self._active:
            state.append_weights(self._wdata)
        self.status.mark(direction)

    def append(self, fit) -> None:
        pass

    def chisq(self, traj) -> float:
        if not self._active:
            return 0.0
        return self.residual(traj).chisq

    def __repr__(self) -> str:
        return (f"WireHit(time={self._time:.6g}, ambig={self._ambig.name}, "
                f"active={self._active}, null_var={self._null_var:.4g})")
