from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from kinkal_reco.config import FitConfig, MetaIterConfig
from kinkal_reco.domains import split_domains
from kinkal_reco.effects.base import Direction, Effect
from kinkal_reco.effects.bfield_effect import BFieldEffect
from kinkal_reco.effects.measurement import Measurement
from kinkal_reco.effects.wire_hit import WireHit
from kinkal_reco.params import NPARAMS, FitState, ParamData
from kinkal_reco.trajectory import PiecewiseTrajectory

__all__ = ["FitStatus", "KinematicFit"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FitStatus:
    """Summary of one fit iteration."""
    iteration: int
    chisq: float
    ndof: int
    nactive: int

    @property
    def chisq_per_ndof(self) -> float:
        return self.chisq / self.ndof if self.ndof > 0 else float("nan")


class KinematicFit:
    r"""
    Kinematic Kalman fit over a time-ordered chain of effects.

    Each call to :meth:`iterate` runs one cycle:

    1. **update** every effect against the current trajectory, then re-sort
       the chain by time (stable);
    2. **forward sweep** in increasing time from the deweighted front segment;
    3. **backward sweep** in decreasing time from the deweighted back segment;
    4. **reconstruction**: the backward result becomes the first segment over
       the full range, and every effect appends its segment in time order.

    Field corrections are dead-reckoning transports: they add their parameter
    shift forwards and subtract it backwards, so the backward result is
    expressed in the parameters of the front segment. Measurements and
    constraints add information in weight space,
    :math:`\mathbf{W}\leftarrow\mathbf{W}+\Delta\mathbf{W}`.

    Parameters
    ----------
    reftraj : PiecewiseTrajectory or Helix
        Seed trajectory; its range is the fit range.
    effects : iterable of Effect
        Measurements and constraints; field corrections are added here when
        ``config.bfield_correction`` is set.
    bfield : BField, optional
        Borrowed field map used for the field-correction domains.
    config : FitConfig, optional

    Notes
    -----
    The fit is single threaded; the sweep order is part of the algorithm.
    There is no convergence policy: :meth:`fit` runs the configured schedule
    once per entry.
    """

    __slots__ = ("_config", "_bfield", "_effects", "_traj", "_history", "_forward", "_backward")

    def __init__(self,
                 reftraj,
                 effects: Iterable[Effect] = (),
                 bfield=None,
                 config: Optional[FitConfig] = None) -> None:
        self._config = config or FitConfig()
        self._bfield = bfield
        if not isinstance(reftraj, PiecewiseTrajectory):
            reftraj = PiecewiseTrajectory(reftraj)
        self._traj: PiecewiseTrajectory = reftraj
        self._effects: List[Effect] = list(effects)
        self._history: List[FitStatus] = []
        self._forward: Optional[ParamData] = None
        self._backward: Optional[ParamData] = None

        if self._config.bfield_correction:
            if bfield is None:
                raise ValueError("Field corrections requested without a field map")
            domains = split_domains(reftraj.front, bfield, self._config.tolerance,
                                    self._config.domain_tuning, trange=reftraj.range)
            self._effects.extend(BFieldEffect(bfield, d, self._config.append_buffer) for d in domains)
            logger.info("Created %d field-correction domains over [%.6g, %.6g]",
                        len(domains), reftraj.range.low, reftraj.range.high)
        self._sort()

    def _sort(self) -> None:
        self._effects.sort(key=lambda eff: eff.time)

    # accessors
    @property
    def config(self) -> FitConfig:
        return self._config

    @property
    def traj(self) -> PiecewiseTrajectory:
        return self._traj

    @property
    def effects(self) -> Sequence[Effect]:
        return tuple(self._effects)

    @property
    def history(self) -> Sequence[FitStatus]:
        return tuple(self._history)

    @property
    def status(self) -> Optional[FitStatus]:
        return self._history[-1] if self._history else None

    @property
    def forward_result(self) -> Optional[ParamData]:
        """State at the end of the last forward sweep."""
        return self._forward

    @property
    def backward_result(self) -> Optional[ParamData]:
        """State at the start of the trajectory after the last backward sweep."""
        return self._backward

    def _seed(self, piece) -> ParamData:
        pdata = piece.params
        if np.any(pdata.covariance):
            return pdata.deweighted(self._config.deweight)
        cov = np.diag(np.square(self._config.seed_errors)) * self._config.deweight
        return ParamData(pdata.parameters.copy(), cov)

    def _sweep(self, piece, direction: Direction) -> ParamData:
        state = FitState(self._seed(piece))
        chain = self._effects if direction is Direction.FORWARDS else reversed(self._effects)
        for eff in chain:
            eff.process(state, direction)
        return state.params.copy()

    def iterate(self, config: Optional[MetaIterConfig] = None) -> FitStatus:
        """
        Run one update / sweep / reconstruct cycle.

        Raises
        ------
        GeometricSolveFailure
            If a measurement's closest approach cannot be solved.
        """
        config = config or MetaIterConfig(iteration=len(self._history))
        ref = self._traj
        for eff in self._effects:
            eff.update(ref, config)
        self._sort()

        self._forward = self._sweep(ref.front, Direction.FORWARDS)
        self._backward = self._sweep(ref.back, Direction.BACKWARDS)

        first = ref.front.with_params(self._backward).with_range(ref.range)
        newtraj = PiecewiseTrajectory(first)
        for eff in self._effects:
            eff.append(newtraj)
        self._traj = newtraj

        status = self._status(config.iteration)
        self._history.append(status)
        logger.info("Iteration %d: chi2=%.4g ndof=%d active=%d pieces=%d",
                    status.iteration, status.chisq, status.ndof, status.nactive, len(newtraj))
        return status

    def fit(self, schedule: Optional[Sequence[MetaIterConfig]] = None) -> FitStatus:
        """Run one iteration per schedule entry; the default is a single plain iteration."""
        schedule = schedule if schedule is not None else self._config.schedule
        if not schedule:
            schedule = (MetaIterConfig(iteration=len(self._history)),)
        status = None
        for miconfig in schedule:
            status = self.iterate(miconfig)
        return status

    def _measurements(self) -> List[Measurement]:
        return [eff for eff in self._effects if isinstance(eff, Measurement)]

    def _status(self, iteration: int) -> FitStatus:
        active = [m for m in self._measurements() if m.is_active]
        ndof = sum(m.ndof for m in active) - NPARAMS
        return FitStatus(iteration, self.chisq(), ndof, len(active))

    def chisq(self, traj=None) -> float:
        """Total chi-squared of the active measurements against ``traj`` (default: the fit)."""
        traj = self._traj if traj is None else traj
        return float(sum(m.chisq(traj) for m in self._measurements() if m.is_active))

    def residuals_frame(self) -> pd.DataFrame:
        """One row per measurement with its residual against the current fit."""
        rows = []
        for meas in self._measurements():
            row = {"type": type(meas).__name__, "time": meas.time, "active": meas.is_active,
                   "ndof": meas.ndof, "chisq": meas.chisq(self._traj)}
            if isinstance(meas, WireHit):
                resid = meas.residual(self._traj)
                row.update(kind=resid.kind.value, ambig=meas.ambig.name, value=resid.value,
                           variance=resid.variance, pull=resid.pull)
            rows.append(row)
        return pd.DataFrame(rows)

    def __repr__(self) -> str:
        return (f"KinematicFit({len(self._effects)} effects, iterations={len(self._history)}, "
                f"traj={self._traj!r})")
