from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from kinkal_reco.trajectory import TimeRange

__all__ = ["DomainTuning", "range_in_tolerance", "split_domains"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DomainTuning:
    r"""
    Empirical step-search constants of the domain splitter.

    Attributes
    ----------
    initial_step : float
        Step (ns) used when the field is within ``min_field_diff`` of nominal.
    min_field_diff : float
        Field difference (T) below which the difference-based estimate is skipped.
    diff_scale : float
        Scale of the estimate :math:`\sqrt{\text{tol}/(s\,|\Delta B|)}`.
    grad_scale : float
        Scale of the estimate :math:`\sqrt[3]{\text{tol}/(s\,|\dot{\mathbf{B}}|)}`.
    """
    initial_step: float = 0.1
    min_field_diff: float = 1.0e-4
    diff_scale: float = 0.2
    grad_scale: float = 0.5

    def __post_init__(self) -> None:
        if self.initial_step <= 0.0:
            raise ValueError(f"initial_step must be positive, got {self.initial_step}")


def range_in_tolerance(traj,
                       bfield,
                       tlow: float,
                       tol: float,
                       tuning: Optional[DomainTuning] = None,
                       thigh: Optional[float] = None) -> TimeRange:
    r"""
    Extend a domain from ``tlow`` until field-inhomogeneity distortion reaches ``tol``.

    The position distortion is estimated as the running integral

    .. math::

        \delta x = \sum_k s\,(t_k - t_\text{low})\,\Delta t\,
                   \big|\mathbf{B}(\mathbf{x}(t_k)) - \mathbf{B}_\text{nom}\big|,
        \qquad s = \frac{v^2}{|\mathbf{B}_\text{nom}|\,\bar p},

    over equal steps :math:`\Delta t`. The step is the smaller of

    .. math::

        \Delta t_B = a\sqrt{\frac{\text{tol}}{s\,|\Delta B|}}, \qquad
        \Delta t_{\dot B} = b\sqrt[3]{\frac{\text{tol}}{s\,|(\nabla\mathbf{B})\,\mathbf{v}|}},

    evaluated at ``tlow`` (``initial_step`` replaces :math:`\Delta t_B` when the
    field is within ``min_field_diff`` of nominal).

    Parameters
    ----------
    traj : Helix
        Trajectory segment providing ``position``, ``velocity``, ``speed``,
        ``pbar``, ``bnom`` and ``range``.
    bfield : BField
        Field map.
    tlow : float
        Domain start (ns).
    tol : float
        Position distortion tolerance (mm).
    tuning : DomainTuning, optional
        Step-search constants.
    thigh : float, optional
        Upper bound for the domain; defaults to ``traj.range.high``.

    Returns
    -------
    TimeRange
        ``[tlow, high]`` with ``high`` clamped to the upper bound.

    Raises
    ------
    ValueError
        If the upper bound is infinite and the field at ``tlow`` differs from
        nominal or varies along the trajectory.
    """
    tuning = tuning or DomainTuning()
    tmax = traj.range.high if thigh is None else float(thigh)
    tlow = float(tlow)
    if tlow >= tmax:
        return TimeRange(tlow, tlow)

    bnom = traj.bnom(tlow)
    bn = float(np.linalg.norm(bnom))
    spd = traj.speed(tlow)
    sfac = spd * spd / (bn * traj.pbar)

    # step size from the initial difference from nominal and the local field change
    tpos = traj.position(tlow)
    db = float(np.linalg.norm(bfield.field_vect(tpos) - bnom))
    tstep = tuning.initial_step
    if db > tuning.min_field_diff:
        tstep = tuning.diff_scale * np.sqrt(tol / (sfac * db))
    dbdt = float(np.linalg.norm(bfield.field_deriv(tpos, traj.velocity(tlow))))
    if dbdt > 0.0:
        tstep = min(tstep, tuning.grad_scale * np.cbrt(tol / (sfac * dbdt)))

    if not np.isfinite(tmax):
        # no distortion can accumulate in a nominal, non-varying field
        if db == 0.0 and dbdt == 0.0:
            return TimeRange(tlow, tmax)
        raise ValueError("Cannot step an unbounded range through a non-nominal field")

    high = tlow
    dx = 0.0
    # advance till spatial distortion exceeds tolerance or the range limit is reached
    while True:
        high += tstep
        db = float(np.linalg.norm(bfield.field_vect(traj.position(high)) - bnom))
        dx += sfac * (high - tlow) * tstep * db
        if abs(dx) >= tol or high >= tmax:
            break
    high = min(high, tmax)
    logger.debug("Domain [%.6g, %.6g] step=%.3g distortion=%.3g", tlow, high, tstep, dx)
    return TimeRange(tlow, high)


def split_domains(traj,
                  bfield,
                  tol: float,
                  tuning: Optional[DomainTuning] = None,
                  trange: Optional[TimeRange] = None) -> List[TimeRange]:
    r"""
    Tile a trajectory's time range with contiguous field-tolerance domains.

    Parameters
    ----------
    traj : Helix
        Trajectory segment used to evaluate the distortion.
    bfield : BField
        Field map.
    tol : float
        Position distortion tolerance per domain (mm).
    tuning : DomainTuning, optional
    trange : TimeRange, optional
        Range to cover; defaults to ``traj.range``.

    Returns
    -------
    list of TimeRange
        Domains in time order; consecutive domains share their boundary and
        the union is ``trange``. A field equal to nominal everywhere yields a
        single domain.

    Raises
    ------
    ValueError
        If the range is unbounded or ``tol`` is not positive.
    """
    trange = trange or traj.range
    if not (np.isfinite(trange.low) and np.isfinite(trange.high)):
        raise ValueError(f"Cannot split an unbounded range [{trange.low}, {trange.high}]")
    if tol <= 0.0:
        raise ValueError(f"Tolerance must be positive, got {tol}")
    domains: List[TimeRange] = []
    tstart = trange.low
    while tstart < trange.high:
        drange = range_in_tolerance(traj, bfield, tstart, tol, tuning, thigh=trange.high)
        domains.append(drange)
        tstart = drange.high
    logger.debug("Split [%.6g, %.6g] into %d domains", trange.low, trange.high, len(domains))
    return domains
