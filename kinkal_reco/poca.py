from __future__ import annotations

import logging
from typing import Optional

import numpy as np
from scipy.optimize import newton

from kinkal_reco.errors import GeometricSolveFailure

__all__ = ["ClosestApproach"]

logger = logging.getLogger(__name__)

# sine of the angle below which the two directions are considered parallel
_PARALLEL_TOL = 1.0e-8
# samples of the coarse scan used when no hint is supplied
_NSCAN = 201


class ClosestApproach:
    r"""
    Point of closest approach (POCA) between a particle trajectory and a line.

    At the solution both stationarity conditions hold,

    .. math::

        g_1 = \boldsymbol{\Delta}\cdot\mathbf{v}_p(t_p) = 0, \qquad
        g_2 = \boldsymbol{\Delta}\cdot\mathbf{v}_s = 0, \qquad
        \boldsymbol{\Delta} = \mathbf{x}_p(t_p) - \mathbf{x}_s(t_s).

    :math:`g_2` is solved for :math:`t_s` in closed form, which reduces the
    problem to a one-dimensional root of :math:`g_1(t_p)` found with
    :func:`scipy.optimize.newton` using the analytic derivative

    .. math::

        g_1'(t_p) = (\mathbf{P}\mathbf{v}_p)\cdot\mathbf{v}_p + \boldsymbol{\Delta}\cdot\mathbf{a}_p,
        \qquad \mathbf{P} = \mathbf{I} - \hat{\mathbf{v}}_s\hat{\mathbf{v}}_s^\top.

    The signed distance is :math:`d = \boldsymbol{\Delta}\cdot\hat{\mathbf{n}}` with
    :math:`\hat{\mathbf{n}} = \widehat{\mathbf{v}_p\times\mathbf{v}_s}`, and the
    time difference is :math:`\Delta t = t_s - t_p`.

    Parameters
    ----------
    traj : Helix or PiecewiseTrajectory
        Particle trajectory; must provide ``position``, ``velocity``,
        ``acceleration``, ``position_jacobian`` and ``velocity_jacobian``.
    line : Line
        Sensor trajectory.
    hint : float, optional
        Starting particle time. Without a hint the particle range is scanned
        for local distance minima and the closest one is refined.
    tolerance : float, optional
        Newton step tolerance (ns).
    max_iterations : int, optional

    Notes
    -----
    The result is unusable when the solve does not converge or the two
    directions are parallel; every accessor except :attr:`usable` then
    raises :class:`~kinkal_reco.errors.GeometricSolveFailure`.
    """

    __slots__ = ("_traj", "_line", "_usable", "_tp", "_ts", "_ppoint", "_spoint",
                 "_delta", "_dirn", "_ddoca", "_dtdp")

    def __init__(self,
                 traj,
                 line,
                 hint: Optional[float] = None,
                 tolerance: float = 1.0e-9,
                 max_iterations: int = 50) -> None:
        self._traj = traj
        self._line = line
        self._usable = False
        self._tp = self._ts = float("nan")
        self._ppoint = self._spoint = self._delta = self._dirn = None
        self._ddoca = self._dtdp = None

        t_start = self._initial_time() if hint is None else float(hint)
        try:
            tp = float(newton(self._g1, t_start, fprime=self._g1_deriv,
                              tol=tolerance, maxiter=max_iterations))
        except (RuntimeError, ZeroDivisionError) as exc:
            logger.debug("POCA solve failed from t=%.6g: %s", t_start, exc)
            return
        if not np.isfinite(tp):
            return

        ppoint = traj.position(tp)
        ts = self._line_time(ppoint)
        spoint = line.position(ts)
        vp = traj.velocity(tp)
        vs = line.velocity(ts)
        cross = np.cross(vp, vs)
        if np.linalg.norm(cross) <= _PARALLEL_TOL * np.linalg.norm(vp) * np.linalg.norm(vs):
            logger.debug("POCA unusable: particle and line directions are parallel")
            return

        self._tp, self._ts = tp, ts
        self._ppoint, self._spoint = ppoint, spoint
        self._delta = ppoint - spoint
        self._dirn = cross / np.linalg.norm(cross)
        self._derivatives(vp, vs)
        self._usable = True

    def _initial_time(self) -> float:
        # scan for local minima of the distance (g1 rising through zero) and keep the closest
        trange = self._traj.range
        if not (np.isfinite(trange.low) and np.isfinite(trange.high)):
            return self._line.t0
        times = np.linspace(trange.low, trange.high, _NSCAN)
        g1 = np.array([self._g1(t) for t in times])
        dist = np.array([np.linalg.norm(self._perp(self._traj.position(t))) for t in times])
        best_t = float(times[int(np.argmin(dist))])
        best_d = float(dist.min())
        for i in np.flatnonzero((g1[:-1] < 0.0) & (g1[1:] >= 0.0)):
            tcand = times[i] - g1[i] * (times[i + 1] - times[i]) / (g1[i + 1] - g1[i])
            dcand = float(np.linalg.norm(self._perp(self._traj.position(tcand))))
            if dcand < best_d:
                best_t, best_d = float(tcand), dcand
        return best_t

    def _line_time(self, point: np.ndarray) -> float:
        vs = self._line.velocity()
        t0 = self._line.t0
        return t0 + float(np.dot(point - self._line.position(t0), vs)) / float(np.dot(vs, vs))

    def _perp(self, point: np.ndarray) -> np.ndarray:
        return point - self._line.position(self._line_time(point))

    def _g1(self, tp: float) -> float:
        return float(np.dot(self._perp(self._traj.position(tp)), self._traj.velocity(tp)))

    def _g1_deriv(self, tp: float) -> float:
        vp = self._traj.velocity(tp)
        delta = self._perp(self._traj.position(tp))
        sdir = self._line.direction()
        pvp = vp - sdir * np.dot(sdir, vp)
        return float(np.dot(pvp, vp) + np.dot(delta, self._traj.acceleration(tp)))

    def _derivatives(self, vp: np.ndarray, vs: np.ndarray) -> None:
        # implicit differentiation of both stationarity conditions
        jx = self._traj.position_jacobian(self._tp)
        jv = self._traj.velocity_jacobian(self._tp)
        ap = self._traj.acceleration(self._tp)
        amat = np.array([[np.dot(vp, vp) + np.dot(self._delta, ap), -np.dot(vs, vp)],
                         [np.dot(vp, vs), -np.dot(vs, vs)]])
        bmat = np.vstack([jx.T @ vp + jv.T @ self._delta, jx.T @ vs])
        dtimes = -np.linalg.solve(amat, bmat)
        self._dtdp = dtimes[1] - dtimes[0]
        # the delta is along the normal, so only the particle position moves the distance
        self._ddoca = self._dirn @ jx

    def _check(self) -> None:
        if not self._usable:
            raise GeometricSolveFailure("POCA failure")

    @property
    def usable(self) -> bool:
        return self._usable

    @property
    def doca(self) -> float:
        self._check()
        return float(np.dot(self._delta, self._dirn))

    @property
    def delta(self) -> np.ndarray:
        self._check()
        return self._delta.copy()

    @property
    def direction(self) -> np.ndarray:
        """Unit normal :math:`\\hat{\\mathbf{n}}` defining the sign of the distance."""
        self._check()
        return self._dirn.copy()

    @property
    def delta_t(self) -> float:
        self._check()
        return self._ts - self._tp

    @property
    def particle_time(self) -> float:
        self._check()
        return self._tp

    @property
    def sensor_time(self) -> float:
        self._check()
        return self._ts

    @property
    def particle_point(self) -> np.ndarray:
        self._check()
        return self._ppoint.copy()

    @property
    def sensor_point(self) -> np.ndarray:
        self._check()
        return self._spoint.copy()

    @property
    def dDdP(self) -> np.ndarray:
        r"""Gradient of the signed distance with respect to the particle parameters."""
        self._check()
        return self._ddoca.copy()

    @property
    def dTdP(self) -> np.ndarray:
        r"""Gradient of :math:`\Delta t` with respect to the particle parameters."""
        self._check()
        return self._dtdp.copy()

    def __repr__(self) -> str:
        if not self._usable:
            return "ClosestApproach(unusable)"
        return (f"ClosestApproach(doca={self.doca:.6g}, tp={self._tp:.6g}, "
                f"ts={self._ts:.6g})")
