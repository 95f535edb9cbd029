from __future__ import annotations

import logging
from enum import IntEnum
from typing import Optional, Union

import numpy as np
import pandas as pd
from scipy.spatial.transform import Rotation

from kinkal_reco.bfield import CBAR, C_LIGHT
from kinkal_reco.domains import range_in_tolerance as _range_in_tolerance
from kinkal_reco.errors import ConstructionInconsistency, InvalidBasisDirection
from kinkal_reco.kernels import similarity
from kinkal_reco.params import NPARAMS, ParamData
from kinkal_reco.trajectory import LocalDir, TimeRange

__all__ = [
    "ParamIndex",
    "PARAM_NAMES",
    "PARAM_UNITS",
    "PARAM_TITLES",
    "TRAJ_NAME",
    "Helix",
]

logger = logging.getLogger(__name__)

TWO_PI = 2.0 * np.pi

# consistency tolerance between construction inputs and reconstructed state
_CONSISTENCY_TOL = 1.0e-5


class ParamIndex(IntEnum):
    RAD = 0
    LAM = 1
    CX = 2
    CY = 3
    PHI0 = 4
    T0 = 5


PARAM_NAMES = ("Radius", "Lambda", "CenterX", "CenterY", "Phi0", "Time0")
PARAM_UNITS = ("mm", "mm", "mm", "mm", "radians", "ns")
PARAM_TITLES = (
    "Transverse Radius",
    "Longitudinal Wavelength",
    "Cylinder Center X",
    "Cylinder Center Y",
    "Azimuth at Z=0 Plane",
    "Time at Z=0 Plane",
)
TRAJ_NAME = "LHelix"


def _field_vector(bnom: Union[float, np.ndarray]) -> np.ndarray:
    if np.ndim(bnom) == 0:
        return np.array([0.0, 0.0, float(bnom)])
    return np.asarray(bnom, dtype=np.float64).reshape(3).copy()


def _global_to_local(bvec: np.ndarray) -> np.ndarray:
    r"""
    Rotation taking the nominal field direction onto :math:`+\hat z`.

    The rotation axis is :math:`(\sin\phi_B, -\cos\phi_B, 0)` and the angle is
    the polar angle :math:`\theta_B` of the field.
    """
    bmag = float(np.linalg.norm(bvec))
    theta = float(np.arccos(np.clip(bvec[2] / bmag, -1.0, 1.0)))
    phi = float(np.arctan2(bvec[1], bvec[0]))
    axis = np.array([np.sin(phi), -np.cos(phi), 0.0])
    return Rotation.from_rotvec(axis * theta).as_matrix()


class Helix:
    r"""
    Looping helix in a uniform nominal field: the trajectory segment of the fit.

    The six parameters, expressed in a local frame whose :math:`z` axis is
    along the nominal field :math:`\mathbf{B}_\text{nom}`, are

    ========  =====  =========================================
    index     unit   meaning
    ========  =====  =========================================
    Radius    mm     signed transverse radius :math:`R`
    Lambda    mm     signed longitudinal wavelength :math:`\lambda`
    CenterX   mm     circle center :math:`c_x`
    CenterY   mm     circle center :math:`c_y`
    Phi0      rad    azimuth at the :math:`z=0` plane
    Time0     ns     time at the :math:`z=0` plane
    ========  =====  =========================================

    With :math:`\omega = c\,\mathrm{sign}(\bar m)/\bar E` and
    :math:`\phi(t)=\omega(t-t_0)+\phi_0`, the local position is

    .. math::

        \mathbf{x}(t) = \big(c_x + R\sin\phi,\; c_y - R\cos\phi,\; \lambda\,\omega(t-t_0)\big).

    Momenta are measured in *mm* (:math:`\bar p = \sqrt{R^2+\lambda^2}`) using
    the reduced mass :math:`\bar m = -m/(\bar c\,q\,|B|)`, whose sign carries
    the bending direction.

    Parameters
    ----------
    pos4 : array_like, shape (4,)
        Initial position and time ``(x, y, z, t)`` in mm and ns.
    mom4 : array_like, shape (4,)
        Initial momentum and mass ``(px, py, pz, m)`` in MeV/c and MeV/c^2.
    charge : int
        Charge in units of the proton charge.
    bnom : float or array_like, shape (3,)
        Nominal field in Tesla; a scalar is taken along :math:`z`.
    trange : TimeRange, optional
        Validity range (unbounded if omitted).

    Raises
    ------
    ConstructionInconsistency
        If the frame rotation fails, the inputs are degenerate (zero charge,
        field, mass or longitudinal momentum), or the position/momentum
        reconstructed at the reference time deviates from the inputs by more
        than ``1e-5``.
    """

    __slots__ = ("_range", "_pars", "_mass", "_charge", "_mbar", "_bnom", "_l2g", "_g2l")

    def __init__(self,
                 pos4: np.ndarray,
                 mom4: np.ndarray,
                 charge: int,
                 bnom: Union[float, np.ndarray],
                 trange: Optional[TimeRange] = None) -> None:
        pos4 = np.asarray(pos4, dtype=np.float64).reshape(4)
        mom4 = np.asarray(mom4, dtype=np.float64).reshape(4)
        self._bnom = _field_vector(bnom)
        self._mass = float(mom4[3])
        self._charge = int(charge)
        self._range = trange if trange is not None else TimeRange()

        bmag = float(np.linalg.norm(self._bnom))
        if bmag <= 0.0 or self._charge == 0 or self._mass <= 0.0:
            raise ConstructionInconsistency(
                f"Degenerate helix inputs: |B|={bmag}, charge={self._charge}, mass={self._mass}"
            )

        # rotate into the frame where the field is along z
        self._g2l = _global_to_local(self._bnom)
        self._l2g = self._g2l.T
        blocal = self._g2l @ self._bnom
        if np.hypot(blocal[0], blocal[1]) > 1.0e-6 * bmag or blocal[2] <= 0.0:
            raise ConstructionInconsistency("Rotation Error")
        pos = self._g2l @ pos4[:3]
        mom = self._g2l @ mom4[:3]
        time = float(pos4[3])

        pt = float(np.hypot(mom[0], mom[1]))
        phibar = float(np.arctan2(mom[1], mom[0]))
        # MeV/c to curvature radius in mm; signed by the charge
        mom_to_rad = 1.0 / (CBAR * self._charge * bmag)
        # reduced mass; note sign convention
        self._mbar = -self._mass * mom_to_rad
        lam = -mom[2] * mom_to_rad
        if lam == 0.0:
            raise ConstructionInconsistency("Zero longitudinal momentum: time reference undefined")

        pars = np.zeros(NPARAMS)
        pars[ParamIndex.RAD] = -pt * mom_to_rad
        pars[ParamIndex.LAM] = lam
        self._pars = ParamData(pars)
        om = self.omega
        t0 = time - pos[2] / (om * lam)
        # winding that puts phi0 in the range -pi, pi
        nwind = np.rint((pos[2] / lam - phibar) / TWO_PI)
        pars[ParamIndex.T0] = t0
        pars[ParamIndex.PHI0] = phibar - om * (time - t0) + TWO_PI * nwind
        pars[ParamIndex.CX] = pos[0] + mom[1] * mom_to_rad
        pars[ParamIndex.CY] = pos[1] - mom[0] * mom_to_rad
        self._pars = ParamData(pars)

        dp = self.position(time) - pos4[:3]
        dm = self.momentum(time) - mom4[:3]
        if np.linalg.norm(dp) > _CONSISTENCY_TOL or np.linalg.norm(dm) > _CONSISTENCY_TOL:
            raise ConstructionInconsistency(
                f"Helix reconstruction mismatch: |dpos|={np.linalg.norm(dp):.3g}, "
                f"|dmom|={np.linalg.norm(dm):.3g}"
            )

    def _clone(self) -> "Helix":
        new = Helix.__new__(Helix)
        for slot in Helix.__slots__:
            setattr(new, slot, getattr(self, slot))
        return new

    def with_params(self, pdata: ParamData) -> "Helix":
        """Copy of this helix with the parameters (and covariance) overridden."""
        new = self._clone()
        new._pars = pdata.copy()
        return new

    def with_range(self, trange: TimeRange) -> "Helix":
        new = self._clone()
        new._range = trange
        return new

    def invert_ct(self) -> "Helix":
        r"""
        Flip the helix in charge and time; it is unchanged geometrically, so
        ``h.invert_ct().position(-t) == h.position(t)``.
        """
        new = self._clone()
        new._mbar = -self._mbar
        new._charge = -self._charge
        pars = self._pars.copy()
        pars.parameters[ParamIndex.T0] *= -1.0
        new._pars = pars
        new._range = TimeRange(-self._range.high, -self._range.low)
        return new

    # direct accessors
    @property
    def params(self) -> ParamData:
        return self._pars

    def param_val(self, index: int) -> float:
        return float(self._pars.parameters[index])

    @property
    def range(self) -> TimeRange:
        return self._range

    def in_range(self, time: float) -> bool:
        return self._range.in_range(time)

    def nearest_piece(self, time: float) -> "Helix":
        """A single segment is its own nearest piece."""
        return self

    @property
    def mass(self) -> float:
        return self._mass

    @property
    def charge(self) -> int:
        return self._charge

    def bnom(self, time: Optional[float] = None) -> np.ndarray:
        return self._bnom

    @property
    def rad(self) -> float:
        return float(self._pars.parameters[ParamIndex.RAD])

    @property
    def lam(self) -> float:
        return float(self._pars.parameters[ParamIndex.LAM])

    @property
    def cx(self) -> float:
        return float(self._pars.parameters[ParamIndex.CX])

    @property
    def cy(self) -> float:
        return float(self._pars.parameters[ParamIndex.CY])

    @property
    def phi0(self) -> float:
        return float(self._pars.parameters[ParamIndex.PHI0])

    @property
    def t0(self) -> float:
        return float(self._pars.parameters[ParamIndex.T0])

    # derived quantities
    @property
    def sign(self) -> float:
        """Combined bending sign of the charge and the field."""
        return float(np.copysign(1.0, self._mbar))

    @property
    def pbar2(self) -> float:
        return self.rad * self.rad + self.lam * self.lam

    @property
    def pbar(self) -> float:
        return float(np.sqrt(self.pbar2))

    @property
    def ebar2(self) -> float:
        return self.pbar2 + self._mbar * self._mbar

    @property
    def ebar(self) -> float:
        return float(np.sqrt(self.ebar2))

    @property
    def mbar(self) -> float:
        return self._mbar

    @property
    def reduced_charge(self) -> float:
        r"""Charge scaled by the nominal field, :math:`m/\bar m = -\bar c\,q\,|B|` (not the charge)."""
        return self._mass / self._mbar

    @property
    def omega(self) -> float:
        """Angular velocity; the sign follows the magnetic force."""
        return C_LIGHT * self.sign / self.ebar

    @property
    def beta(self) -> float:
        return self.pbar / self.ebar

    @property
    def gamma(self) -> float:
        return abs(self.ebar / self._mbar)

    @property
    def beta_gamma(self) -> float:
        return abs(self.pbar / self._mbar)

    def dphi(self, time: float) -> float:
        return self.omega * (time - self.t0)

    def phi(self, time: float) -> float:
        return self.dphi(time) + self.phi0

    def ztime(self, zpos: float) -> float:
        return self.t0 + zpos / (self.omega * self.lam)

    def zphi(self, zpos: float) -> float:
        return zpos / self.lam + self.phi0

    def speed(self, time: Optional[float] = None) -> float:
        return C_LIGHT * self.beta

    def momentum_mag(self, time: Optional[float] = None) -> float:
        return abs(self._mass * self.beta_gamma)

    def energy(self, time: Optional[float] = None) -> float:
        return abs(self._mass * self.ebar / self._mbar)

    def momentum_var(self, time: Optional[float] = None) -> float:
        """Variance of the momentum magnitude propagated from the parameter covariance."""
        dmdp = np.array([self.rad, self.lam, 0.0, 0.0, 0.0, 0.0])
        dmdp *= self._mass / (self.pbar * self._mbar)
        return similarity(dmdp, self._pars.covariance)

    # kinematics
    def position(self, time: float) -> np.ndarray:
        df = self.dphi(time)
        phival = df + self.phi0
        local = np.array([self.cx + self.rad * np.sin(phival),
                          self.cy - self.rad * np.cos(phival),
                          df * self.lam])
        return self._l2g @ local

    def pos4(self, time: float) -> np.ndarray:
        return np.append(self.position(time), float(time))

    def velocity(self, time: float) -> np.ndarray:
        return self.direction(time) * self.speed(time)

    def acceleration(self, time: float) -> np.ndarray:
        phival = self.phi(time)
        om = self.omega
        local = om * om * self.rad * np.array([-np.sin(phival), np.cos(phival), 0.0])
        return self._l2g @ local

    def momentum(self, time: float) -> np.ndarray:
        return self.direction(time) * (self.beta_gamma * self._mass)

    def direction(self, time: float, mdir: LocalDir = LocalDir.MOM) -> np.ndarray:
        r"""
        Unit vector of the local basis at ``time``.

        Parameters
        ----------
        time : float
        mdir : LocalDir
            ``MOM`` (along the momentum), ``PERP`` (polar bend direction) or
            ``PHI`` (azimuthal bend direction, perpendicular to the field).

        Raises
        ------
        InvalidBasisDirection
            For any other direction.
        """
        phival = self.phi(time)
        invpb = self.sign / self.pbar
        if mdir == LocalDir.PERP:
            local = np.array([self.lam * np.cos(phival) * invpb,
                              self.lam * np.sin(phival) * invpb,
                              -self.rad * invpb])
        elif mdir == LocalDir.PHI:
            local = np.array([-np.sin(phival), np.cos(phival), 0.0])
        elif mdir == LocalDir.MOM:
            local = np.array([self.rad * np.cos(phival) * invpb,
                              self.rad * np.sin(phival) * invpb,
                              self.lam * invpb])
        else:
            raise InvalidBasisDirection(f"Invalid direction {mdir!r}")
        return self._l2g @ local

    def mom_deriv(self, time: float, mdir: LocalDir) -> np.ndarray:
        r"""
        Derivatives of the parameters with respect to a fractional momentum
        change along a local basis direction.

        For a change :math:`\delta\mathbf{p} = \epsilon\,|\mathbf{p}|\,\hat{\mathbf{u}}`,
        with :math:`\hat{\mathbf{u}}` = :meth:`direction`\ ``(time, mdir)``, the
        parameters change by :math:`\epsilon` times the returned vector, while
        the position at ``time`` is unchanged to first order.

        - ``PERP``: polar bending; momentum magnitude and position unchanged.
        - ``PHI``: azimuthal bending; ``Radius``, ``Lambda`` and ``Time0`` unchanged.
        - ``MOM``: fractional momentum change; position and direction unchanged.

        Returns
        -------
        ndarray, shape (6,)

        Raises
        ------
        InvalidBasisDirection
            For an unrecognized direction.
        """
        bval = self.beta
        omval = self.omega
        pb = self.pbar * self.sign
        rad, lam = self.rad, self.lam
        dt = time - self.t0
        phival = omval * dt + self.phi0
        pder = np.zeros(NPARAMS)
        if mdir == LocalDir.PERP:
            pder[ParamIndex.RAD] = lam
            pder[ParamIndex.LAM] = -rad
            pder[ParamIndex.T0] = -dt * rad / lam
            pder[ParamIndex.PHI0] = -omval * dt * rad / lam
            pder[ParamIndex.CX] = -lam * np.sin(phival)
            pder[ParamIndex.CY] = lam * np.cos(phival)
        elif mdir == LocalDir.PHI:
            pder[ParamIndex.PHI0] = pb / rad
            pder[ParamIndex.CX] = -pb * np.cos(phival)
            pder[ParamIndex.CY] = -pb * np.sin(phival)
        elif mdir == LocalDir.MOM:
            pder[ParamIndex.RAD] = rad
            pder[ParamIndex.LAM] = lam
            pder[ParamIndex.T0] = dt * (1.0 - bval * bval)
            pder[ParamIndex.PHI0] = omval * dt
            pder[ParamIndex.CX] = -rad * np.sin(phival)
            pder[ParamIndex.CY] = rad * np.cos(phival)
        else:
            raise InvalidBasisDirection(f"Invalid direction {mdir!r}")
        return pder

    def _phase_derivs(self, time: float):
        # d(omega)/d(rad, lam) and the phase advance; mbar is not a parameter
        om = self.omega
        eb2 = self.ebar2
        dt = time - self.t0
        om_r = -om * self.rad / eb2
        om_l = -om * self.lam / eb2
        return om, dt, om_r, om_l

    def position_jacobian(self, time: float) -> np.ndarray:
        r"""
        Closed-form :math:`\partial\mathbf{x}(t)/\partial\mathbf{p}` at fixed time.

        Returns
        -------
        ndarray, shape (3, 6)
        """
        om, dt, om_r, om_l = self._phase_derivs(time)
        rad, lam = self.rad, self.lam
        df = om * dt
        phival = df + self.phi0
        s, c = np.sin(phival), np.cos(phival)
        phi_r, phi_l = om_r * dt, om_l * dt
        jac = np.zeros((3, NPARAMS))
        jac[0] = [s + rad * c * phi_r, rad * c * phi_l, 1.0, 0.0, rad * c, -om * rad * c]
        jac[1] = [-c + rad * s * phi_r, rad * s * phi_l, 0.0, 1.0, rad * s, -om * rad * s]
        jac[2] = [lam * phi_r, df + lam * phi_l, 0.0, 0.0, 0.0, -om * lam]
        return self._l2g @ jac

    def velocity_jacobian(self, time: float) -> np.ndarray:
        r"""
        Closed-form :math:`\partial\mathbf{v}(t)/\partial\mathbf{p}` at fixed time.

        Returns
        -------
        ndarray, shape (3, 6)
        """
        om, dt, om_r, om_l = self._phase_derivs(time)
        rad, lam = self.rad, self.lam
        phival = om * dt + self.phi0
        s, c = np.sin(phival), np.cos(phival)
        phi_r, phi_l = om_r * dt, om_l * dt
        vdir = np.array([rad * c, rad * s, lam])
        bend = om * np.array([-rad * s, rad * c, 0.0])
        jac = np.zeros((3, NPARAMS))
        jac[:, ParamIndex.RAD] = om_r * vdir + om * np.array([c - rad * s * phi_r, s + rad * c * phi_r, 0.0])
        jac[:, ParamIndex.LAM] = om_l * vdir + om * np.array([-rad * s * phi_l, rad * c * phi_l, 1.0])
        jac[:, ParamIndex.PHI0] = bend
        jac[:, ParamIndex.T0] = -om * bend
        return self._l2g @ jac

    def range_in_tolerance(self, tlow: float, bfield, tol: float, tuning=None) -> TimeRange:
        """Domain starting at ``tlow`` over which field distortion stays within ``tol``."""
        return _range_in_tolerance(self, bfield, tlow, tol, tuning)

    def to_series(self) -> pd.Series:
        return pd.Series(self._pars.parameters.copy(), index=list(PARAM_NAMES), name=TRAJ_NAME)

    def __repr__(self) -> str:
        pars = ", ".join(f"{n}={v:.6g}" for n, v in zip(PARAM_NAMES, self._pars.parameters))
        return (f"Helix({pars}, range=[{self._range.low:.6g}, {self._range.high:.6g}], "
                f"bnom={self._bnom.tolist()})")
