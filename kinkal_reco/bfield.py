from __future__ import annotations

import abc
import logging
from typing import List

import numpy as np
from scipy.integrate import quad_vec

__all__ = [
    "C_LIGHT",
    "CBAR",
    "BField",
    "UniformBField",
    "CompositeBField",
    "GradBField",
]

logger = logging.getLogger(__name__)

# speed of light in mm/ns
C_LIGHT = 299.792458
# MeV/c to curvature radius (mm) for unit charge in 1 Tesla
CBAR = C_LIGHT / 1000.0


class BField(abc.ABC):
    r"""
    Magnetic field map interface consumed by the fit core.

    Positions are in mm, fields in Tesla. Field maps are shared, read-only
    resources: effects hold borrowed references, and the caller guarantees
    the map outlives every fit that uses it.

    Notes
    -----
    Subclasses implement :meth:`field_vect` and :meth:`field_grad`; the path
    integral :meth:`integrate` is provided in terms of those.
    """

    @abc.abstractmethod
    def field_vect(self, position: np.ndarray) -> np.ndarray:
        """Field vector :math:`\\mathbf{B}(\\mathbf{x})`, shape (3,)."""

    @abc.abstractmethod
    def field_grad(self, position: np.ndarray) -> np.ndarray:
        r"""Field gradient with ``grad[i, j]`` :math:`= \partial B_i/\partial x_j`, shape (3, 3)."""

    def field_deriv(self, position: np.ndarray, velocity: np.ndarray) -> np.ndarray:
        r"""Time derivative of the field seen along a path, :math:`(\nabla\mathbf{B})\,\mathbf{v}`."""
        return self.field_grad(position) @ np.asarray(velocity, dtype=np.float64)

    def integrate(self, traj, trange, epsrel: float = 1.0e-7) -> np.ndarray:
        r"""
        Momentum deviation accumulated over a time range from the difference
        between this field and the trajectory's nominal field.

        .. math::

            \Delta\mathbf{p} = \bar c\, q \int_{t_\text{low}}^{t_\text{high}}
                \mathbf{v}(t)\times\big(\mathbf{B}(\mathbf{x}(t)) - \mathbf{B}_\text{nom}\big)\,dt

        in MeV/c, evaluated adaptively with :func:`scipy.integrate.quad_vec`.

        Parameters
        ----------
        traj : Helix or PiecewiseTrajectory
            Trajectory providing ``position``, ``velocity``, ``bnom`` and ``charge``.
        trange : TimeRange
            Integration range.
        epsrel : float, optional
            Relative tolerance of the quadrature.

        Returns
        -------
        ndarray, shape (3,)
        """
        if trange.span <= 0.0:
            return np.zeros(3)

        def integrand(t: float) -> np.ndarray:
            dbvec = self.field_vect(traj.position(t)) - traj.bnom(t)
            return np.cross(traj.velocity(t), dbvec)

        res, err = quad_vec(integrand, trange.low, trange.high, epsabs=1.0e-12, epsrel=epsrel)
        logger.debug("Integrated field deviation over [%.6g, %.6g]: err=%.3g", trange.low, trange.high, err)
        return CBAR * traj.charge * np.asarray(res, dtype=np.float64)


class UniformBField(BField):
    """Constant field; a scalar is taken along :math:`z`."""

    __slots__ = ("_fvec",)

    def __init__(self, bnom) -> None:
        if np.ndim(bnom) == 0:
            self._fvec = np.array([0.0, 0.0, float(bnom)])
        else:
            self._fvec = np.asarray(bnom, dtype=np.float64).reshape(3).copy()

    def field_vect(self, position: np.ndarray) -> np.ndarray:
        return self._fvec.copy()

    def field_grad(self, position: np.ndarray) -> np.ndarray:
        return np.zeros((3, 3))


class CompositeBField(BField):
    """Superposition of borrowed field maps."""

    __slots__ = ("_fields",)

    def __init__(self, *fields: BField) -> None:
        self._fields: List[BField] = list(fields)

    def add_field(self, field: BField) -> None:
        self._fields.append(field)

    def field_vect(self, position: np.ndarray) -> np.ndarray:
        fvec = np.zeros(3)
        for field in self._fields:
            fvec += field.field_vect(position)
        return fvec

    def field_grad(self, position: np.ndarray) -> np.ndarray:
        fgrad = np.zeros((3, 3))
        for field in self._fields:
            fgrad += field.field_grad(position)
        return fgrad


class GradBField(BField):
    r"""
    Axial field changing linearly from ``b0`` at ``z = zg0`` to ``b1`` at
    ``z = zg1`` and constant outside. Inside the gradient region the radial
    components :math:`B_{x,y} = -\tfrac12 g\,(x, y)` keep the field
    divergence-free.
    """

    __slots__ = ("_b0", "_b1", "_z0", "_z1", "_grad")

    def __init__(self, b0: float, b1: float, zg0: float, zg1: float) -> None:
        if zg1 <= zg0:
            raise ValueError(f"Gradient region must have zg1 > zg0, got [{zg0}, {zg1}]")
        self._b0 = float(b0)
        self._b1 = float(b1)
        self._z0 = float(zg0)
        self._z1 = float(zg1)
        # Tesla/mm
        self._grad = (self._b1 - self._b0) / (self._z1 - self._z0)

    @property
    def gradient(self) -> float:
        return self._grad

    def field_vect(self, position: np.ndarray) -> np.ndarray:
        x, y, z = np.asarray(position, dtype=np.float64)
        if z < self._z0:
            return np.array([0.0, 0.0, self._b0])
        if z > self._z1:
            return np.array([0.0, 0.0, self._b1])
        bz = self._b0 + self._grad * (z - self._z0)
        return np.array([-0.5 * self._grad * x, -0.5 * self._grad * y, bz])

    def field_grad(self, position: np.ndarray) -> np.ndarray:
        z = float(np.asarray(position, dtype=np.float64)[2])
        if self._z0 < z < self._z1:
            return np.diag([-0.5 * self._grad, -0.5 * self._grad, self._grad])
        return np.zeros((3, 3))
