r"""
Synthetic events for demonstrations and tests.

A toy event is a true trajectory (a single helix, or a piecewise helix that
follows a non-uniform field), a set of drift-wire hits sampled along it,
and a seed helix obtained by smearing the truth.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from kinkal_reco.bfield import UniformBField
from kinkal_reco.d2t import ConstantD2T
from kinkal_reco.domains import split_domains
from kinkal_reco.effects.wire_hit import LRAmbig, WireHit
from kinkal_reco.helix import Helix
from kinkal_reco.line import Line
from kinkal_reco.params import ParamData
from kinkal_reco.trajectory import PiecewiseTrajectory, TimeRange

__all__ = [
    "MUON_MASS",
    "ToyEvent",
    "make_helix",
    "follow_field",
    "make_wire_hits",
    "smear_helix",
    "generate_event",
]

logger = logging.getLogger(__name__)

MUON_MASS = 105.66  # MeV/c^2


@dataclass
class ToyEvent:
    truth: PiecewiseTrajectory
    seed: Helix
    hits: List[WireHit]


def make_helix(momentum: float = 100.0,
               costheta: float = 0.7,
               azimuth: float = 0.5,
               charge: int = -1,
               mass: float = MUON_MASS,
               bnom=1.0,
               origin: Sequence[float] = (0.0, 0.0, 0.0, 0.0),
               trange: Optional[TimeRange] = None) -> Helix:
    r"""
    Helix from a momentum magnitude and direction at ``origin``.

    The direction is :math:`(\sin\theta\cos\phi, \sin\theta\sin\phi, \cos\theta)`.
    """
    sint = np.sqrt(1.0 - costheta * costheta)
    mom = momentum * np.array([sint * np.cos(azimuth), sint * np.sin(azimuth), costheta])
    return Helix(np.asarray(origin, dtype=np.float64), np.append(mom, mass), charge, bnom, trange)


def follow_field(helix: Helix, bfield, tol: float = 0.1) -> PiecewiseTrajectory:
    """
    Piecewise helix tracking a non-uniform field: at the end of every
    tolerance domain the momentum is kicked by the integrated field deviation.
    """
    traj = PiecewiseTrajectory(helix)
    for domain in split_domains(helix, bfield, tol)[:-1]:
        piece = traj.back
        dp = bfield.integrate(piece, domain)
        tnext = domain.high
        mom4 = np.append(piece.momentum(tnext) + dp, piece.mass)
        traj.append(Helix(piece.pos4(tnext), mom4, piece.charge, piece.bnom(tnext),
                          TimeRange(tnext, helix.range.high)))
    logger.debug("Truth trajectory has %d pieces", len(traj))
    return traj


def make_wire_hits(traj,
                   nhits: int,
                   rng: np.random.Generator,
                   bfield,
                   d2t: Optional[ConstantD2T] = None,
                   cell_size: float = 2.5,
                   max_doca: float = 2.0,
                   signal_speed: float = 250.0,
                   smear: bool = True,
                   true_ambig: bool = False) -> List[WireHit]:
    r"""
    Drift-wire hits evenly spaced in time along ``traj``.

    Wires are transverse to the :math:`z` axis, at :math:`45^\circ` to
    :math:`135^\circ` in azimuth from the particle's transverse direction, so
    each crosses the trajectory once. Each wire passes at a random signed
    distance :math:`d\in[-d_\text{max}, d_\text{max}]`: with
    :math:`\hat{\mathbf{n}}=\widehat{\mathbf{v}\times\hat{\mathbf{w}}}` it goes
    through :math:`\mathbf{x}(t)-d\,\hat{\mathbf{n}}`, where the measured time is
    :math:`t + |d|/v_\text{drift}` (plus Gaussian smearing).

    Hits start with a null ambiguity, or with the true one if ``true_ambig``.
    """
    d2t = d2t or ConstantD2T(0.05, 9.0)
    trange = traj.range
    # keep clear of the range ends so the closest approach stays inside
    times = np.linspace(trange.low, trange.high, nhits + 2)[1:-1]
    hits: List[WireHit] = []
    for time in times:
        pos = traj.position(time)
        vel = traj.velocity(time)
        vdir = vel / np.linalg.norm(vel)
        azimuth = np.arctan2(vel[1], vel[0]) + rng.choice([-1.0, 1.0]) * rng.uniform(0.25, 0.75) * np.pi
        wdir = np.array([np.cos(azimuth), np.sin(azimuth), 0.0])
        ndir = np.cross(vdir, wdir)
        ndir /= np.linalg.norm(ndir)
        doca = float(rng.uniform(-max_doca, max_doca))
        wpos = pos - doca * ndir
        tmeas = time + abs(doca) / d2t.vdrift
        if smear:
            tmeas += float(rng.normal(0.0, np.sqrt(d2t.tvar)))
        line = Line(wpos, signal_speed * wdir, tmeas)
        ambig = LRAmbig.NULL
        if true_ambig:
            ambig = LRAmbig.RIGHT if doca > 0.0 else LRAmbig.LEFT
        hits.append(WireHit(line, d2t, bfield, cell_size, ambig))
    return hits


def smear_helix(helix: Helix, sigmas: Sequence[float], rng: np.random.Generator) -> Helix:
    """Seed helix with Gaussian-smeared parameters and zero covariance."""
    sigmas = np.asarray(sigmas, dtype=np.float64)
    pars = helix.params.parameters + rng.normal(size=sigmas.size) * sigmas
    return helix.with_params(ParamData(pars))


def generate_event(nhits: int = 40,
                   rng: Optional[np.random.Generator] = None,
                   bfield=None,
                   tmax: float = 60.0,
                   seed_sigmas: Sequence[float] = (2.0, 2.0, 2.0, 2.0, 0.02, 0.5),
                   **helix_kwargs) -> ToyEvent:
    """Truth, hits and a smeared seed for a single toy particle."""
    rng = rng if rng is not None else np.random.default_rng()
    helix = make_helix(trange=TimeRange(0.0, tmax), **helix_kwargs)
    bfield = bfield if bfield is not None else UniformBField(helix.bnom())
    truth = follow_field(helix, bfield)
    hits = make_wire_hits(truth, nhits, rng, bfield)
    seed = smear_helix(helix, seed_sigmas, rng)
    logger.info("Generated toy event: %d hits, %d truth pieces", len(hits), len(truth))
    return ToyEvent(truth, seed, hits)
