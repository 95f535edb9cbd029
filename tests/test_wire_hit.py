import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import numpy as np
import pytest

from kinkal_reco.bfield import UniformBField
from kinkal_reco.config import MetaIterConfig, WireHitUpdater
from kinkal_reco.d2t import ConstantD2T
from kinkal_reco.effects import Direction, LRAmbig, WireHit
from kinkal_reco.errors import GeometricSolveFailure
from kinkal_reco.helix import Helix
from kinkal_reco.line import Line
from kinkal_reco.params import FitState, ParamData
from kinkal_reco.poca import ClosestApproach
from kinkal_reco.residual import Residual, ResidualKind
from kinkal_reco.trajectory import PiecewiseTrajectory, TimeRange

TCROSS = 10.0
VDRIFT = 0.05
CELL = 2.5
MINDOCA = 1.0


def _traj():
    mom = 100.0 * np.array([0.714 * np.cos(0.5), 0.714 * np.sin(0.5), 0.7])
    helix = Helix(np.zeros(4), np.append(mom, 105.66), -1, 1.0, TimeRange(0.0, 50.0))
    return PiecewiseTrajectory(helix)


def _hit(traj, doca, ambig=LRAmbig.NULL):
    vel = traj.velocity(TCROSS)
    azimuth = np.arctan2(vel[1], vel[0]) + 1.9
    wdir = np.array([np.cos(azimuth), np.sin(azimuth), 0.0])
    ndir = np.cross(vel, wdir)
    ndir /= np.linalg.norm(ndir)
    # measured time at the wire point: crossing time plus the true drift time
    line = Line(traj.position(TCROSS) - doca * ndir, 200.0 * wdir, TCROSS + abs(doca) / VDRIFT)
    return WireHit(line, ConstantD2T(VDRIFT, 4.0), UniformBField(1.0), CELL, ambig)


def _config(mindoca=MINDOCA, maxdoca=5.0):
    return MetaIterConfig(hit_updaters=(WireHitUpdater(mindoca, maxdoca),))


def test_small_doca_resolves_to_null():
    traj = _traj()
    hit = _hit(traj, 0.5 * MINDOCA)
    assert hit.null_var == pytest.approx(CELL ** 2 / 3.0)
    hit.update(traj, _config())
    assert hit.ambig == LRAmbig.NULL
    assert hit.null_var == pytest.approx(min(CELL, MINDOCA) ** 2 / 3.0)
    resid = hit.last_residual
    assert resid.kind is ResidualKind.DISTANCE
    assert resid.value == pytest.approx(-0.5 * MINDOCA, abs=1e-7)
    assert resid.variance == pytest.approx(hit.null_var)
    assert hit.time == pytest.approx(TCROSS, abs=1e-7)


@pytest.mark.parametrize("doca,expected", [(2.0 * MINDOCA, LRAmbig.RIGHT), (-2.0 * MINDOCA, LRAmbig.LEFT)])
def test_large_doca_resolves_to_side(doca, expected):
    traj = _traj()
    hit = _hit(traj, doca)
    hit.update(traj, _config())
    assert hit.ambig == expected
    resid = hit.last_residual
    assert resid.kind is ResidualKind.TIME
    # the measured time matches the drift prediction exactly
    assert resid.value == pytest.approx(0.0, abs=1e-6)
    assert resid.variance == 4.0
    poca = ClosestApproach(traj, hit.wire, hint=TCROSS)
    np.testing.assert_allclose(resid.dRdP, poca.dDdP * int(expected) / VDRIFT - poca.dTdP, rtol=1e-9, atol=1e-12)


def test_missing_updater_freezes_ambiguity():
    traj = _traj()
    hit = _hit(traj, 2.0 * MINDOCA)
    hit.update(traj, MetaIterConfig())
    assert hit.ambig == LRAmbig.NULL
    assert hit.last_residual.kind is ResidualKind.DISTANCE
    hit.update(traj)
    assert hit.ambig == LRAmbig.NULL


def test_activity_follows_maxdoca():
    traj = _traj()
    hit = _hit(traj, 2.0)
    hit.update(traj, _config(maxdoca=1.5))
    assert not hit.is_active
    assert hit.chisq(traj) == 0.0
    state = FitState(ParamData(np.zeros(6), np.eye(6)))
    hit.process(state, Direction.FORWARDS)
    np.testing.assert_array_equal(state.params.covariance, np.eye(6))
    # reactivated once the cut is loosened
    hit.update(traj, _config(maxdoca=3.0))
    assert hit.is_active


def test_process_adds_weight():
    traj = _traj()
    hit = _hit(traj, 2.0)
    hit.update(traj, _config())
    state = FitState(ParamData(traj.front.params.parameters, np.eye(6) * 1e6))
    before = state.weights.weight_matrix.copy()
    hit.process(state, Direction.BACKWARDS)
    dRdP = hit.last_residual.dRdP
    np.testing.assert_allclose(state.weights.weight_matrix - before, np.outer(dRdP, dRdP) / 4.0, atol=1e-9)
    assert hit.status.processed(Direction.BACKWARDS)
    assert not hit.status.processed(Direction.FORWARDS)


def test_unusable_poca_raises():
    traj = _traj()
    hit = _hit(traj, 2.0, LRAmbig.RIGHT)
    poca = ClosestApproach(traj, hit.wire, hint=3.0, max_iterations=1)
    assert not poca.usable
    with pytest.raises(GeometricSolveFailure):
        hit.residual_from_poca(poca)


def test_residual_requires_positive_variance():
    with pytest.raises(ValueError):
        Residual(ResidualKind.TIME, 0.1, 0.0)
    resid = Residual(ResidualKind.DISTANCE, 0.2, 0.04)
    assert resid.pull == pytest.approx(1.0)
    assert resid.chisq == pytest.approx(1.0)
