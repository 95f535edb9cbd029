import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import numpy as np
import pytest

from kinkal_reco.errors import GeometricSolveFailure
from kinkal_reco.helix import Helix
from kinkal_reco.line import Line
from kinkal_reco.params import ParamData
from kinkal_reco.poca import ClosestApproach
from kinkal_reco.trajectory import PiecewiseTrajectory, TimeRange

TCROSS = 10.0


def _helix():
    mom = 100.0 * np.array([0.714 * np.cos(0.5), 0.714 * np.sin(0.5), 0.7])
    return Helix(np.zeros(4), np.append(mom, 105.66), -1, 1.0, TimeRange(0.0, 50.0))


def _wire(helix, doca, tcross=TCROSS, tline=13.0, angle=0.3):
    # transverse wire passing the helix at signed distance doca at tcross
    vel = helix.velocity(tcross)
    azimuth = np.arctan2(vel[1], vel[0]) + np.pi / 2 + angle
    wdir = np.array([np.cos(azimuth), np.sin(azimuth), 0.0])
    ndir = np.cross(vel, wdir)
    ndir /= np.linalg.norm(ndir)
    return Line(helix.position(tcross) - doca * ndir, 200.0 * wdir, tline)


@pytest.mark.parametrize("hint", [None, 9.5])
@pytest.mark.parametrize("doca", [0.7, -1.3, 0.0])
def test_closest_approach_geometry(hint, doca):
    helix = _helix()
    line = _wire(helix, doca)
    poca = ClosestApproach(helix, line, hint=hint)
    assert poca.usable
    assert poca.particle_time == pytest.approx(TCROSS, abs=1e-7)
    assert poca.sensor_time == pytest.approx(13.0, abs=1e-7)
    assert poca.delta_t == pytest.approx(3.0, abs=1e-7)
    assert poca.doca == pytest.approx(doca, abs=1e-7)
    np.testing.assert_allclose(poca.particle_point, helix.position(TCROSS), atol=1e-6)
    np.testing.assert_allclose(poca.sensor_point, line.position(13.0), atol=1e-6)
    np.testing.assert_allclose(poca.delta, poca.particle_point - poca.sensor_point)
    # the separation is perpendicular to both directions
    assert abs(np.dot(poca.delta, helix.velocity(poca.particle_time))) < 1e-6
    assert abs(np.dot(poca.delta, line.direction())) < 1e-9


def test_piecewise_trajectory_poca():
    helix = _helix()
    line = _wire(helix, 0.4)
    poca = ClosestApproach(PiecewiseTrajectory(helix), line)
    assert poca.usable
    assert poca.doca == pytest.approx(0.4, abs=1e-7)


@pytest.mark.parametrize("doca", [0.7, -1.3])
def test_derivatives_match_finite_difference(doca):
    helix = _helix()
    line = _wire(helix, doca, angle=-0.4)
    poca = ClosestApproach(helix, line, hint=TCROSS)
    h = 1e-5
    for i in range(6):
        step = np.zeros(6)
        step[i] = h
        plus = ClosestApproach(helix.with_params(ParamData(helix.params.parameters + step)), line, hint=TCROSS)
        minus = ClosestApproach(helix.with_params(ParamData(helix.params.parameters - step)), line, hint=TCROSS)
        assert plus.usable and minus.usable
        assert (plus.doca - minus.doca) / (2 * h) == pytest.approx(poca.dDdP[i], rel=1e-4, abs=1e-5)
        assert (plus.delta_t - minus.delta_t) / (2 * h) == pytest.approx(poca.dTdP[i], rel=1e-4, abs=1e-5)
    # moving the time reference moves the particle time one for one
    assert poca.dTdP[5] == pytest.approx(-1.0, rel=1e-6)


def test_unconverged_solve_is_unusable():
    helix = _helix()
    line = _wire(helix, 0.5)
    poca = ClosestApproach(helix, line, hint=3.0, max_iterations=1)
    assert not poca.usable
    for attr in ("doca", "delta", "delta_t", "particle_time", "sensor_time",
                 "particle_point", "sensor_point", "dDdP", "dTdP"):
        with pytest.raises(GeometricSolveFailure):
            getattr(poca, attr)


def test_parallel_line_is_unusable():
    helix = _helix()
    line = Line(helix.position(5.0) + np.array([0.5, 0.0, 0.0]), helix.velocity(5.0), 5.0)
    poca = ClosestApproach(helix, line, hint=5.0)
    assert poca.usable is False
    with pytest.raises(GeometricSolveFailure):
        poca.doca
