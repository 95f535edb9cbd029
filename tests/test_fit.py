import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import numpy as np
import pytest

from kinkal_reco.bfield import GradBField, UniformBField
from kinkal_reco.config import FitConfig, MetaIterConfig
from kinkal_reco.effects import BFieldEffect, Constraint
from kinkal_reco.fit import FitStatus, KinematicFit
from kinkal_reco.params import ParamData
from kinkal_reco.toy import follow_field, generate_event, make_helix, make_wire_hits
from kinkal_reco.trajectory import PiecewiseTrajectory, TimeRange

NHITS = 30


def _exact_event(nhits=NHITS):
    field = UniformBField(1.0)
    truth = make_helix(trange=TimeRange(0.0, 60.0))
    hits = make_wire_hits(PiecewiseTrajectory(truth), nhits, np.random.default_rng(42), field,
                          smear=False, true_ambig=True)
    offset = np.array([0.5, 0.0, -0.5, 0.3, 0.002, 0.2])
    seed = truth.with_params(ParamData(truth.params.parameters + offset))
    return truth, seed, hits, field


def test_fit_recovers_truth_from_exact_hits():
    truth, seed, hits, field = _exact_event()
    kfit = KinematicFit(seed, hits, field)
    assert kfit.chisq() > 1.0
    for _ in range(5):
        status = kfit.iterate(MetaIterConfig(iteration=len(kfit.history)))
    assert isinstance(status, FitStatus)
    assert [s.iteration for s in kfit.history] == [0, 1, 2, 3, 4]
    assert status.ndof == NHITS - 6
    assert status.nactive == NHITS
    assert status.chisq < 1e-3
    assert len(kfit.traj) == 1
    assert kfit.traj.range == seed.range
    result = kfit.traj.front.params
    np.testing.assert_allclose(result.parameters, truth.params.parameters, rtol=0, atol=1e-3)
    # the fitted covariance is a proper positive-definite matrix
    np.testing.assert_allclose(result.covariance, result.covariance.T, atol=1e-12)
    assert np.all(np.linalg.eigvalsh(result.covariance) > 0.0)
    # both sweeps see the same information
    np.testing.assert_allclose(kfit.forward_result.parameters, kfit.backward_result.parameters, atol=1e-6)


def test_fit_schedule_and_report():
    _, seed, hits, field = _exact_event(12)
    config = FitConfig(schedule=[MetaIterConfig(), MetaIterConfig()])
    kfit = KinematicFit(seed, hits, field, config)
    status = kfit.fit()
    assert status.iteration == 1
    assert len(kfit.history) == 2
    assert status.chisq_per_ndof == pytest.approx(status.chisq / 6)
    frame = kfit.residuals_frame()
    assert len(frame) == 12
    for col in ("type", "time", "active", "ndof", "chisq", "kind", "ambig", "value", "variance", "pull"):
        assert col in frame.columns
    assert set(frame["ambig"]) <= {"LEFT", "RIGHT"}
    assert frame["time"].is_monotonic_increasing


def test_constraint_pins_parameters():
    truth, seed, hits, field = _exact_event(12)
    target = seed.params.parameters.copy()
    cov = np.diag([1e-8, 1.0, 1.0, 1.0, 1.0, 1.0])
    cons = Constraint(30.0, ParamData(target, cov), [True, False, False, False, False, False])
    kfit = KinematicFit(seed, hits + [cons], field)
    status = kfit.fit([MetaIterConfig(), MetaIterConfig(), MetaIterConfig()])
    assert status.ndof == 12 + 1 - 6
    assert kfit.traj.front.params.parameters[0] == pytest.approx(target[0], abs=1e-3)


def test_field_correction_requires_field():
    _, seed, hits, _ = _exact_event(6)
    with pytest.raises(ValueError):
        KinematicFit(seed, hits, None, FitConfig(bfield_correction=True))


def test_field_corrections_improve_gradient_fit():
    field = GradBField(1.0, 0.95, 0.0, 10000.0)
    helix = make_helix(trange=TimeRange(0.0, 30.0))
    truth = follow_field(helix, field, tol=0.01)
    assert len(truth) > 1
    hits = make_wire_hits(truth, NHITS, np.random.default_rng(7), field, smear=False, true_ambig=True)
    schedule = [MetaIterConfig(update_bfield_correction=True) for _ in range(4)]

    plain = KinematicFit(helix, hits, field, FitConfig(schedule=schedule))
    plain_status = plain.fit()
    assert len(plain.traj) == 1

    corrected = KinematicFit(helix, hits, field, FitConfig(bfield_correction=True, tolerance=0.05,
                                                           schedule=schedule))
    ncorr = sum(isinstance(eff, BFieldEffect) for eff in corrected.effects)
    assert ncorr > 1
    corrected_status = corrected.fit()
    assert len(corrected.traj) > 1
    assert corrected.traj.range == helix.range
    assert corrected_status.ndof == plain_status.ndof
    assert corrected_status.chisq < plain_status.chisq


def test_generated_event():
    event = generate_event(nhits=10, rng=np.random.default_rng(5))
    assert len(event.hits) == 10
    assert event.seed.range == event.truth.range
    assert not np.allclose(event.seed.params.parameters, event.truth.front.params.parameters)
