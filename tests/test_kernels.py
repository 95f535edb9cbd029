import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import numpy as np

from kinkal_reco.kernels import invert_spd, scalar_weight, similarity
from kinkal_reco.params import FitState, ParamData, WeightData


def _spd(rng, n=6):
    a = rng.normal(size=(n, n))
    return a @ a.T + n * np.eye(n)


def test_invert_spd():
    rng = np.random.default_rng(0)
    S = _spd(rng)
    inv = invert_spd(S)
    np.testing.assert_allclose(inv @ S, np.eye(6), atol=1e-10)
    np.testing.assert_array_equal(inv, inv.T)


def test_invert_singular_matrix_is_regularized():
    S = np.diag([1.0, 2.0, 0.0])
    inv = invert_spd(S)
    assert np.all(np.isfinite(inv))
    np.testing.assert_allclose(inv[:2, :2], np.diag([1.0, 0.5]), rtol=1e-9)


def test_scalar_weight():
    rng = np.random.default_rng(1)
    dRdP = rng.normal(size=6)
    pref = rng.normal(size=6)
    wvec, wmat = scalar_weight(dRdP, 0.3, 0.04, pref)
    np.testing.assert_allclose(wmat, np.outer(dRdP, dRdP) / 0.04)
    np.testing.assert_allclose(wvec, wmat @ pref + dRdP * 0.3 / 0.04)


def test_similarity():
    C = np.diag([1.0, 4.0])
    assert similarity(np.array([1.0, 1.0]), C) == 5.0
    J = np.array([[1.0, 0.0], [1.0, 1.0]])
    np.testing.assert_allclose(similarity(J, C), [[1.0, 1.0], [1.0, 5.0]])


def test_param_weight_conversion():
    rng = np.random.default_rng(2)
    pdata = ParamData(rng.normal(size=6), _spd(rng))
    back = pdata.to_weights().to_params()
    np.testing.assert_allclose(back.parameters, pdata.parameters, rtol=1e-9, atol=1e-12)
    np.testing.assert_allclose(back.covariance, pdata.covariance, rtol=1e-9)
    np.testing.assert_allclose(pdata.diagonal(), np.sqrt(np.diag(pdata.covariance)))


def test_fit_state_switches_spaces():
    rng = np.random.default_rng(3)
    prior = ParamData(np.zeros(6), np.eye(6))
    state = FitState(prior)
    assert state.has_params
    info = WeightData(np.full(6, 2.0), 2.0 * np.eye(6))
    state.append_weights(info)
    assert not state.has_params
    # combining unit-weight zero with weight 2 about 1 gives 2/3
    np.testing.assert_allclose(state.params.parameters, np.full(6, 2.0 / 3.0))
    np.testing.assert_allclose(state.params.covariance, np.eye(6) / 3.0)
    shift = rng.normal(size=6)
    state.append_params(ParamData(shift, np.zeros((6, 6))))
    np.testing.assert_allclose(state.params.parameters, np.full(6, 2.0 / 3.0) + shift)
    # the prior itself is untouched
    np.testing.assert_array_equal(prior.parameters, np.zeros(6))
