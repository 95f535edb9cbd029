import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import numpy as np
import pytest

from kinkal_reco.helix import Helix
from kinkal_reco.params import ParamData
from kinkal_reco.trajectory import LocalDir, PiecewiseTrajectory, TimeRange


def _helix(trange):
    return Helix(np.zeros(4), np.array([60.0, 50.0, 40.0, 105.66]), -1, 1.0, trange)


def _assert_contiguous(traj):
    pieces = traj.pieces
    for prev, nxt in zip(pieces[:-1], pieces[1:]):
        assert prev.range.low < nxt.range.low
        assert prev.range.high == nxt.range.low
    assert traj.range.low == pieces[0].range.low
    assert traj.range.high == pieces[-1].range.high


def test_time_range():
    trange = TimeRange(2.0, 6.0)
    assert trange.mid == 4.0
    assert trange.span == 4.0
    assert trange.in_range(2.0) and trange.in_range(6.0)
    assert not trange.in_range(6.5)
    with pytest.raises(ValueError):
        TimeRange(3.0, 1.0)


@pytest.mark.parametrize("seed", range(5))
def test_append_fuzz_keeps_pieces_contiguous(seed):
    rng = np.random.default_rng(seed)
    base = _helix(TimeRange(0.0, 10.0))
    traj = PiecewiseTrajectory(base)
    for _ in range(25):
        if rng.random() < 0.5:
            # start at or beyond the current upper bound
            tlow = traj.range.high + rng.uniform(0.0, 3.0)
        else:
            # start inside the back piece, truncating it
            back = traj.back.range
            tlow = back.low + rng.uniform(0.01, 1.0) * (back.high - back.low + 0.01)
        thigh = tlow + rng.uniform(0.1, 10.0)
        shift = np.zeros(6)
        shift[2] = rng.normal()
        piece = base.with_params(ParamData(base.params.parameters + shift)).with_range(TimeRange(tlow, thigh))
        traj.append(piece)
        _assert_contiguous(traj)
        assert traj.range.high == thigh
    assert len(traj) == 26


def test_append_rejects_early_piece():
    base = _helix(TimeRange(0.0, 10.0))
    traj = PiecewiseTrajectory(base)
    traj.append(base.with_range(TimeRange(5.0, 12.0)))
    with pytest.raises(ValueError):
        traj.append(base.with_range(TimeRange(5.0, 20.0)))
    with pytest.raises(ValueError):
        traj.append(base.with_range(TimeRange(1.0, 20.0)))
    assert len(traj) == 2


def test_nearest_piece_lookup():
    base = _helix(TimeRange(0.0, 10.0))
    traj = PiecewiseTrajectory(base)
    second = base.with_params(ParamData(base.params.parameters + np.array([0, 0, 1.0, 0, 0, 0])))
    traj.append(second.with_range(TimeRange(4.0, 10.0)))
    assert traj.nearest_index(-5.0) == 0
    assert traj.nearest_index(0.0) == 0
    assert traj.nearest_index(3.999) == 0
    assert traj.nearest_index(4.0) == 1
    assert traj.nearest_index(100.0) == 1
    np.testing.assert_allclose(traj.position(6.0), second.position(6.0))
    np.testing.assert_allclose(traj.position(2.0), base.position(2.0))
    np.testing.assert_allclose(traj.direction(6.0, LocalDir.PHI), second.direction(6.0, LocalDir.PHI))
    assert traj.charge == -1


def test_to_frame():
    base = _helix(TimeRange(0.0, 10.0))
    traj = PiecewiseTrajectory(base)
    traj.append(base.with_range(TimeRange(3.0, 10.0)))
    frame = traj.to_frame()
    assert len(frame) == 2
    assert list(frame["tlow"]) == [0.0, 3.0]
    assert list(frame["thigh"]) == [3.0, 10.0]
    assert "Radius" in frame.columns
