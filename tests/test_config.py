import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import orjson
import pytest

from kinkal_reco.config import FitConfig, MetaIterConfig, WireHitUpdater, load_config
from kinkal_reco.domains import DomainTuning
from kinkal_reco.errors import ConfigurationConflict
from kinkal_reco.main import build_parser, default_config


def _write(tmp_path, data):
    path = tmp_path / "fit.json"
    path.write_bytes(orjson.dumps(data))
    return path


def test_load_config(tmp_path):
    path = _write(tmp_path, {
        "deweight": 1e4,
        "bfield_correction": True,
        "tolerance": 0.5,
        "domain_tuning": {"initial_step": 0.2},
        "schedule": [
            {"update_bfield_correction": True},
            {"wire_hit_updater": {"mindoca": 1.0, "maxdoca": 4.0}},
            {"wire_hit_updater": [{"mindoca": 0.5, "maxdoca": 3.0}]},
        ],
    })
    config = load_config(path)
    assert config.deweight == 1e4
    assert config.bfield_correction
    assert config.tolerance == 0.5
    assert config.domain_tuning == DomainTuning(initial_step=0.2)
    assert [m.iteration for m in config.schedule] == [0, 1, 2]
    assert config.schedule[0].update_bfield_correction
    assert config.schedule[0].updater(WireHitUpdater) is None
    assert config.schedule[1].updater(WireHitUpdater) == WireHitUpdater(1.0, 4.0)
    assert config.schedule[2].updater(WireHitUpdater).maxdoca == 3.0


def test_defaults():
    config = FitConfig()
    assert config.deweight == 1e6
    assert config.seed_errors == (1.0, 1.0, 1.0, 1.0, 0.01, 1.0)
    assert not config.bfield_correction
    assert config.schedule == ()


def test_schedule_is_renumbered():
    config = FitConfig(schedule=[MetaIterConfig(iteration=7), MetaIterConfig(iteration=7)])
    assert [m.iteration for m in config.schedule] == [0, 1]


def test_unknown_keys_rejected(tmp_path):
    with pytest.raises(KeyError):
        load_config(_write(tmp_path, {"deweigth": 10.0}))
    with pytest.raises(KeyError):
        MetaIterConfig.from_dict({"straw_hit_updater": {}})


def test_unreadable_config(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(ValueError):
        load_config(bad)
    with pytest.raises(ValueError):
        load_config(tmp_path / "missing.json")


def test_duplicate_updaters_conflict():
    with pytest.raises(ConfigurationConflict):
        MetaIterConfig(hit_updaters=(WireHitUpdater(1.0, 5.0), WireHitUpdater(0.5, 4.0)))
    with pytest.raises(ConfigurationConflict):
        MetaIterConfig.from_dict({"wire_hit_updater": [{"mindoca": 1.0, "maxdoca": 5.0},
                                                       {"mindoca": 1.0, "maxdoca": 5.0}]})


def test_invalid_values():
    with pytest.raises(ValueError):
        WireHitUpdater(1.0, 0.0)
    with pytest.raises(ValueError):
        FitConfig(seed_errors=(1.0, 1.0))
    with pytest.raises(ValueError):
        FitConfig(tolerance=-1.0)


def test_command_line_defaults():
    args = build_parser().parse_args(["--hits", "12", "--gradient", "0.9"])
    assert args.hits == 12
    assert args.gradient == 0.9
    assert args.config is None
    config = default_config(True)
    assert config.bfield_correction
    assert len(config.schedule) == 3
    assert config.schedule[0].updater(WireHitUpdater) is None
    assert all(m.update_bfield_correction for m in config.schedule)
