from kinkal_reco.effects.base import Direction, Effect, EffectStatus, ProcessStatus
from kinkal_reco.effects.bfield_effect import BFieldEffect
from kinkal_reco.effects.constraint import Constraint
from kinkal_reco.effects.measurement import Measurement
from kinkal_reco.effects.wire_hit import LRAmbig, WireHit

__all__ = [
    "Direction",
    "Effect",
    "EffectStatus",
    "ProcessStatus",
    "Measurement",
    "BFieldEffect",
    "Constraint",
    "LRAmbig",
    "WireHit",
]
