"""Pydantic 数据模型。"""

from loomstate.models.change_set import (
    CastEnterItem,
    CastIntent,
    ChangeSet,
    EntityOp,
    EntityOperation,
    LocationHintDelta,
    SceneOp,
    SceneTagsDelta,
    VariableOp,
    VariableOperation,
)
from loomstate.models.engine_state import (
    CAST_TIER_ORDER,
    CAST_TIER_PRIORITY,
    CastState,
    CastTier,
    Checkpoint,
    EngineState,
    SceneState,
)
from loomstate.models.entity import EntityDefinition, EntityKind, SpecialEntity
from loomstate.models.log import LogEntry, StoredDelta
from loomstate.models.parameter import (
    ParameterDefinition,
    ParameterRange,
    ParameterType,
    VariableScope,
    find_parameter,
)

__all__ = [
    "CAST_TIER_ORDER",
    "CAST_TIER_PRIORITY",
    "CastEnterItem",
    "CastIntent",
    "CastState",
    "CastTier",
    "ChangeSet",
    "Checkpoint",
    "EngineState",
    "EntityDefinition",
    "EntityKind",
    "EntityOp",
    "EntityOperation",
    "LocationHintDelta",
    "LogEntry",
    "ParameterDefinition",
    "ParameterRange",
    "ParameterType",
    "SceneOp",
    "SceneState",
    "SceneTagsDelta",
    "SpecialEntity",
    "StoredDelta",
    "VariableOp",
    "VariableOperation",
    "VariableScope",
    "find_parameter",
]
