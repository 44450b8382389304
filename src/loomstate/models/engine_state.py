"""引擎状态数据模型：EngineState + Checkpoint。

EngineState 是纯值类型：不持有对日志或配置的引用，克隆即完整深拷贝。
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from loomstate.models.entity import EntityDefinition
from loomstate.models.parameter import VariableScope


class CastTier(str, Enum):
    """Cast 层级，按具体程度排序：focus > present_supporting > offstage_related。"""
    FOCUS = "focus"
    PRESENT_SUPPORTING = "present_supporting"
    OFFSTAGE_RELATED = "offstage_related"


# 数值越大层级越高
CAST_TIER_PRIORITY: dict[CastTier, int] = {
    CastTier.FOCUS: 3,
    CastTier.PRESENT_SUPPORTING: 2,
    CastTier.OFFSTAGE_RELATED: 1,
}

# 从高到低
CAST_TIER_ORDER: list[CastTier] = [
    CastTier.FOCUS,
    CastTier.PRESENT_SUPPORTING,
    CastTier.OFFSTAGE_RELATED,
]


def _empty_buckets() -> dict[str, dict[str, Any]]:
    return {scope.value: {} for scope in VariableScope}


class SceneState(BaseModel):
    """场景元数据。"""

    location_hint: str | None = Field(default=None, description="场景地点提示")
    scene_tags: list[str] = Field(
        default_factory=list, description="场景标签（有序、去重）"
    )


class CastState(BaseModel):
    """三层 Cast，成员互斥。"""

    focus: list[str] = Field(default_factory=list, description="焦点角色")
    present_supporting: list[str] = Field(default_factory=list, description="在场配角")
    offstage_related: list[str] = Field(default_factory=list, description="离场相关角色")

    def tier(self, tier: CastTier) -> list[str]:
        return getattr(self, tier.value)


class EngineState(BaseModel):
    """某一日志位置上的完整状态快照。"""

    chat_id: str = Field(default="", description="所属对话标识")
    variables: dict[str, dict[str, Any]] = Field(
        default_factory=_empty_buckets,
        description="四个变量桶：character / relationship / scene / global，均支持嵌套",
    )
    scene: SceneState = Field(default_factory=SceneState, description="场景状态")
    cast: CastState = Field(default_factory=CastState, description="Cast 分层")
    runtime_entities: dict[str, EntityDefinition] = Field(
        default_factory=dict,
        description="运行时实体（仅本条世界线上新建或覆盖的实体）",
    )
    retrieval_intent: dict[str, Any] | None = Field(
        default=None, description="检索意图（透传，不解释）"
    )


class Checkpoint(BaseModel):
    """最近一次完整折叠得到的状态快照。"""

    log_position: int = Field(default=-1, description="对应日志位置，-1 表示第一条消息之前")
    chain_hash: str = Field(default="", description="0..log_position 的祖先链指纹")
    state: EngineState = Field(default_factory=EngineState, description="折叠后的状态")
