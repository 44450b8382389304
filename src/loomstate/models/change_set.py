"""ChangeSet（git 风格 diff）数据模型。

只描述「本轮意图」，与它是如何被解析出来的无关。所有模型一经创建即不可变。
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from loomstate.models.engine_state import CastTier
from loomstate.models.entity import EntityKind
from loomstate.models.parameter import VariableScope


class VariableOperation(str, Enum):
    """变量操作类型。"""
    SET = "set"  # 直接设置为 value
    ADD = "add"  # 数值增量
    SYMBOLIC = "symbolic"  # 符号化意图（up_small / next / set_70 等），由符号映射器解释


class EntityOperation(str, Enum):
    """实体操作类型。"""
    ADD = "add"  # 不存在则创建，存在则增量合并
    UPDATE = "update"  # 仅更新已存在的运行时实体，从不自动创建
    REMOVE = "remove"  # 从运行时实体集中移除


class VariableOp(BaseModel):
    """单个变量操作。存储路径为 [subject_name?, parameter_name, target_name?]。"""

    model_config = ConfigDict(frozen=True)

    scope: VariableScope | None = Field(default=None, description="显式作用域（可缺省，由 reducer 推断）")
    subject_name: str | None = Field(default=None, description="主体名，通常是角色")
    parameter_name: str | None = Field(default=None, description="参数名")
    target_name: str | None = Field(default=None, description="关系目标名")
    operation: VariableOperation = Field(default=VariableOperation.SET, description="操作类型")
    value: Any = Field(default=None, description="set / add 使用的值")
    symbol: str | None = Field(default=None, description="符号化操作名")
    path: str | None = Field(default=None, description="原始的人类可读路径，如 '艾莉娅.好感度.林原'")
    reason: str = Field(default="", description="解析模型给出的理由（日志用）")

    def storage_path(self) -> list[str]:
        """构建嵌套存储路径；缺少参数名时返回空列表。"""
        if not self.parameter_name:
            return []
        segments: list[str] = []
        if self.subject_name:
            segments.append(self.subject_name)
        segments.append(self.parameter_name)
        if self.target_name:
            segments.append(self.target_name)
        return segments


class LocationHintDelta(BaseModel):
    """地点提示变更。value 为 None 表示清空。"""

    model_config = ConfigDict(frozen=True)

    op: str = Field(default="set", description="目前只有 set")
    value: str | None = Field(default=None, description="新的地点提示")


class SceneTagsDelta(BaseModel):
    """场景标签变更。

    - set：覆盖整个标签集合（允许清空），出现时 add/remove 一律忽略
    - add / remove：在现有集合上增量合并
    """

    model_config = ConfigDict(frozen=True)

    set: list[str] | None = Field(default=None, description="覆盖语义")
    add: list[str] = Field(default_factory=list, description="增量添加")
    remove: list[str] = Field(default_factory=list, description="增量移除")

    @property
    def is_overwrite(self) -> bool:
        return self.set is not None

    @property
    def is_empty(self) -> bool:
        return self.set is None and not self.add and not self.remove


class CastEnterItem(BaseModel):
    """进场提案。"""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="角色名")
    preferred_layer: CastTier | None = Field(default=None, description="期望层级，缺省为 focus")


class CastIntent(BaseModel):
    """Cast 进场 / 退场提案。"""

    model_config = ConfigDict(frozen=True)

    enter: list[CastEnterItem] = Field(default_factory=list, description="进场提案")
    leave: list[str] = Field(default_factory=list, description="退场角色名")

    @property
    def is_empty(self) -> bool:
        return not self.enter and not self.leave


class SceneOp(BaseModel):
    """场景变更：地点提示、场景标签与 Cast 意图。"""

    model_config = ConfigDict(frozen=True)

    location_hint: LocationHintDelta | None = Field(default=None, description="地点提示变更")
    scene_tags: SceneTagsDelta | None = Field(default=None, description="场景标签变更")
    cast_intent: CastIntent | None = Field(default=None, description="Cast 意图")

    @property
    def is_empty(self) -> bool:
        return (
            self.location_hint is None
            and (self.scene_tags is None or self.scene_tags.is_empty)
            and (self.cast_intent is None or self.cast_intent.is_empty)
        )


class EntityOp(BaseModel):
    """运行时实体变更。只作用于 EngineState.runtime_entities，从不触及配置层。"""

    model_config = ConfigDict(frozen=True)

    op: EntityOperation = Field(default=EntityOperation.ADD, description="操作类型")
    name: str = Field(description="实体名（主键）")
    kind: EntityKind | None = Field(default=None, description="实体类型")
    base_info: str | None = Field(default=None, description="基础设定")
    children_names: list[str] | None = Field(default=None, description="子地点")
    locations: list[str] | None = Field(default=None, description="常见地点")
    characters: list[str] | None = Field(default=None, description="场景角色")


class ChangeSet(BaseModel):
    """一组彼此独立的子变更。四个部分都未填充时即为语义上的空操作。"""

    model_config = ConfigDict(frozen=True)

    variable_ops: list[VariableOp] | None = Field(default=None, description="变量操作")
    scene_op: SceneOp | None = Field(default=None, description="场景变更")
    entity_ops: list[EntityOp] | None = Field(default=None, description="实体变更")
    retrieval_intent: dict[str, Any] | None = Field(default=None, description="检索意图（透传）")

    @property
    def is_empty(self) -> bool:
        return (
            not self.variable_ops
            and (self.scene_op is None or self.scene_op.is_empty)
            and not self.entity_ops
            and not self.retrieval_intent
        )

    @property
    def cast_intent(self) -> CastIntent | None:
        return self.scene_op.cast_intent if self.scene_op else None
