"""参数定义数据模型（配置层，只读消费）。"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class VariableScope(str, Enum):
    """变量作用域，对应 EngineState 中的四个变量桶。"""
    CHARACTER = "character"  # 角色自身：character[主体][参数]
    RELATIONSHIP = "relationship"  # 关系：relationship[主体][参数][目标]
    SCENE = "scene"  # 场景级
    GLOBAL = "global"  # 全局级


class ParameterType(str, Enum):
    """参数值类型。符号化操作仅对 number / enum 有定义。"""
    NUMBER = "number"
    BOOLEAN = "boolean"
    ENUM = "enum"
    TEXT = "text"


class ParameterRange(BaseModel):
    """数值型参数的取值范围，两端均可缺省。"""

    min: float | None = Field(default=None, description="最小值")
    max: float | None = Field(default=None, description="最大值")

    @property
    def is_bounded(self) -> bool:
        """两端都声明时才按百分比解释符号化增量。"""
        return self.min is not None and self.max is not None


class ParameterDefinition(BaseModel):
    """作者在角色配置中声明的参数。"""

    name: str = Field(description="作者/解析模型看到的参数名，如 '好感度'")
    id: str = Field(default="", description="引擎内部 ID，如 'affection'")
    type: ParameterType = Field(default=ParameterType.TEXT, description="参数类型")
    scope: VariableScope | None = Field(default=None, description="参数作用域")
    is_short_term: bool = Field(
        default=False,
        description="短期参数（短期情绪/意图等）；启用时强制落入 character 作用域",
    )
    description: str = Field(default="", description="人类可读解释")
    range: ParameterRange | None = Field(default=None, description="数值型可选范围")
    enum_values: list[str] = Field(default_factory=list, description="枚举型可选值，按声明顺序")
    default: Any = Field(default=None, description="初始值（可选）")

    def matches(self, name_or_id: str | None) -> bool:
        """按名称或 ID 匹配。"""
        if not name_or_id:
            return False
        return name_or_id == self.name or (bool(self.id) and name_or_id == self.id)


def find_parameter(
    parameter_defs: list[ParameterDefinition] | None,
    name_or_id: str | None,
) -> ParameterDefinition | None:
    """在参数定义列表中按名称或 ID 查找。"""
    if not parameter_defs or not name_or_id:
        return None
    for param in parameter_defs:
        if param.matches(name_or_id):
            return param
    return None
