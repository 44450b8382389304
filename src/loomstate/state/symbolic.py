"""符号化操作映射：把 up_small / next / set_70 等定性意图映射为具体数值或枚举值。

纯函数，不知道存储路径；由 reducer 对每个 symbolic 变量操作调用一次。
符号化解析只对 number 与 enum 参数有定义，其余类型一律保持原值。
"""

from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import BaseModel, Field

from loomstate.models.change_set import VariableOperation
from loomstate.models.parameter import ParameterDefinition, ParameterRange, ParameterType

logger = logging.getLogger(__name__)

# 有 range 时：增量为 (max - min) 的百分比
SYMBOLIC_PERCENT: dict[str, int] = {
    "up_small": 5,
    "up_medium": 10,
    "up_large": 20,
    "down_small": -5,
    "down_medium": -10,
    "down_large": -20,
}

# 无 range 时：固定绝对增量
SYMBOLIC_ABSOLUTE: dict[str, int] = {
    "up_small": 5,
    "up_medium": 10,
    "up_large": 20,
    "down_small": -5,
    "down_medium": -10,
    "down_large": -20,
}

_SET_NUMBER_RE = re.compile(r"^set_(-?\d+(?:\.\d+)?)$", re.IGNORECASE)
_SET_ANY_RE = re.compile(r"^set_(.+)$", re.IGNORECASE)


class SymbolicResolution(BaseModel):
    """符号化操作的解析结果。"""

    operation: VariableOperation = Field(default=VariableOperation.SET, description="最终操作类型")
    value: Any = Field(default=None, description="目标值")
    clamped: bool = Field(default=False, description="是否因 range 限制被截断")
    moved: bool = Field(default=False, description="值是否实际发生变化")


def clamp_to_range(value: float, value_range: ParameterRange | None) -> tuple[float, bool]:
    """把数值限制在 range 内，返回 (新值, 是否被截断)。"""
    if value_range is None:
        return value, False
    clamped = value
    if value_range.min is not None and clamped < value_range.min:
        clamped = value_range.min
    if value_range.max is not None and clamped > value_range.max:
        clamped = value_range.max
    return clamped, clamped != value


def _to_number(text: str) -> int | float:
    return float(text) if "." in text else int(text)


def resolve_symbolic_for_number(
    symbol: str,
    current_value: float,
    parameter_def: ParameterDefinition,
) -> SymbolicResolution:
    """数值型参数：set_<数值> 为绝对设置，up_/down_ 系列为相对增量，结果始终按 range 截断。"""
    sym = symbol.strip().lower()
    value_range = parameter_def.range

    set_match = _SET_NUMBER_RE.match(sym)
    if set_match:
        value, clamped = clamp_to_range(_to_number(set_match.group(1)), value_range)
        return SymbolicResolution(value=value, clamped=clamped, moved=value != current_value)

    if sym not in SYMBOLIC_PERCENT:
        logger.debug("未知的数值符号 '%s'（参数 %s），保持原值", symbol, parameter_def.name)
        return SymbolicResolution(value=current_value)

    if value_range is not None and value_range.is_bounded:
        delta = (value_range.max - value_range.min) * SYMBOLIC_PERCENT[sym] / 100
    else:
        delta = SYMBOLIC_ABSOLUTE[sym]

    value, clamped = clamp_to_range(current_value + delta, value_range)
    return SymbolicResolution(value=value, clamped=clamped, moved=value != current_value)


def resolve_symbolic_for_enum(
    symbol: str,
    current_value: Any,
    parameter_def: ParameterDefinition,
) -> SymbolicResolution:
    """枚举型参数：set_<值> 仅接受声明过的成员；next / prev 按声明顺序步进，越界不动。

    当前值不在枚举列表中时，next 跳到第一个，prev 跳到最后一个。
    """
    enum_values = parameter_def.enum_values
    unchanged = SymbolicResolution(value=current_value)
    if not enum_values:
        return unchanged

    sym = symbol.strip()
    set_match = _SET_ANY_RE.match(sym)
    if set_match:
        target = set_match.group(1).strip()
        if target in enum_values:
            return SymbolicResolution(value=target, moved=target != current_value)
        logger.debug("枚举值 '%s' 不在 %s 的声明中，保持原值", target, parameter_def.name)
        return unchanged

    keyword = sym.lower()
    index = enum_values.index(current_value) if current_value in enum_values else -1

    if keyword == "next":
        if index < 0:
            return SymbolicResolution(value=enum_values[0], moved=True)
        if index >= len(enum_values) - 1:
            return unchanged
        return SymbolicResolution(value=enum_values[index + 1], moved=True)

    if keyword in ("prev", "previous"):
        if index < 0:
            return SymbolicResolution(value=enum_values[-1], moved=True)
        if index == 0:
            return unchanged
        return SymbolicResolution(value=enum_values[index - 1], moved=True)

    logger.debug("未知的枚举符号 '%s'（参数 %s），保持原值", symbol, parameter_def.name)
    return unchanged


def resolve_symbolic(
    symbol: str | None,
    current_value: Any,
    parameter_def: ParameterDefinition,
) -> SymbolicResolution:
    """统一入口：按参数类型选择解析策略。"""
    if not symbol or not isinstance(symbol, str):
        return SymbolicResolution(value=current_value)

    if parameter_def.type is ParameterType.NUMBER:
        is_number = isinstance(current_value, (int, float)) and not isinstance(current_value, bool)
        numeric = current_value if is_number else 0
        return resolve_symbolic_for_number(symbol, numeric, parameter_def)

    if parameter_def.type is ParameterType.ENUM:
        return resolve_symbolic_for_enum(symbol, current_value, parameter_def)

    # boolean / text 不支持符号化
    return SymbolicResolution(value=current_value)
