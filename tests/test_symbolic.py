"""符号化映射测试。"""

import pytest
from hypothesis import given, strategies as st

from loomstate.models.parameter import ParameterDefinition, ParameterRange, ParameterType
from loomstate.state.symbolic import (
    clamp_to_range,
    resolve_symbolic,
    resolve_symbolic_for_enum,
)


def _number(range_=None):
    return ParameterDefinition(name="Affection", type=ParameterType.NUMBER, range=range_)


def _enum(values=("calm", "tense", "angry")):
    return ParameterDefinition(name="Mood", type=ParameterType.ENUM, enum_values=list(values))


BOUNDED = ParameterRange(min=0, max=100)


# ──────────────────────────────────────────
# 数值
# ──────────────────────────────────────────


def test_up_large_clamps_at_max():
    result = resolve_symbolic("up_large", 95, _number(BOUNDED))
    assert result.value == 100
    assert result.clamped is True
    assert result.moved is True


@pytest.mark.parametrize(
    "symbol, expected",
    [
        ("up_small", 45),
        ("up_medium", 50),
        ("up_large", 60),
        ("down_small", 35),
        ("down_medium", 30),
        ("down_large", 20),
    ],
)
def test_relative_symbols_use_percent_of_range(symbol, expected):
    result = resolve_symbolic(symbol, 40, _number(BOUNDED))
    assert result.value == expected
    assert result.clamped is False


def test_percent_scales_with_range_width():
    result = resolve_symbolic("up_small", 0, _number(ParameterRange(min=-100, max=100)))
    assert result.value == 10


def test_no_range_uses_fixed_amounts():
    assert resolve_symbolic("up_medium", 7, _number()).value == 17
    assert resolve_symbolic("down_large", 7, _number()).value == -13


def test_half_open_range_uses_fixed_amount_and_clamps():
    result = resolve_symbolic("down_large", 5, _number(ParameterRange(min=0)))
    assert result.value == 0
    assert result.clamped is True


def test_set_number_is_absolute_and_clamped():
    assert resolve_symbolic("set_70", 10, _number(BOUNDED)).value == 70
    result = resolve_symbolic("set_150", 10, _number(BOUNDED))
    assert result.value == 100
    assert result.clamped is True


def test_symbols_are_case_insensitive_for_numbers():
    assert resolve_symbolic("UP_SMALL", 40, _number(BOUNDED)).value == 45


def test_unknown_number_symbol_is_noop():
    result = resolve_symbolic("sideways", 40, _number(BOUNDED))
    assert result.value == 40
    assert result.moved is False


def test_non_numeric_current_treated_as_zero():
    assert resolve_symbolic("up_small", None, _number(BOUNDED)).value == 5


@given(
    current=st.floats(min_value=0, max_value=100, allow_nan=False),
    symbol=st.sampled_from(
        ["up_small", "up_medium", "up_large", "down_small", "down_medium", "down_large"]
    ),
)
def test_result_always_within_range(current, symbol):
    """不论起点与符号，结果总在 range 内。"""
    result = resolve_symbolic(symbol, current, _number(BOUNDED))
    assert 0 <= result.value <= 100


def test_clamp_to_range():
    assert clamp_to_range(5, None) == (5, False)
    assert clamp_to_range(-1, BOUNDED) == (0, True)
    assert clamp_to_range(50, BOUNDED) == (50, False)


# ──────────────────────────────────────────
# 枚举
# ──────────────────────────────────────────


def test_enum_next_at_last_value_is_noop():
    result = resolve_symbolic("next", "angry", _enum())
    assert result.value == "angry"
    assert result.moved is False


def test_enum_prev_at_first_value_is_noop():
    result = resolve_symbolic("prev", "calm", _enum())
    assert result.value == "calm"
    assert result.moved is False


def test_enum_steps():
    assert resolve_symbolic("next", "calm", _enum()).value == "tense"
    assert resolve_symbolic("prev", "angry", _enum()).value == "tense"


def test_enum_current_not_member():
    assert resolve_symbolic("next", "bored", _enum()).value == "calm"
    assert resolve_symbolic("prev", None, _enum()).value == "angry"


def test_enum_set_requires_declared_member():
    assert resolve_symbolic("set_angry", "calm", _enum()).value == "angry"
    result = resolve_symbolic("set_happy", "calm", _enum())
    assert result.value == "calm"
    assert result.moved is False


def test_enum_without_values_is_noop():
    result = resolve_symbolic_for_enum("next", "x", _enum(values=()))
    assert result.value == "x"
    assert result.moved is False


# ──────────────────────────────────────────
# 不支持的类型
# ──────────────────────────────────────────


@pytest.mark.parametrize("param_type", [ParameterType.BOOLEAN, ParameterType.TEXT])
def test_unsupported_types_return_current(param_type):
    param = ParameterDefinition(name="p", type=param_type)
    result = resolve_symbolic("up_large", "原值", param)
    assert result.value == "原值"
    assert result.moved is False


def test_missing_symbol_returns_current():
    assert resolve_symbolic(None, 3, _number()).value == 3
