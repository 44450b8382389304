"""loomstate 测试公共 fixture。"""

import pytest

from loomstate.config.settings import EngineConfig
from loomstate.engine.log import ChatLog
from loomstate.engine.replay import ReplayEngine
from loomstate.models.entity import EntityDefinition, EntityKind
from loomstate.models.log import LogEntry
from loomstate.models.parameter import (
    ParameterDefinition,
    ParameterRange,
    ParameterType,
    VariableScope,
)
from loomstate.state.reducer import create_initial_state


@pytest.fixture
def parameter_defs():
    """好感度（关系，数值 0-100）、心情（角色，枚举）、天气（全局，文本）、短期情绪。"""
    return [
        ParameterDefinition(
            name="Affection",
            id="affection",
            type=ParameterType.NUMBER,
            scope=VariableScope.RELATIONSHIP,
            range=ParameterRange(min=0, max=100),
        ),
        ParameterDefinition(
            name="Mood",
            id="mood",
            type=ParameterType.ENUM,
            scope=VariableScope.CHARACTER,
            enum_values=["calm", "tense", "angry"],
        ),
        ParameterDefinition(
            name="Stamina",
            id="stamina",
            type=ParameterType.NUMBER,
            scope=VariableScope.CHARACTER,
        ),
        ParameterDefinition(
            name="Weather",
            id="weather",
            type=ParameterType.TEXT,
            scope=VariableScope.GLOBAL,
        ),
        ParameterDefinition(
            name="短期情绪",
            id="short_term_emotion",
            type=ParameterType.TEXT,
            scope=VariableScope.GLOBAL,
            is_short_term=True,
        ),
    ]


@pytest.fixture
def entity_defs():
    """配置层实体：两个角色、一个酒馆。"""
    return [
        EntityDefinition(name="Aria", kind=EntityKind.CHARACTER, base_info="旅行的吟游诗人"),
        EntityDefinition(name="Borin", kind=EntityKind.CHARACTER, locations=["Tavern"]),
        EntityDefinition(name="Tavern", kind=EntityKind.LOCATION, characters=["Aria"]),
    ]


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def initial_state():
    return create_initial_state(
        chat_id="chat-1",
        initial_variables={"relationship": {"Aria": {"Affection": {"Player": 40}}}},
        initial_scene={"location_hint": "Tavern", "scene_tags": ["night"]},
    )


@pytest.fixture
def chat_log():
    """五条消息：用户与对方交替。"""
    return ChatLog(
        [
            LogEntry(role="user", content="你好", name="Player"),
            LogEntry(role="assistant", content="欢迎光临。", name="Aria"),
            LogEntry(role="user", content="来杯麦酒", name="Player"),
            LogEntry(role="assistant", content="马上就来。", name="Aria"),
            LogEntry(role="assistant", content="Borin 推门进来。", name="Aria"),
        ]
    )


@pytest.fixture
def engine(chat_log, initial_state, parameter_defs, entity_defs, config):
    """绑定到 chat_log 的重放引擎。"""
    return ReplayEngine(
        chat_log,
        initial_state=initial_state,
        parameter_defs=parameter_defs,
        entity_defs=entity_defs,
        config=config,
    )
