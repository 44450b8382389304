"""配置加载测试。"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from loomstate.config.settings import (
    SHORT_TERM_EMOTION_ID,
    SHORT_TERM_INTENT_ID,
    CharacterConfig,
    EngineConfig,
    ensure_default_parameters,
    load_config_from_yaml,
)
from loomstate.models.parameter import ParameterDefinition, ParameterType, VariableScope
from loomstate.state.reducer import create_initial_state_from_config

EXAMPLE = Path(__file__).resolve().parents[1] / "examples" / "tavern.yaml"


def test_load_example_config():
    config = load_config_from_yaml(EXAMPLE)
    assert config.chat_id == "tavern-demo"
    names = [p.name for p in config.parameters]
    assert names[:3] == ["好感度", "心情", "天气"]
    assert "短期情绪" in names and "短期意图" in names
    affection = config.parameters[0]
    assert affection.type is ParameterType.NUMBER
    assert affection.range.is_bounded


def test_initial_state_from_config():
    state = create_initial_state_from_config(load_config_from_yaml(EXAMPLE))
    assert state.chat_id == "tavern-demo"
    assert state.variables["relationship"]["艾莉娅"]["好感度"]["林原"] == 40
    assert state.scene.location_hint == "酒馆"
    assert state.cast.focus == ["艾莉娅"]
    assert state.variables["scene"] == {}


def test_default_parameters_added_once():
    config = ensure_default_parameters(ensure_default_parameters(CharacterConfig()))
    ids = [p.id for p in config.parameters]
    assert ids == [SHORT_TERM_EMOTION_ID, SHORT_TERM_INTENT_ID]
    assert all(p.is_short_term and p.scope is VariableScope.CHARACTER for p in config.parameters)


def test_default_parameters_respect_existing_name():
    existing = ParameterDefinition(name="短期情绪", type=ParameterType.ENUM, enum_values=["喜", "怒"])
    config = ensure_default_parameters(CharacterConfig(parameters=[existing]))
    assert [p.name for p in config.parameters] == ["短期情绪", "短期意图"]
    assert config.parameters[0].type is ParameterType.ENUM


def test_default_parameters_skipped_when_disabled():
    config = CharacterConfig(options=EngineConfig(enable_short_term_parameters=False))
    assert ensure_default_parameters(config).parameters == []


def test_ensure_defaults_does_not_mutate_input():
    config = CharacterConfig()
    ensure_default_parameters(config)
    assert config.parameters == []


def test_empty_yaml(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    config = load_config_from_yaml(path)
    assert config.entities == []
    assert len(config.parameters) == 2


def test_invalid_yaml_raises(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("parameters:\n  - type: number\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        load_config_from_yaml(path)


def test_engine_config_defaults():
    config = EngineConfig()
    assert config.skip_roles == ["user"]
    assert config.cast_limits is None
    assert config.special_entity_name == "{{user}}"
