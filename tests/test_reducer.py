"""ChangeSet 折叠测试。"""

from hypothesis import given, strategies as st

from loomstate.config.settings import CastLimits, EngineConfig
from loomstate.models.change_set import (
    CastEnterItem,
    CastIntent,
    ChangeSet,
    SceneOp,
    SceneTagsDelta,
    VariableOp,
    VariableOperation,
)
from loomstate.models.engine_state import CastState, EngineState
from loomstate.models.entity import EntityDefinition, EntityKind
from loomstate.models.parameter import VariableScope
from loomstate.state.change_set import normalize_change_set
from loomstate.state.reducer import (
    apply_change_set,
    clone_state,
    create_initial_state,
    get_value_by_path,
)


# ──────────────────────────────────────────
# 初始状态
# ──────────────────────────────────────────


def test_initial_state_has_all_buckets():
    state = create_initial_state("c1")
    assert set(state.variables) == {"character", "relationship", "scene", "global"}
    assert state.scene.location_hint is None
    assert state.cast == CastState()
    assert state.retrieval_intent is None


def test_initial_state_does_not_share_inputs():
    variables = {"global": {"Weather": "rain"}}
    state = create_initial_state("c1", initial_variables=variables)
    state.variables["global"]["Weather"] = "sun"
    assert variables["global"]["Weather"] == "rain"


def test_initial_state_accepts_runtime_entity_dicts():
    state = create_initial_state(initial_runtime_entities={"Inn": {"kind": "location"}})
    assert state.runtime_entities["Inn"].name == "Inn"
    assert state.runtime_entities["Inn"].kind is EntityKind.LOCATION


# ──────────────────────────────────────────
# 变量
# ──────────────────────────────────────────


def test_scenario_symbolic_up_small(initial_state, parameter_defs):
    """显式 character 作用域 + 关系参数 + range [0,100]：40 → 45。"""
    state = create_initial_state(
        initial_variables={"character": {"Aria": {"Affection": {"Player": 40}}}}
    )
    op = VariableOp(
        scope=VariableScope.CHARACTER,
        subject_name="Aria",
        parameter_name="Affection",
        target_name="Player",
        operation=VariableOperation.SYMBOLIC,
        symbol="up_small",
    )
    new_state = apply_change_set(state, ChangeSet(variable_ops=[op]), parameter_defs)
    assert new_state.variables["character"]["Aria"]["Affection"]["Player"] == 45
    assert state.variables["character"]["Aria"]["Affection"]["Player"] == 40


def test_scope_from_parameter_definition(initial_state, parameter_defs):
    cs = normalize_change_set({"variables": [{"path": "Aria.Affection.Player", "symbol": "up_large"}]})
    state = apply_change_set(initial_state, cs, parameter_defs)
    assert state.variables["relationship"]["Aria"]["Affection"]["Player"] == 60


def test_short_term_parameter_forced_to_character_scope(parameter_defs):
    cs = normalize_change_set({"variables": [{"path": "Aria.短期情绪", "value": "紧张"}]})
    state = apply_change_set(create_initial_state(), cs, parameter_defs)
    assert state.variables["character"]["Aria"]["短期情绪"] == "紧张"
    assert state.variables["global"] == {}


def test_short_term_disabled_uses_declared_scope(parameter_defs):
    cs = normalize_change_set({"variables": [{"path": "短期情绪", "value": "平静"}]})
    config = EngineConfig(enable_short_term_parameters=False)
    state = apply_change_set(create_initial_state(), cs, parameter_defs, config=config)
    assert state.variables["global"]["短期情绪"] == "平静"


def test_scope_inferred_from_subject_then_global():
    cs = normalize_change_set(
        {"variables": [{"path": "Aria.Secret", "value": 1}, {"path": "Turn", "value": 3}]}
    )
    state = apply_change_set(create_initial_state(), cs)
    assert state.variables["character"]["Aria"]["Secret"] == 1
    assert state.variables["global"]["Turn"] == 3


def test_add_treats_absent_as_zero(parameter_defs):
    cs = normalize_change_set({"variables": [{"path": "Aria.Stamina", "op": "add", "value": 7}]})
    state = apply_change_set(create_initial_state(), cs, parameter_defs)
    assert state.variables["character"]["Aria"]["Stamina"] == 7
    state = apply_change_set(state, cs, parameter_defs)
    assert state.variables["character"]["Aria"]["Stamina"] == 14


def test_add_on_non_numeric_current_is_dropped():
    state = create_initial_state(initial_variables={"global": {"Weather": "rain"}})
    op = VariableOp(parameter_name="Weather", operation=VariableOperation.ADD, value=1)
    new_state = apply_change_set(state, ChangeSet(variable_ops=[op]))
    assert new_state.variables["global"]["Weather"] == "rain"


def test_set_replaces_non_dict_intermediate():
    state = create_initial_state(initial_variables={"character": {"Aria": "scalar"}})
    op = VariableOp(subject_name="Aria", parameter_name="Mood", value="calm")
    new_state = apply_change_set(state, ChangeSet(variable_ops=[op]))
    assert new_state.variables["character"]["Aria"] == {"Mood": "calm"}


def test_op_without_parameter_is_dropped():
    op = VariableOp(subject_name="Aria", value=1)
    state = apply_change_set(create_initial_state(), ChangeSet(variable_ops=[op]))
    assert state == create_initial_state()


def test_missing_bucket_drops_op():
    state = create_initial_state()
    del state.variables["scene"]
    op = VariableOp(scope=VariableScope.SCENE, parameter_name="Noise", value=1)
    new_state = apply_change_set(state, ChangeSet(variable_ops=[op]))
    assert "scene" not in new_state.variables


def test_symbolic_without_definition_is_dropped():
    op = VariableOp(parameter_name="Unknown", operation=VariableOperation.SYMBOLIC, symbol="up_small")
    state = apply_change_set(create_initial_state(), ChangeSet(variable_ops=[op]))
    assert state.variables["global"] == {}


def test_symbolic_enum_step(parameter_defs):
    state = create_initial_state(initial_variables={"character": {"Aria": {"Mood": "calm"}}})
    cs = normalize_change_set({"variables": [{"path": "Aria.Mood", "symbol": "next"}]})
    assert apply_change_set(state, cs, parameter_defs).variables["character"]["Aria"]["Mood"] == "tense"


def test_get_value_by_path(initial_state):
    assert get_value_by_path(initial_state, "Aria.Affection.Player") == 40
    assert get_value_by_path(initial_state, "Aria.Affection.Player", scope="character") is None
    assert get_value_by_path(initial_state, "Nobody.Affection") is None
    assert get_value_by_path(initial_state, "") is None


# ──────────────────────────────────────────
# 场景
# ──────────────────────────────────────────


def test_scene_tags_overwrite_wins_over_add(initial_state):
    cs = ChangeSet(scene_op=SceneOp(scene_tags=SceneTagsDelta(set=["a"], add=["b"])))
    assert apply_change_set(initial_state, cs).scene.scene_tags == ["a"]


def test_scene_tags_overwrite_can_clear(initial_state):
    cs = ChangeSet(scene_op=SceneOp(scene_tags=SceneTagsDelta(set=[])))
    assert apply_change_set(initial_state, cs).scene.scene_tags == []


def test_scene_tags_incremental(initial_state):
    cs = normalize_change_set({"scene": {"scene_tags": {"add": ["rain", "night"], "remove": ["night"]}}})
    assert apply_change_set(initial_state, cs).scene.scene_tags == ["rain"]


def test_location_hint_set_and_clear(initial_state):
    moved = apply_change_set(initial_state, normalize_change_set({"scene": {"location_hint": "Forest"}}))
    assert moved.scene.location_hint == "Forest"
    cleared = apply_change_set(
        moved, normalize_change_set({"scene": {"location_hint": {"op": "set", "value": None}}})
    )
    assert cleared.scene.location_hint is None


# ──────────────────────────────────────────
# 实体
# ──────────────────────────────────────────


def test_entity_add_creates_then_merges():
    cs = normalize_change_set({"entities": [{"name": "Inn", "kind": "location", "characters": ["Aria"]}]})
    state = apply_change_set(create_initial_state(), cs)
    assert state.runtime_entities["Inn"].characters == ["Aria"]

    cs2 = normalize_change_set({"entities": [{"name": "Inn", "base_info": "旧旅馆", "characters": ["Borin"]}]})
    state = apply_change_set(state, cs2)
    inn = state.runtime_entities["Inn"]
    assert inn.kind is EntityKind.LOCATION
    assert inn.base_info == "旧旅馆"
    assert inn.characters == ["Aria", "Borin"]


def test_entity_update_never_creates():
    cs = normalize_change_set({"entities": [{"name": "Inn", "op": "update", "base_info": "x"}]})
    assert apply_change_set(create_initial_state(), cs).runtime_entities == {}


def test_entity_update_ignores_config_entities(entity_defs):
    """update 只作用于运行时实体，配置层的同名实体不算「已存在」。"""
    cs = normalize_change_set({"entities": [{"name": "Aria", "op": "update", "base_info": "x"}]})
    state = apply_change_set(create_initial_state(), cs, entity_defs=entity_defs)
    assert state.runtime_entities == {}
    assert entity_defs[0].base_info == "旅行的吟游诗人"


def test_entity_remove():
    state = create_initial_state(initial_runtime_entities={"Inn": {"kind": "location"}})
    cs = normalize_change_set({"entities": [{"name": "Inn", "op": "remove"}]})
    assert apply_change_set(state, cs).runtime_entities == {}


# ──────────────────────────────────────────
# Cast
# ──────────────────────────────────────────


def test_cast_validated_against_normalized_entities(entity_defs):
    cs = normalize_change_set({"cast_intent": {"enter": ["Aria", "Tavern", "Ghost"]}})
    state = apply_change_set(create_initial_state(), cs, entity_defs=entity_defs)
    assert state.cast.focus == ["Aria"]


def test_character_created_in_same_delta_can_enter(entity_defs):
    cs = normalize_change_set(
        {
            "entities": [{"name": "Cato", "kind": "character"}],
            "cast_intent": {"enter": [{"name": "Cato", "layer": "offstage"}]},
        }
    )
    state = apply_change_set(create_initial_state(), cs, entity_defs=entity_defs)
    assert state.cast.offstage_related == ["Cato"]


def test_character_implied_by_location_can_enter():
    """只在地点的 characters 中出现过的名字，经归一化后成为角色，可以进场。"""
    entity_defs = [EntityDefinition(name="Tavern", kind=EntityKind.LOCATION, characters=["Eda"])]
    cs = ChangeSet(scene_op=SceneOp(cast_intent=CastIntent(enter=[CastEnterItem(name="Eda")])))
    state = apply_change_set(create_initial_state(), cs, entity_defs=entity_defs)
    assert state.cast.focus == ["Eda"]


def test_cast_limits_from_config(entity_defs):
    config = EngineConfig(cast_limits=CastLimits(max_focus=1))
    cs = ChangeSet(
        scene_op=SceneOp(
            cast_intent=CastIntent(enter=[CastEnterItem(name="Aria"), CastEnterItem(name="Borin")])
        )
    )
    state = apply_change_set(create_initial_state(), cs, entity_defs=entity_defs, config=config)
    assert state.cast.focus == ["Aria"]
    assert state.cast.present_supporting == ["Borin"]


# ──────────────────────────────────────────
# 检索意图 / 纯函数性质
# ──────────────────────────────────────────


def test_retrieval_intent_last_write_wins(initial_state):
    first = apply_change_set(initial_state, ChangeSet(retrieval_intent={"a": 1, "b": 2}))
    second = apply_change_set(first, ChangeSet(retrieval_intent={"c": 3}))
    assert second.retrieval_intent == {"c": 3}


def test_apply_returns_distinct_deep_copy(initial_state):
    result = apply_change_set(initial_state, ChangeSet())
    assert result == initial_state
    assert result is not initial_state
    result.variables["relationship"]["Aria"]["Affection"]["Player"] = 0
    assert initial_state.variables["relationship"]["Aria"]["Affection"]["Player"] == 40


def test_clone_none_returns_fresh_state():
    assert clone_state(None) == EngineState()


_scalars = st.one_of(st.integers(), st.text(max_size=5), st.booleans(), st.none())


@st.composite
def engine_states(draw):
    names = st.sampled_from(["Aria", "Borin", "Cato"])
    return create_initial_state(
        chat_id=draw(st.text(max_size=5)),
        initial_variables={
            "character": draw(st.dictionaries(names, st.dictionaries(st.text(max_size=3), _scalars, max_size=2), max_size=2)),
            "global": draw(st.dictionaries(st.text(max_size=3), _scalars, max_size=3)),
        },
        initial_scene={
            "location_hint": draw(st.one_of(st.none(), st.text(max_size=5))),
            "scene_tags": draw(st.lists(st.text(min_size=1, max_size=4), unique=True, max_size=3)),
        },
        initial_cast={"focus": draw(st.lists(names, unique=True, max_size=2))},
    )


@given(state=engine_states())
def test_empty_change_set_is_identity(state):
    for empty in (
        ChangeSet(),
        ChangeSet(variable_ops=[], scene_op=SceneOp(), entity_ops=[], retrieval_intent={}),
        normalize_change_set({}),
        normalize_change_set({"scene": {}, "variables": []}),
    ):
        assert empty.is_empty
        assert apply_change_set(state, empty) == state
