"""EngineState 的创建、克隆与 ChangeSet 折叠。

apply_change_set 是纯函数：总是返回与输入无共享引用的新状态，
任何单个畸形操作都只会被丢弃并记录日志，不会中断折叠。
"""

from __future__ import annotations

import logging
from typing import Any

from loomstate.config.settings import CharacterConfig, EngineConfig
from loomstate.models.change_set import (
    ChangeSet,
    EntityOp,
    EntityOperation,
    SceneOp,
    VariableOp,
    VariableOperation,
)
from loomstate.models.engine_state import CastState, EngineState, SceneState
from loomstate.models.entity import EntityDefinition, EntityKind
from loomstate.models.parameter import ParameterDefinition, VariableScope, find_parameter
from loomstate.state.cast import apply_cast_intent
from loomstate.state.change_set import parse_variable_path
from loomstate.state.entities import build_normalized_entities, characters_of
from loomstate.state.symbolic import resolve_symbolic

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────
# 创建与克隆
# ──────────────────────────────────────────


def create_initial_state(
    chat_id: str = "",
    initial_variables: dict[str, dict[str, Any]] | None = None,
    initial_scene: dict[str, Any] | SceneState | None = None,
    initial_cast: dict[str, list[str]] | CastState | None = None,
    initial_runtime_entities: dict[str, EntityDefinition | dict] | None = None,
) -> EngineState:
    """创建初始 EngineState；四个变量桶总是存在，输入不会被共享。"""
    state = EngineState(chat_id=chat_id or "")
    for scope, bucket in (initial_variables or {}).items():
        if isinstance(bucket, dict):
            state.variables[scope] = dict(bucket)

    if isinstance(initial_scene, SceneState):
        state.scene = initial_scene
    elif initial_scene:
        state.scene = SceneState.model_validate(initial_scene)

    if isinstance(initial_cast, CastState):
        state.cast = initial_cast
    elif initial_cast:
        state.cast = CastState.model_validate(initial_cast)

    for name, entity in (initial_runtime_entities or {}).items():
        if isinstance(entity, dict):
            entity = EntityDefinition.model_validate({"name": name, **entity})
        state.runtime_entities[name] = entity

    return clone_state(state)


def create_initial_state_from_config(config: CharacterConfig) -> EngineState:
    """按角色配置中的 initial_state 创建初始状态。"""
    initial = config.initial_state
    return create_initial_state(
        chat_id=config.chat_id,
        initial_variables=initial.variables,
        initial_scene=initial.scene,
        initial_cast=initial.cast,
        initial_runtime_entities=initial.runtime_entities,
    )


def clone_state(state: EngineState | None) -> EngineState:
    """完整深拷贝。"""
    if state is None:
        return EngineState()
    return state.model_copy(deep=True)


# ──────────────────────────────────────────
# 嵌套路径读写
# ──────────────────────────────────────────


def _get_nested(root: Any, segments: list[str]) -> Any:
    current = root
    for segment in segments:
        if not isinstance(current, dict):
            return None
        current = current.get(segment)
    return current


def _set_nested(root: dict, segments: list[str], value: Any) -> None:
    """写入嵌套路径，自动创建（或替换非 dict 的）中间容器。"""
    if not segments:
        return
    current = root
    for segment in segments[:-1]:
        if not isinstance(current.get(segment), dict):
            current[segment] = {}
        current = current[segment]
    current[segments[-1]] = value


def get_value_by_path(state: EngineState, path: str, scope: VariableScope | str | None = None) -> Any:
    """按人类可读路径读取变量值。

    未指定作用域时按 relationship → character → scene → global 顺序查找第一个存在的值。
    """
    parsed = parse_variable_path(path)
    if not parsed.parameter_name:
        return None
    segments = [s for s in (parsed.subject_name, parsed.parameter_name, parsed.target_name) if s]

    if scope is not None:
        bucket = state.variables.get(VariableScope(scope).value)
        return _get_nested(bucket, segments) if bucket is not None else None

    for candidate in (
        VariableScope.RELATIONSHIP,
        VariableScope.CHARACTER,
        VariableScope.SCENE,
        VariableScope.GLOBAL,
    ):
        value = _get_nested(state.variables.get(candidate.value), segments)
        if value is not None:
            return value
    return None


# ──────────────────────────────────────────
# 变量操作
# ──────────────────────────────────────────


def _resolve_scope(
    op: VariableOp,
    param_def: ParameterDefinition | None,
    config: EngineConfig,
) -> VariableScope:
    """作用域优先级：显式 scope > 参数定义（短期参数强制 character）> 有主体则 character > global。"""
    if op.scope is not None:
        return op.scope
    if param_def is not None:
        if param_def.is_short_term and config.enable_short_term_parameters:
            return VariableScope.CHARACTER
        if param_def.scope is not None:
            return param_def.scope
    if op.subject_name:
        return VariableScope.CHARACTER
    return VariableScope.GLOBAL


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _apply_variable_op(
    variables: dict[str, dict[str, Any]],
    op: VariableOp,
    parameter_defs: list[ParameterDefinition] | None,
    config: EngineConfig,
) -> None:
    segments = op.storage_path()
    if not segments:
        logger.warning("变量操作缺少可解析的参数名，已跳过: path=%s", op.path)
        return

    param_def = find_parameter(parameter_defs, op.parameter_name)
    scope = _resolve_scope(op, param_def, config)
    bucket = variables.get(scope.value)
    if not isinstance(bucket, dict):
        logger.warning("状态中不存在作用域 %s，变量操作已跳过: %s", scope.value, ".".join(segments))
        return

    current = _get_nested(bucket, segments)

    match op.operation:
        case VariableOperation.SET:
            _set_nested(bucket, segments, op.value)
            logger.debug("set [%s] %s = %r", scope.value, ".".join(segments), op.value)

        case VariableOperation.ADD:
            if not _is_number(op.value):
                logger.warning("add 操作的增量不是数值，已跳过: %s", ".".join(segments))
                return
            if current is not None and not _is_number(current):
                logger.warning("add 操作的当前值不是数值，已跳过: %s = %r", ".".join(segments), current)
                return
            new_value = (current or 0) + op.value
            _set_nested(bucket, segments, new_value)
            logger.debug("add [%s] %s: %r + %r = %r", scope.value, ".".join(segments), current, op.value, new_value)

        case VariableOperation.SYMBOLIC:
            if param_def is None:
                logger.warning(
                    "未找到参数定义 '%s'，符号化操作已跳过 (%s)", op.parameter_name, op.symbol
                )
                return
            resolved = resolve_symbolic(op.symbol, current, param_def)
            if not resolved.moved:
                return
            _set_nested(bucket, segments, resolved.value)
            logger.debug(
                "symbolic [%s] %s: %r → %r (%s%s)",
                scope.value,
                ".".join(segments),
                current,
                resolved.value,
                op.symbol,
                ", 已截断" if resolved.clamped else "",
            )


# ──────────────────────────────────────────
# 场景
# ──────────────────────────────────────────


def _dedupe_tags(tags: list[str]) -> list[str]:
    out: list[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            continue
        val = tag.strip()
        if val and val not in out:
            out.append(val)
    return out


def _apply_scene_op(scene: SceneState, scene_op: SceneOp) -> None:
    if scene_op.location_hint is not None:
        scene.location_hint = scene_op.location_hint.value

    tags = scene_op.scene_tags
    if tags is None:
        return
    if tags.is_overwrite:
        # set 出现时 add / remove 一律忽略
        scene.scene_tags = _dedupe_tags(tags.set or [])
        return
    current = _dedupe_tags(scene.scene_tags)
    for tag in _dedupe_tags(tags.add):
        if tag not in current:
            current.append(tag)
    removed = set(_dedupe_tags(tags.remove))
    scene.scene_tags = [t for t in current if t not in removed]


# ──────────────────────────────────────────
# 实体
# ──────────────────────────────────────────


def _merge_names(existing: list[str], incoming: list[str]) -> list[str]:
    out = list(existing)
    for name in incoming:
        val = name.strip()
        if val and val not in out:
            out.append(val)
    return out


def _apply_entity_op(runtime: dict[str, EntityDefinition], op: EntityOp) -> None:
    name = op.name.strip()
    if not name:
        return

    if op.op is EntityOperation.REMOVE:
        if runtime.pop(name, None) is not None:
            logger.debug("移除运行时实体 %s", name)
        return

    existing = runtime.get(name)
    if existing is None:
        if op.op is EntityOperation.UPDATE:
            logger.debug("update 目标 %s 不存在于运行时实体中，已忽略", name)
            return
        existing = EntityDefinition(name=name, kind=op.kind or EntityKind.OTHER)

    updated = existing.model_copy(deep=True)
    if op.kind is not None:
        updated.kind = op.kind
    if op.base_info is not None:
        updated.base_info = op.base_info
    if op.children_names is not None:
        updated.children_names = _merge_names(updated.children_names, op.children_names)
    if op.locations is not None:
        updated.locations = _merge_names(updated.locations, op.locations)
    if op.characters is not None:
        updated.characters = _merge_names(updated.characters, op.characters)
    runtime[name] = updated


# ──────────────────────────────────────────
# 折叠
# ──────────────────────────────────────────


def apply_change_set(
    state: EngineState,
    change_set: ChangeSet | None,
    parameter_defs: list[ParameterDefinition] | None = None,
    entity_defs: list[EntityDefinition] | None = None,
    config: EngineConfig | None = None,
) -> EngineState:
    """把一个 ChangeSet 应用到状态上，返回新状态。

    应用顺序：变量 → 场景（地点 / 标签）→ 实体 → Cast 意图 → 检索意图。
    实体先于 Cast，使同一轮新建的角色可以立即进场。
    """
    config = config or EngineConfig()
    nxt = clone_state(state)
    if change_set is None or change_set.is_empty:
        return nxt

    # 1) 变量
    for op in change_set.variable_ops or []:
        _apply_variable_op(nxt.variables, op, parameter_defs, config)

    # 2) 场景
    scene_op = change_set.scene_op
    if scene_op is not None:
        _apply_scene_op(nxt.scene, scene_op)

    # 3) 运行时实体
    for op in change_set.entity_ops or []:
        _apply_entity_op(nxt.runtime_entities, op)

    # 4) Cast：基于最新的归一化实体视图校验
    intent = change_set.cast_intent
    if intent is not None and not intent.is_empty:
        normalized = build_normalized_entities(
            entity_defs,
            nxt.runtime_entities,
            parameter_defs=parameter_defs,
            config=config,
        )
        nxt.cast = apply_cast_intent(nxt.cast, intent, characters_of(normalized), config.cast_limits)

    # 5) 检索意图：整体替换
    if change_set.retrieval_intent:
        nxt.retrieval_intent = dict(change_set.retrieval_intent)

    return nxt
