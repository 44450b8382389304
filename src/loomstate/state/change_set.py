"""ChangeSet 规整：把上游的松散结构严格解析为封闭的子变更类型。

- 每个字段只接受固定的别名集合；未知的顶层字段与无法解析的条目会被隔离到
  NormalizeReport.rejected，不会被静默透传。
- 单条畸形条目只会被丢弃，不会让整个 ChangeSet 失败。
- 这里只做格式归一，不做数值解释；数值映射交给 symbolic 模块。
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError

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
from loomstate.models.engine_state import CastTier
from loomstate.models.entity import EntityKind
from loomstate.models.parameter import VariableScope

logger = logging.getLogger(__name__)

# ── 顶层字段别名 ──
_VARIABLE_KEYS = ("variable_ops", "variableOps", "variables", "state_delta", "stateDelta")
_SCENE_KEYS = ("scene_op", "sceneOp", "scene", "scene_delta", "sceneDelta")
_CAST_KEYS = ("cast_intent", "castIntent")
_ENTITY_KEYS = ("entity_ops", "entityOps", "entities", "entity_delta", "entityDelta")
_RETRIEVAL_KEYS = ("retrieval_intent", "retrievalIntent", "world_intent", "worldIntent")

# ── 变量操作字段别名 ──
_PATH_KEYS = ("path", "name")
_SUBJECT_KEYS = ("subject_name", "subjectName", "subject")
_PARAMETER_KEYS = ("parameter_name", "parameterName", "parameter", "key", "id")
_TARGET_KEYS = ("target_name", "targetName", "target")
_OPERATION_KEYS = ("operation", "op")
_VARIABLE_FIELDS = frozenset(
    _PATH_KEYS + _SUBJECT_KEYS + _PARAMETER_KEYS + _TARGET_KEYS + _OPERATION_KEYS
    + ("scope", "value", "symbol", "reason", "meta")
)

# ── 场景字段别名 ──
_LOCATION_KEYS = ("location_hint", "locationHint")
_TAGS_KEYS = ("scene_tags", "sceneTags")

# ── Cast 层级别名 ──
_LAYER_KEYS = ("preferred_layer", "preferredLayer", "layer", "role")
_LAYER_ALIASES: dict[str, CastTier] = {
    "focus": CastTier.FOCUS,
    "present_supporting": CastTier.PRESENT_SUPPORTING,
    "presentsupporting": CastTier.PRESENT_SUPPORTING,
    "supporting": CastTier.PRESENT_SUPPORTING,
    "offstage_related": CastTier.OFFSTAGE_RELATED,
    "offstagerelated": CastTier.OFFSTAGE_RELATED,
    "offstage": CastTier.OFFSTAGE_RELATED,
}

# ── 实体字段别名 ──
_KIND_KEYS = ("kind", "type")
_BASE_INFO_KEYS = ("base_info", "baseInfo", "baseinfo")
_CHILDREN_KEYS = ("children_names", "childrenNames", "children")


class ParsedVariablePath(BaseModel):
    """人类可读变量路径的解析结果。"""

    raw: str = Field(default="", description="原始路径")
    segments: list[str] = Field(default_factory=list, description="按 '.' 切分后的片段")
    subject_name: str | None = Field(default=None, description="主体名")
    parameter_name: str | None = Field(default=None, description="参数名")
    target_name: str | None = Field(default=None, description="目标名")


class RejectedEntry(BaseModel):
    """被隔离的畸形输入。"""

    section: str = Field(description="所属部分: variable_ops / scene_op / entity_ops / ...")
    raw: Any = Field(default=None, description="原始输入")
    reason: str = Field(default="", description="拒绝原因")


class NormalizeReport(BaseModel):
    """规整结果：干净的 ChangeSet + 被隔离的条目。"""

    change_set: ChangeSet = Field(default_factory=ChangeSet)
    rejected: list[RejectedEntry] = Field(default_factory=list)


# ──────────────────────────────────────────
# 路径解析
# ──────────────────────────────────────────


def parse_variable_path(path: str | None) -> ParsedVariablePath:
    """解析人类可读的变量路径。

    约定：
    - "艾莉娅.好感度.林原" → 主体 / 参数 / 目标
    - "艾莉娅.短期情绪"     → 主体 / 参数
    - "天气"               → 仅参数（scene / global）

    超过三段时，第三段之后的内容整体作为目标名。
    """
    raw = "" if path is None else str(path)
    segments = [s.strip() for s in raw.strip().split(".") if s.strip()]
    if not segments:
        return ParsedVariablePath(raw=raw)
    if len(segments) == 1:
        return ParsedVariablePath(raw=raw, segments=segments, parameter_name=segments[0])
    return ParsedVariablePath(
        raw=raw,
        segments=segments,
        subject_name=segments[0],
        parameter_name=segments[1],
        target_name=".".join(segments[2:]) or None,
    )


# ──────────────────────────────────────────
# 内部工具
# ──────────────────────────────────────────


def _pick(raw: dict, keys: tuple[str, ...]) -> Any:
    """按别名顺序取第一个非 None 的值。"""
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _has_any(raw: dict, keys: tuple[str, ...]) -> bool:
    return any(key in raw for key in keys)


def _clean_str(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _clean_str_list(values: Any) -> list[str]:
    """只保留非空字符串，去首尾空白，保持顺序去重。"""
    if not isinstance(values, list):
        return []
    seen: set[str] = set()
    out: list[str] = []
    for item in values:
        val = _clean_str(item)
        if val is None or val in seen:
            continue
        seen.add(val)
        out.append(val)
    return out


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# ──────────────────────────────────────────
# 变量操作
# ──────────────────────────────────────────


def _normalize_variable_op(raw: Any) -> VariableOp:
    """把单条原始变量操作解析为 VariableOp；无法解析时抛出 ValueError。"""
    if not isinstance(raw, dict):
        raise ValueError("变量操作必须是对象")

    path = _clean_str(_pick(raw, _PATH_KEYS))
    subject = _clean_str(_pick(raw, _SUBJECT_KEYS))
    parameter = _clean_str(_pick(raw, _PARAMETER_KEYS))
    target = _clean_str(_pick(raw, _TARGET_KEYS))

    # key / id 有时直接给出完整路径
    if parameter and "." in parameter:
        path = path or parameter
        parameter = None

    if not parameter and path:
        parsed = parse_variable_path(path)
        subject = subject or parsed.subject_name
        parameter = parsed.parameter_name
        target = target or parsed.target_name

    if not parameter:
        raise ValueError("缺少可解析的参数名")

    symbol = _clean_str(raw.get("symbol"))
    value = raw.get("value")
    op_raw = _pick(raw, _OPERATION_KEYS)
    if op_raw is None:
        operation = VariableOperation.SYMBOLIC if symbol else VariableOperation.SET
    else:
        try:
            operation = VariableOperation(str(op_raw).strip().lower())
        except ValueError:
            raise ValueError(f"未知的变量操作类型: {op_raw!r}") from None

    if operation is VariableOperation.SYMBOLIC and not symbol:
        symbol = _clean_str(value)
        if not symbol:
            raise ValueError("symbolic 操作缺少符号")
        value = None
    if operation is VariableOperation.ADD and not _is_number(value):
        raise ValueError(f"add 操作需要数值增量，收到 {value!r}")

    scope: VariableScope | None = None
    scope_raw = raw.get("scope")
    if scope_raw is not None:
        try:
            scope = VariableScope(str(scope_raw).strip().lower())
        except ValueError:
            raise ValueError(f"未知的作用域: {scope_raw!r}") from None
        if scope is VariableScope.CHARACTER and not subject:
            raise ValueError("character 作用域需要主体名")
        if scope is VariableScope.RELATIONSHIP and not (subject and target):
            raise ValueError("relationship 作用域需要主体名与目标名")

    reason = raw.get("reason")
    meta = raw.get("meta")
    if reason is None and isinstance(meta, dict):
        reason = meta.get("reason")

    return VariableOp(
        scope=scope,
        subject_name=subject,
        parameter_name=parameter,
        target_name=target,
        operation=operation,
        value=value,
        symbol=symbol,
        path=path,
        reason=str(reason or ""),
    )


def _unwrap_variables(raw: Any) -> Any:
    """兼容 {"variables": [...]} 形式的外层包装。"""
    if isinstance(raw, dict) and "variables" in raw:
        return raw["variables"]
    return raw


# ──────────────────────────────────────────
# 场景 / Cast
# ──────────────────────────────────────────


def _normalize_location_hint(raw: Any) -> LocationHintDelta | None:
    """地点提示：字符串为设置；{"op": "set", "value": null} 为清空；null 视为未提供。"""
    if raw is None:
        return None
    if isinstance(raw, str):
        value = _clean_str(raw)
        return LocationHintDelta(value=value) if value else None
    if isinstance(raw, dict):
        op = str(raw.get("op", "set")).strip().lower()
        if op != "set":
            raise ValueError(f"地点提示只支持 set 操作，收到 {op!r}")
        return LocationHintDelta(value=_clean_str(raw.get("value")))
    raise ValueError("地点提示必须是字符串或对象")


def _normalize_scene_tags(raw: Any) -> SceneTagsDelta | None:
    """场景标签：列表视为覆盖；对象按 set / add / remove 解析。"""
    if raw is None:
        return None
    if isinstance(raw, list):
        return SceneTagsDelta(set=_clean_str_list(raw))
    if not isinstance(raw, dict):
        raise ValueError("场景标签必须是列表或对象")

    overwrite = _clean_str_list(raw["set"]) if isinstance(raw.get("set"), list) else None
    delta = SceneTagsDelta(
        set=overwrite,
        add=_clean_str_list(raw.get("add")),
        remove=_clean_str_list(raw.get("remove")),
    )
    return None if delta.is_empty else delta


def _normalize_layer(raw: Any) -> CastTier | None:
    if raw is None:
        return None
    key = str(raw).strip().lower()
    if not key:
        return None
    if key not in _LAYER_ALIASES:
        raise ValueError(f"未知的 Cast 层级: {raw!r}")
    return _LAYER_ALIASES[key]


def _cast_items(raw: dict, key: str, rejected: list[RejectedEntry]) -> list:
    items = raw.get(key)
    if items is None:
        return []
    if not isinstance(items, list):
        rejected.append(RejectedEntry(section=f"cast_intent.{key}", raw=items, reason=f"{key} 必须是列表"))
        return []
    return items


def _normalize_cast_intent(raw: Any, rejected: list[RejectedEntry]) -> CastIntent | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        rejected.append(RejectedEntry(section="cast_intent", raw=raw, reason="Cast 意图必须是对象"))
        return None

    enter: list[CastEnterItem] = []
    for item in _cast_items(raw, "enter", rejected):
        try:
            if isinstance(item, str):
                name = _clean_str(item)
                layer = None
            elif isinstance(item, dict):
                name = _clean_str(item.get("name") or item.get("id"))
                layer = _normalize_layer(_pick(item, _LAYER_KEYS))
            else:
                raise ValueError("进场条目必须是字符串或对象")
            if not name:
                raise ValueError("进场条目缺少角色名")
            enter.append(CastEnterItem(name=name, preferred_layer=layer))
        except (ValidationError, ValueError) as e:
            rejected.append(RejectedEntry(section="cast_intent.enter", raw=item, reason=str(e)))

    leave: list[str] = []
    for item in _cast_items(raw, "leave", rejected):
        name = _clean_str(item) if isinstance(item, str) else None
        if isinstance(item, dict):
            name = _clean_str(item.get("name") or item.get("id"))
        if not name:
            rejected.append(RejectedEntry(section="cast_intent.leave", raw=item, reason="退场条目缺少角色名"))
            continue
        if name not in leave:
            leave.append(name)

    intent = CastIntent(enter=enter, leave=leave)
    return None if intent.is_empty else intent


def _normalize_scene_op(
    raw: Any,
    cast_raw: Any,
    rejected: list[RejectedEntry],
) -> SceneOp | None:
    location_hint = None
    scene_tags = None
    if raw is not None:
        if not isinstance(raw, dict):
            rejected.append(RejectedEntry(section="scene_op", raw=raw, reason="场景变更必须是对象"))
            raw = {}
        known = set(_LOCATION_KEYS + _TAGS_KEYS + _CAST_KEYS)
        for key in raw:
            if key not in known:
                rejected.append(RejectedEntry(section="scene_op", raw={key: raw[key]}, reason=f"未知字段 {key!r}"))
        try:
            location_hint = _normalize_location_hint(_pick(raw, _LOCATION_KEYS))
        except (ValidationError, ValueError) as e:
            rejected.append(RejectedEntry(section="scene_op.location_hint", raw=raw, reason=str(e)))
        try:
            scene_tags = _normalize_scene_tags(_pick(raw, _TAGS_KEYS))
        except (ValidationError, ValueError) as e:
            rejected.append(RejectedEntry(section="scene_op.scene_tags", raw=raw, reason=str(e)))
        if cast_raw is None:
            cast_raw = _pick(raw, _CAST_KEYS)

    cast_intent = _normalize_cast_intent(cast_raw, rejected)
    scene_op = SceneOp(location_hint=location_hint, scene_tags=scene_tags, cast_intent=cast_intent)
    return None if scene_op.is_empty else scene_op


# ──────────────────────────────────────────
# 实体操作
# ──────────────────────────────────────────


def _normalize_entity_op(raw: Any) -> EntityOp:
    if not isinstance(raw, dict):
        raise ValueError("实体操作必须是对象")
    name = _clean_str(raw.get("name"))
    if not name:
        raise ValueError("实体操作缺少名称")

    op_raw = _pick(raw, ("op", "operation"))
    try:
        op = EntityOperation(str(op_raw).strip().lower()) if op_raw is not None else EntityOperation.ADD
    except ValueError:
        raise ValueError(f"未知的实体操作: {op_raw!r}") from None

    kind_raw = _pick(raw, _KIND_KEYS)
    try:
        kind = EntityKind(str(kind_raw).strip().lower()) if kind_raw is not None else None
    except ValueError:
        raise ValueError(f"未知的实体类型: {kind_raw!r}") from None

    base_info = _pick(raw, _BASE_INFO_KEYS)

    def list_field(keys: tuple[str, ...]) -> list[str] | None:
        # 字段缺省 → None（不改动）；字段存在 → 规整后的列表
        for key in keys:
            if key in raw:
                return _clean_str_list(raw[key])
        return None

    return EntityOp(
        op=op,
        name=name,
        kind=kind,
        base_info=str(base_info) if base_info is not None else None,
        children_names=list_field(_CHILDREN_KEYS),
        locations=list_field(("locations",)),
        characters=list_field(("characters",)),
    )


# ──────────────────────────────────────────
# 对外入口
# ──────────────────────────────────────────


def create_empty_change_set() -> ChangeSet:
    """创建一个空 ChangeSet。"""
    return ChangeSet()


def compose_change_set(
    variable_ops: list[VariableOp] | None = None,
    scene_op: SceneOp | None = None,
    entity_ops: list[EntityOp] | None = None,
    retrieval_intent: dict[str, Any] | None = None,
) -> ChangeSet:
    """由各部分组合出 ChangeSet；空的部分一律省略，使「空」在结构上可判定。"""
    return ChangeSet(
        variable_ops=list(variable_ops) if variable_ops else None,
        scene_op=scene_op if scene_op is not None and not scene_op.is_empty else None,
        entity_ops=list(entity_ops) if entity_ops else None,
        retrieval_intent=dict(retrieval_intent) if isinstance(retrieval_intent, dict) and retrieval_intent else None,
    )


def parse_change_set(raw: Any) -> NormalizeReport:
    """严格解析上游原始结构，返回 ChangeSet 与被隔离的条目。"""
    rejected: list[RejectedEntry] = []
    if raw is None:
        return NormalizeReport()
    if isinstance(raw, ChangeSet):
        return NormalizeReport(change_set=raw)
    if not isinstance(raw, dict):
        rejected.append(RejectedEntry(section="root", raw=raw, reason="ChangeSet 必须是对象"))
        return NormalizeReport(rejected=rejected)

    known = set(_VARIABLE_KEYS + _SCENE_KEYS + _CAST_KEYS + _ENTITY_KEYS + _RETRIEVAL_KEYS)
    for key in raw:
        if key not in known:
            rejected.append(RejectedEntry(section="root", raw={key: raw[key]}, reason=f"未知字段 {key!r}"))

    # 1) 变量
    variable_ops: list[VariableOp] = []
    raw_vars = _unwrap_variables(_pick(raw, _VARIABLE_KEYS))
    if raw_vars is not None and not isinstance(raw_vars, list):
        rejected.append(RejectedEntry(section="variable_ops", raw=raw_vars, reason="变量操作必须是列表"))
        raw_vars = None
    for item in raw_vars or []:
        try:
            variable_ops.append(_normalize_variable_op(item))
        except (ValidationError, ValueError) as e:
            rejected.append(RejectedEntry(section="variable_ops", raw=item, reason=str(e)))

    # 2) 场景 + Cast（顶层 cast_intent 优先于场景内的同名字段）
    scene_op = _normalize_scene_op(_pick(raw, _SCENE_KEYS), _pick(raw, _CAST_KEYS), rejected)

    # 3) 实体
    entity_ops: list[EntityOp] = []
    raw_entities = _pick(raw, _ENTITY_KEYS)
    if raw_entities is not None and not isinstance(raw_entities, list):
        rejected.append(RejectedEntry(section="entity_ops", raw=raw_entities, reason="实体操作必须是列表"))
        raw_entities = None
    for item in raw_entities or []:
        try:
            entity_ops.append(_normalize_entity_op(item))
        except (ValidationError, ValueError) as e:
            rejected.append(RejectedEntry(section="entity_ops", raw=item, reason=str(e)))

    # 4) 检索意图（透传）
    retrieval_intent = _pick(raw, _RETRIEVAL_KEYS)
    if retrieval_intent is not None and not isinstance(retrieval_intent, dict):
        rejected.append(RejectedEntry(section="retrieval_intent", raw=retrieval_intent, reason="检索意图必须是对象"))
        retrieval_intent = None

    for entry in rejected:
        logger.warning("ChangeSet 条目被隔离 [%s]: %s", entry.section, entry.reason)

    change_set = compose_change_set(variable_ops, scene_op, entity_ops, retrieval_intent)
    return NormalizeReport(change_set=change_set, rejected=rejected)


def normalize_change_set(raw: Any) -> ChangeSet:
    """规整上游原始结构为 ChangeSet，畸形条目被丢弃。"""
    return parse_change_set(raw).change_set
