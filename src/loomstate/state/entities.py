"""实体图归一化：合并配置层实体与运行时实体，保证关系合法且双向对称。

各步骤必须按顺序完整执行，后一步依赖前一步累积得到的合并集合：
1. 按 name 合并：标量字段配置优先，列表字段取并集去重
2. 按类型清理不合法的结构字段
3. 正向传播：location.characters → character.locations
4. 反向传播：character.locations → location.characters
5. 为 owner_names 中缺失的名字补占位实体（other）
6. 强制注入 / 覆盖特殊实体（character，身份字段不可合并）
7. 自动绑定指定参数到除特殊实体外的所有角色（幂等）

本模块从不抛出异常：name 缺失或为空的条目在合并时直接跳过。
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from loomstate.config.settings import EngineConfig
from loomstate.models.entity import EntityDefinition, EntityKind, SpecialEntity
from loomstate.models.parameter import ParameterDefinition, find_parameter

logger = logging.getLogger(__name__)


def _merge_list(*lists: Iterable[str] | None) -> list[str]:
    """保持先后顺序的并集，去空白、去空串、去重。"""
    seen: set[str] = set()
    out: list[str] = []
    for items in lists:
        for item in items or []:
            if not isinstance(item, str):
                continue
            val = item.strip()
            if not val or val in seen:
                continue
            seen.add(val)
            out.append(val)
    return out


def _coerce_entity(src: EntityDefinition | Mapping | None) -> EntityDefinition | None:
    """把输入转为 EntityDefinition；畸形输入返回 None。"""
    if isinstance(src, EntityDefinition):
        return src
    if isinstance(src, Mapping):
        try:
            return EntityDefinition.model_validate(dict(src))
        except ValueError as e:
            logger.debug("跳过无法解析的实体: %s", e)
            return None
    return None


def _merge_into(
    by_name: dict[str, EntityDefinition],
    src: EntityDefinition,
    scalar_precedence: bool,
) -> None:
    """合并单个实体。scalar_precedence=True 时，已存在条目的标量字段优先（配置层先合并）。"""
    name = src.name.strip() if isinstance(src.name, str) else ""
    if not name:
        return
    existing = by_name.get(name)
    if existing is None:
        merged = src.model_copy(deep=True)
        merged.name = name
        merged.children_names = _merge_list(src.children_names)
        merged.characters = _merge_list(src.characters)
        merged.locations = _merge_list(src.locations)
        merged.parameter_names = _merge_list(src.parameter_names)
        merged.tags_for_supporting = _merge_list(src.tags_for_supporting)
        by_name[name] = merged
        return

    primary, secondary = (existing, src) if scalar_precedence else (src, existing)
    by_name[name] = EntityDefinition(
        name=name,
        id=(primary.id or secondary.id).strip(),
        kind=primary.kind,
        base_info=primary.base_info or secondary.base_info,
        children_names=_merge_list(existing.children_names, src.children_names),
        characters=_merge_list(existing.characters, src.characters),
        locations=_merge_list(existing.locations, src.locations),
        parameter_names=_merge_list(existing.parameter_names, src.parameter_names),
        summary_for_supporting=primary.summary_for_supporting or secondary.summary_for_supporting,
        tags_for_supporting=_merge_list(existing.tags_for_supporting, src.tags_for_supporting),
        desc_for_offstage=primary.desc_for_offstage or secondary.desc_for_offstage,
    )


def _strip_illegal_fields(entity: EntityDefinition) -> None:
    if entity.kind is EntityKind.CHARACTER:
        entity.children_names = []
        entity.characters = []
    elif entity.kind is EntityKind.LOCATION:
        entity.locations = []
        entity.summary_for_supporting = ""
        entity.tags_for_supporting = []
        entity.desc_for_offstage = ""
    else:
        entity.children_names = []
        entity.characters = []
        entity.locations = []
        entity.summary_for_supporting = ""
        entity.tags_for_supporting = []
        entity.desc_for_offstage = ""


def _ensure_kind(
    by_name: dict[str, EntityDefinition],
    name: str,
    kind: EntityKind,
) -> EntityDefinition | None:
    """确保 name 对应一个 kind 类型的实体：缺失则创建，other 则提升；与其它类型冲突时返回 None。"""
    entity = by_name.get(name)
    if entity is None:
        entity = EntityDefinition(name=name, kind=kind)
        by_name[name] = entity
        return entity
    if entity.kind is EntityKind.OTHER:
        entity.kind = kind
        return entity
    if entity.kind is kind:
        return entity
    return None


def _propagate(
    by_name: dict[str, EntityDefinition],
    owner_kind: EntityKind,
    forward_field: str,
    peer_kind: EntityKind,
    backward_field: str,
) -> None:
    """把 owner 侧的 forward_field 同步到 peer 侧的 backward_field。"""
    for owner in list(by_name.values()):
        if owner.kind is not owner_kind:
            continue
        kept: list[str] = []
        for peer_name in getattr(owner, forward_field):
            if peer_name == owner.name:
                continue
            peer = _ensure_kind(by_name, peer_name, peer_kind)
            if peer is None:
                logger.debug(
                    "实体 %s 的 %s 引用了类型冲突的实体 %s，已忽略",
                    owner.name,
                    forward_field,
                    peer_name,
                )
                continue
            kept.append(peer_name)
            back = getattr(peer, backward_field)
            if owner.name not in back:
                back.append(owner.name)
        setattr(owner, forward_field, kept)


def build_normalized_entities(
    config_entities: Iterable[EntityDefinition | Mapping] | None,
    runtime_entities: Mapping[str, EntityDefinition | Mapping] | Iterable[EntityDefinition] | None,
    owner_names: Iterable[str] | None = None,
    special_entity: SpecialEntity | None = None,
    parameter_defs: list[ParameterDefinition] | None = None,
    config: EngineConfig | None = None,
) -> list[EntityDefinition]:
    """规范化实体列表，返回新的 EntityDefinition 列表（不修改输入）。"""
    config = config or EngineConfig()
    by_name: dict[str, EntityDefinition] = {}

    # 1) 合并：配置层先入，标量字段优先；运行时层只补充
    for raw in config_entities or []:
        entity = _coerce_entity(raw)
        if entity is not None:
            _merge_into(by_name, entity, scalar_precedence=True)

    runtime_values = runtime_entities.values() if isinstance(runtime_entities, Mapping) else runtime_entities
    for raw in runtime_values or []:
        entity = _coerce_entity(raw)
        if entity is not None:
            _merge_into(by_name, entity, scalar_precedence=True)

    # 2) 按类型清理
    for entity in by_name.values():
        _strip_illegal_fields(entity)

    # 3) 地点 → 角色
    _propagate(by_name, EntityKind.LOCATION, "characters", EntityKind.CHARACTER, "locations")
    # 4) 角色 → 地点
    _propagate(by_name, EntityKind.CHARACTER, "locations", EntityKind.LOCATION, "characters")

    # 5) ownerName 占位
    for raw_name in owner_names or []:
        name = raw_name.strip() if isinstance(raw_name, str) else ""
        if name and name not in by_name:
            by_name[name] = EntityDefinition(name=name, kind=EntityKind.OTHER)

    # 6) 特殊实体：身份字段强制覆盖，只保留已绑定的参数
    special_name = ""
    if special_entity is not None:
        special_name = special_entity.name.strip() or config.special_entity_name
        previous = by_name.get(special_name)
        by_name[special_name] = EntityDefinition(
            name=special_name,
            id=config.special_entity_id,
            kind=EntityKind.CHARACTER,
            base_info=special_entity.base_info,
            parameter_names=list(previous.parameter_names) if previous else [],
        )
        # 特殊实体不带任何结构关联，其余实体中指向它的引用一并移除，保持对称
        for entity in by_name.values():
            if special_name in entity.characters:
                entity.characters = [n for n in entity.characters if n != special_name]
            if special_name in entity.locations:
                entity.locations = [n for n in entity.locations if n != special_name]

    # 7) 自动绑定参数
    if config.enable_short_term_parameters and parameter_defs:
        bound = [p for p in (find_parameter(parameter_defs, pid) for pid in config.auto_bind_parameter_ids) if p]
        for entity in by_name.values():
            if entity.kind is not EntityKind.CHARACTER or entity.name == special_name:
                continue
            for param in bound:
                if not any(param.matches(n) for n in entity.parameter_names):
                    entity.parameter_names.append(param.name)

    return list(by_name.values())


def characters_of(entities: Iterable[EntityDefinition]) -> list[EntityDefinition]:
    """筛选出角色实体。"""
    return [e for e in entities if e.kind is EntityKind.CHARACTER]
