"""Cast 分层管理：focus > present_supporting > offstage_related。

规则：
- enter 只接受可用角色列表中的 character 实体，其余条目忽略
- 已在更高层级的角色不会被 enter 降级；新角色进入期望层级（缺省 focus）
- leave 从所在层级移除
- 三层互斥；不做任何隐式填充，Cast 可以为空
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from loomstate.config.settings import CastLimits
from loomstate.models.change_set import CastIntent
from loomstate.models.engine_state import (
    CAST_TIER_ORDER,
    CAST_TIER_PRIORITY,
    CastState,
    CastTier,
)
from loomstate.models.entity import EntityDefinition, EntityKind

logger = logging.getLogger(__name__)


def create_empty_cast() -> CastState:
    """创建空 Cast。"""
    return CastState()


def get_character_layer(cast: CastState, name: str) -> CastTier | None:
    """返回角色所在层级，不在 Cast 中时返回 None。"""
    for tier in CAST_TIER_ORDER:
        if name in cast.tier(tier):
            return tier
    return None


def get_all_characters_in_cast(cast: CastState) -> list[str]:
    """按层级从高到低列出 Cast 中的全部角色。"""
    names: list[str] = []
    for tier in CAST_TIER_ORDER:
        names.extend(cast.tier(tier))
    return names


def _tier_limit(limits: CastLimits | None, tier: CastTier) -> int | None:
    if limits is None:
        return None
    match tier:
        case CastTier.FOCUS:
            return limits.max_focus
        case CastTier.PRESENT_SUPPORTING:
            return limits.max_present_supporting
        case CastTier.OFFSTAGE_RELATED:
            return limits.max_offstage_related
    return None


def _remove_everywhere(cast: CastState, name: str) -> None:
    for tier in CAST_TIER_ORDER:
        members = cast.tier(tier)
        if name in members:
            members.remove(name)


def promote_character_to(
    cast: CastState,
    name: str,
    tier: CastTier,
    limits: CastLimits | None = None,
) -> CastState:
    """把角色放入指定层级并从其余层级移除，返回新 Cast。

    目标层级已满时依次尝试更低层级；全部已满则保持原样。
    """
    updated = cast.model_copy(deep=True)
    start = CAST_TIER_ORDER.index(tier)
    for candidate in CAST_TIER_ORDER[start:]:
        limit = _tier_limit(limits, candidate)
        members = updated.tier(candidate)
        if limit is not None and len(members) >= limit and name not in members:
            continue
        if name in members:
            return updated
        _remove_everywhere(updated, name)
        members.append(name)
        if candidate is not tier:
            logger.debug("%s 层已满，角色 %s 放入 %s", tier.value, name, candidate.value)
        return updated

    logger.warning("Cast 各层均已满，角色 %s 未能进场", name)
    return updated


def _available_names(available_characters: Iterable[EntityDefinition | str] | None) -> set[str]:
    names: set[str] = set()
    for item in available_characters or []:
        if isinstance(item, EntityDefinition):
            if item.kind is EntityKind.CHARACTER and item.name:
                names.add(item.name)
        elif isinstance(item, str) and item.strip():
            names.add(item.strip())
    return names


def apply_cast_intent(
    current_cast: CastState | None,
    intent: CastIntent | None,
    available_characters: Iterable[EntityDefinition | str] | None = None,
    limits: CastLimits | None = None,
) -> CastState:
    """把 Cast 意图应用到当前 Cast，返回新 Cast（不修改输入）。

    先处理 leave，再处理 enter，因此同一轮中既离场又进场的角色最终在场。
    """
    cast = current_cast.model_copy(deep=True) if current_cast is not None else create_empty_cast()
    if intent is None or intent.is_empty:
        return cast

    for name in intent.leave:
        _remove_everywhere(cast, name)

    available = _available_names(available_characters)
    for item in intent.enter:
        if item.name not in available:
            logger.debug("忽略进场条目 %s：不是已知角色", item.name)
            continue
        requested = item.preferred_layer or CastTier.FOCUS
        current = get_character_layer(cast, item.name)
        if current is not None and CAST_TIER_PRIORITY[current] >= CAST_TIER_PRIORITY[requested]:
            continue
        cast = promote_character_to(cast, item.name, requested, limits)

    return cast
