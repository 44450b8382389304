"""引擎配置与角色配置。

所有开关都以显式配置对象传入 reducer / 解析器 / 实体归一化，不读取全局状态。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from loomstate.models.entity import EntityDefinition
from loomstate.models.parameter import ParameterDefinition, ParameterType, VariableScope

logger = logging.getLogger(__name__)

SHORT_TERM_EMOTION_ID = "short_term_emotion"
SHORT_TERM_INTENT_ID = "short_term_intent"


class CastLimits(BaseModel):
    """Cast 各层的数量上限。"""

    max_focus: int = Field(default=3, ge=0, description="focus 层上限")
    max_present_supporting: int = Field(default=5, ge=0, description="present_supporting 层上限")
    max_offstage_related: int = Field(default=10, ge=0, description="offstage_related 层上限")


class EngineConfig(BaseModel):
    """状态引擎配置。"""

    # ── 短期参数 ──
    enable_short_term_parameters: bool = Field(
        default=True,
        description="是否启用短期参数：启用时 is_short_term 强制 character 作用域，并自动绑定到角色实体",
    )
    auto_bind_parameter_ids: list[str] = Field(
        default_factory=lambda: [SHORT_TERM_EMOTION_ID, SHORT_TERM_INTENT_ID],
        description="自动绑定到所有角色实体（特殊实体除外）的参数 ID 或名称",
    )

    # ── 特殊实体 ──
    special_entity_name: str = Field(default="{{user}}", description="特殊实体名称")
    special_entity_id: str = Field(default="__user__", description="特殊实体的固定 ID")

    # ── 重放 ──
    skip_roles: list[str] = Field(
        default_factory=lambda: ["user"],
        description="不参与 ChangeSet 折叠的日志角色（如用户自己发送的消息）",
    )
    max_checkpoints: int = Field(default=8, ge=1, description="内存中保留的 checkpoint 数量")

    # ── Cast ──
    cast_limits: CastLimits | None = Field(
        default=None, description="Cast 各层上限；None 表示不限"
    )


class InitialStateConfig(BaseModel):
    """角色配置中的基线初始状态。"""

    variables: dict[str, dict[str, Any]] = Field(default_factory=dict, description="各作用域的初始变量")
    scene: dict[str, Any] = Field(default_factory=dict, description="初始场景")
    cast: dict[str, list[str]] = Field(default_factory=dict, description="初始 Cast")
    runtime_entities: dict[str, EntityDefinition] = Field(
        default_factory=dict, description="初始运行时实体（通常为空）"
    )


class CharacterConfig(BaseModel):
    """一张角色卡的完整引擎配置。"""

    chat_id: str = Field(default="", description="对话标识")
    parameters: list[ParameterDefinition] = Field(default_factory=list, description="参数定义")
    entities: list[EntityDefinition] = Field(default_factory=list, description="配置层实体")
    initial_state: InitialStateConfig = Field(
        default_factory=InitialStateConfig, description="基线初始状态"
    )
    options: EngineConfig = Field(default_factory=EngineConfig, description="引擎开关")


def ensure_default_parameters(config: CharacterConfig) -> CharacterConfig:
    """确保配置中包含默认的短期情绪与短期意图参数。

    仅在启用短期参数时生效；已存在同 ID 或同名参数时不重复添加。
    """
    if not config.options.enable_short_term_parameters:
        return config

    updated = config.model_copy(deep=True)
    defaults = [
        ParameterDefinition(
            name="短期情绪",
            id=SHORT_TERM_EMOTION_ID,
            type=ParameterType.TEXT,
            scope=VariableScope.CHARACTER,
            is_short_term=True,
            description="角色当前的短期情绪状态，会随剧情自然衰减",
        ),
        ParameterDefinition(
            name="短期意图",
            id=SHORT_TERM_INTENT_ID,
            type=ParameterType.TEXT,
            scope=VariableScope.CHARACTER,
            is_short_term=True,
            description="角色当前想做什么、想表达什么的短期目标",
        ),
    ]
    for param in defaults:
        exists = any(p.matches(param.id) or p.matches(param.name) for p in updated.parameters)
        if not exists:
            updated.parameters.append(param)
            logger.debug("补充默认短期参数: %s", param.name)
    return updated


def load_config_from_yaml(path: str | Path) -> CharacterConfig:
    """从 YAML 文件加载角色配置。"""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    config = CharacterConfig.model_validate(data)
    logger.info(
        "已加载配置 %s: %d 个参数, %d 个实体",
        path,
        len(config.parameters),
        len(config.entities),
    )
    return ensure_default_parameters(config)
