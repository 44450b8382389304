"""实体数据模型：角色 / 地点 / 其他实体。

仅允许三类结构关联：
1. 地点 → 子地点（location.children_names）
2. 地点 → 场景角色（location.characters）
3. 角色 → 常见地点（character.locations）

其中 2 与 3 必须保持双向对称。所有跨实体引用均通过 name 完成。
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class EntityKind(str, Enum):
    """实体类型。"""
    CHARACTER = "character"
    LOCATION = "location"
    OTHER = "other"  # 仅用于补齐 ownerName 的占位实体，不参与结构关联


class EntityDefinition(BaseModel):
    """实体定义。配置层实体与运行时实体共用同一结构。"""

    name: str = Field(description="实体主名称（主键）")
    id: str = Field(default="", description="可选内部 ID")
    kind: EntityKind = Field(default=EntityKind.OTHER, description="实体类型")
    base_info: str = Field(default="", description="实体的基础设定文本")
    children_names: list[str] = Field(
        default_factory=list, description="子地点名称（仅 location）"
    )
    characters: list[str] = Field(
        default_factory=list, description="该地点常见出现的角色（仅 location）"
    )
    locations: list[str] = Field(
        default_factory=list, description="该角色常见出现的地点（仅 character）"
    )
    parameter_names: list[str] = Field(
        default_factory=list, description="绑定到该实体的参数名"
    )

    # ── Cast 分层加载字段（仅 character）──
    summary_for_supporting: str = Field(
        default="", description="present_supporting 层使用的 1-3 句人设摘要"
    )
    tags_for_supporting: list[str] = Field(
        default_factory=list, description="present_supporting 层使用的关键标签"
    )
    desc_for_offstage: str = Field(
        default="", description="offstage_related 层使用的一句话说明"
    )


class SpecialEntity(BaseModel):
    """强制注入的特殊实体（通常是对话中的用户本人）。"""

    name: str = Field(default="{{user}}", description="特殊实体名称")
    base_info: str = Field(default="", description="强制使用的基础设定")
