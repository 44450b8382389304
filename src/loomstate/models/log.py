"""对话日志条目与已存储 ChangeSet 的数据模型。"""

from __future__ import annotations

import time

from pydantic import BaseModel, ConfigDict, Field

from loomstate.models.change_set import ChangeSet


class LogEntry(BaseModel):
    """日志中的一条消息。编辑或切换分支时整条替换，不原地修改。"""

    model_config = ConfigDict(frozen=True)

    role: str = Field(default="assistant", description="发言方角色: 'user'(自己) | 'assistant'(对方)")
    content: str = Field(default="", description="消息正文")
    name: str = Field(default="", description="发送者名称")
    send_date: str | int | None = Field(default=None, description="发送时间戳（可选，作为稳定标识）")
    swipe_id: int = Field(default=0, description="当前选中的候选回复序号")


class StoredDelta(BaseModel):
    """绑定到某条日志条目的 ChangeSet 及其有效性凭据。"""

    change_set: ChangeSet = Field(description="该条目推导出的 ChangeSet")
    content_hash: str = Field(description="存储时该条目的内容指纹")
    prev_entry_id: str | None = Field(default=None, description="存储时上一条目的标识，用于检测分支")
    timestamp: float = Field(default_factory=time.time, description="存储时间")
