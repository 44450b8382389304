"""对话日志：有序、可索引的消息序列，以及每个位置的稳定标识。

- content_hash：sha1("content|role|name") 的前 16 位
- entry_id：有发送时间时为 msg_<send_date>_swipe_<n>，否则 msg_<i>_<hash>_swipe_<n>
- chain_hash：从位置 0 起逐条折叠 (entry_id, content_hash) 得到的祖先链指纹，
  任一祖先被编辑、切换候选或分支后都会改变
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Iterator

from loomstate.models.log import LogEntry


def hash_entry_content(entry: LogEntry) -> str:
    """计算单条消息的内容指纹。"""
    raw = f"{entry.content}|{entry.role}|{entry.name}"
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:16]


class ChatLog:
    """对话日志。条目不可变，编辑 / 切换候选都以整条替换完成。"""

    def __init__(self, entries: Iterable[LogEntry | dict] | None = None):
        self._entries: list[LogEntry] = []
        for entry in entries or []:
            self.append(entry)

    # ────────────────────────────────────────────
    # 序列协议
    # ────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> LogEntry:
        return self._entries[index]

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(self._entries)

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    # ────────────────────────────────────────────
    # 变更
    # ────────────────────────────────────────────

    def append(self, entry: LogEntry | dict) -> int:
        """追加一条消息，返回其位置。"""
        if isinstance(entry, dict):
            entry = LogEntry.model_validate(entry)
        self._entries.append(entry)
        return len(self._entries) - 1

    def edit(self, position: int, content: str) -> LogEntry:
        """编辑某条消息的正文。"""
        updated = self._entries[position].model_copy(update={"content": content})
        self._entries[position] = updated
        return updated

    def swipe(self, position: int, swipe_id: int, content: str) -> LogEntry:
        """切换某条消息的候选回复。"""
        updated = self._entries[position].model_copy(
            update={"swipe_id": swipe_id, "content": content}
        )
        self._entries[position] = updated
        return updated

    def truncate(self, length: int) -> None:
        """只保留前 length 条消息（用于删除尾部或从某处分支）。"""
        del self._entries[max(length, 0):]

    def branch(self, position: int, entries: Iterable[LogEntry | dict] = ()) -> None:
        """保留 0..position-1，之后以新条目替换，形成一条新世界线。"""
        self.truncate(position)
        for entry in entries:
            self.append(entry)

    # ────────────────────────────────────────────
    # 标识
    # ────────────────────────────────────────────

    def content_hash(self, position: int) -> str:
        return hash_entry_content(self._entries[position])

    def entry_id(self, position: int) -> str | None:
        """位置越界（含 -1）时返回 None。"""
        if position < 0 or position >= len(self._entries):
            return None
        entry = self._entries[position]
        if entry.send_date not in (None, ""):
            return f"msg_{entry.send_date}_swipe_{entry.swipe_id}"
        return f"msg_{position}_{self.content_hash(position)}_swipe_{entry.swipe_id}"

    def chain_hash(self, position: int) -> str:
        """0..position 的祖先链指纹；position < 0 时为空串。"""
        digest = ""
        for i in range(min(position, len(self._entries) - 1) + 1):
            raw = f"{digest}|{self.entry_id(i)}|{self.content_hash(i)}"
            digest = hashlib.sha1(raw.encode("utf-8")).hexdigest()[:16]
        return digest

    def is_eligible(self, position: int, skip_roles: Iterable[str]) -> bool:
        """该位置的消息是否参与 ChangeSet 折叠。"""
        return self._entries[position].role not in set(skip_roles)
