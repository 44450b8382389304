"""Checkpoint 与重放引擎。

rebuild(target) 从 target 之前最近的有效 checkpoint（或初始状态）出发，
按日志顺序逐条折叠已存储的 ChangeSet。每条 ChangeSet 以所属条目的 entry_id 为键，
并记录存储时的内容指纹与前驱条目标识；任一不匹配即视为「不存在」，
从而让编辑、切换候选与分支都能安全地触发重新推导。

折叠本身是同步的纯计算；同一日志上的「推导 + 折叠」由调用方保证串行。
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from loomstate.config.settings import EngineConfig
from loomstate.engine.log import ChatLog
from loomstate.models.change_set import ChangeSet
from loomstate.models.engine_state import Checkpoint, EngineState
from loomstate.models.entity import EntityDefinition
from loomstate.models.log import StoredDelta
from loomstate.models.parameter import ParameterDefinition
from loomstate.state.change_set import normalize_change_set
from loomstate.state.reducer import apply_change_set, clone_state

logger = logging.getLogger(__name__)


class DeltaProducer(Protocol):
    """上游推导器：为某个位置产出一个 ChangeSet（或可被规整的原始结构）。"""

    def __call__(self, log: ChatLog, position: int, base_state: EngineState) -> ChangeSet | dict[str, Any] | None:
        ...


class ReplayEngine:
    """管理一条日志上的 ChangeSet 存储、checkpoint 与状态重建。"""

    def __init__(
        self,
        log: ChatLog,
        initial_state: EngineState | None = None,
        parameter_defs: list[ParameterDefinition] | None = None,
        entity_defs: list[EntityDefinition] | None = None,
        config: EngineConfig | None = None,
    ):
        self.log = log
        self.initial_state = clone_state(initial_state)
        self.parameter_defs = list(parameter_defs or [])
        self.entity_defs = list(entity_defs or [])
        self.config = config or EngineConfig()

        self.deltas: dict[str, StoredDelta] = {}
        self.checkpoints: list[Checkpoint] = []
        self.last_computed_position: int = -1

    # ────────────────────────────────────────────
    # ChangeSet 存储
    # ────────────────────────────────────────────

    def _prev_entry_id(self, position: int) -> str | None:
        return self.log.entry_id(position - 1) if position > 0 else None

    def store_delta(self, position: int, change_set: ChangeSet) -> StoredDelta:
        """为日志位置存储 ChangeSet（后写覆盖）。

        内容与已有的有效 ChangeSet 不同时，position 及之后的 checkpoint 都没有见过它，一并丢弃。
        """
        entry_id = self.log.entry_id(position)
        if entry_id is None:
            raise IndexError(f"日志位置越界: {position}")
        if self.get_delta(position) != change_set:
            self._invalidate_from(position)
        stored = StoredDelta(
            change_set=change_set,
            content_hash=self.log.content_hash(position),
            prev_entry_id=self._prev_entry_id(position),
        )
        self.deltas[entry_id] = stored
        logger.debug("已存储 ChangeSet: #%d (%s)", position, entry_id)
        return stored

    def get_delta(self, position: int) -> ChangeSet | None:
        """读取某位置仍然有效的 ChangeSet；不存在或已失效时返回 None。"""
        entry_id = self.log.entry_id(position)
        if entry_id is None:
            return None
        stored = self.deltas.get(entry_id)
        if stored is None:
            return None
        if stored.content_hash != self.log.content_hash(position):
            logger.info("#%d 内容已变化，缓存的 ChangeSet 失效", position)
            return None
        if stored.prev_entry_id != self._prev_entry_id(position):
            logger.info("#%d 前驱条目已变化（分支切换），缓存的 ChangeSet 失效", position)
            return None
        return stored.change_set

    # ────────────────────────────────────────────
    # Checkpoint
    # ────────────────────────────────────────────

    def set_checkpoint(self, position: int, state: EngineState) -> Checkpoint:
        """在 position 处保存 checkpoint；同一位置后写覆盖，超出上限时淘汰最早的位置。"""
        if position < 0 or position >= len(self.log):
            raise IndexError(f"日志位置越界: {position}")
        checkpoint = Checkpoint(
            log_position=position,
            chain_hash=self.log.chain_hash(position),
            state=clone_state(state),
        )
        kept = [c for c in self.checkpoints if c.log_position != position]
        kept.append(checkpoint)
        kept.sort(key=lambda c: c.log_position)
        self.checkpoints = kept[-self.config.max_checkpoints:]
        return checkpoint

    def _is_valid(self, checkpoint: Checkpoint) -> bool:
        position = checkpoint.log_position
        if position < 0 or position >= len(self.log):
            return False
        return checkpoint.chain_hash == self.log.chain_hash(position)

    def get_checkpoint(self, target: int) -> Checkpoint | None:
        """返回 log_position <= target 的最新有效 checkpoint。"""
        for checkpoint in reversed(self.checkpoints):
            if checkpoint.log_position > target:
                continue
            if self._is_valid(checkpoint):
                return checkpoint
            logger.debug("checkpoint #%d 已失效（祖先链变化），跳过", checkpoint.log_position)
        return None

    def _invalidate_from(self, position: int) -> None:
        dropped = [c.log_position for c in self.checkpoints if c.log_position >= position]
        if dropped:
            logger.debug("#%d 的 ChangeSet 已变化，丢弃 checkpoint: %s", position, dropped)
        self.checkpoints = [c for c in self.checkpoints if c.log_position < position]
        self.last_computed_position = min(self.last_computed_position, position - 1)

    # ────────────────────────────────────────────
    # 重建
    # ────────────────────────────────────────────

    def _fold(self, state: EngineState, position: int) -> EngineState:
        if not self.log.is_eligible(position, self.config.skip_roles):
            return state
        change_set = self.get_delta(position)
        if change_set is None:
            return state
        return apply_change_set(
            state,
            change_set,
            self.parameter_defs,
            self.entity_defs,
            self.config,
        )

    def rebuild(self, target: int, persist: bool = False) -> EngineState:
        """重建 0..target（含）折叠后的状态。

        target 超出日志长度时按最后一条处理；target < 0 或日志为空时返回初始状态。
        persist=True 时把结果保存为 target 处的 checkpoint。
        """
        if not len(self.log) or target < 0:
            return clone_state(self.initial_state)
        target = min(target, len(self.log) - 1)

        checkpoint = self.get_checkpoint(target)
        if checkpoint is not None:
            state = clone_state(checkpoint.state)
            start = checkpoint.log_position + 1
        else:
            state = clone_state(self.initial_state)
            start = 0

        for position in range(start, target + 1):
            state = self._fold(state, position)

        logger.debug("重建完成: #%d（起点 #%d）", target, start - 1)
        if persist:
            self.set_checkpoint(target, state)
            self.last_computed_position = target
        return state

    def clear_after(self, position: int) -> None:
        """丢弃当前日志中 position 之后各条目的 ChangeSet 与 checkpoint。"""
        for i in range(max(position + 1, 0), len(self.log)):
            entry_id = self.log.entry_id(i)
            if entry_id is not None:
                self.deltas.pop(entry_id, None)
        self.checkpoints = [c for c in self.checkpoints if c.log_position <= position]
        self.last_computed_position = min(self.last_computed_position, position)

    def live_deltas(self) -> dict[str, StoredDelta]:
        """当前日志中仍能定位到的 ChangeSet；编辑或分支遗留的旧标识不在其中。"""
        ids = {self.log.entry_id(i) for i in range(len(self.log))}
        return {entry_id: stored for entry_id, stored in self.deltas.items() if entry_id in ids}

    def advance(self, target: int, producer: DeltaProducer) -> EngineState:
        """推进到 target：复用有效的 ChangeSet，否则调用 producer 推导一次并存储。

        producer 抛出的异常原样传播，此时不存储任何 ChangeSet 或 checkpoint。
        """
        if target < 0 or target >= len(self.log):
            raise IndexError(f"日志位置越界: {target}")

        base = self.rebuild(target - 1)
        if self.log.is_eligible(target, self.config.skip_roles):
            change_set = self.get_delta(target)
            if change_set is None:
                raw = producer(self.log, target, clone_state(base))
                change_set = raw if isinstance(raw, ChangeSet) else normalize_change_set(raw)
                self.store_delta(target, change_set)
            state = apply_change_set(
                base,
                change_set,
                self.parameter_defs,
                self.entity_defs,
                self.config,
            )
        else:
            state = base

        self.set_checkpoint(target, state)
        self.last_computed_position = target
        logger.info("已推进到 #%d", target)
        return state
