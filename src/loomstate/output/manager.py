"""StateStore：把一条对话的引擎元数据持久化为 JSON。

文件结构：
{
  "chat_id": ...,
  "updated_at": ...,
  "initial_state": {...},
  "runtime_meta": {
    "last_computed_position": -1,
    "last_computed_checkpoint": {...} | null
  },
  "deltas_by_entry_id": {
    "<entry_id>": {"change_set": ..., "content_hash": ..., "prev_entry_id": ..., "timestamp": ...}
  }
}
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from loomstate.config.settings import EngineConfig
from loomstate.engine.log import ChatLog
from loomstate.engine.replay import ReplayEngine
from loomstate.models.engine_state import Checkpoint, EngineState
from loomstate.models.entity import EntityDefinition
from loomstate.models.log import StoredDelta
from loomstate.models.parameter import ParameterDefinition

logger = logging.getLogger(__name__)


class StateStore:
    """单个对话的状态文件。

    只保存可重建状态所需的最小信息：初始状态、已存储的 ChangeSet 与最近一次 checkpoint。
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    # ────────────────────────────────────────────
    # 写入
    # ────────────────────────────────────────────

    def save(self, engine: ReplayEngine, prune: bool = True) -> Path:
        """保存引擎元数据，立即写入磁盘。

        prune=True 时只写入当前日志仍引用的 ChangeSet，内存中的缓存不受影响。
        """
        checkpoint = engine.get_checkpoint(engine.last_computed_position)
        deltas = engine.live_deltas() if prune else engine.deltas
        data: dict[str, Any] = {
            "chat_id": engine.initial_state.chat_id,
            "updated_at": datetime.now().isoformat(),
            "initial_state": engine.initial_state.model_dump(mode="json"),
            "runtime_meta": {
                "last_computed_position": engine.last_computed_position,
                "last_computed_checkpoint": checkpoint.model_dump(mode="json") if checkpoint else None,
            },
            "deltas_by_entry_id": {
                entry_id: stored.model_dump(mode="json", exclude_none=True)
                for entry_id, stored in deltas.items()
            },
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._write_json(self.path, data)
        logger.info("💾 状态已写入磁盘: %s (%d 个 ChangeSet)", self.path, len(deltas))
        return self.path

    def _write_json(self, filepath: Path, data: Any) -> None:
        """写入 JSON 文件。"""
        filepath.write_text(
            json.dumps(data, ensure_ascii=False, indent=2, default=str),
            encoding="utf-8",
        )

    # ────────────────────────────────────────────
    # 读取
    # ────────────────────────────────────────────

    def load(
        self,
        log: ChatLog,
        parameter_defs: list[ParameterDefinition] | None = None,
        entity_defs: list[EntityDefinition] | None = None,
        config: EngineConfig | None = None,
    ) -> ReplayEngine:
        """读取状态文件并恢复到一个新的 ReplayEngine 上。

        文件损坏时抛出 ValueError；缓存的 ChangeSet 与 checkpoint 是否仍然有效，
        由引擎在使用时按当前日志内容判断。
        """
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            initial_state = EngineState.model_validate(data.get("initial_state") or {})
            runtime_meta = data.get("runtime_meta") or {}
            raw_checkpoint = runtime_meta.get("last_computed_checkpoint")
            checkpoint = Checkpoint.model_validate(raw_checkpoint) if raw_checkpoint else None
            deltas = {
                str(entry_id): StoredDelta.model_validate(raw)
                for entry_id, raw in (data.get("deltas_by_entry_id") or {}).items()
            }
        except (json.JSONDecodeError, ValidationError, AttributeError) as e:
            raise ValueError(f"状态文件损坏: {self.path}: {e}") from e

        engine = ReplayEngine(
            log,
            initial_state=initial_state,
            parameter_defs=parameter_defs,
            entity_defs=entity_defs,
            config=config,
        )
        engine.deltas = deltas
        if checkpoint is not None and checkpoint.log_position >= 0:
            engine.checkpoints = [checkpoint]
        engine.last_computed_position = int(runtime_meta.get("last_computed_position", -1))
        logger.info("已加载状态文件 %s: %d 个 ChangeSet", self.path, len(deltas))
        return engine
