"""状态持久化模块。

<store>.json
├── initial_state             # 基线初始状态
├── runtime_meta              # 最近一次计算的位置与 checkpoint
└── deltas_by_entry_id        # 各日志条目的 ChangeSet 及有效性凭据
"""

from loomstate.output.manager import StateStore

__all__ = ["StateStore"]
