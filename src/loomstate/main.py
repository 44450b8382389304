"""loomstate CLI 入口：分支对话日志的状态重建工具。"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from loomstate.config.settings import CharacterConfig, load_config_from_yaml
from loomstate.engine.log import ChatLog
from loomstate.engine.replay import ReplayEngine
from loomstate.models.engine_state import CAST_TIER_ORDER, EngineState
from loomstate.models.entity import EntityDefinition, SpecialEntity
from loomstate.models.parameter import find_parameter
from loomstate.output.manager import StateStore
from loomstate.state.change_set import parse_change_set
from loomstate.state.entities import build_normalized_entities
from loomstate.state.reducer import create_initial_state_from_config
from loomstate.state.symbolic import resolve_symbolic

console = Console()
logger = logging.getLogger("loomstate")

# 对话文件中每条消息内嵌 ChangeSet 的字段名
_EMBEDDED_DELTA_KEYS = ("change_set", "changeSet", "delta")


def _load_config(path: str) -> CharacterConfig:
    try:
        return load_config_from_yaml(path)
    except (OSError, ValidationError, yaml.YAMLError) as e:
        console.print(f"[red]加载配置失败: {e}[/red]")
        sys.exit(1)


def _load_chat(path: str) -> tuple[ChatLog, dict[int, Any]]:
    """读取对话 JSON：列表，或 {"entries": [...]}。返回日志与各位置内嵌的原始 ChangeSet。"""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]读取对话文件失败: {e}[/red]")
        sys.exit(1)

    items = data.get("entries", []) if isinstance(data, dict) else data
    log = ChatLog()
    embedded: dict[int, Any] = {}
    for item in items or []:
        if not isinstance(item, dict):
            continue
        fields = {k: v for k, v in item.items() if k not in _EMBEDDED_DELTA_KEYS}
        position = log.append(fields)
        for key in _EMBEDDED_DELTA_KEYS:
            if item.get(key) is not None:
                embedded[position] = item[key]
                break
    return log, embedded


def _special_entity(config: CharacterConfig) -> SpecialEntity:
    return SpecialEntity(name=config.options.special_entity_name)


def _normalized_entities(config: CharacterConfig, state: EngineState) -> list[EntityDefinition]:
    return build_normalized_entities(
        config.entities,
        state.runtime_entities,
        special_entity=_special_entity(config),
        parameter_defs=config.parameters,
        config=config.options,
    )


# ────────────────────────────────────────────
# 子命令
# ────────────────────────────────────────────


def cmd_rebuild(args: argparse.Namespace) -> None:
    """从配置与对话文件重建状态。"""
    config = _load_config(args.config)
    log, embedded = _load_chat(args.chat)

    store = StateStore(args.store) if args.store else None
    if store is not None and store.exists():
        try:
            engine = store.load(log, config.parameters, config.entities, config.options)
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            sys.exit(1)
    else:
        engine = ReplayEngine(
            log,
            initial_state=create_initial_state_from_config(config),
            parameter_defs=config.parameters,
            entity_defs=config.entities,
            config=config.options,
        )

    for position, raw in embedded.items():
        report = parse_change_set(raw)
        if report.rejected:
            console.print(f"[yellow]#{position}: {len(report.rejected)} 个条目被隔离[/yellow]")
        engine.store_delta(position, report.change_set)

    target = args.target if args.target is not None else len(log) - 1
    state = engine.rebuild(target, persist=True)

    _print_variables(state)
    _print_scene_and_cast(state)
    if args.entities:
        _print_entities(_normalized_entities(config, state))

    if store is not None:
        store.save(engine)

    if args.json:
        console.print_json(state.model_dump_json())


def cmd_entities(args: argparse.Namespace) -> None:
    """打印归一化后的实体视图。"""
    config = _load_config(args.config)
    state = create_initial_state_from_config(config)
    _print_entities(_normalized_entities(config, state))


def cmd_resolve(args: argparse.Namespace) -> None:
    """对某个参数试算一次符号化操作。"""
    config = _load_config(args.config)
    param = find_parameter(config.parameters, args.parameter)
    if param is None:
        console.print(f"[red]未找到参数: {args.parameter}[/red]")
        sys.exit(1)

    current = yaml.safe_load(args.current) if args.current is not None else param.default
    result = resolve_symbolic(args.symbol, current, param)

    table = Table(title=f"符号化试算: {param.name} ({param.type.value})", show_lines=True)
    table.add_column("项目", style="cyan", width=10)
    table.add_column("值", style="white")
    table.add_row("符号", args.symbol)
    table.add_row("当前值", repr(current))
    table.add_row("结果", repr(result.value))
    table.add_row("变化", "是" if result.moved else "否")
    table.add_row("截断", "是" if result.clamped else "否")
    console.print(table)


# ────────────────────────────────────────────
# 输出
# ────────────────────────────────────────────


def _flatten(prefix: str, value: Any, rows: list[tuple[str, str]]) -> None:
    if isinstance(value, dict):
        for key, sub in value.items():
            _flatten(f"{prefix}.{key}" if prefix else str(key), sub, rows)
    else:
        rows.append((prefix, json.dumps(value, ensure_ascii=False)))


def _print_variables(state: EngineState) -> None:
    """打印变量表。"""
    table = Table(title="变量", show_lines=True)
    table.add_column("作用域", style="cyan")
    table.add_column("路径", style="yellow")
    table.add_column("值", style="green")

    for scope, bucket in state.variables.items():
        rows: list[tuple[str, str]] = []
        _flatten("", bucket, rows)
        for path, value in rows:
            table.add_row(scope, path, value)

    console.print(table)


def _print_scene_and_cast(state: EngineState) -> None:
    """打印场景与 Cast。"""
    table = Table(title="场景与 Cast", show_lines=True)
    table.add_column("项目", style="cyan", width=20)
    table.add_column("内容", style="white")

    table.add_row("地点", state.scene.location_hint or "-")
    table.add_row("标签", ", ".join(state.scene.scene_tags) or "-")
    for tier in CAST_TIER_ORDER:
        table.add_row(tier.value, ", ".join(state.cast.tier(tier)) or "-")

    console.print(table)


def _print_entities(entities: list[EntityDefinition]) -> None:
    """打印实体表。"""
    table = Table(title="实体", show_lines=True)
    table.add_column("名称", style="cyan")
    table.add_column("类型", style="yellow")
    table.add_column("关联", style="green")
    table.add_column("参数", style="magenta")

    for entity in entities:
        links = entity.locations or entity.characters
        if entity.children_names:
            links = links + [f"子:{c}" for c in entity.children_names]
        table.add_row(
            entity.name,
            entity.kind.value,
            ", ".join(links) or "-",
            ", ".join(entity.parameter_names) or "-",
        )

    console.print(table)


def main() -> None:
    """CLI 主入口。"""
    from dotenv import load_dotenv
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="loomstate",
        description="loomstate - 分支对话日志的状态引擎",
    )
    subparsers = parser.add_subparsers(dest="command", help="可用命令")

    rebuild_parser = subparsers.add_parser("rebuild", help="按对话日志重建状态")
    rebuild_parser.add_argument("config", help="角色配置文件（YAML）")
    rebuild_parser.add_argument("chat", help="对话文件（JSON，消息可内嵌 change_set）")
    rebuild_parser.add_argument(
        "--target", "-t", type=int, default=None, help="重建到第几条消息（默认最后一条）"
    )
    rebuild_parser.add_argument(
        "--store",
        "-s",
        default=os.getenv("LOOMSTATE_STORE", ""),
        help="状态文件路径（默认读取环境变量 LOOMSTATE_STORE）",
    )
    rebuild_parser.add_argument(
        "--entities", action="store_true", help="同时打印归一化后的实体视图"
    )
    rebuild_parser.add_argument(
        "--json", action="store_true", help="以 JSON 打印完整状态"
    )
    rebuild_parser.add_argument(
        "--verbose", "-v", action="store_true", help="详细日志输出"
    )

    entities_parser = subparsers.add_parser("entities", help="打印归一化后的实体视图")
    entities_parser.add_argument("config", help="角色配置文件（YAML）")
    entities_parser.add_argument(
        "--verbose", "-v", action="store_true", help="详细日志输出"
    )

    resolve_parser = subparsers.add_parser("resolve", help="试算一次符号化操作")
    resolve_parser.add_argument("config", help="角色配置文件（YAML）")
    resolve_parser.add_argument("parameter", help="参数名或 ID")
    resolve_parser.add_argument("symbol", help="符号，如 up_small / next / set_70")
    resolve_parser.add_argument(
        "--current", "-c", default=None, help="当前值（按 YAML 解析，缺省使用参数默认值）"
    )
    resolve_parser.add_argument(
        "--verbose", "-v", action="store_true", help="详细日志输出"
    )

    args = parser.parse_args()

    # 配置日志
    log_level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
    )

    if args.command == "rebuild":
        cmd_rebuild(args)
    elif args.command == "entities":
        cmd_entities(args)
    elif args.command == "resolve":
        cmd_resolve(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
