"""VillageSim CLI 入口：村庄经济与事件模拟。"""

from __future__ import annotations

import argparse
import logging
import math
import os
import sys
from pathlib import Path

import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from villagesim.config.settings import ModelConfig, SimulationConfig
from villagesim.content.generator import ContentGenerator
from villagesim.engine.errors import SimulationError
from villagesim.engine.simulation import VillageSimulation
from villagesim.models.village import Village, VillageConfig
from villagesim.storage.store import JsonFileStore, settings_key

console = Console()
logger = logging.getLogger("villagesim")


def load_village_config_from_yaml(path: str | Path) -> tuple[VillageConfig, SimulationConfig]:
    """从 YAML 加载村庄初始配置。

    文件顶层的 village 段是 VillageConfig，可选的 simulation 段覆盖 SimulationConfig。

    Raises:
        pydantic.ValidationError: 配置字段不合法时。
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    village_config = VillageConfig.model_validate(data["village"])
    sim_config = SimulationConfig.model_validate(data.get("simulation", {}))
    return village_config, sim_config


def _init_model(model_config: ModelConfig):
    """根据配置初始化 LLM。"""
    provider = model_config.provider.lower()

    if provider == "google":
        from langchain_google_genai import ChatGoogleGenerativeAI

        return ChatGoogleGenerativeAI(
            model=model_config.model_name,
            temperature=model_config.temperature,
            max_output_tokens=model_config.max_tokens,
        )
    elif provider == "openai":
        from langchain_openai import ChatOpenAI

        return ChatOpenAI(
            model=model_config.model_name,
            temperature=model_config.temperature,
            max_tokens=model_config.max_tokens,
        )
    else:
        # 通过 langchain 的通用接口
        from langchain.chat_models import init_chat_model

        return init_chat_model(
            f"{provider}:{model_config.model_name}",
            temperature=model_config.temperature,
            max_tokens=model_config.max_tokens,
        )


def _load_settings(store: JsonFileStore, village_id: str) -> SimulationConfig:
    data = store.get(settings_key(village_id))
    return SimulationConfig.model_validate(data) if data else SimulationConfig()


def _build_simulation(store: JsonFileStore, config: SimulationConfig, dry_run: bool) -> VillageSimulation:
    """组装协调器。dry-run 或模型初始化失败时不接入 LLM，事件全部使用兜底模板。"""
    content = None
    if not dry_run:
        model_config = config.content_model
        console.print(f"初始化模型: [cyan]{model_config.provider}:{model_config.model_name}[/cyan]")
        try:
            if model_config.api_key and model_config.provider.lower() == "openai":
                os.environ.setdefault("OPENAI_API_KEY", model_config.api_key)
            content = ContentGenerator(_init_model(model_config), config)
        except Exception as e:
            console.print(f"[yellow]模型初始化失败，使用离线兜底内容: {e}[/yellow]")
    return VillageSimulation(store, content=content, config=config)


# ────────────────────────────────────────────
# 输出
# ────────────────────────────────────────────


def _print_status(sim: VillageSimulation, village: Village) -> None:
    console.print(
        Panel(
            f"[bold]{village.name}[/bold] ({village.id})  规模: {village.size}  第 {village.age} 天\n"
            f"季节: {village.season.current} 第 {village.season.day}/{village.season.total_days} 天  "
            f"天气: {village.weather.current}\n"
            f"人口: {village.population.total}  金库: {village.economy.treasury:.1f}\n"
            f"幸福 {village.happiness:.0f}  稳定 {village.stability:.0f}  "
            f"繁荣 {village.prosperity:.0f}  防御 {village.defense:.0f}",
            title="村庄状态",
        )
    )

    table = Table(title="资源")
    table.add_column("资源", style="cyan")
    table.add_column("库存", justify="right")
    table.add_column("上限", justify="right")
    table.add_column("日产", justify="right")
    table.add_column("日耗", justify="right")
    table.add_column("净流量", justify="right")
    state = village.resources
    for resource, stock in state.resources.items():
        if stock.current == 0 and not state.production_of(resource) and not state.consumption_of(resource):
            continue
        net = state.net_flow.get(resource, 0.0)
        table.add_row(
            resource.value,
            f"{stock.current:.1f}",
            f"{stock.maximum:.0f}",
            f"{state.production_of(resource):.1f}",
            f"{state.consumption_of(resource):.1f}",
            f"[{'green' if net >= 0 else 'red'}]{net:+.1f}[/]",
        )
    console.print(table)

    crises = sim.resources.detect_resource_crises(village)
    if crises:
        crisis_table = Table(title="危机")
        crisis_table.add_column("类型")
        crisis_table.add_column("资源", style="cyan")
        crisis_table.add_column("严重程度")
        crisis_table.add_column("紧迫度", justify="right")
        for crisis in crises:
            crisis_table.add_row(
                crisis.type, crisis.resource.value, crisis.severity, f"{crisis.urgency:.0f}"
            )
        console.print(crisis_table)

    active = sim.events.get_active_events(village.id)
    if active:
        event_table = Table(title="活跃事件")
        event_table.add_column("ID", style="dim")
        event_table.add_column("名称", style="bold")
        event_table.add_column("严重程度")
        event_table.add_column("选项")
        for event in active:
            choices = ", ".join(f"{c.id}" for c in event.player_choices) or "-"
            event_table.add_row(event.id, event.name, event.severity, choices)
        console.print(event_table)


# ────────────────────────────────────────────
# 命令
# ────────────────────────────────────────────


def cmd_init(args: argparse.Namespace) -> None:
    try:
        village_config, sim_config = load_village_config_from_yaml(args.setup)
    except Exception as e:
        console.print(f"[red]加载村庄配置失败: {e}[/red]")
        sys.exit(1)

    store = JsonFileStore(args.data_dir or sim_config.data_dir)
    sim = VillageSimulation(store, config=sim_config)
    try:
        village = sim.create_village(village_config)
    except SimulationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    store.set(settings_key(village.id), sim_config.model_dump(mode="json"))
    console.print(f"[bold green]村庄已创建: {village.name} ({village.id})[/bold green]")
    _print_status(sim, village)


def cmd_tick(args: argparse.Namespace) -> None:
    store = JsonFileStore(args.data_dir)
    config = _load_settings(store, args.village_id)
    sim = _build_simulation(store, config, args.dry_run)
    ticks = max(1, math.ceil(args.days * 24 / config.tick_hours))

    try:
        for i in range(ticks):
            report = sim.tick(args.village_id)
            for event in report.released_events + report.new_events:
                console.print(f"[magenta]事件[/magenta] {event.name}: {event.description}")
            if report.season_changed:
                console.print(f"[cyan]季节变为 {report.village.season.current}[/cyan]")
            logger.debug("tick %d/%d 完成", i + 1, ticks)
    except SimulationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    finally:
        sim.close()

    console.print(f"[bold green]推进了 {ticks} 个 tick[/bold green]")
    _print_status(sim, report.village)


def cmd_status(args: argparse.Namespace) -> None:
    store = JsonFileStore(args.data_dir)
    sim = VillageSimulation(store, config=_load_settings(store, args.village_id))
    try:
        village = sim.load_village(args.village_id)
    except SimulationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    _print_status(sim, village)


def cmd_resolve(args: argparse.Namespace) -> None:
    """处理活跃事件；指定 --choice 时按玩家选择结算。"""
    store = JsonFileStore(args.data_dir)
    config = _load_settings(store, args.village_id)
    sim = _build_simulation(store, config, args.dry_run)
    try:
        if args.choice:
            result = sim.resolve_choice(args.village_id, args.event_id, args.choice)
            style = "green" if result.outcome.success else "yellow"
            console.print(f"[{style}]{result.outcome.description}[/{style}]")
        else:
            result = sim.process_event(args.village_id, args.event_id)
            console.print(result.narrative_text)
    except SimulationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    finally:
        sim.close()


def cmd_trade(args: argparse.Namespace) -> None:
    store = JsonFileStore(args.data_dir)
    sim = VillageSimulation(store, config=_load_settings(store, args.village_id))
    try:
        result = sim.execute_trade(args.village_id, args.route_id)
    except SimulationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    if result.success:
        console.print(f"[bold green]贸易完成，利润 {result.profit:.1f}，耗时 {result.duration:g} 天[/bold green]")
    else:
        console.print(f"[red]贸易失败: {result.error}[/red]")


def main() -> None:
    """CLI 主入口。"""
    from dotenv import load_dotenv

    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="villagesim",
        description="VillageSim - 村庄经济与事件模拟",
    )
    subparsers = parser.add_subparsers(dest="command", help="可用命令")

    def add_common(sub: argparse.ArgumentParser, data_default: str | None = "data") -> None:
        sub.add_argument(
            "--data-dir", "-d", default=data_default, help="JSON 存储目录（默认: data）"
        )
        sub.add_argument("--verbose", "-v", action="store_true", help="详细日志输出")

    init_parser = subparsers.add_parser("init", help="从 YAML 配置创建村庄")
    init_parser.add_argument("setup", help="村庄配置文件路径（YAML）")
    add_common(init_parser, data_default=None)

    tick_parser = subparsers.add_parser("tick", help="推进模拟时间")
    tick_parser.add_argument("village_id", help="村庄 ID")
    tick_parser.add_argument("--days", type=float, default=1, help="推进天数（默认: 1）")
    tick_parser.add_argument(
        "--dry-run", action="store_true", help="离线模式：不调用模型，事件使用兜底模板"
    )
    add_common(tick_parser)

    status_parser = subparsers.add_parser("status", help="查看村庄资源、危机与活跃事件")
    status_parser.add_argument("village_id", help="村庄 ID")
    add_common(status_parser)

    resolve_parser = subparsers.add_parser("resolve", help="处理活跃事件或做出选择")
    resolve_parser.add_argument("village_id", help="村庄 ID")
    resolve_parser.add_argument("event_id", help="事件 ID")
    resolve_parser.add_argument("--choice", "-c", default="", help="选项 ID（不填则直接处理事件）")
    resolve_parser.add_argument(
        "--dry-run", action="store_true", help="离线模式：不调用模型，叙事使用兜底文本"
    )
    add_common(resolve_parser)

    trade_parser = subparsers.add_parser("trade", help="沿贸易路线执行一次贸易")
    trade_parser.add_argument("village_id", help="村庄 ID")
    trade_parser.add_argument("route_id", help="贸易路线 ID")
    add_common(trade_parser)

    args = parser.parse_args()

    # 配置日志
    log_level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
    )

    if args.command == "init":
        cmd_init(args)
    elif args.command == "tick":
        cmd_tick(args)
    elif args.command == "status":
        cmd_status(args)
    elif args.command == "resolve":
        cmd_resolve(args)
    elif args.command == "trade":
        cmd_trade(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
