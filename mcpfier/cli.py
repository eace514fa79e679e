"""
MCPFier CLI

把配置好的命令以 MCP 工具的形式提供出去，也可以直接执行或查看统计
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from mcpfier import __version__
from mcpfier.api.analytics import NoOpAnalytics, open_analytics
from mcpfier.api.config import AppConfig, Settings, find_config_file, load_config
from mcpfier.errors import AnalyticsError, MCPFierError
from mcpfier.worker.context import ExecutionContext

# 标准输出留给 STDIO 传输，所有提示都走标准错误
console = Console(stderr=True)
out = Console()


def _setup_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _load(ctx: click.Context) -> tuple[AppConfig, Path]:
    path = find_config_file(ctx.obj["config"], ctx.obj["settings"])
    try:
        return load_config(path), path
    except MCPFierError as e:
        console.print(f"[red]配置加载失败: {escape(str(e))}[/red]")
        sys.exit(1)


def _services(ctx: click.Context):
    # 延迟导入：analytics / run 等子命令不需要加载 MCP 与 Web 栈
    from mcpfier.api.server import Services

    config, _ = _load(ctx)
    try:
        return Services.from_config(config)
    except MCPFierError as e:
        console.print(f"[red]初始化失败: {escape(str(e))}[/red]")
        sys.exit(1)


@click.group(invoke_without_command=True)
@click.option("--config", "-c", "config_path", type=click.Path(dir_okay=False), help="配置文件路径")
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx, config_path):
    """MCPFier - 把命令、容器和 Webhook 暴露为 MCP 工具"""
    settings = Settings()
    _setup_logging(settings)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config_path
    ctx.obj["settings"] = settings

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve)


# ==================== 服务 ====================

@cli.command()
@click.option("--transport", "-t", type=click.Choice(["stdio", "http"]), default="stdio", show_default=True)
@click.option("--host", default=None, help="HTTP 监听地址（默认取配置）")
@click.option("--port", type=int, default=None, help="HTTP 监听端口（默认取配置）")
@click.pass_context
def serve(ctx, transport, host, port):
    """启动 MCP 服务"""
    from mcpfier.api.server import run_http, run_stdio

    services = _services(ctx)
    if transport == "http":
        run_http(services, host=host, port=port)
    else:
        run_stdio(services)


# ==================== 直接执行 ====================

@cli.command("run")
@click.argument("name")
@click.pass_context
def run_command(ctx, name):
    """直接执行一个命令并输出结果"""
    services = _services(ctx)
    try:
        output = services.dispatcher.execute_by_name(ExecutionContext(), services.registry, name)
    except MCPFierError as e:
        partial = getattr(e, "output", "")
        if partial:
            click.echo(partial, nl=not partial.endswith("\n"))
        console.print(f"[red]执行失败: {escape(str(e))}[/red]")
        sys.exit(1)
    finally:
        services.close()

    click.echo(output, nl=not output.endswith("\n"))


# ==================== 统计 ====================

@cli.command()
@click.option("--days", default=7, show_default=True, type=click.IntRange(min=1), help="统计窗口（天）")
@click.option("--json", "as_json", is_flag=True, help="以 JSON 输出")
@click.pass_context
def analytics(ctx, days, as_json):
    """查看执行与请求统计"""
    config, _ = _load(ctx)
    store = open_analytics(config.analytics)
    if isinstance(store, NoOpAnalytics):
        console.print("[yellow]分析未启用（analytics.enabled = false）[/yellow]")
        sys.exit(1)

    try:
        usage = store.get_stats(days)
        http = store.get_http_stats(days)
        webhooks = store.get_webhook_stats(days)
    except AnalyticsError as e:
        console.print(f"[red]读取统计失败: {escape(str(e))}[/red]")
        sys.exit(1)
    finally:
        store.close()

    if as_json:
        payload = {
            "days": days,
            "commands": usage.model_dump(),
            "http": http.model_dump(),
            "webhooks": webhooks.model_dump(),
        }
        click.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    out.print(f"\n[bold]最近 {days} 天[/bold]")
    out.print(f"命令执行: {usage.total_commands} 次  成功率: {usage.success_rate:.1f}%  "
              f"平均耗时: {usage.avg_duration_ms}ms  24h 错误: {usage.errors_last_24h}")
    out.print(f"HTTP 请求: {http.total_requests} 次  成功率: {http.success_rate:.1f}%  "
              f"认证成功率: {http.auth_success_rate:.1f}%  24h 错误: {http.errors_last_24h}")

    if usage.top_commands:
        table = Table(title="常用工具", box=box.ROUNDED)
        table.add_column("工具", style="green")
        table.add_column("次数", justify="right")
        table.add_column("成功率", justify="right", style="cyan")
        table.add_column("平均耗时", justify="right")
        for c in usage.top_commands:
            table.add_row(c.name, str(c.count), f"{c.success_rate:.1f}%", f"{c.avg_duration_ms}ms")
        out.print(table)

    if webhooks.total_calls:
        table = Table(title="Webhook 调用", box=box.ROUNDED)
        table.add_column("工具", style="green")
        table.add_column("次数", justify="right")
        table.add_column("成功率", justify="right", style="cyan")
        table.add_column("平均延迟", justify="right")
        for w in webhooks.top_webhooks:
            table.add_row(w.name, str(w.count), f"{w.success_rate:.1f}%", f"{w.avg_latency_ms}ms")
        out.print(table)
        if webhooks.error_breakdown:
            breakdown = ", ".join(f"{k}: {v}" for k, v in sorted(webhooks.error_breakdown.items()))
            out.print(f"24h 错误类型: {breakdown}")

    if http.top_paths:
        table = Table(title="HTTP 路径", box=box.ROUNDED)
        table.add_column("路径", style="green")
        table.add_column("请求数", justify="right")
        table.add_column("成功率", justify="right", style="cyan")
        table.add_column("平均耗时", justify="right")
        for p in http.top_paths:
            table.add_row(p.path, str(p.count), f"{p.success_rate:.1f}%", f"{p.avg_duration_ms}ms")
        out.print(table)


# ==================== 接入说明 ====================

@cli.command()
@click.pass_context
def setup(ctx):
    """打印 Claude Desktop 接入说明"""
    from mcpfier.setup_info import render_instructions

    config, path = _load(ctx)
    click.echo(render_instructions(config, path))


if __name__ == "__main__":
    cli()
