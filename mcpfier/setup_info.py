"""生成 MCP 客户端（Claude Desktop）接入说明。"""

from __future__ import annotations

import json
import shutil
import sys
from pathlib import Path

from mcpfier.api.config import AppConfig


def desktop_config(config_path: Path, executable: str | None = None) -> dict:
    """Claude Desktop 的 mcpServers 配置片段。"""
    executable = executable or shutil.which("mcpfier") or sys.argv[0]
    return {
        "mcpServers": {
            "mcpfier": {
                "command": executable,
                "args": ["--config", str(config_path.resolve()), "serve", "--transport", "stdio"],
            }
        }
    }


def render_instructions(config: AppConfig, config_path: Path, executable: str | None = None) -> str:
    """返回 Markdown 格式的接入说明。"""
    lines = [
        "# MCPFier Setup Instructions",
        "",
        "## Claude Desktop Configuration",
        "",
        "Add this to your Claude Desktop MCP settings:",
        "",
        "```json",
        json.dumps(desktop_config(config_path, executable), indent=2),
        "```",
        "",
        "## Available Tools",
        "",
        f"Once configured, these {len(config.commands)} tools will be available:",
        "",
    ]

    images: list[str] = []
    for cmd in config.commands:
        lines.append(f"### {cmd.name}")
        lines.append(f"**Description**: {cmd.get_description()}")
        if cmd.webhook is not None:
            lines.append(f"**Execution**: Webhook (`{cmd.webhook.method.upper()} {cmd.webhook.url}`)")
        elif cmd.container:
            lines.append(f"**Execution**: Docker container (`{cmd.container}`)")
            if cmd.container not in images:
                images.append(cmd.container)
        else:
            lines.append("**Execution**: Local system")
        lines.append("")

    if images:
        lines += ["## Docker Setup Required", "", "```bash"]
        lines += [f"docker pull {image}" for image in images]
        lines += ["```", ""]

    http = config.server.http
    lines += [
        "## HTTP Transport",
        "",
        "Start the HTTP server with `mcpfier serve --transport http`, then point clients at:",
        "",
        f"    http://{http.host}:{http.port}/mcp",
        "",
    ]
    if http.auth.enabled:
        lines.append("Authentication is enabled: send `X-API-Key: <key>` or `Authorization: ApiKey <key>`.")
        lines.append("")

    lines += [
        "## Troubleshooting",
        "",
        f"- **Config file**: `{config_path}`",
        "- **Docker**: Ensure Docker is running for containerized tools",
        "",
    ]
    return "\n".join(lines)
