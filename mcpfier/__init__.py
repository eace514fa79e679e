"""mcpfier：把配置好的命令以 MCP 工具的形式对外暴露。"""

__version__ = "1.0.0"
