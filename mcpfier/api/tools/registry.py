"""模块说明：命令注册表。

启动时从配置一次性构建，进程生命周期内只读，因此并发请求无需加锁。
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType

from mcpfier.api.config import Command
from mcpfier.errors import CommandNotFound, ConfigError


class CommandRegistry(Mapping[str, Command]):
    """工具名 -> Command 的不可变映射。"""

    def __init__(self, commands: Iterable[Command] = ()):
        table: dict[str, Command] = {}
        for cmd in commands:
            if cmd.name in table:
                raise ConfigError(f"duplicate command name: '{cmd.name}'")
            table[cmd.name] = cmd
        self._commands = MappingProxyType(table)

    def __getitem__(self, name: str) -> Command:
        return self._commands[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._commands)

    def __len__(self) -> int:
        return len(self._commands)

    def get_command(self, name: str) -> Command:
        """按名称取命令，不存在时抛 CommandNotFound。"""
        try:
            return self._commands[name]
        except KeyError:
            raise CommandNotFound(name) from None
