"""认证工具模块。

提供权限集合、API Key 查找表、凭证提取等功能。
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from mcpfier.api.config import APIKey
from mcpfier.errors import ConfigError

WILDCARD = "*"


class PermissionSet:
    """调用方被授权的工具名集合，"*" 表示全部工具。"""

    __slots__ = ("_names",)

    def __init__(self, names: Iterable[str] = ()):
        self._names = frozenset(names)

    def allows(self, tool: str) -> bool:
        return WILDCARD in self._names or tool in self._names

    def __iter__(self):
        return iter(sorted(self._names))

    def __len__(self) -> int:
        return len(self._names)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, PermissionSet) and self._names == other._names

    def __hash__(self) -> int:
        return hash(self._names)

    def __repr__(self) -> str:
        return f"PermissionSet({sorted(self._names)!r})"


@dataclass(frozen=True)
class AuthContext:
    """认证通过后附加到请求上的调用方信息。"""
    user_id: str
    client_name: str
    permissions: PermissionSet
    method: str = "api_key"

    def has_permission(self, tool: str) -> bool:
        return self.permissions.allows(tool)


class APIKeyTable:
    """key 字符串 -> APIKey 的只读查找表，启动时构建一次。"""

    def __init__(self, keys: Iterable[APIKey] = ()):
        table: dict[str, APIKey] = {}
        for key in keys:
            if key.key in table:
                raise ConfigError(f"duplicate API key for '{key.name}'")
            table[key.key] = key
        self._keys: Mapping[str, APIKey] = MappingProxyType(table)

    def lookup(self, raw: str) -> APIKey | None:
        return self._keys.get(raw)

    def __len__(self) -> int:
        return len(self._keys)


def extract_credential(headers: Mapping[str, str]) -> str | None:
    """从请求头中取出 API Key。

    依次尝试：
    1. X-API-Key: <key>
    2. Authorization: ApiKey <key>

    Args:
        headers: 大小写不敏感的请求头映射（如 starlette Headers）
    """
    key = headers.get("x-api-key")
    if key:
        return key

    authorization = headers.get("authorization") or ""
    if authorization.startswith("ApiKey "):
        key = authorization[len("ApiKey "):].strip()
        return key or None
    return None
