"""认证：API Key 校验与工具级权限检查（仅 HTTP 传输）。"""

from .keys import APIKeyTable, AuthContext, PermissionSet, extract_credential
from .gate import AuthGate, AuthMiddleware

__all__ = [
    "APIKeyTable",
    "AuthContext",
    "AuthGate",
    "AuthMiddleware",
    "PermissionSet",
    "extract_credential",
]
