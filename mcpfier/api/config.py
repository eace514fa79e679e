"""模块说明：应用配置定义与加载。

两层配置：
- ``Settings``：进程级设置（环境变量 / .env），只决定去哪里找配置文件、日志级别等
- ``AppConfig``：YAML 配置文件本身（命令、HTTP 服务、认证、分析）
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mcpfier.errors import ConfigError

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """进程级设置"""

    APP_NAME: str = "mcpfier"

    # 配置文件路径（命令行 --config 优先于此）
    MCPFIER_CONFIG: Optional[str] = None

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


# ==================== 命令定义 ====================

class WebhookAuth(BaseModel):
    """webhook 调用的认证方式：bearer / api_key / basic。"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: str
    token: str = ""
    key: str = ""
    header: str = ""
    user: str = ""
    password: str = Field("", alias="pass")


class RetryPolicy(BaseModel):
    """webhook 重试策略。"""
    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(3, ge=0)
    backoff: str = "exponential"
    delay: str = "1s"
    status_codes: list[int] = Field(default_factory=list)


class WebhookSpec(BaseModel):
    """一次出站 HTTP 调用的描述。"""
    model_config = ConfigDict(frozen=True)

    url: str = Field(min_length=1)
    method: str = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    body: str = ""
    body_format: str = ""
    auth: Optional[WebhookAuth] = None
    retry: Optional[RetryPolicy] = None


class Command(BaseModel):
    """一个可调用工具的静态描述，加载后不可变。"""
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    script: str = ""
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    timeout: str = ""
    container: str = ""
    webhook: Optional[WebhookSpec] = None
    description: str = ""

    @model_validator(mode="after")
    def _exactly_one_kind(self) -> "Command":
        has_script = bool(self.script)
        has_webhook = self.webhook is not None
        if has_script == has_webhook:
            raise ValueError(f"command '{self.name}': exactly one of 'script' or 'webhook' must be set")
        return self

    def get_description(self) -> str:
        if self.description:
            return self.description
        return f"Execute {self.name} with configured arguments"


# ==================== 服务配置 ====================

class APIKey(BaseModel):
    """静态 API Key 及其权限列表（"*" 表示全部工具）。"""
    model_config = ConfigDict(frozen=True)

    key: str = Field(min_length=1)
    name: str
    description: str = ""
    permissions: list[str] = Field(default_factory=list)


class SimpleAuthConfig(BaseModel):
    api_keys: list[APIKey] = Field(default_factory=list)


class AuthConfig(BaseModel):
    enabled: bool = False
    mode: str = "simple"
    simple: SimpleAuthConfig = Field(default_factory=SimpleAuthConfig)


class CORSConfig(BaseModel):
    enabled: bool = False
    allowed_origins: list[str] = Field(default_factory=list)
    allowed_methods: list[str] = Field(default_factory=list)
    allowed_headers: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _defaults_when_enabled(self) -> "CORSConfig":
        if self.enabled and not self.allowed_methods:
            self.allowed_methods = ["GET", "POST", "OPTIONS"]
        if self.enabled and not self.allowed_headers:
            self.allowed_headers = ["Authorization", "Content-Type", "X-API-Key"]
        return self


class HTTPConfig(BaseModel):
    host: str = "localhost"
    port: int = 8080
    auth: AuthConfig = Field(default_factory=AuthConfig)
    cors: CORSConfig = Field(default_factory=CORSConfig)


class ServerConfig(BaseModel):
    http: HTTPConfig = Field(default_factory=HTTPConfig)


class AnalyticsConfig(BaseModel):
    enabled: bool = False
    database_path: str = "./analytics.db"


class AppConfig(BaseModel):
    """YAML 配置文件的根对象"""

    commands: list[Command] = Field(default_factory=list)
    server: ServerConfig = Field(default_factory=ServerConfig)
    analytics: AnalyticsConfig = Field(default_factory=AnalyticsConfig)


# ==================== 加载 ====================

def find_config_file(explicit: str | None = None, settings: Settings | None = None) -> Path:
    """按优先级查找配置文件。

    优先级：
    1. 显式传入的路径（命令行 --config）
    2. 环境变量 MCPFIER_CONFIG
    3. ./config.yaml
    4. ~/.mcpfier/config.yaml、~/mcpfier/config.yaml
    5. /etc/mcpfier/config.yaml

    都不存在时返回 ./config.yaml，由加载阶段报错。
    """
    if explicit:
        return Path(explicit)

    settings = settings or Settings()
    if settings.MCPFIER_CONFIG and Path(settings.MCPFIER_CONFIG).exists():
        return Path(settings.MCPFIER_CONFIG)

    home = Path.home()
    candidates = [
        Path("config.yaml"),
        home / ".mcpfier" / "config.yaml",
        home / "mcpfier" / "config.yaml",
        Path("/etc/mcpfier/config.yaml"),
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate

    return Path("config.yaml")


def load_config(path: str | os.PathLike) -> AppConfig:
    """读取并校验 YAML 配置文件。

    Raises:
        ConfigError: 文件不存在、YAML 语法错误或字段校验失败
    """
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e

    try:
        config = AppConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"invalid config {path}: {e}") from e

    logger.info("Loaded %d commands from %s", len(config.commands), path)
    return config
