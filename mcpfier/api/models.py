"""模块说明：HTTP 接口的响应模型。"""

from pydantic import BaseModel

from mcpfier import __version__


class HealthCheck(BaseModel):
    status: str = "healthy"
    version: str = __version__
    server: str = "mcpfier"
