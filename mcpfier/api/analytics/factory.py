"""按配置一次性选定分析实现。"""

from __future__ import annotations

import logging

from mcpfier.api.config import AnalyticsConfig
from mcpfier.errors import AnalyticsError
from .base import Analytics, NoOpAnalytics
from .sqlite import SQLiteAnalytics

logger = logging.getLogger(__name__)


def open_analytics(config: AnalyticsConfig) -> Analytics:
    """分析关闭或存储初始化失败时退化为 NoOpAnalytics。"""
    if not config.enabled:
        return NoOpAnalytics()

    try:
        analytics = SQLiteAnalytics(config.database_path or "./analytics.db")
    except AnalyticsError as e:
        logger.warning("Analytics disabled: %s", e)
        return NoOpAnalytics()

    logger.info("Analytics enabled (%s)", analytics.path)
    return analytics
