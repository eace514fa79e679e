"""时长字符串解析。

配置里的 timeout / delay 沿用 "30s"、"1m30s"、"500ms" 这种写法。
"""

from __future__ import annotations

import re

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: str) -> float:
    """把时长字符串解析为秒数。

    Args:
        value: 如 "30s"、"1m30s"、"1.5h"、"250ms"，单独的 "0" 也合法

    Returns:
        秒数（float）

    Raises:
        ValueError: 格式不合法时
    """
    text = (value or "").strip()
    if not text:
        raise ValueError("empty duration")
    if text == "0":
        return 0.0

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    total = 0.0
    pos = 0
    while pos < len(text):
        m = _PART.match(text, pos)
        if not m:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(m.group(1)) * _UNITS[m.group(2)]
        pos = m.end()

    return sign * total


def try_parse_duration(value: str | None) -> float | None:
    """解析失败时返回 None，而不是抛异常。"""
    if not value:
        return None
    try:
        return parse_duration(value)
    except ValueError:
        return None
