"""
颜色工具：按数值插值的色带，用于压力/流速等结果着色与图例
"""
import math
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
from matplotlib.colors import LinearSegmentedColormap, to_hex, to_rgb, to_rgba

ColorStop = Dict[str, Union[float, str]]

MISSING_COLOR = "#999999"

# 压力：蓝(低) -> 红(高)
PRESSURE_COLORS: List[ColorStop] = [
    {"value": 0, "color": "#3b82f6"},
    {"value": 20, "color": "#06b6d4"},
    {"value": 40, "color": "#10b981"},
    {"value": 60, "color": "#f59e0b"},
    {"value": 80, "color": "#ef4444"},
]

# 流速：浅绿 -> 深绿
VELOCITY_COLORS: List[ColorStop] = [
    {"value": 0, "color": "#d1fae5"},
    {"value": 0.5, "color": "#6ee7b7"},
    {"value": 1.0, "color": "#10b981"},
    {"value": 2.0, "color": "#047857"},
    {"value": 3.0, "color": "#064e3b"},
]


def _is_missing(value: Optional[float]) -> bool:
    if value is None:
        return True
    try:
        return math.isnan(float(value))
    except (TypeError, ValueError):
        return True


def _sorted_stops(stops: Sequence[ColorStop]):
    if not stops:
        raise ValueError("色带至少需要一个色标")
    ordered = sorted(stops, key=lambda s: float(s["value"]))
    values = np.array([float(s["value"]) for s in ordered])
    rgb = np.array([to_rgb(str(s["color"])) for s in ordered])
    return values, rgb


def color_for_value(value: Optional[float], stops: Sequence[ColorStop]) -> str:
    """
    按色标线性插值颜色

    Args:
        value: 数值，None/NaN 返回灰色
        stops: [{"value": v, "color": "#rrggbb"}, ...]

    Returns:
        十六进制颜色；超出范围时取端点颜色
    """
    if _is_missing(value):
        return MISSING_COLOR
    values, rgb = _sorted_stops(stops)
    x = float(value)
    channels = [np.interp(x, values, rgb[:, i]) for i in range(3)]
    return to_hex(channels)


def gradient_color(
    value: Optional[float],
    vmin: float,
    vmax: float,
    stops: Sequence[ColorStop],
    style: str = "continuous",
    class_count: int = 5,
) -> str:
    """
    在 [vmin, vmax] 范围内归一化后取色

    stops 的 value 以 0-100 的百分比表示；style="discrete" 时按
    class_count 个等宽分级取各级中点颜色。
    """
    if _is_missing(value):
        return MISSING_COLOR
    span = float(vmax) - float(vmin)
    t = 0.0 if span == 0 else (float(value) - float(vmin)) / span * 100.0
    t = max(0.0, min(100.0, t))

    if style == "discrete":
        if class_count <= 0:
            raise ValueError("class_count 必须为正整数")
        step = 100.0 / class_count
        bin_index = min(int(math.floor(t / step)), class_count - 1)
        t = bin_index * step + step / 2.0

    return color_for_value(t, stops)


def color_with_alpha(color: Optional[str], alpha: float = 1.0) -> str:
    """将十六进制或 rgb() 颜色转换为 rgba() 字符串"""
    if not color:
        return f"rgba(0, 0, 0, {alpha})"
    text = color.strip()
    if text.lower().startswith("rgb"):
        parts = text[text.index("(") + 1:text.rindex(")")].split(",")
        if len(parts) >= 3:
            r, g, b = (p.strip() for p in parts[:3])
            return f"rgba({r}, {g}, {b}, {alpha})"
        return text
    try:
        r, g, b, _ = to_rgba(text if text.startswith("#") else f"#{text}")
    except ValueError:
        return f"rgba(0, 0, 0, {alpha})"
    return f"rgba({round(r * 255)}, {round(g * 255)}, {round(b * 255)}, {alpha})"


def build_colormap(stops: Sequence[ColorStop], name: str = "netinp") -> LinearSegmentedColormap:
    """按色标构建 matplotlib 色带（用于图例或绘图）"""
    values, rgb = _sorted_stops(stops)
    span = values[-1] - values[0]
    if span == 0:
        positions = np.linspace(0.0, 1.0, len(values))
    else:
        positions = (values - values[0]) / span
    return LinearSegmentedColormap.from_list(name, list(zip(positions, rgb)))


def legend_entries(vmin: float, vmax: float, stops: Sequence[ColorStop], class_count: int = 5) -> List[Dict[str, object]]:
    """生成分级图例：每级的区间与中点颜色（stops 使用实际数值）"""
    edges = np.linspace(float(vmin), float(vmax), class_count + 1)
    entries = []
    for lower, upper in zip(edges[:-1], edges[1:]):
        entries.append({
            "min": float(lower),
            "max": float(upper),
            "color": color_for_value((lower + upper) / 2.0, stops),
        })
    return entries


__all__ = [
    "MISSING_COLOR",
    "PRESSURE_COLORS",
    "VELOCITY_COLORS",
    "color_for_value",
    "gradient_color",
    "color_with_alpha",
    "build_colormap",
    "legend_entries",
]
