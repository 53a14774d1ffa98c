"""
结果格式化模块：模拟结果导出 CSV，要素导出 GeoJSON
"""
import json
import warnings
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import pandas as pd

from .colors import PRESSURE_COLORS, VELOCITY_COLORS, ColorStop, color_for_value
from .defaults import EXPORT_DEFAULTS
from .exceptions import DataError, NetworkExportWarning, ProjectionError
from .graph import normalize_feature
from .network_schema import INTERNAL_PROPERTIES
from .projection import GEOGRAPHIC_CRS, GeometryProjector, ProjectionRegistry
from .utils import NumberFormatter, TimeFormatter

NODE_COLUMNS = ["Time", "ID", "Demand", "Head", "Pressure", "Quality"]
LINK_COLUMNS = ["Time", "ID", "Status", "Flow", "Velocity", "Headloss", "Quality"]

_NODE_FIELDS = ("demand", "head", "pressure")
_LINK_FIELDS = ("flow", "velocity", "headloss")

ResultData = Union[Mapping[str, Any], Sequence[Mapping[str, Any]]]


def _snapshots(data: ResultData) -> List[Dict[str, Any]]:
    """
    统一为 [{seconds, snapshot}]：支持单个快照、快照列表或 SimulationHistory

    时间优先取快照的 timeStep，其次 time，最后取历史中的 timestamps。
    """
    if isinstance(data, Mapping) and "snapshots" in data:
        snapshots = list(data.get("snapshots") or [])
        timestamps = list(data.get("timestamps") or [])
    elif isinstance(data, Mapping):
        snapshots, timestamps = [data], []
    else:
        snapshots, timestamps = list(data), []

    result = []
    for i, snapshot in enumerate(snapshots):
        seconds = snapshot.get("timeStep")
        if seconds is None:
            seconds = snapshot.get("time")
        if seconds is None:
            seconds = timestamps[i] if i < len(timestamps) else 0
        number = NumberFormatter.to_float(seconds)
        if number is None:
            raise DataError(f"第 {i} 个快照的时间 '{seconds}' 无效")
        result.append({"seconds": number, "snapshot": snapshot})
    return result


def _fixed(entry: Mapping[str, Any], key: str) -> str:
    value = NumberFormatter.to_float(entry.get(key))
    return NumberFormatter.fixed(value if value is not None else 0.0, EXPORT_DEFAULTS.numeric_precision)


def _quality(entry: Mapping[str, Any]) -> str:
    value = entry.get("quality")
    if not value:
        return "0"
    return NumberFormatter.plain(value)


def results_to_frame(data: ResultData, element: str = "nodes") -> pd.DataFrame:
    """
    模拟结果转换为表格（已格式化为字符串）

    Args:
        data: 单个快照、快照列表或 SimulationHistory
        element: "nodes" 或 "links"

    Returns:
        每个时刻每个元素一行的 DataFrame
    """
    if element not in ("nodes", "links"):
        raise ValueError(f"element 必须为 'nodes' 或 'links'，而不是 '{element}'")

    columns = NODE_COLUMNS if element == "nodes" else LINK_COLUMNS
    rows = []
    for item in _snapshots(data):
        time_label = TimeFormatter.format_seconds(item["seconds"])
        entries = item["snapshot"].get(element) or {}
        for key, entry in entries.items():
            element_id = str(entry.get("id", key))
            if element == "nodes":
                rows.append([time_label, element_id] + [_fixed(entry, f) for f in _NODE_FIELDS] + [_quality(entry)])
            else:
                status = "" if entry.get("status") is None else str(entry.get("status"))
                rows.append([time_label, element_id, status] + [_fixed(entry, f) for f in _LINK_FIELDS] + [_quality(entry)])
    return pd.DataFrame(rows, columns=columns, dtype=str)


def results_to_csv(data: ResultData, element: str = "nodes") -> str:
    """
    模拟结果导出为 CSV 文本

    节点列: Time,ID,Demand,Head,Pressure,Quality
    管段列: Time,ID,Status,Flow,Velocity,Headloss,Quality
    """
    frame = results_to_frame(data, element)
    return frame.to_csv(index=False, lineterminator="\n")


def export_filenames(time_step: Optional[float] = None) -> Dict[str, str]:
    """
    结果文件名：给定时刻时为单时刻文件，否则为完整过程文件

    例如 3660 秒 -> nodes_t0101.csv / links_t0101.csv
    """
    if time_step is None:
        return {"nodes": "simulation_nodes_full.csv", "links": "simulation_links_full.csv"}
    label = TimeFormatter.format_seconds(time_step).replace(":", "")
    return {"nodes": f"nodes_t{label}.csv", "links": f"links_t{label}.csv"}


def result_colors(
    snapshot: Mapping[str, Any],
    element: str = "nodes",
    metric: Optional[str] = None,
    stops: Optional[Sequence[ColorStop]] = None,
) -> Dict[str, str]:
    """
    按结果值为元素着色（节点默认按压力，管段默认按流速）

    Returns:
        {元素 ID: 十六进制颜色}
    """
    if element == "nodes":
        metric = metric or "pressure"
        stops = stops or PRESSURE_COLORS
    else:
        metric = metric or "velocity"
        stops = stops or VELOCITY_COLORS
    colors = {}
    for key, entry in (snapshot.get(element) or {}).items():
        value = NumberFormatter.to_float(entry.get(metric))
        if value is not None and element == "links":
            value = abs(value)
        colors[str(entry.get("id", key))] = color_for_value(value, stops)
    return colors


def _round_coords(value: Any, digits: int) -> Any:
    if isinstance(value, (list, tuple)) and value and isinstance(value[0], (list, tuple)):
        return [_round_coords(v, digits) for v in value]
    return [round(float(c), digits) for c in value]


def _geographic_geometry(geometry: Any, projector: GeometryProjector, feature_id: str) -> Optional[Dict[str, Any]]:
    if not isinstance(geometry, Mapping):
        return None
    digits = EXPORT_DEFAULTS.geographic_precision
    try:
        if geometry.get("type") == "Point":
            coords = list(projector.to_geographic(geometry.get("coordinates")))
        elif geometry.get("type") == "LineString":
            coords = [list(c) for c in projector.transform_many(geometry.get("coordinates") or [], GEOGRAPHIC_CRS)]
        else:
            raise ProjectionError(f"不支持的几何类型 '{geometry.get('type')}'")
    except ProjectionError as e:
        warnings.warn(f"要素 '{feature_id}' 的几何无法导出: {e}", NetworkExportWarning)
        return None
    return {"type": geometry["type"], "coordinates": _round_coords(coords, digits)}


def features_to_geojson(
    features: Iterable[Mapping[str, Any]],
    source_crs: str = "EPSG:3857",
    registry: Optional[ProjectionRegistry] = None,
    indent: Optional[int] = None,
) -> str:
    """
    要素导出为 EPSG:4326 的 GeoJSON FeatureCollection

    坐标保留 6 位小数；界面状态属性与派生的 connectedLinks 不导出，辅助要素跳过。
    """
    projector = GeometryProjector(source_crs, registry)
    output = []
    for record in features:
        feature = normalize_feature(record)
        if feature is None:
            continue
        properties = {
            k: v for k, v in feature["properties"].items() if k not in INTERNAL_PROPERTIES
        }
        if feature["featureType"]:
            properties["type"] = feature["featureType"]
        for key in ("startNodeId", "endNodeId"):
            if feature[key]:
                properties[key] = feature[key]
        output.append({
            "type": "Feature",
            "id": feature["id"],
            "geometry": _geographic_geometry(feature["geometry"], projector, feature["id"]),
            "properties": properties,
        })
    collection = {"type": "FeatureCollection", "features": output}
    return json.dumps(collection, ensure_ascii=False, indent=indent, default=str)


__all__ = [
    "NODE_COLUMNS",
    "LINK_COLUMNS",
    "results_to_frame",
    "results_to_csv",
    "export_filenames",
    "result_colors",
    "features_to_geojson",
]
