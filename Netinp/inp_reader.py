"""
EPANET INP 文件解析模块

把 INP 文本还原为编辑器要素、项目设置、时间模式、曲线与控制规则，
坐标从文件坐标系转换到地图坐标系。
"""
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import DataError, NetworkExportWarning, ProjectionError
from .network_schema import CURVE_TYPES
from .projection import GEOGRAPHIC_CRS, SIMPLE_CRS, GeometryProjector, ProjectionRegistry, normalize_crs_code
from .settings import resolve_settings

# 由多个单词组成的选项名，按最长匹配识别
_COMPOUND_KEYS = (
    "SPECIFIC GRAVITY",
    "DEMAND MULTIPLIER",
    "EMITTER EXPONENT",
    "HYDRAULIC TIMESTEP",
    "PATTERN TIMESTEP",
    "REPORT TIMESTEP",
    "REPORT START",
    "START CLOCKTIME",
    "QUALITY TIMESTEP",
    "RULE TIMESTEP",
    "DEMAND MODEL",
)

_OPTION_FIELDS = {
    "UNITS": "units",
    "HEADLOSS": "headloss",
    "SPECIFIC GRAVITY": "specificGravity",
    "VISCOSITY": "viscosity",
    "TRIALS": "maxTrials",
    "ACCURACY": "accuracy",
    "DEMAND MULTIPLIER": "demandMultiplier",
    "EMITTER EXPONENT": "emitterExponent",
    "PATTERN": "defaultPattern",
}

_TIME_FIELDS = {
    "DURATION": "duration",
    "HYDRAULIC TIMESTEP": "hydraulicStep",
    "PATTERN TIMESTEP": "patternStep",
    "REPORT TIMESTEP": "reportStep",
    "REPORT START": "reportStart",
    "START CLOCKTIME": "startClock",
}

Line = Tuple[int, str, str]  # (行号, 数据部分, 注释部分)


@dataclass
class ParsedProject:
    """INP 解析结果"""

    features: List[Dict[str, Any]] = field(default_factory=list)
    settings: Dict[str, Any] = field(default_factory=dict)
    patterns: List[Dict[str, Any]] = field(default_factory=list)
    curves: List[Dict[str, Any]] = field(default_factory=list)
    controls: List[Dict[str, Any]] = field(default_factory=list)
    source_crs: str = GEOGRAPHIC_CRS


def split_sections(text: str) -> Dict[str, List[Line]]:
    """按 [SECTION] 切分，保留每行的注释以便识别曲线类型"""
    sections: Dict[str, List[Line]] = {}
    current: Optional[str] = None
    for number, raw in enumerate(text.splitlines(), start=1):
        data, _, comment = raw.partition(";")
        data = data.strip()
        if data.startswith("[") and data.endswith("]"):
            current = data[1:-1].strip().upper()
            sections.setdefault(current, [])
            continue
        if current is None or (not data and not comment.strip()):
            continue
        sections[current].append((number, data, comment.strip()))
    return sections


def _data_lines(lines: List[Line]) -> List[Tuple[int, List[str]]]:
    return [(number, data.split()) for number, data, _ in lines if data]


def _float(token: str, section: str, number: int) -> float:
    try:
        return float(token)
    except (TypeError, ValueError):
        raise DataError(f"[{section}] 第 {number} 行: '{token}' 不是有效数字")


def _optional_float(parts: List[str], index: int, section: str, number: int) -> Optional[float]:
    if len(parts) <= index:
        return None
    return _float(parts[index], section, number)


def _require(parts: List[str], count: int, section: str, number: int) -> None:
    if len(parts) < count:
        raise DataError(f"[{section}] 第 {number} 行字段不足，至少需要 {count} 个")


def parse_key_values(lines: List[Line]) -> Dict[str, str]:
    """解析 [OPTIONS] / [TIMES] 形式的键值行，键统一为大写"""
    values: Dict[str, str] = {}
    for _, data, _ in lines:
        if not data:
            continue
        upper = " ".join(data.split()).upper()
        key = next((k for k in _COMPOUND_KEYS if upper.startswith(k + " ")), None)
        if key is None:
            key = upper.split()[0]
        value = " ".join(data.split()[len(key.split()):])
        if value:
            values[key] = value
    return values


def _parse_patterns(lines: List[Line]) -> List[Dict[str, Any]]:
    patterns: Dict[str, Dict[str, Any]] = {}
    description = None
    for number, data, comment in lines:
        if not data:
            # 列标题注释不是模式说明
            if comment and comment.split()[0].upper() != "ID":
                description = comment
            continue
        parts = data.split()
        pattern_id = parts[0]
        if pattern_id not in patterns:
            patterns[pattern_id] = {"id": pattern_id, "multipliers": []}
            if description:
                patterns[pattern_id]["description"] = description
        description = None
        patterns[pattern_id]["multipliers"].extend(_float(p, "PATTERNS", number) for p in parts[1:])
    return list(patterns.values())


def _parse_curves(lines: List[Line]) -> List[Dict[str, Any]]:
    curves: Dict[str, Dict[str, Any]] = {}
    pending_type, pending_description = "PUMP", None
    for number, data, comment in lines:
        if not data:
            head, _, rest = comment.partition(":")
            if head.strip().upper() in CURVE_TYPES:
                pending_type = head.strip().upper()
                pending_description = rest.strip() or None
            continue
        parts = data.split()
        _require(parts, 3, "CURVES", number)
        curve_id = parts[0]
        if curve_id not in curves:
            curves[curve_id] = {"id": curve_id, "type": pending_type, "points": []}
            if pending_description:
                curves[curve_id]["description"] = pending_description
            pending_type, pending_description = "PUMP", None
        curves[curve_id]["points"].append({
            "x": _float(parts[1], "CURVES", number),
            "y": _float(parts[2], "CURVES", number),
        })
    return list(curves.values())


def _parse_controls(lines: List[Line]) -> List[Dict[str, Any]]:
    controls: List[Dict[str, Any]] = []
    for number, parts in _data_lines(lines):
        upper = [p.upper() for p in parts]
        if len(parts) < 6 or upper[0] != "LINK":
            warnings.warn(f"[CONTROLS] 第 {number} 行无法识别，已跳过", NetworkExportWarning)
            continue
        control: Dict[str, Any] = {"id": f"control-{len(controls) + 1}", "linkId": parts[1]}
        if upper[2] in ("OPEN", "CLOSED", "ACTIVE"):
            control["status"] = upper[2]
        else:
            control["setting"] = _float(parts[2], "CONTROLS", number)

        if upper[3:5] == ["AT", "TIME"]:
            control["type"] = "TIMER"
            control["value"] = _float(parts[5], "CONTROLS", number)
        elif upper[3:5] == ["AT", "CLOCKTIME"]:
            control["type"] = "TIMEOFDAY"
            control["value"] = " ".join(parts[5:])
        elif upper[3:5] == ["IF", "NODE"] and len(parts) >= 8:
            control["nodeId"] = parts[5]
            control["type"] = "LOW LEVEL" if upper[6] == "BELOW" else "HI LEVEL"
            control["value"] = _float(parts[7], "CONTROLS", number)
        else:
            warnings.warn(f"[CONTROLS] 第 {number} 行无法识别，已跳过", NetworkExportWarning)
            continue
        controls.append(control)
    return controls


def _parse_points(lines: List[Line], section: str) -> Dict[str, List[List[float]]]:
    points: Dict[str, List[List[float]]] = {}
    for number, parts in _data_lines(lines):
        _require(parts, 3, section, number)
        points.setdefault(parts[0], []).append([
            _float(parts[1], section, number),
            _float(parts[2], section, number),
        ])
    return points


def detect_source_crs(coordinates: Dict[str, List[List[float]]], fallback: str) -> str:
    """首个坐标落在经纬度范围内时视为 EPSG:4326"""
    for values in coordinates.values():
        x, y = values[0]
        if -180 <= x <= 180 and -90 <= y <= 90:
            return GEOGRAPHIC_CRS
        break
    return fallback


def _reproject(
    points: Dict[str, List[List[float]]],
    projector: GeometryProjector,
    target_crs: str,
) -> Dict[str, List[List[float]]]:
    result: Dict[str, List[List[float]]] = {}
    for element_id, values in points.items():
        converted = []
        for value in values:
            try:
                converted.append(list(projector.transform(value, target_crs)))
            except ProjectionError as e:
                warnings.warn(f"'{element_id}' 的坐标转换失败，保留原值: {e}", NetworkExportWarning)
                converted.append(value)
        result[element_id] = converted
    return result


def _node_feature(node_id: str, kind: str, coordinates, properties: Dict[str, Any]) -> Dict[str, Any]:
    properties = {k: v for k, v in properties.items() if v is not None}
    properties["type"] = kind
    if coordinates is None:
        warnings.warn(f"节点 '{node_id}' 在 [COORDINATES] 中没有坐标", NetworkExportWarning)
    return {
        "id": node_id,
        "featureType": kind,
        "geometry": {"type": "Point", "coordinates": coordinates} if coordinates else None,
        "properties": properties,
    }


def _link_feature(
    link_id: str,
    kind: str,
    start: str,
    end: str,
    node_points: Dict[str, List[float]],
    vertices: Dict[str, List[List[float]]],
    properties: Dict[str, Any],
) -> Dict[str, Any]:
    properties = {k: v for k, v in properties.items() if v is not None}
    properties["type"] = kind
    geometry = None
    if start in node_points and end in node_points:
        path = [node_points[start]] + vertices.get(link_id, []) + [node_points[end]]
        geometry = {"type": "LineString", "coordinates": path}
    return {
        "id": link_id,
        "featureType": kind,
        "geometry": geometry,
        "properties": properties,
        "startNodeId": start,
        "endNodeId": end,
    }


def _pump_properties(parts: List[str], number: int) -> Dict[str, Any]:
    properties: Dict[str, Any] = {"status": "open"}
    tokens = parts[3:]
    for i in range(0, len(tokens) - 1, 2):
        keyword, value = tokens[i].upper(), tokens[i + 1]
        if keyword == "HEAD":
            properties["headCurve"] = value
        elif keyword == "POWER":
            properties["power"] = _float(value, "PUMPS", number)
        elif keyword == "SPEED":
            properties["speed"] = _float(value, "PUMPS", number)
        elif keyword == "PATTERN":
            properties["pattern"] = value
    return properties


def read_inp(text: str, source_crs: Optional[str] = None, map_crs: str = "EPSG:3857",
             registry: Optional[ProjectionRegistry] = None) -> ParsedProject:
    """
    解析 INP 文本

    Args:
        text: INP 文件内容
        source_crs: 文件坐标所在坐标系；为空时按首个坐标自动判断经纬度
        map_crs: 输出要素使用的地图坐标系
        registry: 自定义投影登记表

    Returns:
        ParsedProject

    Raises:
        DataError: 数值字段无法解析
        ConfigurationError: 单位或时间设置非法
    """
    sections = split_sections(text)
    map_crs = normalize_crs_code(map_crs)

    coordinates = _parse_points(sections.get("COORDINATES", []), "COORDINATES")
    vertices = _parse_points(sections.get("VERTICES", []), "VERTICES")

    source = normalize_crs_code(source_crs) if source_crs else detect_source_crs(coordinates, map_crs)
    if source != map_crs and source != SIMPLE_CRS:
        projector = GeometryProjector(source, registry)
        coordinates = _reproject(coordinates, projector, map_crs)
        vertices = _reproject(vertices, projector, map_crs)
    node_points = {node_id: values[0] for node_id, values in coordinates.items()}

    options = parse_key_values(sections.get("OPTIONS", []))
    times = parse_key_values(sections.get("TIMES", []))
    raw_settings: Dict[str, Any] = {"projection": source}
    title_lines = [data for _, data, _ in sections.get("TITLE", []) if data]
    if title_lines:
        raw_settings["title"] = title_lines[0]
        if len(title_lines) > 1:
            raw_settings["description"] = " ".join(title_lines[1:])
    for key, name in _OPTION_FIELDS.items():
        if key in options:
            raw_settings[name] = options[key].split()[0]
    for key, name in _TIME_FIELDS.items():
        if key in times:
            raw_settings[name] = times[key]

    features: List[Dict[str, Any]] = []

    for number, parts in _data_lines(sections.get("JUNCTIONS", [])):
        _require(parts, 2, "JUNCTIONS", number)
        features.append(_node_feature(parts[0], "junction", node_points.get(parts[0]), {
            "elevation": _float(parts[1], "JUNCTIONS", number),
            "demand": _optional_float(parts, 2, "JUNCTIONS", number) or 0.0,
            "pattern": parts[3] if len(parts) > 3 else None,
        }))

    for number, parts in _data_lines(sections.get("RESERVOIRS", [])):
        _require(parts, 2, "RESERVOIRS", number)
        features.append(_node_feature(parts[0], "reservoir", node_points.get(parts[0]), {
            "head": _float(parts[1], "RESERVOIRS", number),
            "pattern": parts[2] if len(parts) > 2 else None,
        }))

    for number, parts in _data_lines(sections.get("TANKS", [])):
        _require(parts, 6, "TANKS", number)
        features.append(_node_feature(parts[0], "tank", node_points.get(parts[0]), {
            "elevation": _float(parts[1], "TANKS", number),
            "initLevel": _float(parts[2], "TANKS", number),
            "minLevel": _float(parts[3], "TANKS", number),
            "maxLevel": _float(parts[4], "TANKS", number),
            "diameter": _float(parts[5], "TANKS", number),
            "minVolume": _optional_float(parts, 6, "TANKS", number) or 0.0,
            "volumeCurve": parts[7] if len(parts) > 7 and parts[7] != "*" else None,
        }))

    for number, parts in _data_lines(sections.get("PIPES", [])):
        _require(parts, 6, "PIPES", number)
        features.append(_link_feature(parts[0], "pipe", parts[1], parts[2], node_points, vertices, {
            "length": _float(parts[3], "PIPES", number),
            "diameter": _float(parts[4], "PIPES", number),
            "roughness": _float(parts[5], "PIPES", number),
            "minorLoss": _optional_float(parts, 6, "PIPES", number) or 0.0,
            "status": parts[7].lower() if len(parts) > 7 else "open",
        }))

    for number, parts in _data_lines(sections.get("PUMPS", [])):
        _require(parts, 3, "PUMPS", number)
        features.append(_link_feature(
            parts[0], "pump", parts[1], parts[2], node_points, vertices, _pump_properties(parts, number)
        ))

    for number, parts in _data_lines(sections.get("VALVES", [])):
        _require(parts, 6, "VALVES", number)
        features.append(_link_feature(parts[0], "valve", parts[1], parts[2], node_points, vertices, {
            "diameter": _float(parts[3], "VALVES", number),
            "valveType": parts[4].upper(),
            "setting": _float(parts[5], "VALVES", number),
            "minorLoss": _optional_float(parts, 6, "VALVES", number) or 0.0,
            "status": "active",
        }))

    by_id = {f["id"]: f for f in features}
    for number, parts in _data_lines(sections.get("STATUS", [])):
        _require(parts, 2, "STATUS", number)
        feature = by_id.get(parts[0])
        if feature is None:
            warnings.warn(f"[STATUS] 第 {number} 行引用了不存在的管段 '{parts[0]}'", NetworkExportWarning)
            continue
        feature["properties"]["status"] = parts[1].lower()

    return ParsedProject(
        features=features,
        settings=resolve_settings(raw_settings),
        patterns=_parse_patterns(sections.get("PATTERNS", [])),
        curves=_parse_curves(sections.get("CURVES", [])),
        controls=_parse_controls(sections.get("CONTROLS", [])),
        source_crs=source,
    )


__all__ = [
    "ParsedProject",
    "split_sections",
    "parse_key_values",
    "detect_source_crs",
    "read_inp",
]
