"""
EPANET INP 文件生成模块

输出固定的分节顺序，每节都输出（无内容时只有表头），列宽 16 字符左对齐，
数值保留 4 位小数，经纬度坐标保留 6 位小数，数据行以 ";" 结尾。
同一输入的输出逐字节一致。
"""
import math
import warnings
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .defaults import COMPONENT_DEFAULTS, EXPORT_DEFAULTS
from .exceptions import IncompleteNetworkError, NetworkExportWarning, ProjectionError
from .graph import GraphLink, NetworkGraph
from .network_schema import CONTROL_ACTIONS, CONTROL_TYPES, VALVE_TYPES
from .projection import GeometryProjector, ProjectionRegistry
from .settings import resolve_settings
from .units import default_roughness
from .utils import NumberFormatter, PatternGenerator, TimeFormatter

SECTION_ORDER = (
    "TITLE",
    "JUNCTIONS",
    "RESERVOIRS",
    "TANKS",
    "PIPES",
    "PUMPS",
    "VALVES",
    "STATUS",
    "PATTERNS",
    "CURVES",
    "CONTROLS",
    "OPTIONS",
    "TIMES",
    "COORDINATES",
    "VERTICES",
    "END",
)

COLUMN_HEADERS: Dict[str, Sequence[str]] = {
    "JUNCTIONS": ("ID", "Elev", "Demand", "Pattern"),
    "RESERVOIRS": ("ID", "Head", "Pattern"),
    "TANKS": ("ID", "Elevation", "InitLevel", "MinLevel", "MaxLevel", "Diameter", "MinVol", "VolCurve"),
    "PIPES": ("ID", "Node1", "Node2", "Length", "Diameter", "Roughness", "MinorLoss", "Status"),
    "PUMPS": ("ID", "Node1", "Node2", "Parameters"),
    "VALVES": ("ID", "Node1", "Node2", "Diameter", "Type", "Setting", "MinorLoss"),
    "STATUS": ("ID", "Status/Setting"),
    "PATTERNS": ("ID", "Multipliers"),
    "CURVES": ("ID", "X-Value", "Y-Value"),
    "COORDINATES": ("Node", "X-Coord", "Y-Coord"),
    "VERTICES": ("Link", "X-Coord", "Y-Coord"),
}

_PIPE_STATUS = {"open": "Open", "closed": "Closed", "cv": "CV"}
_KEY_WIDTH = 19


def _pad(value: Any, width: Optional[int] = None) -> str:
    """左对齐到固定列宽；超长时补一个空格分隔"""
    width = width or EXPORT_DEFAULTS.column_width
    text = "0" if value is None else str(value)
    if len(text) >= width:
        return text + " "
    return text.ljust(width)


def _row(columns: Sequence[Any]) -> str:
    return "".join(_pad(c) for c in columns) + ";"


def _header(section: str) -> List[str]:
    lines = [f"[{section}]"]
    columns = COLUMN_HEADERS.get(section)
    if columns:
        width = EXPORT_DEFAULTS.column_width
        lines.append(";" + _pad(columns[0], width - 1) + "".join(_pad(c) for c in columns[1:]))
    return lines


def _num(value: Any) -> str:
    return NumberFormatter.fixed(value, EXPORT_DEFAULTS.numeric_precision)


def _option(key: str, value: Any) -> str:
    return f"{key:<{_KEY_WIDTH}}{NumberFormatter.plain(value)}"


def _fallback(value: Optional[float], kind: str, key: str) -> float:
    if value is not None:
        return value
    return float(COMPONENT_DEFAULTS.for_type(kind).get(key, 0))


def _with_default_pattern(patterns: Sequence[Mapping[str, Any]], default_id: str) -> List[Mapping[str, Any]]:
    result = list(patterns)
    if not any(str(p.get("id")) == default_id for p in result):
        result.append(PatternGenerator.make_pattern(
            default_id,
            PatternGenerator.constant(1.0, EXPORT_DEFAULTS.default_pattern_length),
            "Default",
        ))
    return result


def _control_defects(label: Any, ctype: str, control: Mapping[str, Any]) -> List[str]:
    """控制规则中无法写成合法 [CONTROLS] 行的触发值与动作；未知类型另行跳过"""
    if ctype not in CONTROL_TYPES:
        return []
    defects = []
    value = control.get("value")
    if ctype == "TIMEOFDAY":
        if not TimeFormatter.is_clock_string(value):
            defects.append(f"控制规则 {label} 的时刻 '{value}'")
    elif NumberFormatter.to_float(value) is None:
        defects.append(f"控制规则 {label} 的触发值 '{value}'")

    status = control.get("status")
    if status:
        if str(status).upper() not in CONTROL_ACTIONS:
            defects.append(f"控制规则 {label} 的状态 '{status}'")
    elif NumberFormatter.to_float(control.get("setting")) is None:
        defects.append(f"控制规则 {label} 的状态或设定值")
    return defects


def find_missing_references(
    graph: NetworkGraph,
    patterns: Sequence[Mapping[str, Any]],
    curves: Sequence[Mapping[str, Any]],
    controls: Sequence[Mapping[str, Any]],
    default_pattern: str,
) -> List[str]:
    """列出导出所必需但无法解析的引用"""
    missing: List[str] = []
    pattern_ids = {str(p.get("id")) for p in patterns} | {default_pattern}
    curve_ids = {str(c.get("id")) for c in curves}

    for link in graph.links.values():
        for endpoint in link.missing_endpoints:
            missing.append(f"管段 '{link.id}' 的端点 '{endpoint}'")

    for position, control in enumerate(controls):
        label = control.get("id") or f"#{position}"
        link_id = control.get("linkId")
        if not link_id or str(link_id) not in graph.links:
            missing.append(f"控制规则 {label} 的管段 '{link_id}'")
        ctype = str(control.get("type") or "").upper()
        if ctype in ("LOW LEVEL", "HI LEVEL"):
            node_id = control.get("nodeId")
            if not node_id or str(node_id) not in graph.nodes:
                missing.append(f"控制规则 {label} 的节点 '{node_id}'")
        missing.extend(_control_defects(label, ctype, control))

    for node in graph.nodes.values():
        if node.pattern and node.kind != "tank" and node.pattern not in pattern_ids:
            missing.append(f"节点 '{node.id}' 的时间模式 '{node.pattern}'")
        if node.kind == "tank" and node.volume_curve and node.volume_curve not in curve_ids:
            missing.append(f"水池 '{node.id}' 的容积曲线 '{node.volume_curve}'")

    for link in graph.links_of("pump"):
        if link.head_curve and link.head_curve not in curve_ids:
            missing.append(f"水泵 '{link.id}' 的曲线 '{link.head_curve}'")
        if link.pattern and link.pattern not in pattern_ids:
            missing.append(f"水泵 '{link.id}' 的时间模式 '{link.pattern}'")

    return missing


def _junction_rows(graph: NetworkGraph) -> List[str]:
    rows = []
    for node in graph.nodes_of("junction"):
        columns = [
            node.id,
            _num(_fallback(node.elevation, "junction", "elevation")),
            _num(node.demand if node.demand is not None else 0.0),
        ]
        if node.pattern:
            columns.append(node.pattern)
        rows.append(_row(columns))
    return rows


def _reservoir_rows(graph: NetworkGraph) -> List[str]:
    rows = []
    for node in graph.nodes_of("reservoir"):
        head = node.head if node.head is not None else node.elevation
        columns = [node.id, _num(_fallback(head, "reservoir", "head"))]
        if node.pattern:
            columns.append(node.pattern)
        rows.append(_row(columns))
    return rows


def _tank_rows(graph: NetworkGraph) -> List[str]:
    rows = []
    for node in graph.nodes_of("tank"):
        columns = [
            node.id,
            _num(_fallback(node.elevation, "tank", "elevation")),
            _num(_fallback(node.init_level, "tank", "initLevel")),
            _num(_fallback(node.min_level, "tank", "minLevel")),
            _num(_fallback(node.max_level, "tank", "maxLevel")),
            _num(_fallback(node.diameter, "tank", "diameter")),
            _num(_fallback(node.min_volume, "tank", "minVolume")),
        ]
        if node.volume_curve:
            columns.append(node.volume_curve)
        rows.append(_row(columns))
    return rows


def _pipe_length(link: GraphLink) -> float:
    if link.length is not None and math.isfinite(link.length):
        return link.length
    warnings.warn(
        f"管道 '{link.id}' 无法计算长度，按地图长度输出",
        NetworkExportWarning,
    )
    return link.map_length if math.isfinite(link.map_length) else 0.0


def _pipe_rows(graph: NetworkGraph, headloss: str) -> List[str]:
    rows = []
    for link in graph.links_of("pipe"):
        status = _PIPE_STATUS.get((link.status or "open").lower(), "Open")
        roughness = link.roughness if link.roughness is not None else default_roughness(headloss)
        rows.append(_row([
            link.id,
            link.start_node_id,
            link.end_node_id,
            _num(_pipe_length(link)),
            _num(_fallback(link.diameter, "pipe", "diameter")),
            _num(roughness),
            _num(_fallback(link.minor_loss, "pipe", "minorLoss")),
            status,
        ]))
    return rows


def _pump_rows(graph: NetworkGraph) -> List[str]:
    rows = []
    for link in graph.links_of("pump"):
        if link.head_curve:
            params = f"HEAD {link.head_curve}"
        else:
            params = f"POWER {NumberFormatter.plain(_fallback(link.power, 'pump', 'power'))}"
        if link.speed is not None:
            params += f" SPEED {NumberFormatter.plain(link.speed)}"
        if link.pattern:
            params += f" PATTERN {link.pattern}"
        rows.append(_pad(link.id) + _pad(link.start_node_id) + _pad(link.end_node_id) + params + " ;")
    return rows


def _valve_type(link: GraphLink) -> str:
    valve_type = (link.valve_type or COMPONENT_DEFAULTS.valve["valveType"]).upper()
    if valve_type not in VALVE_TYPES:
        warnings.warn(
            f"阀门 '{link.id}' 的类型 '{link.valve_type}' 无效，按 PRV 输出",
            NetworkExportWarning,
        )
        valve_type = "PRV"
    return valve_type


def _valve_rows(graph: NetworkGraph) -> List[str]:
    rows = []
    for link in graph.links_of("valve"):
        rows.append(_row([
            link.id,
            link.start_node_id,
            link.end_node_id,
            _num(_fallback(link.diameter, "valve", "diameter")),
            _valve_type(link),
            _num(_fallback(link.setting, "valve", "setting")),
            _num(_fallback(link.minor_loss, "valve", "minorLoss")),
        ]))
    return rows


def _status_rows(graph: NetworkGraph) -> List[str]:
    rows = []
    for link in graph.links.values():
        status = (link.status or "").lower()
        if link.kind == "pump" and status == "closed":
            rows.append(_row([link.id, "Closed"]))
        elif link.kind == "valve" and status in ("open", "closed"):
            rows.append(_row([link.id, status.capitalize()]))
    return rows


def _pattern_rows(patterns: Sequence[Mapping[str, Any]]) -> List[str]:
    rows = []
    per_line = EXPORT_DEFAULTS.pattern_columns
    for pattern in patterns:
        pattern_id = str(pattern.get("id"))
        multipliers = list(pattern.get("multipliers") or [])
        if not multipliers:
            warnings.warn(f"时间模式 '{pattern_id}' 没有乘子，已跳过", NetworkExportWarning)
            continue
        if pattern.get("description"):
            rows.append(f";{pattern['description']}")
        for start in range(0, len(multipliers), per_line):
            chunk = multipliers[start:start + per_line]
            rows.append(_row([pattern_id] + [_num(m) for m in chunk]))
    return rows


def _curve_rows(curves: Sequence[Mapping[str, Any]]) -> List[str]:
    rows = []
    for curve in curves:
        curve_id = str(curve.get("id"))
        ctype = str(curve.get("type") or "PUMP").upper()
        description = curve.get("description") or ""
        rows.append(f";{ctype}: {description}".rstrip())
        for point in curve.get("points") or []:
            rows.append(_row([curve_id, _num(point.get("x")), _num(point.get("y"))]))
    return rows


def _control_action(control: Mapping[str, Any]) -> str:
    status = control.get("status")
    if status:
        return str(status).upper()
    return _num(NumberFormatter.to_float(control.get("setting")) or 0.0)


def _control_rows(controls: Sequence[Mapping[str, Any]]) -> List[str]:
    rows = []
    for control in controls:
        ctype = str(control.get("type") or "").upper()
        if ctype not in CONTROL_TYPES:
            warnings.warn(
                f"控制规则 {control.get('id')} 的类型 '{control.get('type')}' 无法识别，已跳过",
                NetworkExportWarning,
            )
            continue
        head = f"LINK {control.get('linkId')} {_control_action(control)}"
        value = control.get("value")
        if ctype == "LOW LEVEL":
            rows.append(f"{head} IF NODE {control.get('nodeId')} BELOW {NumberFormatter.plain(value)}")
        elif ctype == "HI LEVEL":
            rows.append(f"{head} IF NODE {control.get('nodeId')} ABOVE {NumberFormatter.plain(value)}")
        elif ctype == "TIMER":
            rows.append(f"{head} AT TIME {NumberFormatter.plain(value)}")
        else:
            rows.append(f"{head} AT CLOCKTIME {str(value).strip()}")
    return rows


def _option_rows(settings: Mapping[str, Any]) -> List[str]:
    return [
        _option("Units", settings["units"]),
        _option("Headloss", settings["headloss"]),
        _option("Specific Gravity", settings["specificGravity"]),
        _option("Viscosity", settings["viscosity"]),
        _option("Trials", settings["maxTrials"]),
        _option("Accuracy", settings["accuracy"]),
        _option("CHECKFREQ", EXPORT_DEFAULTS.check_freq),
        _option("MAXCHECK", EXPORT_DEFAULTS.max_check),
        _option("DAMPLIMIT", EXPORT_DEFAULTS.damp_limit),
        _option("Unbalanced", EXPORT_DEFAULTS.unbalanced),
        _option("Pattern", settings["defaultPattern"]),
        _option("Demand Multiplier", settings["demandMultiplier"]),
        _option("Emitter Exponent", settings["emitterExponent"]),
        _option("Quality", EXPORT_DEFAULTS.quality),
    ]


def _time_rows(settings: Mapping[str, Any]) -> List[str]:
    return [
        _option("Duration", settings["duration"]),
        _option("Hydraulic Timestep", settings["hydraulicStep"]),
        _option("Pattern Timestep", settings["patternStep"]),
        _option("Report Timestep", settings["reportStep"]),
        _option("Report Start", settings["reportStart"]),
        _option("Start ClockTime", settings["startClock"]),
        _option("Statistic", EXPORT_DEFAULTS.statistic),
    ]


class _CoordinateWriter:
    """把地图坐标转换到输出坐标系并格式化"""

    def __init__(self, projector: GeometryProjector, output_crs: str):
        self.projector = projector
        self.output_crs = output_crs
        if projector.is_geographic(output_crs):
            self.precision = EXPORT_DEFAULTS.geographic_precision
        else:
            self.precision = EXPORT_DEFAULTS.numeric_precision

    def format(self, element_id: str, coord) -> Optional[List[str]]:
        try:
            x, y = self.projector.transform(coord, self.output_crs)
        except ProjectionError as e:
            warnings.warn(f"'{element_id}' 的坐标无法输出: {e}", NetworkExportWarning)
            return None
        return [
            element_id,
            NumberFormatter.fixed(x, self.precision),
            NumberFormatter.fixed(y, self.precision),
        ]


def _coordinate_rows(graph: NetworkGraph, writer: _CoordinateWriter) -> List[str]:
    rows = []
    for node in graph.nodes.values():
        if node.coordinates is None:
            warnings.warn(f"节点 '{node.id}' 没有有效坐标，已跳过", NetworkExportWarning)
            continue
        columns = writer.format(node.id, node.coordinates)
        if columns:
            rows.append(_row(columns))
    return rows


def _vertex_rows(graph: NetworkGraph, writer: _CoordinateWriter) -> List[str]:
    rows = []
    for link in graph.links.values():
        for vertex in link.interior_vertices:
            columns = writer.format(link.id, vertex)
            if columns:
                rows.append(_row(columns))
    return rows


def serialize_inp(
    graph: NetworkGraph,
    settings: Optional[Mapping[str, Any]] = None,
    patterns: Iterable[Mapping[str, Any]] = (),
    curves: Iterable[Mapping[str, Any]] = (),
    controls: Iterable[Mapping[str, Any]] = (),
    output_crs: Optional[str] = None,
    registry: Optional[ProjectionRegistry] = None,
) -> str:
    """
    生成 EPANET INP 文本

    Args:
        graph: 管网图
        settings: 项目设置（与默认值合并）
        patterns: 时间模式；缺少默认模式时自动补全 24 个 1.0
        curves: 曲线
        controls: 简单控制规则
        output_crs: 坐标输出坐标系，默认取设置中的 projection，其次为图的坐标系
        registry: 自定义投影登记表

    Returns:
        INP 文本

    Raises:
        ConfigurationError: 设置非法
        IncompleteNetworkError: 存在无法解析的必需引用（不返回部分结果）
    """
    resolved = resolve_settings(settings)
    patterns = list(patterns)
    curves = list(curves)
    controls = list(controls)

    missing = find_missing_references(graph, patterns, curves, controls, resolved["defaultPattern"])
    if missing:
        raise IncompleteNetworkError(
            f"管网不完整，无法导出，共 {len(missing)} 处缺失引用: {'; '.join(missing)}",
            missing=missing,
        )

    if graph.duplicate_ids:
        dropped = ", ".join(sorted({d[0] for d in graph.duplicate_ids}))
        warnings.warn(f"重复 ID 的后续记录未导出: {dropped}", NetworkExportWarning)

    target_crs = output_crs or (settings or {}).get("projection") or graph.crs
    projector = GeometryProjector(graph.crs, registry)
    coordinates = _CoordinateWriter(projector, target_crs)

    bodies: Dict[str, List[str]] = {
        "TITLE": [str(resolved["title"])] + (
            [str(resolved["description"])] if resolved.get("description") else []
        ),
        "JUNCTIONS": _junction_rows(graph),
        "RESERVOIRS": _reservoir_rows(graph),
        "TANKS": _tank_rows(graph),
        "PIPES": _pipe_rows(graph, resolved["headloss"]),
        "PUMPS": _pump_rows(graph),
        "VALVES": _valve_rows(graph),
        "STATUS": _status_rows(graph),
        "PATTERNS": _pattern_rows(_with_default_pattern(patterns, resolved["defaultPattern"])),
        "CURVES": _curve_rows(curves),
        "CONTROLS": _control_rows(controls),
        "OPTIONS": _option_rows(resolved),
        "TIMES": _time_rows(resolved),
        "COORDINATES": _coordinate_rows(graph, coordinates),
        "VERTICES": _vertex_rows(graph, coordinates),
    }

    lines: List[str] = []
    for section in SECTION_ORDER:
        if section == "END":
            lines.append("[END]")
            break
        lines.extend(_header(section))
        lines.extend(bodies[section])
        lines.append("")
    return "\n".join(lines) + "\n"


__all__ = [
    "SECTION_ORDER",
    "find_missing_references",
    "serialize_inp",
]
