"""
拓扑校验模块：检查管网图的结构缺陷

校验结果是数据而非异常：每条问题记录类型、严重程度、说明和相关要素，
同一输入的校验结果完全一致（检查顺序固定）。
"""
import math
from collections import deque
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from .defaults import EXPORT_DEFAULTS, SETTINGS_DEFAULTS
from .graph import GraphLink, NetworkGraph
from .network_schema import CONTROL_ACTIONS, CONTROL_TYPES, CURVE_TYPES
from .utils import NumberFormatter, TimeFormatter

LEVEL_CONTROLS = ("LOW LEVEL", "HI LEVEL")


class Severity(Enum):
    """问题严重程度"""
    ERROR = "error"  # 阻止导出
    WARNING = "warning"  # 仅提示


class IssueKind(Enum):
    """问题类型"""
    DUPLICATE_ID = "duplicate_id"
    DANGLING_LINK = "dangling_link"
    SELF_LOOP = "self_loop"
    ISOLATED_NODE = "isolated_node"
    DISCONNECTED = "disconnected"
    NO_SOURCE = "no_source"
    INVALID_GEOMETRY = "invalid_geometry"
    DEGENERATE_GEOMETRY = "degenerate_geometry"
    CROSSING_PIPES = "crossing_pipes"
    MISSING_ATTRIBUTE = "missing_attribute"
    UNKNOWN_FEATURE = "unknown_feature"
    INVALID_CONTROL = "invalid_control"
    INVALID_CURVE = "invalid_curve"
    EMPTY_PATTERN = "empty_pattern"
    UNKNOWN_REFERENCE = "unknown_reference"
    CURVE_TYPE_MISMATCH = "curve_type_mismatch"


class ValidationIssue:
    """单条校验问题"""

    def __init__(
        self,
        kind: IssueKind,
        severity: Severity,
        message: str,
        feature_ids: Optional[Sequence[str]] = None,
    ):
        self.kind = kind
        self.severity = severity
        self.message = message
        self.feature_ids = list(feature_ids or [])

    @property
    def feature_id(self) -> Optional[str]:
        return self.feature_ids[0] if self.feature_ids else None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.kind.value, "message": self.message}
        if self.feature_ids:
            data["featureId"] = self.feature_ids[0]
            data["featureIds"] = list(self.feature_ids)
        return data

    def __eq__(self, other):
        if not isinstance(other, ValidationIssue):
            return NotImplemented
        return (self.kind, self.severity, self.message, self.feature_ids) == (
            other.kind, other.severity, other.message, other.feature_ids
        )

    def __repr__(self):
        return f"ValidationIssue(kind={self.kind.value}, severity={self.severity.value}, message='{self.message}')"


class ValidationReport:
    """校验报告"""

    def __init__(self, errors: Optional[List[ValidationIssue]] = None, warnings: Optional[List[ValidationIssue]] = None):
        self.errors = list(errors or [])
        self.warnings = list(warnings or [])

    @property
    def is_valid(self) -> bool:
        """没有错误即视为有效（警告不影响）"""
        return not self.errors

    def add(self, issue: ValidationIssue) -> None:
        if issue.severity is Severity.ERROR:
            self.errors.append(issue)
        else:
            self.warnings.append(issue)

    def of_kind(self, kind: IssueKind) -> List[ValidationIssue]:
        return [i for i in self.errors + self.warnings if i.kind is kind]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "errors": [i.to_dict() for i in self.errors],
            "warnings": [i.to_dict() for i in self.warnings],
        }

    def __repr__(self):
        return f"ValidationReport(errors={len(self.errors)}, warnings={len(self.warnings)})"


def validate_network(
    graph: NetworkGraph,
    controls: Iterable[Mapping[str, Any]] = (),
    patterns: Iterable[Mapping[str, Any]] = (),
    curves: Iterable[Mapping[str, Any]] = (),
    epsilon: Optional[float] = None,
    default_pattern: Optional[str] = None,
) -> ValidationReport:
    """
    校验管网图

    Args:
        graph: build_network_graph 构建的管网图
        controls: 控制规则
        patterns: 时间模式
        curves: 曲线
        epsilon: 零长度阈值（地图单位），默认 1e-6
        default_pattern: 默认模式 ID（导出时自动补全，因此视为已定义）

    Returns:
        ValidationReport
    """
    eps = EXPORT_DEFAULTS.zero_length_epsilon if epsilon is None else float(epsilon)
    report = ValidationReport()

    _check_duplicates(graph, report)
    _check_endpoints(graph, report)
    _check_isolated(graph, report)
    _check_components(graph, report)
    _check_geometry(graph, report, eps)
    _check_attributes(graph, report)
    _check_controls(graph, list(controls), report)
    _check_curves_and_patterns(
        graph,
        list(patterns),
        list(curves),
        report,
        default_pattern if default_pattern is not None else SETTINGS_DEFAULTS.defaultPattern,
    )
    return report


def _check_duplicates(graph: NetworkGraph, report: ValidationReport) -> None:
    """重复 ID：保留首次出现的要素"""
    for feature_id, first, duplicate in graph.duplicate_ids:
        report.add(ValidationIssue(
            IssueKind.DUPLICATE_ID,
            Severity.ERROR,
            f"要素 ID 重复: '{feature_id}'（第 {first} 条与第 {duplicate} 条记录）",
            [feature_id],
        ))


def _check_endpoints(graph: NetworkGraph, report: ValidationReport) -> None:
    for link in graph.links.values():
        if link.unresolved:
            missing = ", ".join(f"'{m}'" if m else "(空)" for m in link.missing_endpoints)
            report.add(ValidationIssue(
                IssueKind.DANGLING_LINK,
                Severity.ERROR,
                f"管段 '{link.id}' 的端点不存在: {missing}",
                [link.id],
            ))
        elif link.is_self_loop:
            report.add(ValidationIssue(
                IssueKind.SELF_LOOP,
                Severity.ERROR,
                f"管段 '{link.id}' 的起点与终点相同: '{link.start_node_id}'",
                [link.id],
            ))


def _check_isolated(graph: NetworkGraph, report: ValidationReport) -> None:
    for node in graph.nodes.values():
        if not node.connected_links:
            report.add(ValidationIssue(
                IssueKind.ISOLATED_NODE,
                Severity.WARNING,
                f"节点 '{node.id}' 未连接任何管段",
                [node.id],
            ))


def connected_components(graph: NetworkGraph) -> List[List[str]]:
    """
    连通分量（广度优先，按节点输入顺序）

    只包含至少连接一条管段的节点，管段视为无向。
    """
    adjacency = graph.adjacency()
    visited: Set[str] = set()
    components: List[List[str]] = []

    for node_id, node in graph.nodes.items():
        if node_id in visited or not node.connected_links:
            continue
        queue = deque([node_id])
        visited.add(node_id)
        members = []
        while queue:
            current = queue.popleft()
            members.append(current)
            for neighbour in adjacency[current]:
                if neighbour not in visited:
                    visited.add(neighbour)
                    queue.append(neighbour)
        order = {nid: graph.nodes[nid].index for nid in members}
        components.append(sorted(members, key=order.__getitem__))
    return components


def _check_components(graph: NetworkGraph, report: ValidationReport) -> None:
    components = connected_components(graph)
    if not components:
        return

    # 最大分量为主网，其余各报一条
    main_index = max(range(len(components)), key=lambda i: (len(components[i]), -i))
    for i, members in enumerate(components):
        if i == main_index:
            continue
        report.add(ValidationIssue(
            IssueKind.DISCONNECTED,
            Severity.WARNING,
            f"发现与主网断开的子网，包含 {len(members)} 个节点: {', '.join(members)}",
            members,
        ))

    for members in components:
        if not any(graph.nodes[nid].is_anchor for nid in members):
            report.add(ValidationIssue(
                IssueKind.NO_SOURCE,
                Severity.WARNING,
                f"子网没有水池或水库，水力上孤立: {', '.join(members)}",
                members,
            ))


def _ccw(a, b, c) -> float:
    return (b[0] - a[0]) * (c[1] - a[1]) - (b[1] - a[1]) * (c[0] - a[0])


def _segments_cross(p1, p2, q1, q2) -> bool:
    d1 = _ccw(q1, q2, p1)
    d2 = _ccw(q1, q2, p2)
    d3 = _ccw(p1, p2, q1)
    d4 = _ccw(p1, p2, q2)
    return d1 * d2 < 0 and d3 * d4 < 0


def _polylines_cross(a: GraphLink, b: GraphLink) -> bool:
    for p1, p2 in zip(a.vertices[:-1], a.vertices[1:]):
        for q1, q2 in zip(b.vertices[:-1], b.vertices[1:]):
            if _segments_cross(p1, p2, q1, q2):
                return True
    return False


def _check_geometry(graph: NetworkGraph, report: ValidationReport, eps: float) -> None:
    for node in graph.nodes.values():
        if node.invalid_geometry:
            report.add(ValidationIssue(
                IssueKind.INVALID_GEOMETRY,
                Severity.ERROR,
                f"节点 '{node.id}' 缺少有效的点坐标",
                [node.id],
            ))

    for link in graph.links.values():
        if link.invalid_geometry:
            report.add(ValidationIssue(
                IssueKind.INVALID_GEOMETRY,
                Severity.WARNING,
                f"管段 '{link.id}' 的折线几何无效",
                [link.id],
            ))
        if link.zero_length or not link.vertices:
            continue
        if not math.isfinite(link.map_length) or link.map_length < eps:
            report.add(ValidationIssue(
                IssueKind.DEGENERATE_GEOMETRY,
                Severity.WARNING,
                f"管段 '{link.id}' 的长度为零（未标记为零长度装置）",
                [link.id],
            ))

    pipes = [l for l in graph.links.values() if l.kind == "pipe" and len(l.vertices) >= 2]
    for i, first in enumerate(pipes):
        first_ends = {first.start_node_id, first.end_node_id}
        for second in pipes[i + 1:]:
            if first_ends & {second.start_node_id, second.end_node_id}:
                continue
            if _polylines_cross(first, second):
                report.add(ValidationIssue(
                    IssueKind.CROSSING_PIPES,
                    Severity.WARNING,
                    f"管道 '{first.id}' 与 '{second.id}' 交叉但没有共用节点",
                    [first.id, second.id],
                ))


def _check_attributes(graph: NetworkGraph, report: ValidationReport) -> None:
    elements = list(graph.nodes.values()) + list(graph.links.values())
    for element in sorted(elements, key=lambda e: e.index):
        for name in element.missing_fields:
            report.add(ValidationIssue(
                IssueKind.MISSING_ATTRIBUTE,
                Severity.WARNING,
                f"{element.kind} '{element.id}' 缺少属性 '{name}'，导出时使用默认值",
                [element.id],
            ))

    for feature_id, kind, index in graph.unknown_features:
        if feature_id is None:
            message = f"第 {index} 条记录缺少 id，已忽略"
        else:
            message = f"要素 '{feature_id}' 的类型 '{kind}' 无法识别，已忽略"
        report.add(ValidationIssue(
            IssueKind.UNKNOWN_FEATURE,
            Severity.WARNING,
            message,
            [feature_id] if feature_id is not None else [],
        ))


def _check_controls(graph: NetworkGraph, controls: List[Mapping[str, Any]], report: ValidationReport) -> None:
    for position, control in enumerate(controls):
        label = control.get("id") or f"#{position}"
        link_id = control.get("linkId")
        ctype = str(control.get("type") or "").upper()

        def error(message: str) -> None:
            report.add(ValidationIssue(
                IssueKind.INVALID_CONTROL,
                Severity.ERROR,
                f"控制规则 {label}: {message}",
                [str(link_id)] if link_id else [],
            ))

        if not link_id or str(link_id) not in graph.links:
            error(f"受控管段 '{link_id}' 不存在")

        if ctype not in CONTROL_TYPES:
            error(f"未知的控制类型 '{control.get('type')}'")
        elif ctype in LEVEL_CONTROLS:
            node_id = control.get("nodeId")
            if not node_id:
                error("液位控制缺少触发节点")
            elif str(node_id) not in graph.nodes:
                error(f"触发节点 '{node_id}' 不存在")
            if NumberFormatter.to_float(control.get("value")) is None:
                error(f"触发液位 '{control.get('value')}' 不是有效数字")
        elif ctype == "TIMER":
            if NumberFormatter.to_float(control.get("value")) is None:
                error(f"定时控制的时长 '{control.get('value')}' 不是有效数字")
        elif ctype == "TIMEOFDAY":
            if not TimeFormatter.is_clock_string(str(control.get("value") or "")):
                error(f"时刻 '{control.get('value')}' 格式无效")

        status = control.get("status")
        if status:
            if str(status).upper() not in CONTROL_ACTIONS:
                error(f"未知的状态 '{status}'")
        elif NumberFormatter.to_float(control.get("setting")) is None:
            error("缺少状态或数值设定")


def _check_curves_and_patterns(
    graph: NetworkGraph,
    patterns: List[Mapping[str, Any]],
    curves: List[Mapping[str, Any]],
    report: ValidationReport,
    default_pattern: str,
) -> None:
    curve_types: Dict[str, str] = {}
    for curve in curves:
        curve_id = str(curve.get("id"))
        ctype = str(curve.get("type") or "PUMP").upper()
        curve_types[curve_id] = ctype
        points = curve.get("points") or []
        if ctype not in CURVE_TYPES:
            report.add(ValidationIssue(
                IssueKind.INVALID_CURVE, Severity.ERROR,
                f"曲线 '{curve_id}' 的类型 '{curve.get('type')}' 无效", [curve_id],
            ))
        if not points:
            report.add(ValidationIssue(
                IssueKind.INVALID_CURVE, Severity.ERROR,
                f"曲线 '{curve_id}' 没有数据点", [curve_id],
            ))
            continue
        if ctype in ("HEADLOSS", "VOLUME"):
            xs = [NumberFormatter.to_float(p.get("x")) for p in points]
            increasing = all(x is not None for x in xs) and all(b > a for a, b in zip(xs, xs[1:]))
            if not increasing:
                report.add(ValidationIssue(
                    IssueKind.INVALID_CURVE, Severity.ERROR,
                    f"{ctype} 曲线 '{curve_id}' 的 X 值必须严格递增", [curve_id],
                ))

    pattern_ids = {str(default_pattern)}
    for pattern in patterns:
        pattern_id = str(pattern.get("id"))
        pattern_ids.add(pattern_id)
        if not pattern.get("multipliers"):
            report.add(ValidationIssue(
                IssueKind.EMPTY_PATTERN, Severity.WARNING,
                f"时间模式 '{pattern_id}' 没有乘子", [pattern_id],
            ))

    def unknown(element_id: str, what: str, ref: str) -> None:
        report.add(ValidationIssue(
            IssueKind.UNKNOWN_REFERENCE, Severity.ERROR,
            f"'{element_id}' 引用了不存在的{what} '{ref}'", [element_id],
        ))

    for node in graph.nodes.values():
        if node.pattern and node.kind in ("junction", "reservoir") and node.pattern not in pattern_ids:
            unknown(node.id, "时间模式", node.pattern)
        if node.kind == "tank" and node.volume_curve and node.volume_curve not in curve_types:
            unknown(node.id, "容积曲线", node.volume_curve)

    for link in graph.links.values():
        if link.kind != "pump":
            continue
        if link.head_curve:
            if link.head_curve not in curve_types:
                unknown(link.id, "水泵曲线", link.head_curve)
            elif curve_types[link.head_curve] != "PUMP":
                report.add(ValidationIssue(
                    IssueKind.CURVE_TYPE_MISMATCH, Severity.WARNING,
                    f"水泵 '{link.id}' 引用的曲线 '{link.head_curve}' 类型为 "
                    f"{curve_types[link.head_curve]}，不是 PUMP", [link.id],
                ))
        if link.pattern and link.pattern not in pattern_ids:
            unknown(link.id, "时间模式", link.pattern)


__all__ = [
    "Severity",
    "IssueKind",
    "ValidationIssue",
    "ValidationReport",
    "validate_network",
    "connected_components",
]
