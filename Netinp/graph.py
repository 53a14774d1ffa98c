"""
管网图构建模块：把松散的要素记录整理为节点/管段图

图只在单次校验或导出过程中使用，不做持久化；连接关系始终由管段端点重新计算，
不信任要素自带的 connectedLinks。
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .exceptions import ProjectionError
from .network_schema import ANCHOR_TYPES, FEATURE_TYPES, HELPER_FLAGS, LINK_TYPES, NODE_TYPES
from .projection import GeometryProjector, ProjectionRegistry
from .utils import NumberFormatter

Coordinate = Tuple[float, float]

# 各类型要素必须具备的属性；reservoir 的 head 可由 elevation 代替
REQUIRED_FIELDS: Dict[str, Tuple[str, ...]] = {
    "junction": ("elevation",),
    "tank": ("elevation", "diameter"),
    "reservoir": ("head",),
    "pipe": ("diameter", "roughness"),
    "pump": (),
    "valve": ("diameter", "setting"),
}


@dataclass
class GraphNode:
    """图节点（junction / tank / reservoir）"""

    id: str
    kind: str
    index: int
    coordinates: Optional[Coordinate] = None
    elevation: Optional[float] = None
    demand: Optional[float] = None
    pattern: Optional[str] = None
    head: Optional[float] = None
    init_level: Optional[float] = None
    min_level: Optional[float] = None
    max_level: Optional[float] = None
    diameter: Optional[float] = None
    min_volume: Optional[float] = None
    volume_curve: Optional[str] = None
    label: Optional[str] = None
    connected_links: List[str] = field(default_factory=list)
    missing_fields: List[str] = field(default_factory=list)
    invalid_geometry: bool = False
    properties: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_anchor(self) -> bool:
        """水池、水库是水源节点"""
        return self.kind in ANCHOR_TYPES


@dataclass
class GraphLink:
    """图管段（pipe / pump / valve）"""

    id: str
    kind: str
    index: int
    start_node_id: Optional[str] = None
    end_node_id: Optional[str] = None
    vertices: List[Coordinate] = field(default_factory=list)
    map_length: float = 0.0
    length: Optional[float] = None
    explicit_length: bool = False
    diameter: Optional[float] = None
    roughness: Optional[float] = None
    minor_loss: Optional[float] = None
    status: Optional[str] = None
    head_curve: Optional[str] = None
    power: Optional[float] = None
    speed: Optional[float] = None
    pattern: Optional[str] = None
    valve_type: Optional[str] = None
    setting: Optional[float] = None
    zero_length: bool = False
    unresolved: bool = False
    missing_endpoints: List[str] = field(default_factory=list)
    missing_fields: List[str] = field(default_factory=list)
    invalid_geometry: bool = False
    label: Optional[str] = None
    properties: Dict[str, Any] = field(default_factory=dict)

    @property
    def interior_vertices(self) -> List[Coordinate]:
        """去掉两端点后的中间折点（INP [VERTICES]）"""
        return list(self.vertices[1:-1])

    @property
    def is_self_loop(self) -> bool:
        return bool(self.start_node_id) and self.start_node_id == self.end_node_id


@dataclass
class NetworkGraph:
    """
    管网图

    Attributes:
        nodes / links: 按输入顺序排列、以 ID 为键的节点与管段
        duplicate_ids: (id, 首次出现位置, 重复出现位置)
        unknown_features: (id, 类型, 位置)，类型无法识别或缺少 id 的记录
        crs: 要素坐标所在坐标系
    """

    nodes: Dict[str, GraphNode] = field(default_factory=dict)
    links: Dict[str, GraphLink] = field(default_factory=dict)
    duplicate_ids: List[Tuple[str, int, int]] = field(default_factory=list)
    unknown_features: List[Tuple[Optional[str], Any, int]] = field(default_factory=list)
    crs: str = "EPSG:3857"

    def __repr__(self):
        return f"NetworkGraph(nodes={len(self.nodes)}, links={len(self.links)}, crs='{self.crs}')"

    def nodes_of(self, kind: str) -> List[GraphNode]:
        return [n for n in self.nodes.values() if n.kind == kind]

    def links_of(self, kind: str) -> List[GraphLink]:
        return [l for l in self.links.values() if l.kind == kind]

    def adjacency(self) -> Dict[str, List[str]]:
        """
        无向邻接表：节点 -> 相邻节点（按管段出现顺序，去重）

        只计入两端均已解析的管段。
        """
        neighbours: Dict[str, List[str]] = {node_id: [] for node_id in self.nodes}
        for link in self.links.values():
            if link.unresolved:
                continue
            a, b = link.start_node_id, link.end_node_id
            if a == b:
                continue
            if b not in neighbours[a]:
                neighbours[a].append(b)
            if a not in neighbours[b]:
                neighbours[b].append(a)
        return neighbours


# ---------------------------------------------------------------------------
# 记录规范化
# ---------------------------------------------------------------------------

def is_helper_record(record: Mapping[str, Any]) -> bool:
    """编辑器临时辅助要素（预览、折点标记、可视化连线）"""
    properties = record.get("properties") or {}
    for flag in HELPER_FLAGS:
        if record.get(flag) or properties.get(flag):
            return True
    return False


def normalize_feature(record: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """
    将编辑器要素或 GeoJSON Feature 规范化为 NetworkFeature

    Returns:
        规范化后的字典；辅助要素返回 None
    """
    if is_helper_record(record):
        return None

    properties = dict(record.get("properties") or {})

    feature_type = record.get("featureType") or properties.get("type")
    if not feature_type:
        raw_type = record.get("type")
        if raw_type and raw_type != "Feature":
            feature_type = raw_type
    feature_type = str(feature_type).strip().lower() if feature_type else None

    feature_id = record.get("id")
    if feature_id is None or feature_id == "":
        feature_id = properties.get("id")
    feature_id = str(feature_id) if feature_id is not None and feature_id != "" else None

    start = record.get("startNodeId") or properties.get("startNodeId")
    end = record.get("endNodeId") or properties.get("endNodeId")

    return {
        "id": feature_id,
        "featureType": feature_type,
        "geometry": record.get("geometry"),
        "properties": properties,
        "startNodeId": str(start) if start not in (None, "") else None,
        "endNodeId": str(end) if end not in (None, "") else None,
    }


def _finite_point(value: Any) -> Optional[Coordinate]:
    if not isinstance(value, (list, tuple)) or len(value) < 2:
        return None
    x = NumberFormatter.to_float(value[0]) if not isinstance(value[0], str) else None
    y = NumberFormatter.to_float(value[1]) if not isinstance(value[1], str) else None
    if x is None or y is None:
        return None
    return x, y


def _point_geometry(geometry: Any) -> Optional[Coordinate]:
    if not isinstance(geometry, Mapping) or geometry.get("type") != "Point":
        return None
    return _finite_point(geometry.get("coordinates"))


def _line_geometry(geometry: Any) -> Tuple[Optional[List[Coordinate]], bool]:
    """
    解析折线

    Returns:
        (顶点列表, 是否非法)；没有几何时返回 (None, False)
    """
    if geometry is None:
        return None, False
    if not isinstance(geometry, Mapping) or geometry.get("type") != "LineString":
        return None, True
    raw = geometry.get("coordinates") or []
    points = [_finite_point(c) for c in raw]
    if len(points) < 2 or any(p is None for p in points):
        return None, True
    return points, False


def _number(properties: Mapping[str, Any], key: str) -> Optional[float]:
    return NumberFormatter.to_float(properties.get(key))


def _text(properties: Mapping[str, Any], key: str) -> Optional[str]:
    value = properties.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _flag(properties: Mapping[str, Any], key: str) -> bool:
    """布尔标记：True 或字符串 "true"/"1"/"yes"（不区分大小写）"""
    value = properties.get(key)
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def _missing_fields(kind: str, properties: Mapping[str, Any]) -> List[str]:
    missing = []
    for key in REQUIRED_FIELDS.get(kind, ()):
        if key == "head" and kind == "reservoir":
            if _number(properties, "head") is None and _number(properties, "elevation") is None:
                missing.append("head")
            continue
        if _number(properties, key) is None:
            missing.append(key)
    return missing


def _with_defaults(kind: str, properties: Dict[str, Any], defaults: Optional[Mapping[str, Mapping[str, Any]]]) -> Dict[str, Any]:
    if not defaults or kind not in defaults:
        return properties
    merged = dict(properties)
    for key, value in defaults[kind].items():
        if merged.get(key) is None or merged.get(key) == "":
            merged[key] = value
    return merged


def _make_node(feature: Dict[str, Any], index: int, properties: Dict[str, Any]) -> GraphNode:
    kind = feature["featureType"]
    coordinates = _point_geometry(feature.get("geometry"))
    return GraphNode(
        id=feature["id"],
        kind=kind,
        index=index,
        coordinates=coordinates,
        elevation=_number(properties, "elevation"),
        demand=_number(properties, "demand"),
        pattern=_text(properties, "pattern"),
        head=_number(properties, "head"),
        init_level=_number(properties, "initLevel"),
        min_level=_number(properties, "minLevel"),
        max_level=_number(properties, "maxLevel"),
        diameter=_number(properties, "diameter"),
        min_volume=_number(properties, "minVolume"),
        volume_curve=_text(properties, "volumeCurve"),
        label=_text(properties, "label"),
        missing_fields=_missing_fields(kind, properties),
        invalid_geometry=coordinates is None,
        properties=properties,
    )


def _make_link(feature: Dict[str, Any], index: int, properties: Dict[str, Any]) -> GraphLink:
    kind = feature["featureType"]
    setting = properties.get("setting")
    return GraphLink(
        id=feature["id"],
        kind=kind,
        index=index,
        start_node_id=feature.get("startNodeId"),
        end_node_id=feature.get("endNodeId"),
        diameter=_number(properties, "diameter"),
        roughness=_number(properties, "roughness"),
        minor_loss=_number(properties, "minorLoss"),
        status=_text(properties, "status"),
        head_curve=_text(properties, "headCurve"),
        power=_number(properties, "power"),
        speed=_number(properties, "speed"),
        pattern=_text(properties, "pattern"),
        valve_type=_text(properties, "valveType"),
        setting=NumberFormatter.to_float(setting),
        zero_length=_flag(properties, "zeroLength"),
        label=_text(properties, "label"),
        missing_fields=_missing_fields(kind, properties),
        properties=properties,
    )


def _resolve_geometry(
    link: GraphLink,
    geometry: Any,
    nodes: Mapping[str, GraphNode],
    projector: GeometryProjector,
) -> None:
    vertices, invalid = _line_geometry(geometry)
    link.invalid_geometry = invalid

    if vertices is None:
        # 没有可用折线时用两端节点连直线
        start = nodes.get(link.start_node_id) if link.start_node_id else None
        end = nodes.get(link.end_node_id) if link.end_node_id else None
        if start is not None and end is not None and start.coordinates and end.coordinates:
            vertices = [start.coordinates, end.coordinates]
        else:
            vertices = []

    link.vertices = vertices
    link.map_length = GeometryProjector.planar_length(vertices) if vertices else 0.0

    explicit = _number(link.properties, "length")
    if explicit is not None and explicit > 0:
        link.length = explicit
        link.explicit_length = True
        return

    if len(vertices) >= 2:
        try:
            link.length = projector.line_length(vertices)
        except ProjectionError:
            link.length = None


def build_network_graph(
    features: Iterable[Mapping[str, Any]],
    crs: Optional[str] = None,
    defaults: Optional[Mapping[str, Mapping[str, Any]]] = None,
    registry: Optional[ProjectionRegistry] = None,
) -> NetworkGraph:
    """
    由要素快照构建管网图

    Args:
        features: 要素记录（编辑器格式或 GeoJSON Feature）
        crs: 要素坐标所在坐标系，默认 EPSG:3857
        defaults: 各类型的默认属性，在判定缺失属性前填充
        registry: 自定义投影登记表

    Returns:
        NetworkGraph；结构缺陷记录在图中，不抛出异常
    """
    projector = GeometryProjector(crs, registry)
    graph = NetworkGraph(crs=projector.source_crs)

    seen: Dict[str, int] = {}
    pending_links: List[Tuple[GraphLink, Any]] = []

    for index, record in enumerate(features):
        feature = normalize_feature(record)
        if feature is None:
            continue

        feature_id = feature["id"]
        kind = feature["featureType"]
        if feature_id is None or kind not in FEATURE_TYPES:
            graph.unknown_features.append((feature_id, kind, index))
            continue

        if feature_id in seen:
            graph.duplicate_ids.append((feature_id, seen[feature_id], index))
            continue
        seen[feature_id] = index

        properties = _with_defaults(kind, feature["properties"], defaults)
        if kind in NODE_TYPES:
            graph.nodes[feature_id] = _make_node(feature, index, properties)
        elif kind in LINK_TYPES:
            link = _make_link(feature, index, properties)
            graph.links[feature_id] = link
            pending_links.append((link, feature.get("geometry")))

    # 节点全部就位后再解析端点
    for link, geometry in pending_links:
        for endpoint in (link.start_node_id, link.end_node_id):
            if not endpoint or endpoint not in graph.nodes:
                link.missing_endpoints.append(endpoint or "")
        link.unresolved = bool(link.missing_endpoints)

        for endpoint in (link.start_node_id, link.end_node_id):
            node = graph.nodes.get(endpoint) if endpoint else None
            if node is not None and link.id not in node.connected_links:
                node.connected_links.append(link.id)

        _resolve_geometry(link, geometry, graph.nodes, projector)

    return graph


__all__ = [
    "REQUIRED_FIELDS",
    "GraphNode",
    "GraphLink",
    "NetworkGraph",
    "is_helper_record",
    "normalize_feature",
    "build_network_graph",
]
