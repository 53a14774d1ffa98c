"""
管网编辑器与求解器之间交换的记录结构定义。

本文件基于 TypedDict 约束要素、项目设置、时间模式、曲线、控制规则及模拟结果，
键名沿用编辑器保存的 camelCase 字段，便于直接读写持久化层的 JSON。
"""

from typing import Dict, List, Literal, Optional, Tuple, TypedDict, Union

NodeType = Literal["junction", "tank", "reservoir"]
LinkType = Literal["pipe", "pump", "valve"]
FeatureType = Literal["junction", "tank", "reservoir", "pipe", "pump", "valve"]

NODE_TYPES: Tuple[str, ...] = ("junction", "tank", "reservoir")
LINK_TYPES: Tuple[str, ...] = ("pipe", "pump", "valve")
FEATURE_TYPES: Tuple[str, ...] = NODE_TYPES + LINK_TYPES

# 这些类型的要素在图中始终物化为自身节点（可作为管段锚点）
ANCHOR_TYPES: Tuple[str, ...] = ("tank", "reservoir")

FlowUnit = Literal["CFS", "GPM", "MGD", "IMGD", "AFD", "LPS", "LPM", "MLD", "CMH", "CMD"]
HeadlossFormula = Literal["H-W", "D-W", "C-M"]
CurveType = Literal["PUMP", "VOLUME", "HEADLOSS"]
ControlType = Literal["LOW LEVEL", "HI LEVEL", "TIMER", "TIMEOFDAY"]
ControlAction = Literal["OPEN", "CLOSED", "ACTIVE"]

CURVE_TYPES: Tuple[str, ...] = ("PUMP", "VOLUME", "HEADLOSS")
CONTROL_TYPES: Tuple[str, ...] = ("LOW LEVEL", "HI LEVEL", "TIMER", "TIMEOFDAY")
CONTROL_ACTIONS: Tuple[str, ...] = ("OPEN", "CLOSED", "ACTIVE")
VALVE_TYPES: Tuple[str, ...] = ("PRV", "PSV", "PBV", "FCV", "TCV", "GPV")

# 编辑器的临时辅助要素标记，不属于管网
HELPER_FLAGS: Tuple[str, ...] = ("isPreview", "isVertexMarker", "isVisualLink")

# 仅界面使用的属性，导出 GeoJSON 时剔除
INTERNAL_PROPERTIES: Tuple[str, ...] = (
    "selected",
    "isSelected",
    "isNew",
    "isPreview",
    "isVertexMarker",
    "isVisualLink",
    "hovered",
    "highlighted",
    "connectedLinks",
    "geometry",
)


class GeometrySpec(TypedDict, total=False):
    """
    GeoJSON 几何。

    - type: "Point"（节点）或 "LineString"（管段）；
    - coordinates: 地图坐标系下的坐标。
    """

    type: Literal["Point", "LineString"]
    coordinates: Union[List[float], List[List[float]]]


class FeatureProperties(TypedDict, total=False):
    """
    要素属性包。

    节点：elevation, demand, pattern, head, initLevel, minLevel, maxLevel,
    diameter, minVolume, volumeCurve, capacity；
    管段：length, diameter, roughness, minorLoss, material, status,
    headCurve, power, speed, headGain, efficiency, valveType, setting,
    zeroLength（零长度控制装置标记）。
    """

    type: FeatureType
    label: str
    elevation: float
    demand: float
    pattern: str
    head: float
    initLevel: float
    minLevel: float
    maxLevel: float
    diameter: float
    minVolume: float
    volumeCurve: str
    capacity: float
    length: float
    roughness: float
    minorLoss: float
    material: str
    status: str
    headCurve: str
    power: float
    speed: float
    headGain: float
    efficiency: float
    valveType: str
    setting: Union[float, str]
    zeroLength: bool
    startNodeId: str
    endNodeId: str
    connectedLinks: List[str]


class NetworkFeature(TypedDict, total=False):
    """
    管网要素记录。

    - id: 项目内唯一标识；
    - featureType: 要素类型；
    - geometry: 节点为点，管段为折线；
    - properties: 属性包；
    - startNodeId / endNodeId: 管段端点（也可放在 properties 中）。
    """

    id: str
    featureType: FeatureType
    geometry: Optional[GeometrySpec]
    properties: FeatureProperties
    startNodeId: str
    endNodeId: str


class ProjectSettings(TypedDict, total=False):
    """
    项目水力与报告设置。

    - units / headloss: 流量单位与水头损失公式；
    - maxTrials, accuracy, specificGravity, viscosity, emitterExponent,
      demandMultiplier: 求解参数；
    - duration ... startClock: "HH:MM" 格式的时间字段；
    - projection: 地图坐标系标识。
    """

    title: str
    description: str
    units: FlowUnit
    headloss: HeadlossFormula
    specificGravity: float
    viscosity: float
    maxTrials: int
    accuracy: float
    emitterExponent: float
    demandMultiplier: float
    defaultPattern: str
    duration: str
    hydraulicStep: str
    patternStep: str
    reportStep: str
    reportStart: str
    startClock: str
    projection: str


class TimePattern(TypedDict, total=False):
    """需水量乘子时间模式"""

    id: str
    description: str
    multipliers: List[float]


class CurvePoint(TypedDict):
    x: float
    y: float


class PumpCurve(TypedDict, total=False):
    """水泵/容积/损失曲线"""

    id: str
    description: str
    type: CurveType
    points: List[CurvePoint]


class NetworkControl(TypedDict, total=False):
    """
    简单控制规则。

    - linkId: 受控管段；
    - status: OPEN / CLOSED / ACTIVE；setting 为数值设定（二选一）；
    - type: LOW LEVEL / HI LEVEL / TIMER / TIMEOFDAY；
    - nodeId: 液位控制的触发节点；
    - value: 触发液位、时长（小时）或时刻。
    """

    id: str
    linkId: str
    status: ControlAction
    setting: float
    nodeId: str
    value: Union[float, str]
    type: ControlType


class NodeResult(TypedDict, total=False):
    id: str
    head: float
    pressure: float
    demand: float
    quality: float


class LinkResult(TypedDict, total=False):
    id: str
    flow: float
    velocity: float
    headloss: float
    quality: float
    status: str


class SimulationSnapshot(TypedDict, total=False):
    """
    单一时刻的模拟结果。

    - timeStep: 模拟秒数（如 3600 表示第 1 小时）；
    - timestamp: 运行时的真实时间戳；
    - nodes / links: 按 ID 索引的结果。
    """

    nodes: Dict[str, NodeResult]
    links: Dict[str, LinkResult]
    timestamp: float
    timeStep: float
    message: str


class SimulationHistory(TypedDict, total=False):
    """完整模拟过程：时间序列与对应快照"""

    timestamps: List[float]
    snapshots: List[SimulationSnapshot]
    generatedAt: float


class ValidationFindingSpec(TypedDict, total=False):
    """校验结果的序列化形式"""

    type: str
    message: str
    featureId: str


class ValidationReportSpec(TypedDict):
    isValid: bool
    errors: List[ValidationFindingSpec]
    warnings: List[ValidationFindingSpec]
