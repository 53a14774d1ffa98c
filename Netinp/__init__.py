"""
给水管网导出核心包：管网图构建、拓扑校验、EPANET INP 读写与结果导出
"""

# 异常
from .exceptions import (
    NetworkModelError,
    ConfigurationError,
    ValidationError,
    TopologyError,
    IncompleteNetworkError,
    ProjectionError,
    DataError,
    ExternalServiceError,
    NetworkUnavailableError,
    LocationNotFoundError,
    NetworkExportWarning,
)

# 默认配置
from .defaults import (
    SETTINGS_DEFAULTS,
    EXPORT_DEFAULTS,
    COMPONENT_DEFAULTS,
    SERVICE_DEFAULTS,
    get_default,
    update_defaults,
)
from .utils import (
    PatternGenerator,
    TimeFormatter,
    NumberFormatter,
)
from .settings import resolve_settings

# 投影、图与校验
from .projection import (
    ProjectionRegistry,
    GeometryProjector,
    NominatimGeocoder,
    ZoneDefinition,
    utm_zone_for,
    derive_zone_from_place,
)
from .graph import (
    GraphNode,
    GraphLink,
    NetworkGraph,
    build_network_graph,
)
from .validation import (
    Severity,
    IssueKind,
    ValidationIssue,
    ValidationReport,
    validate_network,
)

# 读写与导出
from .inp_writer import serialize_inp
from .inp_reader import ParsedProject, read_inp
from .results import (
    results_to_frame,
    results_to_csv,
    features_to_geojson,
    export_filenames,
)
from .elevation import (
    ElevationService,
    ElevationBatchResult,
    identify_elevation_targets,
    apply_elevations,
)
from .export import (
    ExportStatus,
    ExportResult,
    export_network,
    write_export,
)

__all__ = [
    # 异常
    "NetworkModelError",
    "ConfigurationError",
    "ValidationError",
    "TopologyError",
    "IncompleteNetworkError",
    "ProjectionError",
    "DataError",
    "ExternalServiceError",
    "NetworkUnavailableError",
    "LocationNotFoundError",
    "NetworkExportWarning",
    # 默认配置
    "SETTINGS_DEFAULTS",
    "EXPORT_DEFAULTS",
    "COMPONENT_DEFAULTS",
    "SERVICE_DEFAULTS",
    "get_default",
    "update_defaults",
    # 工具
    "PatternGenerator",
    "TimeFormatter",
    "NumberFormatter",
    "resolve_settings",
    # 投影
    "ProjectionRegistry",
    "GeometryProjector",
    "NominatimGeocoder",
    "ZoneDefinition",
    "utm_zone_for",
    "derive_zone_from_place",
    # 图与校验
    "GraphNode",
    "GraphLink",
    "NetworkGraph",
    "build_network_graph",
    "Severity",
    "IssueKind",
    "ValidationIssue",
    "ValidationReport",
    "validate_network",
    # 读写
    "serialize_inp",
    "ParsedProject",
    "read_inp",
    "results_to_frame",
    "results_to_csv",
    "features_to_geojson",
    "export_filenames",
    # 高程
    "ElevationService",
    "ElevationBatchResult",
    "identify_elevation_targets",
    "apply_elevations",
    # 导出
    "ExportStatus",
    "ExportResult",
    "export_network",
    "write_export",
]
