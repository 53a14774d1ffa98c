"""
导出流程模块

构建管网图、校验，再生成 INP 或 GeoJSON；存在错误时导出被阻止，
不返回任何部分内容。
"""

import os
import tempfile
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

from .exceptions import ConfigurationError, IncompleteNetworkError, ValidationError
from .graph import build_network_graph
from .inp_writer import serialize_inp
from .projection import ProjectionRegistry
from .results import features_to_geojson
from .settings import resolve_settings
from .validation import ValidationReport, validate_network

EXPORT_FORMATS = {"inp": "inp", "geojson": "geojson"}


class ExportStatus(Enum):
    """导出状态"""
    COMPLETE = "complete"  # 已生成内容
    BLOCKED = "blocked"  # 被错误阻止


class ExportResult:
    """导出结果"""

    def __init__(
        self,
        status: ExportStatus,
        content: Optional[str] = None,
        filename: Optional[str] = None,
        report: Optional[ValidationReport] = None,
        message: str = "",
    ):
        self.status = status
        self.content = content
        self.filename = filename
        self.report = report or ValidationReport()
        self.message = message

    @property
    def is_complete(self) -> bool:
        """是否已生成内容"""
        return self.status == ExportStatus.COMPLETE

    def __repr__(self):
        return f"ExportResult(status={self.status.value}, filename='{self.filename}', message='{self.message}')"


def export_filename(fmt: str, today: Optional[date] = None) -> str:
    """例如 network_export_2024-05-01.inp"""
    today = today or date.today()
    return f"network_export_{today.isoformat()}.{EXPORT_FORMATS[fmt]}"


def _blocked(message: str, report: ValidationReport) -> ExportResult:
    return ExportResult(ExportStatus.BLOCKED, report=report, message=message)


def export_network(
    features: Iterable[Mapping[str, Any]],
    fmt: str = "inp",
    settings: Optional[Mapping[str, Any]] = None,
    patterns: Iterable[Mapping[str, Any]] = (),
    curves: Iterable[Mapping[str, Any]] = (),
    controls: Iterable[Mapping[str, Any]] = (),
    crs: Optional[str] = None,
    output_crs: Optional[str] = None,
    registry: Optional[ProjectionRegistry] = None,
    today: Optional[date] = None,
) -> ExportResult:
    """
    导出管网

    Args:
        features: 要素快照
        fmt: "inp" 或 "geojson"
        settings: 项目设置
        patterns / curves / controls: 时间模式、曲线、控制规则
        crs: 要素坐标所在坐标系，默认取设置中的 projection
        output_crs: INP 坐标的输出坐标系
        registry: 自定义投影登记表
        today: 文件名日期

    Returns:
        ExportResult；被阻止时 content 为 None，message 说明原因

    Raises:
        ConfigurationError: 导出格式未知
    """
    fmt = str(fmt or "").strip().lower()
    if fmt not in EXPORT_FORMATS:
        raise ConfigurationError(f"未知的导出格式 '{fmt}'。有效格式: {', '.join(EXPORT_FORMATS)}")

    features = list(features)
    patterns = list(patterns)
    curves = list(curves)
    controls = list(controls)

    try:
        resolved = resolve_settings(settings)
    except ConfigurationError as e:
        return _blocked(f"项目设置无效: {e}", ValidationReport())

    source_crs = crs or resolved["projection"]
    graph = build_network_graph(features, source_crs, registry=registry)
    report = validate_network(
        graph, controls, patterns, curves, default_pattern=resolved["defaultPattern"]
    )

    if fmt == "geojson":
        content = features_to_geojson(features, graph.crs, registry)
        return ExportResult(
            ExportStatus.COMPLETE, content, export_filename(fmt, today), report, "GeoJSON 导出完成"
        )

    if not report.is_valid:
        return _blocked(
            f"管网存在 {len(report.errors)} 个错误，导出已阻止: {report.errors[0].message}",
            report,
        )

    try:
        content = serialize_inp(
            graph, settings, patterns, curves, controls,
            output_crs=output_crs, registry=registry,
        )
    except IncompleteNetworkError as e:
        return _blocked(str(e), report)

    return ExportResult(
        ExportStatus.COMPLETE, content, export_filename(fmt, today), report, "INP 导出完成"
    )


def write_export(result: ExportResult, directory: Union[str, Path]) -> Path:
    """
    把导出内容写入目录

    先写临时文件再替换目标文件，失败时不留下不完整的文件。

    Raises:
        ValidationError: 导出被阻止
    """
    if not result.is_complete or result.content is None:
        raise ValidationError(f"导出未完成，无法写入文件: {result.message}")

    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    target = directory / result.filename

    fd, temp_path = tempfile.mkstemp(dir=directory, prefix=".netinp-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(result.content)
        os.replace(temp_path, target)
    except OSError:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise
    return target


__all__ = [
    "EXPORT_FORMATS",
    "ExportStatus",
    "ExportResult",
    "export_filename",
    "export_network",
    "write_export",
]
