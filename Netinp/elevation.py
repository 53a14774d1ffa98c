"""
高程查询模块：按批次调用 OpenTopoData 为节点补全高程

查询点被切分为固定大小的批次在线程池中独立发出，单个批次失败不影响其他批次，
结果同时记录成功与失败的部分；本模块内部不重试。
"""
import warnings
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import requests

from .defaults import SERVICE_DEFAULTS
from .exceptions import NetworkExportWarning, NetworkUnavailableError, ProjectionError
from .graph import NetworkGraph
from .projection import GeometryProjector
from .utils import NumberFormatter, chunked


@dataclass(frozen=True)
class ElevationPoint:
    """待查询的节点位置（经纬度）"""

    id: str
    lat: float
    lon: float


@dataclass
class ElevationBatchResult:
    """
    批量查询结果

    Attributes:
        elevations: 节点 ID -> 高程（已四舍五入）
        failed_ids: 未取得高程的节点
        failed_chunks: 失败批次的说明
        succeeded / failed: 成功与失败的点数
    """

    elevations: Dict[str, float] = field(default_factory=dict)
    failed_ids: List[str] = field(default_factory=list)
    failed_chunks: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return len(self.elevations)

    @property
    def failed(self) -> int:
        return len(self.failed_ids)

    def __repr__(self):
        return f"ElevationBatchResult(succeeded={self.succeeded}, failed={self.failed})"


class ElevationService:
    """
    OpenTopoData 高程服务客户端

    Args:
        base_url: 数据集地址，默认 SRTM 30m
        batch_size: 每次请求的点数
        timeout: 请求超时（秒）
        max_workers: 并发批次数
        session: requests 会话（测试时可替换）
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        batch_size: Optional[int] = None,
        timeout: Optional[float] = None,
        max_workers: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url or SERVICE_DEFAULTS.elevation_url
        self.batch_size = batch_size or SERVICE_DEFAULTS.elevation_batch_size
        self.timeout = timeout if timeout is not None else SERVICE_DEFAULTS.request_timeout
        self.max_workers = max_workers or SERVICE_DEFAULTS.elevation_max_workers
        self.session = session or requests.Session()
        if self.batch_size <= 0:
            raise ValueError("batch_size 必须为正整数")

    def fetch_batch(self, points: Sequence[ElevationPoint]) -> Dict[str, Optional[float]]:
        """
        单次请求查询一批点

        Returns:
            节点 ID -> 高程；服务未返回数值的点为 None

        Raises:
            NetworkUnavailableError: 请求失败或响应格式错误
        """
        if not points:
            return {}
        locations = "|".join(f"{p.lat},{p.lon}" for p in points)
        try:
            response = self.session.get(
                self.base_url,
                params={"locations": locations},
                headers={"User-Agent": SERVICE_DEFAULTS.user_agent},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise NetworkUnavailableError(f"高程服务请求失败: {e}") from e

        results = payload.get("results") if isinstance(payload, Mapping) else None
        if not isinstance(results, list):
            raise NetworkUnavailableError(f"高程服务返回格式错误: {payload!r}")

        decimals = SERVICE_DEFAULTS.elevation_decimals
        elevations: Dict[str, Optional[float]] = {}
        for i, point in enumerate(points):
            entry = results[i] if i < len(results) else None
            value = NumberFormatter.to_float(entry.get("elevation")) if isinstance(entry, Mapping) else None
            elevations[point.id] = round(value, decimals) if value is not None else None
        return elevations

    def lookup(self, points: Sequence[ElevationPoint]) -> ElevationBatchResult:
        """
        分批并发查询

        失败的批次记入 failed_chunks，其中的点记入 failed_ids。
        """
        result = ElevationBatchResult()
        batches = list(chunked(list(points), self.batch_size))
        if not batches:
            return result

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(batches))) as executor:
            futures = [executor.submit(self.fetch_batch, batch) for batch in batches]
            for index, (batch, future) in enumerate(zip(batches, futures)):
                try:
                    values = future.result()
                except NetworkUnavailableError as e:
                    result.failed_chunks.append(f"第 {index + 1} 批（{len(batch)} 个点）: {e}")
                    result.failed_ids.extend(p.id for p in batch)
                    continue
                for point in batch:
                    value = values.get(point.id)
                    if value is None:
                        result.failed_ids.append(point.id)
                    else:
                        result.elevations[point.id] = value

        if result.failed_chunks:
            warnings.warn(
                f"高程查询有 {len(result.failed_chunks)} 个批次失败，{result.failed} 个节点未更新",
                NetworkExportWarning,
            )
        return result

    def submit(self, points: Sequence[ElevationPoint]) -> "Future[ElevationBatchResult]":
        """后台执行 lookup；调用方可以丢弃返回的 Future"""
        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(self.lookup, list(points))
        executor.shutdown(wait=False)
        return future


def identify_elevation_targets(
    graph: NetworkGraph,
    projector: Optional[GeometryProjector] = None,
    selected_ids: Optional[Iterable[str]] = None,
    overwrite: bool = False,
) -> List[ElevationPoint]:
    """
    选出需要查询高程的节点

    Args:
        graph: 管网图
        projector: 坐标投影器，默认按图的坐标系
        selected_ids: 仅处理这些节点；None 表示全部
        overwrite: False 时跳过已有非零高程的节点

    Returns:
        按节点顺序排列的查询点
    """
    projector = projector or GeometryProjector(graph.crs)
    selected = set(selected_ids) if selected_ids is not None else None
    targets = []
    for node in graph.nodes.values():
        if selected is not None and node.id not in selected:
            continue
        if not overwrite and node.elevation:
            continue
        if node.coordinates is None:
            continue
        try:
            lon, lat = projector.to_geographic(node.coordinates)
        except ProjectionError as e:
            warnings.warn(f"节点 '{node.id}' 坐标无法转换为经纬度: {e}", NetworkExportWarning)
            continue
        targets.append(ElevationPoint(id=node.id, lat=lat, lon=lon))
    return targets


def apply_elevations(
    features: Iterable[Mapping[str, Any]],
    elevations: Mapping[str, float],
) -> List[Dict[str, Any]]:
    """
    把高程写入要素副本（输入不修改）

    Returns:
        新的要素列表，命中的要素 properties.elevation 被替换
    """
    updated = []
    for feature in features:
        copy = dict(feature)
        feature_id = copy.get("id")
        if feature_id is not None and str(feature_id) in elevations:
            properties = dict(copy.get("properties") or {})
            properties["elevation"] = elevations[str(feature_id)]
            copy["properties"] = properties
        updated.append(copy)
    return updated


__all__ = [
    "ElevationPoint",
    "ElevationBatchResult",
    "ElevationService",
    "identify_elevation_targets",
    "apply_elevations",
]
