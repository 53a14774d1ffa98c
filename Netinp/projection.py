"""
坐标投影模块：地图坐标与经纬度互转、几何长度计算、按地名推导 UTM 分带

坐标一律按 (x, y) / (lon, lat) 顺序处理（pyproj always_xy=True）。
"""
import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import requests
from pyproj import CRS, Geod, Transformer
from pyproj.exceptions import CRSError, ProjError

from .defaults import SERVICE_DEFAULTS, SETTINGS_DEFAULTS
from .exceptions import LocationNotFoundError, NetworkUnavailableError, ProjectionError

GEOGRAPHIC_CRS = "EPSG:4326"
WEB_MERCATOR_CRS = "EPSG:3857"
SIMPLE_CRS = "Simple"  # 无投影的平面 X/Y

_WEB_MERCATOR_ALIASES = {"EPSG:3857", "EPSG:900913", "EPSG:102100", "EPSG:102113"}
_GEOD = Geod(ellps="WGS84")

Coordinate = Tuple[float, float]


def normalize_crs_code(code: Optional[str]) -> str:
    """规范化坐标系标识：EPSG 前缀大写，"simple" 统一为 "Simple" """
    text = str(code or "").strip()
    if not text:
        return SETTINGS_DEFAULTS.projection
    if text.lower() == SIMPLE_CRS.lower():
        return SIMPLE_CRS
    if text.lower().startswith("epsg:"):
        return "EPSG:" + text[5:].strip()
    return text


class ProjectionRegistry:
    """
    自定义投影定义登记表

    解析坐标系时优先使用登记的 PROJ 定义，其次交给 pyproj 按代码解析。
    """

    def __init__(self, definitions: Optional[Dict[str, str]] = None):
        self._definitions: Dict[str, str] = {}
        for code, definition in (definitions or {}).items():
            self.register(code, definition)

    def register(self, code: str, definition: str) -> None:
        self._definitions[normalize_crs_code(code)] = definition.strip()

    def definition(self, code: str) -> Optional[str]:
        return self._definitions.get(normalize_crs_code(code))

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and normalize_crs_code(code) in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

    def crs_input(self, code: str) -> str:
        """交给 pyproj 的输入：登记的定义或原始代码"""
        return self.definition(code) or normalize_crs_code(code)

    def resolve(self, code: str) -> CRS:
        """解析为 pyproj CRS 对象"""
        return _crs_from_input(self.crs_input(code))


DEFAULT_REGISTRY = ProjectionRegistry()


@lru_cache(maxsize=64)
def _crs_from_input(crs_input: str) -> CRS:
    try:
        return CRS.from_user_input(crs_input)
    except CRSError as e:
        raise ProjectionError(f"无法识别的坐标系 '{crs_input}': {e}") from e


@lru_cache(maxsize=64)
def _transformer(source_input: str, target_input: str) -> Transformer:
    return Transformer.from_crs(
        _crs_from_input(source_input), _crs_from_input(target_input), always_xy=True
    )


def _checked_coordinate(coord: Any) -> Coordinate:
    if coord is None or len(coord) < 2:
        raise ProjectionError(f"坐标缺失或维度不足: {coord!r}")
    try:
        x, y = float(coord[0]), float(coord[1])
    except (TypeError, ValueError) as e:
        raise ProjectionError(f"坐标不是数值: {coord!r}") from e
    if not (math.isfinite(x) and math.isfinite(y)):
        raise ProjectionError(f"坐标包含非有限值: {coord!r}")
    return x, y


class GeometryProjector:
    """
    几何投影器

    Args:
        source_crs: 要素坐标所在的地图坐标系（默认 Web Mercator）
        registry: 自定义投影登记表
    """

    def __init__(self, source_crs: Optional[str] = None, registry: Optional[ProjectionRegistry] = None):
        self.source_crs = normalize_crs_code(source_crs)
        self.registry = registry if registry is not None else DEFAULT_REGISTRY

    def __repr__(self):
        return f"GeometryProjector(source_crs='{self.source_crs}')"

    def _is_passthrough(self, source: str, target: str) -> bool:
        return source == target or SIMPLE_CRS in (source, target)

    def transform(
        self,
        coord: Sequence[float],
        target_crs: str = GEOGRAPHIC_CRS,
        source_crs: Optional[str] = None,
    ) -> Coordinate:
        """
        转换单个坐标

        Raises:
            ProjectionError: 坐标非法或投影失败
        """
        x, y = _checked_coordinate(coord)
        source = normalize_crs_code(source_crs) if source_crs else self.source_crs
        target = normalize_crs_code(target_crs)
        if self._is_passthrough(source, target):
            return x, y

        transformer = _transformer(self.registry.crs_input(source), self.registry.crs_input(target))
        try:
            tx, ty = transformer.transform(x, y, errcheck=True)
        except ProjError as e:
            raise ProjectionError(f"坐标 ({x}, {y}) 从 {source} 投影到 {target} 失败: {e}") from e
        if not (math.isfinite(tx) and math.isfinite(ty)):
            raise ProjectionError(f"坐标 ({x}, {y}) 从 {source} 投影到 {target} 结果无效")
        return float(tx), float(ty)

    def transform_many(
        self,
        coords: Sequence[Sequence[float]],
        target_crs: str = GEOGRAPHIC_CRS,
        source_crs: Optional[str] = None,
    ) -> List[Coordinate]:
        """批量转换坐标"""
        checked = [_checked_coordinate(c) for c in coords]
        if not checked:
            return []
        source = normalize_crs_code(source_crs) if source_crs else self.source_crs
        target = normalize_crs_code(target_crs)
        if self._is_passthrough(source, target):
            return checked

        xs = np.array([c[0] for c in checked])
        ys = np.array([c[1] for c in checked])
        transformer = _transformer(self.registry.crs_input(source), self.registry.crs_input(target))
        try:
            txs, tys = transformer.transform(xs, ys, errcheck=True)
        except ProjError as e:
            raise ProjectionError(f"批量坐标从 {source} 投影到 {target} 失败: {e}") from e
        txs = np.atleast_1d(txs)
        tys = np.atleast_1d(tys)
        if not (np.all(np.isfinite(txs)) and np.all(np.isfinite(tys))):
            raise ProjectionError(f"批量坐标从 {source} 投影到 {target} 结果无效")
        return [(float(x), float(y)) for x, y in zip(txs, tys)]

    def to_geographic(self, coord: Sequence[float]) -> Coordinate:
        """地图坐标 -> (lon, lat)"""
        return self.transform(coord, GEOGRAPHIC_CRS)

    def from_geographic(self, lon: float, lat: float) -> Coordinate:
        """(lon, lat) -> 地图坐标"""
        return self.transform((lon, lat), self.source_crs, source_crs=GEOGRAPHIC_CRS)

    def is_geographic(self, crs: Optional[str] = None) -> bool:
        code = normalize_crs_code(crs) if crs else self.source_crs
        if code == SIMPLE_CRS:
            return False
        return bool(self.registry.resolve(code).is_geographic)

    def uses_geodesic_length(self) -> bool:
        """经纬度与 Web Mercator 坐标的长度按椭球测地线计算"""
        if self.source_crs == SIMPLE_CRS:
            return False
        return self.source_crs in _WEB_MERCATOR_ALIASES or self.is_geographic()

    @staticmethod
    def planar_length(coords: Sequence[Sequence[float]]) -> float:
        """折线平面长度（地图单位）；含非有限值时返回 NaN"""
        if coords is None or len(coords) < 2:
            return 0.0
        try:
            arr = np.asarray([[c[0], c[1]] for c in coords], dtype=float)
        except (TypeError, ValueError, IndexError):
            return float("nan")
        if not np.all(np.isfinite(arr)):
            return float("nan")
        diffs = np.diff(arr, axis=0)
        return float(np.sum(np.hypot(diffs[:, 0], diffs[:, 1])))

    def line_length(self, coords: Sequence[Sequence[float]]) -> float:
        """
        折线实际长度

        经纬度或 Web Mercator 坐标先换算为经纬度再按 WGS84 椭球测地线求和，
        其他投影坐标直接按平面距离计算。
        """
        if coords is None or len(coords) < 2:
            return 0.0
        if not self.uses_geodesic_length():
            return self.planar_length(coords)
        lonlat = self.transform_many(coords, GEOGRAPHIC_CRS)
        lons = [c[0] for c in lonlat]
        lats = [c[1] for c in lonlat]
        return float(_GEOD.line_length(lons, lats))


# ---------------------------------------------------------------------------
# UTM 分带推导
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GeocodeResult:
    lat: float
    lon: float
    display_name: str


@dataclass(frozen=True)
class ZoneDefinition:
    """按地名推导得到的 UTM 投影"""

    epsg_code: str
    proj_definition: str
    zone: int
    hemisphere: str
    location_name: str = ""


class NominatimGeocoder:
    """OpenStreetMap Nominatim 地理编码客户端"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        user_agent: Optional[str] = None,
    ):
        self.base_url = base_url or SERVICE_DEFAULTS.geocoder_url
        self.session = session or requests.Session()
        self.timeout = timeout if timeout is not None else SERVICE_DEFAULTS.request_timeout
        self.user_agent = user_agent or SERVICE_DEFAULTS.user_agent

    def geocode(self, query: str) -> GeocodeResult:
        """
        地名 -> 坐标

        Raises:
            NetworkUnavailableError: 请求失败或响应无法解析
            LocationNotFoundError: 无匹配结果
        """
        params = {"format": "json", "q": query, "limit": 1}
        try:
            response = self.session.get(
                self.base_url,
                params=params,
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise NetworkUnavailableError(f"无法获取地点数据，请检查网络连接: {e}") from e

        if not data:
            raise LocationNotFoundError(f"未找到地点 '{query}'")

        first = data[0]
        try:
            return GeocodeResult(
                lat=float(first["lat"]),
                lon=float(first["lon"]),
                display_name=str(first.get("display_name", query)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise LocationNotFoundError(f"地点 '{query}' 的坐标无效") from e


def utm_zone_for(lon: float, lat: float) -> Tuple[int, str]:
    """
    经纬度所在 UTM 分带

    Returns:
        (zone, hemisphere)，zone 取值 1-60，hemisphere 为 "N" 或 "S"
    """
    lon, lat = _checked_coordinate((lon, lat))
    if not -180.0 <= lon <= 180.0 or not -90.0 <= lat <= 90.0:
        raise ProjectionError(f"经纬度超出范围: ({lon}, {lat})")
    zone = int(math.floor((lon + 180.0) / 6.0)) + 1
    zone = max(1, min(60, zone))
    hemisphere = "N" if lat >= 0 else "S"
    return zone, hemisphere


def utm_definition(zone: int, hemisphere: str) -> Tuple[str, str]:
    """返回 (EPSG 代码, PROJ 定义)"""
    prefix = "326" if hemisphere == "N" else "327"
    code = f"EPSG:{prefix}{zone:02d}"
    south = "+south " if hemisphere == "S" else ""
    definition = f"+proj=utm +zone={zone} {south}+datum=WGS84 +units=m +no_defs"
    return code, definition


def derive_zone_from_place(
    name: str,
    geocoder: Any = None,
    registry: Optional[ProjectionRegistry] = None,
) -> ZoneDefinition:
    """
    按地名推导局部 UTM 投影并登记

    Args:
        name: 地名，例如 "Mumbai"
        geocoder: 具有 geocode(name) 方法的对象或可调用对象，默认 Nominatim
        registry: 投影登记表，默认全局登记表

    Returns:
        ZoneDefinition；返回前已登记，可立即用于投影

    Raises:
        LocationNotFoundError: 地名为空或无结果
        NetworkUnavailableError: 地理编码服务不可用
    """
    if not name or not str(name).strip():
        raise LocationNotFoundError("地名不能为空")

    geocoder = geocoder if geocoder is not None else NominatimGeocoder()
    lookup = geocoder.geocode if hasattr(geocoder, "geocode") else geocoder
    place = lookup(str(name).strip())

    zone, hemisphere = utm_zone_for(place.lon, place.lat)
    code, definition = utm_definition(zone, hemisphere)

    target = registry if registry is not None else DEFAULT_REGISTRY
    target.register(code, definition)

    return ZoneDefinition(
        epsg_code=code,
        proj_definition=definition,
        zone=zone,
        hemisphere=hemisphere,
        location_name=place.display_name,
    )


__all__ = [
    "GEOGRAPHIC_CRS",
    "WEB_MERCATOR_CRS",
    "SIMPLE_CRS",
    "normalize_crs_code",
    "ProjectionRegistry",
    "DEFAULT_REGISTRY",
    "GeometryProjector",
    "GeocodeResult",
    "ZoneDefinition",
    "NominatimGeocoder",
    "utm_zone_for",
    "utm_definition",
    "derive_zone_from_place",
]
