"""
测试坐标投影与按地名推导 UTM 分带
"""
import sys
from pathlib import Path
import pytest
import requests

sys.path.insert(0, str(Path(__file__).parent.parent))

from Netinp.exceptions import LocationNotFoundError, NetworkUnavailableError, ProjectionError
from Netinp.projection import (
    GeocodeResult,
    GeometryProjector,
    NominatimGeocoder,
    ProjectionRegistry,
    derive_zone_from_place,
    utm_definition,
    utm_zone_for,
)


class FakeResponse:
    def __init__(self, payload=None, status_error=None):
        self.payload = payload
        self.status_error = status_error

    def raise_for_status(self):
        if self.status_error:
            raise self.status_error

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        if self.error:
            raise self.error
        return self.response


class TestTransform:
    """测试坐标转换"""

    def test_round_trip(self):
        """测试 Web Mercator 与经纬度往返"""
        projector = GeometryProjector("EPSG:3857")
        lon, lat = projector.to_geographic((1234567.0, 4567890.0))
        x, y = projector.from_geographic(lon, lat)
        assert x == pytest.approx(1234567.0, abs=1e-6)
        assert y == pytest.approx(4567890.0, abs=1e-6)

    def test_known_point(self):
        """测试经度 1 度对应的 Web Mercator 坐标"""
        projector = GeometryProjector("EPSG:4326")
        x, y = projector.transform((1.0, 0.0), "EPSG:3857")
        assert x == pytest.approx(111319.49079327357)
        assert y == pytest.approx(0.0, abs=1e-9)

    def test_simple_passthrough(self):
        """测试 Simple 坐标系不做转换"""
        projector = GeometryProjector("Simple")
        assert projector.transform((12.5, -3.0), "EPSG:4326") == (12.5, -3.0)
        assert not projector.is_geographic()
        assert not projector.uses_geodesic_length()

    def test_invalid_coordinate(self):
        """测试非法坐标"""
        projector = GeometryProjector()
        with pytest.raises(ProjectionError):
            projector.transform((float("nan"), 0.0))
        with pytest.raises(ProjectionError):
            projector.transform(None)

    def test_unknown_crs(self):
        """测试无法识别的坐标系"""
        projector = GeometryProjector("EPSG:999999")
        with pytest.raises(ProjectionError):
            projector.to_geographic((0.0, 0.0))

    def test_transform_many(self):
        """测试批量转换"""
        projector = GeometryProjector("EPSG:3857")
        points = projector.transform_many([(0.0, 0.0), (111319.49079327357, 0.0)])
        assert points[0] == pytest.approx((0.0, 0.0), abs=1e-9)
        assert points[1][0] == pytest.approx(1.0)
        assert projector.transform_many([]) == []


class TestLength:
    """测试长度计算"""

    def test_geodesic_length(self):
        """测试赤道上 1 度经度的测地线长度"""
        projector = GeometryProjector("EPSG:4326")
        assert projector.uses_geodesic_length()
        assert projector.line_length([(0.0, 0.0), (1.0, 0.0)]) == pytest.approx(111319.49, rel=1e-6)

    def test_planar_length(self):
        """测试平面长度"""
        assert GeometryProjector.planar_length([(0, 0), (3, 4), (3, 10)]) == pytest.approx(11.0)
        assert GeometryProjector.planar_length([(0, 0)]) == 0.0

    def test_planar_length_non_finite(self):
        """测试非有限坐标返回 NaN"""
        import math

        assert math.isnan(GeometryProjector.planar_length([(0, 0), (float("inf"), 1)]))

    def test_projected_crs_uses_planar(self):
        """测试 UTM 坐标按平面距离计算"""
        projector = GeometryProjector("EPSG:32643")
        assert not projector.uses_geodesic_length()
        assert projector.line_length([(500000, 0), (500300, 400)]) == pytest.approx(500.0)


class TestUtmZones:
    """测试 UTM 分带"""

    @pytest.mark.parametrize("lon, lat, zone, hemisphere", [
        (77.2, 28.6, 43, "N"),
        (18.4, -33.9, 34, "S"),
        (-180.0, 10.0, 1, "N"),
        (180.0, 10.0, 60, "N"),
        (0.0, 0.0, 31, "N"),
    ])
    def test_zone(self, lon, lat, zone, hemisphere):
        assert utm_zone_for(lon, lat) == (zone, hemisphere)

    def test_out_of_range(self):
        with pytest.raises(ProjectionError):
            utm_zone_for(200.0, 0.0)

    def test_definition(self):
        """测试南北半球的 EPSG 代码与 PROJ 定义"""
        assert utm_definition(43, "N") == (
            "EPSG:32643", "+proj=utm +zone=43 +datum=WGS84 +units=m +no_defs"
        )
        assert utm_definition(34, "S") == (
            "EPSG:32734", "+proj=utm +zone=34 +south +datum=WGS84 +units=m +no_defs"
        )
        assert utm_definition(5, "N")[0] == "EPSG:32605"


class TestDeriveZone:
    """测试按地名推导投影"""

    def test_register_zone(self):
        """测试推导结果登记后可用于投影"""
        registry = ProjectionRegistry()
        zone = derive_zone_from_place(
            "Delhi", geocoder=lambda name: GeocodeResult(lat=28.6, lon=77.2, display_name="Delhi, India"),
            registry=registry,
        )
        assert zone.epsg_code == "EPSG:32643"
        assert zone.zone == 43
        assert zone.hemisphere == "N"
        assert zone.location_name == "Delhi, India"
        assert "EPSG:32643" in registry

        projector = GeometryProjector("EPSG:4326", registry)
        x, _ = projector.transform((75.0, 0.0), zone.epsg_code)
        assert x == pytest.approx(500000.0, abs=1e-3)

    def test_register_is_idempotent(self):
        """测试重复推导同一地点不新增登记"""
        registry = ProjectionRegistry()
        geocoder = lambda name: GeocodeResult(lat=-33.9, lon=18.4, display_name=name)
        derive_zone_from_place("Cape Town", geocoder=geocoder, registry=registry)
        derive_zone_from_place("Cape Town", geocoder=geocoder, registry=registry)
        assert len(registry) == 1
        assert "+south" in registry.definition("EPSG:32734")

    def test_empty_name(self):
        with pytest.raises(LocationNotFoundError):
            derive_zone_from_place("   ", geocoder=lambda name: None, registry=ProjectionRegistry())


class TestGeocoder:
    """测试 Nominatim 客户端"""

    def test_geocode(self):
        """测试请求参数与结果解析"""
        session = FakeSession(FakeResponse([{"lat": "19.07", "lon": "72.87", "display_name": "Mumbai"}]))
        geocoder = NominatimGeocoder(base_url="http://geo.test/search", session=session, timeout=5)
        result = geocoder.geocode("Mumbai")
        assert result == GeocodeResult(lat=19.07, lon=72.87, display_name="Mumbai")
        call = session.calls[0]
        assert call["params"]["q"] == "Mumbai"
        assert call["params"]["format"] == "json"
        assert call["timeout"] == 5
        assert "User-Agent" in call["headers"]

    def test_no_results(self):
        geocoder = NominatimGeocoder(session=FakeSession(FakeResponse([])))
        with pytest.raises(LocationNotFoundError):
            geocoder.geocode("Nowhere")

    def test_network_failure(self):
        geocoder = NominatimGeocoder(session=FakeSession(error=requests.ConnectionError("offline")))
        with pytest.raises(NetworkUnavailableError):
            geocoder.geocode("Mumbai")

    def test_http_error(self):
        response = FakeResponse([], status_error=requests.HTTPError("503"))
        geocoder = NominatimGeocoder(session=FakeSession(response))
        with pytest.raises(NetworkUnavailableError):
            geocoder.geocode("Mumbai")

    def test_bad_json(self):
        geocoder = NominatimGeocoder(session=FakeSession(FakeResponse(ValueError("not json"))))
        with pytest.raises(NetworkUnavailableError):
            geocoder.geocode("Mumbai")
