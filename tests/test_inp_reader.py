"""
测试 INP 解析：分节、选项、模式/曲线/控制规则、坐标系判断与往返一致性
"""
import sys
from pathlib import Path
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from Netinp.exceptions import DataError, NetworkExportWarning
from Netinp.graph import build_network_graph
from Netinp.inp_reader import detect_source_crs, parse_key_values, read_inp, split_sections
from Netinp.inp_writer import serialize_inp


SAMPLE_INP = """[TITLE]
Sample Town
Imported network

[JUNCTIONS]
;ID              Elev            Demand          Pattern
J1               10              1.5             P1 ;
J2               12

[RESERVOIRS]
R1               100

[TANKS]
T1               20   3   1   6   15   0   VC1

[PIPES]
P1   R1   J1   500   300   120   0   Open ;
P2   J1   J2   250   200   110   0   Closed

[PUMPS]
PU1  J2   T1   HEAD C1  SPEED 1.1 ;

[VALVES]
V1   J1   T1   150  FCV  25   0

[STATUS]
PU1  Closed

[PATTERNS]
;ID              Multipliers
;Residential
P1   0.5  0.6  0.7
P1   0.8

[CURVES]
;PUMP: Main pump
C1   0    50
C1   100  40
;VOLUME:
VC1  0    0
VC1  6    500

[CONTROLS]
LINK PU1 CLOSED IF NODE T1 ABOVE 5.5
LINK PU1 OPEN AT TIME 6
LINK V1 30 AT CLOCKTIME 6:00 AM

[OPTIONS]
Units              GPM
Headloss           D-W
Specific Gravity   1.02
Trials             60
Pattern            P1
Unbalanced         Continue 10

[TIMES]
Duration           48:00
Hydraulic Timestep 0:30
Start ClockTime    6:00 AM

[COORDINATES]
J1   100   0
J2   200   0
R1   0     0
T1   300   0

[VERTICES]
P1   50    50

[END]
"""


def by_id(project):
    return {f["id"]: f for f in project.features}


class TestSections:
    """测试分节切分"""

    def test_split_keeps_comments(self):
        """测试注释与数据分开保存"""
        sections = split_sections("[CURVES]\n;PUMP: desc\nC1 0 1 ; trailing\n")
        assert sections["CURVES"][0][1:] == ("", "PUMP: desc")
        assert sections["CURVES"][1][1:] == ("C1 0 1", "trailing")

    def test_compound_keys(self):
        """测试多单词选项名按最长匹配"""
        sections = split_sections("[TIMES]\nPattern Timestep 2:00\nDuration 24:00\n")
        values = parse_key_values(sections["TIMES"])
        assert values == {"PATTERN TIMESTEP": "2:00", "DURATION": "24:00"}


class TestRead:
    """测试要素与设置解析"""

    def test_features(self):
        """测试节点与管段属性"""
        project = read_inp(SAMPLE_INP, source_crs="Simple")
        features = by_id(project)
        assert [f["id"] for f in project.features] == ["J1", "J2", "R1", "T1", "P1", "P2", "PU1", "V1"]
        assert features["J1"]["properties"]["demand"] == 1.5
        assert features["J1"]["properties"]["pattern"] == "P1"
        assert features["J2"]["properties"]["demand"] == 0.0
        assert features["R1"]["properties"]["head"] == 100
        assert features["T1"]["properties"]["volumeCurve"] == "VC1"
        assert features["P2"]["properties"]["status"] == "closed"
        assert features["PU1"]["properties"]["headCurve"] == "C1"
        assert features["PU1"]["properties"]["speed"] == 1.1
        assert features["PU1"]["properties"]["status"] == "closed"
        assert features["V1"]["properties"]["valveType"] == "FCV"

    def test_link_geometry_includes_vertices(self):
        """测试管段几何由端点与中间折点组成"""
        project = read_inp(SAMPLE_INP, source_crs="Simple")
        p1 = by_id(project)["P1"]
        assert p1["startNodeId"] == "R1"
        assert p1["endNodeId"] == "J1"
        assert p1["geometry"]["coordinates"] == [[0.0, 0.0], [50.0, 50.0], [100.0, 0.0]]

    def test_settings(self):
        """测试选项与时间设置"""
        settings = read_inp(SAMPLE_INP, source_crs="Simple").settings
        assert settings["title"] == "Sample Town"
        assert settings["description"] == "Imported network"
        assert settings["units"] == "GPM"
        assert settings["headloss"] == "D-W"
        assert settings["specificGravity"] == pytest.approx(1.02)
        assert settings["maxTrials"] == 60
        assert settings["defaultPattern"] == "P1"
        assert settings["duration"] == "48:00"
        assert settings["hydraulicStep"] == "0:30"
        assert settings["startClock"] == "6:00 AM"
        assert settings["projection"] == "Simple"

    def test_patterns_and_curves(self):
        """测试模式续行与曲线类型注释"""
        project = read_inp(SAMPLE_INP, source_crs="Simple")
        assert project.patterns == [
            {"id": "P1", "multipliers": [0.5, 0.6, 0.7, 0.8], "description": "Residential"},
        ]
        c1, vc1 = project.curves
        assert c1["type"] == "PUMP"
        assert c1["description"] == "Main pump"
        assert c1["points"] == [{"x": 0.0, "y": 50.0}, {"x": 100.0, "y": 40.0}]
        assert vc1["type"] == "VOLUME"
        assert "description" not in vc1

    def test_controls(self):
        """测试三种控制规则写法"""
        controls = read_inp(SAMPLE_INP, source_crs="Simple").controls
        assert controls[0] == {"id": "control-1", "linkId": "PU1", "status": "CLOSED",
                               "type": "HI LEVEL", "nodeId": "T1", "value": 5.5}
        assert controls[1] == {"id": "control-2", "linkId": "PU1", "status": "OPEN",
                               "type": "TIMER", "value": 6.0}
        assert controls[2] == {"id": "control-3", "linkId": "V1", "setting": 30.0,
                               "type": "TIMEOFDAY", "value": "6:00 AM"}

    def test_unreadable_control_skipped(self):
        """测试无法识别的控制规则被跳过并警告"""
        text = "[CONTROLS]\nLINK P1 OPEN WHEN SOMETHING 5\n"
        with pytest.warns(NetworkExportWarning):
            project = read_inp(text, source_crs="Simple")
        assert project.controls == []

    def test_bad_number(self):
        """测试非法数值抛出 DataError"""
        text = "[JUNCTIONS]\nJ1 high 0\n"
        with pytest.raises(DataError, match="JUNCTIONS"):
            read_inp(text, source_crs="Simple")

    def test_missing_fields(self):
        """测试字段不足"""
        with pytest.raises(DataError):
            read_inp("[PIPES]\nP1 A B 10\n", source_crs="Simple")

    def test_node_without_coordinates(self):
        """测试缺少坐标的节点保留但无几何"""
        with pytest.warns(NetworkExportWarning, match="J1"):
            project = read_inp("[JUNCTIONS]\nJ1 5\n", source_crs="Simple")
        assert project.features[0]["geometry"] is None


class TestCoordinateSystems:
    """测试坐标系判断与转换"""

    def test_detect_lon_lat(self):
        """测试经纬度范围内的坐标识别为 EPSG:4326"""
        assert detect_source_crs({"J1": [[116.4, 39.9]]}, "EPSG:3857") == "EPSG:4326"
        assert detect_source_crs({"J1": [[500000.0, 4400000.0]]}, "EPSG:3857") == "EPSG:3857"
        assert detect_source_crs({}, "EPSG:3857") == "EPSG:3857"

    def test_lon_lat_converted_to_map(self):
        """测试经纬度坐标转换到 Web Mercator"""
        text = "[JUNCTIONS]\nJ1 5\n\n[COORDINATES]\nJ1 1 0\n"
        project = read_inp(text)
        assert project.source_crs == "EPSG:4326"
        x, y = project.features[0]["geometry"]["coordinates"]
        assert x == pytest.approx(111319.49, rel=1e-6)
        assert y == pytest.approx(0.0, abs=1e-6)

    def test_explicit_source_crs(self):
        """测试显式坐标系不做自动判断"""
        text = "[JUNCTIONS]\nJ1 5\n\n[COORDINATES]\nJ1 10 20\n"
        project = read_inp(text, source_crs="EPSG:3857")
        assert project.source_crs == "EPSG:3857"
        assert project.features[0]["geometry"]["coordinates"] == [10.0, 20.0]


class TestRoundTrip:
    """测试写出后再读入"""

    def test_write_then_read(self):
        """测试生成的 INP 可被完整读回"""
        project = read_inp(SAMPLE_INP, source_crs="Simple")
        graph = build_network_graph(project.features, crs="Simple")
        text = serialize_inp(graph, settings=project.settings, patterns=project.patterns,
                             curves=project.curves, controls=project.controls)

        again = read_inp(text, source_crs="Simple")
        assert [f["id"] for f in again.features] == [f["id"] for f in project.features]
        assert by_id(again)["P1"]["geometry"] == by_id(project)["P1"]["geometry"]
        assert by_id(again)["PU1"]["properties"]["status"] == "closed"
        assert again.controls == project.controls
        assert again.curves == project.curves
        assert again.patterns[0] == project.patterns[0]
        for key in ("units", "headloss", "maxTrials", "duration", "startClock", "defaultPattern"):
            assert again.settings[key] == project.settings[key]
