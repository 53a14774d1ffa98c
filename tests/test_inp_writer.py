"""
测试 INP 生成：分节顺序、列宽、数值格式、模式换行、控制规则与缺失引用
"""
import sys
import warnings
from pathlib import Path
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from Netinp.exceptions import ConfigurationError, IncompleteNetworkError, NetworkExportWarning
from Netinp.graph import build_network_graph
from Netinp.inp_writer import SECTION_ORDER, serialize_inp


def row(*columns):
    return "".join(str(c).ljust(16) for c in columns) + ";"


def node(fid, x, y, kind="junction", **props):
    return {
        "id": fid,
        "featureType": kind,
        "geometry": {"type": "Point", "coordinates": [x, y]},
        "properties": props,
    }


def link(fid, start, end, coords=None, kind="pipe", **props):
    return {
        "id": fid,
        "featureType": kind,
        "geometry": {"type": "LineString", "coordinates": coords} if coords else None,
        "properties": props,
        "startNodeId": start,
        "endNodeId": end,
    }


def sample_features():
    return [
        node("R1", 0, 0, kind="reservoir", head=100),
        node("J1", 100, 0, elevation=10, demand=1.5),
        node("J2", 200, 0, elevation=12, demand=0, pattern="P1"),
        node("T1", 300, 0, kind="tank", elevation=20, initLevel=3, minLevel=1, maxLevel=6, diameter=15),
        link("L1", "R1", "J1", [[0, 0], [50, 50], [100, 0]], diameter=300, roughness=120),
        link("L2", "J1", "J2", length=150, diameter=200, roughness=110, status="closed"),
        link("PU1", "J2", "T1", kind="pump", headCurve="C1", status="closed"),
        link("V1", "J1", "T1", kind="valve", diameter=150, valveType="fcv", setting=25, status="open"),
    ]


PATTERNS = [{"id": "P1", "description": "Residential", "multipliers": [0.5, 0.6, 0.7, 0.8, 0.9, 1.0, 1.1, 1.2]}]
CURVES = [{"id": "C1", "type": "PUMP", "description": "Main curve", "points": [{"x": 0, "y": 50}, {"x": 100, "y": 40}]}]


def serialize(features=None, **kwargs):
    graph = build_network_graph(features if features is not None else sample_features(), crs="Simple")
    kwargs.setdefault("patterns", PATTERNS)
    kwargs.setdefault("curves", CURVES)
    return serialize_inp(graph, **kwargs)


class TestLayout:
    """测试整体结构"""

    def test_section_order(self):
        """测试分节顺序固定且全部输出"""
        text = serialize()
        positions = [text.index(f"[{s}]") for s in SECTION_ORDER]
        assert positions == sorted(positions)
        assert text.endswith("[END]\n")

    def test_empty_sections_emitted(self):
        """测试没有内容的分节仍输出表头"""
        graph = build_network_graph([node("J1", 0, 0, elevation=1)], crs="Simple")
        text = serialize_inp(graph)
        for section in SECTION_ORDER:
            assert f"[{section}]" in text
        lines = text.splitlines()
        tanks = lines.index("[TANKS]")
        assert lines[tanks + 1].startswith(";ID")
        assert lines[tanks + 2] == ""

    def test_byte_stable(self):
        """测试相同输入输出一致"""
        assert serialize() == serialize()


class TestSections:
    """测试各分节内容"""

    def test_title_and_nodes(self):
        """测试标题与节点行"""
        lines = serialize(settings={"title": "Demo Net"}).splitlines()
        assert lines[0] == "[TITLE]"
        assert lines[1] == "Demo Net"
        assert row("J1", "10.0000", "1.5000") in lines
        assert row("J2", "12.0000", "0.0000", "P1") in lines
        assert row("R1", "100.0000") in lines
        assert row("T1", "20.0000", "3.0000", "1.0000", "6.0000", "15.0000", "0.0000") in lines

    def test_reservoir_head_falls_back_to_elevation(self):
        """测试水库没有 head 时使用 elevation"""
        features = [node("R9", 0, 0, kind="reservoir", elevation=75)]
        lines = serialize(features).splitlines()
        assert row("R9", "75.0000") in lines

    def test_pipes(self):
        """测试管道：推导长度、显式长度与状态"""
        lines = serialize().splitlines()
        assert row("L1", "R1", "J1", "141.4214", "300.0000", "120.0000", "0.0000", "Open") in lines
        assert row("L2", "J1", "J2", "150.0000", "200.0000", "110.0000", "0.0000", "Closed") in lines

    def test_pipe_roughness_follows_headloss(self):
        """测试缺少粗糙度时按水头损失公式取默认值"""
        features = [node("A", 0, 0, elevation=1), node("B", 10, 0, elevation=1), link("L9", "A", "B", diameter=100)]
        lines = serialize(features, settings={"headloss": "D-W"}).splitlines()
        assert row("L9", "A", "B", "10.0000", "100.0000", "0.2600", "0.0000", "Open") in lines

    def test_pumps_and_valves(self):
        """测试水泵参数与阀门类型"""
        lines = serialize().splitlines()
        assert "PU1".ljust(16) + "J2".ljust(16) + "T1".ljust(16) + "HEAD C1 ;" in lines
        assert row("V1", "J1", "T1", "150.0000", "FCV", "25.0000", "0.0000") in lines

    def test_pump_power_default(self):
        """测试没有曲线的水泵使用功率"""
        features = [node("A", 0, 0, elevation=1), node("B", 10, 0, elevation=1),
                    link("PU9", "A", "B", kind="pump", speed=1.2)]
        lines = serialize(features).splitlines()
        assert "PU9".ljust(16) + "A".ljust(16) + "B".ljust(16) + "POWER 50 SPEED 1.2 ;" in lines

    def test_status(self):
        """测试 [STATUS] 中的关闭水泵与强制阀门状态"""
        lines = serialize().splitlines()
        start = lines.index("[STATUS]")
        end = lines.index("[PATTERNS]")
        body = [l for l in lines[start + 2:end] if l]
        assert body == [row("PU1", "Closed"), row("V1", "Open")]

    def test_pattern_wraps_at_six(self):
        """测试 8 个乘子分两行输出"""
        lines = serialize().splitlines()
        pattern_lines = [l for l in lines if l.startswith("P1 ")]
        assert len(pattern_lines) == 2
        assert pattern_lines[0] == row("P1", "0.5000", "0.6000", "0.7000", "0.8000", "0.9000", "1.0000")
        assert pattern_lines[1] == row("P1", "1.1000", "1.2000")
        assert ";Residential" in lines

    def test_default_pattern_added(self):
        """测试缺少默认模式时补全 24 个 1.0"""
        lines = serialize().splitlines()
        default_lines = [l for l in lines if l.startswith("1 ")]
        assert len(default_lines) == 4
        assert default_lines[0] == row("1", *(["1.0000"] * 6))

    def test_default_pattern_not_duplicated(self):
        """测试已提供默认模式时不重复添加"""
        patterns = PATTERNS + [{"id": "1", "multipliers": [1.0, 0.5]}]
        lines = serialize(patterns=patterns).splitlines()
        assert [l for l in lines if l.startswith("1 ")] == [row("1", "1.0000", "0.5000")]

    def test_curves(self):
        """测试曲线注释与数据行"""
        lines = serialize().splitlines()
        index = lines.index(";PUMP: Main curve")
        assert lines[index + 1] == row("C1", "0.0000", "50.0000")
        assert lines[index + 2] == row("C1", "100.0000", "40.0000")

    def test_controls(self):
        """测试控制规则的三种写法"""
        controls = [
            {"id": "c1", "linkId": "PU1", "status": "CLOSED", "type": "HI LEVEL", "nodeId": "T1", "value": 5.5},
            {"id": "c2", "linkId": "PU1", "status": "OPEN", "type": "LOW LEVEL", "nodeId": "T1", "value": 2},
            {"id": "c3", "linkId": "L2", "status": "OPEN", "type": "TIMER", "value": 6},
            {"id": "c4", "linkId": "V1", "setting": 30, "type": "TIMEOFDAY", "value": "6:00 AM"},
        ]
        lines = serialize(controls=controls).splitlines()
        assert "LINK PU1 CLOSED IF NODE T1 ABOVE 5.5" in lines
        assert "LINK PU1 OPEN IF NODE T1 BELOW 2" in lines
        assert "LINK L2 OPEN AT TIME 6" in lines
        assert "LINK V1 30.0000 AT CLOCKTIME 6:00 AM" in lines

    def test_options_and_times(self):
        """测试 [OPTIONS] 与 [TIMES]"""
        settings = {"units": "gpm", "headloss": "Hazen-Williams", "trials": 50, "duration": "48:00"}
        lines = serialize(settings=settings).splitlines()
        assert "Units".ljust(19) + "GPM" in lines
        assert "Headloss".ljust(19) + "H-W" in lines
        assert "Trials".ljust(19) + "50" in lines
        assert "Accuracy".ljust(19) + "0.001" in lines
        assert "CHECKFREQ".ljust(19) + "2" in lines
        assert "MAXCHECK".ljust(19) + "10" in lines
        assert "DAMPLIMIT".ljust(19) + "0" in lines
        assert "Unbalanced".ljust(19) + "Continue 10" in lines
        assert "Pattern".ljust(19) + "1" in lines
        assert "Duration".ljust(19) + "48:00" in lines
        assert "Start ClockTime".ljust(19) + "12:00 AM" in lines


class TestCoordinates:
    """测试坐标输出"""

    def test_projected_coordinates_and_vertices(self):
        """测试平面坐标 4 位小数与中间折点"""
        lines = serialize().splitlines()
        assert row("J1", "100.0000", "0.0000") in lines
        start = lines.index("[VERTICES]")
        body = [l for l in lines[start + 2:] if l and not l.startswith("[")]
        assert body == [row("L1", "50.0000", "50.0000")]

    def test_geographic_coordinates(self):
        """测试输出经纬度时保留 6 位小数"""
        graph = build_network_graph([node("J1", 0, 0, elevation=1)])
        text = serialize_inp(graph, output_crs="EPSG:4326")
        assert row("J1", "0.000000", "0.000000") in text.splitlines()

    def test_settings_projection_used_for_output(self):
        """测试默认按设置中的坐标系输出"""
        graph = build_network_graph([node("J1", 111319.49079327357, 0, elevation=1)])
        text = serialize_inp(graph, settings={"projection": "EPSG:4326"})
        assert row("J1", "1.000000", "0.000000") in text.splitlines()


class TestFailures:
    """测试中止与警告"""

    def test_incomplete_network(self):
        """测试缺失引用时中止并列出全部缺失项"""
        features = sample_features() + [link("L9", "J2", "J99", diameter=1, roughness=1)]
        controls = [{"id": "c1", "linkId": "GONE", "status": "OPEN", "type": "TIMER", "value": 1}]
        with pytest.raises(IncompleteNetworkError) as excinfo:
            serialize(features, curves=[], controls=controls)
        missing = excinfo.value.missing
        assert len(missing) == 3
        assert any("J99" in m for m in missing)
        assert any("GONE" in m for m in missing)
        assert any("C1" in m for m in missing)

    def test_malformed_controls(self):
        """测试缺少触发值或动作的控制规则中止导出"""
        controls = [
            {"id": "c1", "linkId": "L2", "status": "OPEN", "type": "TIMER"},
            {"id": "c2", "linkId": "L2", "type": "TIMEOFDAY"},
            {"id": "c3", "linkId": "L2", "status": "OPEN", "type": "TIMEOFDAY", "value": "25:99"},
            {"id": "c4", "linkId": "PU1", "status": "CLOSED", "type": "HI LEVEL", "nodeId": "T1"},
            {"id": "c5", "linkId": "L2", "status": "OPEN", "type": "TIMER", "value": "soon"},
        ]
        with pytest.raises(IncompleteNetworkError) as excinfo:
            serialize(controls=controls)
        missing = excinfo.value.missing
        assert len(missing) == 6
        for label in ("c1", "c3", "c4", "c5"):
            assert sum(label in m for m in missing) == 1
        assert sum("c2" in m for m in missing) == 2

    def test_unknown_pattern_reference(self):
        """测试引用不存在的时间模式"""
        with pytest.raises(IncompleteNetworkError, match="P1"):
            serialize(patterns=[])

    def test_invalid_settings(self):
        """测试非法单位"""
        with pytest.raises(ConfigurationError, match="流量单位"):
            serialize(settings={"units": "XYZ"})

    def test_duplicates_warn(self):
        """测试重复记录被丢弃时发出警告"""
        features = sample_features() + [node("J1", 5, 5, elevation=99)]
        with pytest.warns(NetworkExportWarning, match="J1"):
            text = serialize(features)
        assert row("J1", "10.0000", "1.5000") in text.splitlines()

    def test_missing_attributes_use_defaults(self):
        """测试缺失属性使用默认值且不阻止导出"""
        features = [node("J1", 0, 0)]
        graph = build_network_graph(features, crs="Simple")
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            text = serialize_inp(graph)
        assert row("J1", "100.0000", "0.0000") in text.splitlines()
