"""
边界条件测试：时间与数值格式化、设置解析、默认参数、单位与色带
"""
import sys
from pathlib import Path
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from Netinp.colors import (
    MISSING_COLOR,
    PRESSURE_COLORS,
    build_colormap,
    color_for_value,
    color_with_alpha,
    gradient_color,
    legend_entries,
)
from Netinp.defaults import EXPORT_DEFAULTS, get_default, update_defaults
from Netinp.exceptions import ConfigurationError, IncompleteNetworkError, NetworkModelError, TopologyError
from Netinp.settings import resolve_settings
from Netinp.units import (
    convert_flow,
    default_roughness,
    normalize_flow_unit,
    normalize_headloss,
    unit_labels,
    unit_system,
)
from Netinp.utils import NumberFormatter, PatternGenerator, TimeFormatter, chunked

GRAY_STOPS = [{"value": 0, "color": "#000000"}, {"value": 100, "color": "#ffffff"}]


class TestTimeFormatting:
    """测试时间字符串"""

    @pytest.mark.parametrize("seconds, expected", [
        (0, "00:00"),
        (3660, "01:01"),
        (3599.9, "00:59"),
        (90000, "25:00"),
    ])
    def test_format_seconds(self, seconds, expected):
        assert TimeFormatter.format_seconds(seconds) == expected

    @pytest.mark.parametrize("text, valid", [
        ("24:00", True),
        ("0:30", True),
        ("12:00 AM", True),
        ("6:15:30", True),
        ("13:00 PM", False),
        ("1:75", False),
        ("noon", False),
        (5, False),
    ])
    def test_clock_strings(self, text, valid):
        assert TimeFormatter.is_clock_string(text) is valid

    def test_clock_to_seconds(self):
        """测试 AM/PM 换算"""
        assert TimeFormatter.clock_to_seconds("12:00 AM") == 0
        assert TimeFormatter.clock_to_seconds("1:30 PM") == 48600
        assert TimeFormatter.clock_to_seconds("2:00:30") == 7230
        with pytest.raises(ValueError):
            TimeFormatter.clock_to_seconds("later")


class TestNumberFormatting:
    """测试数值格式化与宽松解析"""

    def test_fixed(self):
        assert NumberFormatter.fixed(1.23456) == "1.2346"
        assert NumberFormatter.fixed(-0.00001) == "0.0000"
        assert NumberFormatter.fixed(2, 6) == "2.000000"

    def test_plain(self):
        assert NumberFormatter.plain(2.0) == "2"
        assert NumberFormatter.plain(0.5) == "0.5"
        assert NumberFormatter.plain(40) == "40"
        assert NumberFormatter.plain("H-W") == "H-W"

    @pytest.mark.parametrize("value, expected", [
        ("12.5 m", 12.5),
        ("-3", -3.0),
        (7, 7.0),
        ("abc", None),
        ("", None),
        (None, None),
        (True, None),
        (float("inf"), None),
    ])
    def test_to_float(self, value, expected):
        assert NumberFormatter.to_float(value) == expected

    def test_chunked(self):
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
        with pytest.raises(ValueError):
            list(chunked([1], 0))


class TestPatterns:
    """测试时间模式生成"""

    def test_constant_pattern(self):
        pattern = PatternGenerator.make_pattern("1", PatternGenerator.constant(1, 3), "Default")
        assert pattern == {"id": "1", "multipliers": [1.0, 1.0, 1.0], "description": "Default"}

    def test_piecewise_length_mismatch(self):
        with pytest.raises(ValueError):
            PatternGenerator.piecewise([1.0, 2.0], [3])

    def test_step_change(self):
        assert PatternGenerator.step_change(1.0, 0.5, 4, 1, 2) == [1.0, 0.5, 0.5, 1.0]

    def test_sinusoidal(self):
        """测试日变化曲线的均值与可重复性"""
        values = PatternGenerator.sinusoidal(1.0, 0.3, 24)
        assert len(values) == 24
        assert values[0] == pytest.approx(1.0)
        assert values[6] == pytest.approx(1.3)
        assert sum(values) / 24 == pytest.approx(1.0)
        noisy = PatternGenerator.sinusoidal(1.0, 0.3, 24, noise_std=0.05, seed=7)
        assert noisy == PatternGenerator.sinusoidal(1.0, 0.3, 24, noise_std=0.05, seed=7)


class TestSettings:
    """测试项目设置解析"""

    def test_defaults(self):
        settings = resolve_settings()
        assert settings["units"] == "LPS"
        assert settings["headloss"] == "H-W"
        assert settings["maxTrials"] == 40
        assert settings["defaultPattern"] == "1"
        assert settings["projection"] == "EPSG:3857"

    def test_blank_values_use_defaults(self):
        """测试空值视为缺省"""
        settings = resolve_settings({"units": None, "title": "", "trials": "25"})
        assert settings["units"] == "LPS"
        assert settings["title"] == "EPANET Simulation"
        assert settings["maxTrials"] == 25

    def test_input_not_modified(self):
        raw = {"units": "gpm"}
        resolve_settings(raw)
        assert raw == {"units": "gpm"}

    @pytest.mark.parametrize("settings", [
        {"units": "XYZ"},
        {"headloss": "Manning?"},
        {"accuracy": "abc"},
        {"maxTrials": 0},
        {"duration": "25:99"},
        {"startClock": "noon"},
    ])
    def test_invalid_settings(self, settings):
        with pytest.raises(ConfigurationError):
            resolve_settings(settings)


class TestDefaults:
    """测试默认参数管理"""

    def test_get_default(self):
        assert get_default("export", "column_width") == 16
        assert get_default("export", "nothing", 3) == 3
        assert get_default("unknown", "column_width", "x") == "x"

    def test_update_defaults(self):
        original = EXPORT_DEFAULTS.pattern_columns
        try:
            update_defaults("export", pattern_columns=8)
            assert get_default("export", "pattern_columns") == 8
        finally:
            update_defaults("export", pattern_columns=original)

    def test_update_unknown(self):
        with pytest.raises(ValueError):
            update_defaults("unknown", a=1)
        with pytest.raises(ValueError):
            update_defaults("export", not_a_field=1)


class TestUnits:
    """测试单位表"""

    def test_flow_units(self):
        assert normalize_flow_unit(" lps ") == "LPS"
        assert unit_system("GPM") == "US"
        assert unit_system("CMH") == "SI"
        with pytest.raises(ConfigurationError):
            normalize_flow_unit("BARRELS")

    def test_labels(self):
        labels = unit_labels("gpm")
        assert labels["flow"] == "GPM"
        assert labels["pressure"] == "psi"
        assert unit_labels("LPS")["diameter"] == "mm"

    def test_convert_flow(self):
        assert convert_flow(1.0, "CMH", "LPS") == pytest.approx(1 / 3.6)
        assert convert_flow(1.0, "LPS", "LPS") == pytest.approx(1.0)

    def test_headloss(self):
        assert normalize_headloss("darcy-weisbach") == "D-W"
        assert normalize_headloss("cm") == "C-M"
        assert default_roughness(None) == 130.0
        assert default_roughness("C-M") == pytest.approx(0.011)


class TestColors:
    """测试色带"""

    def test_stop_values(self):
        assert color_for_value(0, PRESSURE_COLORS) == "#3b82f6"
        assert color_for_value(100, PRESSURE_COLORS) == "#ef4444"
        assert color_for_value(-5, PRESSURE_COLORS) == "#3b82f6"

    def test_interpolation(self):
        assert color_for_value(50, GRAY_STOPS) == "#808080"

    def test_missing_value(self):
        assert color_for_value(None, PRESSURE_COLORS) == MISSING_COLOR
        assert color_for_value(float("nan"), PRESSURE_COLORS) == MISSING_COLOR

    def test_empty_stops(self):
        with pytest.raises(ValueError):
            color_for_value(1.0, [])

    def test_gradient(self):
        """测试连续与分级取色"""
        assert gradient_color(5, 0, 10, GRAY_STOPS) == "#808080"
        assert gradient_color(50, 0, 100, GRAY_STOPS, style="discrete", class_count=2) == "#bfbfbf"
        assert gradient_color(7, 7, 7, GRAY_STOPS) == "#000000"

    def test_alpha(self):
        assert color_with_alpha("#ff0000", 0.5) == "rgba(255, 0, 0, 0.5)"
        assert color_with_alpha("rgb(1, 2, 3)", 0.3) == "rgba(1, 2, 3, 0.3)"
        assert color_with_alpha(None, 1.0) == "rgba(0, 0, 0, 1.0)"

    def test_colormap_and_legend(self):
        from matplotlib.colors import to_hex

        cmap = build_colormap(GRAY_STOPS)
        assert to_hex(cmap(0.0)) == "#000000"
        assert to_hex(cmap(1.0)) == "#ffffff"

        entries = legend_entries(0, 100, GRAY_STOPS, class_count=2)
        assert [e["color"] for e in entries] == ["#404040", "#bfbfbf"]
        assert entries[1]["min"] == 50.0


class TestExceptions:
    """测试异常层级"""

    def test_incomplete_network(self):
        error = IncompleteNetworkError("missing", missing=["P1 -> J99"])
        assert isinstance(error, TopologyError)
        assert isinstance(error, NetworkModelError)
        assert error.missing == ["P1 -> J99"]
        assert IncompleteNetworkError("x").missing == []
