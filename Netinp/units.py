"""
单位表：流量单位、单位制标签与水头损失公式

EPANET 依据流量单位决定整套单位制：CFS/GPM/MGD/IMGD/AFD 为美制，
LPS/LPM/MLD/CMH/CMD 为公制。
"""

from typing import Dict, Optional

from .exceptions import ConfigurationError

# 流量单位 -> (说明, 单位制, 换算到 m³/s 的系数)
FLOW_UNITS: Dict[str, Dict[str, object]] = {
    "CFS": {"label": "Cubic feet/sec", "system": "US", "to_cms": 0.028316846592},
    "GPM": {"label": "Gallons/min", "system": "US", "to_cms": 6.30901964e-05},
    "MGD": {"label": "Million gallons/day", "system": "US", "to_cms": 0.0438126364},
    "IMGD": {"label": "Imperial MGD", "system": "US", "to_cms": 0.0526168042},
    "AFD": {"label": "Acre-feet/day", "system": "US", "to_cms": 0.0142764102},
    "LPS": {"label": "Liters/sec", "system": "SI", "to_cms": 0.001},
    "LPM": {"label": "Liters/min", "system": "SI", "to_cms": 1.0 / 60000.0},
    "MLD": {"label": "Million liters/day", "system": "SI", "to_cms": 1000.0 / 86400.0},
    "CMH": {"label": "Cubic meters/hr", "system": "SI", "to_cms": 1.0 / 3600.0},
    "CMD": {"label": "Cubic meters/day", "system": "SI", "to_cms": 1.0 / 86400.0},
}

# 单位制 -> 各物理量的显示单位
SYSTEM_LABELS: Dict[str, Dict[str, str]] = {
    "US": {
        "pressure": "psi",
        "head": "ft",
        "elevation": "ft",
        "length": "ft",
        "velocity": "ft/s",
        "diameter": "in",
        "headloss": "ft/kft",
    },
    "SI": {
        "pressure": "m",
        "head": "m",
        "elevation": "m",
        "length": "m",
        "velocity": "m/s",
        "diameter": "mm",
        "headloss": "m/km",
    },
}

# 水头损失公式 -> (名称, 默认粗糙系数)
# D-W 的粗糙度单位随单位制变化（公制 mm，美制 10^-3 ft），此处取公制值
HEADLOSS_FORMULAS: Dict[str, Dict[str, object]] = {
    "H-W": {"name": "Hazen-Williams", "roughness": 130.0},
    "D-W": {"name": "Darcy-Weisbach", "roughness": 0.26},
    "C-M": {"name": "Chezy-Manning", "roughness": 0.011},
}

_HEADLOSS_ALIASES = {
    "HW": "H-W",
    "HAZEN-WILLIAMS": "H-W",
    "HAZEN WILLIAMS": "H-W",
    "DW": "D-W",
    "DARCY-WEISBACH": "D-W",
    "DARCY WEISBACH": "D-W",
    "CM": "C-M",
    "CHEZY-MANNING": "C-M",
    "CHEZY MANNING": "C-M",
}


def normalize_flow_unit(unit: str) -> str:
    """返回大写流量单位代码，未知单位抛出 ConfigurationError"""
    code = str(unit or "").strip().upper()
    if code not in FLOW_UNITS:
        raise ConfigurationError(
            f"未知的流量单位 '{unit}'。有效单位: {', '.join(FLOW_UNITS)}"
        )
    return code


def normalize_headloss(formula: str) -> str:
    """
    规范化水头损失公式代码

    Args:
        formula: "H-W" 或全称 "Hazen-Williams" 等

    Returns:
        "H-W" / "D-W" / "C-M"
    """
    code = str(formula or "").strip().upper()
    code = _HEADLOSS_ALIASES.get(code, code)
    if code not in HEADLOSS_FORMULAS:
        raise ConfigurationError(
            f"未知的水头损失公式 '{formula}'。有效公式: {', '.join(HEADLOSS_FORMULAS)}"
        )
    return code


def unit_system(flow_unit: str) -> str:
    """流量单位所属单位制（"US" 或 "SI"）"""
    return str(FLOW_UNITS[normalize_flow_unit(flow_unit)]["system"])


def unit_labels(flow_unit: str) -> Dict[str, str]:
    """
    报表与图例使用的单位标签

    Returns:
        包含 flow、demand、pressure、head、velocity、diameter、headloss 等键的字典
    """
    code = normalize_flow_unit(flow_unit)
    labels = dict(SYSTEM_LABELS[str(FLOW_UNITS[code]["system"])])
    labels["flow"] = code
    labels["demand"] = code
    return labels


def convert_flow(value: float, from_unit: str, to_unit: str) -> float:
    """在两种流量单位之间换算"""
    source = FLOW_UNITS[normalize_flow_unit(from_unit)]["to_cms"]
    target = FLOW_UNITS[normalize_flow_unit(to_unit)]["to_cms"]
    return float(value) * float(source) / float(target)


def default_roughness(formula: Optional[str]) -> float:
    """水头损失公式对应的默认粗糙系数"""
    return float(HEADLOSS_FORMULAS[normalize_headloss(formula or "H-W")]["roughness"])


__all__ = [
    "FLOW_UNITS",
    "SYSTEM_LABELS",
    "HEADLOSS_FORMULAS",
    "normalize_flow_unit",
    "normalize_headloss",
    "unit_system",
    "unit_labels",
    "convert_flow",
    "default_roughness",
]
