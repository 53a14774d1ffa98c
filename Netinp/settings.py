"""
项目设置解析：与默认值合并并检查取值
"""
from typing import Any, Dict, Mapping, Optional

from .defaults import SETTINGS_DEFAULTS
from .exceptions import ConfigurationError
from .units import normalize_flow_unit, normalize_headloss
from .utils import NumberFormatter, TimeFormatter

TIME_FIELDS = ("duration", "hydraulicStep", "patternStep", "reportStep", "reportStart", "startClock")
NUMERIC_FIELDS = (
    "specificGravity",
    "viscosity",
    "maxTrials",
    "accuracy",
    "emitterExponent",
    "demandMultiplier",
)


def resolve_settings(settings: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """
    将项目设置与默认值合并并规范化

    Args:
        settings: 项目设置（可缺省任意字段；空值视为缺省）

    Returns:
        完整的设置字典

    Raises:
        ConfigurationError: 单位、公式、数值或时间字段非法
    """
    resolved = SETTINGS_DEFAULTS.as_dict()
    raw = dict(settings or {})

    # 旧版设置使用 trials 字段
    if "maxTrials" not in raw and "trials" in raw:
        raw["maxTrials"] = raw["trials"]

    for key, value in raw.items():
        if value is None or value == "":
            continue
        resolved[key] = value

    resolved["units"] = normalize_flow_unit(resolved["units"])
    resolved["headloss"] = normalize_headloss(resolved["headloss"])

    for key in NUMERIC_FIELDS:
        number = NumberFormatter.to_float(resolved[key])
        if number is None:
            raise ConfigurationError(f"设置项 '{key}' 的值 '{resolved[key]}' 不是有效数字")
        resolved[key] = number
    resolved["maxTrials"] = int(resolved["maxTrials"])
    if resolved["maxTrials"] <= 0:
        raise ConfigurationError("设置项 'maxTrials' 必须为正整数")

    for key in TIME_FIELDS:
        value = str(resolved[key]).strip()
        if not TimeFormatter.is_clock_string(value):
            raise ConfigurationError(f"设置项 '{key}' 的时间格式 '{value}' 无效，应为 HH:MM")
        resolved[key] = value

    resolved["defaultPattern"] = str(resolved["defaultPattern"])
    resolved["projection"] = str(resolved["projection"])
    return resolved
