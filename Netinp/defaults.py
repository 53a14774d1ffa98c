"""
管网导出的默认参数

项目设置、导出格式、要素属性与外部服务的缺省取值集中在此，
项目设置或调用参数可逐项覆盖。
"""

from dataclasses import dataclass, field
from typing import Dict, Any


@dataclass
class SettingsDefaults:
    """项目水力/报告设置默认值（键名与编辑器保存的字段一致）"""

    title: str = "EPANET Simulation"
    units: str = "LPS"  # 流量单位
    headloss: str = "H-W"  # 水头损失公式
    specificGravity: float = 1.0  # 相对密度
    viscosity: float = 1.0  # 相对运动粘度
    maxTrials: int = 40  # 最大迭代次数
    accuracy: float = 0.001  # 收敛精度
    emitterExponent: float = 0.5  # 扩散器指数
    demandMultiplier: float = 1.0  # 需水量乘子
    defaultPattern: str = "1"  # 默认时间模式

    # 时间字段（"HH:MM"）
    duration: str = "24:00"
    hydraulicStep: str = "1:00"
    patternStep: str = "1:00"
    reportStep: str = "1:00"
    reportStart: str = "0:00"
    startClock: str = "12:00 AM"

    projection: str = "EPSG:3857"  # 地图坐标系

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class ExportDefaults:
    """INP/CSV/GeoJSON 导出默认参数"""

    numeric_precision: int = 4  # 数值字段小数位
    geographic_precision: int = 6  # 经纬度坐标小数位
    column_width: int = 16  # INP 列宽
    pattern_columns: int = 6  # 每行模式乘子数
    default_pattern_length: int = 24  # 自动补全的默认模式长度
    zero_length_epsilon: float = 1e-6  # 零长度判定阈值（地图单位）

    # INP [OPTIONS] 中的固定求解参数
    check_freq: int = 2
    max_check: int = 10
    damp_limit: int = 0
    unbalanced: str = "Continue 10"
    quality: str = "None mg/L"
    statistic: str = "None"


@dataclass
class ComponentDefaults:
    """各类要素的默认属性（编辑器新建要素时的取值，也是导出回退值）"""

    junction: Dict[str, Any] = field(default_factory=lambda: {
        "elevation": 100,
        "demand": 0,
        "population": 0,
        "status": "active",
    })
    tank: Dict[str, Any] = field(default_factory=lambda: {
        "capacity": 500000,
        "elevation": 120,
        "diameter": 30,
        "initLevel": 5,
        "minLevel": 0,
        "maxLevel": 20,
        "minVolume": 0,
        "status": "active",
    })
    reservoir: Dict[str, Any] = field(default_factory=lambda: {
        "head": 100,
        "elevation": 150,
        "status": "active",
    })
    pump: Dict[str, Any] = field(default_factory=lambda: {
        "capacity": 1000,
        "headGain": 50,
        "efficiency": 80,
        "power": 50,
        "status": "open",
    })
    valve: Dict[str, Any] = field(default_factory=lambda: {
        "diameter": 8,
        "status": "active",
        "valveType": "PRV",
        "setting": 40,
        "minorLoss": 0,
    })
    pipe: Dict[str, Any] = field(default_factory=lambda: {
        "diameter": 100,
        "material": "PVC",
        "roughness": 130,
        "minorLoss": 0,
        "status": "open",
    })

    def for_type(self, feature_type: str) -> Dict[str, Any]:
        """返回指定类型默认属性的副本，未知类型返回空字典"""
        return dict(getattr(self, feature_type, None) or {})


@dataclass
class ServiceDefaults:
    """外部服务（地理编码、高程）默认参数"""

    geocoder_url: str = "https://nominatim.openstreetmap.org/search"
    elevation_url: str = "https://api.opentopodata.org/v1/srtm30m"
    user_agent: str = "netinp/0.1"
    request_timeout: float = 30.0  # 请求超时（秒）
    elevation_batch_size: int = 50  # 每批查询点数
    elevation_max_workers: int = 4  # 并发批次数
    elevation_decimals: int = 2  # 高程保留小数位


# 全局默认配置实例
SETTINGS_DEFAULTS = SettingsDefaults()
EXPORT_DEFAULTS = ExportDefaults()
COMPONENT_DEFAULTS = ComponentDefaults()
SERVICE_DEFAULTS = ServiceDefaults()


def _category_map() -> Dict[str, Any]:
    return {
        'settings': SETTINGS_DEFAULTS,
        'export': EXPORT_DEFAULTS,
        'component': COMPONENT_DEFAULTS,
        'service': SERVICE_DEFAULTS,
    }


def get_default(category: str, param: str, default=None):
    """
    按类别读取一项默认值

    category 取 settings / export / component / service 之一；
    类别或字段不存在时返回 default。
    """
    config = _category_map().get(category)
    return default if config is None else getattr(config, param, default)


def update_defaults(category: str, **kwargs):
    """运行时覆盖某一类别的默认值，未知类别或字段抛出 ValueError"""
    config = _category_map().get(category)
    if config is None:
        raise ValueError(f"未知的默认参数类别: {category}")

    unknown = [key for key in kwargs if not hasattr(config, key)]
    if unknown:
        raise ValueError(f"类别 {category} 中不存在参数: {', '.join(unknown)}")
    for key, value in kwargs.items():
        setattr(config, key, value)


__all__ = [
    'SettingsDefaults',
    'ExportDefaults',
    'ComponentDefaults',
    'ServiceDefaults',
    'SETTINGS_DEFAULTS',
    'EXPORT_DEFAULTS',
    'COMPONENT_DEFAULTS',
    'SERVICE_DEFAULTS',
    'get_default',
    'update_defaults',
]
