"""
自定义异常类：用于管网拓扑构建、导出与外部服务调用的错误处理

结构性缺陷（悬空管段、重复ID等）属于校验结果数据，不在此处抛出。
"""
from typing import Iterable, List, Optional


class NetworkModelError(Exception):
    """管网模型基础异常类"""

    pass


class ConfigurationError(NetworkModelError):
    """配置错误（单位制、水头损失公式、时间字符串等）"""

    pass


class ValidationError(NetworkModelError):
    """验证错误"""

    pass


class TopologyError(NetworkModelError):
    """拓扑结构错误"""

    pass


class IncompleteNetworkError(TopologyError):
    """
    必需引用无法解析，导出中止

    Attributes:
        missing: 无法解析的引用描述列表，例如 "P1 -> J99"
    """

    def __init__(self, message: str, missing: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.missing: List[str] = list(missing or [])


class ProjectionError(NetworkModelError):
    """坐标投影错误"""

    pass


class DataError(NetworkModelError):
    """数据错误（INP文本中的非法数值等）"""

    pass


class ExternalServiceError(NetworkModelError):
    """外部服务（地理编码、高程查询）调用失败"""

    pass


class NetworkUnavailableError(ExternalServiceError):
    """网络不可用或服务端返回错误"""

    pass


class LocationNotFoundError(ExternalServiceError):
    """地名无法解析为坐标"""

    pass


class NetworkExportWarning(UserWarning):
    """导出过程中的非致命问题"""

    pass
