"""
通用工具模块

提供时间模式生成、时间字符串格式化、数值格式化与分批等通用功能。
"""

import math
import re
from typing import Any, Dict, Iterator, List, Optional, Sequence, TypeVar

import numpy as np

T = TypeVar("T")

_CLOCK_RE = re.compile(
    r"^\s*(\d{1,3})(?::(\d{1,2}))?(?::(\d{1,2}))?\s*(AM|PM)?\s*$", re.IGNORECASE
)
_NUMBER_RE = re.compile(r"[-+]?\d*\.?\d+(?:[eE][-+]?\d+)?")


class PatternGenerator:
    """时间模式（需水量乘子序列）生成器"""

    @staticmethod
    def constant(multiplier: float, periods: int) -> List[float]:
        """每个时段取同一乘子，默认模式即 24 个 1.0"""
        return [float(multiplier)] * periods

    @staticmethod
    def sinusoidal(
        mean: float,
        swing: float,
        periods: int,
        cycles: float = 1.0,
        phase: float = 0.0,
        noise_std: float = 0.0,
        seed: Optional[int] = None,
    ) -> List[float]:
        """
        按正弦规律变化的日用水乘子

        Args:
            mean: 乘子均值
            swing: 相对均值的最大偏移
            periods: 时段数
            cycles: 整个序列包含的周期数
            phase: 初相（弧度）
            noise_std: 叠加的高斯噪声标准差，0 表示不加噪声
            seed: 噪声随机种子
        """
        steps = np.arange(periods)
        values = mean + swing * np.sin(2 * np.pi * cycles * steps / periods + phase)
        if noise_std > 0:
            rng = np.random.default_rng(seed)
            values = values + rng.normal(0.0, noise_std, size=periods)
        return [float(v) for v in values]

    @staticmethod
    def step_change(
        before: float,
        after: float,
        periods: int,
        start: int,
        duration: Optional[int] = None,
    ) -> List[float]:
        """从 start 时段起乘子由 before 变为 after，duration 为 None 时持续到末尾"""
        values = [float(before)] * periods
        end = periods if duration is None else min(start + duration, periods)
        for i in range(start, end):
            values[i] = float(after)
        return values

    @staticmethod
    def piecewise(multipliers: Sequence[float], lengths: Sequence[int]) -> List[float]:
        """分段常数乘子：第 i 段取 multipliers[i]，持续 lengths[i] 个时段"""
        if len(multipliers) != len(lengths):
            raise ValueError("multipliers 与 lengths 的长度必须一致")
        result: List[float] = []
        for multiplier, length in zip(multipliers, lengths):
            result.extend([float(multiplier)] * length)
        return result

    @staticmethod
    def make_pattern(
        pattern_id: str,
        multipliers: Sequence[float],
        description: Optional[str] = None,
    ) -> Dict[str, Any]:
        """组装 TimePattern 记录"""
        pattern: Dict[str, Any] = {"id": str(pattern_id), "multipliers": [float(m) for m in multipliers]}
        if description:
            pattern["description"] = description
        return pattern


class TimeFormatter:
    """时间字符串工具"""

    @staticmethod
    def format_seconds(seconds: float) -> str:
        """
        将秒偏移格式化为 HH:MM

        小时 = floor(s / 3600)，分钟 = floor((s % 3600) / 60)，均补零到两位。
        """
        total = int(math.floor(float(seconds)))
        hours = total // 3600
        minutes = (total % 3600) // 60
        return f"{hours:02d}:{minutes:02d}"

    @staticmethod
    def is_clock_string(text: Any) -> bool:
        """判断是否为合法的 H:MM[:SS] [AM|PM] 时间字符串"""
        if not isinstance(text, str):
            return False
        match = _CLOCK_RE.match(text)
        if not match:
            return False
        minutes = int(match.group(2) or 0)
        seconds = int(match.group(3) or 0)
        if minutes >= 60 or seconds >= 60:
            return False
        if match.group(4) and not 1 <= int(match.group(1)) <= 12:
            return False
        return True

    @staticmethod
    def clock_to_seconds(text: str) -> int:
        """
        将时间字符串转换为秒

        Args:
            text: "H:MM"、"HH:MM:SS" 或 "12:00 AM" 形式的字符串

        Returns:
            秒数

        Raises:
            ValueError: 格式非法
        """
        if not TimeFormatter.is_clock_string(text):
            raise ValueError(f"非法的时间字符串: {text!r}")
        match = _CLOCK_RE.match(text)
        hours = int(match.group(1))
        minutes = int(match.group(2) or 0)
        seconds = int(match.group(3) or 0)
        suffix = (match.group(4) or "").upper()
        if suffix == "AM" and hours == 12:
            hours = 0
        elif suffix == "PM" and hours != 12:
            hours += 12
        return hours * 3600 + minutes * 60 + seconds


class NumberFormatter:
    """数值格式化与宽松解析"""

    @staticmethod
    def fixed(value: Any, precision: int = 4) -> str:
        """定点格式化，消除 "-0.0000" """
        number = float(value)
        text = f"{number:.{precision}f}"
        if float(text) == 0.0:
            text = f"{0.0:.{precision}f}"
        return text

    @staticmethod
    def plain(value: Any) -> str:
        """整数值输出为整数，其余保持原样"""
        if isinstance(value, bool):
            return str(int(value))
        if isinstance(value, (int, np.integer)):
            return str(int(value))
        if isinstance(value, (float, np.floating)):
            number = float(value)
            if number.is_integer():
                return str(int(number))
            return repr(number)
        return str(value)

    @staticmethod
    def to_float(value: Any) -> Optional[float]:
        """宽松转换为有限浮点数，失败返回 None"""
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float, np.integer, np.floating)):
            number = float(value)
            return number if math.isfinite(number) else None
        text = str(value).strip()
        if text == "":
            return None
        match = _NUMBER_RE.search(text)
        if not match:
            return None
        try:
            number = float(match.group(0))
        except ValueError:
            return None
        return number if math.isfinite(number) else None


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """按固定大小切分序列"""
    if size <= 0:
        raise ValueError("size 必须为正整数")
    for start in range(0, len(items), size):
        yield items[start:start + size]


__all__ = [
    "PatternGenerator",
    "TimeFormatter",
    "NumberFormatter",
    "chunked",
]
